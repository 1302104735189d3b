# medreminder/logs.py
import logging
from collections import deque
from pathlib import Path
from threading import RLock
from typing import List, Optional

from .config import LOG_RING_LINES

_LOG_LOCK = RLock()


class RecentLines:
    """Last ``max_lines`` formatted log lines, kept for the CLI ``log`` command."""

    def __init__(self, max_lines: int = LOG_RING_LINES):
        self._lines = deque(maxlen=int(max_lines))
        self._lock = RLock()

    def add(self, message: str):
        # tracebacks arrive as one record; store them line by line
        with self._lock:
            self._lines.extend(l for l in (message or "").splitlines() if l.strip())

    def tail(self, n: Optional[int] = None) -> List[str]:
        with self._lock:
            lines = list(self._lines)
        return lines if n is None else lines[-n:] if n > 0 else []

    def text(self, n: Optional[int] = None) -> str:
        return "\n".join(self.tail(n))

    def clear(self):
        with self._lock:
            self._lines.clear()


RING = RecentLines()


class _FileAndRingHandler(logging.Handler):
    def __init__(self, path: Optional[Path] = None):
        super().__init__()
        self.path = path
        self._fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")

    def emit(self, record):
        try:
            msg = self._fmt.format(record)
        except Exception:
            msg = str(record.getMessage())
        RING.add(msg)
        if self.path is None:
            return
        try:
            with _LOG_LOCK:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(msg + "\n")
        except OSError:
            self.handleError(record)


logger = logging.getLogger("medreminder")
logger.setLevel(logging.INFO)
if not any(isinstance(h, _FileAndRingHandler) for h in logger.handlers):
    logger.addHandler(_FileAndRingHandler())


def install_file_logging(path: Optional[Path]) -> None:
    """Point the ring handler at ``path`` as well; None turns file output off.
    Safe to call repeatedly."""
    path = Path(path) if path is not None else None
    for h in logger.handlers:
        if isinstance(h, _FileAndRingHandler):
            h.path = path
            return
    logger.addHandler(_FileAndRingHandler(path))


def clear_log(path: Optional[Path] = None) -> None:
    RING.clear()
    if path is not None:
        with _LOG_LOCK:
            Path(path).unlink(missing_ok=True)
    logger.info("log cleared")


def recent_lines(path: Optional[Path] = None, n: Optional[int] = None) -> List[str]:
    """Last ``n`` lines of the log file, or of the in-memory buffer when the
    file does not exist (yet)."""
    if path is None or not Path(path).exists():
        return RING.tail(n)
    with _LOG_LOCK:
        lines = Path(path).read_text(encoding="utf-8").splitlines()
    return lines if n is None else lines[-n:] if n > 0 else []
