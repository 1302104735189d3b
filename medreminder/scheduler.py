# medreminder/scheduler.py
import threading
from datetime import datetime
from typing import Callable, Optional

from .config import CATCHUP_INTERVAL_S, DEFAULT_DAYS_AHEAD
from .errors import NoActiveProfile
from .generator import LogGenerator
from .logs import logger
from .store import EntityStore


def whole_days_between(earlier: datetime, later: datetime) -> int:
    return (later.date() - earlier.date()).days


class GenerationScheduler:
    """Runs the log generator at most once per calendar day.

    The window is always rebuilt relative to today, so after a gap of N days
    the missed days are not backfilled.
    """

    def __init__(self, store: EntityStore, generator: LogGenerator,
                 clock: Callable[[], datetime] = datetime.now,
                 days_ahead: int = DEFAULT_DAYS_AHEAD):
        self.store = store
        self.generator = generator
        self.clock = clock
        self.days_ahead = days_ahead

    def is_due(self) -> bool:
        last = self.store.last_generation()
        if last is None:
            return True
        return whole_days_between(last, self.clock()) >= 1

    def ensure_current(self, profile_id: Optional[str] = None) -> bool:
        """Returns True when a generation pass ran."""
        if profile_id is None:
            active = self.store.active_profile()
            if active is None:
                raise NoActiveProfile()
            profile_id = active.id

        if not self.is_due():
            return False
        logger.info(f"daily log generation due profile={profile_id}")
        self.generator.generate(profile_id, self.days_ahead)
        return True


class CatchUpThread:
    """Re-checks the scheduler periodically while the app stays open."""

    def __init__(self, scheduler: GenerationScheduler, interval_s: float = CATCHUP_INTERVAL_S):
        self.scheduler = scheduler
        self.interval_s = interval_s
        self.running = False
        self.thread = None
        self._wake = threading.Event()

    def start(self):
        if self.running:
            return
        self.running = True
        self._wake.clear()
        self.thread = threading.Thread(target=self._loop, daemon=True)
        self.thread.start()
        logger.info("catch-up thread started")

    def stop(self):
        self.running = False
        self._wake.set()
        if self.thread:
            self.thread.join(timeout=2)

    def _loop(self):
        while True:
            self.check()
            self._wake.wait(self.interval_s)
            if not self.running:
                return

    def check(self) -> bool:
        try:
            return self.scheduler.ensure_current()
        except NoActiveProfile:
            return False
        except Exception:
            logger.exception("catch-up check failed")
            return False
