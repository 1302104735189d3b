# medreminder/kvstore.py
# Whole-blob key/value persistence. Each key holds one JSON text value.
import re
from pathlib import Path
from threading import RLock
from typing import Dict, Iterable, Optional

from cryptography.exceptions import InvalidTag

from .config import BLOB_SUFFIX, KEY_FILENAME, app_base_dir
from .crypto import CRYPTO_LOCK, aes_decrypt, aes_encrypt, atomic_write_bytes, get_or_create_key
from .errors import StorageReadError, StorageWriteError

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore:
    """get/set/remove over named text blobs. Writes are durable on return."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, text: str) -> None:
        raise NotImplementedError

    def remove(self, keys: Iterable[str]) -> None:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = RLock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, text: str) -> None:
        with self._lock:
            self._data[key] = text

    def remove(self, keys: Iterable[str]) -> None:
        with self._lock:
            for k in keys:
                self._data.pop(k, None)

    def keys(self):
        with self._lock:
            return sorted(self._data)


class EncryptedFileStore(KeyValueStore):
    """One AES-GCM encrypted file per key. The key name is bound as AAD so
    blobs cannot be swapped between keys on disk."""

    def __init__(self, base_dir: Path, key: bytes):
        self.base_dir = Path(base_dir)
        self.key = key
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def open_default(cls, base_dir: Optional[Path] = None) -> "EncryptedFileStore":
        base = Path(base_dir) if base_dir else app_base_dir()
        return cls(base, get_or_create_key(base / KEY_FILENAME))

    def path_for(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"invalid storage key {key!r}")
        return self.base_dir / f"{key}{BLOB_SUFFIX}"

    def get(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        with CRYPTO_LOCK:
            try:
                if not path.exists():
                    return None
                pt = aes_decrypt(path.read_bytes(), self.key, key.encode("utf-8"))
            except InvalidTag:
                raise StorageReadError(key, "blob failed authentication")
            except OSError as e:
                raise StorageReadError(key, str(e)) from e
        try:
            return pt.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StorageReadError(key, "blob is not utf-8") from e

    def set(self, key: str, text: str) -> None:
        path = self.path_for(key)
        enc = aes_encrypt(text.encode("utf-8"), self.key, key.encode("utf-8"))
        with CRYPTO_LOCK:
            try:
                atomic_write_bytes(path, enc)
            except OSError as e:
                raise StorageWriteError(key, str(e)) from e

    def remove(self, keys: Iterable[str]) -> None:
        with CRYPTO_LOCK:
            for key in keys:
                try:
                    self.path_for(key).unlink(missing_ok=True)
                except OSError as e:
                    raise StorageWriteError(key, str(e)) from e
