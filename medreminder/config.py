# medreminder/config.py
import os, uuid
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

try:
    from jnius import autoclass
except Exception:
    autoclass = None

# -------------------------
# Package identity (for Java)
# -------------------------
PACKAGE_DOMAIN = "org.example"
PACKAGE_NAME = "medreminder"
JAVA_PACKAGE = f"{PACKAGE_DOMAIN}.{PACKAGE_NAME}"
JAVA_ALARM_RECEIVER = f"{JAVA_PACKAGE}.AlarmReceiver"

# -------------------------
# Storage keys / defaults
# -------------------------
PROFILES_KEY = "profiles"
MEDICATIONS_KEY = "medications"
LOGS_KEY = "logs"
ACTIVE_PROFILE_KEY = "active_profile"
LAST_LOG_GENERATION_KEY = "last_log_generation"

DATA_KEYS = (PROFILES_KEY, MEDICATIONS_KEY, LOGS_KEY, ACTIVE_PROFILE_KEY)

DEFAULT_DAYS_AHEAD = 7
CATCHUP_INTERVAL_S = 60 * 15
LOG_RING_LINES = 800

KEY_FILENAME = ".enc_key"
LOG_FILENAME = "app.log"
BLOB_SUFFIX = ".json.aes"


@dataclass(frozen=True)
class StorePolicy:
    """What the entity store does with a storage failure.

    True absorbs it (empty collection on read, logged no-op on write);
    False re-raises it to the caller.
    """
    swallow_read_errors: bool = True
    swallow_write_errors: bool = True


DEFAULT_POLICY = StorePolicy()
STRICT_POLICY = StorePolicy(swallow_read_errors=False, swallow_write_errors=False)


def is_android() -> bool:
    return autoclass is not None and "ANDROID_ARGUMENT" in os.environ


def _is_writable_dir(p: Path) -> bool:
    try:
        p.mkdir(parents=True, exist_ok=True)
        t = p / f".writetest.{uuid.uuid4().hex}"
        t.write_text("ok", encoding="utf-8")
        t.unlink(missing_ok=True)
        return True
    except OSError:
        return False


def _android_files_dir() -> Optional[Path]:
    if not is_android():
        return None
    try:
        PythonActivity = autoclass("org.kivy.android.PythonActivity")
        activity = PythonActivity.mActivity
        d = activity.getFilesDir().getAbsolutePath()
        return Path(str(d))
    except Exception:
        return None


def app_base_dir() -> Path:
    override = os.environ.get("MEDREMINDER_DATA_DIR")
    if override:
        d = Path(override)
        if _is_writable_dir(d):
            return d

    p = os.environ.get("ANDROID_PRIVATE")
    if p:
        d = Path(p) / "medreminder_data"
        if _is_writable_dir(d):
            return d

    af = _android_files_dir()
    if af:
        d = af / "medreminder_data"
        if _is_writable_dir(d):
            return d

    d = Path(__file__).resolve().parent.parent / "medreminder_data"
    d.mkdir(parents=True, exist_ok=True)
    return d
