# medreminder/backup.py
# Plain-JSON backup of one profile: {"profile": ..., "medications": [...], "logs": [...]}
import json, re
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Tuple

from .config import LOGS_KEY, MEDICATIONS_KEY
from .errors import MalformedBackup
from .logs import logger
from .models import Medication, MedicationLog, Profile, iso_now, new_id
from .store import EntityStore

BACKUP_SUFFIX = ".txt"
_UNSAFE_NAME = re.compile(r"[^\w.-]+")


def export_profile(store: EntityStore, profile: Profile) -> str:
    payload = {
        "profile": profile.to_dict(),
        "medications": [m.to_dict() for m in store.medications(profile.id)],
        "logs": [l.to_dict() for l in store.logs(profile.id)],
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _parse(text: str) -> Tuple[dict, List[Medication], List[MedicationLog]]:
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise MalformedBackup(f"backup is not valid JSON: {e}") from e
    if not isinstance(data, dict) or not data.get("profile"):
        raise MalformedBackup("invalid backup file: missing profile data")

    profile = data["profile"]
    if not isinstance(profile, dict) or not isinstance(profile.get("name"), str):
        raise MalformedBackup("invalid backup file: profile has no name")

    raw_meds = data.get("medications") or []
    raw_logs = data.get("logs") or []
    if not isinstance(raw_meds, list) or not isinstance(raw_logs, list):
        raise MalformedBackup("invalid backup file: medications and logs must be lists")
    try:
        meds = [Medication.from_dict(d) for d in raw_meds]
        logs = [MedicationLog.from_dict(d) for d in raw_logs]
    except ValueError as e:
        raise MalformedBackup(f"invalid backup record: {e}") from e
    return profile, meds, logs


def _resolve_profile(store: EntityStore, raw: dict, now: datetime) -> Profile:
    name = raw["name"]
    existing = store.profiles()
    match = next((p for p in existing if p.name == name), None)
    if match is not None:
        logger.info(f"import merges into existing profile id={match.id} name={name!r}")
        return match

    profile_id = raw.get("id") if isinstance(raw.get("id"), str) and raw.get("id") else None
    if profile_id is None or any(p.id == profile_id for p in existing):
        # taken by a differently named profile
        profile_id = new_id(now)
        while any(p.id == profile_id for p in existing):
            profile_id = str(int(profile_id) + 1)
    created = raw.get("createdAt") if isinstance(raw.get("createdAt"), str) else None
    profile = Profile(id=profile_id, name=name, created_at=created or iso_now(now))
    store.add_profile(profile)
    logger.info(f"import created profile id={profile.id} name={name!r}")
    return profile


def import_backup(store: EntityStore, text: str,
                  clock: Callable[[], datetime] = datetime.now) -> Profile:
    """Load a backup, replacing the target profile's medications and logs.

    The target is the existing profile with the same *name*, else a new one.
    Everything is validated before the first write; a malformed backup raises
    MalformedBackup and leaves storage untouched.
    """
    raw_profile, meds, logs = _parse(text)
    target = _resolve_profile(store, raw_profile, clock())

    meds = [m.with_profile(target.id) for m in meds]
    logs = [l.with_profile(target.id) for l in logs]

    def _replace(imported):
        def fn(items):
            items[:] = [i for i in items if i.profile_id != target.id] + imported
            return len(imported)
        return fn

    store.mutate(MEDICATIONS_KEY, _replace(meds))
    store.mutate(LOGS_KEY, _replace(logs))
    logger.info(f"imported {len(meds)} medications, {len(logs)} logs into profile id={target.id}")
    return target


# -------------------------
# Files
# -------------------------
def backup_filename(profile: Profile) -> str:
    safe = _UNSAFE_NAME.sub("_", profile.name).strip("_") or profile.id
    return f"medreminder_{safe}{BACKUP_SUFFIX}"


def write_backup_file(store: EntityStore, profile: Profile, directory: Path) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / backup_filename(profile)
    path.write_text(export_profile(store, profile), encoding="utf-8")
    logger.info(f"backup written: {path}")
    return path


def read_backup_file(store: EntityStore, path: Path,
                     clock: Callable[[], datetime] = datetime.now) -> Profile:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise MalformedBackup(f"backup is not text: {e}") from e
    return import_backup(store, text, clock)
