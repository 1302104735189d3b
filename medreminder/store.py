# medreminder/store.py
# CRUD over the profiles / medications / logs collections. Every mutation is a
# read-modify-write of the whole collection blob under that collection's lock.
import json
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

from .config import (ACTIVE_PROFILE_KEY, DATA_KEYS, DEFAULT_POLICY, LAST_LOG_GENERATION_KEY,
                     LOGS_KEY, MEDICATIONS_KEY, PROFILES_KEY, StorePolicy)
from .errors import StorageError, StorageReadError, StorageWriteError
from .kvstore import KeyValueStore
from .logs import logger
from .models import Medication, MedicationLog, Profile, iso_now, parse_timestamp

COLLECTIONS = {
    PROFILES_KEY: Profile,
    MEDICATIONS_KEY: Medication,
    LOGS_KEY: MedicationLog,
}


@dataclass
class StoreResult:
    ok: bool
    value: Any = None
    error: Optional[StorageError] = None

    def __bool__(self) -> bool:
        return self.ok


class EntityStore:
    def __init__(self, kv: KeyValueStore, policy: StorePolicy = DEFAULT_POLICY):
        self.kv = kv
        self.policy = policy
        self._locks: Dict[str, RLock] = {k: RLock() for k in COLLECTIONS}
        self._locks[ACTIVE_PROFILE_KEY] = RLock()

    @contextmanager
    def locked(self, collection: str):
        with self._locks[collection]:
            yield

    # -------------------------
    # Boundary: raw read / write
    # -------------------------
    def _read_failed(self, err: StorageReadError, empty) -> StoreResult:
        if not self.policy.swallow_read_errors:
            raise err
        logger.error(f"read failed, using empty value: {err}")
        return StoreResult(False, empty, err)

    def _write_failed(self, err: StorageWriteError) -> StoreResult:
        if not self.policy.swallow_write_errors:
            raise err
        logger.error(f"write failed, change not persisted: {err}")
        return StoreResult(False, None, err)

    def read(self, collection: str) -> StoreResult:
        cls = COLLECTIONS[collection]
        try:
            text = self.kv.get(collection)
            if not text:
                return StoreResult(True, [])
            raw = json.loads(text)
            if not isinstance(raw, list):
                raise ValueError("collection blob is not a list")
            return StoreResult(True, [cls.from_dict(d) for d in raw])
        except StorageReadError as e:
            return self._read_failed(e, [])
        except (ValueError, TypeError) as e:
            return self._read_failed(StorageReadError(collection, f"undecodable: {e}"), [])

    def save(self, collection: str, items: List[Any]) -> StoreResult:
        text = json.dumps([i.to_dict() for i in items], ensure_ascii=False)
        try:
            self.kv.set(collection, text)
        except StorageWriteError as e:
            return self._write_failed(e)
        return StoreResult(True, len(items))

    def mutate(self, collection: str, fn: Callable[[List[Any]], Any]) -> StoreResult:
        """Apply ``fn`` to the full collection and persist it.

        ``fn`` edits the list in place and returns the result value. A failed
        read aborts the write so an unreadable blob is never clobbered.
        """
        with self.locked(collection):
            r = self.read(collection)
            if not r.ok:
                return r
            items = r.value
            value = fn(items)
            w = self.save(collection, items)
            if not w.ok:
                return w
            return StoreResult(True, value)

    # -------------------------
    # Generic contract
    # -------------------------
    def list(self, collection: str, profile_id: Optional[str] = None) -> List[Any]:
        items = self.read(collection).value
        if profile_id is not None:
            items = [i for i in items if i.profile_id == profile_id]
        return items

    def add(self, collection: str, entity) -> StoreResult:
        return self.mutate(collection, lambda items: items.append(entity))

    def update(self, collection: str, entity) -> StoreResult:
        """Replace by id. A missing id is a no-op (value False), not an error,
        and nothing is written back."""
        with self.locked(collection):
            r = self.read(collection)
            if not r.ok:
                return r
            items = r.value
            idx = next((i for i, cur in enumerate(items) if cur.id == entity.id), None)
            if idx is None:
                return StoreResult(True, False)
            items[idx] = entity
            w = self.save(collection, items)
            if not w.ok:
                return w
            return StoreResult(True, True)

    def remove(self, collection: str, predicate: Callable[[Any], bool]) -> StoreResult:
        def _remove(items):
            keep = [i for i in items if not predicate(i)]
            removed = len(items) - len(keep)
            items[:] = keep
            return removed
        return self.mutate(collection, _remove)

    # -------------------------
    # Profiles
    # -------------------------
    def profiles(self) -> List[Profile]:
        return self.list(PROFILES_KEY)

    def find_profile(self, profile_id: str) -> Optional[Profile]:
        return next((p for p in self.profiles() if p.id == profile_id), None)

    def find_profile_by_name(self, name: str) -> Optional[Profile]:
        return next((p for p in self.profiles() if p.name == name), None)

    def add_profile(self, profile: Profile) -> StoreResult:
        return self.add(PROFILES_KEY, profile)

    def update_profile(self, profile: Profile) -> StoreResult:
        return self.update(PROFILES_KEY, profile)

    def delete_profile(self, profile_id: str) -> StoreResult:
        results = [
            self.remove(PROFILES_KEY, lambda p: p.id == profile_id),
            self.remove(MEDICATIONS_KEY, lambda m: m.profile_id == profile_id),
            self.remove(LOGS_KEY, lambda l: l.profile_id == profile_id),
        ]
        active = self.active_profile()
        if active is not None and active.id == profile_id:
            results.append(self.set_active_profile(None))
        failed = next((r for r in results if not r.ok), None)
        if failed is not None:
            return failed
        logger.info(f"deleted profile id={profile_id}")
        return StoreResult(True, profile_id)

    # -------------------------
    # Medications
    # -------------------------
    def medications(self, profile_id: Optional[str] = None) -> List[Medication]:
        return self.list(MEDICATIONS_KEY, profile_id)

    def find_medication(self, medication_id: str) -> Optional[Medication]:
        return next((m for m in self.medications() if m.id == medication_id), None)

    def add_medication(self, medication: Medication) -> StoreResult:
        return self.add(MEDICATIONS_KEY, medication)

    def update_medication(self, medication: Medication) -> StoreResult:
        return self.update(MEDICATIONS_KEY, medication)

    def delete_medication(self, medication_id: str) -> StoreResult:
        # logs for the medication are kept
        return self.remove(MEDICATIONS_KEY, lambda m: m.id == medication_id)

    # -------------------------
    # Logs
    # -------------------------
    def logs(self, profile_id: Optional[str] = None) -> List[MedicationLog]:
        return self.list(LOGS_KEY, profile_id)

    def logs_by_medication(self, medication_id: str) -> List[MedicationLog]:
        return [l for l in self.logs() if l.medication_id == medication_id]

    def find_log(self, log_id: str) -> Optional[MedicationLog]:
        return next((l for l in self.logs() if l.id == log_id), None)

    def add_log(self, log: MedicationLog) -> StoreResult:
        return self.add(LOGS_KEY, log)

    def update_log(self, log: MedicationLog) -> StoreResult:
        return self.update(LOGS_KEY, log)

    # -------------------------
    # Singletons
    # -------------------------
    def _get_value(self, key: str) -> StoreResult:
        try:
            text = self.kv.get(key)
            return StoreResult(True, json.loads(text) if text else None)
        except StorageReadError as e:
            return self._read_failed(e, None)
        except ValueError as e:
            return self._read_failed(StorageReadError(key, f"undecodable: {e}"), None)

    def _set_value(self, key: str, value) -> StoreResult:
        try:
            if value is None:
                self.kv.remove([key])
            else:
                self.kv.set(key, json.dumps(value, ensure_ascii=False))
        except StorageWriteError as e:
            return self._write_failed(e)
        return StoreResult(True, value)

    def active_profile(self) -> Optional[Profile]:
        raw = self._get_value(ACTIVE_PROFILE_KEY).value
        if raw is None:
            return None
        try:
            return Profile.from_dict(raw)
        except ValueError:
            logger.exception("active profile pointer is corrupt")
            return None

    def set_active_profile(self, profile: Optional[Profile]) -> StoreResult:
        with self.locked(ACTIVE_PROFILE_KEY):
            return self._set_value(ACTIVE_PROFILE_KEY, profile.to_dict() if profile else None)

    def clear_active_profile(self) -> StoreResult:
        return self.set_active_profile(None)

    def last_generation(self) -> Optional[datetime]:
        raw = self._get_value(LAST_LOG_GENERATION_KEY).value
        if not isinstance(raw, str):
            return None
        try:
            return parse_timestamp(raw)
        except ValueError:
            logger.exception("last generation timestamp is corrupt")
            return None

    def set_last_generation(self, when: datetime) -> StoreResult:
        return self._set_value(LAST_LOG_GENERATION_KEY, iso_now(when))

    def clear_all_data(self) -> StoreResult:
        with self.locked(PROFILES_KEY), self.locked(MEDICATIONS_KEY), self.locked(LOGS_KEY):
            try:
                self.kv.remove(list(DATA_KEYS))
            except StorageWriteError as e:
                return self._write_failed(e)
        logger.info("cleared all data")
        return StoreResult(True)
