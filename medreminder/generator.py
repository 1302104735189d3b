# medreminder/generator.py
from datetime import date, datetime, timedelta
from threading import RLock
from typing import Callable, Iterable, List, Optional

from .config import DEFAULT_DAYS_AHEAD, LOGS_KEY, MEDICATIONS_KEY
from .logs import logger
from .models import (Medication, MedicationLog, local_date_string, make_log_id,
                     scheduled_time_for)
from .store import EntityStore, StoreResult

# generation runs for any profile are serialized; they share one logs blob
_GENERATE_LOCK = RLock()


def window_dates(today: date, days_ahead: int) -> List[str]:
    return [local_date_string(today + timedelta(days=i)) for i in range(max(0, days_ahead))]


def missing_logs(profile_id: str, medications: Iterable[Medication],
                 existing: Iterable[MedicationLog], today: date,
                 days_ahead: int = DEFAULT_DAYS_AHEAD) -> List[MedicationLog]:
    """Logs the window needs that neither ``existing`` nor an earlier entry
    in the result already covers, matched by id or by (medication, slot)."""
    seen_ids = set()
    seen_slots = set()
    for log in existing:
        seen_ids.add(log.id)
        seen_slots.add((log.medication_id, log.scheduled_time))

    out = []
    for date_str in window_dates(today, days_ahead):
        for med in medications:
            for t in med.times:
                log_id = make_log_id(med.id, t, date_str)
                scheduled = scheduled_time_for(date_str, t)
                if log_id in seen_ids or (med.id, scheduled) in seen_slots:
                    continue
                seen_ids.add(log_id)
                seen_slots.add((med.id, scheduled))
                out.append(MedicationLog(
                    id=log_id,
                    profile_id=profile_id,
                    medication_id=med.id,
                    scheduled_time=scheduled,
                    date=date_str,
                ))
    return out


class LogGenerator:
    def __init__(self, store: EntityStore, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.clock = clock

    def generate(self, profile_id: str, days_ahead: int = DEFAULT_DAYS_AHEAD,
                 medications: Optional[List[Medication]] = None) -> StoreResult:
        """Append the logs missing from ``profile_id``'s window starting today.

        ``medications`` narrows the pass to those records (used right after a
        medication is created) and such a partial pass leaves the
        last-generation timestamp alone. By default every medication of the
        profile is expanded. Logs of other profiles are carried through
        untouched.
        """
        with _GENERATE_LOCK, self.store.locked(LOGS_KEY):
            now = self.clock()
            full_pass = medications is None
            if full_pass:
                mr = self.store.read(MEDICATIONS_KEY)
                if not mr.ok:
                    logger.error(f"log generation for profile={profile_id} skipped: medications unreadable")
                    return mr
                medications = [m for m in mr.value if m.profile_id == profile_id]

            def _append(all_logs):
                existing = [l for l in all_logs if l.profile_id == profile_id]
                new = missing_logs(profile_id, medications, existing, now.date(), days_ahead)
                all_logs.extend(new)
                return new

            r = self.store.mutate(LOGS_KEY, _append)
            if not r.ok:
                logger.error(f"log generation for profile={profile_id} not persisted")
                return r

            if full_pass:
                self.store.set_last_generation(now)
            logger.info(f"generated {len(r.value)} logs profile={profile_id} days={days_ahead}")
            return r
