# medreminder/service.py
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from . import backup
from .config import DEFAULT_DAYS_AHEAD
from .errors import InvalidMedication, NoActiveProfile
from .generator import LogGenerator
from .logs import logger
from .models import (HHMM, Medication, MedicationLog, Profile, Route, iso_now,
                     local_date_string, make_log_id, new_id, normalize_times,
                     parse_timestamp)
from .notifier import Notifier
from .scheduler import GenerationScheduler
from .store import EntityStore


def sort_for_history(logs: Iterable[MedicationLog], now: datetime) -> List[MedicationLog]:
    """Past doses first (newest first), then upcoming ones (soonest first)."""
    past, upcoming = [], []
    for log in logs:
        (past if log.scheduled_at <= now else upcoming).append(log)
    past.sort(key=lambda l: l.scheduled_at, reverse=True)
    upcoming.sort(key=lambda l: l.scheduled_at)
    return past + upcoming


class MedicationService:
    def __init__(self, store: EntityStore, notifier: Notifier,
                 clock: Callable[[], datetime] = datetime.now,
                 days_ahead: int = DEFAULT_DAYS_AHEAD):
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.days_ahead = days_ahead
        self.generator = LogGenerator(store, clock)
        self.scheduler = GenerationScheduler(store, self.generator, clock, days_ahead)

    # -------------------------
    # Profiles
    # -------------------------
    def create_profile(self, name: str) -> Profile:
        name = (name or "").strip()
        if not name:
            raise ValueError("profile name is required")
        now = self.clock()
        taken = {p.id for p in self.store.profiles()}
        profile_id = new_id(now)
        while profile_id in taken:
            profile_id = str(int(profile_id) + 1)
        profile = Profile(id=profile_id, name=name, created_at=iso_now(now))
        self.store.add_profile(profile)
        logger.info(f"created profile id={profile.id} name={name!r}")
        return profile

    def activate_profile(self, profile: Profile) -> None:
        self.store.set_active_profile(profile)
        self.generator.generate(profile.id, self.days_ahead)
        self.resync_reminders(profile.id)
        logger.info(f"active profile id={profile.id}")

    def require_active_profile(self) -> Profile:
        profile = self.store.active_profile()
        if profile is None:
            raise NoActiveProfile()
        return profile

    def delete_profile(self, profile_id: str) -> None:
        for med in self.store.medications(profile_id):
            self.notifier.cancel(med.id)
        self.store.delete_profile(profile_id)

    # -------------------------
    # Medications
    # -------------------------
    def add_medication(self, profile: Optional[Profile], name: str, dose: str,
                       route=Route.TABLET, times: Iterable[str] = (),
                       notes: str = "") -> Medication:
        if profile is None:
            raise NoActiveProfile()
        name, dose = (name or "").strip(), (dose or "").strip()
        if not name:
            raise InvalidMedication("name", "medication name is required")
        if not dose:
            raise InvalidMedication("dose", "dose is required")
        times = list(times)
        if not times:
            raise InvalidMedication("times", "add at least one time")
        bad = [t for t in times if not isinstance(t, str) or not HHMM.match(t)]
        if bad:
            raise InvalidMedication("times", f"invalid time {bad[0]!r}, expected HH:MM")
        try:
            route = Route(route)
        except ValueError:
            raise InvalidMedication("route", f"unknown route {route!r}")

        now = self.clock()
        taken = {m.id for m in self.store.medications()}
        med_id = new_id(now)
        while med_id in taken:
            med_id = str(int(med_id) + 1)

        med = Medication(
            id=med_id,
            profile_id=profile.id,
            name=name,
            dose=dose,
            route=route,
            times=normalize_times(times),
            notes=(notes or "").strip(),
            created_at=iso_now(now),
        )
        r = self.store.add_medication(med)
        if not r.ok:
            logger.error(f"medication {name!r} not saved; skipping logs and reminders")
            return med
        logger.info(f"added medication id={med.id} {name} times={med.times}")
        # a failure here leaves the medication without logs until the next daily run
        self.generator.generate(profile.id, self.days_ahead, medications=[med])
        self.notifier.schedule(med)
        return med

    def delete_medication(self, medication_id: str) -> None:
        self.store.delete_medication(medication_id)
        self.notifier.cancel(medication_id)
        logger.info(f"deleted medication id={medication_id}")

    def resync_reminders(self, profile_id: str) -> int:
        meds = self.store.medications(profile_id)
        for med in meds:
            self.notifier.schedule(med)
        return len(meds)

    # -------------------------
    # Logs
    # -------------------------
    def set_log_taken(self, log_id: str, taken: bool,
                      taken_time: Optional[datetime] = None) -> Optional[MedicationLog]:
        log = self.store.find_log(log_id)
        if log is None:
            logger.info(f"log not found id={log_id}")
            return None
        when = iso_now(taken_time or self.clock()) if taken else None
        updated = log.mark(taken, when)
        self.store.update_log(updated)
        logger.info(f"dose log: id={log_id} taken={taken} at={when}")
        return updated

    def mark_taken_now(self, log_id: str) -> Optional[MedicationLog]:
        return self.set_log_taken(log_id, True, self.clock())

    def log_id_for_reminder(self, medication_id: str, time_hm: str) -> str:
        """Today's log id for a tapped reminder carrying (medicationId, time)."""
        return make_log_id(medication_id, time_hm, local_date_string(self.clock().date()))

    # -------------------------
    # Views
    # -------------------------
    def history(self, profile_id: str, medication_id: Optional[str] = None) -> List[MedicationLog]:
        logs = self.store.logs(profile_id)
        if medication_id is not None:
            logs = [l for l in logs if l.medication_id == medication_id]
        return sort_for_history(logs, self.clock())

    def next_dose_time(self, medication: Medication,
                       logs: Iterable[MedicationLog]) -> Optional[Tuple[str, bool]]:
        """(HH:MM, is_tomorrow) for the next dose, or None with no times."""
        if not medication.times:
            return None
        now = self.clock()
        today = local_date_string(now.date())
        tomorrow = local_date_string(now.date() + timedelta(days=1))
        mine = [l for l in logs if l.medication_id == medication.id]

        pending = sorted((l for l in mine if l.date == today and not l.taken),
                         key=lambda l: l.scheduled_time)
        nxt = next((l for l in pending if l.scheduled_at > now), None)
        if nxt is not None:
            return nxt.time, False

        upcoming = sorted((l for l in mine if l.date == tomorrow), key=lambda l: l.scheduled_time)
        if upcoming:
            return upcoming[0].time, True
        return medication.times[0], True

    def last_taken(self, medication: Medication,
                   logs: Iterable[MedicationLog]) -> Optional[MedicationLog]:
        taken = [l for l in logs if l.medication_id == medication.id and l.taken]
        if not taken:
            return None
        return max(taken, key=lambda l: parse_timestamp(l.taken_time or l.scheduled_time))

    # -------------------------
    # Lifecycle
    # -------------------------
    def on_app_activated(self) -> bool:
        """Daily catch-up plus reminder resync for the active profile."""
        profile = self.require_active_profile()
        ran = self.scheduler.ensure_current(profile.id)
        self.resync_reminders(profile.id)
        return ran

    def clear_all_data(self) -> None:
        self.notifier.cancel_all()
        self.store.clear_all_data()

    # -------------------------
    # Backup
    # -------------------------
    def export_backup(self, profile: Profile) -> str:
        return backup.export_profile(self.store, profile)

    def write_backup(self, profile: Profile, directory: Path) -> Path:
        return backup.write_backup_file(self.store, profile, directory)

    def import_backup(self, text: str) -> Profile:
        profile = backup.import_backup(self.store, text, self.clock)
        self.activate_profile(profile)
        return profile

    def read_backup(self, path: Path) -> Profile:
        profile = backup.read_backup_file(self.store, path, self.clock)
        self.activate_profile(profile)
        return profile
