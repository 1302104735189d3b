# medreminder/models.py
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class Route(str, Enum):
    TABLET = "Tablet"
    SYRUP = "Spoon/Syrup"
    INTRAMUSCULAR = "Intramuscular Injection"
    INTRAVENOUS = "Intravenous Injection"
    INHALER = "Inhaler"
    DROP = "Drop"
    CREAM = "Cream"


# -------------------------
# Ids / dates
# -------------------------
def local_date_string(d: date) -> str:
    return d.strftime("%Y-%m-%d")


def make_log_id(medication_id: str, time_hm: str, date_str: str) -> str:
    return f"{medication_id}-{time_hm}-{date_str}"


def scheduled_time_for(date_str: str, time_hm: str) -> str:
    return f"{date_str}T{time_hm}:00"


def iso_now(now: datetime) -> str:
    return now.isoformat(timespec="seconds")


def new_id(now: datetime) -> str:
    # epoch milliseconds, same shape as ids in existing backups
    return str(int(now.timestamp() * 1000))


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string into naive local wall-clock time.

    Offset-aware values (``...Z`` or ``+hh:mm``) are converted to local time
    first, so backups written by other clients compare on the same calendar.
    """
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt


def normalize_times(times) -> List[str]:
    out = set()
    for t in times:
        if not isinstance(t, str) or not HHMM.match(t):
            raise ValueError(f"invalid time {t!r}, expected HH:MM")
        out.add(t)
    return sorted(out)


def _req(d: Dict[str, Any], key: str, kind=str):
    v = d.get(key)
    if not isinstance(v, kind):
        raise ValueError(f"field {key!r} missing or not {kind.__name__}")
    return v


# -------------------------
# Entities
# -------------------------
@dataclass
class Profile:
    id: str
    name: str
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "createdAt": self.created_at}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Profile":
        if not isinstance(d, dict):
            raise ValueError("profile must be an object")
        return cls(id=_req(d, "id"), name=_req(d, "name"), created_at=d.get("createdAt") or "")


@dataclass
class Medication:
    id: str
    profile_id: str
    name: str
    dose: str
    route: Route
    times: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    created_at: str = ""

    def __post_init__(self):
        self.route = Route(self.route)
        self.times = normalize_times(self.times)

    @property
    def schedulable(self) -> bool:
        return bool(self.times)

    def with_profile(self, profile_id: str) -> "Medication":
        return replace(self, profile_id=profile_id)

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "id": self.id,
            "profileId": self.profile_id,
            "name": self.name,
            "dose": self.dose,
            "route": self.route.value,
            "times": list(self.times),
        }
        if self.notes is not None:
            d["notes"] = self.notes
        d["createdAt"] = self.created_at
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Medication":
        if not isinstance(d, dict):
            raise ValueError("medication must be an object")
        return cls(
            id=_req(d, "id"),
            profile_id=d.get("profileId") or "",
            name=_req(d, "name"),
            dose=d.get("dose") or "",
            route=d.get("route") or Route.TABLET,
            times=_req(d, "times", list),
            notes=d.get("notes"),
            created_at=d.get("createdAt") or "",
        )


@dataclass
class MedicationLog:
    id: str
    profile_id: str
    medication_id: str
    scheduled_time: str
    date: str
    taken: bool = False
    taken_time: Optional[str] = None

    def __post_init__(self):
        if not self.taken:
            self.taken_time = None
        elif not self.taken_time:
            raise ValueError(f"log {self.id}: taken without takenTime")

    @property
    def time(self) -> str:
        return self.scheduled_time[11:16]

    @property
    def scheduled_at(self) -> datetime:
        return parse_timestamp(self.scheduled_time)

    def with_profile(self, profile_id: str) -> "MedicationLog":
        return replace(self, profile_id=profile_id)

    def mark(self, taken: bool, taken_time: Optional[str] = None) -> "MedicationLog":
        return replace(self, taken=taken, taken_time=taken_time if taken else None)

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "id": self.id,
            "profileId": self.profile_id,
            "medicationId": self.medication_id,
            "scheduledTime": self.scheduled_time,
            "taken": self.taken,
        }
        if self.taken_time is not None:
            d["takenTime"] = self.taken_time
        d["date"] = self.date
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MedicationLog":
        if not isinstance(d, dict):
            raise ValueError("log must be an object")
        scheduled = _req(d, "scheduledTime")
        parse_timestamp(scheduled)
        log_date = d.get("date") or scheduled[:10]
        if log_date != scheduled[:10]:
            raise ValueError(f"date {log_date!r} does not match scheduledTime {scheduled!r}")
        taken = d.get("taken", False)
        if not isinstance(taken, bool):
            raise ValueError(f"field 'taken' must be true or false, got {taken!r}")
        taken_time = d.get("takenTime")
        if taken_time is not None:
            if not isinstance(taken_time, str):
                raise ValueError("field 'takenTime' must be a string")
            parse_timestamp(taken_time)
        return cls(
            id=_req(d, "id"),
            profile_id=d.get("profileId") or "",
            medication_id=_req(d, "medicationId"),
            scheduled_time=scheduled,
            date=log_date,
            taken=taken,
            taken_time=taken_time,
        )
