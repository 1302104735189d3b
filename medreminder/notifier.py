# medreminder/notifier.py
# Reminder scheduling. Android uses AlarmManager broadcasts to AlarmReceiver;
# elsewhere alarms are simulated through the log.
import hashlib
from datetime import datetime, timedelta
from threading import RLock
from typing import Callable, Dict, List

from .config import JAVA_ALARM_RECEIVER, autoclass, is_android
from .logs import logger
from .models import Medication

try:
    from jnius import cast
except Exception:
    cast = None

_SCHEDULE_LOCK = RLock()

REMINDER_TITLE = "Medication Reminder"


class Notifier:
    def schedule(self, medication: Medication) -> None:
        raise NotImplementedError

    def cancel(self, medication_id: str) -> None:
        raise NotImplementedError

    def cancel_all(self) -> None:
        raise NotImplementedError


def stable_alarm_request_code(medication_id: str, time_hm: str) -> int:
    # Stable per medication + time of day, so rescheduling replaces the alarm
    key = f"{medication_id}|{time_hm}"
    h = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(h[:4], "big") & 0x7FFFFFFF


def next_occurrence(time_hm: str, now: datetime) -> datetime:
    h, m = map(int, time_hm.split(":"))
    dt = now.replace(hour=h, minute=m, second=0, microsecond=0)
    if dt <= now:
        dt += timedelta(days=1)
    return dt


def reminder_body(medication: Medication) -> str:
    return f"Time to take {medication.name} - {medication.dose}".strip(" -")


def android_sdk_int() -> int:
    if not is_android():
        return 0
    try:
        BuildVERSION = autoclass("android.os.Build$VERSION")
        return int(BuildVERSION.SDK_INT)
    except Exception:
        return 0


class AndroidAlarmNotifier(Notifier):
    """One exact alarm per (medication, time), aimed at its next occurrence.

    Alarms are one-shot; the app re-schedules every medication on activation.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock
        self._codes: Dict[str, List[int]] = {}

    # -------------------------
    # Notifier contract
    # -------------------------
    def schedule(self, medication: Medication) -> None:
        with _SCHEDULE_LOCK:
            self.cancel(medication.id)
            if not medication.schedulable:
                return
            now = self.clock()
            codes = []
            for t in medication.times:
                rc = stable_alarm_request_code(medication.id, t)
                extras = {"medicationId": medication.id, "time": t}
                self._set_alarm(next_occurrence(t, now), REMINDER_TITLE,
                                reminder_body(medication), rc, extras)
                codes.append(rc)
            self._codes[medication.id] = codes

    def cancel(self, medication_id: str) -> None:
        with _SCHEDULE_LOCK:
            for rc in self._codes.pop(medication_id, []):
                self._cancel_alarm(rc)

    def cancel_all(self) -> None:
        with _SCHEDULE_LOCK:
            for med_id in list(self._codes):
                self.cancel(med_id)

    def scheduled(self) -> Dict[str, List[int]]:
        with _SCHEDULE_LOCK:
            return {k: list(v) for k, v in self._codes.items()}

    # -------------------------
    # AlarmManager
    # -------------------------
    def _pending_intent(self, request_code: int, extras: Dict[str, str], title="", body=""):
        PythonActivity = autoclass("org.kivy.android.PythonActivity")
        app_ctx = PythonActivity.mActivity.getApplicationContext()
        Intent = autoclass("android.content.Intent")
        PendingIntent = autoclass("android.app.PendingIntent")

        intent = Intent()
        intent.setClassName(app_ctx, JAVA_ALARM_RECEIVER)
        intent.putExtra("title", title)
        intent.putExtra("body", body)
        for k, v in extras.items():
            intent.putExtra(k, v)

        flags = PendingIntent.FLAG_UPDATE_CURRENT
        if android_sdk_int() >= 23:
            flags |= PendingIntent.FLAG_IMMUTABLE
        return app_ctx, PendingIntent.getBroadcast(app_ctx, int(request_code), intent, int(flags))

    def _alarm_manager(self, app_ctx):
        AlarmManager = autoclass("android.app.AlarmManager")
        Context = autoclass("android.content.Context")
        return cast(AlarmManager, app_ctx.getSystemService(Context.ALARM_SERVICE))

    def _set_alarm(self, at_time: datetime, title: str, body: str, request_code: int,
                   extras: Dict[str, str]):
        if not is_android():
            logger.info(f"[Simulated alarm] {title} - {body} @ {at_time} rc={request_code}")
            return
        try:
            AlarmManager = autoclass("android.app.AlarmManager")
            app_ctx, pi = self._pending_intent(request_code, extras, title, body)
            am = self._alarm_manager(app_ctx)
            trigger_ms = int(at_time.timestamp() * 1000)

            sdk = android_sdk_int()
            if sdk >= 31 and not am.canScheduleExactAlarms():
                am.setAndAllowWhileIdle(AlarmManager.RTC_WAKEUP, trigger_ms, pi)
                logger.info(f"alarm idle(fallback) rc={request_code} @ {at_time}")
            elif sdk >= 23:
                am.setExactAndAllowWhileIdle(AlarmManager.RTC_WAKEUP, trigger_ms, pi)
                logger.info(f"alarm exact+idle rc={request_code} @ {at_time}")
            else:
                am.setExact(AlarmManager.RTC_WAKEUP, trigger_ms, pi)
                logger.info(f"alarm exact rc={request_code} @ {at_time}")
        except Exception:
            logger.exception("alarm scheduling failed")

    def _cancel_alarm(self, request_code: int):
        if not is_android():
            logger.info(f"[Simulated alarm] cancelled rc={request_code}")
            return
        try:
            app_ctx, pi = self._pending_intent(request_code, {})
            self._alarm_manager(app_ctx).cancel(pi)
        except Exception:
            logger.exception("alarm cancel failed")


class LoggingNotifier(Notifier):
    """Records reminders in the log only; used headless and by the CLI."""

    def schedule(self, medication: Medication) -> None:
        logger.info(f"reminders for {medication.name} at {', '.join(medication.times)}")

    def cancel(self, medication_id: str) -> None:
        logger.info(f"reminders cancelled medication={medication_id}")

    def cancel_all(self) -> None:
        logger.info("all reminders cancelled")
