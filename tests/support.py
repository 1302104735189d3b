from datetime import datetime, timedelta

from medreminder.errors import StorageReadError, StorageWriteError
from medreminder.kvstore import MemoryStore
from medreminder.notifier import Notifier


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw):
        self.now = self.now + timedelta(**kw)


class FlakyStore(MemoryStore):
    def __init__(self, initial=None):
        super().__init__(initial)
        self.fail_get = set()
        self.fail_set = set()
        self.sets = []

    def get(self, key):
        if key in self.fail_get:
            raise StorageReadError(key, "simulated read failure")
        return super().get(key)

    def set(self, key, text):
        if key in self.fail_set:
            raise StorageWriteError(key, "simulated write failure")
        self.sets.append(key)
        super().set(key, text)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.scheduled = []
        self.cancelled = []
        self.cancelled_all = 0

    def schedule(self, medication):
        self.scheduled.append(medication.id)

    def cancel(self, medication_id):
        self.cancelled.append(medication_id)

    def cancel_all(self):
        self.cancelled_all += 1
