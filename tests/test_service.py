import json
import unittest
from datetime import datetime

from medreminder.errors import InvalidMedication, MalformedBackup, NoActiveProfile
from medreminder.models import MedicationLog, Route
from medreminder.service import MedicationService, sort_for_history
from medreminder.store import EntityStore

from tests.support import FixedClock, FlakyStore, RecordingNotifier


class TestMedicationService(unittest.TestCase):
    def setUp(self):
        self.kv = FlakyStore()
        self.store = EntityStore(self.kv)
        self.clock = FixedClock(datetime(2024, 1, 1, 10, 15))
        self.notifier = RecordingNotifier()
        self.svc = MedicationService(self.store, self.notifier, self.clock)
        self.profile = self.svc.create_profile("Ana")

    def add(self, times=("08:00", "20:00"), **kw):
        kw.setdefault("name", "Aspirin")
        kw.setdefault("dose", "100 mg")
        return self.svc.add_medication(self.profile, times=list(times), **kw)

    # -------------------------
    # Profiles
    # -------------------------
    def test_create_profile(self):
        self.assertEqual("Ana", self.profile.name)
        self.assertEqual("2024-01-01T10:15:00", self.profile.created_at)
        other = self.svc.create_profile("  Ben ")
        self.assertEqual("Ben", other.name)
        self.assertNotEqual(self.profile.id, other.id)
        with self.assertRaises(ValueError):
            self.svc.create_profile("   ")

    def test_activate_profile_generates_window(self):
        med = self.add()
        self.store.remove("logs", lambda l: True)
        self.svc.activate_profile(self.profile)
        self.assertEqual(self.profile, self.store.active_profile())
        self.assertEqual(14, len(self.store.logs(self.profile.id)))
        self.assertIn(med.id, self.notifier.scheduled)

    def test_require_active_profile(self):
        with self.assertRaises(NoActiveProfile):
            self.svc.require_active_profile()

    def test_delete_profile_cancels_reminders(self):
        med = self.add()
        self.store.set_active_profile(self.profile)
        self.svc.delete_profile(self.profile.id)
        self.assertEqual([med.id], self.notifier.cancelled)
        self.assertEqual([], self.store.logs())
        self.assertIsNone(self.store.active_profile())

    # -------------------------
    # Medications
    # -------------------------
    def test_add_medication_creates_week_and_schedules(self):
        med = self.add(times=["20:00", "08:00", "08:00"], route="Inhaler", notes="  after food ")
        self.assertEqual(["08:00", "20:00"], med.times)
        self.assertIs(Route.INHALER, med.route)
        self.assertEqual("after food", med.notes)
        self.assertEqual([med], self.store.medications(self.profile.id))
        logs = self.store.logs_by_medication(med.id)
        self.assertEqual(14, len(logs))
        self.assertIn(f"{med.id}-08:00-2024-01-01", {l.id for l in logs})
        self.assertEqual([med.id], self.notifier.scheduled)

    def test_add_medication_then_daily_run_adds_nothing(self):
        med = self.add()
        r = self.svc.generator.generate(self.profile.id)
        self.assertEqual([], r.value)
        self.assertEqual(14, len(self.store.logs_by_medication(med.id)))

    def test_add_medication_ids_are_unique(self):
        a, b = self.add(), self.add(name="Other")
        self.assertNotEqual(a.id, b.id)

    def test_add_medication_validation(self):
        cases = [
            (dict(name=" "), "name"),
            (dict(dose=""), "dose"),
            (dict(times=[]), "times"),
            (dict(times=["8am"]), "times"),
            (dict(route="Patch"), "route"),
        ]
        for kw, field in cases:
            with self.subTest(field=field):
                with self.assertRaises(InvalidMedication) as cm:
                    self.add(**kw)
                self.assertEqual(field, cm.exception.field)
        self.assertEqual([], self.store.medications())

    def test_add_medication_needs_profile(self):
        with self.assertRaises(NoActiveProfile):
            self.svc.add_medication(None, "x", "1", times=["08:00"])

    def test_failed_log_write_leaves_medication_for_backfill(self):
        self.kv.fail_set.add("logs")
        med = self.add()
        self.assertEqual([med], self.store.medications())
        self.assertEqual([], self.store.logs())

        self.kv.fail_set.clear()
        self.store.set_active_profile(self.profile)
        self.assertTrue(self.svc.on_app_activated())
        self.assertEqual(14, len(self.store.logs_by_medication(med.id)))

    def test_delete_medication(self):
        med = self.add()
        self.svc.delete_medication(med.id)
        self.assertEqual([], self.store.medications())
        self.assertEqual([med.id], self.notifier.cancelled)
        self.assertEqual(14, len(self.store.logs_by_medication(med.id)))

    # -------------------------
    # Logs
    # -------------------------
    def test_set_log_taken(self):
        med = self.add()
        log_id = f"{med.id}-08:00-2024-01-01"
        at = datetime(2024, 1, 1, 8, 10)
        updated = self.svc.set_log_taken(log_id, True, at)
        self.assertTrue(updated.taken)
        self.assertEqual("2024-01-01T08:10:00", updated.taken_time)
        self.assertEqual(updated, self.store.find_log(log_id))

        undone = self.svc.set_log_taken(log_id, False)
        self.assertFalse(undone.taken)
        self.assertIsNone(self.store.find_log(log_id).taken_time)

        self.assertIsNone(self.svc.set_log_taken("missing", True))

    def test_mark_taken_now(self):
        med = self.add()
        log = self.svc.mark_taken_now(f"{med.id}-20:00-2024-01-01")
        self.assertEqual("2024-01-01T10:15:00", log.taken_time)

    def test_log_id_for_reminder(self):
        self.assertEqual("m1-08:00-2024-01-01", self.svc.log_id_for_reminder("m1", "08:00"))

    # -------------------------
    # Views
    # -------------------------
    def test_history_order(self):
        med = self.add()
        hist = self.svc.history(self.profile.id)
        self.assertEqual(f"{med.id}-08:00-2024-01-01", hist[0].id)
        self.assertEqual(f"{med.id}-20:00-2024-01-01", hist[1].id)
        self.assertEqual(f"{med.id}-08:00-2024-01-02", hist[2].id)
        self.assertEqual(f"{med.id}-20:00-2024-01-07", hist[-1].id)
        self.assertEqual([], self.svc.history(self.profile.id, medication_id="other"))

    def test_sort_for_history_past_newest_first(self):
        def mk(ts):
            return MedicationLog(id=ts, profile_id="p", medication_id="m", scheduled_time=ts, date=ts[:10])
        logs = [mk("2024-01-01T08:00:00"), mk("2024-01-03T08:00:00"),
                mk("2023-12-31T08:00:00"), mk("2024-01-02T08:00:00")]
        ordered = sort_for_history(logs, datetime(2024, 1, 1, 12, 0))
        self.assertEqual(["2024-01-01T08:00:00", "2023-12-31T08:00:00",
                          "2024-01-02T08:00:00", "2024-01-03T08:00:00"], [l.id for l in ordered])

    def test_next_dose_time(self):
        med = self.add()
        logs = self.store.logs(self.profile.id)
        self.assertEqual(("20:00", False), self.svc.next_dose_time(med, logs))

        self.svc.set_log_taken(f"{med.id}-20:00-2024-01-01", True)
        logs = self.store.logs(self.profile.id)
        self.assertEqual(("08:00", True), self.svc.next_dose_time(med, logs))

        self.assertEqual(("08:00", True), self.svc.next_dose_time(med, []))

    def test_last_taken(self):
        med = self.add()
        self.assertIsNone(self.svc.last_taken(med, self.store.logs()))
        self.svc.set_log_taken(f"{med.id}-08:00-2024-01-01", True, datetime(2024, 1, 1, 8, 5))
        self.svc.set_log_taken(f"{med.id}-20:00-2024-01-01", True, datetime(2024, 1, 1, 20, 1))
        last = self.svc.last_taken(med, self.store.logs())
        self.assertEqual(f"{med.id}-20:00-2024-01-01", last.id)

    # -------------------------
    # Lifecycle / backup
    # -------------------------
    def test_on_app_activated(self):
        with self.assertRaises(NoActiveProfile):
            self.svc.on_app_activated()
        med = self.add()
        self.store.set_active_profile(self.profile)
        self.assertTrue(self.svc.on_app_activated())
        self.assertFalse(self.svc.on_app_activated())
        self.assertEqual(3, self.notifier.scheduled.count(med.id))

    def test_clear_all_data(self):
        self.add()
        self.svc.clear_all_data()
        self.assertEqual(1, self.notifier.cancelled_all)
        self.assertEqual([], self.store.profiles())
        self.assertEqual([], self.store.logs())

    def test_import_activates_profile(self):
        med = self.add()
        text = self.svc.export_backup(self.profile)
        other = MedicationService(EntityStore(FlakyStore()), RecordingNotifier(), self.clock)
        profile = other.import_backup(text)
        self.assertEqual(profile, other.store.active_profile())
        self.assertEqual([med.id], [m.id for m in other.store.medications(profile.id)])
        self.assertEqual(14, len(other.store.logs(profile.id)))

    def test_import_rejects_garbage(self):
        with self.assertRaises(MalformedBackup):
            self.svc.import_backup(json.dumps({"nope": 1}))
        self.assertIsNone(self.store.active_profile())


if __name__ == "__main__":
    unittest.main(verbosity=2)
