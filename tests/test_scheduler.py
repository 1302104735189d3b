import unittest
from datetime import datetime

from medreminder.errors import NoActiveProfile
from medreminder.generator import LogGenerator
from medreminder.models import Medication, Profile, Route
from medreminder.scheduler import CatchUpThread, GenerationScheduler, whole_days_between
from medreminder.store import EntityStore

from tests.support import FixedClock, FlakyStore


class CountingGenerator(LogGenerator):
    def __init__(self, store, clock):
        super().__init__(store, clock)
        self.runs = 0

    def generate(self, profile_id, days_ahead=7, medications=None):
        self.runs += 1
        return super().generate(profile_id, days_ahead, medications)


class TestGenerationScheduler(unittest.TestCase):
    def setUp(self):
        self.store = EntityStore(FlakyStore())
        self.clock = FixedClock(datetime(2024, 1, 1, 7, 0))
        self.gen = CountingGenerator(self.store, self.clock)
        self.sched = GenerationScheduler(self.store, self.gen, self.clock)
        self.profile = Profile("p1", "Ana")
        self.store.add_profile(self.profile)
        self.store.add_medication(Medication(id="m1", profile_id="p1", name="x", dose="1",
                                             route=Route.TABLET, times=["08:00"]))

    def test_never_run_generates(self):
        self.assertTrue(self.sched.ensure_current("p1"))
        self.assertEqual(1, self.gen.runs)
        self.assertEqual(7, len(self.store.logs("p1")))

    def test_twice_same_day_runs_once(self):
        self.assertTrue(self.sched.ensure_current("p1"))
        self.clock.advance(hours=16, minutes=59)
        self.assertFalse(self.sched.ensure_current("p1"))
        self.assertEqual(1, self.gen.runs)

    def test_after_midnight_runs_again(self):
        self.clock.now = datetime(2024, 1, 1, 23, 50)
        self.sched.ensure_current("p1")
        self.clock.now = datetime(2024, 1, 2, 0, 5)
        self.assertTrue(self.sched.ensure_current("p1"))
        self.assertEqual(2, self.gen.runs)

    def test_gap_catches_up_to_today_without_backfill(self):
        self.sched.ensure_current("p1")
        self.clock.advance(days=10)
        self.sched.ensure_current("p1")
        dates = sorted({l.date for l in self.store.logs("p1")})
        self.assertEqual("2024-01-07", dates[6])
        self.assertEqual("2024-01-11", dates[7])
        self.assertEqual("2024-01-17", dates[-1])
        self.assertEqual(14, len(dates))

    def test_clock_moved_back_is_noop(self):
        self.sched.ensure_current("p1")
        self.clock.advance(days=-2)
        self.assertFalse(self.sched.ensure_current("p1"))

    def test_uses_active_profile(self):
        with self.assertRaises(NoActiveProfile):
            self.sched.ensure_current()
        self.store.set_active_profile(self.profile)
        self.assertTrue(self.sched.ensure_current())
        self.assertEqual(7, len(self.store.logs("p1")))

    def test_whole_days_between(self):
        self.assertEqual(1, whole_days_between(datetime(2024, 1, 1, 23, 59), datetime(2024, 1, 2, 0, 0)))
        self.assertEqual(0, whole_days_between(datetime(2024, 1, 1, 0, 0), datetime(2024, 1, 1, 23, 59)))


class TestCatchUpThread(unittest.TestCase):
    def test_check_without_active_profile(self):
        store = EntityStore(FlakyStore())
        clock = FixedClock(datetime(2024, 1, 1))
        sched = GenerationScheduler(store, LogGenerator(store, clock), clock)
        t = CatchUpThread(sched, interval_s=60)
        self.assertFalse(t.check())

        store.set_active_profile(Profile("p1", "Ana"))
        self.assertTrue(t.check())
        self.assertFalse(t.check())

    def test_start_stop(self):
        store = EntityStore(FlakyStore())
        clock = FixedClock(datetime(2024, 1, 1))
        store.set_active_profile(Profile("p1", "Ana"))
        sched = GenerationScheduler(store, LogGenerator(store, clock), clock)
        t = CatchUpThread(sched, interval_s=60)
        t.start()
        t.stop()
        self.assertFalse(t.thread.is_alive())
        self.assertIsNotNone(store.last_generation())


if __name__ == "__main__":
    unittest.main(verbosity=2)
