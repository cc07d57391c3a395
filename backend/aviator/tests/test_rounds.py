from decimal import Decimal
from unittest import TestCase

from aviator.exceptions import InvalidRoundTransition
from aviator.rounds import (
    RoundSession,
    RoundState,
    display_multiplier,
    format_multiplier,
    multiplier_increment,
)


def fly(session):
    session.start_countdown()
    session.begin_flight()


class RecordingListener:
    def __init__(self):
        self.events = []

    def __call__(self, event, payload):
        self.events.append((event, payload))

    def names(self):
        return [name for name, _ in self.events]


class IncrementTests(TestCase):
    def test_bands(self):
        self.assertEqual(multiplier_increment(Decimal("1.00")), Decimal("0.01"))
        self.assertEqual(multiplier_increment(Decimal("1.99")), Decimal("0.01"))
        self.assertEqual(multiplier_increment(Decimal("2.00")), Decimal("0.05"))
        self.assertEqual(multiplier_increment(Decimal("9.95")), Decimal("0.05"))
        self.assertEqual(multiplier_increment(Decimal("10.00")), Decimal("0.10"))
        self.assertEqual(multiplier_increment(Decimal("250.00")), Decimal("0.10"))

    def test_display_cap(self):
        self.assertEqual(display_multiplier(Decimal("150.00")), Decimal("100.00"))
        self.assertEqual(display_multiplier(Decimal("42.10")), Decimal("42.10"))

    def test_format(self):
        self.assertEqual(format_multiplier(Decimal("2")), "2.00x")
        self.assertEqual(format_multiplier("1.5"), "1.50x")


class RoundSessionTests(TestCase):
    def test_ticks_to_crash_point(self):
        session = RoundSession(Decimal("2.37"), round_id=1)
        listener = RecordingListener()
        session.subscribe(listener)
        fly(session)

        crashed = False
        seen = []
        while not crashed:
            crashed = session.tick()
            seen.append(session.current_multiplier)

        # 100 steps of 0.01 to 2.00, then 0.05 steps, clamped at 2.37
        self.assertEqual(session.ticks, 108)
        self.assertEqual(seen[99], Decimal("2.00"))
        self.assertEqual(seen[100], Decimal("2.05"))
        self.assertEqual(seen[-2], Decimal("2.35"))
        self.assertEqual(session.current_multiplier, Decimal("2.37"))
        self.assertEqual(session.state, RoundState.CRASHED)
        self.assertEqual(listener.names().count("multiplier"), 107)
        self.assertEqual(listener.events[-1], ("crash", {"round_id": 1, "crash_point": "2.37"}))

    def test_multiplier_is_monotonic(self):
        session = RoundSession(Decimal("12.00"))
        fly(session)
        previous = session.current_multiplier
        while not session.tick():
            self.assertGreater(session.current_multiplier, previous)
            previous = session.current_multiplier

    def test_instant_crash_on_first_tick(self):
        session = RoundSession(Decimal("1.00"))
        fly(session)
        self.assertTrue(session.tick())
        self.assertEqual(session.current_multiplier, Decimal("1.00"))
        self.assertEqual(session.ticks, 1)

    def test_crash_point_hidden_until_crash(self):
        session = RoundSession(Decimal("1.05"), round_id=9)
        listener = RecordingListener()
        session.subscribe(listener)
        session.start_countdown(server_seed_hash="abc")
        self.assertIsNone(session.crash_point)
        self.assertIsNone(session.snapshot()["crash_point"])

        session.begin_flight()
        while not session.tick():
            self.assertIsNone(session.snapshot()["crash_point"])

        for name, payload in listener.events[:-1]:
            self.assertNotIn("crash_point", payload, name)
        self.assertEqual(session.crash_point, Decimal("1.05"))
        self.assertEqual(session.snapshot()["crash_point"], "1.05")

    def test_display_cap_in_events(self):
        session = RoundSession(Decimal("3.00"), display_cap=Decimal("1.50"))
        listener = RecordingListener()
        session.subscribe(listener)
        fly(session)
        for _ in range(60):
            session.tick()

        self.assertEqual(session.current_multiplier, Decimal("1.60"))
        self.assertEqual(listener.events[-1][1]["multiplier"], "1.50")
        self.assertEqual(session.snapshot()["display_multiplier"], "1.50")

    def test_full_lifecycle(self):
        session = RoundSession(Decimal("1.01"))
        listener = RecordingListener()
        session.subscribe(listener)
        fly(session)
        session.tick()
        session.begin_settlement()
        self.assertEqual(session.state, RoundState.SETTLING)
        session.finish()

        self.assertEqual(session.state, RoundState.IDLE)
        self.assertTrue(session.finished)
        self.assertEqual(listener.names(), ["start", "lock_bets", "crash", "finished"])

    def test_illegal_transitions(self):
        session = RoundSession(Decimal("2.00"))
        with self.assertRaises(InvalidRoundTransition):
            session.tick()
        with self.assertRaises(InvalidRoundTransition):
            session.begin_flight()

        session.start_countdown()
        with self.assertRaises(InvalidRoundTransition):
            session.begin_settlement()
        with self.assertRaises(InvalidRoundTransition):
            session.start_countdown()

    def test_no_ticks_after_crash(self):
        session = RoundSession(Decimal("1.00"))
        fly(session)
        session.tick()
        with self.assertRaises(InvalidRoundTransition):
            session.tick()

    def test_cancel(self):
        session = RoundSession(Decimal("2.00"), round_id=3)
        listener = RecordingListener()
        session.subscribe(listener)
        fly(session)
        session.tick()
        session.cancel()

        self.assertTrue(session.cancelled)
        self.assertEqual(session.state, RoundState.IDLE)
        self.assertEqual(listener.events[-1], ("cancelled", {"round_id": 3, "previous_state": "FLYING"}))
        self.assertIsNone(session.crash_point)
        with self.assertRaises(InvalidRoundTransition):
            session.tick()
        with self.assertRaises(InvalidRoundTransition):
            session.start_countdown()

        # Second cancel is a no-op
        count = len(listener.events)
        session.cancel()
        self.assertEqual(len(listener.events), count)

    def test_unsubscribe(self):
        session = RoundSession(Decimal("2.00"))
        listener = RecordingListener()
        unsubscribe = session.subscribe(listener)
        session.start_countdown()
        unsubscribe()
        session.begin_flight()
        self.assertEqual(listener.names(), ["start"])

    def test_failing_listener_does_not_stop_others(self):
        session = RoundSession(Decimal("2.00"))

        def broken(event, payload):
            raise RuntimeError("boom")

        listener = RecordingListener()
        session.subscribe(broken)
        session.subscribe(listener)
        with self.assertLogs("aviator.rounds", level="ERROR"):
            session.start_countdown()
        self.assertEqual(listener.names(), ["start"])

    def test_rejects_crash_point_below_one(self):
        with self.assertRaises(ValueError):
            RoundSession(Decimal("0.99"))
