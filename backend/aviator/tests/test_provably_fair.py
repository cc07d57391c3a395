import random
from decimal import Decimal
from unittest import TestCase

from aviator.provably_fair import (
    crash_point_from_uniform,
    generate_crash_point,
    generate_round_result,
    generate_server_seed,
    sha256_hex,
    uniform_from_hash,
    verify_round,
)


class CrashPointFromUniformTests(TestCase):
    def test_instant_crash_below_one_percent(self):
        self.assertEqual(crash_point_from_uniform(0.005, Decimal("0.05")), Decimal("1.00"))
        self.assertEqual(crash_point_from_uniform(0, Decimal("0.05")), Decimal("1.00"))

    def test_formula(self):
        # e = 100 / 95; floor(e / 0.5 * 100) / 100
        self.assertEqual(crash_point_from_uniform(0.5, Decimal("0.05")), Decimal("2.10"))
        self.assertEqual(crash_point_from_uniform(0.99, Decimal("0.05")), Decimal("1.06"))
        self.assertEqual(crash_point_from_uniform(0.01, Decimal("0.05")), Decimal("105.26"))

    def test_zero_house_edge(self):
        self.assertEqual(crash_point_from_uniform(0.5, 0), Decimal("2.00"))
        self.assertEqual(crash_point_from_uniform(0.25, 0), Decimal("4.00"))

    def test_two_decimal_places(self):
        value = crash_point_from_uniform(0.123456, Decimal("0.05"))
        self.assertEqual(value, value.quantize(Decimal("0.01")))

    def test_rejects_bad_house_edge(self):
        for edge in (Decimal("1"), Decimal("-0.01"), Decimal("1.5")):
            with self.assertRaises(ValueError):
                crash_point_from_uniform(0.5, edge)

    def test_rejects_draw_outside_unit_interval(self):
        for r in (1, 1.5, -0.1):
            with self.assertRaises(ValueError):
                crash_point_from_uniform(r, Decimal("0.05"))


class GenerateCrashPointTests(TestCase):
    def test_uses_given_source(self):
        self.assertEqual(generate_crash_point(Decimal("0.05"), rand=lambda: 0.5), Decimal("2.10"))
        self.assertEqual(generate_crash_point(Decimal("0.05"), rand=lambda: 0.005), Decimal("1.00"))

    def test_default_source(self):
        self.assertGreaterEqual(generate_crash_point(), Decimal("1.00"))

    def test_never_below_one(self):
        rng = random.Random(7)
        for edge in ("0", "0.01", "0.05", "0.5", "0.99"):
            for _ in range(2000):
                self.assertGreaterEqual(generate_crash_point(Decimal(edge), rand=rng.random), Decimal("1.00"))

    def test_instant_crash_frequency(self):
        rng = random.Random(42)
        draws = 100_000
        instant = sum(
            1 for _ in range(draws)
            if generate_crash_point(Decimal("0.05"), rand=rng.random) == Decimal("1.00")
        )
        self.assertAlmostEqual(instant / draws, 0.01, delta=0.0015)


class SeededRoundTests(TestCase):
    def test_sha256_hex(self):
        self.assertEqual(
            sha256_hex("abc"),
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad",
        )

    def test_server_seed_is_random_hex(self):
        a, b = generate_server_seed(), generate_server_seed()
        self.assertEqual(len(a), 64)
        int(a, 16)
        self.assertNotEqual(a, b)

    def test_uniform_from_hash_bounds(self):
        self.assertEqual(uniform_from_hash("0" * 64), Decimal(0))
        self.assertLess(uniform_from_hash("f" * 64), Decimal(1))

    def test_round_result_is_deterministic(self):
        a = generate_round_result("seed", "main-client", 7)
        b = generate_round_result("seed", "main-client", 7)
        self.assertEqual(a, b)
        self.assertGreaterEqual(a, Decimal("1.00"))

    def test_verify_round(self):
        crash_point = generate_round_result("seed", "main-client", 7)
        self.assertTrue(verify_round("seed", "main-client", 7, crash_point))
        self.assertFalse(verify_round("seed", "main-client", 7, crash_point + Decimal("0.01")))
        self.assertFalse(verify_round("other-seed", "main-client", 7, crash_point + Decimal("1000")))

    def test_verify_round_with_cap(self):
        self.assertTrue(verify_round("seed", "main-client", 7, Decimal("1.00"), cap=Decimal("1.00")))
