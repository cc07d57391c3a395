from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from aviator.models import CrashBet, GameRound, RiskSettings
from aviator.engine import create_new_round
from aviator.settlement import place_bet
from wallets.backends import DatabaseWalletBackend
from wallets.exceptions import BackendUnavailable
from wallets.models import Wallet
from .factories import instant_timing, make_round, make_user

ENGINE = "aviator.management.commands.run_aviator_engine"


class UpdateRiskSettingsTests(TestCase):
    def test_updates_fields(self):
        out = StringIO()
        call_command(
            "update_risk_settings",
            "--house-edge-percent", "3.50",
            "--countdown-ms", "5000",
            "--allow-bets-in-flight", "yes",
            stdout=out,
        )

        risk = RiskSettings.get()
        self.assertEqual(risk.house_edge_percent, Decimal("3.50"))
        self.assertEqual(risk.house_edge, Decimal("0.035"))
        self.assertEqual(risk.countdown_ms, 5000)
        self.assertTrue(risk.allow_bets_in_flight)
        self.assertIn("Updated", out.getvalue())

    def test_rejects_invalid_edge(self):
        with self.assertRaises(CommandError):
            call_command("update_risk_settings", "--house-edge-percent", "100", stdout=StringIO())

    def test_reset(self):
        call_command("update_risk_settings", "--max-bet-per-player", "50", stdout=StringIO())
        call_command("update_risk_settings", "--reset", stdout=StringIO())
        self.assertEqual(RiskSettings.get().max_bet_per_player, Decimal("1000.00"))


class RunAviatorEngineTests(TestCase):
    def test_exits_when_lock_held(self):
        out = StringIO()
        with patch(f"{ENGINE}.RedisEngineLock") as lock_cls:
            lock_cls.return_value.acquire.return_value = False
            call_command("run_aviator_engine", stdout=out)

        self.assertIn("Another engine already running", out.getvalue())
        self.assertFalse(GameRound.objects.exists())

    def test_reconciles_then_plays_rounds(self):
        instant_timing()
        user = make_user()
        stale = make_round("2.00")
        bet = place_bet(user, 10)
        stale.status = GameRound.FLYING
        stale.save()

        out = StringIO()
        with patch(f"{ENGINE}.RedisEngineLock") as lock_cls, \
                patch(f"{ENGINE}.signal.signal"), \
                patch("aviator.engine.generate_round_result", return_value=Decimal("1.10")):
            lock = lock_cls.return_value
            lock.acquire.return_value = True
            lock.renew.return_value = True
            call_command("run_aviator_engine", "--rounds", "2", "--heartbeat-interval", "0", stdout=out)

        stale.refresh_from_db()
        bet.refresh_from_db()
        self.assertEqual(stale.status, GameRound.CANCELLED)
        self.assertEqual(bet.status, CrashBet.REFUNDED)

        played = GameRound.objects.exclude(pk=stale.pk).order_by("id")
        self.assertEqual([r.status for r in played], [GameRound.SETTLED, GameRound.SETTLED])
        self.assertEqual([r.nonce for r in played], [2, 3])
        lock.release.assert_called_once()
        self.assertIn("Reconciled 1", out.getvalue())

    def test_degraded_round_is_reconciled_before_next_round(self):
        instant_timing()
        user = make_user()
        real_release = DatabaseWalletBackend.release_loss
        calls = []

        def flaky_release(backend, *args, **kwargs):
            calls.append(args)
            # Fails for every settlement attempt of the first round
            if len(calls) <= 2:
                raise BackendUnavailable()
            return real_release(backend, *args, **kwargs)

        def create_with_bet(table):
            round_obj = create_new_round(table)
            if not CrashBet.objects.exists():
                place_bet(user, 10, table=table)
            return round_obj

        out = StringIO()
        with patch(f"{ENGINE}.RedisEngineLock") as lock_cls, \
                patch(f"{ENGINE}.signal.signal"), \
                patch(f"{ENGINE}.create_new_round", side_effect=create_with_bet), \
                patch.object(DatabaseWalletBackend, "release_loss", autospec=True, side_effect=flaky_release), \
                patch("aviator.engine.generate_round_result", return_value=Decimal("1.10")):
            lock = lock_cls.return_value
            lock.acquire.return_value = True
            lock.renew.return_value = True
            call_command("run_aviator_engine", "--rounds", "2", "--heartbeat-interval", "0", stdout=out)

        played = GameRound.objects.order_by("id")
        self.assertEqual([r.status for r in played], [GameRound.SETTLED, GameRound.SETTLED])
        self.assertEqual([r.nonce for r in played], [1, 2])

        bet = CrashBet.objects.get()
        self.assertEqual(bet.status, CrashBet.LOST)
        self.assertEqual(len(calls), 3)
        self.assertEqual(Wallet.objects.get(user=user).locked_balance, Decimal("0.00"))
        self.assertIn("reconciled 1 unfinished rounds", out.getvalue())
        lock.release.assert_called_once()
