from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase

from aviator.exceptions import BettingClosed, InvalidWager, RoundNotFlying
from aviator.models import AuditLog, CrashBet, GameRound, RiskSettings
from aviator.settlement import (
    cash_out,
    place_bet,
    process_auto_cashouts,
    resolve_loss,
    settle_pending_rounds,
    settle_round_losses,
    void_round,
)
from games.models import GameSession
from wallets.backends import DatabaseWalletBackend
from wallets.exceptions import BackendUnavailable, InsufficientFunds
from wallets.models import Wallet, WalletTransaction
from .factories import make_round, make_user


class SettlementTestCase(TestCase):
    def setUp(self):
        self.user = make_user()
        self.round = make_round("3.00")

    def fly(self, multiplier="1.00"):
        self.round.status = GameRound.FLYING
        self.round.current_multiplier = Decimal(multiplier)
        self.round.save()

    def crash(self):
        self.round.status = GameRound.CRASHED
        self.round.current_multiplier = self.round.crash_point
        self.round.save()

    def wallet(self, user=None):
        return Wallet.objects.get(user=user or self.user)


class PlaceBetTests(SettlementTestCase):
    def test_debits_stake_immediately(self):
        bet = place_bet(self.user, "10.00")

        self.assertEqual(bet.status, CrashBet.ACTIVE)
        self.assertEqual(bet.round, self.round)
        wallet = self.wallet()
        self.assertEqual(wallet.balance, Decimal("90.00"))
        self.assertEqual(wallet.locked_balance, Decimal("10.00"))

        tx = WalletTransaction.objects.get(reference=f"AVIATOR-BET-{bet.id}")
        self.assertEqual(tx.kind, WalletTransaction.BET_PLACED)
        self.assertEqual(tx.amount, Decimal("-10.00"))
        self.assertTrue(AuditLog.objects.filter(action="BET_PLACED", user=self.user).exists())

    def test_with_auto_cashout(self):
        bet = place_bet(self.user, 10, auto_cashout="1.5")
        self.assertEqual(bet.auto_cashout, Decimal("1.50"))

    def test_rejects_bad_amounts(self):
        for amount in ("0", "-5", "abc", "0.50", "5000", "1.005", "NaN"):
            with self.assertRaises(InvalidWager, msg=amount):
                place_bet(self.user, amount)
        self.assertFalse(CrashBet.objects.exists())
        self.assertEqual(self.wallet().balance, Decimal("100.00"))

    def test_rejects_auto_cashout_out_of_bounds(self):
        with self.assertRaises(InvalidWager):
            place_bet(self.user, 10, auto_cashout="1.00")
        with self.assertRaises(InvalidWager):
            place_bet(self.user, 10, auto_cashout="5000")

    def test_one_wager_per_round(self):
        place_bet(self.user, 10)
        with self.assertRaises(InvalidWager):
            place_bet(self.user, 10)
        self.assertEqual(self.wallet().balance, Decimal("90.00"))

    def test_insufficient_funds(self):
        with self.assertRaises(InsufficientFunds):
            place_bet(self.user, 150)
        self.assertFalse(CrashBet.objects.exists())
        self.assertEqual(self.wallet().balance, Decimal("100.00"))

    def test_betting_closed_once_flying(self):
        self.fly()
        with self.assertRaises(BettingClosed):
            place_bet(self.user, 10)

    def test_betting_closed_without_round(self):
        with self.assertRaises(BettingClosed):
            place_bet(self.user, 10, table="vip")

    def test_in_flight_betting_switch(self):
        risk = RiskSettings.get()
        risk.allow_bets_in_flight = True
        risk.save()
        self.fly("1.20")

        bet = place_bet(self.user, 10)
        self.assertEqual(bet.round, self.round)

    def test_exposure_limit(self):
        risk = RiskSettings.get()
        risk.max_exposure_per_round = Decimal("15.00")
        risk.save()
        place_bet(make_user("other"), 10)

        with self.assertRaises(InvalidWager):
            place_bet(self.user, 10)


class CashOutTests(SettlementTestCase):
    def test_win_nets_profit(self):
        bet = place_bet(self.user, 10)
        self.fly("2.00")

        outcome = cash_out(self.user, bet.id)

        self.assertTrue(outcome.won)
        self.assertEqual(outcome.payout, Decimal("20.00"))
        self.assertEqual(outcome.multiplier, Decimal("2.00"))
        self.assertEqual(outcome.balance, Decimal("110.00"))
        self.assertEqual(outcome.code, "won")

        bet.refresh_from_db()
        self.assertEqual(bet.status, CrashBet.CASHED_OUT)
        self.assertEqual(bet.win_amount, Decimal("20.00"))
        self.assertLess(bet.cashout_multiplier, self.round.crash_point)

        wallet = self.wallet()
        self.assertEqual(wallet.balance, Decimal("110.00"))
        self.assertEqual(wallet.locked_balance, Decimal("0.00"))
        self.assertEqual(wallet.total_winnings, Decimal("10.00"))

        tx = WalletTransaction.objects.get(reference=f"AVIATOR-WIN-{bet.id}")
        self.assertEqual(tx.amount, Decimal("20.00"))
        self.assertEqual(bet.session.win_amount, Decimal("20.00"))
        self.assertEqual(bet.session.game.slug, "aviator")

    def test_uses_server_multiplier(self):
        bet = place_bet(self.user, 10)
        self.fly("1.37")
        outcome = cash_out(self.user, bet.id)
        self.assertEqual(outcome.payout, Decimal("13.70"))

    def test_second_cash_out_is_already_settled(self):
        bet = place_bet(self.user, 10)
        self.fly("2.00")
        cash_out(self.user, bet.id)

        self.round.current_multiplier = Decimal("2.50")
        self.round.save()
        outcome = cash_out(self.user, bet.id)

        self.assertTrue(outcome.already_settled)
        self.assertTrue(outcome.won)
        self.assertEqual(outcome.payout, Decimal("20.00"))
        self.assertEqual(outcome.code, "already_settled")
        self.assertEqual(self.wallet().balance, Decimal("110.00"))
        self.assertEqual(WalletTransaction.objects.filter(kind=WalletTransaction.GAME_WIN).count(), 1)
        self.assertTrue(AuditLog.objects.filter(action="SETTLEMENT_CONFLICT").exists())

    def test_tie_with_crash_point_goes_to_house(self):
        bet = place_bet(self.user, 10)
        self.fly("3.00")

        outcome = cash_out(self.user, bet.id)

        self.assertTrue(outcome.too_late)
        self.assertFalse(outcome.won)
        self.assertEqual(outcome.code, "cashout_too_late")
        bet.refresh_from_db()
        self.assertEqual(bet.status, CrashBet.LOST)
        self.assertEqual(self.wallet().balance, Decimal("90.00"))

    def test_captured_multiplier_past_crash_is_a_loss(self):
        bet = place_bet(self.user, 10)
        self.fly("1.50")

        outcome = cash_out(self.user, bet.id, captured_multiplier="3.20")

        self.assertTrue(outcome.too_late)
        self.assertEqual(self.wallet().balance, Decimal("90.00"))

    def test_after_crash(self):
        bet = place_bet(self.user, 10)
        self.crash()

        outcome = cash_out(self.user, bet.id)

        self.assertTrue(outcome.too_late)
        self.assertEqual(outcome.balance, Decimal("90.00"))
        self.assertTrue(AuditLog.objects.filter(action="CASHOUT_TOO_LATE").exists())
        bet.refresh_from_db()
        self.assertEqual(bet.status, CrashBet.LOST)

    def test_before_take_off(self):
        bet = place_bet(self.user, 10)
        with self.assertRaises(RoundNotFlying):
            cash_out(self.user, bet.id)

    def test_other_users_bet(self):
        bet = place_bet(self.user, 10)
        self.fly("2.00")
        with self.assertRaises(CrashBet.DoesNotExist):
            cash_out(make_user("thief"), bet.id)

    def test_failed_credit_leaves_bet_active(self):
        bet = place_bet(self.user, 10)
        self.fly("2.00")

        with patch.object(DatabaseWalletBackend, "credit_payout", side_effect=BackendUnavailable()):
            with self.assertRaises(BackendUnavailable):
                cash_out(self.user, bet.id)

        bet.refresh_from_db()
        self.assertEqual(bet.status, CrashBet.ACTIVE)
        self.assertIsNone(bet.cashout_multiplier)
        self.assertEqual(self.wallet().balance, Decimal("90.00"))
        self.assertTrue(AuditLog.objects.filter(action="BACKEND_FAILURE").exists())

        # Retry once the backend is back
        outcome = cash_out(self.user, bet.id)
        self.assertTrue(outcome.won)


class ResolveLossTests(SettlementTestCase):
    def test_loss_nets_minus_stake(self):
        bet = place_bet(self.user, 10)
        self.crash()

        outcome = resolve_loss(bet)

        self.assertFalse(outcome.won)
        self.assertEqual(outcome.payout, Decimal("0.00"))
        self.assertEqual(outcome.balance, Decimal("90.00"))

        wallet = self.wallet()
        self.assertEqual(wallet.locked_balance, Decimal("0.00"))
        self.assertEqual(wallet.total_losses, Decimal("10.00"))

        tx = WalletTransaction.objects.get(reference=f"AVIATOR-LOSS-{bet.id}")
        self.assertEqual(tx.kind, WalletTransaction.GAME_LOSS)
        self.assertEqual(tx.amount, Decimal("0.00"))

        session = GameSession.objects.get(user=self.user)
        self.assertIsNone(session.win_amount)
        self.assertEqual(session.bet_amount, Decimal("10.00"))

    def test_idempotent(self):
        bet = place_bet(self.user, 10)
        self.crash()
        resolve_loss(bet)

        outcome = resolve_loss(bet)

        self.assertTrue(outcome.already_settled)
        self.assertEqual(self.wallet().balance, Decimal("90.00"))
        self.assertEqual(WalletTransaction.objects.filter(kind=WalletTransaction.GAME_LOSS).count(), 1)

    def test_cash_out_and_loss_are_exclusive(self):
        bet = place_bet(self.user, 10)
        self.fly("2.00")
        cash_out(self.user, bet.id)
        self.crash()

        outcome = resolve_loss(bet)

        self.assertTrue(outcome.already_settled)
        self.assertTrue(outcome.won)
        self.assertEqual(self.wallet().balance, Decimal("110.00"))
        self.assertFalse(WalletTransaction.objects.filter(kind=WalletTransaction.GAME_LOSS).exists())

    def test_cash_out_after_loss(self):
        bet = place_bet(self.user, 10)
        self.crash()
        resolve_loss(bet)

        outcome = cash_out(self.user, bet.id)

        self.assertTrue(outcome.already_settled)
        self.assertFalse(outcome.won)
        self.assertEqual(self.wallet().balance, Decimal("90.00"))


class RoundSettlementTests(SettlementTestCase):
    def setUp(self):
        super().setUp()
        self.other = make_user("other")

    def test_settle_round_losses(self):
        place_bet(self.user, 10)
        place_bet(self.other, 20)
        self.crash()

        self.assertEqual(settle_round_losses(self.round), [])
        self.assertEqual(CrashBet.objects.filter(status=CrashBet.LOST).count(), 2)
        self.assertEqual(self.wallet(self.other).balance, Decimal("80.00"))

    def test_settle_round_losses_reports_failures(self):
        a = place_bet(self.user, 10)
        b = place_bet(self.other, 20)
        self.crash()

        with patch.object(DatabaseWalletBackend, "release_loss", side_effect=BackendUnavailable()):
            failures = settle_round_losses(self.round)

        self.assertEqual(sorted(failures), sorted([a.id, b.id]))
        self.assertEqual(CrashBet.objects.filter(status=CrashBet.ACTIVE).count(), 2)

    def test_auto_cashout_at_target(self):
        auto = place_bet(self.user, 10, auto_cashout="1.50")
        far = place_bet(self.other, 10, auto_cashout="2.50")
        self.fly("1.60")

        outcomes = process_auto_cashouts(self.round, Decimal("1.60"))

        self.assertEqual([o.bet_id for o in outcomes], [auto.id])
        auto.refresh_from_db()
        far.refresh_from_db()
        self.assertEqual(auto.status, CrashBet.CASHED_OUT)
        self.assertEqual(auto.cashout_multiplier, Decimal("1.50"))
        self.assertEqual(auto.win_amount, Decimal("15.00"))
        self.assertEqual(far.status, CrashBet.ACTIVE)

    def test_void_round_refunds(self):
        place_bet(self.user, 10)
        place_bet(self.other, 20)

        self.assertEqual(void_round(self.round), [])

        self.round.refresh_from_db()
        self.assertEqual(self.round.status, GameRound.CANCELLED)
        self.assertEqual(self.wallet().balance, Decimal("100.00"))
        self.assertEqual(self.wallet().locked_balance, Decimal("0.00"))
        self.assertEqual(self.wallet(self.other).balance, Decimal("100.00"))
        self.assertEqual(CrashBet.objects.filter(status=CrashBet.REFUNDED).count(), 2)
        self.assertEqual(WalletTransaction.objects.filter(kind=WalletTransaction.BET_REFUND).count(), 2)

    def test_settle_pending_crashed_round(self):
        bet = place_bet(self.user, 10)
        self.round.status = GameRound.SETTLING
        self.round.save()

        self.assertEqual(settle_pending_rounds("main"), 1)

        self.round.refresh_from_db()
        bet.refresh_from_db()
        self.assertEqual(self.round.status, GameRound.SETTLED)
        self.assertEqual(bet.status, CrashBet.LOST)

    def test_settle_pending_flying_round(self):
        bet = place_bet(self.user, 10)
        self.fly("1.30")

        self.assertEqual(settle_pending_rounds("main"), 1)

        self.round.refresh_from_db()
        bet.refresh_from_db()
        self.assertEqual(self.round.status, GameRound.CANCELLED)
        self.assertEqual(bet.status, CrashBet.REFUNDED)
        self.assertEqual(self.wallet().balance, Decimal("100.00"))
