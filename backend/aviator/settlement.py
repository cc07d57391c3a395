# aviator/settlement.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from games.defaults import AVIATOR
from games.services import record_session
from wallets.backends import get_wallet_backend
from wallets.exceptions import BackendUnavailable, WalletError
from .exceptions import (
    BettingClosed,
    CashoutTooLate,
    InvalidWager,
    RoundNotFlying,
    SettlementConflict,
)
from .models import AuditLog, CrashBet, GameRound, RiskSettings
from .rounds import format_multiplier

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
D0 = Decimal("0.00")


@dataclass
class SettlementOutcome:
    bet_id: int
    won: bool
    payout: Decimal
    multiplier: Optional[Decimal] = None
    already_settled: bool = False
    too_late: bool = False
    balance: Optional[Decimal] = None

    @classmethod
    def from_bet(cls, bet: CrashBet, **kwargs) -> "SettlementOutcome":
        won = bet.status == CrashBet.CASHED_OUT
        return cls(
            bet_id=bet.id,
            won=won,
            payout=bet.win_amount if won else D0,
            multiplier=bet.cashout_multiplier if won else None,
            **kwargs,
        )

    @property
    def code(self) -> str:
        if self.already_settled:
            return SettlementConflict.code
        if self.too_late:
            return CashoutTooLate.code
        return "won" if self.won else "lost"

    def as_dict(self):
        return {
            "bet_id": self.bet_id,
            "won": self.won,
            "payout": str(self.payout),
            "multiplier": str(self.multiplier) if self.multiplier is not None else None,
            "already_settled": self.already_settled,
            "too_late": self.too_late,
            "balance": str(self.balance) if self.balance is not None else None,
            "code": self.code,
        }


# ======================================================
# INTERNAL
# ======================================================
def _audit(user, action, **details):
    AuditLog.objects.create(
        user=user,
        action=action,
        details={k: str(v) for k, v in details.items()},
    )


def _to_amount(value, field="amount") -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidWager(f"Invalid {field}")
    if not amount.is_finite():
        raise InvalidWager(f"Invalid {field}")
    return amount


def _confirmed_balance(user) -> Optional[Decimal]:
    # Re-read from the store after a mutation; the local view is never authoritative
    try:
        return get_wallet_backend().get_balance(user)
    except WalletError as e:
        logger.warning(f"Balance reconciliation failed for user {user.pk}: {e}")
        return None


def _conflict(bet: CrashBet, operation: str) -> SettlementOutcome:
    logger.info(f"Bet {bet.id} already {bet.status}, {operation} ignored")
    _audit(bet.user, "SETTLEMENT_CONFLICT", bet_id=bet.id, status=bet.status, operation=operation)
    return SettlementOutcome.from_bet(bet, already_settled=True)


def _resolve_loss_locked(bet: CrashBet) -> SettlementOutcome:
    crash_point = bet.round.crash_point
    get_wallet_backend().release_loss(
        bet.user,
        bet.bet_amount,
        reference=f"AVIATOR-LOSS-{bet.id}",
        description=f"Lost in Aviator, crashed at {format_multiplier(crash_point)}",
    )

    bet.status = CrashBet.LOST
    bet.win_amount = D0
    bet.settled_at = timezone.now()
    bet.session = record_session(
        bet.user, AVIATOR, bet.bet_amount, f"Crashed at {format_multiplier(crash_point)}", None
    )
    bet.save(update_fields=["status", "win_amount", "settled_at", "session"])

    _audit(bet.user, "LOSS", bet_id=bet.id, round_id=bet.round_id, amount=bet.bet_amount)
    return SettlementOutcome.from_bet(bet)


def _cash_out_locked(bet: CrashBet, round_obj: GameRound, captured_multiplier=None) -> SettlementOutcome:
    """
    Settle a win. Caller holds the round row and the bet row locked.
    """
    if bet.is_settled:
        return _conflict(bet, "cash_out")

    if round_obj.status == GameRound.COUNTDOWN:
        raise RoundNotFlying()

    if captured_multiplier is None:
        captured = round_obj.current_multiplier
    else:
        captured = Decimal(str(captured_multiplier)).quantize(CENT)

    # Ties go to the house
    if round_obj.status != GameRound.FLYING or captured >= round_obj.crash_point:
        logger.warning(
            f"Cash-out too late for bet {bet.id}: {format_multiplier(captured)} "
            f"vs crash {format_multiplier(round_obj.crash_point)} ({round_obj.status})"
        )
        _audit(
            bet.user, "CASHOUT_TOO_LATE",
            bet_id=bet.id, round_id=round_obj.id, multiplier=captured, crash_point=round_obj.crash_point,
        )
        if round_obj.status != GameRound.CANCELLED:
            outcome = _resolve_loss_locked(bet)
        else:
            outcome = SettlementOutcome.from_bet(bet)
        outcome.too_late = True
        return outcome

    payout = (bet.bet_amount * captured).quantize(CENT)

    # Credit and status flip commit together; a failed credit leaves the bet ACTIVE
    get_wallet_backend().credit_payout(
        bet.user,
        bet.bet_amount,
        payout,
        reference=f"AVIATOR-WIN-{bet.id}",
        description=f"Won in Aviator at {format_multiplier(captured)}",
    )

    now = timezone.now()
    bet.status = CrashBet.CASHED_OUT
    bet.cashout_multiplier = captured
    bet.win_amount = payout
    bet.cashed_out_at = now
    bet.settled_at = now
    bet.session = record_session(
        bet.user, AVIATOR, bet.bet_amount, f"Cashed out at {format_multiplier(captured)}", payout
    )
    bet.save(update_fields=["status", "cashout_multiplier", "win_amount", "cashed_out_at", "settled_at", "session"])

    _audit(bet.user, "CASHOUT", bet_id=bet.id, payout=payout, multiplier=captured)
    return SettlementOutcome.from_bet(bet)


# ======================================================
# PLACE BET
# ======================================================
def get_open_round(table: str = "main") -> Optional[GameRound]:
    return (
        GameRound.objects.filter(table=table, status__in=GameRound.ACTIVE_STATUSES)
        .order_by("-id")
        .first()
    )


def place_bet(user, amount, table: str = "main", auto_cashout=None) -> CrashBet:
    """
    Debit `amount` now and attach a wager to the table's open round.

    Raises InvalidWager, BettingClosed or InsufficientFunds.
    """
    amount = _to_amount(amount)
    if amount <= 0:
        raise InvalidWager("Bet amount must be greater than 0")
    if amount != amount.quantize(CENT):
        raise InvalidWager("Bet amount has too many decimal places")

    risk = RiskSettings.get()

    if amount < risk.min_bet_per_player:
        raise InvalidWager(f"Minimum bet is {risk.min_bet_per_player:,.2f}")
    if amount > risk.max_bet_per_player:
        raise InvalidWager(f"Maximum bet is {risk.max_bet_per_player:,.2f}")

    if auto_cashout is not None:
        auto_cashout = _to_amount(auto_cashout, "auto cashout").quantize(CENT)
        if auto_cashout < risk.min_auto_cashout:
            raise InvalidWager(f"Minimum auto cashout is {risk.min_auto_cashout}x")
        if auto_cashout > risk.max_auto_cashout:
            raise InvalidWager(f"Maximum auto cashout is {risk.max_auto_cashout}x")

    open_statuses = [GameRound.COUNTDOWN]
    if risk.allow_bets_in_flight:
        open_statuses.append(GameRound.FLYING)

    with transaction.atomic():
        round_obj = (
            GameRound.objects.select_for_update()
            .filter(table=table, status__in=open_statuses)
            .order_by("-id")
            .first()
        )
        if not round_obj:
            raise BettingClosed()

        if CrashBet.objects.filter(user=user, round=round_obj).exists():
            raise InvalidWager("You already have a bet in this round")

        exposure = CrashBet.objects.filter(round=round_obj).aggregate(
            total=Sum("bet_amount")
        )["total"] or D0
        if exposure + amount > risk.max_exposure_per_round:
            raise InvalidWager("Round exposure limit reached")

        bet = CrashBet.objects.create(
            user=user,
            round=round_obj,
            bet_amount=amount,
            auto_cashout=auto_cashout,
            status=CrashBet.ACTIVE,
        )

        # Raises InsufficientFunds / BackendUnavailable and rolls the bet back
        get_wallet_backend().debit_for_bet(
            user,
            amount,
            reference=f"AVIATOR-BET-{bet.id}",
            description=f"Bet on Aviator round {round_obj.id}",
        )

        _audit(user, "BET_PLACED", bet_id=bet.id, round_id=round_obj.id, amount=amount)

    logger.info(f"Bet {bet.id}: user {user.pk} placed {amount} on round {round_obj.id}")
    return bet


# ======================================================
# CASHOUT
# ======================================================
def cash_out(user, bet_id, captured_multiplier=None) -> SettlementOutcome:
    """
    Cash out the user's wager at the round's current multiplier
    (or `captured_multiplier` when the caller captured it).

    A request at or after the crash tick settles as a loss and is flagged
    `too_late`; a second request returns the first outcome with
    `already_settled`. BackendUnavailable leaves the wager unsettled.
    """
    bet = CrashBet.objects.get(id=bet_id, user=user)

    try:
        with transaction.atomic():
            # Round first, then bet: same order as the engine tick
            round_obj = GameRound.objects.select_for_update().get(pk=bet.round_id)
            bet = CrashBet.objects.select_for_update(of=("self",)).select_related("user").get(pk=bet.pk)
            bet.round = round_obj
            outcome = _cash_out_locked(bet, round_obj, captured_multiplier)
    except BackendUnavailable:
        logger.error(f"Cash-out of bet {bet.id} not confirmed by wallet backend")
        _audit(user, "BACKEND_FAILURE", bet_id=bet.id, operation="cash_out")
        raise

    outcome.balance = _confirmed_balance(user)
    return outcome


# ======================================================
# LOST BET (NO REFUND, JUST RELEASE LOCK)
# ======================================================
def resolve_loss(bet: CrashBet) -> SettlementOutcome:
    """
    Settle an un-cashed wager as lost. The stake was debited at bet time,
    so nothing more is taken. Safe to call repeatedly.
    """
    with transaction.atomic():
        bet = CrashBet.objects.select_for_update(of=("self",)).select_related("round", "user").get(pk=bet.pk)
        if bet.is_settled:
            return _conflict(bet, "resolve_loss")
        outcome = _resolve_loss_locked(bet)

    outcome.balance = _confirmed_balance(bet.user)
    return outcome


def settle_round_losses(round_obj: GameRound) -> List[int]:
    """
    Resolve every wager still ACTIVE on a crashed round.
    Returns the ids that could not be settled.
    """
    failures = []
    bets = CrashBet.objects.filter(round=round_obj, status=CrashBet.ACTIVE).select_related("user")
    for bet in bets:
        try:
            resolve_loss(bet)
        except WalletError as e:
            logger.error(f"Loss settlement failed for bet {bet.id}: {e}")
            _audit(bet.user, "BACKEND_FAILURE", bet_id=bet.id, operation="resolve_loss")
            failures.append(bet.id)
    return failures


def process_auto_cashouts(round_obj: GameRound, multiplier: Decimal) -> List[SettlementOutcome]:
    """
    Cash out wagers whose auto target was reached, at the target.
    Caller holds the round row locked inside a transaction.
    """
    outcomes = []
    bets = (
        CrashBet.objects.select_for_update(of=("self",))
        .filter(
            round=round_obj,
            status=CrashBet.ACTIVE,
            auto_cashout__isnull=False,
            auto_cashout__lte=multiplier,
        )
        .select_related("user")
    )
    for bet in bets:
        bet.round = round_obj
        try:
            with transaction.atomic():
                outcomes.append(_cash_out_locked(bet, round_obj, bet.auto_cashout))
        except WalletError as e:
            # Still ACTIVE: retried next tick while below the crash point
            logger.error(f"Auto cashout failed for bet {bet.id}: {e}")
    return outcomes


# ======================================================
# ROUND CLEAN-UP
# ======================================================
def mark_settled(round_obj: GameRound):
    round_obj.status = GameRound.SETTLED
    round_obj.settled_at = timezone.now()
    round_obj.save(update_fields=["status", "settled_at"])


def void_round(round_obj: GameRound) -> List[int]:
    """
    Abandon a round that never crashed: refund every ACTIVE stake.
    The round is marked CANCELLED only when all refunds went through.
    """
    failures = []
    for bet in CrashBet.objects.filter(round=round_obj, status=CrashBet.ACTIVE).select_related("user"):
        try:
            with transaction.atomic():
                bet = CrashBet.objects.select_for_update(of=("self",)).select_related("user").get(pk=bet.pk)
                if bet.is_settled:
                    continue
                get_wallet_backend().refund_stake(
                    bet.user,
                    bet.bet_amount,
                    reference=f"AVIATOR-REFUND-{bet.id}",
                    description=f"Refund: Aviator round {round_obj.id} cancelled",
                )
                bet.status = CrashBet.REFUNDED
                bet.settled_at = timezone.now()
                bet.save(update_fields=["status", "settled_at"])
                _audit(bet.user, "REFUND", bet_id=bet.id, round_id=round_obj.id, amount=bet.bet_amount)
        except WalletError as e:
            logger.error(f"Refund failed for bet {bet.id}: {e}")
            failures.append(bet.id)

    if not failures:
        round_obj.status = GameRound.CANCELLED
        round_obj.settled_at = timezone.now()
        round_obj.save(update_fields=["status", "settled_at"])
    return failures


def settle_pending_rounds(table: str = "main") -> int:
    """
    Reconcile rounds a previous engine run left unfinished.
    Returns how many rounds were closed.
    """
    closed = 0
    for round_obj in GameRound.objects.filter(table=table, status__in=GameRound.ACTIVE_STATUSES).order_by("id"):
        if round_obj.status in (GameRound.COUNTDOWN, GameRound.FLYING):
            logger.warning(f"Voiding round {round_obj.id} left in {round_obj.status}")
            failures = void_round(round_obj)
        else:
            logger.warning(f"Settling round {round_obj.id} left in {round_obj.status}")
            failures = settle_round_losses(round_obj)
            if not failures:
                mark_settled(round_obj)
        if not failures:
            closed += 1
    return closed
