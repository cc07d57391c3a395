# games/services.py
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from decimal import Decimal

from django.db import transaction
from rest_framework import status

from wallets.backends import get_wallet_backend
from .defaults import DEFAULT_GAMES, COIN_FLIP, DICE_ROLL
from .models import Game, GameSession

logger = logging.getLogger(__name__)

COIN_SIDES = ("heads", "tails")
DICE_CHOICES = ("higher", "lower")

_rng = random.SystemRandom()


class GameError(Exception):
    code = "invalid_bet"
    http_status = status.HTTP_400_BAD_REQUEST


@dataclass
class InstantResult:
    session: GameSession
    win: bool
    win_amount: Decimal
    balance: Decimal
    detail: dict


def get_game(slug: str) -> Game:
    """
    Catalog row for `slug`, seeded from DEFAULT_GAMES on first use.
    """
    try:
        return Game.objects.get(slug=slug)
    except Game.DoesNotExist:
        if slug not in DEFAULT_GAMES:
            raise GameError(f"Unknown game: {slug}")
        game, _ = Game.objects.get_or_create(slug=slug, defaults=DEFAULT_GAMES[slug])
        return game


def record_session(user, game_slug: str, bet_amount: Decimal, outcome: str, win_amount=None) -> GameSession:
    return GameSession.objects.create(
        user=user,
        game=get_game(game_slug),
        bet_amount=bet_amount,
        win_amount=win_amount,
        outcome=outcome[:255],
    )


def check_bet_limits(game: Game, amount: Decimal) -> None:
    if not game.active:
        raise GameError(f"{game.name} is not available")
    if amount <= 0:
        raise GameError("Bet amount must be greater than 0")
    if amount < game.min_bet:
        raise GameError(f"Minimum bet is {game.min_bet:,.2f}")
    if amount > game.max_bet:
        raise GameError(f"Maximum bet is {game.max_bet:,.2f}")


def _settle_instant(user, game: Game, bet_amount: Decimal, win: bool, outcome: str, detail: dict) -> InstantResult:
    win_amount = (bet_amount * 2).quantize(Decimal("0.01")) if win else Decimal("0.00")
    description = f"{'Won' if win else 'Lost'} in {game.name}"

    # Session row and balance change commit together
    with transaction.atomic():
        session = record_session(user, game.slug, bet_amount, outcome, win_amount)
        balance = get_wallet_backend().settle_instant(
            user,
            bet_amount,
            win_amount,
            reference=f"{game.slug.upper()}-{session.id}",
            description=description,
        )

    logger.info(f"{game.slug} session {session.id} for user {user.pk}: {outcome}")
    return InstantResult(session=session, win=win, win_amount=win_amount, balance=balance, detail=detail)


def play_coin_flip(user, bet_amount: Decimal, choice: str, rng=None) -> InstantResult:
    if choice not in COIN_SIDES:
        raise GameError("Invalid side")

    game = get_game(COIN_FLIP)
    check_bet_limits(game, bet_amount)

    result = (rng or _rng).choice(COIN_SIDES)
    win = result == choice
    outcome = f"{choice} - {result} - {'Win' if win else 'Loss'}"
    return _settle_instant(user, game, bet_amount, win, outcome, {"result": result})


def play_dice_roll(user, bet_amount: Decimal, choice: str, rng=None) -> InstantResult:
    if choice not in DICE_CHOICES:
        raise GameError("Invalid choice")

    game = get_game(DICE_ROLL)
    check_bet_limits(game, bet_amount)

    roll = (rng or _rng).randint(1, 6)
    win = (choice == "higher" and roll > 3) or (choice == "lower" and roll <= 3)
    outcome = f"{choice} - {roll} - {'Win' if win else 'Loss'}"
    return _settle_instant(user, game, bet_amount, win, outcome, {"roll": roll})
