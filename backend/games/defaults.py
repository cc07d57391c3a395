# games/defaults.py
from decimal import Decimal

AVIATOR = "aviator"
COIN_FLIP = "coin_flip"
DICE_ROLL = "dice_roll"

DEFAULT_GAMES = {
    AVIATOR: {
        "name": "Aviator",
        "description": "Place bets and cash out before the plane flies away",
        "min_bet": Decimal("1.00"),
        "max_bet": Decimal("1000.00"),
        "house_edge": Decimal("0.0500"),
    },
    COIN_FLIP: {
        "name": "Coin Flip",
        "description": "Call heads or tails, double your bet",
        "min_bet": Decimal("1.00"),
        "max_bet": Decimal("500.00"),
        "house_edge": Decimal("0.0000"),
    },
    DICE_ROLL: {
        "name": "Dice Roll",
        "description": "Higher (4-6) or lower (1-3), double your bet",
        "min_bet": Decimal("1.00"),
        "max_bet": Decimal("500.00"),
        "house_edge": Decimal("0.0000"),
    },
}
