# aviator/exceptions.py
from rest_framework import status

from wallets.exceptions import BackendUnavailable, InsufficientFunds  # noqa: F401


class CrashGameError(Exception):
    code = "crash_game_error"
    http_status = status.HTTP_400_BAD_REQUEST


class InvalidWager(CrashGameError):
    code = "invalid_amount"


class BettingClosed(CrashGameError):
    code = "betting_closed"

    def __init__(self, message="Betting is closed for this round"):
        super().__init__(message)


class RoundNotFlying(CrashGameError):
    code = "round_not_flying"

    def __init__(self, message="Cannot cash out - round is not running"):
        super().__init__(message)


class CashoutTooLate(CrashGameError):
    """Cash-out at or after the crash tick. Settles as a loss."""
    code = "cashout_too_late"


class SettlementConflict(CrashGameError):
    """Wager already settled. Never surfaced as a failure."""
    code = "already_settled"
    http_status = status.HTTP_409_CONFLICT


class RoundInProgress(CrashGameError):
    code = "round_in_progress"
    http_status = status.HTTP_409_CONFLICT


class InvalidRoundTransition(CrashGameError):
    code = "invalid_transition"
    http_status = status.HTTP_409_CONFLICT


class EngineLockLost(RuntimeError):
    pass
