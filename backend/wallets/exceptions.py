# wallets/exceptions.py
from rest_framework import status


class WalletError(Exception):
    code = "wallet_error"
    http_status = status.HTTP_400_BAD_REQUEST


class InsufficientFunds(WalletError):
    code = "insufficient_funds"

    def __init__(self, message="Insufficient balance"):
        super().__init__(message)


class BackendUnavailable(WalletError):
    """
    The balance store or ledger did not confirm a mutation.
    Callers must not treat the operation as applied.
    """
    code = "backend_unavailable"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message="Wallet backend unavailable, please retry"):
        super().__init__(message)
