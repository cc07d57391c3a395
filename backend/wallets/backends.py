import logging
from decimal import Decimal

import requests
from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils.module_loading import import_string

from .exceptions import BackendUnavailable, InsufficientFunds, WalletError
from .models import Wallet, WalletTransaction

logger = logging.getLogger(__name__)

D0 = Decimal("0.00")


def get_wallet_backend():
    """
    Balance store + ledger configured by settings.WALLET_BACKEND.
    """
    return import_string(settings.WALLET_BACKEND)()


# ======================================================
# DATABASE (DEFAULT)
# ======================================================
class DatabaseWalletBackend:
    """
    Balance and ledger kept in the Django database.

    Every mutation locks the wallet row and appends one WalletTransaction
    inside the caller's transaction, so a rollback upstream undoes both.
    """

    def _get_wallet_for_update(self, user):
        wallet, _ = Wallet.objects.select_for_update().get_or_create(user=user)
        return wallet

    def _append(self, user, amount, kind, reference, description, meta=None):
        return WalletTransaction.objects.create(
            user=user,
            amount=amount,
            kind=kind,
            reference=reference,
            description=description,
            meta=meta or {},
        )

    def get_balance(self, user) -> Decimal:
        wallet, _ = Wallet.objects.get_or_create(user=user)
        return wallet.balance

    @transaction.atomic
    def debit_for_bet(self, user, amount: Decimal, reference: str, description: str = ""):
        if amount <= 0:
            raise WalletError("Invalid bet amount")

        wallet = self._get_wallet_for_update(user)
        if wallet.balance < amount:
            raise InsufficientFunds()

        wallet.balance = F("balance") - amount
        wallet.locked_balance = F("locked_balance") + amount
        wallet.save(update_fields=["balance", "locked_balance", "updated_at"])

        self._append(user, -amount, WalletTransaction.BET_PLACED, reference, description)

        wallet.refresh_from_db()
        return wallet.balance

    @transaction.atomic
    def credit_payout(self, user, stake: Decimal, payout: Decimal, reference: str, description: str = ""):
        if payout < 0:
            raise WalletError("Invalid payout amount")

        wallet = self._get_wallet_for_update(user)

        # Release locked funds (always)
        wallet.locked_balance = F("locked_balance") - stake
        wallet.balance = F("balance") + payout
        profit = payout - stake
        if profit >= 0:
            wallet.total_winnings = F("total_winnings") + profit
        else:
            wallet.total_losses = F("total_losses") - profit
        wallet.save(
            update_fields=["locked_balance", "balance", "total_winnings", "total_losses", "updated_at"]
        )

        self._append(
            user, payout, WalletTransaction.GAME_WIN, reference, description,
            meta={"stake": str(stake)},
        )

        wallet.refresh_from_db()
        return wallet.balance

    @transaction.atomic
    def release_loss(self, user, stake: Decimal, reference: str, description: str = ""):
        # Stake was debited at bet time: no refund, just release the lock
        wallet = self._get_wallet_for_update(user)

        wallet.locked_balance = F("locked_balance") - stake
        wallet.total_losses = F("total_losses") + stake
        wallet.save(update_fields=["locked_balance", "total_losses", "updated_at"])

        self._append(
            user, D0, WalletTransaction.GAME_LOSS, reference, description,
            meta={"stake": str(stake)},
        )

        wallet.refresh_from_db()
        return wallet.balance

    @transaction.atomic
    def refund_stake(self, user, stake: Decimal, reference: str, description: str = ""):
        wallet = self._get_wallet_for_update(user)

        wallet.locked_balance = F("locked_balance") - stake
        wallet.balance = F("balance") + stake
        wallet.save(update_fields=["locked_balance", "balance", "updated_at"])

        self._append(user, stake, WalletTransaction.BET_REFUND, reference, description)

        wallet.refresh_from_db()
        return wallet.balance

    @transaction.atomic
    def settle_instant(self, user, stake: Decimal, payout: Decimal, reference: str, description: str = ""):
        """
        Bet and outcome of a single-step game in one ledger row,
        amount = payout - stake.
        """
        if stake <= 0:
            raise WalletError("Invalid bet amount")

        wallet = self._get_wallet_for_update(user)
        if wallet.balance < stake:
            raise InsufficientFunds()

        delta = payout - stake
        wallet.balance = F("balance") + delta
        if delta >= 0:
            wallet.total_winnings = F("total_winnings") + delta
            kind = WalletTransaction.GAME_WIN
        else:
            wallet.total_losses = F("total_losses") - delta
            kind = WalletTransaction.GAME_LOSS
        wallet.save(update_fields=["balance", "total_winnings", "total_losses", "updated_at"])

        self._append(user, delta, kind, reference, description, meta={"stake": str(stake)})

        wallet.refresh_from_db()
        return wallet.balance


# ======================================================
# REMOTE (HOSTED TABLE STORE EDGE FUNCTIONS)
# ======================================================
class RemoteWalletBackend:
    """
    Balance store behind the hosted backend's edge functions:

      POST {url}/get_user_balance          {"user_id"}
      POST {url}/update_balance_after_game {"p_user_id", "p_amount",
                                            "p_game_session_id",
                                            "p_transaction_type",
                                            "p_description"}

    The remote side appends the ledger row itself and does not deduplicate
    on p_game_session_id. Reads are retried; a balance update is resent only
    when the connection failed before the request went out. Any call that
    is not confirmed with {"success": true} raises BackendUnavailable.

    One call, retries included, has to fit inside a third of the engine
    lock TTL: cash-outs call the store while holding the round row.
    """

    def __init__(self, base_url=None, service_key=None, timeout=None, retries=None):
        self.base_url = (base_url or settings.REMOTE_WALLET_URL).rstrip("/")
        self.service_key = service_key or settings.REMOTE_WALLET_SERVICE_KEY
        self.retries = max(1, retries or settings.REMOTE_WALLET_RETRIES)
        budget = settings.AVIATOR_ENGINE_LOCK_TTL / 3
        self.timeout = min(timeout or settings.REMOTE_WALLET_TIMEOUT, budget / self.retries)

    # ---------------------------------------------------
    # INTERNAL
    # ---------------------------------------------------
    def _headers(self):
        if not self.base_url:
            raise RuntimeError("REMOTE_WALLET_URL is not set")

        return {
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
        }

    def _safe_json(self, res):
        try:
            return res.json()
        except ValueError:
            return {"success": False, "error": f"Invalid JSON response ({res.status_code})"}

    def _call(self, function, payload, mutation=False):
        last_error = None
        for attempt in range(1, self.retries + 1):
            try:
                res = requests.post(
                    f"{self.base_url}/{function}",
                    json=payload,
                    headers=self._headers(),
                    timeout=self.timeout,
                )
            except requests.ConnectionError as e:
                last_error = str(e)
                logger.warning(f"{function} attempt {attempt}/{self.retries} failed: {e}")
                continue
            except requests.RequestException as e:
                last_error = str(e)
                logger.warning(f"{function} attempt {attempt}/{self.retries} failed: {e}")
                if mutation:
                    # The update may have been applied
                    break
                continue

            data = self._safe_json(res)
            if data.get("success"):
                return data

            last_error = data.get("error") or f"HTTP {res.status_code}"
            logger.warning(f"{function} attempt {attempt}/{self.retries} rejected: {last_error}")
            if mutation:
                break

        logger.error(f"{function} unavailable after {attempt} attempts: {last_error}")
        raise BackendUnavailable()

    def _update(self, user, amount: Decimal, kind: str, reference: str, description: str):
        data = self._call(
            "update_balance_after_game",
            {
                "p_user_id": str(user.pk),
                "p_amount": float(amount),
                "p_game_session_id": reference,
                "p_transaction_type": kind,
                "p_description": description,
            },
            mutation=True,
        )
        return Decimal(str(data.get("new_balance", 0))).quantize(Decimal("0.01"))

    # ---------------------------------------------------
    # BALANCE STORE
    # ---------------------------------------------------
    def get_balance(self, user) -> Decimal:
        data = self._call("get_user_balance", {"user_id": str(user.pk)})
        return Decimal(str(data.get("balance", 0))).quantize(Decimal("0.01"))

    def debit_for_bet(self, user, amount: Decimal, reference: str, description: str = ""):
        if amount <= 0:
            raise WalletError("Invalid bet amount")
        if self.get_balance(user) < amount:
            raise InsufficientFunds()
        return self._update(user, -amount, WalletTransaction.BET_PLACED, reference, description)

    def credit_payout(self, user, stake: Decimal, payout: Decimal, reference: str, description: str = ""):
        if payout < 0:
            raise WalletError("Invalid payout amount")
        return self._update(user, payout, WalletTransaction.GAME_WIN, reference, description)

    def release_loss(self, user, stake: Decimal, reference: str, description: str = ""):
        return self._update(user, D0, WalletTransaction.GAME_LOSS, reference, description)

    def refund_stake(self, user, stake: Decimal, reference: str, description: str = ""):
        return self._update(user, stake, WalletTransaction.BET_REFUND, reference, description)

    def settle_instant(self, user, stake: Decimal, payout: Decimal, reference: str, description: str = ""):
        if stake <= 0:
            raise WalletError("Invalid bet amount")
        if self.get_balance(user) < stake:
            raise InsufficientFunds()
        delta = payout - stake
        kind = WalletTransaction.GAME_WIN if delta >= 0 else WalletTransaction.GAME_LOSS
        return self._update(user, delta, kind, reference, description)
