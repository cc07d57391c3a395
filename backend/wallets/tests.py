from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from .backends import DatabaseWalletBackend, RemoteWalletBackend, get_wallet_backend
from .exceptions import BackendUnavailable, InsufficientFunds, WalletError
from .models import Wallet, WalletTransaction


def make_user(username="player", balance="100.00"):
    user = get_user_model().objects.create_user(username=username, password="secret")
    Wallet.objects.create(user=user, balance=Decimal(balance))
    return user


def response(payload, status_code=200):
    res = MagicMock()
    res.status_code = status_code
    res.json.return_value = payload
    return res


class DatabaseWalletBackendTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.backend = DatabaseWalletBackend()

    def wallet(self):
        return Wallet.objects.get(user=self.user)

    def test_debit_for_bet(self):
        balance = self.backend.debit_for_bet(self.user, Decimal("25.00"), "REF-1", "bet")

        self.assertEqual(balance, Decimal("75.00"))
        self.assertEqual(self.wallet().locked_balance, Decimal("25.00"))
        tx = WalletTransaction.objects.get(reference="REF-1")
        self.assertEqual(tx.amount, Decimal("-25.00"))
        self.assertEqual(tx.kind, WalletTransaction.BET_PLACED)

    def test_debit_rejects_overdraw(self):
        with self.assertRaises(InsufficientFunds):
            self.backend.debit_for_bet(self.user, Decimal("100.01"), "REF-1")
        with self.assertRaises(WalletError):
            self.backend.debit_for_bet(self.user, Decimal("0"), "REF-2")
        self.assertEqual(self.wallet().balance, Decimal("100.00"))
        self.assertFalse(WalletTransaction.objects.exists())

    def test_credit_payout_releases_stake(self):
        self.backend.debit_for_bet(self.user, Decimal("10.00"), "REF-1")
        balance = self.backend.credit_payout(self.user, Decimal("10.00"), Decimal("25.00"), "REF-2")

        wallet = self.wallet()
        self.assertEqual(balance, Decimal("115.00"))
        self.assertEqual(wallet.locked_balance, Decimal("0.00"))
        self.assertEqual(wallet.total_winnings, Decimal("15.00"))

    def test_release_loss(self):
        self.backend.debit_for_bet(self.user, Decimal("10.00"), "REF-1")
        balance = self.backend.release_loss(self.user, Decimal("10.00"), "REF-2")

        wallet = self.wallet()
        self.assertEqual(balance, Decimal("90.00"))
        self.assertEqual(wallet.locked_balance, Decimal("0.00"))
        self.assertEqual(wallet.total_losses, Decimal("10.00"))
        tx = WalletTransaction.objects.get(reference="REF-2")
        self.assertEqual(tx.amount, Decimal("0.00"))
        self.assertEqual(tx.meta, {"stake": "10.00"})

    def test_refund_stake(self):
        self.backend.debit_for_bet(self.user, Decimal("10.00"), "REF-1")
        self.assertEqual(self.backend.refund_stake(self.user, Decimal("10.00"), "REF-2"), Decimal("100.00"))
        self.assertEqual(WalletTransaction.objects.get(reference="REF-2").kind, WalletTransaction.BET_REFUND)

    def test_settle_instant(self):
        self.assertEqual(
            self.backend.settle_instant(self.user, Decimal("10.00"), Decimal("20.00"), "WIN-1"),
            Decimal("110.00"),
        )
        self.assertEqual(
            self.backend.settle_instant(self.user, Decimal("10.00"), Decimal("0.00"), "LOSS-1"),
            Decimal("100.00"),
        )
        self.assertEqual(WalletTransaction.objects.get(reference="LOSS-1").amount, Decimal("-10.00"))

    def test_reference_is_unique(self):
        self.backend.debit_for_bet(self.user, Decimal("10.00"), "REF-1")
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                self.backend.debit_for_bet(self.user, Decimal("10.00"), "REF-1")
        self.assertEqual(self.wallet().balance, Decimal("90.00"))

    def test_wallet_created_on_demand(self):
        user = get_user_model().objects.create_user(username="fresh", password="secret")
        self.assertEqual(self.backend.get_balance(user), Decimal("0"))

    @override_settings(WALLET_BACKEND="wallets.backends.RemoteWalletBackend")
    def test_backend_from_settings(self):
        self.assertIsInstance(get_wallet_backend(), RemoteWalletBackend)


@patch("wallets.backends.requests.post")
class RemoteWalletBackendTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.backend = RemoteWalletBackend()

    def test_get_balance(self, post):
        post.return_value = response({"success": True, "balance": 42.5})

        self.assertEqual(self.backend.get_balance(self.user), Decimal("42.50"))
        post.assert_called_once_with(
            "https://wallet.test/functions/v1/get_user_balance",
            json={"user_id": str(self.user.pk)},
            headers={"Authorization": "Bearer test-service-key", "Content-Type": "application/json"},
            timeout=2.5,
        )

    def test_debit_for_bet(self, post):
        post.side_effect = [
            response({"success": True, "balance": 100}),
            response({"success": True, "new_balance": 90}),
        ]

        self.assertEqual(self.backend.debit_for_bet(self.user, Decimal("10.00"), "AVIATOR-BET-1", "bet"), Decimal("90.00"))
        payload = post.call_args_list[1].kwargs["json"]
        self.assertEqual(payload["p_amount"], -10.0)
        self.assertEqual(payload["p_game_session_id"], "AVIATOR-BET-1")
        self.assertEqual(payload["p_transaction_type"], "bet_placed")

    def test_debit_insufficient(self, post):
        post.return_value = response({"success": True, "balance": 5})
        with self.assertRaises(InsufficientFunds):
            self.backend.debit_for_bet(self.user, Decimal("10.00"), "AVIATOR-BET-1")
        self.assertEqual(post.call_count, 1)

    def test_credit_payout(self, post):
        post.return_value = response({"success": True, "new_balance": 120})
        self.assertEqual(
            self.backend.credit_payout(self.user, Decimal("10"), Decimal("30.00"), "AVIATOR-WIN-1"),
            Decimal("120.00"),
        )
        payload = post.call_args.kwargs["json"]
        self.assertEqual(payload["p_amount"], 30.0)
        self.assertEqual(payload["p_transaction_type"], "game_win")

    def test_retries_then_succeeds(self, post):
        post.side_effect = [
            requests.ConnectionError("down"),
            response({"success": True, "new_balance": 90}),
        ]
        self.assertEqual(self.backend.release_loss(self.user, Decimal("10"), "AVIATOR-LOSS-1"), Decimal("90.00"))
        self.assertEqual(post.call_count, 2)

    def test_unavailable_after_retries(self, post):
        post.side_effect = requests.ConnectionError("down")
        with self.assertRaises(BackendUnavailable):
            self.backend.refund_stake(self.user, Decimal("10"), "AVIATOR-REFUND-1")
        self.assertEqual(post.call_count, 2)

    def test_read_timeout_on_update_is_not_resent(self, post):
        post.side_effect = [
            requests.ReadTimeout("slow"),
            response({"success": True, "new_balance": 120}),
        ]
        backend = RemoteWalletBackend(retries=3)
        with self.assertRaises(BackendUnavailable):
            backend.credit_payout(self.user, Decimal("10"), Decimal("20"), "AVIATOR-WIN-1")
        self.assertEqual(post.call_count, 1)

    def test_server_error_on_update_is_not_resent(self, post):
        post.side_effect = [
            response({"success": True, "balance": 100}),
            response({"success": False, "error": "upstream"}, status_code=502),
            response({"success": True, "new_balance": 90}),
        ]
        with self.assertRaises(BackendUnavailable):
            self.backend.debit_for_bet(self.user, Decimal("10"), "AVIATOR-BET-1")
        # balance read, then a single update
        self.assertEqual(post.call_count, 2)

    def test_read_timeout_on_balance_is_retried(self, post):
        post.side_effect = [
            requests.ReadTimeout("slow"),
            response({"success": True, "balance": 42}),
        ]
        self.assertEqual(self.backend.get_balance(self.user), Decimal("42.00"))
        self.assertEqual(post.call_count, 2)

    @override_settings(AVIATOR_ENGINE_LOCK_TTL=30, REMOTE_WALLET_TIMEOUT=15)
    def test_timeout_fits_inside_engine_lock(self, post):
        self.assertEqual(RemoteWalletBackend(retries=2).timeout, 5)
        self.assertEqual(RemoteWalletBackend(timeout=1, retries=2).timeout, 1)

    def test_rejection_is_unavailable(self, post):
        post.return_value = response({"success": False, "error": "locked"}, status_code=409)
        with self.assertRaises(BackendUnavailable):
            self.backend.credit_payout(self.user, Decimal("10"), Decimal("20"), "AVIATOR-WIN-2")

    def test_invalid_json(self, post):
        res = response(None, status_code=502)
        res.json.side_effect = ValueError("no json")
        post.return_value = res
        with self.assertRaises(BackendUnavailable):
            self.backend.get_balance(self.user)


class WalletApiTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.client = APIClient()
        self.client.force_authenticate(self.user)

    def test_balance(self):
        res = self.client.get("/api/wallet/balance/")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["balance"], "100.00")

    @override_settings(WALLET_BACKEND="wallets.backends.RemoteWalletBackend")
    @patch("wallets.backends.requests.post", side_effect=requests.ConnectionError("down"))
    def test_balance_backend_down(self, post):
        res = self.client.get("/api/wallet/balance/")
        self.assertEqual(res.status_code, 503)
        self.assertEqual(res.json()["code"], "backend_unavailable")

    def test_transactions(self):
        backend = DatabaseWalletBackend()
        backend.debit_for_bet(self.user, Decimal("10.00"), "REF-1")
        backend.refund_stake(self.user, Decimal("10.00"), "REF-2")

        res = self.client.get("/api/wallet/transactions/")
        self.assertEqual([t["reference"] for t in res.json()], ["REF-2", "REF-1"])

        res = self.client.get("/api/wallet/transactions/?kind=bet_refund")
        self.assertEqual([t["reference"] for t in res.json()], ["REF-2"])
