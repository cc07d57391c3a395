import random
from decimal import Decimal
from unittest.mock import MagicMock

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from wallets.exceptions import InsufficientFunds
from wallets.models import Wallet, WalletTransaction
from .defaults import AVIATOR, COIN_FLIP, DICE_ROLL
from .models import Game, GameSession
from .services import GameError, get_game, play_coin_flip, play_dice_roll, record_session


def fixed(choice=None, roll=None):
    rng = MagicMock(spec=random.Random)
    rng.choice.return_value = choice
    rng.randint.return_value = roll
    return rng


class GameServiceTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="player", password="secret")
        Wallet.objects.create(user=self.user, balance=Decimal("50.00"))

    def test_catalog_seeded_on_first_use(self):
        game = get_game(AVIATOR)
        self.assertEqual(game.name, "Aviator")
        self.assertEqual(Game.objects.count(), 1)
        self.assertEqual(get_game(AVIATOR).pk, game.pk)

    def test_unknown_game(self):
        with self.assertRaises(GameError):
            get_game("roulette")

    def test_record_session(self):
        session = record_session(self.user, AVIATOR, Decimal("5.00"), "Crashed at 1.20x")
        self.assertIsNone(session.win_amount)
        self.assertEqual(session.game.slug, AVIATOR)

    def test_coin_flip_win(self):
        result = play_coin_flip(self.user, Decimal("10.00"), "heads", rng=fixed(choice="heads"))

        self.assertTrue(result.win)
        self.assertEqual(result.win_amount, Decimal("20.00"))
        self.assertEqual(result.balance, Decimal("60.00"))
        self.assertEqual(result.detail, {"result": "heads"})
        tx = WalletTransaction.objects.get(reference=f"COIN_FLIP-{result.session.id}")
        self.assertEqual(tx.amount, Decimal("10.00"))

    def test_coin_flip_loss(self):
        result = play_coin_flip(self.user, Decimal("10.00"), "heads", rng=fixed(choice="tails"))
        self.assertFalse(result.win)
        self.assertEqual(result.balance, Decimal("40.00"))
        self.assertEqual(result.session.win_amount, Decimal("0.00"))

    def test_dice_roll(self):
        self.assertTrue(play_dice_roll(self.user, Decimal("5"), "higher", rng=fixed(roll=4)).win)
        self.assertFalse(play_dice_roll(self.user, Decimal("5"), "higher", rng=fixed(roll=3)).win)
        self.assertTrue(play_dice_roll(self.user, Decimal("5"), "lower", rng=fixed(roll=1)).win)

    def test_validation(self):
        with self.assertRaises(GameError):
            play_coin_flip(self.user, Decimal("10"), "edge")
        with self.assertRaises(GameError):
            play_dice_roll(self.user, Decimal("0.50"), "higher")
        with self.assertRaises(GameError):
            play_dice_roll(self.user, Decimal("600"), "higher")

    def test_insufficient_funds_records_nothing(self):
        with self.assertRaises(InsufficientFunds):
            play_coin_flip(self.user, Decimal("100.00"), "heads", rng=fixed(choice="heads"))
        self.assertFalse(GameSession.objects.exists())


class GameApiTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="player", password="secret")
        Wallet.objects.create(user=self.user, balance=Decimal("50.00"))
        self.client = APIClient()
        self.client.force_authenticate(self.user)

    def test_list_games_public(self):
        res = APIClient().get("/api/games/")
        self.assertEqual(res.status_code, 200)
        self.assertEqual({g["slug"] for g in res.json()}, {AVIATOR, COIN_FLIP, DICE_ROLL})

    def test_coin_flip_and_history(self):
        res = self.client.post("/api/games/coin-flip/", {"bet_amount": "5.00", "choice": "tails"}, format="json")
        self.assertEqual(res.status_code, 200)
        self.assertIn(res.json()["result"], ("heads", "tails"))

        res = self.client.get(f"/api/games/history/?game={COIN_FLIP}")
        self.assertEqual(len(res.json()), 1)
        self.assertEqual(res.json()[0]["game"], COIN_FLIP)

    def test_dice_roll_errors(self):
        res = self.client.post("/api/games/dice-roll/", {"bet_amount": "5.00", "choice": "middle"}, format="json")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["code"], "invalid_bet")

        res = self.client.post("/api/games/dice-roll/", {"bet_amount": "abc", "choice": "higher"}, format="json")
        self.assertEqual(res.status_code, 400)
