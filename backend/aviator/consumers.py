import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.utils import timezone

from wallets.exceptions import WalletError
from .engine import group_name
from .exceptions import CrashGameError
from .models import CrashBet
from .serializers import GameRoundSerializer
from .settlement import cash_out, get_open_round, place_bet

logger = logging.getLogger(__name__)


class AviatorConsumer(AsyncJsonWebsocketConsumer):
    async def connect(self):
        if self.scope["user"].is_anonymous:
            await self.close()
            return

        self.user = self.scope["user"]
        self.table = self.scope["url_route"]["kwargs"]["table"]
        self.group_name = group_name(self.table)

        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()

        await self.send_json({
            "event": "connected",
            "table": self.table,
            "data": await self._current_round(),
        })

    async def disconnect(self, close_code):
        if hasattr(self, "group_name"):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def receive_json(self, content, **kwargs):
        event = content.get("event")
        data = content.get("data") or {}

        if event == "place_bet":
            await self.handle_place_bet(data)
        elif event == "cashout":
            await self.handle_cashout(data)
        else:
            await self.send_json({"event": "error", "error": f"Unknown event: {event}"})

    @database_sync_to_async
    def _current_round(self):
        round_obj = get_open_round(self.table)
        return GameRoundSerializer(round_obj).data if round_obj else None

    @database_sync_to_async
    def _place_bet(self, amount, auto_cashout):
        return place_bet(self.user, amount, table=self.table, auto_cashout=auto_cashout)

    @database_sync_to_async
    def _cash_out(self, bet_id):
        try:
            bet_id = int(bet_id)
        except (TypeError, ValueError):
            raise CrashBet.DoesNotExist()
        return cash_out(self.user, bet_id)

    async def handle_place_bet(self, data):
        amount = data.get("amount", "0")
        auto_cashout = data.get("auto_cashout") or None

        try:
            bet = await self._place_bet(amount, auto_cashout)
        except (CrashGameError, WalletError) as e:
            await self.send_json({
                "event": "bet_failed",
                "code": e.code,
                "error": str(e),
                "data": {"bet_amount": str(amount)},
            })
            return

        await self.channel_layer.group_send(
            self.group_name,
            {
                "type": "player.bet",
                "data": {
                    "user": self.user.username,
                    "bet_id": bet.id,
                    "amount": str(bet.bet_amount),
                    "auto_cashout": str(bet.auto_cashout) if bet.auto_cashout else None,
                    "timestamp": timezone.now().isoformat(),
                },
            },
        )

        await self.send_json({
            "event": "bet_accepted",
            "data": {
                "round_id": bet.round_id,
                "bet_id": bet.id,
                "amount": str(bet.bet_amount),
                "auto_cashout": str(bet.auto_cashout) if bet.auto_cashout else None,
                "placed_at": bet.created_at.isoformat(),
            },
        })

    async def handle_cashout(self, data):
        bet_id = data.get("bet_id")

        try:
            outcome = await self._cash_out(bet_id)
        except CrashBet.DoesNotExist:
            await self.send_json({
                "event": "cashout_failed",
                "code": "not_found",
                "error": "Bet not found",
                "data": {"bet_id": bet_id},
            })
            return
        except (CrashGameError, WalletError) as e:
            await self.send_json({
                "event": "cashout_failed",
                "code": e.code,
                "error": str(e),
                "data": {"bet_id": bet_id},
            })
            return

        if outcome.won and not outcome.already_settled:
            await self.channel_layer.group_send(
                self.group_name,
                {
                    "type": "player.cashout",
                    "data": {
                        "user": self.user.username,
                        "bet_id": outcome.bet_id,
                        "payout": str(outcome.payout),
                        "multiplier": str(outcome.multiplier),
                        "timestamp": timezone.now().isoformat(),
                    },
                },
            )

        await self.send_json({
            "event": "cashout_success" if outcome.won else "bet_settled",
            "data": outcome.as_dict(),
        })

    # Group handlers from the engine
    async def round_start(self, event):
        await self.send_json({"event": "round_start", "data": event["data"]})

    async def round_countdown(self, event):
        await self.send_json({"event": "round_countdown", "data": event["data"]})

    async def round_lock_bets(self, event):
        await self.send_json({"event": "round_lock_bets", "data": event["data"]})

    async def round_multiplier(self, event):
        await self.send_json({"event": "multiplier_update", "data": event["data"]})

    async def round_crash(self, event):
        await self.send_json({"event": "round_crash", "data": event["data"]})

    async def round_degraded(self, event):
        await self.send_json({"event": "round_degraded", "data": event["data"]})

    async def round_finished(self, event):
        await self.send_json({"event": "round_settled", "data": event["data"]})

    async def round_cancelled(self, event):
        await self.send_json({"event": "round_cancelled", "data": event["data"]})

    async def player_bet(self, event):
        await self.send_json({"event": "player_bet", "data": event["data"]})

    async def player_cashout(self, event):
        await self.send_json({"event": "player_cashout", "data": event["data"]})
