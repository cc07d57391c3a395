import logging
import threading
import time
from decimal import Decimal

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .exceptions import RoundInProgress
from .models import GameRound, RiskSettings
from .provably_fair import generate_round_result, generate_server_seed, sha256_hex
from .rounds import RoundSession, format_multiplier
from .settlement import mark_settled, process_auto_cashouts, settle_round_losses, void_round

logger = logging.getLogger(__name__)

COUNTDOWN_BROADCAST_INTERVAL = 0.5  # seconds
SETTLEMENT_BACKOFF = 0.5  # seconds, multiplied by attempt


def group_name(table: str) -> str:
    return f"aviator_{table}"


class ChannelsPublisher:
    """
    RoundSession subscriber that fans events out to the table's group.
    Seeds ride along only on post-crash events.
    """

    REVEAL_EVENTS = ("crash", "finished")

    def __init__(self, round_obj: GameRound, channel_layer=None):
        self.group = group_name(round_obj.table)
        self.channel_layer = channel_layer or get_channel_layer()
        self._reveal = {
            "server_seed": round_obj.server_seed,
            "client_seed": round_obj.client_seed,
            "nonce": round_obj.nonce,
        }

    def __call__(self, event: str, payload: dict):
        data = dict(payload)
        if event in self.REVEAL_EVENTS:
            data.update(self._reveal)
        async_to_sync(self.channel_layer.group_send)(
            self.group, {"type": f"round.{event}", "data": data}
        )


def create_new_round(table: str = "main") -> GameRound:
    risk = RiskSettings.get()

    if GameRound.objects.filter(table=table, status__in=GameRound.ACTIVE_STATUSES).exists():
        raise RoundInProgress(f"Table {table} already has a round in progress")

    server_seed = generate_server_seed()
    server_seed_hash = sha256_hex(server_seed)
    client_seed = f"{table}-client"

    last_round = GameRound.objects.filter(table=table).order_by("-id").first()
    nonce = last_round.nonce + 1 if last_round else 1

    crash_point = generate_round_result(server_seed, client_seed, nonce, risk.house_edge)

    if crash_point > risk.max_multiplier_cap:
        crash_point = Decimal(str(risk.max_multiplier_cap)).quantize(Decimal("0.01"))

    round_obj = GameRound.objects.create(
        table=table,
        server_seed=server_seed,
        server_seed_hash=server_seed_hash,
        client_seed=client_seed,
        nonce=nonce,
        crash_point=crash_point,
    )
    logger.info(f"Round {round_obj.id} created on {table} (nonce {nonce}, hash {server_seed_hash[:12]})")
    return round_obj


def settle_crashed_round(round_obj: GameRound, retries: int = None, stop_event=None):
    """
    Resolve the losers of a crashed round, retrying failed bets.
    Returns the bet ids still unsettled after the last attempt.
    """
    retries = retries or settings.AVIATOR_SETTLEMENT_RETRIES
    stop_event = stop_event or threading.Event()

    failures = []
    for attempt in range(1, retries + 1):
        failures = settle_round_losses(round_obj)
        if not failures:
            return []
        logger.warning(
            f"Round {round_obj.id}: {len(failures)} bets unsettled (attempt {attempt}/{retries})"
        )
        if attempt < retries and stop_event.wait(SETTLEMENT_BACKOFF * attempt):
            break
    return failures


def run_single_round(round_obj: GameRound, heartbeat=None, stop_event=None) -> GameRound:
    """
    Blocking loop for ONE round.
    heartbeat (optional): LockHeartbeat keeping the engine lock alive.
    stop_event (optional): threading.Event; when set, a round that has not
    crashed yet is voided and its stakes refunded.
    """
    risk = RiskSettings.get()
    stop_event = stop_event or threading.Event()

    session = RoundSession(
        round_obj.crash_point,
        round_id=round_obj.id,
        display_cap=risk.display_multiplier_cap,
    )
    publisher = ChannelsPublisher(round_obj)
    unsubscribe = session.subscribe(publisher)

    def beat():
        if heartbeat:
            heartbeat.tick()

    crashed = False
    try:
        # 1. BETTING PHASE
        beat()
        session.start_countdown(
            countdown_ms=risk.countdown_ms,
            server_seed_hash=round_obj.server_seed_hash,
            nonce=round_obj.nonce,
        )

        betting_end = time.monotonic() + risk.countdown_ms / 1000
        while True:
            remaining = betting_end - time.monotonic()
            if remaining <= 0:
                break
            beat()
            publisher("countdown", {"round_id": round_obj.id, "remaining": round(remaining, 1)})
            if stop_event.wait(min(COUNTDOWN_BROADCAST_INTERVAL, remaining)):
                return round_obj

        # 2. LOCK BETS, START FLIGHT
        beat()
        with transaction.atomic():
            round_obj = GameRound.objects.select_for_update().get(pk=round_obj.pk)
            round_obj.status = GameRound.FLYING
            round_obj.started_at = timezone.now()
            round_obj.save(update_fields=["status", "started_at"])
        session.begin_flight()

        # 3. FLIGHT PHASE
        interval = risk.tick_interval_ms / 1000
        while not crashed:
            beat()
            if stop_event.wait(interval):
                return round_obj

            with transaction.atomic():
                # Cash-outs lock the same row, so each sees a committed tick
                round_obj = GameRound.objects.select_for_update().get(pk=round_obj.pk)
                crashed = session.tick()
                round_obj.current_multiplier = session.current_multiplier
                fields = ["current_multiplier"]
                if crashed:
                    round_obj.status = GameRound.CRASHED
                    round_obj.crashed_at = timezone.now()
                    fields += ["status", "crashed_at"]
                round_obj.save(update_fields=fields)

                if not crashed:
                    process_auto_cashouts(round_obj, session.current_multiplier)

        logger.info(
            f"Round {round_obj.id} crashed at {format_multiplier(round_obj.crash_point)} "
            f"after {session.ticks} ticks"
        )

        # 4. SETTLE LOSERS
        beat()
        session.begin_settlement()
        round_obj.status = GameRound.SETTLING
        round_obj.save(update_fields=["status"])

        failures = settle_crashed_round(round_obj, stop_event=stop_event)
        if failures:
            # Left in SETTLING; the next engine start reconciles it
            logger.error(f"Round {round_obj.id} settlement degraded, unsettled bets: {failures}")
            publisher("degraded", {"round_id": round_obj.id, "unsettled": len(failures)})
        else:
            mark_settled(round_obj)

        # 5. COOLDOWN
        beat()
        stop_event.wait(risk.crash_pause_ms / 1000)
        session.finish()
        return round_obj

    finally:
        if not crashed:
            logger.warning(f"Round {round_obj.id} stopped before crashing, voiding")
            session.cancel()
            round_obj.refresh_from_db()
            failures = void_round(round_obj)
            if failures:
                logger.error(f"Round {round_obj.id}: refunds pending for bets {failures}")
        unsubscribe()
