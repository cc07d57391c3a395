# aviator/rounds.py
from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional

from .exceptions import InvalidRoundTransition

logger = logging.getLogger(__name__)

COUNTDOWN_MS = 2000
TICK_INTERVAL_MS = 100
CRASH_PAUSE_MS = 3000
MAX_MULTIPLIER = Decimal("100.00")  # display only

START_MULTIPLIER = Decimal("1.00")

# (upper bound, increment): first bound the multiplier is below wins
TICK_INCREMENTS = (
    (Decimal("2.00"), Decimal("0.01")),
    (Decimal("10.00"), Decimal("0.05")),
)
TOP_INCREMENT = Decimal("0.10")


class RoundState(str, Enum):
    IDLE = "IDLE"
    COUNTDOWN = "COUNTDOWN"
    FLYING = "FLYING"
    CRASHED = "CRASHED"
    SETTLING = "SETTLING"


TRANSITIONS = {
    RoundState.IDLE: (RoundState.COUNTDOWN,),
    RoundState.COUNTDOWN: (RoundState.FLYING,),
    RoundState.FLYING: (RoundState.CRASHED,),
    RoundState.CRASHED: (RoundState.SETTLING,),
    RoundState.SETTLING: (RoundState.IDLE,),
}

Listener = Callable[[str, Dict], None]


def multiplier_increment(multiplier: Decimal) -> Decimal:
    for bound, step in TICK_INCREMENTS:
        if multiplier < bound:
            return step
    return TOP_INCREMENT


def display_multiplier(multiplier: Decimal, cap: Decimal = MAX_MULTIPLIER) -> Decimal:
    return min(multiplier, cap)


def format_multiplier(multiplier) -> str:
    return f"{Decimal(str(multiplier)):.2f}x"


class RoundSession:
    """
    In-memory state of one round on one table.

    IDLE -> COUNTDOWN -> FLYING -> CRASHED -> SETTLING -> IDLE

    Every transition and tick is published to subscribers as
    (event, payload). The crash point stays out of every payload until
    the round has crashed.
    """

    def __init__(self, crash_point: Decimal, round_id=None, display_cap: Decimal = MAX_MULTIPLIER):
        crash_point = Decimal(str(crash_point))
        if crash_point < START_MULTIPLIER:
            raise ValueError(f"crash point must be >= 1.00, got {crash_point}")

        self.round_id = round_id
        self._crash_point = crash_point
        self.display_cap = display_cap
        self.state = RoundState.IDLE
        self.current_multiplier = START_MULTIPLIER
        self.ticks = 0
        self.cancelled = False
        self.finished = False
        self._listeners: List[Listener] = []

    # ---------------------------------------------------
    # OBSERVERS
    # ---------------------------------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, event: str, **data):
        payload = {"round_id": self.round_id, **data}
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:
                logger.exception(f"Round {self.round_id}: listener failed on {event}")

    # ---------------------------------------------------
    # STATE
    # ---------------------------------------------------
    @property
    def is_revealed(self) -> bool:
        return self.state in (RoundState.CRASHED, RoundState.SETTLING) or (
            self.finished and not self.cancelled
        )

    @property
    def crash_point(self) -> Optional[Decimal]:
        """The crash point, or None while it must stay hidden."""
        return self._crash_point if self.is_revealed else None

    def snapshot(self) -> Dict:
        return {
            "round_id": self.round_id,
            "state": self.state.value,
            "multiplier": str(self.current_multiplier),
            "display_multiplier": str(display_multiplier(self.current_multiplier, self.display_cap)),
            "crash_point": str(self.crash_point) if self.crash_point is not None else None,
        }

    def _transition(self, target: RoundState):
        if self.cancelled:
            raise InvalidRoundTransition(f"Round {self.round_id} was cancelled")
        if target not in TRANSITIONS[self.state]:
            raise InvalidRoundTransition(
                f"Round {self.round_id}: {self.state.value} -> {target.value} not allowed"
            )
        self.state = target

    # ---------------------------------------------------
    # LIFECYCLE
    # ---------------------------------------------------
    def start_countdown(self, **info):
        self._transition(RoundState.COUNTDOWN)
        self._publish("start", **info)

    def begin_flight(self):
        self._transition(RoundState.FLYING)
        self._publish("lock_bets")

    def tick(self) -> bool:
        """
        Advance one step, then check the crash point.
        Returns True when this tick crashed the round.
        """
        if self.cancelled or self.state != RoundState.FLYING:
            raise InvalidRoundTransition(f"Round {self.round_id}: tick while {self.state.value}")

        self.ticks += 1
        self.current_multiplier += multiplier_increment(self.current_multiplier)

        if self.current_multiplier >= self._crash_point:
            self.current_multiplier = self._crash_point
            self._transition(RoundState.CRASHED)
            self._publish("crash", crash_point=str(self._crash_point))
            return True

        self._publish(
            "multiplier",
            multiplier=str(display_multiplier(self.current_multiplier, self.display_cap)),
        )
        return False

    def begin_settlement(self):
        self._transition(RoundState.SETTLING)

    def finish(self):
        self._transition(RoundState.IDLE)
        self.finished = True
        self._publish("finished", crash_point=str(self._crash_point))

    def cancel(self):
        """Abandon the round from any state; later ticks are rejected."""
        if self.cancelled or self.finished:
            return
        previous = self.state
        self.cancelled = True
        self.state = RoundState.IDLE
        self._publish("cancelled", previous_state=previous.value)
        self._listeners.clear()
