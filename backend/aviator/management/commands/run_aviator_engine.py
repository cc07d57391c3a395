import signal
import threading
import time

from django.conf import settings
from django.core.management.base import BaseCommand

from aviator.engine import create_new_round, run_single_round
from aviator.exceptions import EngineLockLost, RoundInProgress
from aviator.models import RiskSettings
from aviator.redis_lock import LockHeartbeat, RedisEngineLock, engine_lock_key
from aviator.settlement import settle_pending_rounds

RECONCILE_BACKOFF = 2  # seconds


class Command(BaseCommand):
    help = "Run the Aviator round engine for one table with a Redis single-instance lock"

    def add_arguments(self, parser):
        parser.add_argument("--table", default="main", help="Table to run (default: main)")
        parser.add_argument(
            "--lock-ttl",
            type=int,
            default=None,
            help="Lock TTL in seconds (default: AVIATOR_ENGINE_LOCK_TTL)",
        )
        parser.add_argument(
            "--heartbeat-interval",
            type=float,
            default=5,
            help="Heartbeat interval in seconds (default: 5)",
        )
        parser.add_argument(
            "--rounds",
            type=int,
            default=0,
            help="Stop after this many rounds (default: run forever)",
        )

    def handle(self, *args, **options):
        table = options["table"]
        lock_ttl = options["lock_ttl"] or settings.AVIATOR_ENGINE_LOCK_TTL
        heartbeat_interval = options["heartbeat_interval"]
        max_rounds = options["rounds"]

        self.stdout.write(f"[AVIATOR:{table}] Starting with lock TTL: {lock_ttl}s, heartbeat: {heartbeat_interval}s")

        lock = RedisEngineLock(engine_lock_key(table), lock_ttl)
        if not lock.acquire():
            self.stdout.write(self.style.WARNING(f"[AVIATOR:{table}] Another engine already running. Exiting."))
            return

        self.stdout.write(self.style.SUCCESS(f"[AVIATOR:{table}] Lock acquired. Engine starting."))

        heartbeat = LockHeartbeat(lock, every_seconds=heartbeat_interval)
        stop_event = threading.Event()

        def shutdown(*_):
            stop_event.set()
            self.stdout.write(self.style.WARNING(f"[AVIATOR:{table}] Shutdown requested."))

        signal.signal(signal.SIGINT, shutdown)
        signal.signal(signal.SIGTERM, shutdown)

        try:
            RiskSettings.get()

            closed = settle_pending_rounds(table)
            if closed:
                self.stdout.write(self.style.WARNING(f"[AVIATOR:{table}] Reconciled {closed} unfinished rounds"))

            played = 0
            while not stop_event.is_set():
                heartbeat.tick()

                round_start = time.monotonic()
                try:
                    round_obj = create_new_round(table)
                except RoundInProgress:
                    # A degraded round is still open: close it before starting the next one
                    closed = settle_pending_rounds(table)
                    self.stdout.write(self.style.WARNING(
                        f"[AVIATOR:{table}] Round still open, reconciled {closed} unfinished rounds"
                    ))
                    if not closed and stop_event.wait(RECONCILE_BACKOFF):
                        break
                    continue

                round_obj = run_single_round(round_obj, heartbeat=heartbeat, stop_event=stop_event)

                self.stdout.write(self.style.SUCCESS(
                    f"[AVIATOR:{table}] Round {round_obj.id} {round_obj.status} "
                    f"in {time.monotonic() - round_start:.2f} seconds"
                ))

                played += 1
                if max_rounds and played >= max_rounds:
                    break

        except EngineLockLost as e:
            self.stdout.write(self.style.ERROR(f"[AVIATOR:{table}] {e}. Another instance may have taken over."))
        finally:
            lock.release()
            self.stdout.write(self.style.SUCCESS(f"[AVIATOR:{table}] Lock released. Engine stopped."))
