from decimal import Decimal
from django.conf import settings
from django.db import models

class GameRound(models.Model):
    COUNTDOWN = "COUNTDOWN"
    FLYING = "FLYING"
    CRASHED = "CRASHED"
    SETTLING = "SETTLING"
    SETTLED = "SETTLED"
    CANCELLED = "CANCELLED"

    ROUND_STATUS = [
        (COUNTDOWN, "Countdown (bets open)"),
        (FLYING, "Flying"),
        (CRASHED, "Crashed"),
        (SETTLING, "Settling"),
        (SETTLED, "Settled"),
        (CANCELLED, "Cancelled"),
    ]
    ACTIVE_STATUSES = (COUNTDOWN, FLYING, CRASHED, SETTLING)

    table = models.CharField(max_length=32, default="main", db_index=True)
    server_seed = models.CharField(max_length=128)
    server_seed_hash = models.CharField(max_length=64)  # sha256(server_seed)
    client_seed = models.CharField(max_length=64)
    nonce = models.PositiveBigIntegerField()
    crash_point = models.DecimalField(max_digits=12, decimal_places=2)
    current_multiplier = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("1.00"))
    status = models.CharField(max_length=16, choices=ROUND_STATUS, default=COUNTDOWN)
    started_at = models.DateTimeField(null=True, blank=True)
    crashed_at = models.DateTimeField(null=True, blank=True)
    settled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-id"]
        indexes = [models.Index(fields=["table", "status"], name="aviator_round_table_status_idx")]

    def __str__(self):
        return f"Round {self.id} ({self.table}) {self.status}"

    @property
    def is_revealed(self):
        """Crash point and seed are public once the plane is gone."""
        return self.status in (self.CRASHED, self.SETTLING, self.SETTLED)


class CrashBet(models.Model):
    ACTIVE = "ACTIVE"
    CASHED_OUT = "CASHED_OUT"
    LOST = "LOST"
    REFUNDED = "REFUNDED"

    BET_STATUS = [
        (ACTIVE, "Active"),
        (CASHED_OUT, "Cashed Out"),
        (LOST, "Lost"),
        (REFUNDED, "Refunded"),
    ]
    SETTLED_STATUSES = (CASHED_OUT, LOST, REFUNDED)

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="crash_bets")
    round = models.ForeignKey(GameRound, on_delete=models.CASCADE, related_name="bets")
    bet_amount = models.DecimalField(max_digits=18, decimal_places=2)
    auto_cashout = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True
    )
    cashout_multiplier = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True
    )
    win_amount = models.DecimalField(max_digits=18, decimal_places=2, default=0)
    status = models.CharField(max_length=16, choices=BET_STATUS, default=ACTIVE)
    cashed_out_at = models.DateTimeField(null=True, blank=True)
    settled_at = models.DateTimeField(null=True, blank=True)
    session = models.ForeignKey(
        "games.GameSession", on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = [("user", "round")]
        indexes = [
            models.Index(fields=["round", "status"], name="aviator_bet_round_status_idx"),
            models.Index(fields=["user", "created_at"], name="aviator_bet_user_created_idx"),
        ]

    def __str__(self):
        return f"Bet {self.id} on Round {self.round_id}"

    @property
    def is_settled(self):
        return self.status in self.SETTLED_STATUSES


class RiskSettings(models.Model):
    # Singleton row, managed via admin or `update_risk_settings`
    house_edge_percent = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("5.00"))
    min_bet_per_player = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal("1.00"))
    max_bet_per_player = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal("1000.00"))
    max_exposure_per_round = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal("100000.00"))
    # Settlement cap on generated crash points (not the display cap)
    max_multiplier_cap = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("10000.00"))
    display_multiplier_cap = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("100.00"))
    min_auto_cashout = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("1.01"))
    max_auto_cashout = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("1000.00"))

    countdown_ms = models.PositiveIntegerField(default=2000)
    tick_interval_ms = models.PositiveIntegerField(default=100)
    crash_pause_ms = models.PositiveIntegerField(default=3000)
    allow_bets_in_flight = models.BooleanField(default=False)

    def __str__(self):
        return "Aviator Risk Settings"

    @property
    def house_edge(self) -> Decimal:
        return self.house_edge_percent / Decimal(100)

    @staticmethod
    def get():
        obj, _ = RiskSettings.objects.get_or_create(pk=1)
        return obj


class AuditLog(models.Model):
    ACTION_TYPES = [
        ("BET_PLACED", "Bet placed"),
        ("CASHOUT", "Cashout"),
        ("CASHOUT_TOO_LATE", "Cashout after crash"),
        ("SETTLEMENT_CONFLICT", "Duplicate settlement attempt"),
        ("LOSS", "Bet lost"),
        ("REFUND", "Bet refunded"),
        ("BACKEND_FAILURE", "Wallet backend failure"),
    ]
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    action = models.CharField(max_length=32, choices=ACTION_TYPES)
    details = models.JSONField(default=dict)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=["action", "created_at"], name="aviator_audit_action_idx")]
