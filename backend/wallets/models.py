from django.conf import settings
from django.db import models

class Wallet(models.Model):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="wallet",
    )
    balance = models.DecimalField(max_digits=18, decimal_places=2, default=0)
    # Stakes of wagers that are placed but not settled yet
    locked_balance = models.DecimalField(max_digits=18, decimal_places=2, default=0)
    total_winnings = models.DecimalField(max_digits=18, decimal_places=2, default=0)
    total_losses = models.DecimalField(max_digits=18, decimal_places=2, default=0)

    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Wallet({self.user_id})"



class WalletTransaction(models.Model):
    BET_PLACED = "bet_placed"
    GAME_WIN = "game_win"
    GAME_LOSS = "game_loss"
    BET_REFUND = "bet_refund"
    ADJUSTMENT = "adjustment"
    KIND_CHOICES = [
        (BET_PLACED, "Bet placed"),
        (GAME_WIN, "Game win"),
        (GAME_LOSS, "Game loss"),
        (BET_REFUND, "Bet refund"),
        (ADJUSTMENT, "Adjustment"),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="wallet_txs"
    )
    # Signed balance delta
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    kind = models.CharField(max_length=16, choices=KIND_CHOICES)
    reference = models.CharField(max_length=64, unique=True)
    description = models.CharField(max_length=255, blank=True)
    meta = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["user", "created_at"], name="wallet_tx_user_created_idx"),
        ]

    def __str__(self):
        return f"{self.kind} {self.amount} for {self.user_id}"
