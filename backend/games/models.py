from django.conf import settings
from django.db import models


class Game(models.Model):
    slug = models.SlugField(max_length=32, unique=True)
    name = models.CharField(max_length=64)
    description = models.TextField(blank=True)
    min_bet = models.DecimalField(max_digits=18, decimal_places=2, default=1)
    max_bet = models.DecimalField(max_digits=18, decimal_places=2, default=1000)
    house_edge = models.DecimalField(max_digits=5, decimal_places=4, default=0)
    image_url = models.URLField(blank=True)
    active = models.BooleanField(default=True)

    def __str__(self):
        return self.name


class GameSession(models.Model):
    """One completed play of a game by one player."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="game_sessions"
    )
    game = models.ForeignKey(Game, on_delete=models.PROTECT, related_name="sessions")
    bet_amount = models.DecimalField(max_digits=18, decimal_places=2)
    win_amount = models.DecimalField(max_digits=18, decimal_places=2, null=True, blank=True)
    outcome = models.CharField(max_length=255)
    played_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-played_at", "-id"]
        indexes = [
            models.Index(fields=["user", "played_at"], name="game_session_user_played_idx"),
        ]

    def __str__(self):
        return f"{self.game_id}: {self.outcome} ({self.user_id})"
