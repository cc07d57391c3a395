from django.contrib import admin
from .models import Game, GameSession


@admin.register(Game)
class GameAdmin(admin.ModelAdmin):
    list_display = ("slug", "name", "min_bet", "max_bet", "house_edge", "active")
    list_editable = ("min_bet", "max_bet", "active")


@admin.register(GameSession)
class GameSessionAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "game", "bet_amount", "win_amount", "outcome", "played_at")
    list_filter = ("game",)
    search_fields = ("user__username", "outcome")
