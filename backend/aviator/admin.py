from django.contrib import admin
from .models import AuditLog, CrashBet, GameRound, RiskSettings


@admin.register(GameRound)
class GameRoundAdmin(admin.ModelAdmin):
    list_display = ("id", "table", "status", "crash_point", "current_multiplier", "nonce", "created_at")
    list_filter = ("table", "status")
    readonly_fields = ("server_seed", "server_seed_hash", "client_seed", "nonce", "crash_point")


@admin.register(CrashBet)
class CrashBetAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "round", "bet_amount", "auto_cashout", "cashout_multiplier", "win_amount", "status")
    list_filter = ("status",)
    search_fields = ("user__username",)


@admin.register(RiskSettings)
class RiskSettingsAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return not RiskSettings.objects.exists()


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("action", "user", "created_at")
    list_filter = ("action",)
    readonly_fields = ("user", "action", "details", "created_at")
