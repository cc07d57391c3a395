from django.contrib import admin
from .models import Wallet, WalletTransaction


@admin.register(Wallet)
class WalletAdmin(admin.ModelAdmin):
    list_display = ("user", "balance", "locked_balance", "total_winnings", "total_losses", "updated_at")
    search_fields = ("user__username", "user__email")


@admin.register(WalletTransaction)
class WalletTransactionAdmin(admin.ModelAdmin):
    list_display = ("reference", "user", "kind", "amount", "description", "created_at")
    list_filter = ("kind",)
    search_fields = ("reference", "user__username")
    readonly_fields = ("user", "amount", "kind", "reference", "description", "meta", "created_at")
