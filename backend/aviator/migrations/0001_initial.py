from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("games", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="GameRound",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("table", models.CharField(db_index=True, default="main", max_length=32)),
                ("server_seed", models.CharField(max_length=128)),
                ("server_seed_hash", models.CharField(max_length=64)),
                ("client_seed", models.CharField(max_length=64)),
                ("nonce", models.PositiveBigIntegerField()),
                ("crash_point", models.DecimalField(decimal_places=2, max_digits=12)),
                ("current_multiplier", models.DecimalField(decimal_places=2, default=Decimal("1.00"), max_digits=12)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("COUNTDOWN", "Countdown (bets open)"),
                            ("FLYING", "Flying"),
                            ("CRASHED", "Crashed"),
                            ("SETTLING", "Settling"),
                            ("SETTLED", "Settled"),
                            ("CANCELLED", "Cancelled"),
                        ],
                        default="COUNTDOWN",
                        max_length=16,
                    ),
                ),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("crashed_at", models.DateTimeField(blank=True, null=True)),
                ("settled_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["-id"],
                "indexes": [models.Index(fields=["table", "status"], name="aviator_round_table_status_idx")],
            },
        ),
        migrations.CreateModel(
            name="RiskSettings",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("house_edge_percent", models.DecimalField(decimal_places=2, default=Decimal("5.00"), max_digits=5)),
                ("min_bet_per_player", models.DecimalField(decimal_places=2, default=Decimal("1.00"), max_digits=18)),
                ("max_bet_per_player", models.DecimalField(decimal_places=2, default=Decimal("1000.00"), max_digits=18)),
                ("max_exposure_per_round", models.DecimalField(decimal_places=2, default=Decimal("100000.00"), max_digits=18)),
                ("max_multiplier_cap", models.DecimalField(decimal_places=2, default=Decimal("10000.00"), max_digits=12)),
                ("display_multiplier_cap", models.DecimalField(decimal_places=2, default=Decimal("100.00"), max_digits=12)),
                ("min_auto_cashout", models.DecimalField(decimal_places=2, default=Decimal("1.01"), max_digits=12)),
                ("max_auto_cashout", models.DecimalField(decimal_places=2, default=Decimal("1000.00"), max_digits=12)),
                ("countdown_ms", models.PositiveIntegerField(default=2000)),
                ("tick_interval_ms", models.PositiveIntegerField(default=100)),
                ("crash_pause_ms", models.PositiveIntegerField(default=3000)),
                ("allow_bets_in_flight", models.BooleanField(default=False)),
            ],
        ),
        migrations.CreateModel(
            name="AuditLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "action",
                    models.CharField(
                        choices=[
                            ("BET_PLACED", "Bet placed"),
                            ("CASHOUT", "Cashout"),
                            ("CASHOUT_TOO_LATE", "Cashout after crash"),
                            ("SETTLEMENT_CONFLICT", "Duplicate settlement attempt"),
                            ("LOSS", "Bet lost"),
                            ("REFUND", "Bet refunded"),
                            ("BACKEND_FAILURE", "Wallet backend failure"),
                        ],
                        max_length=32,
                    ),
                ),
                ("details", models.JSONField(default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["action", "created_at"], name="aviator_audit_action_idx")],
            },
        ),
        migrations.CreateModel(
            name="CrashBet",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("bet_amount", models.DecimalField(decimal_places=2, max_digits=18)),
                ("auto_cashout", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("cashout_multiplier", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("win_amount", models.DecimalField(decimal_places=2, default=0, max_digits=18)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("ACTIVE", "Active"),
                            ("CASHED_OUT", "Cashed Out"),
                            ("LOST", "Lost"),
                            ("REFUNDED", "Refunded"),
                        ],
                        default="ACTIVE",
                        max_length=16,
                    ),
                ),
                ("cashed_out_at", models.DateTimeField(blank=True, null=True)),
                ("settled_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "round",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bets",
                        to="aviator.gameround",
                    ),
                ),
                (
                    "session",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="games.gamesession",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="crash_bets",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "unique_together": {("user", "round")},
                "indexes": [
                    models.Index(fields=["round", "status"], name="aviator_bet_round_status_idx"),
                    models.Index(fields=["user", "created_at"], name="aviator_bet_user_created_idx"),
                ],
            },
        ),
    ]
