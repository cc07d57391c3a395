import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Game",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("slug", models.SlugField(max_length=32, unique=True)),
                ("name", models.CharField(max_length=64)),
                ("description", models.TextField(blank=True)),
                ("min_bet", models.DecimalField(decimal_places=2, default=1, max_digits=18)),
                ("max_bet", models.DecimalField(decimal_places=2, default=1000, max_digits=18)),
                ("house_edge", models.DecimalField(decimal_places=4, default=0, max_digits=5)),
                ("image_url", models.URLField(blank=True)),
                ("active", models.BooleanField(default=True)),
            ],
        ),
        migrations.CreateModel(
            name="GameSession",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("bet_amount", models.DecimalField(decimal_places=2, max_digits=18)),
                ("win_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=18, null=True)),
                ("outcome", models.CharField(max_length=255)),
                ("played_at", models.DateTimeField(auto_now_add=True)),
                (
                    "game",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="sessions",
                        to="games.game",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="game_sessions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-played_at", "-id"],
                "indexes": [models.Index(fields=["user", "played_at"], name="game_session_user_played_idx")],
            },
        ),
    ]
