from rest_framework import serializers
from .models import GameRound, CrashBet


class GameRoundSerializer(serializers.ModelSerializer):
    class Meta:
        model = GameRound
        fields = [
            "id",
            "table",
            "status",
            "current_multiplier",
            "crash_point",
            "server_seed",
            "server_seed_hash",
            "client_seed",
            "nonce",
            "started_at",
            "crashed_at",
            "created_at",
        ]

    def to_representation(self, instance):
        data = super().to_representation(instance)
        # Hash is committed up front; the seed and result only after the crash
        if not instance.is_revealed:
            data["crash_point"] = None
            data["server_seed"] = None
        return data


class CrashBetSerializer(serializers.ModelSerializer):
    class Meta:
        model = CrashBet
        fields = [
            "id",
            "round",
            "bet_amount",
            "auto_cashout",
            "cashout_multiplier",
            "win_amount",
            "status",
            "created_at",
            "settled_at",
        ]


class PlaceBetSerializer(serializers.Serializer):
    amount = serializers.CharField()
    auto_cashout = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    table = serializers.CharField(required=False, default="main", max_length=32)


class CashOutSerializer(serializers.Serializer):
    bet_id = serializers.IntegerField()


class VerifyRoundSerializer(serializers.Serializer):
    server_seed = serializers.CharField()
    client_seed = serializers.CharField()
    nonce = serializers.IntegerField(min_value=0)
    crash_point = serializers.DecimalField(max_digits=12, decimal_places=2)
