from decimal import Decimal
from rest_framework import serializers
from .models import Game, GameSession


class GameSerializer(serializers.ModelSerializer):
    class Meta:
        model = Game
        fields = ["slug", "name", "description", "min_bet", "max_bet", "house_edge", "image_url"]


class GameSessionSerializer(serializers.ModelSerializer):
    game = serializers.SlugRelatedField(slug_field="slug", read_only=True)

    class Meta:
        model = GameSession
        fields = ["id", "game", "bet_amount", "win_amount", "outcome", "played_at"]


class InstantPlaySerializer(serializers.Serializer):
    bet_amount = serializers.DecimalField(max_digits=18, decimal_places=2, min_value=Decimal("0.01"))
    choice = serializers.CharField(max_length=10)
