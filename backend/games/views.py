from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated, AllowAny
from rest_framework.response import Response

from wallets.exceptions import WalletError
from .models import Game, GameSession
from .serializers import GameSerializer, GameSessionSerializer, InstantPlaySerializer
from .services import GameError, get_game, play_coin_flip, play_dice_roll
from .defaults import DEFAULT_GAMES


@api_view(['GET'])
@permission_classes([AllowAny])
def list_games(request):
    for slug in DEFAULT_GAMES:
        get_game(slug)
    games = Game.objects.filter(active=True).order_by("name")
    return Response(GameSerializer(games, many=True).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def game_history(request):
    sessions = GameSession.objects.filter(user=request.user).select_related("game")
    game = request.query_params.get("game")
    if game:
        sessions = sessions.filter(game__slug=game)
    return Response(GameSessionSerializer(sessions[:50], many=True).data)


def _play(request, play):
    serializer = InstantPlaySerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': 'Invalid parameters', 'details': serializer.errors},
                        status=status.HTTP_400_BAD_REQUEST)

    try:
        result = play(
            request.user,
            serializer.validated_data["bet_amount"],
            serializer.validated_data["choice"],
        )
    except (GameError, WalletError) as e:
        return Response({'error': str(e), 'code': e.code}, status=e.http_status)

    return Response({
        'win': result.win,
        'win_amount': str(result.win_amount),
        'new_balance': str(result.balance),
        'session_id': result.session.id,
        'outcome': result.session.outcome,
        **result.detail,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def coin_flip(request):
    return _play(request, play_coin_flip)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def dice_roll(request):
    return _play(request, play_dice_roll)
