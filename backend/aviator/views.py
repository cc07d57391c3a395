import logging

from django.db.models import Count, Sum
from rest_framework import generics, permissions, status, views
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from wallets.exceptions import WalletError
from .exceptions import CrashGameError
from .models import CrashBet, GameRound, RiskSettings
from .provably_fair import verify_round
from .serializers import (
    CashOutSerializer,
    CrashBetSerializer,
    GameRoundSerializer,
    PlaceBetSerializer,
    VerifyRoundSerializer,
)
from .settlement import cash_out as settle_cash_out
from .settlement import get_open_round
from .settlement import place_bet as settle_place_bet

logger = logging.getLogger(__name__)


def _error(e):
    return Response({"error": str(e), "code": e.code}, status=e.http_status)


class RecentRoundsView(generics.ListAPIView):
    serializer_class = GameRoundSerializer
    permission_classes = [permissions.AllowAny]
    pagination_class = None

    def get_queryset(self):
        table = self.request.query_params.get("table", "main")
        return GameRound.objects.filter(
            table=table, status__in=[GameRound.SETTLED, GameRound.SETTLING, GameRound.CRASHED]
        ).order_by("-id")[:50]


class VerifyRoundView(views.APIView):
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = VerifyRoundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        risk = RiskSettings.get()
        ok = verify_round(
            data["server_seed"],
            data["client_seed"],
            data["nonce"],
            data["crash_point"],
            house_edge=risk.house_edge,
            cap=risk.max_multiplier_cap,
        )
        return Response({"valid": ok})


@api_view(["GET"])
@permission_classes([AllowAny])
def current_round(request):
    table = request.query_params.get("table", "main")
    round_obj = get_open_round(table)
    if not round_obj:
        return Response({"round": None})
    return Response({"round": GameRoundSerializer(round_obj).data})


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def place_bet(request):
    serializer = PlaceBetSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(
            {"error": "Invalid parameters", "code": "invalid_amount", "details": serializer.errors},
            status=status.HTTP_400_BAD_REQUEST,
        )
    data = serializer.validated_data

    try:
        bet = settle_place_bet(
            request.user,
            data["amount"],
            table=data["table"],
            auto_cashout=data.get("auto_cashout") or None,
        )
    except (CrashGameError, WalletError) as e:
        return _error(e)

    return Response(CrashBetSerializer(bet).data, status=status.HTTP_201_CREATED)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def cash_out(request):
    serializer = CashOutSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(
            {"error": "Invalid parameters", "details": serializer.errors},
            status=status.HTTP_400_BAD_REQUEST,
        )

    try:
        outcome = settle_cash_out(request.user, serializer.validated_data["bet_id"])
    except CrashBet.DoesNotExist:
        return Response({"error": "Bet not found", "code": "not_found"}, status=status.HTTP_404_NOT_FOUND)
    except (CrashGameError, WalletError) as e:
        return _error(e)

    # Too-late and duplicate requests are answered, not failed
    return Response(outcome.as_dict())


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def get_history(request):
    bets = CrashBet.objects.filter(user=request.user).select_related("round").order_by("-id")
    return Response(CrashBetSerializer(bets[:50], many=True).data)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def get_stats(request):
    bets = CrashBet.objects.filter(user=request.user)
    totals = bets.aggregate(
        count=Count("id"),
        wagered=Sum("bet_amount"),
        won=Sum("win_amount"),
    )
    wins = bets.filter(status=CrashBet.CASHED_OUT).count()
    return Response({
        "total_bets": totals["count"],
        "total_wagered": str(totals["wagered"] or 0),
        "total_won": str(totals["won"] or 0),
        "wins": wins,
        "losses": bets.filter(status=CrashBet.LOST).count(),
    })
