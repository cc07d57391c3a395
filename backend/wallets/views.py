import logging

from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .backends import get_wallet_backend
from .exceptions import WalletError
from .models import Wallet, WalletTransaction
from .serializers import WalletSerializer, WalletTransactionSerializer


logger = logging.getLogger(__name__)


class WalletViewSet(viewsets.GenericViewSet):
    """
    Wallet API:
    - balance (confirmed by the configured balance store)
    - transactions
    """

    permission_classes = [IsAuthenticated]
    serializer_class = WalletSerializer

    def get_queryset(self):
        return Wallet.objects.filter(user=self.request.user)

    # ---------------------------------------------------
    # BALANCE
    # ---------------------------------------------------
    @action(detail=False, methods=["get"])
    def balance(self, request):
        try:
            confirmed = get_wallet_backend().get_balance(request.user)
        except WalletError as e:
            return Response({"error": str(e), "code": e.code}, status=e.http_status)

        wallet, _ = Wallet.objects.get_or_create(user=request.user)
        data = self.get_serializer(wallet).data
        data["balance"] = str(confirmed)
        return Response(data)

    # ---------------------------------------------------
    # TRANSACTIONS
    # ---------------------------------------------------
    @action(detail=False, methods=["get"])
    def transactions(self, request):
        txs = WalletTransaction.objects.filter(user=request.user)
        kind = request.query_params.get("kind")
        if kind:
            txs = txs.filter(kind=kind)
        serializer = WalletTransactionSerializer(txs[:100], many=True)
        return Response(serializer.data)
