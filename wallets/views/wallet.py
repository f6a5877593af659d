import logging

from rest_framework.generics import ListAPIView
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsAdminRole
from wallets.models import Transaction
from wallets.serializers import TransactionSerializer

logger = logging.getLogger(__name__)


class WalletView(APIView):
    """GET /api/wallet/ — Balance, referral code and ledger of the caller."""

    def get(self, request, *args, **kwargs):
        user = request.user
        user.refresh_from_db(fields=["wallet_balance"])
        transactions = Transaction.objects.filter(user=user).select_related(
            "buyer", "vendor"
        )
        return Response(
            {
                "balance": user.wallet_balance,
                "referralCode": user.referral_code,
                "transactions": TransactionSerializer(transactions, many=True).data,
            }
        )


class GlobalTransactionListView(ListAPIView):
    """
    GET /api/wallet/all — Every ledger row (admin only).

    Query params:
        - status: Filter by transaction status (pending, completed, failed)
        - type: Filter by transaction type
    """

    serializer_class = TransactionSerializer
    permission_classes = [IsAdminRole]

    def get_queryset(self):
        queryset = Transaction.objects.select_related("user", "buyer", "vendor")

        tx_status = self.request.query_params.get("status")
        if tx_status:
            queryset = queryset.filter(status=tx_status.lower())

        tx_type = self.request.query_params.get("type")
        if tx_type:
            queryset = queryset.filter(transaction_type=tx_type.lower())

        return queryset
