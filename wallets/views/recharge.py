import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from wallets.exceptions import (
    GatewayError,
    InvalidSignature,
    TransactionAlreadyProcessed,
)
from wallets.serializers import GatewayVerificationSerializer, RechargeSerializer
from wallets.services import RechargeService

logger = logging.getLogger(__name__)


class CreateRechargeView(APIView):
    """
    POST /api/wallet/recharge — Open a gateway order for a wallet top-up.

    Request body: {"amount": <positive decimal>}
    """

    def post(self, request, *args, **kwargs):
        serializer = RechargeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            _, gateway_order = RechargeService.create_recharge(
                user_id=request.user.pk,
                amount=serializer.validated_data["amount"],
            )
        except ValueError as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        except GatewayError as exc:
            return Response({"error": str(exc)}, status=status.HTTP_502_BAD_GATEWAY)

        return Response(gateway_order, status=status.HTTP_200_OK)


class VerifyRechargeView(APIView):
    """
    POST /api/wallet/verify — Confirm a recharge and credit the wallet.

    Request body: {"razorpay_order_id", "razorpay_payment_id", "razorpay_signature"}
    """

    def post(self, request, *args, **kwargs):
        serializer = GatewayVerificationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            balance = RechargeService.verify_recharge(
                gateway_order_id=data["razorpay_order_id"],
                gateway_payment_id=data["razorpay_payment_id"],
                signature=data["razorpay_signature"],
                user_id=request.user.pk,
            )
        except InvalidSignature as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        except TransactionAlreadyProcessed as exc:
            return Response({"error": str(exc)}, status=status.HTTP_404_NOT_FOUND)

        return Response(
            {"message": "Wallet recharged successfully", "balance": balance},
            status=status.HTTP_200_OK,
        )
