import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsBuyer
from marketplace.exceptions import NotAuthorized, NotFound, StateConflict
from marketplace.serializers import (
    OrderPaymentVerificationSerializer,
    PaymentOrderSerializer,
)
from marketplace.services import PaymentService
from wallets.exceptions import GatewayError, InvalidSignature

logger = logging.getLogger(__name__)


class CreatePaymentOrderView(APIView):
    """
    POST /api/payment/create-order — Open a gateway order for an order.

    Request body: {"orderId"}
    """

    permission_classes = [IsBuyer]

    def post(self, request, *args, **kwargs):
        serializer = PaymentOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            gateway_order = PaymentService.create_payment_order(
                serializer.validated_data["orderId"], request.user.pk
            )
        except NotFound as exc:
            return Response({"error": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        except NotAuthorized as exc:
            return Response({"error": str(exc)}, status=status.HTTP_403_FORBIDDEN)
        except GatewayError as exc:
            return Response({"error": str(exc)}, status=status.HTTP_502_BAD_GATEWAY)

        return Response(gateway_order)


class VerifyPaymentView(APIView):
    """
    POST /api/payment/verify — Confirm an online payment.

    Request body: {"razorpay_order_id", "razorpay_payment_id",
    "razorpay_signature", "orderId"}
    """

    permission_classes = [IsBuyer]

    def post(self, request, *args, **kwargs):
        serializer = OrderPaymentVerificationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            outcome = PaymentService.verify_order_payment(
                gateway_order_id=data["razorpay_order_id"],
                gateway_payment_id=data["razorpay_payment_id"],
                signature=data["razorpay_signature"],
                order_id=data["orderId"],
                buyer_id=request.user.pk,
            )
        except InvalidSignature as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        except NotFound as exc:
            return Response({"error": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        except NotAuthorized as exc:
            return Response({"error": str(exc)}, status=status.HTTP_403_FORBIDDEN)
        except StateConflict as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(
            {
                "message": "Payment successful",
                "orderId": outcome.order.pk,
                "royalty": outcome.royalty,
                "commission": outcome.commission,
            }
        )
