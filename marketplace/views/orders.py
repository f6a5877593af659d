import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsBuyer, IsVendor
from marketplace.exceptions import (
    NotAuthorized,
    NotFound,
    StateConflict,
    ValidationFailed,
)
from marketplace.serializers import (
    AcceptQuotationSerializer,
    DeliveryStatusSerializer,
    OrderSerializer,
)
from marketplace.services import OrderService

logger = logging.getLogger(__name__)


class OrderListCreateView(APIView):
    """
    GET /api/orders/ — Orders the caller is a party to.
    POST /api/orders/ — Accept a quotation (buyers only).

    Request body: {"quotationId", "paymentMethod"?: "cod" | "online"}
    """

    def get_permissions(self):
        if self.request.method == "POST":
            return [IsBuyer()]
        return super().get_permissions()

    def get(self, request, *args, **kwargs):
        orders = OrderService.orders_for(request.user)
        return Response(OrderSerializer(orders, many=True).data)

    def post(self, request, *args, **kwargs):
        serializer = AcceptQuotationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = OrderService.accept_quotation(
                quotation_id=serializer.validated_data["quotationId"],
                buyer_id=request.user.pk,
                payment_method=serializer.validated_data["paymentMethod"],
            )
        except NotFound as exc:
            return Response({"error": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        except NotAuthorized as exc:
            return Response({"error": str(exc)}, status=status.HTTP_403_FORBIDDEN)
        except StateConflict as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


class MarkOrderPaidView(APIView):
    """PUT /api/orders/<id>/pay — Buyer confirms a cash or manual payment."""

    permission_classes = [IsBuyer]

    def put(self, request, pk, *args, **kwargs):
        try:
            order = OrderService.mark_paid(pk, request.user.pk)
        except NotFound as exc:
            return Response({"error": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        except NotAuthorized as exc:
            return Response({"error": str(exc)}, status=status.HTTP_403_FORBIDDEN)

        return Response(OrderSerializer(order).data)


class DeliveryStatusView(APIView):
    """
    PUT /api/orders/<id>/status — Vendor updates delivery progress.

    Request body: {"status": "pending" | "processing" | "shipped" |
    "dispatched" | "delivered"}
    """

    permission_classes = [IsVendor]

    def put(self, request, pk, *args, **kwargs):
        serializer = DeliveryStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = OrderService.update_delivery_status(
                pk, request.user.pk, serializer.validated_data["status"]
            )
        except NotFound as exc:
            return Response({"error": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        except NotAuthorized as exc:
            return Response({"error": str(exc)}, status=status.HTTP_403_FORBIDDEN)
        except (ValidationFailed, StateConflict) as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(OrderSerializer(order).data)


class TrackOrderView(APIView):
    """GET /api/orders/<id>/track — Status summary for the order's parties."""

    def get(self, request, pk, *args, **kwargs):
        try:
            summary = OrderService.track(pk, request.user)
        except NotFound as exc:
            return Response({"error": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        except NotAuthorized as exc:
            return Response({"error": str(exc)}, status=status.HTTP_403_FORBIDDEN)

        return Response(summary)
