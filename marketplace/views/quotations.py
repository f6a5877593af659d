import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsVendor
from marketplace.exceptions import (
    ListClosed,
    ListNotFound,
    NotAuthorized,
    ValidationFailed,
)
from marketplace.serializers import QuotationSerializer, SubmitQuotationSerializer
from marketplace.services import QuotationService
from wallets.exceptions import InsufficientBalance

logger = logging.getLogger(__name__)


class QuotationListCreateView(APIView):
    """
    GET /api/quotations/ — Quotations visible to the caller.

    Query params:
        - listId: Buyers only; restrict to one of their lists.

    POST /api/quotations/ — Submit a bid (vendors only).

    Request body: {"listId", "prices": [{"itemName", "basePrice",
    "discount"?, "product"?}], "validUntil"?}
    """

    def get_permissions(self):
        if self.request.method == "POST":
            return [IsVendor()]
        return super().get_permissions()

    def get(self, request, *args, **kwargs):
        list_id = request.query_params.get("listId")
        try:
            quotations = QuotationService.list_quotations(
                request.user, int(list_id) if list_id else None
            )
        except ValueError:
            return Response(
                {"error": "listId must be an integer."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        except NotAuthorized as exc:
            return Response({"error": str(exc)}, status=status.HTTP_403_FORBIDDEN)

        return Response(QuotationSerializer(quotations, many=True).data)

    def post(self, request, *args, **kwargs):
        serializer = SubmitQuotationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            quotation = QuotationService.submit_quotation(
                list_id=data["listId"],
                vendor_id=request.user.pk,
                price_lines=data["prices"],
                valid_until=data.get("validUntil"),
            )
        except ListNotFound as exc:
            return Response({"error": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        except (ListClosed, ValidationFailed, InsufficientBalance) as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(
            QuotationSerializer(quotation).data, status=status.HTTP_201_CREATED
        )
