import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsBuyer
from marketplace.exceptions import (
    ListClosed,
    ListNotFound,
    NotAuthorized,
    ValidationFailed,
)
from marketplace.serializers import (
    CreateListSerializer,
    GroceryListSerializer,
    ListItemSerializer,
)
from marketplace.services import ListService

logger = logging.getLogger(__name__)


class GroceryListView(APIView):
    """
    GET /api/lists/ — Lists visible to the caller.
    POST /api/lists/ — Create a list (buyers only).

    Request body: {"title", "items": [{"name", "quantity", ...}],
    "expectedPrice"?, "expiredAt"?}
    """

    def get_permissions(self):
        if self.request.method == "POST":
            return [IsBuyer()]
        return super().get_permissions()

    def get(self, request, *args, **kwargs):
        lists = ListService.visible_lists(request.user)
        return Response(GroceryListSerializer(lists, many=True).data)

    def post(self, request, *args, **kwargs):
        serializer = CreateListSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            grocery_list = ListService.create_list(
                buyer_id=request.user.pk,
                title=data["title"],
                items=data["items"],
                expected_price=data.get("expectedPrice"),
                expires_at=data.get("expiredAt"),
            )
        except ValidationFailed as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(
            GroceryListSerializer(grocery_list).data, status=status.HTTP_201_CREATED
        )


class GroceryListDetailView(APIView):
    """
    GET /api/lists/<id>/ — One list.
    DELETE /api/lists/<id>/ — Withdraw the list from bidding.
    """

    def get(self, request, pk, *args, **kwargs):
        try:
            grocery_list = ListService.get_list(pk, request.user)
        except ListNotFound as exc:
            return Response({"error": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        except NotAuthorized as exc:
            return Response({"error": str(exc)}, status=status.HTTP_403_FORBIDDEN)

        return Response(GroceryListSerializer(grocery_list).data)

    def delete(self, request, pk, *args, **kwargs):
        try:
            ListService.close_list(pk, request.user)
        except ListNotFound as exc:
            return Response({"error": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        except NotAuthorized as exc:
            return Response({"error": str(exc)}, status=status.HTTP_403_FORBIDDEN)

        return Response({"message": "List removed"}, status=status.HTTP_200_OK)


class AddListItemView(APIView):
    """POST /api/lists/<id>/items — Append an item to an open list."""

    permission_classes = [IsBuyer]

    def post(self, request, pk, *args, **kwargs):
        serializer = ListItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            grocery_list = ListService.add_item(pk, request.user, serializer.validated_data)
        except ListNotFound as exc:
            return Response({"error": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        except NotAuthorized as exc:
            return Response({"error": str(exc)}, status=status.HTTP_403_FORBIDDEN)
        except (ListClosed, ValidationFailed) as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        grocery_list.refresh_from_db()
        return Response(GroceryListSerializer(grocery_list).data, status=status.HTTP_200_OK)
