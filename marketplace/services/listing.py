import logging

from django.db import transaction
from django.db.models import Max
from django.utils import timezone

from marketplace.exceptions import (
    ListClosed,
    ListNotFound,
    NotAuthorized,
    ValidationFailed,
)
from marketplace.models import GroceryList, ListItem, Quotation
from marketplace.notifications import NEW_LIST, broadcast_on_commit
from marketplace.serializers import GroceryListSerializer
from marketplace.services.quotation import parse_number

logger = logging.getLogger(__name__)

ITEM_FIELDS = (
    "product_ref",
    "name",
    "quantity",
    "unit",
    "quality",
    "brand_preference",
    "specifications",
)


def _item_fields(item: dict) -> dict:
    fields = {key: item.get(key) or "" for key in ITEM_FIELDS}
    if not fields["name"] or not fields["quantity"]:
        raise ValidationFailed("Every item needs a name and a quantity.")
    fields["quantity"] = str(fields["quantity"])
    return fields


def _can_manage(grocery_list, user) -> bool:
    return grocery_list.buyer_id == user.pk or user.is_admin_role


class ListService:
    """Buyer requirement lists: creation, item appends and closing."""

    @staticmethod
    @transaction.atomic
    def create_list(
        buyer_id, title: str, items, expected_price=None, expires_at=None
    ) -> GroceryList:
        """Create an open list and broadcast it to connected vendors after commit."""
        if not title:
            raise ValidationFailed("A list needs a title.")
        if not items:
            raise ValidationFailed("No items in the list.")

        item_fields = [_item_fields(item) for item in items]

        grocery_list = GroceryList.objects.create(
            buyer_id=buyer_id,
            title=title,
            expected_price=expected_price,
            expires_at=expires_at,
        )
        ListItem.objects.bulk_create(
            [
                ListItem(grocery_list=grocery_list, position=position, **fields)
                for position, fields in enumerate(item_fields)
            ]
        )

        logger.info(
            "List created: list=%d buyer=%s items=%d",
            grocery_list.pk,
            buyer_id,
            len(item_fields),
        )
        broadcast_on_commit(NEW_LIST, GroceryListSerializer(grocery_list).data)
        return grocery_list

    @staticmethod
    @transaction.atomic
    def add_item(list_id, user, item: dict) -> GroceryList:
        """
        Append an item to an open list.

        An item naming a catalog product already on the list adds to that
        line's quantity when both quantities are numeric.
        """
        try:
            grocery_list = GroceryList.objects.select_for_update().get(pk=list_id)
        except GroceryList.DoesNotExist:
            raise ListNotFound(list_id)

        if not _can_manage(grocery_list, user):
            raise NotAuthorized()
        if not grocery_list.is_open:
            raise ListClosed(list_id)

        fields = _item_fields(item)

        existing = None
        if fields["product_ref"]:
            existing = grocery_list.items.filter(
                product_ref=fields["product_ref"]
            ).first()

        if existing is not None:
            current = parse_number(existing.quantity)
            extra = parse_number(fields["quantity"])
            if current is not None and extra is not None:
                existing.quantity = str(current + extra)
                existing.save(update_fields=["quantity"])
                logger.info(
                    "List item merged: list=%d product=%s quantity=%s",
                    grocery_list.pk,
                    existing.product_ref,
                    existing.quantity,
                )
                return grocery_list

        next_position = grocery_list.items.aggregate(last=Max("position"))["last"]
        ListItem.objects.create(
            grocery_list=grocery_list,
            position=0 if next_position is None else next_position + 1,
            **fields,
        )
        GroceryList.objects.filter(pk=grocery_list.pk).update(updated_at=timezone.now())

        logger.info("List item added: list=%d name=%s", grocery_list.pk, fields["name"])
        return grocery_list

    @staticmethod
    @transaction.atomic
    def close_list(list_id, user) -> GroceryList:
        """
        Withdraw a list from bidding.

        The row is kept so its quotations stay attached; pending bids on it
        are rejected.
        """
        try:
            grocery_list = GroceryList.objects.select_for_update().get(pk=list_id)
        except GroceryList.DoesNotExist:
            raise ListNotFound(list_id)

        if not _can_manage(grocery_list, user):
            raise NotAuthorized("Not authorized to delete this list.")

        now = timezone.now()
        GroceryList.objects.filter(pk=grocery_list.pk).update(
            status=GroceryList.Status.CLOSED, updated_at=now
        )
        rejected = Quotation.objects.filter(
            grocery_list=grocery_list, status=Quotation.Status.PENDING
        ).update(status=Quotation.Status.REJECTED, updated_at=now)

        grocery_list.refresh_from_db()
        logger.info(
            "List closed by owner: list=%d rejected_quotations=%d",
            grocery_list.pk,
            rejected,
        )
        return grocery_list

    @staticmethod
    def visible_lists(user):
        queryset = GroceryList.objects.select_related("buyer").prefetch_related("items")
        if user.is_admin_role:
            return queryset
        if user.is_buyer:
            return queryset.filter(buyer=user)
        if user.is_vendor:
            return queryset.filter(status=GroceryList.Status.OPEN)
        return queryset.none()

    @staticmethod
    def get_list(list_id, user) -> GroceryList:
        """A single list for its owner, an admin, or a vendor while it is open."""
        try:
            grocery_list = GroceryList.objects.select_related("buyer").get(pk=list_id)
        except GroceryList.DoesNotExist:
            raise ListNotFound(list_id)

        if _can_manage(grocery_list, user) or (user.is_vendor and grocery_list.is_open):
            return grocery_list
        raise NotAuthorized("Not authorized to view this list.")
