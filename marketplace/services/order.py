import logging

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from marketplace.exceptions import (
    InvalidStatusTransition,
    ListClosed,
    NotAuthorized,
    OrderNotFound,
    QuotationNotFound,
    QuotationNotPending,
    ValidationFailed,
)
from marketplace.models import GroceryList, Order, Quotation

logger = logging.getLogger(__name__)

DELIVERY_SEQUENCE = list(Order.DeliveryStatus.values)


def strict_delivery_transitions() -> bool:
    return getattr(settings, "STRICT_DELIVERY_TRANSITIONS", False)


class OrderService:
    """
    Acceptance of quotations and the order lifecycle that follows.

    Acceptance closes the list with a conditional UPDATE; whichever request
    flips it from open to closed is the only one that creates an order.
    """

    @staticmethod
    @transaction.atomic
    def accept_quotation(quotation_id, buyer_id, payment_method=Order.PaymentMethod.COD) -> Order:
        """
        Turn a quotation into an order.

        Raises:
            QuotationNotFound: If the quotation doesn't exist.
            NotAuthorized: If the caller doesn't own the quotation's list.
            ListClosed: If the list was already closed.
            QuotationNotPending: If the quotation was withdrawn or rejected.
        """
        try:
            quotation = Quotation.objects.select_related("grocery_list").get(
                pk=quotation_id
            )
        except Quotation.DoesNotExist:
            raise QuotationNotFound(quotation_id)

        grocery_list = quotation.grocery_list
        if grocery_list.buyer_id != buyer_id:
            raise NotAuthorized("Not authorized to accept this quote.")

        now = timezone.now()
        closed = GroceryList.objects.filter(
            pk=grocery_list.pk, status=GroceryList.Status.OPEN
        ).update(status=GroceryList.Status.CLOSED, updated_at=now)
        if not closed:
            logger.warning(
                "Acceptance rejected, list already closed: list=%d quotation=%d",
                grocery_list.pk,
                quotation.pk,
            )
            raise ListClosed(grocery_list.pk)

        # Raising here rolls the list closure back with the transaction.
        accepted = Quotation.objects.filter(
            pk=quotation.pk, status=Quotation.Status.PENDING
        ).update(status=Quotation.Status.ACCEPTED, updated_at=now)
        if not accepted:
            raise QuotationNotPending(quotation.pk, quotation.status)

        Quotation.objects.filter(
            grocery_list=grocery_list, status=Quotation.Status.PENDING
        ).update(status=Quotation.Status.REJECTED, updated_at=now)

        order = Order.objects.create(
            quotation=quotation,
            buyer_id=buyer_id,
            vendor_id=quotation.vendor_id,
            total_amount=quotation.total_amount,
            payment_method=payment_method or Order.PaymentMethod.COD,
        )

        logger.info(
            "Quotation accepted: quotation=%d list=%d order=%d buyer=%s vendor=%s total=%s",
            quotation.pk,
            grocery_list.pk,
            order.pk,
            buyer_id,
            quotation.vendor_id,
            order.total_amount,
        )
        return order

    @staticmethod
    def _get_order(order_id, for_update=False) -> Order:
        queryset = Order.objects.select_related("buyer", "vendor")
        if for_update:
            queryset = queryset.select_for_update()
        try:
            return queryset.get(pk=order_id)
        except Order.DoesNotExist:
            raise OrderNotFound(order_id)

    @staticmethod
    @transaction.atomic
    def mark_paid(order_id, buyer_id) -> Order:
        """Cash-on-delivery or manual confirmation by the buyer; no ledger effect."""
        order = OrderService._get_order(order_id, for_update=True)
        if order.buyer_id != buyer_id:
            raise NotAuthorized()

        order.payment_status = Order.PaymentStatus.PAID
        order.save(update_fields=["payment_status", "updated_at"])
        logger.info("Order marked paid by buyer: order=%d", order.pk)
        return order

    @staticmethod
    @transaction.atomic
    def update_delivery_status(order_id, vendor_id, new_status: str) -> Order:
        """
        Set the delivery status of a vendor's order.

        Any known status is accepted unless STRICT_DELIVERY_TRANSITIONS is
        on, in which case the status may only stay put or move forward.
        """
        if new_status not in DELIVERY_SEQUENCE:
            raise ValidationFailed(f"Unknown delivery status: {new_status}")

        order = OrderService._get_order(order_id, for_update=True)
        if order.vendor_id != vendor_id:
            raise NotAuthorized("Not authorized to update this order.")

        current = order.delivery_status
        if strict_delivery_transitions() and DELIVERY_SEQUENCE.index(
            new_status
        ) < DELIVERY_SEQUENCE.index(current):
            raise InvalidStatusTransition(current, new_status)

        order.delivery_status = new_status
        order.save(update_fields=["delivery_status", "updated_at"])
        logger.info(
            "Delivery status changed: order=%d %s -> %s", order.pk, current, new_status
        )
        return order

    @staticmethod
    def orders_for(user):
        queryset = Order.objects.select_related("buyer", "vendor", "quotation")
        if user.is_admin_role:
            return queryset
        if user.is_buyer:
            return queryset.filter(buyer=user)
        if user.is_vendor:
            return queryset.filter(vendor=user)
        if user.role == user.Role.LOGISTICS:
            return queryset.filter(logistics=user)
        return queryset.none()

    @staticmethod
    def track(order_id, user) -> dict:
        order = OrderService._get_order(order_id)
        if not (
            user.is_admin_role or user.pk in (order.buyer_id, order.vendor_id)
        ):
            raise NotAuthorized("Not authorized to track this order.")

        return {
            "id": order.pk,
            "deliveryStatus": order.delivery_status,
            "paymentStatus": order.payment_status,
            "totalAmount": order.total_amount,
            "createdAt": order.created_at,
            "vendorName": order.vendor.username,
        }
