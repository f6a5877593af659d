import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.db import transaction

from marketplace.exceptions import NotAuthorized, OrderAlreadyPaid, OrderNotFound
from marketplace.models import Order
from wallets.conf import money_setting, to_money
from wallets.exceptions import GatewayError, InvalidSignature
from wallets.models import Transaction
from wallets.services import WalletService
from wallets.utils.gateway import (
    MOCK_ORDER_PREFIX,
    request_gateway_order,
    verify_signature,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentOutcome:
    """Ledger effects posted for one verified order payment."""

    order: Order
    royalty: Decimal
    commission: Optional[Decimal] = None


class PaymentService:
    """
    Online payment of orders through the gateway.

    A verified payment posts its whole cascade atomically: the buyer's
    payment record, the vendor's royalty deduction and, when the buyer was
    referred, the referrer's commission.
    """

    @staticmethod
    def create_payment_order(order_id, buyer_id) -> dict:
        try:
            order = Order.objects.get(pk=order_id)
        except Order.DoesNotExist:
            raise OrderNotFound(order_id)
        if order.buyer_id != buyer_id:
            raise NotAuthorized()

        result = request_gateway_order(
            order.total_amount, f"receipt_order_{order.pk}", MOCK_ORDER_PREFIX
        )
        if not result["success"]:
            raise GatewayError(str(result["response"]))
        return result["response"]

    @staticmethod
    @transaction.atomic
    def verify_order_payment(
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
        order_id,
        buyer_id=None,
    ) -> PaymentOutcome:
        """
        Verify a gateway confirmation and post the payment cascade.

        Raises:
            InvalidSignature: If the confirmation is not authentic; nothing
                is written.
            OrderNotFound: If the local order doesn't exist.
            NotAuthorized: If `buyer_id` is given and doesn't own the order.
            OrderAlreadyPaid: If the cascade already ran for this order.
        """
        if not verify_signature(
            gateway_order_id, gateway_payment_id, signature, MOCK_ORDER_PREFIX
        ):
            raise InvalidSignature()

        try:
            order = (
                Order.objects.select_for_update()
                .select_related("buyer", "vendor")
                .get(pk=order_id)
            )
        except Order.DoesNotExist:
            raise OrderNotFound(order_id)

        if buyer_id is not None and order.buyer_id != buyer_id:
            raise NotAuthorized()
        if order.payment_status == Order.PaymentStatus.PAID:
            raise OrderAlreadyPaid(order.pk)

        order.payment_status = Order.PaymentStatus.PAID
        order.save(update_fields=["payment_status", "updated_at"])

        links = {
            "buyer_id": order.buyer_id,
            "vendor_id": order.vendor_id,
            "order": order,
            "reference_id": str(order.pk),
        }

        WalletService.record(
            order.buyer_id,
            order.total_amount,
            Transaction.TransactionType.ORDER_PAYMENT,
            description=f"Payment for Order #{order.pk} to {order.vendor.username}",
            gateway_order_id=gateway_order_id,
            gateway_payment_id=gateway_payment_id or "",
            **links,
        )

        # Royalty is taken whatever the vendor's balance.
        royalty = to_money(order.total_amount * money_setting("ROYALTY_PERCENT"))
        WalletService.apply_ledger_effect(
            order.vendor_id,
            -royalty,
            Transaction.TransactionType.ROYALTY_DEDUCTION,
            description=f"Royalty deduction for Order: {order.pk}",
            **links,
        )

        commission = None
        referrer_id = order.buyer.referred_by_id
        if referrer_id:
            commission = to_money(royalty * money_setting("REFERRAL_PERCENT"))
            WalletService.apply_ledger_effect(
                referrer_id,
                commission,
                Transaction.TransactionType.REFERRAL_COMMISSION,
                description=f"Referral commission from Order: {order.pk}",
                **links,
            )

        logger.info(
            "Order payment verified: order=%d total=%s royalty=%s commission=%s",
            order.pk,
            order.total_amount,
            royalty,
            commission,
        )
        return PaymentOutcome(order=order, royalty=royalty, commission=commission)
