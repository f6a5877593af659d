import logging
import time
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from wallets.conf import to_money
from wallets.exceptions import (
    GatewayError,
    InvalidSignature,
    TransactionAlreadyProcessed,
)
from wallets.models import Transaction
from wallets.utils.gateway import (
    MOCK_RECHARGE_PREFIX,
    request_gateway_order,
    verify_signature,
)

logger = logging.getLogger(__name__)

User = get_user_model()


class RechargeService:
    """
    Wallet top-ups through the payment gateway.

    Creating a recharge records a PENDING deposit keyed by the gateway order
    id. Verifying it flips the row to COMPLETED and credits the wallet; the
    row status is what prevents a second credit.
    """

    @staticmethod
    def create_recharge(user_id, amount) -> tuple:
        """
        Open a gateway order and a PENDING deposit for it.

        Returns:
            (Transaction, gateway order dict)

        Raises:
            ValueError: If amount is not positive.
            GatewayError: If the gateway refused the order.
        """
        amount = to_money(amount)
        if amount <= 0:
            raise ValueError("Recharge amount must be positive.")

        receipt = f"recharge_{user_id}_{int(time.time() * 1000)}"
        result = request_gateway_order(amount, receipt, MOCK_RECHARGE_PREFIX)
        if not result["success"]:
            raise GatewayError(str(result["response"]))

        gateway_order = result["response"]
        tx = Transaction.objects.create(
            user_id=user_id,
            amount=amount,
            transaction_type=Transaction.TransactionType.DEPOSIT,
            status=Transaction.Status.PENDING,
            description=(
                "Wallet Recharge (MOCK)" if gateway_order["isMock"] else "Wallet Recharge"
            ),
            gateway_order_id=gateway_order["id"],
        )

        logger.info(
            "Recharge created: user=%s amount=%s gateway_order=%s tx=%d",
            user_id,
            amount,
            gateway_order["id"],
            tx.id,
        )
        return tx, gateway_order

    @staticmethod
    @transaction.atomic
    def verify_recharge(
        gateway_order_id: str, gateway_payment_id: str, signature: str, user_id
    ) -> Decimal:
        """
        Complete a recharge after the gateway confirmed payment.

        Returns:
            The user's new wallet balance.

        Raises:
            InvalidSignature: If the confirmation is not authentic.
            TransactionAlreadyProcessed: If no PENDING recharge matches.
        """
        if not verify_signature(
            gateway_order_id, gateway_payment_id, signature, MOCK_RECHARGE_PREFIX
        ):
            raise InvalidSignature()

        # Lock the transaction to prevent double-crediting
        tx = (
            Transaction.objects.select_for_update()
            .filter(
                gateway_order_id=gateway_order_id,
                transaction_type=Transaction.TransactionType.DEPOSIT,
                user_id=user_id,
            )
            .first()
        )
        if tx is None or tx.status != Transaction.Status.PENDING:
            logger.warning(
                "Recharge verify rejected: gateway_order=%s status=%s",
                gateway_order_id,
                tx.status if tx else None,
            )
            raise TransactionAlreadyProcessed(gateway_order_id)

        tx.status = Transaction.Status.COMPLETED
        tx.gateway_payment_id = gateway_payment_id
        tx.save(update_fields=["status", "gateway_payment_id", "updated_at"])

        User.objects.select_for_update().filter(pk=tx.user_id).update(
            wallet_balance=F("wallet_balance") + tx.amount
        )
        balance = User.objects.values_list("wallet_balance", flat=True).get(
            pk=tx.user_id
        )

        logger.info(
            "Recharge completed: user=%s amount=%s new_balance=%s tx=%d",
            tx.user_id,
            tx.amount,
            balance,
            tx.id,
        )
        return balance

    @staticmethod
    def expire_stale(max_age_minutes: int) -> int:
        """Move PENDING recharges older than `max_age_minutes` to FAILED."""
        return Transaction.get_stale_pending_recharges(
            max_age_minutes=max_age_minutes
        ).update(status=Transaction.Status.FAILED, updated_at=timezone.now())
