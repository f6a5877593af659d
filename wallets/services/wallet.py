import logging
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import F

from wallets.conf import to_money
from wallets.exceptions import InsufficientBalance
from wallets.models import Transaction

logger = logging.getLogger(__name__)

User = get_user_model()


class WalletService:
    """
    The single entry point for wallet balance changes.

    Every balance change is an F() increment on a row locked with
    select_for_update(), paired with exactly one Transaction row carrying
    the same signed delta. Callers that need several effects to commit
    together wrap their calls in their own transaction.atomic block.
    """

    @staticmethod
    @transaction.atomic
    def apply_ledger_effect(
        user_id,
        amount_delta,
        transaction_type: str,
        description: str = "",
        **metadata,
    ) -> Transaction:
        """
        Apply a signed delta to a user's wallet and record it.

        Args:
            user_id: Primary key of the user whose wallet changes.
            amount_delta: Signed amount; negative for debits.
            transaction_type: One of Transaction.TransactionType.
            description: Human readable ledger note.
            **metadata: Optional buyer, vendor, order, reference_id.

        Returns:
            The COMPLETED Transaction mirroring the delta.

        Raises:
            User.DoesNotExist: If the user doesn't exist.
        """
        amount_delta = to_money(amount_delta)

        # Lock the user row to prevent concurrent modification
        user = User.objects.select_for_update().get(pk=user_id)

        # Balance may go negative; only the bidding charge is pre-checked.
        User.objects.filter(pk=user.pk).update(
            wallet_balance=F("wallet_balance") + amount_delta
        )
        user.refresh_from_db(fields=["wallet_balance"])

        tx = Transaction.objects.create(
            user=user,
            amount=amount_delta,
            transaction_type=transaction_type,
            status=Transaction.Status.COMPLETED,
            description=description,
            **metadata,
        )

        logger.info(
            "Ledger effect applied: user=%s type=%s delta=%s new_balance=%s tx=%d",
            user.pk,
            transaction_type,
            amount_delta,
            user.wallet_balance,
            tx.id,
        )
        return tx

    @staticmethod
    def record(
        user_id, amount, transaction_type: str, description: str = "", **metadata
    ) -> Transaction:
        """Write an audit-only Transaction that does not move the balance."""
        tx = Transaction.objects.create(
            user_id=user_id,
            amount=to_money(amount),
            transaction_type=transaction_type,
            status=Transaction.Status.COMPLETED,
            description=description,
            **metadata,
        )
        logger.info(
            "Ledger record written: user=%s type=%s amount=%s tx=%d",
            user_id,
            transaction_type,
            tx.amount,
            tx.id,
        )
        return tx

    @staticmethod
    def ensure_balance(user_id, required) -> Decimal:
        """
        Check the locked balance covers `required`.

        Must run inside transaction.atomic so the lock is held until the
        debit that follows.
        """
        required = to_money(required)
        balance = (
            User.objects.select_for_update()
            .values_list("wallet_balance", flat=True)
            .get(pk=user_id)
        )
        if balance < required:
            logger.warning(
                "Insufficient balance: user=%s balance=%s required=%s",
                user_id,
                balance,
                required,
            )
            raise InsufficientBalance(balance=balance, required=required)
        return balance

    @staticmethod
    def get_balance(user_id) -> Decimal:
        return User.objects.values_list("wallet_balance", flat=True).get(pk=user_id)
