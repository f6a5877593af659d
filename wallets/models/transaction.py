from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone

from wallets.models.base import BaseModel


class Transaction(BaseModel):
    """
    Append-only ledger row describing one wallet effect.

    `amount` is signed: the wallet delta that accompanied the row, or for
    audit-only rows (order payments, referral point grants) the value being
    recorded. Rows are never edited apart from a recharge moving from
    PENDING to COMPLETED or FAILED and picking up its gateway payment id.
    """

    class TransactionType(models.TextChoices):
        DEPOSIT = "deposit", "Deposit"
        WITHDRAWAL = "withdrawal", "Withdrawal"
        BIDDING_CHARGE = "bidding_charge", "Bidding charge"
        REFERRAL_COMMISSION = "referral_commission", "Referral commission"
        ROYALTY_DEDUCTION = "royalty_deduction", "Royalty deduction"
        ORDER_PAYMENT = "order_payment", "Order payment"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="transactions",
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    transaction_type = models.CharField(
        max_length=24,
        choices=TransactionType.choices,
    )
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.COMPLETED,
    )
    description = models.CharField(max_length=255, blank=True)
    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    vendor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    order = models.ForeignKey(
        "marketplace.Order",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="transactions",
    )
    reference_id = models.CharField(
        max_length=64,
        blank=True,
        help_text="Id of the quotation, order or other record that caused this row.",
    )
    gateway_order_id = models.CharField(
        max_length=64,
        unique=True,
        null=True,
        blank=True,
    )
    gateway_payment_id = models.CharField(max_length=64, blank=True)

    class Meta(BaseModel.Meta):
        indexes = [
            models.Index(fields=["user", "status"], name="idx_user_status"),
            models.Index(
                fields=["transaction_type", "status"], name="idx_type_status"
            ),
        ]

    def __str__(self):
        return (
            f"Transaction {self.id} | {self.transaction_type} | "
            f"{self.amount} | {self.status}"
        )

    @classmethod
    def get_stale_pending_recharges(cls, max_age_minutes=60):
        """Return pending recharges older than `max_age_minutes`."""
        return cls.objects.filter(
            transaction_type=cls.TransactionType.DEPOSIT,
            status=cls.Status.PENDING,
            gateway_order_id__isnull=False,
            created_at__lte=timezone.now() - timedelta(minutes=max_age_minutes),
        )
