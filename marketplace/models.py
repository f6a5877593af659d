from django.conf import settings
from django.db import models

from wallets.models import BaseModel


class GroceryList(BaseModel):
    """A buyer's requirement list that vendors bid on while it is open."""

    class Status(models.TextChoices):
        OPEN = "open", "Open"
        CLOSED = "closed", "Closed"

    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="grocery_lists",
    )
    title = models.CharField(max_length=200)
    expected_price = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True
    )
    expires_at = models.DateTimeField(null=True, blank=True)
    status = models.CharField(
        max_length=10, choices=Status.choices, default=Status.OPEN
    )

    def __str__(self):
        return f"GroceryList {self.id} | {self.title} | {self.status}"

    @property
    def is_open(self):
        return self.status == self.Status.OPEN


class ListItem(models.Model):
    grocery_list = models.ForeignKey(
        GroceryList, on_delete=models.CASCADE, related_name="items"
    )
    position = models.PositiveIntegerField()
    product_ref = models.CharField(
        max_length=64, blank=True, help_text="Catalog product id, if any."
    )
    name = models.CharField(max_length=200)
    quantity = models.CharField(max_length=50)
    unit = models.CharField(max_length=20, blank=True)
    quality = models.CharField(max_length=100, blank=True)
    brand_preference = models.CharField(max_length=100, blank=True)
    specifications = models.TextField(blank=True)

    class Meta:
        ordering = ["position"]
        constraints = [
            models.UniqueConstraint(
                fields=["grocery_list", "position"], name="uniq_list_item_position"
            )
        ]

    def __str__(self):
        return f"{self.name} x {self.quantity} {self.unit}".strip()


class Quotation(BaseModel):
    """
    A vendor's priced bid against a GroceryList.

    `total_amount` and `discount_total` are the sums of the line prices,
    rounded once. A vendor may bid several times on a list; only one
    quotation per list is ever accepted.
    """

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        ACCEPTED = "accepted", "Accepted"
        REJECTED = "rejected", "Rejected"

    grocery_list = models.ForeignKey(
        GroceryList, on_delete=models.PROTECT, related_name="quotations"
    )
    vendor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="quotations",
    )
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    discount_total = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    valid_until = models.DateTimeField(null=True, blank=True)
    status = models.CharField(
        max_length=10, choices=Status.choices, default=Status.PENDING
    )

    class Meta(BaseModel.Meta):
        indexes = [
            models.Index(fields=["grocery_list", "status"], name="idx_list_status"),
        ]

    def __str__(self):
        return f"Quotation {self.id} | list={self.grocery_list_id} | {self.total_amount}"


class PriceLine(models.Model):
    quotation = models.ForeignKey(
        Quotation, on_delete=models.CASCADE, related_name="lines"
    )
    product_ref = models.CharField(max_length=64, blank=True)
    item_name = models.CharField(max_length=200)
    base_price = models.DecimalField(max_digits=12, decimal_places=2)
    discount = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    final_price = models.DecimalField(max_digits=18, decimal_places=6)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.item_name}: {self.final_price}"


class Order(BaseModel):
    """The commitment created when a buyer accepts one Quotation."""

    class PaymentStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        FAILED = "failed", "Failed"

    class PaymentMethod(models.TextChoices):
        ONLINE = "online", "Online"
        COD = "cod", "Cash on delivery"

    class DeliveryStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        SHIPPED = "shipped", "Shipped"
        DISPATCHED = "dispatched", "Dispatched"
        DELIVERED = "delivered", "Delivered"

    quotation = models.OneToOneField(
        Quotation, on_delete=models.PROTECT, related_name="order"
    )
    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="buyer_orders",
    )
    vendor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="vendor_orders",
    )
    logistics = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="logistics_orders",
    )
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(
        max_length=10, choices=PaymentMethod.choices, default=PaymentMethod.COD
    )
    payment_status = models.CharField(
        max_length=10, choices=PaymentStatus.choices, default=PaymentStatus.PENDING
    )
    delivery_status = models.CharField(
        max_length=12, choices=DeliveryStatus.choices, default=DeliveryStatus.PENDING
    )

    def __str__(self):
        return (
            f"Order {self.id} | {self.total_amount} | "
            f"{self.payment_status} | {self.delivery_status}"
        )
