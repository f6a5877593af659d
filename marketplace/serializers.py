from rest_framework import serializers

from marketplace.models import GroceryList, ListItem, Order, PriceLine, Quotation
from wallets.serializers import GatewayVerificationSerializer


class ListItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = ListItem
        fields = (
            "position",
            "product_ref",
            "name",
            "quantity",
            "unit",
            "quality",
            "brand_preference",
            "specifications",
        )
        read_only_fields = ("position",)


class GroceryListSerializer(serializers.ModelSerializer):
    buyer_name = serializers.CharField(source="buyer.username", read_only=True)
    items = ListItemSerializer(many=True, read_only=True)

    class Meta:
        model = GroceryList
        fields = (
            "id",
            "buyer",
            "buyer_name",
            "title",
            "items",
            "expected_price",
            "expires_at",
            "status",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class CreateListSerializer(serializers.Serializer):
    """Validates new grocery lists."""

    title = serializers.CharField(max_length=200)
    items = ListItemSerializer(many=True, allow_empty=False)
    expectedPrice = serializers.DecimalField(
        max_digits=12, decimal_places=2, required=False, allow_null=True
    )
    expiredAt = serializers.DateTimeField(required=False, allow_null=True)


class PriceLineSerializer(serializers.ModelSerializer):
    class Meta:
        model = PriceLine
        fields = ("product_ref", "item_name", "base_price", "discount", "final_price")
        read_only_fields = fields


class QuotationSerializer(serializers.ModelSerializer):
    vendor_name = serializers.CharField(source="vendor.username", read_only=True)
    list_title = serializers.CharField(source="grocery_list.title", read_only=True)
    lines = PriceLineSerializer(many=True, read_only=True)

    class Meta:
        model = Quotation
        fields = (
            "id",
            "grocery_list",
            "list_title",
            "vendor",
            "vendor_name",
            "lines",
            "total_amount",
            "discount_total",
            "valid_until",
            "status",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class SubmitQuotationSerializer(serializers.Serializer):
    """
    Shape check for bids. Prices are parsed by the quotation service so a
    bad base price is reported with the item it belongs to.
    """

    listId = serializers.IntegerField()
    prices = serializers.ListField(
        child=serializers.DictField(), allow_empty=False
    )
    validUntil = serializers.DateTimeField(required=False, allow_null=True)


class OrderSerializer(serializers.ModelSerializer):
    buyer_name = serializers.CharField(source="buyer.username", read_only=True)
    vendor_name = serializers.CharField(source="vendor.username", read_only=True)

    class Meta:
        model = Order
        fields = (
            "id",
            "quotation",
            "buyer",
            "buyer_name",
            "vendor",
            "vendor_name",
            "logistics",
            "total_amount",
            "payment_method",
            "payment_status",
            "delivery_status",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class AcceptQuotationSerializer(serializers.Serializer):
    quotationId = serializers.IntegerField()
    paymentMethod = serializers.ChoiceField(
        choices=Order.PaymentMethod.choices, default=Order.PaymentMethod.COD
    )


class DeliveryStatusSerializer(serializers.Serializer):
    status = serializers.CharField(max_length=12)


class PaymentOrderSerializer(serializers.Serializer):
    orderId = serializers.IntegerField()


class OrderPaymentVerificationSerializer(GatewayVerificationSerializer):
    orderId = serializers.IntegerField()
