from rest_framework import serializers

from wallets.models import Transaction


class TransactionSerializer(serializers.ModelSerializer):
    """Read-only serializer for ledger rows."""

    username = serializers.CharField(source="user.username", read_only=True)
    buyer_name = serializers.CharField(
        source="buyer.username", read_only=True, default=None
    )
    vendor_name = serializers.CharField(
        source="vendor.username", read_only=True, default=None
    )

    class Meta:
        model = Transaction
        fields = (
            "id",
            "user",
            "username",
            "amount",
            "transaction_type",
            "status",
            "description",
            "buyer",
            "buyer_name",
            "vendor",
            "vendor_name",
            "order",
            "reference_id",
            "gateway_order_id",
            "gateway_payment_id",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields
