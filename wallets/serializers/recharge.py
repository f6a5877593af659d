from decimal import Decimal

from rest_framework import serializers


class RechargeSerializer(serializers.Serializer):
    """Validates wallet recharge requests."""

    amount = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=Decimal("1.00")
    )


class GatewayVerificationSerializer(serializers.Serializer):
    """Payment confirmation fields posted back by the checkout widget."""

    razorpay_order_id = serializers.CharField(max_length=64)
    razorpay_payment_id = serializers.CharField(max_length=64, required=False, default="")
    razorpay_signature = serializers.CharField(
        max_length=128, required=False, allow_blank=True, default=""
    )
