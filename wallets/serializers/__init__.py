from wallets.serializers.recharge import (
    GatewayVerificationSerializer,
    RechargeSerializer,
)
from wallets.serializers.transaction import TransactionSerializer

__all__ = [
    "GatewayVerificationSerializer",
    "RechargeSerializer",
    "TransactionSerializer",
]
