from wallets.views.recharge import CreateRechargeView, VerifyRechargeView
from wallets.views.wallet import GlobalTransactionListView, WalletView

__all__ = [
    "CreateRechargeView",
    "GlobalTransactionListView",
    "VerifyRechargeView",
    "WalletView",
]
