from django.urls import path

from wallets.views import (
    CreateRechargeView,
    GlobalTransactionListView,
    VerifyRechargeView,
    WalletView,
)

urlpatterns = [
    path("", WalletView.as_view(), name="wallet-detail"),
    path("all", GlobalTransactionListView.as_view(), name="wallet-all"),
    path("recharge", CreateRechargeView.as_view(), name="wallet-recharge"),
    path("verify", VerifyRechargeView.as_view(), name="wallet-verify"),
]
