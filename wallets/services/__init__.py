from wallets.services.recharge import RechargeService
from wallets.services.wallet import WalletService

__all__ = ["RechargeService", "WalletService"]
