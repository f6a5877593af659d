from wallets.models.base import BaseModel
from wallets.models.transaction import Transaction

__all__ = ["BaseModel", "Transaction"]
