class LedgerError(Exception):
    """Base class for wallet and ledger failures."""


class InsufficientBalance(LedgerError):
    def __init__(self, balance, required):
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient wallet balance. Required {required}, available {balance}."
        )


class InvalidSignature(LedgerError):
    def __init__(self):
        super().__init__("Invalid payment signature.")


class TransactionAlreadyProcessed(LedgerError):
    def __init__(self, gateway_order_id):
        self.gateway_order_id = gateway_order_id
        super().__init__("Transaction not found or already processed.")


class GatewayError(LedgerError):
    """The payment gateway refused or failed to create an order."""
