"""
Marketplace failures, grouped the way the API reports them.

Validation errors are user-correctable and raised before any write.
State conflicts carry the current state. Authorization errors reveal no
more than that the resource exists.
"""


class MarketplaceError(Exception):
    """Base class for bidding and order failures."""


class ValidationFailed(MarketplaceError, ValueError):
    pass


class StateConflict(MarketplaceError):
    pass


class NotAuthorized(MarketplaceError):
    def __init__(self, message="Not authorized."):
        super().__init__(message)


class NotFound(MarketplaceError):
    pass


class ListNotFound(NotFound):
    def __init__(self, list_id):
        self.list_id = list_id
        super().__init__("Grocery list not found.")


class QuotationNotFound(NotFound):
    def __init__(self, quotation_id):
        self.quotation_id = quotation_id
        super().__init__("Quotation not found.")


class OrderNotFound(NotFound):
    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__("Order not found.")


class InvalidPriceLine(ValidationFailed):
    def __init__(self, item_name, field="base price"):
        self.item_name = item_name
        self.field = field
        super().__init__(f"Invalid {field} for item: {item_name}")


class ListClosed(StateConflict):
    def __init__(self, list_id):
        self.list_id = list_id
        super().__init__("This list is no longer accepting quotes.")


class QuotationNotPending(StateConflict):
    def __init__(self, quotation_id, status):
        self.quotation_id = quotation_id
        self.status = status
        super().__init__(f"Quotation is {status}, not pending.")


class OrderAlreadyPaid(StateConflict):
    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__("Order is already paid.")


class InvalidStatusTransition(StateConflict):
    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move delivery status from {current} to {requested}.")
