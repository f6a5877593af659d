from marketplace.services.listing import ListService
from marketplace.services.order import OrderService
from marketplace.services.payment import PaymentOutcome, PaymentService
from marketplace.services.quotation import QuotationService

__all__ = [
    "ListService",
    "OrderService",
    "PaymentOutcome",
    "PaymentService",
    "QuotationService",
]
