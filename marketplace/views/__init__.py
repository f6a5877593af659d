from marketplace.views.lists import AddListItemView, GroceryListDetailView, GroceryListView
from marketplace.views.orders import (
    DeliveryStatusView,
    MarkOrderPaidView,
    OrderListCreateView,
    TrackOrderView,
)
from marketplace.views.payment import CreatePaymentOrderView, VerifyPaymentView
from marketplace.views.quotations import QuotationListCreateView

__all__ = [
    "AddListItemView",
    "CreatePaymentOrderView",
    "DeliveryStatusView",
    "GroceryListDetailView",
    "GroceryListView",
    "MarkOrderPaidView",
    "OrderListCreateView",
    "QuotationListCreateView",
    "TrackOrderView",
    "VerifyPaymentView",
]
