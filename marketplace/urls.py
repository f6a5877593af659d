from django.urls import path

from marketplace.views import (
    AddListItemView,
    CreatePaymentOrderView,
    DeliveryStatusView,
    GroceryListDetailView,
    GroceryListView,
    MarkOrderPaidView,
    OrderListCreateView,
    QuotationListCreateView,
    TrackOrderView,
    VerifyPaymentView,
)

urlpatterns = [
    path("lists/", GroceryListView.as_view(), name="list-list"),
    path("lists/<int:pk>/", GroceryListDetailView.as_view(), name="list-detail"),
    path("lists/<int:pk>/items", AddListItemView.as_view(), name="list-add-item"),
    path("quotations/", QuotationListCreateView.as_view(), name="quotation-list"),
    path("orders/", OrderListCreateView.as_view(), name="order-list"),
    path("orders/<int:pk>/pay", MarkOrderPaidView.as_view(), name="order-pay"),
    path("orders/<int:pk>/status", DeliveryStatusView.as_view(), name="order-status"),
    path("orders/<int:pk>/track", TrackOrderView.as_view(), name="order-track"),
    path(
        "payment/create-order",
        CreatePaymentOrderView.as_view(),
        name="payment-create-order",
    ),
    path("payment/verify", VerifyPaymentView.as_view(), name="payment-verify"),
]
