from django.contrib import admin

from wallets.models import Transaction


class ReadOnlyAdminMixin:
    """
    Mixin that makes an admin model completely read-only.
    Ledger rows are append-only, so the admin may browse but never edit.
    """

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Transaction)
class TransactionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = (
        "id",
        "user",
        "transaction_type",
        "amount",
        "status",
        "order",
        "reference_id",
        "created_at",
    )
    list_filter = ("transaction_type", "status")
    search_fields = ("user__username", "gateway_order_id", "reference_id")
    readonly_fields = (
        "user",
        "amount",
        "transaction_type",
        "status",
        "description",
        "buyer",
        "vendor",
        "order",
        "reference_id",
        "gateway_order_id",
        "gateway_payment_id",
        "created_at",
        "updated_at",
    )
