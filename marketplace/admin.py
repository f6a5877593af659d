from django.contrib import admin

from marketplace.models import GroceryList, ListItem, Order, PriceLine, Quotation


class ListItemInline(admin.TabularInline):
    model = ListItem
    extra = 0


class PriceLineInline(admin.TabularInline):
    model = PriceLine
    extra = 0
    readonly_fields = ("item_name", "base_price", "discount", "final_price")


@admin.register(GroceryList)
class GroceryListAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "buyer", "status", "created_at")
    list_filter = ("status",)
    search_fields = ("title", "buyer__username")
    inlines = [ListItemInline]


@admin.register(Quotation)
class QuotationAdmin(admin.ModelAdmin):
    list_display = ("id", "grocery_list", "vendor", "total_amount", "status", "created_at")
    list_filter = ("status",)
    readonly_fields = ("total_amount", "discount_total")
    inlines = [PriceLineInline]


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "buyer",
        "vendor",
        "total_amount",
        "payment_status",
        "delivery_status",
        "created_at",
    )
    list_filter = ("payment_status", "delivery_status", "payment_method")
    readonly_fields = ("quotation", "buyer", "vendor", "total_amount")
