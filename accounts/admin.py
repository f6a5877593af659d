from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from accounts.models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = (
        "id",
        "username",
        "email",
        "role",
        "wallet_balance",
        "referral_rewards",
        "referral_code",
        "is_active",
    )
    list_filter = ("role", "is_active")
    search_fields = ("username", "email", "referral_code")
    readonly_fields = ("wallet_balance", "referral_code", "referral_rewards", "referred_by")
    fieldsets = BaseUserAdmin.fieldsets + (
        (
            "Marketplace",
            {
                "fields": (
                    "role",
                    "phone",
                    "address",
                    "wallet_balance",
                    "referral_code",
                    "referral_rewards",
                    "referred_by",
                )
            },
        ),
    )
