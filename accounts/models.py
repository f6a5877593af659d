import secrets

from django.contrib.auth.models import AbstractUser
from django.db import models

from wallets.conf import money_setting


def initial_wallet_balance():
    return money_setting("INITIAL_WALLET_BALANCE")


def generate_referral_code() -> str:
    return secrets.token_hex(4).upper()


class User(AbstractUser):
    """
    Marketplace account shared by buyers, vendors, logistics and admins.

    `wallet_balance` is signed and only changes through the wallet services
    using F() expressions. `referral_rewards` holds points that are kept
    apart from the wallet until the user converts them.
    """

    class Role(models.TextChoices):
        BUYER = "buyer", "Buyer"
        VENDOR = "vendor", "Vendor"
        ADMIN = "admin", "Admin"
        LOGISTICS = "logistics", "Logistics"

    role = models.CharField(max_length=10, choices=Role.choices, default=Role.BUYER)
    phone = models.CharField(max_length=32, blank=True)
    address = models.TextField(blank=True)
    wallet_balance = models.DecimalField(
        max_digits=12, decimal_places=2, default=initial_wallet_balance
    )
    referral_code = models.CharField(max_length=16, unique=True, editable=False)
    referral_rewards = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    referred_by = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="referrals",
    )

    def __str__(self):
        return f"{self.username} ({self.role})"

    def save(self, *args, **kwargs):
        # The code is assigned once and never regenerated.
        if not self.referral_code:
            code = generate_referral_code()
            while User.objects.filter(referral_code=code).exists():
                code = generate_referral_code()
            self.referral_code = code
        super().save(*args, **kwargs)

    @property
    def is_buyer(self):
        return self.role == self.Role.BUYER

    @property
    def is_vendor(self):
        return self.role == self.Role.VENDOR

    @property
    def is_admin_role(self):
        return self.role == self.Role.ADMIN or self.is_superuser
