from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings

DEFAULTS = {
    "BIDDING_CHARGE": "5",
    "ROYALTY_PERCENT": "0.002",
    "REFERRAL_PERCENT": "0.1",
    "NEW_USER_REFERRAL_BONUS": "50",
    "REFERRER_BONUS": "100",
    "INITIAL_WALLET_BALANCE": "500",
}

CENT = Decimal("0.01")


def money_setting(name: str) -> Decimal:
    """Read a monetary constant from settings at call time."""
    return Decimal(str(getattr(settings, name, DEFAULTS[name])))


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
