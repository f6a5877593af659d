import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction

from marketplace.exceptions import (
    InvalidPriceLine,
    ListClosed,
    ListNotFound,
    NotAuthorized,
    ValidationFailed,
)
from marketplace.models import GroceryList, PriceLine, Quotation
from marketplace.notifications import NEW_QUOTE, notify_user_on_commit
from marketplace.serializers import QuotationSerializer
from wallets.conf import money_setting, to_money
from wallets.models import Transaction
from wallets.services import WalletService

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

# Largest value a Decimal(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")


def parse_number(value):
    """Decimal for a finite numeric value, otherwise None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


class QuotationService:
    """
    Pricing and submission of vendor bids.

    A submission is one unit of work: the quotation, its lines and the
    bidding charge debit commit together, and the buyer is notified only
    after the commit.
    """

    @staticmethod
    def price_lines(raw_lines) -> tuple:
        """
        Price each line and total the bid.

        Each line needs a numeric `basePrice`; `discount` is a percentage
        and defaults to 0 when absent or not numeric. Totals are rounded to
        2 places once, after summing.

        Returns:
            (list of PriceLine field dicts, total_amount, discount_total)

        Raises:
            ValidationFailed: If no lines were given.
            InvalidPriceLine: If a base price is missing, not numeric or out
                of range, or a discount is outside 0..100.
            ValidationFailed: If the quotation total is too large to store.
        """
        if not raw_lines:
            raise ValidationFailed("No prices submitted.")

        lines = []
        total_amount = Decimal("0")
        discount_total = Decimal("0")

        for raw in raw_lines:
            item_name = str(raw.get("itemName") or raw.get("item_name") or "")
            base_price = parse_number(raw.get("basePrice", raw.get("base_price")))
            if base_price is None or not Decimal("0") <= base_price <= MAX_AMOUNT:
                logger.warning("Invalid base price for item: %s", item_name)
                raise InvalidPriceLine(item_name)

            discount = parse_number(raw.get("discount"))
            if discount is None:
                discount = Decimal("0")
            elif not Decimal("0") <= discount <= HUNDRED:
                logger.warning("Invalid discount for item: %s", item_name)
                raise InvalidPriceLine(item_name, field="discount")

            final_price = base_price - base_price * (discount / HUNDRED)
            total_amount += final_price
            discount_total += base_price - final_price

            lines.append(
                {
                    "product_ref": str(raw.get("product") or ""),
                    "item_name": item_name,
                    "base_price": base_price,
                    "discount": discount,
                    "final_price": final_price,
                }
            )

        if total_amount > MAX_AMOUNT or discount_total > MAX_AMOUNT:
            logger.warning("Quotation total out of range: total=%s", total_amount)
            raise ValidationFailed("Quotation total is too large.")

        return lines, to_money(total_amount), to_money(discount_total)

    @staticmethod
    @transaction.atomic
    def submit_quotation(list_id, vendor_id, price_lines, valid_until=None) -> Quotation:
        """
        Submit a vendor's bid against an open list.

        Raises:
            ListNotFound: If the list doesn't exist.
            ListClosed: If the list is no longer open.
            InvalidPriceLine: If a line has no numeric base price.
            InsufficientBalance: If the vendor cannot pay the bidding charge.
        """
        # Lock the list so an acceptance cannot close it mid-submission
        try:
            grocery_list = GroceryList.objects.select_for_update().get(pk=list_id)
        except GroceryList.DoesNotExist:
            raise ListNotFound(list_id)

        if not grocery_list.is_open:
            raise ListClosed(list_id)

        lines, total_amount, discount_total = QuotationService.price_lines(price_lines)

        bidding_charge = money_setting("BIDDING_CHARGE")
        WalletService.ensure_balance(vendor_id, bidding_charge)

        quotation = Quotation.objects.create(
            grocery_list=grocery_list,
            vendor_id=vendor_id,
            total_amount=total_amount,
            discount_total=discount_total,
            valid_until=valid_until,
        )
        PriceLine.objects.bulk_create(
            [PriceLine(quotation=quotation, **line) for line in lines]
        )

        WalletService.apply_ledger_effect(
            vendor_id,
            -bidding_charge,
            Transaction.TransactionType.BIDDING_CHARGE,
            description=f"Offer submission charge for list: {grocery_list.title}",
            reference_id=str(quotation.pk),
        )

        logger.info(
            "Quotation submitted: quotation=%d list=%d vendor=%s total=%s discount=%s",
            quotation.pk,
            grocery_list.pk,
            vendor_id,
            total_amount,
            discount_total,
        )

        notify_user_on_commit(
            grocery_list.buyer_id,
            NEW_QUOTE,
            {
                "quotation": QuotationSerializer(quotation).data,
                "listId": grocery_list.pk,
            },
        )
        return quotation

    @staticmethod
    def list_quotations(user, list_id=None):
        """
        Quotations visible to `user`.

        Vendors see their own bids, buyers the bids on their lists (one
        list, cheapest first, when `list_id` is given), admins everything.
        """
        queryset = Quotation.objects.select_related(
            "vendor", "grocery_list"
        ).prefetch_related("lines")

        if user.is_admin_role:
            return queryset

        if user.is_vendor:
            return queryset.filter(vendor=user)

        if user.is_buyer:
            if list_id is not None:
                owns_list = GroceryList.objects.filter(pk=list_id, buyer=user).exists()
                if not owns_list:
                    raise NotAuthorized()
                return queryset.filter(grocery_list_id=list_id).order_by("total_amount")
            return queryset.filter(grocery_list__buyer=user)

        return queryset.none()
