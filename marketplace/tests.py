import threading
from decimal import Decimal
from unittest import skipUnless
from unittest.mock import AsyncMock, MagicMock, patch

from channels.db import database_sync_to_async
from channels.testing import WebsocketCommunicator
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.db import connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from rest_framework.authtoken.models import Token
from rest_framework.test import APIClient

from config.asgi import application
from marketplace.consumers import NotificationConsumer
from marketplace.exceptions import (
    InvalidPriceLine,
    InvalidStatusTransition,
    ListClosed,
    ListNotFound,
    NotAuthorized,
    OrderAlreadyPaid,
    QuotationNotFound,
    QuotationNotPending,
    ValidationFailed,
)
from marketplace.models import GroceryList, Order, Quotation
from marketplace.notifications import BROADCAST_GROUP, NEW_LIST, NEW_QUOTE, publish
from marketplace.services import (
    ListService,
    OrderService,
    PaymentService,
    QuotationService,
)
from wallets.exceptions import InsufficientBalance, InvalidSignature
from wallets.models import Transaction
from wallets.services import WalletService
from wallets.utils import signature_for

User = get_user_model()

SECRET = "test_secret"

ITEMS = [
    {"name": "Rice", "quantity": "2", "unit": "kg"},
    {"name": "Milk", "quantity": "1", "unit": "l"},
]

PRICES = [
    {"itemName": "Rice", "basePrice": 100, "discount": 10},
    {"itemName": "Milk", "basePrice": "50", "discount": 0},
]


def make_user(username, role=User.Role.BUYER, **extra):
    return User.objects.create_user(
        username=username, password="secret1", role=role, **extra
    )


class MarketplaceTestCase(TestCase):
    def setUp(self):
        self.buyer = make_user("buyer")
        self.vendor = make_user("vendor", role=User.Role.VENDOR)
        self.grocery_list = ListService.create_list(
            buyer_id=self.buyer.pk, title="Weekly groceries", items=ITEMS
        )

    def submit(self, vendor=None, prices=PRICES, grocery_list=None):
        return QuotationService.submit_quotation(
            (grocery_list or self.grocery_list).pk,
            (vendor or self.vendor).pk,
            prices,
        )


# ============================================================
# Pricing Tests
# ============================================================


class PriceLinesTest(SimpleTestCase):
    def test_totals_round_after_summing(self):
        lines, total, discount_total = QuotationService.price_lines(PRICES)

        self.assertEqual(total, Decimal("140.00"))
        self.assertEqual(discount_total, Decimal("10.00"))
        self.assertEqual(lines[0]["final_price"], Decimal("90"))
        self.assertEqual(lines[1]["final_price"], lines[1]["base_price"])

    def test_single_discounted_line(self):
        _, total, discount_total = QuotationService.price_lines(
            [{"itemName": "Oil", "basePrice": "100", "discount": "5"}]
        )
        self.assertEqual(total, Decimal("95.00"))
        self.assertEqual(discount_total, Decimal("5.00"))

    def test_fractional_discount(self):
        _, total, _ = QuotationService.price_lines(
            [
                {"itemName": "A", "basePrice": "33.33", "discount": "33.3"},
                {"itemName": "B", "basePrice": "10", "discount": "12.5"},
            ]
        )
        # 22.23111 + 8.75
        self.assertEqual(total, Decimal("30.98"))

    def test_missing_or_bad_discount_is_zero(self):
        lines, total, discount_total = QuotationService.price_lines(
            [
                {"itemName": "A", "basePrice": 20},
                {"itemName": "B", "basePrice": 30, "discount": "lots"},
            ]
        )
        self.assertEqual(total, Decimal("50.00"))
        self.assertEqual(discount_total, Decimal("0.00"))
        self.assertEqual(lines[1]["discount"], Decimal("0"))

    def test_non_numeric_base_price(self):
        for bad in (None, "", "abc", "NaN", "Infinity", True):
            with self.assertRaises(InvalidPriceLine) as ctx:
                QuotationService.price_lines([{"itemName": "Eggs", "basePrice": bad}])
            self.assertEqual(str(ctx.exception), "Invalid base price for item: Eggs")

    def test_base_price_out_of_range(self):
        for bad in (-1, "1e12", "10000000000", "1e999999"):
            with self.assertRaises(InvalidPriceLine) as ctx:
                QuotationService.price_lines([{"itemName": "Eggs", "basePrice": bad}])
            self.assertEqual(str(ctx.exception), "Invalid base price for item: Eggs")

    def test_discount_out_of_range(self):
        for bad in (1000, "100.01", -5):
            with self.assertRaises(InvalidPriceLine) as ctx:
                QuotationService.price_lines(
                    [{"itemName": "Eggs", "basePrice": 10, "discount": bad}]
                )
            self.assertEqual(str(ctx.exception), "Invalid discount for item: Eggs")

    def test_discount_bounds_allowed(self):
        lines, total, discount_total = QuotationService.price_lines(
            [
                {"itemName": "A", "basePrice": 10, "discount": 0},
                {"itemName": "B", "basePrice": 10, "discount": 100},
            ]
        )
        self.assertEqual(total, Decimal("10.00"))
        self.assertEqual(discount_total, Decimal("10.00"))

    def test_largest_base_price_allowed(self):
        _, total, _ = QuotationService.price_lines(
            [{"itemName": "Gold", "basePrice": "9999999999.99"}]
        )
        self.assertEqual(total, Decimal("9999999999.99"))

    def test_total_too_large(self):
        prices = [{"itemName": "Gold", "basePrice": "9999999999"}] * 2
        with self.assertRaises(ValidationFailed) as ctx:
            QuotationService.price_lines(prices)
        self.assertNotIsInstance(ctx.exception, InvalidPriceLine)

    def test_empty_prices(self):
        with self.assertRaises(ValidationFailed):
            QuotationService.price_lines([])


# ============================================================
# Quotation Service Tests
# ============================================================


class QuotationServiceTest(MarketplaceTestCase):
    def test_submit_quotation(self):
        quotation = self.submit()

        self.assertEqual(quotation.status, Quotation.Status.PENDING)
        self.assertEqual(quotation.total_amount, Decimal("140.00"))
        self.assertEqual(quotation.discount_total, Decimal("10.00"))
        self.assertEqual(quotation.lines.count(), 2)

        self.assertEqual(WalletService.get_balance(self.vendor.pk), Decimal("495.00"))
        tx = Transaction.objects.get(user=self.vendor)
        self.assertEqual(tx.transaction_type, Transaction.TransactionType.BIDDING_CHARGE)
        self.assertEqual(tx.amount, Decimal("-5.00"))
        self.assertEqual(tx.reference_id, str(quotation.pk))

    @override_settings(BIDDING_CHARGE="2.50")
    def test_bidding_charge_is_configurable(self):
        self.submit()
        self.assertEqual(WalletService.get_balance(self.vendor.pk), Decimal("497.50"))

    def test_each_bid_is_charged(self):
        self.submit()
        self.submit()
        self.assertEqual(WalletService.get_balance(self.vendor.pk), Decimal("490.00"))
        self.assertEqual(Quotation.objects.filter(vendor=self.vendor).count(), 2)

    def test_submit_to_closed_list(self):
        GroceryList.objects.filter(pk=self.grocery_list.pk).update(
            status=GroceryList.Status.CLOSED
        )

        with self.assertRaises(ListClosed):
            self.submit()
        self.assertFalse(Quotation.objects.exists())
        self.assertFalse(Transaction.objects.exists())

    def test_submit_to_missing_list(self):
        with self.assertRaises(ListNotFound):
            QuotationService.submit_quotation(999999, self.vendor.pk, PRICES)

    def test_insufficient_balance(self):
        User.objects.filter(pk=self.vendor.pk).update(wallet_balance=Decimal("3"))

        with self.assertRaises(InsufficientBalance):
            self.submit()
        self.assertEqual(WalletService.get_balance(self.vendor.pk), Decimal("3.00"))
        self.assertFalse(Quotation.objects.exists())
        self.assertFalse(Transaction.objects.exists())

    def test_invalid_price_writes_nothing(self):
        with self.assertRaises(InvalidPriceLine):
            self.submit(prices=[{"itemName": "Rice", "basePrice": "free"}])
        self.assertFalse(Quotation.objects.exists())
        self.assertEqual(WalletService.get_balance(self.vendor.pk), Decimal("500.00"))

    def test_buyer_notified_after_commit(self):
        with patch("marketplace.notifications.publish") as mock_publish:
            with self.captureOnCommitCallbacks(execute=True):
                quotation = self.submit()

        mock_publish.assert_called_once()
        group, event, payload = mock_publish.call_args.args
        self.assertEqual(group, f"user_{self.buyer.pk}")
        self.assertEqual(event, NEW_QUOTE)
        self.assertEqual(payload["listId"], self.grocery_list.pk)
        self.assertEqual(payload["quotation"]["id"], quotation.pk)

    def test_no_notification_when_rejected(self):
        User.objects.filter(pk=self.vendor.pk).update(wallet_balance=Decimal("0"))

        with patch("marketplace.notifications.publish") as mock_publish:
            with self.captureOnCommitCallbacks(execute=True):
                with self.assertRaises(InsufficientBalance):
                    self.submit()
        mock_publish.assert_not_called()

    def test_list_quotations_by_role(self):
        other_vendor = make_user("other_vendor", role=User.Role.VENDOR)
        expensive = self.submit()
        cheap = self.submit(
            vendor=other_vendor, prices=[{"itemName": "Rice", "basePrice": 80}]
        )

        self.assertEqual(
            list(QuotationService.list_quotations(self.vendor)), [expensive]
        )
        self.assertEqual(
            list(QuotationService.list_quotations(self.buyer, self.grocery_list.pk)),
            [cheap, expensive],
        )
        self.assertEqual(QuotationService.list_quotations(self.buyer).count(), 2)

    def test_buyer_cannot_list_other_buyers_quotations(self):
        stranger = make_user("stranger")
        with self.assertRaises(NotAuthorized):
            QuotationService.list_quotations(stranger, self.grocery_list.pk)


# ============================================================
# List Service Tests
# ============================================================


class ListServiceTest(MarketplaceTestCase):
    def test_create_list(self):
        self.assertTrue(self.grocery_list.is_open)
        self.assertEqual(
            list(self.grocery_list.items.values_list("position", "name")),
            [(0, "Rice"), (1, "Milk")],
        )

    def test_create_list_broadcasts_after_commit(self):
        with patch("marketplace.notifications.publish") as mock_publish:
            with self.captureOnCommitCallbacks(execute=True):
                grocery_list = ListService.create_list(
                    self.buyer.pk, "Party", [{"name": "Chips", "quantity": "3"}]
                )

        mock_publish.assert_called_once()
        group, event, payload = mock_publish.call_args.args
        self.assertEqual(group, BROADCAST_GROUP)
        self.assertEqual(event, NEW_LIST)
        self.assertEqual(payload["id"], grocery_list.pk)
        self.assertEqual(payload["title"], "Party")

    def test_create_list_requires_items_and_title(self):
        with self.assertRaises(ValidationFailed):
            ListService.create_list(self.buyer.pk, "Empty", [])
        with self.assertRaises(ValidationFailed):
            ListService.create_list(self.buyer.pk, "", ITEMS)
        with self.assertRaises(ValidationFailed):
            ListService.create_list(self.buyer.pk, "Nameless", [{"quantity": "1"}])

    def test_add_item(self):
        ListService.add_item(
            self.grocery_list.pk, self.buyer, {"name": "Eggs", "quantity": "12"}
        )
        item = self.grocery_list.items.get(name="Eggs")
        self.assertEqual(item.position, 2)

    def test_add_item_merges_catalog_product(self):
        ListService.add_item(
            self.grocery_list.pk,
            self.buyer,
            {"name": "Sugar", "quantity": "2", "product_ref": "p-1"},
        )
        ListService.add_item(
            self.grocery_list.pk,
            self.buyer,
            {"name": "Sugar", "quantity": "3", "product_ref": "p-1"},
        )
        items = self.grocery_list.items.filter(product_ref="p-1")
        self.assertEqual(items.count(), 1)
        self.assertEqual(items.get().quantity, "5")

    def test_add_item_to_closed_list(self):
        ListService.close_list(self.grocery_list.pk, self.buyer)
        with self.assertRaises(ListClosed):
            ListService.add_item(
                self.grocery_list.pk, self.buyer, {"name": "Eggs", "quantity": "1"}
            )

    def test_add_item_not_owner(self):
        with self.assertRaises(NotAuthorized):
            ListService.add_item(
                self.grocery_list.pk,
                make_user("stranger"),
                {"name": "Eggs", "quantity": "1"},
            )

    def test_close_list_rejects_pending_quotations(self):
        quotation = self.submit()

        grocery_list = ListService.close_list(self.grocery_list.pk, self.buyer)

        self.assertEqual(grocery_list.status, GroceryList.Status.CLOSED)
        quotation.refresh_from_db()
        self.assertEqual(quotation.status, Quotation.Status.REJECTED)

    def test_visibility(self):
        closed = ListService.create_list(self.buyer.pk, "Old", ITEMS)
        ListService.close_list(closed.pk, self.buyer)
        admin = make_user("admin", role=User.Role.ADMIN)

        self.assertEqual(list(ListService.visible_lists(self.vendor)), [self.grocery_list])
        self.assertEqual(ListService.visible_lists(self.buyer).count(), 2)
        self.assertEqual(ListService.visible_lists(make_user("other")).count(), 0)
        self.assertEqual(ListService.visible_lists(admin).count(), 2)

        with self.assertRaises(NotAuthorized):
            ListService.get_list(closed.pk, self.vendor)
        with self.assertRaises(ListNotFound):
            ListService.get_list(999999, self.buyer)


# ============================================================
# Order Service Tests
# ============================================================


class OrderServiceTest(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        self.quotation = self.submit()

    def test_accept_quotation(self):
        rival = self.submit(vendor=make_user("rival", role=User.Role.VENDOR))

        order = OrderService.accept_quotation(self.quotation.pk, self.buyer.pk)

        self.grocery_list.refresh_from_db()
        self.quotation.refresh_from_db()
        rival.refresh_from_db()
        self.assertEqual(self.grocery_list.status, GroceryList.Status.CLOSED)
        self.assertEqual(self.quotation.status, Quotation.Status.ACCEPTED)
        self.assertEqual(rival.status, Quotation.Status.REJECTED)

        self.assertEqual(order.total_amount, Decimal("140.00"))
        self.assertEqual(order.vendor_id, self.vendor.pk)
        self.assertEqual(order.payment_method, Order.PaymentMethod.COD)
        self.assertEqual(order.payment_status, Order.PaymentStatus.PENDING)
        self.assertEqual(order.delivery_status, Order.DeliveryStatus.PENDING)

    def test_second_acceptance_fails(self):
        rival = self.submit(vendor=make_user("rival", role=User.Role.VENDOR))
        OrderService.accept_quotation(self.quotation.pk, self.buyer.pk)

        with self.assertRaises(ListClosed):
            OrderService.accept_quotation(rival.pk, self.buyer.pk)
        with self.assertRaises(ListClosed):
            OrderService.accept_quotation(self.quotation.pk, self.buyer.pk)
        self.assertEqual(Order.objects.count(), 1)

    def test_accept_not_owner(self):
        with self.assertRaises(NotAuthorized):
            OrderService.accept_quotation(self.quotation.pk, make_user("stranger").pk)

        self.grocery_list.refresh_from_db()
        self.assertTrue(self.grocery_list.is_open)
        self.assertFalse(Order.objects.exists())

    def test_accept_missing_quotation(self):
        with self.assertRaises(QuotationNotFound):
            OrderService.accept_quotation(999999, self.buyer.pk)

    def test_accept_rejected_quotation_keeps_list_open(self):
        Quotation.objects.filter(pk=self.quotation.pk).update(
            status=Quotation.Status.REJECTED
        )

        with self.assertRaises(QuotationNotPending):
            OrderService.accept_quotation(self.quotation.pk, self.buyer.pk)

        self.grocery_list.refresh_from_db()
        self.assertTrue(self.grocery_list.is_open)

    def test_mark_paid(self):
        order = OrderService.accept_quotation(self.quotation.pk, self.buyer.pk)

        with self.assertRaises(NotAuthorized):
            OrderService.mark_paid(order.pk, self.vendor.pk)

        order = OrderService.mark_paid(order.pk, self.buyer.pk)
        self.assertEqual(order.payment_status, Order.PaymentStatus.PAID)
        self.assertFalse(
            Transaction.objects.filter(
                transaction_type=Transaction.TransactionType.ORDER_PAYMENT
            ).exists()
        )

    def test_delivery_status_permissive(self):
        order = OrderService.accept_quotation(self.quotation.pk, self.buyer.pk)

        OrderService.update_delivery_status(order.pk, self.vendor.pk, "delivered")
        order = OrderService.update_delivery_status(order.pk, self.vendor.pk, "processing")
        self.assertEqual(order.delivery_status, Order.DeliveryStatus.PROCESSING)

    @override_settings(STRICT_DELIVERY_TRANSITIONS=True)
    def test_delivery_status_strict(self):
        order = OrderService.accept_quotation(self.quotation.pk, self.buyer.pk)

        OrderService.update_delivery_status(order.pk, self.vendor.pk, "shipped")
        with self.assertRaises(InvalidStatusTransition):
            OrderService.update_delivery_status(order.pk, self.vendor.pk, "processing")

        order.refresh_from_db()
        self.assertEqual(order.delivery_status, Order.DeliveryStatus.SHIPPED)

    def test_delivery_status_validation(self):
        order = OrderService.accept_quotation(self.quotation.pk, self.buyer.pk)

        with self.assertRaises(ValidationFailed):
            OrderService.update_delivery_status(order.pk, self.vendor.pk, "lost")
        with self.assertRaises(NotAuthorized):
            OrderService.update_delivery_status(order.pk, self.buyer.pk, "shipped")

    def test_track_and_orders_for(self):
        order = OrderService.accept_quotation(self.quotation.pk, self.buyer.pk)

        summary = OrderService.track(order.pk, self.buyer)
        self.assertEqual(summary["id"], order.pk)
        self.assertEqual(summary["vendorName"], "vendor")
        self.assertEqual(summary["paymentStatus"], "pending")

        with self.assertRaises(NotAuthorized):
            OrderService.track(order.pk, make_user("stranger"))

        self.assertEqual(list(OrderService.orders_for(self.buyer)), [order])
        self.assertEqual(list(OrderService.orders_for(self.vendor)), [order])
        self.assertEqual(
            OrderService.orders_for(make_user("courier", role=User.Role.LOGISTICS)).count(),
            0,
        )


class AcceptanceRaceTest(TransactionTestCase):
    """Acceptances commit for real here, with no test transaction around them."""

    def setUp(self):
        self.buyer = make_user("buyer")
        self.grocery_list = ListService.create_list(
            buyer_id=self.buyer.pk, title="Weekly groceries", items=ITEMS
        )
        self.first = QuotationService.submit_quotation(
            self.grocery_list.pk, make_user("first", role=User.Role.VENDOR).pk, PRICES
        )
        self.second = QuotationService.submit_quotation(
            self.grocery_list.pk, make_user("second", role=User.Role.VENDOR).pk, PRICES
        )

    def test_committed_acceptance_blocks_rival(self):
        OrderService.accept_quotation(self.first.pk, self.buyer.pk)

        with self.assertRaises(ListClosed):
            OrderService.accept_quotation(self.second.pk, self.buyer.pk)

        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(Order.objects.get().quotation_id, self.first.pk)
        self.second.refresh_from_db()
        self.assertEqual(self.second.status, Quotation.Status.REJECTED)

    def test_failed_acceptance_rolls_back_list_closure(self):
        Quotation.objects.filter(pk=self.first.pk).update(
            status=Quotation.Status.REJECTED
        )

        with self.assertRaises(QuotationNotPending):
            OrderService.accept_quotation(self.first.pk, self.buyer.pk)

        self.grocery_list.refresh_from_db()
        self.assertTrue(self.grocery_list.is_open)

        OrderService.accept_quotation(self.second.pk, self.buyer.pk)
        self.assertEqual(Order.objects.count(), 1)

    @skipUnless(connection.vendor == "postgresql", "needs concurrent writers")
    def test_concurrent_acceptances_create_one_order(self):
        barrier = threading.Barrier(2)
        outcomes = []

        def accept(quotation_id):
            try:
                barrier.wait()
                OrderService.accept_quotation(quotation_id, self.buyer.pk)
                outcomes.append("accepted")
            except (ListClosed, QuotationNotPending):
                outcomes.append("rejected")
            finally:
                connection.close()

        threads = [
            threading.Thread(target=accept, args=(quotation.pk,))
            for quotation in (self.first, self.second)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(outcomes), ["accepted", "rejected"])
        self.assertEqual(Order.objects.count(), 1)


# ============================================================
# Payment Service Tests
# ============================================================


@override_settings(RAZORPAY_KEY_ID="", RAZORPAY_KEY_SECRET=SECRET)
class PaymentServiceTest(TestCase):
    def setUp(self):
        self.referrer = make_user("referrer")
        self.buyer = make_user("buyer", referred_by=self.referrer)
        self.vendor = make_user("vendor", role=User.Role.VENDOR)
        grocery_list = ListService.create_list(self.buyer.pk, "Bulk", ITEMS)
        quotation = QuotationService.submit_quotation(
            grocery_list.pk,
            self.vendor.pk,
            [{"itemName": "Rice", "basePrice": "1000"}],
        )
        self.order = OrderService.accept_quotation(quotation.pk, self.buyer.pk)

    def verify(self, gateway_order_id="mock_order_1", payment_id="pay_1", signature=""):
        return PaymentService.verify_order_payment(
            gateway_order_id, payment_id, signature, self.order.pk, self.buyer.pk
        )

    def test_create_payment_order(self):
        gateway_order = PaymentService.create_payment_order(self.order.pk, self.buyer.pk)

        self.assertTrue(gateway_order["id"].startswith("mock_order_"))
        self.assertEqual(gateway_order["amount"], 100000)

    def test_create_payment_order_not_buyer(self):
        with self.assertRaises(NotAuthorized):
            PaymentService.create_payment_order(self.order.pk, self.vendor.pk)

    def test_payment_cascade_with_referrer(self):
        outcome = self.verify()

        self.assertEqual(outcome.royalty, Decimal("2.00"))
        self.assertEqual(outcome.commission, Decimal("0.20"))

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PAID)

        # 500 - 5 bidding charge - 2.00 royalty
        self.assertEqual(WalletService.get_balance(self.vendor.pk), Decimal("493.00"))
        self.assertEqual(WalletService.get_balance(self.referrer.pk), Decimal("500.20"))
        self.assertEqual(WalletService.get_balance(self.buyer.pk), Decimal("500.00"))

        payment_tx = Transaction.objects.get(
            transaction_type=Transaction.TransactionType.ORDER_PAYMENT
        )
        self.assertEqual(payment_tx.user_id, self.buyer.pk)
        self.assertEqual(payment_tx.amount, Decimal("1000.00"))
        self.assertEqual(payment_tx.gateway_payment_id, "pay_1")

        royalty_tx = Transaction.objects.get(
            transaction_type=Transaction.TransactionType.ROYALTY_DEDUCTION
        )
        self.assertEqual(royalty_tx.user_id, self.vendor.pk)
        self.assertEqual(royalty_tx.amount, Decimal("-2.00"))
        self.assertEqual(royalty_tx.order_id, self.order.pk)

        commission_tx = Transaction.objects.get(
            transaction_type=Transaction.TransactionType.REFERRAL_COMMISSION
        )
        self.assertEqual(commission_tx.user_id, self.referrer.pk)
        self.assertEqual(commission_tx.amount, Decimal("0.20"))

    def test_payment_without_referrer(self):
        User.objects.filter(pk=self.buyer.pk).update(referred_by=None)

        outcome = self.verify()

        self.assertIsNone(outcome.commission)
        self.assertFalse(
            Transaction.objects.filter(
                transaction_type=Transaction.TransactionType.REFERRAL_COMMISSION
            ).exists()
        )
        self.assertEqual(WalletService.get_balance(self.referrer.pk), Decimal("500.00"))

    def test_royalty_taken_from_empty_wallet(self):
        User.objects.filter(pk=self.vendor.pk).update(wallet_balance=Decimal("0"))

        self.verify()
        self.assertEqual(WalletService.get_balance(self.vendor.pk), Decimal("-2.00"))

    @override_settings(ROYALTY_PERCENT="0.05", REFERRAL_PERCENT="0.5")
    def test_commission_is_share_of_royalty(self):
        outcome = self.verify()

        self.assertEqual(outcome.royalty, Decimal("50.00"))
        self.assertEqual(outcome.commission, Decimal("25.00"))

    def test_valid_gateway_signature(self):
        signature = signature_for("order_real_1", "pay_real_1", SECRET)

        outcome = self.verify("order_real_1", "pay_real_1", signature)
        self.assertEqual(outcome.order.payment_status, Order.PaymentStatus.PAID)

    def test_invalid_signature_writes_nothing(self):
        with self.assertRaises(InvalidSignature):
            self.verify("order_real_1", "pay_real_1", "forged")

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PENDING)
        self.assertFalse(
            Transaction.objects.filter(order=self.order).exists()
        )

    def test_recharge_mock_id_cannot_pay_order(self):
        with self.assertRaises(InvalidSignature):
            self.verify("mock_recharge_1", "pay_1", "")

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PENDING)
        self.assertEqual(WalletService.get_balance(self.vendor.pk), Decimal("495.00"))

    def test_already_paid(self):
        self.verify()

        with self.assertRaises(OrderAlreadyPaid):
            self.verify("mock_order_2", "pay_2")
        self.assertEqual(WalletService.get_balance(self.vendor.pk), Decimal("493.00"))

    def test_not_buyer(self):
        with self.assertRaises(NotAuthorized):
            PaymentService.verify_order_payment(
                "mock_order_1", "pay_1", "", self.order.pk, self.vendor.pk
            )


# ============================================================
# Notification Tests
# ============================================================


class PublishTest(SimpleTestCase):
    @patch("marketplace.notifications.get_channel_layer")
    def test_publish_sends_json_safe_payload(self, mock_get_layer):
        layer = MagicMock()
        layer.group_send = AsyncMock()
        mock_get_layer.return_value = layer

        self.assertTrue(publish("user_1", NEW_QUOTE, {"total": Decimal("1.50")}))

        layer.group_send.assert_awaited_once_with(
            "user_1",
            {"type": "notify", "event": NEW_QUOTE, "data": {"total": "1.50"}},
        )

    @patch("marketplace.notifications.get_channel_layer")
    def test_publish_failure_is_swallowed(self, mock_get_layer):
        layer = MagicMock()
        layer.group_send = AsyncMock(side_effect=RuntimeError("layer down"))
        mock_get_layer.return_value = layer

        self.assertFalse(publish(BROADCAST_GROUP, NEW_LIST, {"id": 1}))

    @patch("marketplace.notifications.get_channel_layer", return_value=None)
    def test_publish_without_layer(self, _):
        self.assertFalse(publish(BROADCAST_GROUP, NEW_LIST, {"id": 1}))

    def test_publish_in_memory_layer(self):
        self.assertTrue(publish(BROADCAST_GROUP, NEW_LIST, {"id": 1}))


class NotificationConsumerTest(SimpleTestCase):
    def make_consumer(self, user):
        consumer = NotificationConsumer()
        consumer.scope = {"user": user}
        consumer.channel_name = "test.channel"
        consumer.channel_layer = MagicMock()
        consumer.channel_layer.group_add = AsyncMock()
        consumer.channel_layer.group_discard = AsyncMock()
        consumer.accept = MagicMock()
        consumer.send_json = MagicMock()
        consumer.connect()
        return consumer

    def test_connect_joins_broadcast(self):
        consumer = self.make_consumer(AnonymousUser())

        consumer.accept.assert_called_once()
        consumer.channel_layer.group_add.assert_awaited_once_with(
            BROADCAST_GROUP, "test.channel"
        )

    def test_join_own_room(self):
        consumer = self.make_consumer(User(pk=7, username="buyer"))

        consumer.receive_json({"action": "join", "room": 7})

        consumer.channel_layer.group_add.assert_awaited_with("user_7", "test.channel")
        consumer.send_json.assert_called_once_with(
            {"event": "joined", "data": {"room": "7"}}
        )

    def test_cannot_join_other_room(self):
        consumer = self.make_consumer(User(pk=7, username="buyer"))

        consumer.receive_json({"action": "join", "room": "8"})

        self.assertEqual(consumer.channel_layer.group_add.await_count, 1)
        self.assertEqual(consumer.send_json.call_args.args[0]["event"], "error")

    def test_anonymous_cannot_join(self):
        consumer = self.make_consumer(AnonymousUser())

        consumer.receive_json({"action": "join", "room": "1"})
        self.assertEqual(consumer.channel_layer.group_add.await_count, 1)

    def test_notify_forwards_event(self):
        consumer = self.make_consumer(AnonymousUser())

        consumer.notify({"type": "notify", "event": NEW_LIST, "data": {"id": 3}})
        consumer.send_json.assert_called_once_with({"event": NEW_LIST, "data": {"id": 3}})

    def test_disconnect_leaves_groups(self):
        consumer = self.make_consumer(User(pk=7, username="buyer"))
        consumer.receive_json({"action": "join", "room": "7"})

        consumer.disconnect(1000)

        discarded = [call.args[0] for call in consumer.channel_layer.group_discard.await_args_list]
        self.assertEqual(discarded, [BROADCAST_GROUP, "user_7"])


class TokenWebsocketTest(TransactionTestCase):
    """Full ASGI stack over the in-memory channel layer."""

    def setUp(self):
        self.buyer = make_user("buyer")
        self.vendor = make_user("vendor", role=User.Role.VENDOR)
        self.token = Token.objects.create(user=self.buyer)
        self.grocery_list = ListService.create_list(
            buyer_id=self.buyer.pk, title="Weekly groceries", items=ITEMS
        )

    async def connect(self, path="/ws/notifications/", headers=None):
        communicator = WebsocketCommunicator(application, path, headers=headers or [])
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        return communicator

    async def join_own_room(self, communicator):
        await communicator.send_json_to({"action": "join", "room": str(self.buyer.pk)})
        return await communicator.receive_json_from(timeout=2)

    async def test_header_token_receives_new_quote(self):
        communicator = await self.connect(
            headers=[(b"authorization", f"Token {self.token.key}".encode())]
        )
        reply = await self.join_own_room(communicator)
        self.assertEqual(
            reply, {"event": "joined", "data": {"room": str(self.buyer.pk)}}
        )

        quotation = await database_sync_to_async(QuotationService.submit_quotation)(
            self.grocery_list.pk, self.vendor.pk, PRICES
        )

        message = await communicator.receive_json_from(timeout=2)
        self.assertEqual(message["event"], NEW_QUOTE)
        self.assertEqual(message["data"]["listId"], self.grocery_list.pk)
        self.assertEqual(message["data"]["quotation"]["id"], quotation.pk)
        await communicator.disconnect()

    async def test_query_string_token_joins_room(self):
        communicator = await self.connect(f"/ws/notifications/?token={self.token.key}")

        reply = await self.join_own_room(communicator)
        self.assertEqual(reply["event"], "joined")
        await communicator.disconnect()

    async def test_unknown_token_cannot_join(self):
        communicator = await self.connect(headers=[(b"authorization", b"Token nope")])

        reply = await self.join_own_room(communicator)
        self.assertEqual(reply["event"], "error")
        await communicator.disconnect()


# ============================================================
# API Tests
# ============================================================


@override_settings(RAZORPAY_KEY_ID="")
class MarketplaceAPITest(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def as_user(self, user):
        self.client.force_authenticate(user=user)
        return self.client

    def post_quotation(self, prices=PRICES, list_id=None):
        return self.as_user(self.vendor).post(
            "/api/quotations/",
            {"listId": list_id or self.grocery_list.pk, "prices": prices},
            format="json",
        )

    def test_create_list(self):
        response = self.as_user(self.buyer).post(
            "/api/lists/",
            {"title": "Fruit", "items": [{"name": "Apple", "quantity": 6}]},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["status"], "open")
        self.assertEqual(response.data["items"][0]["quantity"], "6")

    def test_vendor_cannot_create_list(self):
        response = self.as_user(self.vendor).post(
            "/api/lists/", {"title": "Fruit", "items": ITEMS}, format="json"
        )
        self.assertEqual(response.status_code, 403)

    def test_vendor_sees_open_lists(self):
        response = self.as_user(self.vendor).get("/api/lists/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["id"] for row in response.data], [self.grocery_list.pk])

    def test_delete_list_closes_it(self):
        response = self.as_user(self.buyer).delete(f"/api/lists/{self.grocery_list.pk}/")
        self.assertEqual(response.status_code, 200)
        self.grocery_list.refresh_from_db()
        self.assertEqual(self.grocery_list.status, GroceryList.Status.CLOSED)

        response = self.as_user(self.vendor).delete(f"/api/lists/{self.grocery_list.pk}/")
        self.assertEqual(response.status_code, 403)

    def test_add_list_item(self):
        response = self.as_user(self.buyer).post(
            f"/api/lists/{self.grocery_list.pk}/items",
            {"name": "Eggs", "quantity": "12"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data["items"]), 3)

    def test_submit_quotation(self):
        response = self.post_quotation()
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["total_amount"], "140.00")
        self.assertEqual(response.data["discount_total"], "10.00")
        self.assertEqual(len(response.data["lines"]), 2)

    def test_submit_quotation_errors(self):
        response = self.post_quotation(prices=[{"itemName": "Rice", "basePrice": "x"}])
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["error"], "Invalid base price for item: Rice")

        response = self.post_quotation(list_id=999999)
        self.assertEqual(response.status_code, 404)

        User.objects.filter(pk=self.vendor.pk).update(wallet_balance=Decimal("3"))
        response = self.post_quotation()
        self.assertEqual(response.status_code, 400)

        response = self.as_user(self.buyer).post(
            "/api/quotations/",
            {"listId": self.grocery_list.pk, "prices": PRICES},
            format="json",
        )
        self.assertEqual(response.status_code, 403)

    def test_submit_quotation_out_of_range(self):
        response = self.post_quotation(
            prices=[{"itemName": "rice", "basePrice": 100, "discount": 1000}]
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["error"], "Invalid discount for item: rice")

        response = self.post_quotation(prices=[{"itemName": "rice", "basePrice": "1e12"}])
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["error"], "Invalid base price for item: rice")

        self.assertFalse(Quotation.objects.exists())
        self.assertEqual(WalletService.get_balance(self.vendor.pk), Decimal("500.00"))

    def test_submit_quotation_closed_list(self):
        ListService.close_list(self.grocery_list.pk, self.buyer)

        response = self.post_quotation()
        self.assertEqual(response.status_code, 400)

    def test_list_quotations_for_buyer(self):
        self.post_quotation()

        response = self.as_user(self.buyer).get(
            f"/api/quotations/?listId={self.grocery_list.pk}"
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 1)

        response = self.as_user(make_user("stranger")).get(
            f"/api/quotations/?listId={self.grocery_list.pk}"
        )
        self.assertEqual(response.status_code, 403)

    def test_accept_quotation(self):
        quotation_id = self.post_quotation().data["id"]

        response = self.as_user(self.buyer).post(
            "/api/orders/",
            {"quotationId": quotation_id, "paymentMethod": "online"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["payment_method"], "online")
        self.assertEqual(response.data["total_amount"], "140.00")

        response = self.as_user(self.buyer).post(
            "/api/orders/", {"quotationId": quotation_id}, format="json"
        )
        self.assertEqual(response.status_code, 400)

    def test_accept_quotation_not_owner(self):
        quotation_id = self.post_quotation().data["id"]

        response = self.as_user(make_user("stranger")).post(
            "/api/orders/", {"quotationId": quotation_id}, format="json"
        )
        self.assertEqual(response.status_code, 403)

    def test_order_lifecycle(self):
        quotation = self.submit()
        order = OrderService.accept_quotation(quotation.pk, self.buyer.pk)

        response = self.as_user(self.vendor).put(
            f"/api/orders/{order.pk}/status", {"status": "shipped"}, format="json"
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["delivery_status"], "shipped")

        response = self.as_user(self.vendor).put(
            f"/api/orders/{order.pk}/status", {"status": "teleported"}, format="json"
        )
        self.assertEqual(response.status_code, 400)

        response = self.as_user(self.buyer).put(f"/api/orders/{order.pk}/pay")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["payment_status"], "paid")

        response = self.as_user(self.buyer).get(f"/api/orders/{order.pk}/track")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["deliveryStatus"], "shipped")

        response = self.as_user(self.buyer).get("/api/orders/")
        self.assertEqual(len(response.data), 1)

    def test_online_payment(self):
        quotation = self.submit()
        order = OrderService.accept_quotation(quotation.pk, self.buyer.pk)

        response = self.as_user(self.buyer).post(
            "/api/payment/create-order", {"orderId": order.pk}, format="json"
        )
        self.assertEqual(response.status_code, 200)
        gateway_order_id = response.data["id"]

        response = self.as_user(self.buyer).post(
            "/api/payment/verify",
            {
                "razorpay_order_id": gateway_order_id,
                "razorpay_payment_id": "pay_1",
                "orderId": order.pk,
            },
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(str(response.data["royalty"])), Decimal("0.28"))
        self.assertIsNone(response.data["commission"])

        response = self.as_user(self.buyer).post(
            "/api/payment/verify",
            {"razorpay_order_id": gateway_order_id, "orderId": order.pk},
            format="json",
        )
        self.assertEqual(response.status_code, 400)

    def test_payment_verify_bad_signature(self):
        quotation = self.submit()
        order = OrderService.accept_quotation(quotation.pk, self.buyer.pk)

        response = self.as_user(self.buyer).post(
            "/api/payment/verify",
            {
                "razorpay_order_id": "order_real_1",
                "razorpay_payment_id": "pay_1",
                "razorpay_signature": "forged",
                "orderId": order.pk,
            },
            format="json",
        )
        self.assertEqual(response.status_code, 400)
