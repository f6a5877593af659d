from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests
from django.contrib.auth import get_user_model
from django.test import TestCase, TransactionTestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from wallets.conf import money_setting, to_money
from wallets.exceptions import (
    GatewayError,
    InsufficientBalance,
    InvalidSignature,
    TransactionAlreadyProcessed,
)
from wallets.models import Transaction
from wallets.services import RechargeService, WalletService
from wallets.utils import (
    is_mock_mode,
    request_gateway_order,
    signature_for,
    to_subunits,
    verify_signature,
)

User = get_user_model()

SECRET = "test_secret"


# ============================================================
# Money Helpers
# ============================================================


class MoneyTest(TestCase):
    def test_to_money_rounds_half_up(self):
        self.assertEqual(to_money("2.005"), Decimal("2.01"))
        self.assertEqual(to_money("0.199"), Decimal("0.20"))
        self.assertEqual(to_money(5), Decimal("5.00"))

    def test_money_setting_defaults(self):
        self.assertEqual(money_setting("BIDDING_CHARGE"), Decimal("5"))
        self.assertEqual(money_setting("ROYALTY_PERCENT"), Decimal("0.002"))

    @override_settings(BIDDING_CHARGE="7.50")
    def test_money_setting_reads_settings_at_call_time(self):
        self.assertEqual(money_setting("BIDDING_CHARGE"), Decimal("7.50"))


# ============================================================
# Model Tests
# ============================================================


class TransactionModelTest(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="vendor", password="secret1")

    def test_new_user_gets_initial_balance(self):
        self.assertEqual(self.user.wallet_balance, Decimal("500"))

    def test_create_transaction_defaults_to_completed(self):
        tx = Transaction.objects.create(
            user=self.user,
            amount=Decimal("-5.00"),
            transaction_type=Transaction.TransactionType.BIDDING_CHARGE,
        )
        self.assertEqual(tx.status, "completed")
        self.assertEqual(tx.transaction_type, "bidding_charge")

    def test_transaction_str(self):
        tx = Transaction.objects.create(
            user=self.user,
            amount=Decimal("100.00"),
            transaction_type=Transaction.TransactionType.DEPOSIT,
        )
        self.assertIn("deposit", str(tx))
        self.assertIn("100", str(tx))

    def test_get_stale_pending_recharges(self):
        stale = Transaction.objects.create(
            user=self.user,
            amount=Decimal("100.00"),
            transaction_type=Transaction.TransactionType.DEPOSIT,
            status=Transaction.Status.PENDING,
            gateway_order_id="mock_recharge_old",
        )
        Transaction.objects.filter(pk=stale.pk).update(
            created_at=timezone.now() - timedelta(hours=2)
        )
        # Fresh recharge
        Transaction.objects.create(
            user=self.user,
            amount=Decimal("100.00"),
            transaction_type=Transaction.TransactionType.DEPOSIT,
            status=Transaction.Status.PENDING,
            gateway_order_id="mock_recharge_new",
        )

        stale_rows = Transaction.get_stale_pending_recharges(max_age_minutes=60)
        self.assertEqual(stale_rows.count(), 1)
        self.assertEqual(stale_rows.first().id, stale.id)


# ============================================================
# Gateway Tests
# ============================================================


@override_settings(RAZORPAY_KEY_SECRET=SECRET)
class SignatureTest(TestCase):
    def test_valid_signature(self):
        signature = signature_for("order_abc", "pay_xyz", SECRET)
        self.assertTrue(verify_signature("order_abc", "pay_xyz", signature))

    def test_tampered_signature_rejected(self):
        signature = signature_for("order_abc", "pay_xyz", SECRET)
        self.assertFalse(verify_signature("order_abc", "pay_other", signature))
        self.assertFalse(verify_signature("order_abc", "pay_xyz", ""))

    def test_signature_uses_configured_secret(self):
        signature = signature_for("order_abc", "pay_xyz", "another_secret")
        self.assertFalse(verify_signature("order_abc", "pay_xyz", signature))

    def test_mock_orders_bypass_signature(self):
        self.assertTrue(verify_signature("mock_order_123", "", "", "mock_order_"))
        self.assertTrue(
            verify_signature("mock_recharge_123", "pay", "garbage", "mock_recharge_")
        )

    def test_mock_bypass_limited_to_own_prefix(self):
        self.assertFalse(
            verify_signature("mock_recharge_123", "pay", "", "mock_order_")
        )
        self.assertFalse(
            verify_signature("mock_order_123", "pay", "", "mock_recharge_")
        )
        self.assertFalse(verify_signature("mock_order_123", "pay", ""))

    def test_mock_prefixed_order_with_valid_signature(self):
        signature = signature_for("mock_order_5", "pay_5", SECRET)
        self.assertTrue(
            verify_signature("mock_order_5", "pay_5", signature, "mock_recharge_")
        )


class GatewayOrderTest(TestCase):
    def test_to_subunits(self):
        self.assertEqual(to_subunits(Decimal("12.34")), 1234)

    @override_settings(RAZORPAY_KEY_ID="")
    def test_mock_mode_without_key(self):
        self.assertTrue(is_mock_mode())
        result = request_gateway_order(Decimal("250.00"), "r1", "mock_recharge_")

        self.assertTrue(result["success"])
        self.assertTrue(result["response"]["id"].startswith("mock_recharge_"))
        self.assertEqual(result["response"]["amount"], 25000)
        self.assertTrue(result["response"]["isMock"])

    @override_settings(RAZORPAY_KEY_ID="YOUR_KEY_ID")
    def test_placeholder_key_is_mock_mode(self):
        self.assertTrue(is_mock_mode())

    @override_settings(RAZORPAY_KEY_ID="rzp_test_key", RAZORPAY_KEY_SECRET=SECRET)
    @patch("wallets.utils.gateway.requests.post")
    def test_real_order_created(self, mock_post):
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {
            "id": "order_real_1",
            "amount": 10000,
            "currency": "INR",
        }
        mock_post.return_value = mock_response

        result = request_gateway_order(Decimal("100.00"), "r2", "mock_order_")

        self.assertTrue(result["success"])
        self.assertEqual(result["response"]["id"], "order_real_1")
        self.assertFalse(result["response"]["isMock"])
        self.assertEqual(mock_post.call_args.kwargs["json"]["amount"], 10000)
        self.assertEqual(mock_post.call_args.kwargs["auth"], ("rzp_test_key", SECRET))

    @override_settings(RAZORPAY_KEY_ID="rzp_test_key")
    @patch("wallets.utils.gateway.requests.post")
    def test_gateway_rejection(self, mock_post):
        mock_response = MagicMock()
        mock_response.status_code = 400
        mock_response.json.return_value = {"error": {"code": "BAD_REQUEST_ERROR"}}
        mock_post.return_value = mock_response

        result = request_gateway_order(Decimal("100.00"), "r3", "mock_order_")
        self.assertFalse(result["success"])

    @override_settings(RAZORPAY_KEY_ID="rzp_test_key")
    @patch("wallets.utils.gateway.requests.post")
    def test_gateway_timeout(self, mock_post):
        mock_post.side_effect = requests.exceptions.Timeout("timed out")

        result = request_gateway_order(Decimal("100.00"), "r4", "mock_order_")
        self.assertFalse(result["success"])
        self.assertEqual(result["response"]["error"], "timeout")


# ============================================================
# Service Tests
# ============================================================


class WalletServiceTest(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="vendor", password="secret1")

    def test_apply_debit(self):
        tx = WalletService.apply_ledger_effect(
            self.user.pk,
            Decimal("-5"),
            Transaction.TransactionType.BIDDING_CHARGE,
            description="Offer submission charge",
        )

        self.user.refresh_from_db()
        self.assertEqual(self.user.wallet_balance, Decimal("495.00"))
        self.assertEqual(tx.amount, Decimal("-5.00"))
        self.assertEqual(tx.status, Transaction.Status.COMPLETED)

    def test_apply_credit(self):
        WalletService.apply_ledger_effect(
            self.user.pk, Decimal("0.20"), Transaction.TransactionType.REFERRAL_COMMISSION
        )
        self.user.refresh_from_db()
        self.assertEqual(self.user.wallet_balance, Decimal("500.20"))

    def test_balance_may_go_negative(self):
        WalletService.apply_ledger_effect(
            self.user.pk, Decimal("-600"), Transaction.TransactionType.ROYALTY_DEDUCTION
        )
        self.user.refresh_from_db()
        self.assertEqual(self.user.wallet_balance, Decimal("-100.00"))

    def test_nonexistent_user_raises(self):
        with self.assertRaises(User.DoesNotExist):
            WalletService.apply_ledger_effect(
                999999, Decimal("1"), Transaction.TransactionType.DEPOSIT
            )

    def test_balance_matches_initial_plus_ledger(self):
        for delta in ("-5", "-5", "100", "-0.50"):
            WalletService.apply_ledger_effect(
                self.user.pk, Decimal(delta), Transaction.TransactionType.DEPOSIT
            )

        ledger_total = sum(
            Transaction.objects.filter(user=self.user).values_list("amount", flat=True)
        )
        self.assertEqual(
            WalletService.get_balance(self.user.pk), Decimal("500") + ledger_total
        )

    def test_record_does_not_move_balance(self):
        tx = WalletService.record(
            self.user.pk, Decimal("1000"), Transaction.TransactionType.ORDER_PAYMENT
        )
        self.assertEqual(tx.amount, Decimal("1000.00"))
        self.assertEqual(WalletService.get_balance(self.user.pk), Decimal("500.00"))

    def test_ensure_balance(self):
        self.assertEqual(
            WalletService.ensure_balance(self.user.pk, Decimal("5")), Decimal("500.00")
        )

    def test_ensure_balance_insufficient(self):
        User.objects.filter(pk=self.user.pk).update(wallet_balance=Decimal("3"))

        with self.assertRaises(InsufficientBalance) as ctx:
            WalletService.ensure_balance(self.user.pk, Decimal("5"))
        self.assertEqual(ctx.exception.balance, Decimal("3.00"))
        self.assertEqual(ctx.exception.required, Decimal("5.00"))


@override_settings(RAZORPAY_KEY_ID="", RAZORPAY_KEY_SECRET=SECRET)
class RechargeServiceTest(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="buyer", password="secret1")

    def test_create_recharge_records_pending_deposit(self):
        tx, gateway_order = RechargeService.create_recharge(self.user.pk, Decimal("250"))

        self.assertEqual(tx.status, Transaction.Status.PENDING)
        self.assertEqual(tx.transaction_type, Transaction.TransactionType.DEPOSIT)
        self.assertEqual(tx.amount, Decimal("250.00"))
        self.assertEqual(tx.gateway_order_id, gateway_order["id"])
        self.assertEqual(tx.description, "Wallet Recharge (MOCK)")
        # No credit until verified
        self.assertEqual(WalletService.get_balance(self.user.pk), Decimal("500.00"))

    def test_create_recharge_non_positive_raises(self):
        with self.assertRaises(ValueError):
            RechargeService.create_recharge(self.user.pk, Decimal("0"))

    @patch("wallets.services.recharge.request_gateway_order")
    def test_create_recharge_gateway_failure(self, mock_order):
        mock_order.return_value = {"success": False, "response": {"error": "timeout"}}

        with self.assertRaises(GatewayError):
            RechargeService.create_recharge(self.user.pk, Decimal("100"))
        self.assertFalse(Transaction.objects.exists())

    def test_verify_recharge_credits_once(self):
        tx, gateway_order = RechargeService.create_recharge(self.user.pk, Decimal("250"))

        balance = RechargeService.verify_recharge(
            gateway_order["id"], "pay_1", "", self.user.pk
        )
        self.assertEqual(balance, Decimal("750.00"))

        tx.refresh_from_db()
        self.assertEqual(tx.status, Transaction.Status.COMPLETED)
        self.assertEqual(tx.gateway_payment_id, "pay_1")

        with self.assertRaises(TransactionAlreadyProcessed):
            RechargeService.verify_recharge(
                gateway_order["id"], "pay_1", "", self.user.pk
            )
        self.assertEqual(WalletService.get_balance(self.user.pk), Decimal("750.00"))

    def test_verify_real_recharge_with_valid_signature(self):
        Transaction.objects.create(
            user=self.user,
            amount=Decimal("100.00"),
            transaction_type=Transaction.TransactionType.DEPOSIT,
            status=Transaction.Status.PENDING,
            gateway_order_id="order_real_9",
        )
        signature = signature_for("order_real_9", "pay_9", SECRET)

        balance = RechargeService.verify_recharge(
            "order_real_9", "pay_9", signature, self.user.pk
        )
        self.assertEqual(balance, Decimal("600.00"))

    def test_verify_real_recharge_with_bad_signature(self):
        tx = Transaction.objects.create(
            user=self.user,
            amount=Decimal("100.00"),
            transaction_type=Transaction.TransactionType.DEPOSIT,
            status=Transaction.Status.PENDING,
            gateway_order_id="order_real_10",
        )

        with self.assertRaises(InvalidSignature):
            RechargeService.verify_recharge(
                "order_real_10", "pay_10", "deadbeef", self.user.pk
            )

        tx.refresh_from_db()
        self.assertEqual(tx.status, Transaction.Status.PENDING)
        self.assertEqual(WalletService.get_balance(self.user.pk), Decimal("500.00"))

    def test_order_mock_id_cannot_verify_recharge(self):
        tx = Transaction.objects.create(
            user=self.user,
            amount=Decimal("100.00"),
            transaction_type=Transaction.TransactionType.DEPOSIT,
            status=Transaction.Status.PENDING,
            gateway_order_id="mock_order_77",
        )

        with self.assertRaises(InvalidSignature):
            RechargeService.verify_recharge("mock_order_77", "pay_77", "", self.user.pk)

        tx.refresh_from_db()
        self.assertEqual(tx.status, Transaction.Status.PENDING)
        self.assertEqual(WalletService.get_balance(self.user.pk), Decimal("500.00"))

    def test_verify_someone_elses_recharge(self):
        other = User.objects.create_user(username="other", password="secret1")
        _, gateway_order = RechargeService.create_recharge(self.user.pk, Decimal("50"))

        with self.assertRaises(TransactionAlreadyProcessed):
            RechargeService.verify_recharge(gateway_order["id"], "pay", "", other.pk)

    def test_expire_stale(self):
        tx, _ = RechargeService.create_recharge(self.user.pk, Decimal("50"))
        Transaction.objects.filter(pk=tx.pk).update(
            created_at=timezone.now() - timedelta(hours=3)
        )

        self.assertEqual(RechargeService.expire_stale(max_age_minutes=60), 1)
        tx.refresh_from_db()
        self.assertEqual(tx.status, Transaction.Status.FAILED)


# ============================================================
# API Tests
# ============================================================


@override_settings(RAZORPAY_KEY_ID="")
class WalletAPITest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(username="buyer", password="secret1")
        self.client.force_authenticate(user=self.user)

    def test_requires_authentication(self):
        response = APIClient().get("/api/wallet/")
        self.assertEqual(response.status_code, 401)

    def test_wallet_detail(self):
        WalletService.apply_ledger_effect(
            self.user.pk, Decimal("-5"), Transaction.TransactionType.BIDDING_CHARGE
        )

        response = self.client.get("/api/wallet/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.data["balance"]), Decimal("495.00"))
        self.assertEqual(response.data["referralCode"], self.user.referral_code)
        self.assertEqual(len(response.data["transactions"]), 1)

    def test_recharge_and_verify(self):
        response = self.client.post(
            "/api/wallet/recharge", {"amount": "200"}, format="json"
        )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["isMock"])

        response = self.client.post(
            "/api/wallet/verify",
            {"razorpay_order_id": response.data["id"], "razorpay_payment_id": "pay_1"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.data["balance"]), Decimal("700.00"))

    def test_recharge_invalid_amount(self):
        response = self.client.post("/api/wallet/recharge", {"amount": "0"}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_verify_unknown_order(self):
        response = self.client.post(
            "/api/wallet/verify",
            {"razorpay_order_id": "mock_recharge_missing"},
            format="json",
        )
        self.assertEqual(response.status_code, 404)

    def test_verify_bad_signature(self):
        response = self.client.post(
            "/api/wallet/verify",
            {
                "razorpay_order_id": "order_real_1",
                "razorpay_payment_id": "pay_1",
                "razorpay_signature": "bad",
            },
            format="json",
        )
        self.assertEqual(response.status_code, 400)

    def test_global_ledger_admin_only(self):
        response = self.client.get("/api/wallet/all")
        self.assertEqual(response.status_code, 403)

        admin = User.objects.create_user(
            username="admin", password="secret1", role=User.Role.ADMIN
        )
        WalletService.apply_ledger_effect(
            self.user.pk, Decimal("-5"), Transaction.TransactionType.BIDDING_CHARGE
        )
        WalletService.record(
            self.user.pk, Decimal("10"), Transaction.TransactionType.ORDER_PAYMENT
        )
        self.client.force_authenticate(user=admin)

        response = self.client.get("/api/wallet/all")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 2)

        response = self.client.get("/api/wallet/all?type=bidding_charge")
        self.assertEqual(len(response.data), 1)


# ============================================================
# Celery Task Tests
# ============================================================


@override_settings(RAZORPAY_KEY_ID="")
class CeleryTaskTest(TransactionTestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="buyer", password="secret1")

    def test_expire_stale_recharges(self):
        stale, _ = RechargeService.create_recharge(self.user.pk, Decimal("100"))
        fresh, _ = RechargeService.create_recharge(self.user.pk, Decimal("100"))
        Transaction.objects.filter(pk=stale.pk).update(
            created_at=timezone.now() - timedelta(hours=2)
        )

        from wallets.tasks import expire_stale_recharges

        # Use .apply() to run synchronously in tests
        result = expire_stale_recharges.apply(kwargs={"max_age_minutes": 60})
        self.assertEqual(result.get()["expired"], 1)

        stale.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(stale.status, Transaction.Status.FAILED)
        self.assertEqual(fresh.status, Transaction.Status.PENDING)


# ============================================================
# Middleware Tests
# ============================================================


class RequestLoggingMiddlewareTest(TestCase):
    def test_sensitive_fields_are_masked(self):
        with self.assertLogs("wallets.middleware", level="INFO") as logs:
            APIClient().post(
                "/api/users/register",
                {"username": "logged", "password": "hunter22"},
                format="json",
            )

        output = "\n".join(logs.output)
        self.assertIn("API Request: POST /api/users/register", output)
        self.assertNotIn("hunter22", output)
        self.assertIn("***", output)
