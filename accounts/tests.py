from decimal import Decimal

from channels.db import database_sync_to_async
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from rest_framework.authtoken.models import Token
from rest_framework.test import APIClient

from accounts.exceptions import NoRewardsAvailable
from accounts.middleware import TokenAuthMiddleware, token_key_from_scope
from accounts.services import ReferralService
from wallets.models import Transaction
from wallets.services import WalletService

User = get_user_model()


# ============================================================
# Model Tests
# ============================================================


class UserModelTest(TestCase):
    def test_referral_code_generated_once(self):
        user = User.objects.create_user(username="alice", password="secret1")
        code = user.referral_code
        self.assertEqual(len(code), 8)
        self.assertEqual(code, code.upper())

        user.phone = "12345"
        user.save()
        user.refresh_from_db()
        self.assertEqual(user.referral_code, code)

    def test_referral_codes_unique(self):
        first = User.objects.create_user(username="a", password="secret1")
        second = User.objects.create_user(username="b", password="secret1")
        self.assertNotEqual(first.referral_code, second.referral_code)

    @override_settings(INITIAL_WALLET_BALANCE="250")
    def test_initial_wallet_balance_is_configurable(self):
        user = User.objects.create_user(username="c", password="secret1")
        self.assertEqual(user.wallet_balance, Decimal("250"))

    def test_role_properties(self):
        vendor = User.objects.create_user(
            username="v", password="secret1", role=User.Role.VENDOR
        )
        self.assertTrue(vendor.is_vendor)
        self.assertFalse(vendor.is_buyer)
        self.assertFalse(vendor.is_admin_role)

        superuser = User.objects.create_superuser(username="root", password="secret1")
        self.assertTrue(superuser.is_admin_role)


# ============================================================
# Service Tests
# ============================================================


class ReferralServiceTest(TestCase):
    def setUp(self):
        self.referrer = User.objects.create_user(username="referrer", password="secret1")

    def test_register_without_code(self):
        user = ReferralService.register(username="plain", password="secret1")

        self.assertIsNone(user.referred_by)
        self.assertEqual(user.referral_rewards, Decimal("0"))
        self.assertEqual(user.wallet_balance, Decimal("500"))
        self.assertFalse(Transaction.objects.exists())

    def test_register_with_code_grants_points(self):
        user = ReferralService.register(
            username="invited",
            password="secret1",
            referral_code=self.referrer.referral_code.lower(),
        )

        user.refresh_from_db()
        self.referrer.refresh_from_db()
        self.assertEqual(user.referred_by, self.referrer)
        self.assertEqual(user.referral_rewards, Decimal("50.00"))
        self.assertEqual(self.referrer.referral_rewards, Decimal("100.00"))

        # Points are not wallet money
        self.assertEqual(user.wallet_balance, Decimal("500.00"))
        self.assertEqual(self.referrer.wallet_balance, Decimal("500.00"))

        referrer_tx = Transaction.objects.get(user=self.referrer)
        self.assertEqual(
            referrer_tx.transaction_type,
            Transaction.TransactionType.REFERRAL_COMMISSION,
        )
        self.assertEqual(referrer_tx.amount, Decimal("100.00"))
        user_tx = Transaction.objects.get(user=user)
        self.assertEqual(user_tx.transaction_type, Transaction.TransactionType.DEPOSIT)
        self.assertEqual(user_tx.amount, Decimal("50.00"))

    def test_register_with_unknown_code(self):
        user = ReferralService.register(
            username="lost", password="secret1", referral_code="NOPE0000"
        )

        self.assertIsNone(user.referred_by)
        self.assertEqual(user.referral_rewards, Decimal("0"))
        self.referrer.refresh_from_db()
        self.assertEqual(self.referrer.referral_rewards, Decimal("0"))

    def test_convert_rewards(self):
        User.objects.filter(pk=self.referrer.pk).update(referral_rewards=Decimal("100"))

        balance = ReferralService.convert_rewards(self.referrer.pk)

        self.assertEqual(balance, Decimal("600.00"))
        self.referrer.refresh_from_db()
        self.assertEqual(self.referrer.referral_rewards, Decimal("0"))
        tx = Transaction.objects.get(user=self.referrer)
        self.assertEqual(tx.transaction_type, Transaction.TransactionType.DEPOSIT)
        self.assertEqual(tx.amount, Decimal("100.00"))

    def test_convert_without_rewards(self):
        with self.assertRaises(NoRewardsAvailable):
            ReferralService.convert_rewards(self.referrer.pk)
        self.assertEqual(WalletService.get_balance(self.referrer.pk), Decimal("500.00"))

    def test_referral_stats(self):
        ReferralService.register(
            username="one", password="secret1", referral_code=self.referrer.referral_code
        )
        ReferralService.register(
            username="two", password="secret1", referral_code=self.referrer.referral_code
        )
        self.referrer.refresh_from_db()

        stats = ReferralService.referral_stats(self.referrer)
        self.assertEqual(stats["count"], 2)
        self.assertEqual(stats["rewards"], Decimal("200.00"))
        self.assertEqual(stats["referralCode"], self.referrer.referral_code)
        self.assertEqual(
            sorted(entry["username"] for entry in stats["history"]), ["one", "two"]
        )


# ============================================================
# API Tests
# ============================================================


class RegisterAPITest(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_register(self):
        response = self.client.post(
            "/api/users/register",
            {"username": "newbie", "password": "secret1", "role": "vendor"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["role"], "vendor")
        self.assertNotIn("password", response.data)

    def test_register_with_referral(self):
        referrer = User.objects.create_user(username="referrer", password="secret1")

        response = self.client.post(
            "/api/users/register",
            {
                "username": "newbie",
                "password": "secret1",
                "referralByCode": referrer.referral_code,
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["referred_by"], referrer.pk)
        self.assertEqual(Decimal(response.data["referral_rewards"]), Decimal("50"))

    def test_register_duplicate_username(self):
        User.objects.create_user(username="taken", password="secret1")

        response = self.client.post(
            "/api/users/register",
            {"username": "taken", "password": "secret1"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)

    def test_register_cannot_choose_admin_role(self):
        response = self.client.post(
            "/api/users/register",
            {"username": "sneaky", "password": "secret1", "role": "admin"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)


class ReferralAPITest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(username="referrer", password="secret1")
        self.client.force_authenticate(user=self.user)

    def test_stats(self):
        ReferralService.register(
            username="friend", password="secret1", referral_code=self.user.referral_code
        )

        response = self.client.get("/api/users/referrals")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["count"], 1)

    def test_convert(self):
        User.objects.filter(pk=self.user.pk).update(referral_rewards=Decimal("100"))

        response = self.client.post("/api/users/referrals/convert")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.data["walletBalance"]), Decimal("600.00"))
        self.assertEqual(response.data["referralRewards"], 0)

    def test_convert_nothing(self):
        response = self.client.post("/api/users/referrals/convert")
        self.assertEqual(response.status_code, 400)


# ============================================================
# WebSocket Auth Tests
# ============================================================


class TokenKeyFromScopeTest(SimpleTestCase):
    def test_authorization_header(self):
        scope = {"headers": [(b"authorization", b"Token abc123")], "query_string": b""}
        self.assertEqual(token_key_from_scope(scope), "abc123")

    def test_query_string(self):
        scope = {"headers": [], "query_string": b"room=4&token=xyz"}
        self.assertEqual(token_key_from_scope(scope), "xyz")

    def test_header_takes_precedence(self):
        scope = {
            "headers": [(b"authorization", b"token from-header")],
            "query_string": b"token=from-query",
        }
        self.assertEqual(token_key_from_scope(scope), "from-header")

    def test_other_schemes_ignored(self):
        scope = {"headers": [(b"authorization", b"Bearer abc123")], "query_string": b""}
        self.assertIsNone(token_key_from_scope(scope))
        self.assertIsNone(token_key_from_scope({}))


class TokenAuthMiddlewareTest(TransactionTestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="socket", password="secret1")
        self.token = Token.objects.create(user=self.user)
        self.seen = {}

        async def inner(scope, receive, send):
            self.seen["user"] = scope.get("user")

        self.middleware = TokenAuthMiddleware(inner)

    async def call(self, key, **scope):
        scope.setdefault("headers", [])
        scope["query_string"] = f"token={key}".encode()
        await self.middleware(scope, None, None)
        return self.seen["user"]

    async def test_valid_token_sets_user(self):
        user = await self.call(self.token.key)
        self.assertEqual(user.pk, self.user.pk)

    async def test_unknown_token_keeps_scope_user(self):
        user = await self.call("missing", user=AnonymousUser())
        self.assertFalse(user.is_authenticated)

    async def test_inactive_user_rejected(self):
        await database_sync_to_async(
            User.objects.filter(pk=self.user.pk).update
        )(is_active=False)

        user = await self.call(self.token.key, user=AnonymousUser())
        self.assertFalse(user.is_authenticated)
