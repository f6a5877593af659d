import logging
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import F

from accounts.exceptions import NoRewardsAvailable
from wallets.conf import money_setting
from wallets.models import Transaction
from wallets.services import WalletService

logger = logging.getLogger(__name__)

User = get_user_model()


class ReferralService:
    """
    Referral bonuses at sign-up and their conversion into wallet cash.

    Bonuses are reward points held in `referral_rewards`, not wallet money,
    so granting them writes audit Transactions without touching the balance.
    """

    @staticmethod
    @transaction.atomic
    def register(
        username: str,
        password: str,
        email: str = "",
        role: str = User.Role.BUYER,
        referral_code: str = None,
        **profile,
    ):
        """
        Create a user, applying the referral cascade when the code resolves.

        An unknown referral code is ignored and the user is created without
        a referrer.
        """
        referrer = None
        if referral_code:
            referrer = (
                User.objects.select_for_update()
                .filter(referral_code=referral_code.strip().upper())
                .first()
            )
            if referrer is None:
                logger.info("Unknown referral code ignored: code=%s", referral_code)

        new_user_bonus = money_setting("NEW_USER_REFERRAL_BONUS") if referrer else 0

        user = User.objects.create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            referred_by=referrer,
            referral_rewards=new_user_bonus,
            **profile,
        )

        if referrer is not None:
            referrer_bonus = money_setting("REFERRER_BONUS")
            User.objects.filter(pk=referrer.pk).update(
                referral_rewards=F("referral_rewards") + referrer_bonus
            )
            WalletService.record(
                referrer.pk,
                referrer_bonus,
                Transaction.TransactionType.REFERRAL_COMMISSION,
                description=f"Referral reward for inviting {username}",
                reference_id=str(user.pk),
            )
            WalletService.record(
                user.pk,
                new_user_bonus,
                Transaction.TransactionType.DEPOSIT,
                description="Initial referral welcome bonus",
                reference_id=str(referrer.pk),
            )
            logger.info(
                "Referral applied: referrer=%s new_user=%s referrer_bonus=%s new_user_bonus=%s",
                referrer.pk,
                user.pk,
                referrer_bonus,
                new_user_bonus,
            )

        return user

    @staticmethod
    @transaction.atomic
    def convert_rewards(user_id) -> Decimal:
        """
        Move all pending reward points into the wallet.

        Returns:
            The new wallet balance.

        Raises:
            NoRewardsAvailable: If the user has no positive rewards.
        """
        user = User.objects.select_for_update().get(pk=user_id)
        rewards = user.referral_rewards or Decimal("0")
        if rewards <= 0:
            raise NoRewardsAvailable()

        User.objects.filter(pk=user.pk).update(referral_rewards=0)
        tx = WalletService.apply_ledger_effect(
            user.pk,
            rewards,
            Transaction.TransactionType.DEPOSIT,
            description=f"Converted {rewards} referral points to wallet cash",
        )

        balance = WalletService.get_balance(user.pk)
        logger.info(
            "Rewards converted: user=%s amount=%s new_balance=%s tx=%d",
            user.pk,
            rewards,
            balance,
            tx.id,
        )
        return balance

    @staticmethod
    def referral_stats(user) -> dict:
        referred = User.objects.filter(referred_by=user).order_by("-date_joined")
        return {
            "count": referred.count(),
            "rewards": user.referral_rewards,
            "referralCode": user.referral_code,
            "history": [
                {
                    "id": referred_user.pk,
                    "username": referred_user.username,
                    "email": referred_user.email,
                    "date_joined": referred_user.date_joined,
                }
                for referred_user in referred
            ],
        }
