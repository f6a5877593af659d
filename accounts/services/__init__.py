from accounts.services.referral import ReferralService

__all__ = ["ReferralService"]
