import logging

from celery import shared_task
from django.conf import settings

from wallets.services import RechargeService

logger = logging.getLogger(__name__)

RECHARGE_EXPIRY_MINUTES = getattr(settings, "RECHARGE_EXPIRY_MINUTES", 60)


@shared_task
def expire_stale_recharges(max_age_minutes: int = None):
    """
    Periodic task: Fail recharges whose gateway payment never came back.

    A PENDING deposit older than RECHARGE_EXPIRY_MINUTES moves to FAILED,
    after which a late verification is rejected like any processed row.
    Runs via Celery Beat on a configurable interval.
    """
    max_age = max_age_minutes or RECHARGE_EXPIRY_MINUTES
    expired = RechargeService.expire_stale(max_age_minutes=max_age)

    if expired:
        logger.info("Expired %d stale pending recharge(s).", expired)

    return {"expired": expired}
