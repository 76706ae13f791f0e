"""
Subscription Service - plan mutations over Profile.plan_status x plan_tier

    trial/none --subscribe(tier)--> paid+tier
    paid+starter --upgrade--> paid+pro
    paid+pro --downgrade--> paid+starter
    paid --cancel--> paid (is_canceled, access until plan_valid_until)

A rejected transition leaves the row untouched.
"""
import calendar
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import (
    PLAN_STATUS_PAID,
    PLAN_STARTER,
    PLAN_PRO,
    PAID_TIERS,
    PAID_PLAN_VALID_MONTHS,
)
from crud.checkout import CheckoutSessionRepository
from crud.profile import ProfileRepository
from database_models import Profile
from services.plan_service import to_utc, utcnow
from services.referral_service import ReferralService

logger = logging.getLogger(__name__)


def add_months(value: datetime, months: int) -> datetime:
    """Same day-of-month `months` later, clamped to the end of shorter months."""
    index = value.month - 1 + months
    year = value.year + index // 12
    month = index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def build_paid_plan_update(
    tier: str,
    now: Optional[datetime] = None,
    valid_months: int = PAID_PLAN_VALID_MONTHS,
) -> dict:
    """Profile fields for a paid plan that starts now."""
    now = to_utc(now) or utcnow()
    return {
        "plan_status": PLAN_STATUS_PAID,
        "plan_tier": tier,
        "plan_started_at": now,
        "plan_valid_until": add_months(now, valid_months) if valid_months > 0 else None,
        "is_canceled": False,
    }


def _rejected(error: str, message: str) -> dict:
    return {"error": error, "message": message, "is_error": True}


class SubscriptionService:
    """
    Service class for plan changes. Every method returns the normalized
    response shape {"data": profile, "is_error": False} or a rejection
    {"error": reason, "message": str, "is_error": True}.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.profile_repo = ProfileRepository(db)
        self.checkout_repo = CheckoutSessionRepository(db)
        self.referral_service = ReferralService(db)

    async def subscribe(self, profile: Profile, tier: Optional[str], now: Optional[datetime] = None):
        if tier not in PAID_TIERS:
            return _rejected("invalid_plan_tier", "plan_tier must be 'starter' or 'pro'.")

        if profile.plan_status == PLAN_STATUS_PAID:
            return _rejected("already_paid", "This account already has a paid plan.")

        now = to_utc(now) or utcnow()
        updated = await self.profile_repo.update(profile, build_paid_plan_update(tier, now))
        logger.info(f"User {profile.id} subscribed to {tier}")

        await self.referral_service.record_conversion(updated, tier, now)
        return {"data": updated, "is_error": False}

    async def upgrade(self, profile: Profile):
        if profile.plan_status != PLAN_STATUS_PAID or profile.plan_tier != PLAN_STARTER:
            return _rejected("upgrade_not_allowed", "Only Starter subscribers can upgrade.")

        updated = await self.profile_repo.update(profile, {"plan_tier": PLAN_PRO})
        logger.info(f"User {profile.id} upgraded to pro")
        return {"data": updated, "is_error": False}

    async def downgrade(self, profile: Profile):
        if profile.plan_status != PLAN_STATUS_PAID or profile.plan_tier != PLAN_PRO:
            return _rejected("downgrade_not_allowed", "Only Pro subscribers can downgrade.")

        # Takes effect immediately.
        updated = await self.profile_repo.update(profile, {"plan_tier": PLAN_STARTER})
        logger.info(f"User {profile.id} downgraded to starter")
        return {"data": updated, "is_error": False}

    async def cancel(self, profile: Profile):
        if profile.plan_status != PLAN_STATUS_PAID:
            return _rejected("cancel_not_allowed", "Only paid subscribers can cancel.")

        updated = await self.profile_repo.update(profile, {"is_canceled": True})
        logger.info(f"User {profile.id} cancelled; access runs until {profile.plan_valid_until}")
        return {"data": updated, "is_error": False}

    async def apply_checkout(
        self,
        profile: Profile,
        tier: str,
        session_id: str,
        now: Optional[datetime] = None,
    ):
        """
        Activate the plan bought in a confirmed checkout session. A session id
        that was ever applied before, even with other sessions confirmed since,
        returns the profile unchanged with already_applied set.
        """
        if tier not in PAID_TIERS:
            return _rejected("invalid_plan_tier", "plan_tier must be 'starter' or 'pro'.")
        if not session_id:
            return _rejected("missing_session_id", "session_id is required.")

        now = to_utc(now) or utcnow()
        if not await self.checkout_repo.claim(session_id, profile.id, tier, now):
            logger.info(f"Checkout session {session_id} already applied; user {profile.id} left unchanged")
            return {"data": profile, "already_applied": True, "is_error": False}

        updates = build_paid_plan_update(tier, now)
        updates["last_checkout_session_id"] = session_id
        updated = await self.profile_repo.update(profile, updates)
        logger.info(f"Checkout {session_id} activated {tier} for user {profile.id}")

        await self.referral_service.record_conversion(updated, tier, now)
        return {"data": updated, "is_error": False}
