"""
Referral Service - referral codes, signup linkage and conversion bookkeeping
"""
import logging
import secrets
import string
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from crud.profile import ProfileRepository
from crud.referral import ReferralRepository
from database_models import Profile, ReferralCode
from services.plan_service import utcnow

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 5


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def referral_url(code: str) -> str:
    base = (settings.app_base_url or "").rstrip("/")
    return f"{base}/auth?ref={code}"


class ReferralService:
    """Service class for the referral program."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.referral_repo = ReferralRepository(db)
        self.profile_repo = ProfileRepository(db)

    async def create_or_get_code(self, profile: Profile):
        """
        Reuse the profile's active referral code or issue a new one.

        Returns:
            Normalized response: {"data": {"code", "url"}, "is_error": False}
            or {"error": code, "message": str, "is_error": True}
        """
        row = await self.referral_repo.get_active_code_for_owner(profile.id)

        if row is None:
            code = None
            for _ in range(MAX_CODE_ATTEMPTS):
                candidate = generate_code()
                if not await self.referral_repo.code_exists(candidate):
                    code = candidate
                    break

            if code is None:
                logger.error(f"Could not generate a unique referral code for user {profile.id}")
                return {
                    "error": "code_generate_failed",
                    "message": "Could not generate a referral code. Please try again later.",
                    "is_error": True,
                }

            row = await self.referral_repo.create_code(profile.id, code)
            logger.info(f"Issued referral code {code} to user {profile.id}")

        if profile.referral_code != row.code:
            try:
                await self.profile_repo.update(profile, {"referral_code": row.code})
            except Exception as e:
                logger.warning(f"Failed to store referral code on profile {profile.id}: {e}")

        return {
            "data": {"code": row.code, "url": referral_url(row.code)},
            "is_error": False,
        }

    async def resolve_code(self, code: Optional[str]) -> Optional[ReferralCode]:
        """Active referral code row for a code typed at signup, if any."""
        if not code:
            return None
        row = await self.referral_repo.get_code(code.strip().upper())
        if row is None or not row.is_active:
            return None
        return row

    async def record_conversion(
        self,
        profile: Profile,
        plan_tier: str,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Mark the profile's referral as converted. Only the first conversion
        counts; later subscribes leave the row untouched.
        """
        referrer_id = profile.referred_by_user_id
        if not referrer_id:
            return

        now = now or utcnow()
        existing = await self.referral_repo.get_referral(referrer_id, profile.id)

        if existing is None:
            await self.referral_repo.create_referral({
                "referrer_user_id": referrer_id,
                "referred_user_id": profile.id,
                "referral_code": profile.referred_by_code or "unknown",
                "converted_at": now,
                "initial_plan_tier": plan_tier,
            })
            logger.info(f"Referral conversion recorded: {referrer_id} -> {profile.id}")
        elif existing.converted_at is None:
            await self.referral_repo.update_referral(existing, {
                "converted_at": now,
                "initial_plan_tier": plan_tier,
            })
            logger.info(f"Referral conversion recorded: {referrer_id} -> {profile.id}")
