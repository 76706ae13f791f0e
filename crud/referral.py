"""
ReferralRepository for referral codes and referral conversions
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database_models import ReferralCode, Referral


class ReferralRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_code_for_owner(self, owner_user_id: str) -> Optional[ReferralCode]:
        result = await self.db.execute(
            select(ReferralCode)
            .where(
                ReferralCode.owner_user_id == owner_user_id,
                ReferralCode.is_active.is_(True),
            )
            .order_by(ReferralCode.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_code(self, code: str) -> Optional[ReferralCode]:
        result = await self.db.execute(
            select(ReferralCode).where(ReferralCode.code == code)
        )
        return result.scalar_one_or_none()

    async def code_exists(self, code: str) -> bool:
        return await self.get_code(code) is not None

    async def create_code(self, owner_user_id: str, code: str) -> ReferralCode:
        row = ReferralCode(owner_user_id=owner_user_id, code=code, is_active=True)
        self.db.add(row)
        await self.db.flush()
        await self.db.refresh(row)
        return row

    async def get_referral(self, referrer_user_id: str, referred_user_id: str) -> Optional[Referral]:
        result = await self.db.execute(
            select(Referral).where(
                Referral.referrer_user_id == referrer_user_id,
                Referral.referred_user_id == referred_user_id,
            )
        )
        return result.scalar_one_or_none()

    async def create_referral(self, data: dict) -> Referral:
        row = Referral(**data)
        self.db.add(row)
        await self.db.flush()
        await self.db.refresh(row)
        return row

    async def update_referral(self, referral: Referral, updates: dict) -> Referral:
        for key, value in updates.items():
            if hasattr(referral, key):
                setattr(referral, key, value)
        await self.db.flush()
        return referral
