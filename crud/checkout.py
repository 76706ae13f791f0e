"""
CheckoutSessionRepository: ledger of applied Stripe checkout sessions
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database_models import CheckoutSession


class CheckoutSessionRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, session_id: str) -> Optional[CheckoutSession]:
        result = await self.db.execute(
            select(CheckoutSession).where(CheckoutSession.session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def claim(self, session_id: str, user_id: str, plan_tier: str, applied_at: datetime) -> bool:
        """
        Record the session as applied. Returns False when the session id is
        already in the ledger, including when a concurrent request won the insert.
        """
        if await self.get(session_id) is not None:
            return False
        try:
            async with self.db.begin_nested():
                self.db.add(CheckoutSession(
                    session_id=session_id,
                    user_id=user_id,
                    plan_tier=plan_tier,
                    applied_at=applied_at,
                ))
        except IntegrityError:
            return False
        return True
