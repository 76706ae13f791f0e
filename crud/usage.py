"""
UsageRepository: append-only usage log writes and range queries
"""

from datetime import datetime
from typing import Optional, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from database_models import UsageLog


class UsageRepository:
    """Usage events are never updated; quotas are counted by range query."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_event(
        self,
        user_id: str,
        feature: str,
        model: Optional[str] = None,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
        total_tokens: int = 0,
        cost: Optional[float] = None,
        created_at: Optional[datetime] = None,
    ) -> UsageLog:
        log = UsageLog(
            user_id=user_id,
            type=feature,
            model=model,
            prompt_tokens=prompt_tokens or 0,
            completion_tokens=completion_tokens or 0,
            total_tokens=total_tokens or 0,
            cost=cost,
        )
        if created_at is not None:
            log.created_at = created_at
        self.db.add(log)
        await self.db.flush()
        return log

    async def count_in_range(
        self,
        user_id: str,
        feature: str,
        start: datetime,
        end: datetime,
        end_inclusive: bool = False,
    ) -> int:
        """Count a user's events of one type with start <= created_at < end."""
        upper = UsageLog.created_at <= end if end_inclusive else UsageLog.created_at < end
        result = await self.db.execute(
            select(func.count(UsageLog.id)).where(
                UsageLog.user_id == user_id,
                UsageLog.type == feature,
                UsageLog.created_at >= start,
                upper,
            )
        )
        return int(result.scalar_one())

    async def list_in_range(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[UsageLog]:
        query = select(UsageLog)
        if start is not None:
            query = query.where(UsageLog.created_at >= start)
        if end is not None:
            query = query.where(UsageLog.created_at < end)
        result = await self.db.execute(query.order_by(UsageLog.created_at.asc()))
        return list(result.scalars().all())

    async def list_recent(self, limit: int = 50) -> List[UsageLog]:
        """Newest events first."""
        result = await self.db.execute(
            select(UsageLog).order_by(UsageLog.created_at.desc(), UsageLog.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def count_all(self) -> int:
        result = await self.db.execute(select(func.count(UsageLog.id)))
        return int(result.scalar_one())
