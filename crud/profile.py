"""
ProfileRepository for database operations on the Profile model
"""

from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import TRIAL_ACCOUNT_ID
from database_models import Profile, AccountIdSequence, UserSetting


class ProfileRepository:
    """
    Repository class for Profile database operations.
    Soft-deleted profiles are invisible to every lookup.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_email(self, email: str) -> Optional[Profile]:
        """
        Retrieve a live profile by email address.

        Args:
            email: Email address (case-insensitive search)

        Returns:
            Profile if found, None otherwise
        """
        result = await self.db.execute(
            select(Profile).where(
                Profile.email == email.strip().lower(),
                Profile.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: str) -> Optional[Profile]:
        result = await self.db.execute(
            select(Profile).where(
                Profile.id == user_id,
                Profile.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def create(self, profile_data: dict) -> Profile:
        """
        Create a new profile.

        Args:
            profile_data: Must include email and hashed_password. Optional keys
                are any other Profile column (trial_type, plan_status,
                referred_by_code, referred_by_user_id, ...).

        Returns:
            Created Profile object
        """
        data = dict(profile_data)
        data["email"] = data["email"].strip().lower()
        profile = Profile(**data)
        self.db.add(profile)
        await self.db.flush()
        await self.db.refresh(profile)
        return profile

    async def update(self, profile: Profile, updates: dict) -> Profile:
        """
        Update profile fields.

        Args:
            profile: Profile to update
            updates: Column name to new value

        Returns:
            Updated Profile object
        """
        for key, value in updates.items():
            if hasattr(profile, key):
                setattr(profile, key, value)

        await self.db.flush()
        await self.db.refresh(profile)
        return profile

    async def soft_delete(self, profile: Profile) -> Profile:
        return await self.update(profile, {"deleted_at": datetime.now(timezone.utc)})

    async def list_all(self) -> List[Profile]:
        result = await self.db.execute(
            select(Profile).order_by(Profile.registered_at.asc())
        )
        return list(result.scalars().all())

    async def count_active(self) -> int:
        result = await self.db.execute(
            select(func.count(Profile.id)).where(Profile.deleted_at.is_(None))
        )
        return int(result.scalar_one())

    async def next_account_id(self) -> str:
        """Mint the next zero-padded 5-digit account code."""
        row = AccountIdSequence()
        self.db.add(row)
        await self.db.flush()
        return str(row.id).zfill(5)

    async def ensure_account_id(self, profile: Profile) -> str:
        """
        Give the profile a real account code if it still carries the shared
        trial placeholder, and return it.
        """
        if profile.account_id and profile.account_id != TRIAL_ACCOUNT_ID:
            return profile.account_id

        account_id = await self.next_account_id()
        await self.update(profile, {"account_id": account_id})
        return account_id

    async def get_system_prompt(self, user_id: str) -> Optional[str]:
        setting = await self.db.get(UserSetting, user_id)
        return setting.system_prompt if setting else None

    async def set_system_prompt(self, user_id: str, system_prompt: Optional[str]) -> UserSetting:
        setting = await self.db.get(UserSetting, user_id)
        if setting is None:
            setting = UserSetting(user_id=user_id, system_prompt=system_prompt)
            self.db.add(setting)
        else:
            setting.system_prompt = system_prompt
        await self.db.flush()
        return setting
