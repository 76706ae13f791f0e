"""
Plan Router - plan state and direct plan changes
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user_id, profile_to_dict
from backend.utils.responses import success_response, error_response, service_error_response
from config.settings import FEATURE_VIDEO
from crud.profile import ProfileRepository
from crud.usage import UsageRepository
from database import get_db
from services.plan_service import (
    get_plan_state,
    check_feature_access,
    video_usage_window,
    utcnow,
    TRIAL,
)
from services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

plan_router = APIRouter(prefix="/api/plan", tags=["plan"])


class SubscribeRequest(BaseModel):
    plan_tier: Optional[str] = None


async def _load_profile(user_id: Optional[str], db: AsyncSession):
    if not user_id:
        return None, error_response("not_logged_in", status=401, message="Please log in.")
    profile = await ProfileRepository(db).get_by_id(user_id)
    if profile is None:
        return None, error_response("profile_not_found", status=404, message="Profile not found.")
    return profile, None


def _mutation_response(result: dict, message: str):
    if result.get("is_error"):
        return service_error_response(result, status=400)
    profile = result["data"]
    return success_response(
        data={
            "user": profile_to_dict(profile),
            "plan": get_plan_state(profile).to_dict(),
        },
        message=message,
    )


@plan_router.get("/state")
async def plan_state(
    user_id: Optional[str] = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Current plan state with the video allowance"""
    profile, error = await _load_profile(user_id, db)
    if error:
        return error

    now = utcnow()
    plan = get_plan_state(profile, now)
    window = video_usage_window(profile, plan, now)

    used = 0
    if window is not None:
        start, end = window
        used = await UsageRepository(db).count_in_range(
            profile.id, FEATURE_VIDEO, start, end, end_inclusive=plan.kind == TRIAL
        )

    access = check_feature_access(plan, {FEATURE_VIDEO: used}, FEATURE_VIDEO)
    valid_until = profile.plan_valid_until

    return success_response(data={
        "plan": plan.to_dict(),
        "plan_valid_until": valid_until.isoformat() if valid_until else None,
        "is_canceled": bool(profile.is_canceled),
        "video": {
            "allowed": access.ok,
            "reason": access.reason,
            "used": used,
            "remaining": access.remaining,
            "limit": access.limit,
        },
    })


@plan_router.post("/subscribe")
async def subscribe(
    request: SubscribeRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    profile, error = await _load_profile(user_id, db)
    if error:
        return error
    result = await SubscriptionService(db).subscribe(profile, request.plan_tier)
    return _mutation_response(result, "Subscribed")


@plan_router.post("/upgrade")
async def upgrade(
    user_id: Optional[str] = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    profile, error = await _load_profile(user_id, db)
    if error:
        return error
    result = await SubscriptionService(db).upgrade(profile)
    return _mutation_response(result, "Upgraded to Pro")


@plan_router.post("/downgrade")
async def downgrade(
    user_id: Optional[str] = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    profile, error = await _load_profile(user_id, db)
    if error:
        return error
    result = await SubscriptionService(db).downgrade(profile)
    return _mutation_response(result, "Downgraded to Starter")


@plan_router.post("/cancel")
async def cancel(
    user_id: Optional[str] = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    profile, error = await _load_profile(user_id, db)
    if error:
        return error
    result = await SubscriptionService(db).cancel(profile)
    return _mutation_response(result, "Subscription cancelled")
