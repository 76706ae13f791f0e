"""
Referral Router - the caller's own referral code and link
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_profile
from backend.utils.responses import success_response, service_error_response
from database import get_db
from database_models import Profile
from services.referral_service import ReferralService

logger = logging.getLogger(__name__)

referral_router = APIRouter(prefix="/api/referral", tags=["referral"])


@referral_router.post("/create-or-get")
async def create_or_get_referral_code(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    result = await ReferralService(db).create_or_get_code(profile)
    if result.get("is_error"):
        return service_error_response(result, status=500, default_code="code_generate_failed")
    return success_response(result["data"])
