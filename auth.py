"""
Authentication routes and dependencies
"""

import logging
import re
from typing import Optional

from fastapi import APIRouter, HTTPException, Header, Depends, Cookie
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth_utils import (
    hash_password,
    verify_password,
    create_jwt,
    token_user_id,
    extract_token,
    AUTH_COOKIE_NAME,
    TOKEN_MAX_AGE_SECONDS,
)
from backend.utils.responses import success_response
from config.settings import (
    TRIAL_NORMAL,
    TRIAL_REFERRAL,
    PLAN_STATUS_TRIAL,
    TRIAL_ACCOUNT_ID,
)
from crud.profile import ProfileRepository
from database import get_db
from database_models import Profile
from services import mail_service
from services.plan_service import (
    get_plan_state,
    check_plan_guard,
    trial_ends_at,
    utcnow,
    REASON_NOT_LOGGED_IN,
    REASON_PROFILE_NOT_FOUND,
)
from services.referral_service import ReferralService
from utils.security_utils import validate_password_strength

logger = logging.getLogger(__name__)

# Create auth router
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])

GUARD_STATUS = {
    REASON_NOT_LOGGED_IN: 401,
    REASON_PROFILE_NOT_FOUND: 401,
}

GUARD_MESSAGES = {
    REASON_NOT_LOGGED_IN: "Please log in.",
    REASON_PROFILE_NOT_FOUND: "Your profile could not be found. Please log in again.",
    "trial_expired": "Your free trial or subscription has ended. Choose a plan to keep using the service.",
}


# Request models
class SignupRequest(BaseModel):
    email: str
    password: str
    referral_code: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str
    account_id: str


def validate_email(email: str) -> bool:
    """Validate email format"""
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return re.match(pattern, email) is not None


def auth_error(status_code: int, error: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": error, "message": message})


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def profile_to_dict(profile: Profile) -> dict:
    """Public view of a profile, without the password hash."""
    return {
        "user_id": profile.id,
        "email": profile.email,
        "account_id": profile.account_id,
        "is_master": bool(profile.is_master),
        "trial_type": profile.trial_type,
        "registered_at": _iso(profile.registered_at),
        "plan_status": profile.plan_status,
        "plan_tier": profile.plan_tier,
        "plan_started_at": _iso(profile.plan_started_at),
        "plan_valid_until": _iso(profile.plan_valid_until),
        "is_canceled": bool(profile.is_canceled),
        "referral_code": profile.referral_code,
        "referred_by_code": profile.referred_by_code,
    }


def _with_auth_cookie(response, token: str):
    # JWT expiration is 7 days
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=True,
        samesite="Lax",
        max_age=TOKEN_MAX_AGE_SECONDS,
    )
    return response


def _clear_auth_cookie(response):
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value="",
        httponly=True,
        secure=True,
        samesite="Lax",
        max_age=0,
    )
    return response


# Dependencies for protected routes
async def get_current_user_id(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Optional[str]:
    """
    User id from the session token, or None when there is no valid token.

    Authentication priority:
    1. auth_token cookie (httpOnly cookie set by login/signup)
    2. Authorization header (Bearer token) for API consumers
    """
    return token_user_id(extract_token(auth_token, authorization))


async def get_current_profile(
    user_id: Optional[str] = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Authenticated, not soft-deleted profile. Raises 401 otherwise."""
    if not user_id:
        raise auth_error(401, REASON_NOT_LOGGED_IN, GUARD_MESSAGES[REASON_NOT_LOGGED_IN])

    profile = await ProfileRepository(db).get_by_id(user_id)
    if profile is None:
        raise auth_error(401, REASON_PROFILE_NOT_FOUND, GUARD_MESSAGES[REASON_PROFILE_NOT_FOUND])

    return profile


async def get_current_user(profile: Profile = Depends(get_current_profile)) -> dict:
    """Current user as a plain dict, for routes that only need identity."""
    return {
        "user_id": profile.id,
        "email": profile.email,
        "account_id": profile.account_id,
        "is_master": bool(profile.is_master),
    }


async def require_active_plan(
    user_id: Optional[str] = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """
    Plan guard for the AI features: the user must be logged in and either
    inside the trial or on a paid plan that has not run out.
    """
    profile = await ProfileRepository(db).get_by_id(user_id) if user_id else None
    guard = check_plan_guard(user_id, profile)

    if not guard.allowed:
        logger.info(f"Plan guard rejected user {user_id}: {guard.reason}")
        raise auth_error(
            GUARD_STATUS.get(guard.reason, 403),
            guard.reason,
            GUARD_MESSAGES.get(guard.reason, "Access denied."),
        )

    return profile


async def require_admin(profile: Profile = Depends(get_current_profile)) -> Profile:
    if not profile.is_master:
        raise auth_error(403, "admin_only", "Administrator access is required.")
    return profile


@auth_router.post("/signup")
async def signup(request: SignupRequest, db: AsyncSession = Depends(get_db)):
    """Create a new trial account"""
    email = request.email.strip().lower()

    if not validate_email(email):
        raise auth_error(400, "invalid_email", "Invalid email format")

    try:
        validate_password_strength(request.password)
    except ValueError as e:
        raise auth_error(400, "weak_password", str(e))

    profile_repo = ProfileRepository(db)
    if await profile_repo.get_by_email(email):
        raise auth_error(400, "email_taken", "Email already registered")

    referral_service = ReferralService(db)
    referral = await referral_service.resolve_code(request.referral_code)
    if request.referral_code and referral is None:
        logger.info(f"Unknown referral code at signup: {request.referral_code}")

    profile = await profile_repo.create({
        "email": email,
        "hashed_password": hash_password(request.password),
        "account_id": TRIAL_ACCOUNT_ID,
        "trial_type": TRIAL_REFERRAL if referral else TRIAL_NORMAL,
        "registered_at": utcnow(),
        "plan_status": PLAN_STATUS_TRIAL,
        "referred_by_code": referral.code if referral else None,
        "referred_by_user_id": referral.owner_user_id if referral else None,
    })
    logger.info(f"New signup {profile.id} ({profile.trial_type} trial)")

    own_code = await referral_service.create_or_get_code(profile)
    referral_code = None if own_code.get("is_error") else own_code["data"]["code"]

    try:
        await mail_service.send_welcome_email(
            profile.email,
            profile.account_id,
            profile.trial_type,
            referral_code,
        )
    except Exception as e:
        logger.warning(f"Failed to send welcome email to {profile.email}: {e}")

    token = create_jwt(profile.id)
    response = success_response(
        data={
            "token": token,
            "user": profile_to_dict(profile),
            "plan": get_plan_state(profile).to_dict(),
        },
        message="Signed up",
    )
    return _with_auth_cookie(response, token)


@auth_router.post("/login")
async def login(request: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Login with email, password and account id"""
    profile = await ProfileRepository(db).get_by_email(request.email)

    if profile is None or not verify_password(request.password, profile.hashed_password):
        raise auth_error(401, "invalid_credentials", "Invalid email, password or account ID")

    if (request.account_id or "").strip() != profile.account_id:
        raise auth_error(401, "invalid_credentials", "Invalid email, password or account ID")

    token = create_jwt(profile.id)
    response = success_response(
        data={
            "token": token,
            "user": profile_to_dict(profile),
            "plan": get_plan_state(profile).to_dict(),
        },
        message="Logged in",
    )
    return _with_auth_cookie(response, token)


@auth_router.get("/me")
async def get_current_user_info(profile: Profile = Depends(get_current_profile)):
    """Current profile with its computed plan state"""
    ends_at = trial_ends_at(profile)
    return success_response(data={
        "user": profile_to_dict(profile),
        "plan": get_plan_state(profile).to_dict(),
        "trial_ends_at": _iso(ends_at),
    })


@auth_router.post("/logout")
async def logout():
    """Logout and clear auth token cookie"""
    return _clear_auth_cookie(success_response(message="Logged out successfully"))


@auth_router.delete("/me")
async def delete_account(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Soft-delete the current account"""
    await ProfileRepository(db).soft_delete(profile)
    logger.info(f"User {profile.id} deleted their account")
    return _clear_auth_cookie(success_response(message="Account deleted"))
