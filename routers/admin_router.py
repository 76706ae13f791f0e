"""
Admin Router - usage and cost dashboard for master accounts
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_admin
from backend.utils.responses import success_response, error_response
from crud.profile import ProfileRepository
from crud.usage import UsageRepository
from database import get_db
from database_models import Profile
from services.plan_service import get_plan_state, utcnow
from services.usage_service import (
    build_usage_report,
    count_by_type,
    calc_cost_by_type,
    month_key,
    month_range,
    shift_month,
    normalize_usage_events,
    rank_users_by_cost,
)

logger = logging.getLogger(__name__)

admin_router = APIRouter(prefix="/api/admin", tags=["admin"])

MONTHS_SHOWN = 24
TOP_USERS = 10
RECENT_LOGS = 50


def _log_to_dict(log, profiles: dict) -> dict:
    profile = profiles.get(log.user_id)
    return {
        "id": log.id,
        "user_id": log.user_id,
        "email": profile.email if profile else None,
        "type": log.type,
        "model": log.model,
        "total_tokens": log.total_tokens,
        "cost": log.cost,
        "created_at": log.created_at.isoformat() if log.created_at else None,
    }


async def _current_month_events(db: AsyncSession, now):
    current = month_key(now)
    start, end = month_range(current)
    return current, normalize_usage_events(await UsageRepository(db).list_in_range(start, end))


@admin_router.get("/stats")
async def admin_stats(
    month: Optional[str] = Query(None, description="Target month as YYYY-MM"),
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Dashboard numbers: user and request totals, the last 24 monthly buckets,
    the target month's summary and top users, and the latest usage logs.
    """
    target_range = None
    if month:
        try:
            target_range = month_range(month)
        except ValueError:
            return error_response("invalid_month", message="month must be in YYYY-MM format.")

    now = utcnow()
    profile_repo = ProfileRepository(db)
    usage_repo = UsageRepository(db)

    profiles = {p.id: p for p in await profile_repo.list_all()}
    first_month = shift_month(month_key(now), -(MONTHS_SHOWN - 1))
    window_start, _ = month_range(first_month)
    events = await usage_repo.list_in_range(start=window_start)

    older_target = target_range is not None and target_range[0] < window_start
    if older_target:
        events = await usage_repo.list_in_range(*target_range) + events

    report = build_usage_report(events, target_month=month, now=now, top_n=TOP_USERS, profiles=profiles)
    if older_target:
        report["monthly"] = [bucket for bucket in report["monthly"] if bucket["month"] >= first_month]
    recent = await usage_repo.list_recent(RECENT_LOGS)

    logger.info(f"Admin {admin.id} viewed stats for {report['summary']['month']}")
    return success_response(data={
        "total_users": await profile_repo.count_active(),
        "total_requests": await usage_repo.count_all(),
        "monthly_usage": report["monthly"],
        "summary": report["summary"],
        "top_users": report["top_users"],
        "recent_logs": [_log_to_dict(log, profiles) for log in recent],
    })


@admin_router.get("/usage-summary")
async def admin_usage_summary(
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Per-user counts and cost for the current month"""
    now = utcnow()
    current, events = await _current_month_events(db, now)
    profiles = {p.id: p for p in await ProfileRepository(db).list_all()}

    users = rank_users_by_cost(events, top_n=len(profiles) or 1, profiles=profiles)
    counts = count_by_type(events)

    return success_response(data={
        "month": current,
        "counts": counts,
        "costs": calc_cost_by_type(counts),
        "users": users,
    })


@admin_router.get("/users")
async def admin_users(
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Every profile with its plan and current-month usage"""
    now = utcnow()
    current, events = await _current_month_events(db, now)

    per_user = {}
    for event in events:
        per_user.setdefault(event.user_id, []).append(event)

    rows = []
    for profile in await ProfileRepository(db).list_all():
        counts = count_by_type(per_user.get(profile.id, []))
        rows.append({
            "user_id": profile.id,
            "email": profile.email,
            "account_id": profile.account_id,
            "registered_at": profile.registered_at.isoformat() if profile.registered_at else None,
            "plan": get_plan_state(profile, now).to_dict(),
            "plan_valid_until": profile.plan_valid_until.isoformat() if profile.plan_valid_until else None,
            "is_canceled": bool(profile.is_canceled),
            "deleted_at": profile.deleted_at.isoformat() if profile.deleted_at else None,
            "counts": counts,
            "total_cost": calc_cost_by_type(counts)["total"],
        })

    return success_response(data={"month": current, "users": rows})
