"""
Plan Service - trial/plan state, feature access gate and plan guard.

Everything here is a pure function of profile fields and the current time.
Plan state is recomputed on every read and never stored.
"""
import math
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Tuple

from config.settings import (
    TRIAL_DAYS,
    TRIAL_VIDEO_LIMIT,
    PRO_VIDEO_LIMIT,
    PLAN_STATUS_PAID,
    PLAN_STARTER,
    PLAN_PRO,
    PAID_TIERS,
    FEATURE_VIDEO,
)

# Plan kinds
NO_PLAN = "no_plan"
TRIAL = "trial"
TRIAL_EXPIRED = "trial_expired"
STARTER = PLAN_STARTER
PRO = PLAN_PRO

# Guard reasons
REASON_NOT_LOGGED_IN = "not_logged_in"
REASON_PROFILE_NOT_FOUND = "profile_not_found"
REASON_TRIAL_EXPIRED = "trial_expired"

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class PlanState:
    kind: str
    trial_remaining_days: Optional[int]
    trial_total_days: Optional[int]
    trial_days_ago: Optional[int]
    is_paid: bool
    plan_tier: Optional[str]
    label: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class FeatureAccess:
    ok: bool
    reason: Optional[str] = None
    remaining: Optional[int] = None
    limit: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PlanGuardResult:
    allowed: bool
    reason: Optional[str]
    plan: Optional[PlanState] = None
    days_left: int = 0


def _field(profile: Any, name: str) -> Any:
    """Read a field from an ORM row, a dict, or any attribute bag."""
    if profile is None:
        return None
    if isinstance(profile, Mapping):
        return profile.get(name)
    return getattr(profile, name, None)


def to_utc(value: Any) -> Optional[datetime]:
    """
    Coerce a datetime or ISO-8601 string to an aware UTC datetime.
    Naive values are taken as UTC. Returns None for anything unparsable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_trial_days(trial_type: Optional[str]) -> int:
    """Trial length in days for a trial type; 0 means no trial."""
    return TRIAL_DAYS.get(trial_type or "", 0)


def _no_plan(label: str) -> PlanState:
    return PlanState(
        kind=NO_PLAN,
        trial_remaining_days=None,
        trial_total_days=None,
        trial_days_ago=None,
        is_paid=False,
        plan_tier=None,
        label=label,
    )


def get_plan_state(profile: Any, now: Optional[datetime] = None) -> PlanState:
    """
    Compute the current plan state of a profile.

    A paid tier always wins over the trial clock. Otherwise the trial runs
    for TRIAL_DAYS[trial_type] whole days from registered_at; once the
    remaining day count reaches zero the trial is expired.

    Args:
        profile: Profile row or mapping with registered_at, trial_type,
            plan_status and plan_tier
        now: Reference time, defaults to the current UTC time

    Returns:
        PlanState
    """
    if profile is None:
        return _no_plan("Not registered")

    plan_tier = _field(profile, "plan_tier")
    if _field(profile, "plan_status") == PLAN_STATUS_PAID and plan_tier in PAID_TIERS:
        tier_label = "Starter" if plan_tier == PLAN_STARTER else "Pro"
        return PlanState(
            kind=plan_tier,
            trial_remaining_days=None,
            trial_total_days=None,
            trial_days_ago=None,
            is_paid=True,
            plan_tier=plan_tier,
            label=f"{tier_label} plan",
        )

    registered_at = to_utc(_field(profile, "registered_at"))
    if registered_at is None:
        return _no_plan("No plan")

    trial_days = get_trial_days(_field(profile, "trial_type"))
    if trial_days <= 0:
        return _no_plan("No plan")

    now = to_utc(now) or utcnow()
    elapsed_days = math.floor((now - registered_at).total_seconds() / SECONDS_PER_DAY)
    remaining = trial_days - elapsed_days

    if remaining > 0:
        return PlanState(
            kind=TRIAL,
            trial_remaining_days=remaining,
            trial_total_days=trial_days,
            trial_days_ago=None,
            is_paid=False,
            plan_tier=None,
            label=f"Free trial ({remaining} days left)",
        )

    days_ago = -remaining
    return PlanState(
        kind=TRIAL_EXPIRED,
        trial_remaining_days=0,
        trial_total_days=trial_days,
        trial_days_ago=days_ago,
        is_paid=False,
        plan_tier=None,
        label=f"Free trial ended ({days_ago} days ago)",
    )


def get_video_quota(plan: PlanState) -> Optional[int]:
    """Video quota for a plan kind, or None when video is not part of the plan."""
    if plan.kind == TRIAL:
        return TRIAL_VIDEO_LIMIT
    if plan.kind == PRO:
        return PRO_VIDEO_LIMIT
    return None


def check_feature_access(plan: PlanState, usage: Optional[Mapping[str, int]], feature: str) -> FeatureAccess:
    """
    Decide whether a metered feature may be invoked.

    url, vision and chat carry no quota. video is limited to trial and Pro;
    the caller counts prior usage in the current period and passes it in.
    """
    if feature != FEATURE_VIDEO:
        return FeatureAccess(ok=True)

    used = int((usage or {}).get(FEATURE_VIDEO, 0) or 0)

    if plan.kind in (TRIAL, PRO):
        quota = get_video_quota(plan)
        remaining = quota - used
        if remaining <= 0:
            reason = "trial_video_limit" if plan.kind == TRIAL else "pro_video_limit"
            return FeatureAccess(ok=False, reason=reason, remaining=0, limit=quota)
        return FeatureAccess(ok=True, remaining=remaining, limit=quota)

    if plan.kind == STARTER:
        return FeatureAccess(ok=False, reason="starter_not_allowed")
    if plan.kind == TRIAL_EXPIRED:
        return FeatureAccess(ok=False, reason=TRIAL_EXPIRED)
    return FeatureAccess(ok=False, reason=NO_PLAN)


def month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """[first day of the UTC month, first day of the next month)."""
    now = to_utc(now)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, end


def video_usage_window(profile: Any, plan: PlanState, now: Optional[datetime] = None) -> Optional[Tuple[datetime, datetime]]:
    """
    Window in which video usage counts against the quota.
    Trial: registration up to now. Pro: the current UTC calendar month.
    """
    now = to_utc(now) or utcnow()
    if plan.kind == TRIAL:
        start = to_utc(_field(profile, "registered_at")) or datetime(2000, 1, 1, tzinfo=timezone.utc)
        return start, now
    if plan.kind == PRO:
        return month_bounds(now)
    return None


def check_plan_guard(
    user_id: Optional[str],
    profile: Any,
    now: Optional[datetime] = None,
) -> PlanGuardResult:
    """
    Decide whether a user may call the AI features at all.

    Paid access lasts until plan_valid_until, cancelled or not. Trial
    access follows the plan calculator.
    """
    if not user_id:
        return PlanGuardResult(allowed=False, reason=REASON_NOT_LOGGED_IN)
    if profile is None or _field(profile, "deleted_at") is not None:
        return PlanGuardResult(allowed=False, reason=REASON_PROFILE_NOT_FOUND)

    now = to_utc(now) or utcnow()
    plan = get_plan_state(profile, now)

    if plan.is_paid:
        valid_until = to_utc(_field(profile, "plan_valid_until"))
        if valid_until is not None and valid_until < now:
            return PlanGuardResult(allowed=False, reason=REASON_TRIAL_EXPIRED, plan=plan)
        return PlanGuardResult(allowed=True, reason=None, plan=plan)

    if plan.kind == TRIAL:
        return PlanGuardResult(
            allowed=True,
            reason=None,
            plan=plan,
            days_left=plan.trial_remaining_days or 0,
        )

    return PlanGuardResult(allowed=False, reason=REASON_TRIAL_EXPIRED, plan=plan)


def trial_ends_at(profile: Any) -> Optional[datetime]:
    registered_at = to_utc(_field(profile, "registered_at"))
    trial_days = get_trial_days(_field(profile, "trial_type"))
    if registered_at is None or trial_days <= 0:
        return None
    return registered_at + timedelta(days=trial_days)
