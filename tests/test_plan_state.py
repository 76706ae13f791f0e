"""
Unit tests for the trial/plan calculator, the video gate and the plan guard
"""
from datetime import datetime, timedelta, timezone

import pytest

from config.settings import TRIAL_DAYS, TRIAL_REFERRAL
from services import plan_service
from services.mail_service import build_welcome_email
from services.plan_service import (
    get_plan_state,
    check_feature_access,
    check_plan_guard,
    video_usage_window,
    month_bounds,
    to_utc,
    PlanState,
)

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


def _trial(days_ago: float, trial_type: str = "normal") -> dict:
    return {
        "registered_at": NOW - timedelta(days=days_ago),
        "trial_type": trial_type,
        "plan_status": "trial",
        "plan_tier": None,
    }


def _plan(kind: str) -> PlanState:
    return PlanState(
        kind=kind,
        trial_remaining_days=None,
        trial_total_days=None,
        trial_days_ago=None,
        is_paid=kind in ("starter", "pro"),
        plan_tier=kind if kind in ("starter", "pro") else None,
        label="",
    )


def test_normal_trial_ends_after_seven_days():
    state = get_plan_state(_trial(7), NOW)
    assert state.kind == "trial_expired"
    assert state.trial_remaining_days == 0
    assert state.trial_days_ago == 0
    assert state.label == "Free trial ended (0 days ago)"


def test_normal_trial_six_days_in_has_one_day_left():
    state = get_plan_state(_trial(6), NOW)
    assert state.kind == "trial"
    assert state.trial_remaining_days == 1
    assert state.trial_total_days == 7
    assert state.label == "Free trial (1 days left)"


def test_partial_day_is_floored():
    state = get_plan_state(_trial(6.9), NOW)
    assert state.kind == "trial"
    assert state.trial_remaining_days == 1


def test_expired_trial_counts_days_ago():
    state = get_plan_state(_trial(10), NOW)
    assert state.kind == "trial_expired"
    assert state.trial_days_ago == 3


def test_referral_trial_length_matches_welcome_email():
    state = get_plan_state(_trial(0, TRIAL_REFERRAL), NOW)
    assert state.trial_total_days == 14
    assert state.trial_total_days == TRIAL_DAYS[TRIAL_REFERRAL]

    email = build_welcome_email("a@example.com", "99999", TRIAL_REFERRAL, None)
    assert f"{TRIAL_DAYS[TRIAL_REFERRAL]} days" in email["html"]


def test_paid_tier_wins_over_trial_clock():
    profile = _trial(30)
    profile.update(plan_status="paid", plan_tier="pro")
    state = get_plan_state(profile, NOW)
    assert state.kind == "pro"
    assert state.is_paid is True
    assert state.trial_remaining_days is None
    assert state.label == "Pro plan"


@pytest.mark.parametrize("profile", [
    None,
    {"registered_at": None, "trial_type": "normal"},
    {"registered_at": "not-a-date", "trial_type": "normal"},
    {"registered_at": NOW.isoformat(), "trial_type": None},
])
def test_missing_trial_data_is_no_plan(profile):
    assert get_plan_state(profile, NOW).kind == "no_plan"


def test_accepts_iso_strings_and_naive_datetimes():
    iso = (NOW - timedelta(days=2)).strftime("%Y-%m-%dT%H:%M:%SZ")
    assert get_plan_state({"registered_at": iso, "trial_type": "normal"}, NOW).trial_remaining_days == 5

    naive = (NOW - timedelta(days=2)).replace(tzinfo=None)
    assert get_plan_state({"registered_at": naive, "trial_type": "normal"}, NOW).trial_remaining_days == 5
    assert to_utc(naive).tzinfo == timezone.utc


@pytest.mark.parametrize("feature", ["url", "vision", "chat"])
def test_non_video_features_have_no_quota(feature):
    for kind in ("trial", "trial_expired", "starter", "pro", "no_plan"):
        assert check_feature_access(_plan(kind), {feature: 10_000}, feature).ok is True


def test_pro_video_quota_boundary():
    at_limit = check_feature_access(_plan("pro"), {"video": 30}, "video")
    assert at_limit.ok is False
    assert at_limit.reason == "pro_video_limit"
    assert at_limit.remaining == 0

    below = check_feature_access(_plan("pro"), {"video": 29}, "video")
    assert below.ok is True
    assert below.remaining == 1
    assert below.limit == 30


def test_trial_video_quota():
    denied = check_feature_access(_plan("trial"), {"video": 10}, "video")
    assert (denied.ok, denied.reason, denied.remaining) == (False, "trial_video_limit", 0)
    assert check_feature_access(_plan("trial"), {}, "video").remaining == 10


@pytest.mark.parametrize("kind,reason", [
    ("starter", "starter_not_allowed"),
    ("trial_expired", "trial_expired"),
    ("no_plan", "no_plan"),
])
def test_video_denied_regardless_of_usage(kind, reason):
    for used in (0, 5, 100):
        access = check_feature_access(_plan(kind), {"video": used}, "video")
        assert access.ok is False
        assert access.reason == reason
        assert access.remaining is None


def test_video_usage_window():
    profile = _trial(3)
    start, end = video_usage_window(profile, get_plan_state(profile, NOW), NOW)
    assert start == profile["registered_at"]
    assert end == NOW

    pro = {"plan_status": "paid", "plan_tier": "pro"}
    assert video_usage_window(pro, get_plan_state(pro, NOW), NOW) == month_bounds(NOW)


def test_month_bounds_wraps_december():
    start, end = month_bounds(datetime(2024, 12, 31, 23, 59, tzinfo=timezone.utc))
    assert start == datetime(2024, 12, 1, tzinfo=timezone.utc)
    assert end == datetime(2025, 1, 1, tzinfo=timezone.utc)


def test_plan_guard_reasons():
    assert check_plan_guard(None, None, NOW).reason == plan_service.REASON_NOT_LOGGED_IN
    assert check_plan_guard("u1", None, NOW).reason == plan_service.REASON_PROFILE_NOT_FOUND

    deleted = dict(_trial(1), deleted_at=NOW)
    assert check_plan_guard("u1", deleted, NOW).reason == plan_service.REASON_PROFILE_NOT_FOUND

    active = check_plan_guard("u1", _trial(2), NOW)
    assert active.allowed is True
    assert active.days_left == 5

    assert check_plan_guard("u1", _trial(8), NOW).reason == plan_service.REASON_TRIAL_EXPIRED


def test_plan_guard_paid_access_lasts_until_valid_until():
    paid = {
        "plan_status": "paid",
        "plan_tier": "starter",
        "is_canceled": True,
        "plan_valid_until": NOW + timedelta(days=3),
    }
    assert check_plan_guard("u1", paid, NOW).allowed is True

    paid["plan_valid_until"] = NOW - timedelta(seconds=1)
    guard = check_plan_guard("u1", paid, NOW)
    assert guard.allowed is False
    assert guard.reason == plan_service.REASON_TRIAL_EXPIRED
