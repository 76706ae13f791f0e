"""
Tests for plan mutations and referral conversion bookkeeping
"""
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from auth_utils import create_jwt
from crud.profile import ProfileRepository
from database_models import CheckoutSession, Referral
from services.referral_service import ReferralService
from services.subscription_service import SubscriptionService, add_months, build_paid_plan_update
from services.plan_service import to_utc
from tests.conftest import auth_headers

NOW = datetime(2025, 1, 31, 10, 0, tzinfo=timezone.utc)


async def _profile(db, **fields):
    data = {
        "email": fields.pop("email", "member@example.com"),
        "hashed_password": "x",
        "trial_type": "normal",
        "plan_status": "trial",
        "registered_at": NOW,
    }
    data.update(fields)
    return await ProfileRepository(db).create(data)


def test_add_months_clamps_to_month_end():
    assert add_months(NOW, 1) == datetime(2025, 2, 28, 10, 0, tzinfo=timezone.utc)
    assert add_months(datetime(2024, 12, 15, tzinfo=timezone.utc), 1) == datetime(2025, 1, 15, tzinfo=timezone.utc)


def test_build_paid_plan_update():
    update = build_paid_plan_update("pro", NOW)
    assert update["plan_status"] == "paid"
    assert update["plan_tier"] == "pro"
    assert update["plan_started_at"] == NOW
    assert update["plan_valid_until"] == datetime(2025, 2, 28, 10, 0, tzinfo=timezone.utc)
    assert update["is_canceled"] is False


async def test_subscribe_from_trial(test_db):
    profile = await _profile(test_db)
    result = await SubscriptionService(test_db).subscribe(profile, "starter", NOW)

    assert result["is_error"] is False
    assert profile.plan_status == "paid"
    assert profile.plan_tier == "starter"
    assert to_utc(profile.plan_valid_until) == datetime(2025, 2, 28, 10, 0, tzinfo=timezone.utc)


async def test_subscribe_rejects_invalid_tier(test_db):
    profile = await _profile(test_db)
    result = await SubscriptionService(test_db).subscribe(profile, "enterprise", NOW)
    assert result["error"] == "invalid_plan_tier"
    assert profile.plan_status == "trial"


async def test_already_paid_leaves_row_untouched(test_db):
    profile = await _profile(test_db, plan_status="paid", plan_tier="pro", is_canceled=True)
    before = (profile.plan_status, profile.plan_tier, profile.plan_started_at, profile.is_canceled)

    result = await SubscriptionService(test_db).subscribe(profile, "starter", NOW)

    assert result["error"] == "already_paid"
    await test_db.refresh(profile)
    assert (profile.plan_status, profile.plan_tier, profile.plan_started_at, profile.is_canceled) == before


async def test_upgrade_and_downgrade(test_db):
    service = SubscriptionService(test_db)
    profile = await _profile(test_db, plan_status="paid", plan_tier="starter")

    assert (await service.downgrade(profile))["error"] == "downgrade_not_allowed"
    assert (await service.upgrade(profile))["is_error"] is False
    assert profile.plan_tier == "pro"

    assert (await service.upgrade(profile))["error"] == "upgrade_not_allowed"
    assert (await service.downgrade(profile))["is_error"] is False
    assert profile.plan_tier == "starter"


async def test_trial_users_cannot_upgrade_downgrade_or_cancel(test_db):
    service = SubscriptionService(test_db)
    profile = await _profile(test_db)

    assert (await service.upgrade(profile))["error"] == "upgrade_not_allowed"
    assert (await service.downgrade(profile))["error"] == "downgrade_not_allowed"
    assert (await service.cancel(profile))["error"] == "cancel_not_allowed"
    assert profile.plan_status == "trial"
    assert profile.plan_tier is None


async def test_cancel_only_sets_flag(test_db):
    profile = await _profile(test_db, plan_status="paid", plan_tier="pro")
    valid_until = profile.plan_valid_until

    result = await SubscriptionService(test_db).cancel(profile)

    assert result["is_error"] is False
    assert profile.is_canceled is True
    assert profile.plan_status == "paid"
    assert profile.plan_tier == "pro"
    assert profile.plan_valid_until == valid_until


async def test_referral_conversion_recorded_once(test_db):
    referrer = await _profile(test_db, email="referrer@example.com")
    code = (await ReferralService(test_db).create_or_get_code(referrer))["data"]["code"]
    referred = await _profile(
        test_db,
        email="friend@example.com",
        trial_type="referral",
        referred_by_code=code,
        referred_by_user_id=referrer.id,
    )

    service = SubscriptionService(test_db)
    await service.subscribe(referred, "pro", NOW)

    rows = (await test_db.execute(select(Referral))).scalars().all()
    assert len(rows) == 1
    assert rows[0].referrer_user_id == referrer.id
    assert rows[0].referred_user_id == referred.id
    assert rows[0].initial_plan_tier == "pro"
    first_conversion = rows[0].converted_at

    # A later checkout for the same user must not overwrite the conversion
    await service.apply_checkout(referred, "starter", "cs_test_later", datetime(2025, 3, 1, tzinfo=timezone.utc))
    rows = (await test_db.execute(select(Referral))).scalars().all()
    assert len(rows) == 1
    assert rows[0].converted_at == first_conversion
    assert rows[0].initial_plan_tier == "pro"


async def test_apply_checkout_is_idempotent_per_session(test_db):
    profile = await _profile(test_db)
    service = SubscriptionService(test_db)

    first = await service.apply_checkout(profile, "pro", "cs_test_1", NOW)
    assert first["is_error"] is False
    started = profile.plan_started_at

    again = await service.apply_checkout(profile, "pro", "cs_test_1", datetime(2025, 2, 10, tzinfo=timezone.utc))
    assert again["is_error"] is False
    assert profile.plan_started_at == started
    assert profile.last_checkout_session_id == "cs_test_1"


async def test_apply_checkout_ignores_earlier_session_after_a_newer_one(test_db):
    profile = await _profile(test_db)
    service = SubscriptionService(test_db)

    await service.apply_checkout(profile, "pro", "cs_A", NOW)
    later = datetime(2025, 2, 10, tzinfo=timezone.utc)
    await service.apply_checkout(profile, "starter", "cs_B", later)
    valid_until = to_utc(profile.plan_valid_until)

    replay = await service.apply_checkout(profile, "pro", "cs_A", datetime(2025, 6, 1, tzinfo=timezone.utc))

    assert replay["is_error"] is False
    assert replay["already_applied"] is True
    assert profile.plan_tier == "starter"
    assert to_utc(profile.plan_started_at) == later
    assert to_utc(profile.plan_valid_until) == valid_until
    assert profile.last_checkout_session_id == "cs_B"

    rows = (await test_db.execute(select(CheckoutSession).order_by(CheckoutSession.id))).scalars().all()
    assert [(row.session_id, row.plan_tier) for row in rows] == [("cs_A", "pro"), ("cs_B", "starter")]


async def test_apply_checkout_session_belongs_to_first_user(test_db):
    owner = await _profile(test_db)
    other = await _profile(test_db, email="other@example.com")
    service = SubscriptionService(test_db)

    await service.apply_checkout(owner, "pro", "cs_shared", NOW)
    result = await service.apply_checkout(other, "pro", "cs_shared", NOW)

    assert result["already_applied"] is True
    assert other.plan_status == "trial"


async def test_apply_checkout_requires_session_id(test_db):
    profile = await _profile(test_db)
    result = await SubscriptionService(test_db).apply_checkout(profile, "pro", "", NOW)
    assert result["error"] == "missing_session_id"
    assert profile.plan_status == "trial"


async def test_subscribe_without_referrer_creates_no_referral(test_db):
    profile = await _profile(test_db)
    await SubscriptionService(test_db).subscribe(profile, "starter", NOW)
    assert (await test_db.execute(select(Referral))).scalars().all() == []


@pytest.mark.parametrize("tier", ["starter", "pro"])
async def test_subscribe_accepts_both_tiers(test_db, tier):
    profile = await _profile(test_db)
    result = await SubscriptionService(test_db).subscribe(profile, tier, NOW)
    assert result["data"].plan_tier == tier


def test_plan_endpoints_walk_the_lifecycle(client, create_profile):
    headers = auth_headers(create_profile())

    response = client.post("/api/plan/subscribe", json={"plan_tier": "starter"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["plan"]["kind"] == "starter"

    response = client.post("/api/plan/subscribe", json={"plan_tier": "pro"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "already_paid"

    assert client.post("/api/plan/upgrade", headers=headers).json()["data"]["plan"]["kind"] == "pro"
    assert client.post("/api/plan/upgrade", headers=headers).json()["error"] == "upgrade_not_allowed"
    assert client.post("/api/plan/downgrade", headers=headers).json()["data"]["plan"]["kind"] == "starter"

    response = client.post("/api/plan/cancel", headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["user"]["is_canceled"] is True

    state = client.get("/api/plan/state", headers=headers).json()["data"]
    assert state["is_canceled"] is True
    assert state["plan"]["kind"] == "starter"
    assert state["video"]["reason"] == "starter_not_allowed"


def test_plan_endpoints_reject_trial_mutations(client, create_profile):
    headers = auth_headers(create_profile())
    for path, error in (
        ("/api/plan/upgrade", "upgrade_not_allowed"),
        ("/api/plan/downgrade", "downgrade_not_allowed"),
        ("/api/plan/cancel", "cancel_not_allowed"),
    ):
        response = client.post(path, headers=headers)
        assert response.status_code == 400
        assert response.json()["error"] == error

    response = client.post("/api/plan/subscribe", json={"plan_tier": "gold"}, headers=headers)
    assert response.json()["error"] == "invalid_plan_tier"


def test_plan_endpoints_auth_statuses(client):
    assert client.post("/api/plan/cancel").status_code == 401
    response = client.get("/api/plan/state", headers={"Authorization": f"Bearer {create_jwt('ghost')}"})
    assert response.status_code == 404
    assert response.json()["error"] == "profile_not_found"
