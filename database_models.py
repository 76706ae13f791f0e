import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Text, ForeignKey, UniqueConstraint

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Profile(Base):
    """
    One row per user: identity, trial metadata, plan fields and referral linkage.
    Rows are soft-deleted through deleted_at and never removed.
    """
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String, unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)
    account_id = Column(String(5), nullable=False, default="99999")
    is_master = Column(Boolean, nullable=False, default=False)

    trial_type = Column(String, nullable=True)  # normal | referral
    registered_at = Column(DateTime(timezone=True), nullable=True, default=_utcnow)

    plan_status = Column(String, nullable=True)  # trial | paid
    plan_tier = Column(String, nullable=True)    # starter | pro
    plan_started_at = Column(DateTime(timezone=True), nullable=True)
    plan_valid_until = Column(DateTime(timezone=True), nullable=True)
    is_canceled = Column(Boolean, nullable=False, default=False)
    last_checkout_session_id = Column(String, nullable=True)

    referral_code = Column(String(16), nullable=True)
    referred_by_code = Column(String(16), nullable=True)
    referred_by_user_id = Column(String(36), nullable=True, index=True)

    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class UsageLog(Base):
    """Append-only record of one billable AI call."""
    __tablename__ = "usage_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    type = Column(String(16), nullable=False, index=True)
    model = Column(String, nullable=True)
    prompt_tokens = Column(Integer, nullable=False, default=0)
    completion_tokens = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    cost = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)


class ReferralCode(Base):
    __tablename__ = "referral_codes"

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    code = Column(String(16), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Referral(Base):
    """Links a referrer to a referred profile; converted_at is set on first subscribe."""
    __tablename__ = "referrals"
    __table_args__ = (
        UniqueConstraint("referrer_user_id", "referred_user_id", name="uq_referral_pair"),
    )

    id = Column(Integer, primary_key=True, index=True)
    referrer_user_id = Column(String(36), nullable=False, index=True)
    referred_user_id = Column(String(36), nullable=False, index=True)
    referral_code = Column(String(16), nullable=False)
    converted_at = Column(DateTime(timezone=True), nullable=True)
    initial_plan_tier = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class UserSetting(Base):
    __tablename__ = "user_settings"

    user_id = Column(String(36), ForeignKey("profiles.id"), primary_key=True)
    system_prompt = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class AccountIdSequence(Base):
    """Each inserted row mints the next 5-digit account code."""
    __tablename__ = "account_id_sequence"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class CheckoutSession(Base):
    """Every Stripe checkout session that has activated a plan. A session id is applied once."""
    __tablename__ = "checkout_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    plan_tier = Column(String, nullable=False)
    applied_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
