"""
Configuration settings for the application
"""
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Normalized plan identifiers
TRIAL_NORMAL = "normal"
TRIAL_REFERRAL = "referral"

PLAN_STATUS_TRIAL = "trial"
PLAN_STATUS_PAID = "paid"

PLAN_STARTER = "starter"
PLAN_PRO = "pro"
PAID_TIERS = (PLAN_STARTER, PLAN_PRO)

# Usage event types
FEATURE_URL = "url"
FEATURE_VISION = "vision"
FEATURE_CHAT = "chat"
FEATURE_VIDEO = "video"
FEATURES = (FEATURE_URL, FEATURE_VISION, FEATURE_CHAT, FEATURE_VIDEO)

# Plan rules. Every caller reads these; nothing else defines them.
TRIAL_DAYS = {
    TRIAL_NORMAL: 7,
    TRIAL_REFERRAL: 14,
}
TRIAL_VIDEO_LIMIT = 10  # whole trial period
PRO_VIDEO_LIMIT = 30    # per calendar month (UTC)
PAID_PLAN_VALID_MONTHS = 1

# Unit cost per usage event, in yen
UNIT_COST = {
    FEATURE_URL: 0.7,
    FEATURE_VISION: 1.0,
    FEATURE_CHAT: 0.3,
    FEATURE_VIDEO: 20.0,
}

# Shared account code handed out to every trial user until payment
TRIAL_ACCOUNT_ID = "99999"

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Core authentication and security
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")

    # Stripe billing configuration
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_price_starter: Optional[str] = Field(default=None, alias="STRIPE_PRICE_STARTER")
    stripe_price_pro: Optional[str] = Field(default=None, alias="STRIPE_PRICE_PRO")

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4.1-mini", alias="OPENAI_MODEL")
    openai_transcription_model: str = Field(default="whisper-1", alias="OPENAI_TRANSCRIPTION_MODEL")

    # Outbound mail (Resend)
    resend_api_key: Optional[str] = Field(default=None, alias="RESEND_API_KEY")
    mail_from: str = Field(default="AutoPost Studio <onboarding@resend.dev>", alias="MAIL_FROM")

    # Infrastructure configuration
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")
    upload_dir: str = Field(default="./uploads", alias="UPLOAD_DIR")
    rate_limit_per_minute: int = Field(default=60, alias="RATE_LIMIT_PER_MINUTE")

    # Frontend configuration
    app_base_url: str = Field(default="http://localhost:3000", alias="APP_BASE_URL")
    frontend_url: Optional[str] = Field(default="http://localhost:3000", alias="FRONTEND_URL")

    # Render.com deployment configuration
    render: Optional[str] = Field(default=None, alias="RENDER")
    render_external_url: Optional[str] = Field(default=None, alias="RENDER_EXTERNAL_URL")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")


# Instantiate settings object
settings = Settings()

UPLOAD_DIR = Path(settings.upload_dir)

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.render) or bool(settings.env and settings.env.lower() == "production")
