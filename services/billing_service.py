"""
Billing Service - Stripe Checkout for the Starter and Pro plans
"""

import logging
from typing import Any, Mapping, Optional

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings, PLAN_STARTER, PLAN_PRO, PAID_TIERS
from crud.profile import ProfileRepository
from services import mail_service
from services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

# Error code -> HTTP status for the billing endpoints
ERROR_STATUS = {
    "stripe_not_configured": 500,
    "stripe_error": 500,
    "invalid_plan_tier": 400,
    "price_not_configured": 500,
    "missing_session_id": 400,
    "payment_not_completed": 400,
    "livemode_mismatch": 400,
    "unknown_plan_price": 400,
    "user_not_found": 404,
}


def _get(obj: Any, key: str) -> Any:
    """Read a key from a Stripe object or a plain dict."""
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(key)
    return getattr(obj, key, None)


def price_id_for_tier(tier: str) -> Optional[str]:
    return {
        PLAN_STARTER: settings.stripe_price_starter,
        PLAN_PRO: settings.stripe_price_pro,
    }.get(tier)


def tier_for_price_id(price_id: Optional[str]) -> Optional[str]:
    if not price_id:
        return None
    if price_id == settings.stripe_price_starter:
        return PLAN_STARTER
    if price_id == settings.stripe_price_pro:
        return PLAN_PRO
    return None


def key_is_live(secret_key: Optional[str]) -> bool:
    return bool(secret_key) and secret_key.startswith(("sk_live", "rk_live"))


def session_price_id(session: Any) -> Optional[str]:
    """Price id of the first line item of an expanded checkout session."""
    line_items = _get(session, "line_items")
    items = _get(line_items, "data") or []
    if not items:
        return None
    price = _get(items[0], "price")
    if isinstance(price, str):
        return price
    return _get(price, "id")


def session_email(session: Any) -> Optional[str]:
    details = _get(session, "customer_details")
    return _get(details, "email") or _get(session, "customer_email")


def _error(code: str, message: str) -> dict:
    return {"error": code, "message": message, "is_error": True}


class BillingService:
    """
    Service class for handling billing-related business logic.
    Plan changes go through SubscriptionService so checkout and direct
    subscribe share the same rules.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the billing service.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db
        self.profile_repo = ProfileRepository(db)
        self.subscription_service = SubscriptionService(db)
        self.secret_key = settings.stripe_secret_key
        if self.secret_key:
            stripe.api_key = self.secret_key

    async def create_checkout_session(self, profile, plan_tier: Optional[str]):
        """
        Create a Stripe Checkout session for a paid tier.

        Args:
            profile: Authenticated profile
            plan_tier: "starter" or "pro"

        Returns:
            Normalized response: {"data": {"url", "session_id"}, "is_error": False}
            or {"error": code, "message": str, "is_error": True}
        """
        if not self.secret_key:
            logger.error("STRIPE_SECRET_KEY is not set. Cannot create checkout session.")
            return _error("stripe_not_configured", "STRIPE_SECRET_KEY is not set.")

        if plan_tier not in PAID_TIERS:
            return _error("invalid_plan_tier", "plan_tier must be 'starter' or 'pro'.")

        price_id = price_id_for_tier(plan_tier)
        if not price_id:
            logger.error(f"Stripe price id for {plan_tier} is not set.")
            return _error("price_not_configured", f"No Stripe price is configured for {plan_tier}.")

        frontend_url = (settings.frontend_url or "http://localhost:3000").rstrip("/")

        try:
            checkout_session = stripe.checkout.Session.create(
                mode="subscription",
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                customer_email=profile.email,
                success_url=f"{frontend_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{frontend_url}/billing/cancel",
                metadata={"user_id": profile.id, "plan_tier": plan_tier},
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create checkout session: {e}", exc_info=True)
            return _error("stripe_error", str(e))

        logger.info(f"Created checkout session {checkout_session.id} for user {profile.id} ({plan_tier})")
        return {"data": {"url": checkout_session.url, "session_id": checkout_session.id}, "is_error": False}

    async def _resolve_profile(self, session: Any, user_id: Optional[str]):
        metadata = _get(session, "metadata") or {}
        meta_user_id = _get(metadata, "user_id")
        for candidate in (meta_user_id, user_id):
            if candidate:
                profile = await self.profile_repo.get_by_id(candidate)
                if profile is not None:
                    return profile
        email = session_email(session)
        if email:
            return await self.profile_repo.get_by_email(email)
        return None

    async def confirm_checkout(self, session_id: Optional[str], user_id: Optional[str] = None):
        """
        Activate the plan bought in a completed checkout session.

        The user is found from the session metadata, then the user_id passed
        by the caller, then the customer email. Confirming the same session
        twice leaves the plan as it is.

        Returns:
            Normalized response: {"data": {"plan_tier", "account_id", "valid_until"}, "is_error": False}
            or {"error": code, "message": str, "is_error": True}
        """
        if not self.secret_key:
            logger.error("STRIPE_SECRET_KEY is not set. Cannot confirm checkout.")
            return _error("stripe_not_configured", "STRIPE_SECRET_KEY is not set.")

        if not session_id:
            return _error("missing_session_id", "session_id is required.")

        try:
            session = stripe.checkout.Session.retrieve(
                session_id,
                expand=["line_items.data.price"],
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to retrieve checkout session {session_id}: {e}", exc_info=True)
            return _error("stripe_error", str(e))

        if _get(session, "payment_status") != "paid":
            logger.warning(f"Checkout session {session_id} is not paid: {_get(session, 'payment_status')}")
            return _error("payment_not_completed", "Payment has not been completed.")

        livemode = bool(_get(session, "livemode"))
        if livemode != key_is_live(self.secret_key):
            logger.error(f"Checkout session {session_id} livemode={livemode} does not match the configured key")
            return _error("livemode_mismatch", "The checkout session does not match the configured Stripe mode.")

        profile = await self._resolve_profile(session, user_id)
        if profile is None:
            logger.error(f"No user found for checkout session {session_id}")
            return _error("user_not_found", "No user matches this checkout session.")

        price_id = session_price_id(session)
        tier = tier_for_price_id(price_id)
        if tier is None:
            logger.error(f"Checkout session {session_id} has an unknown price {price_id}")
            return _error("unknown_plan_price", "The purchased price does not match a plan.")

        account_id = await self.profile_repo.ensure_account_id(profile)
        result = await self.subscription_service.apply_checkout(profile, tier, session_id)
        if result.get("is_error"):
            return result
        profile = result["data"]

        if not result.get("already_applied"):
            try:
                await mail_service.send_account_id_email(profile.email, account_id)
            except Exception as e:
                logger.warning(f"Failed to send account id email to {profile.email}: {e}")

        valid_until = profile.plan_valid_until
        return {
            "data": {
                "plan_tier": profile.plan_tier,
                "account_id": account_id,
                "valid_until": valid_until.isoformat() if valid_until else None,
            },
            "is_error": False,
        }

    async def process_webhook(self, event: Any):
        """
        Process a verified Stripe webhook event. Only checkout.session.completed
        changes state; every other event is acknowledged.

        Returns:
            Normalized response: {"data": ..., "is_error": False} or {"error": code, "is_error": True}
        """
        event_type = _get(event, "type")
        logger.info(f"Processing Stripe webhook event: {event_type}")

        if event_type != "checkout.session.completed":
            return {"data": {"handled": False}, "is_error": False}

        session = _get(_get(event, "data"), "object")
        return await self.confirm_checkout(_get(session, "id"))
