"""
Billing Router - API endpoints for Stripe billing integration
Webhook is defined FIRST to avoid middleware conflicts
"""

import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_profile, get_current_user_id
from backend.utils.responses import success_response, service_error_response
from config.settings import settings
from database import get_db
from database_models import Profile
from services.billing_service import BillingService, ERROR_STATUS

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    plan_tier: Optional[str] = None


class ConfirmRequest(BaseModel):
    session_id: Optional[str] = None
    user_id: Optional[str] = None


def _billing_error(result: dict):
    return service_error_response(result, status=500, default_code="stripe_error", status_map=ERROR_STATUS)


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@billing_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Handle Stripe webhook events with signature verification.

    Only verified events are processed. Always returns 200 OK so Stripe
    does not retry.
    """
    webhook_secret = settings.stripe_webhook_secret
    if not webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not set")
        return JSONResponse(
            status_code=200,
            content={"ok": False, "received": True, "error": "Webhook secret not configured"}
        )

    # Raw body is required for signature verification
    payload = await request.body()

    stripe_signature = request.headers.get("stripe-signature")
    if not stripe_signature:
        logger.error("Missing Stripe-Signature header")
        return JSONResponse(
            status_code=200,
            content={"ok": False, "received": True, "error": "Missing signature header"}
        )

    try:
        event = stripe.Webhook.construct_event(payload, stripe_signature, webhook_secret)
    except stripe.SignatureVerificationError as e:
        logger.error(f"Stripe webhook signature verification failed: {e}")
        return JSONResponse(
            status_code=200,
            content={"ok": False, "received": True, "error": "Invalid webhook signature"}
        )
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        return JSONResponse(
            status_code=200,
            content={"ok": False, "received": True, "error": "Invalid payload format"}
        )

    try:
        result = await BillingService(db).process_webhook(event)
    except Exception as e:
        logger.error(f"Webhook error: {e}", exc_info=True)
        return JSONResponse(
            status_code=200,
            content={"ok": False, "received": True, "error": str(e)}
        )

    if result.get("is_error"):
        logger.error(f"Webhook {event.type} failed: {result.get('error')}")

    return JSONResponse(
        status_code=200,
        content={
            "ok": not result.get("is_error", True),
            "received": True,
            "event_type": event.type,
        }
    )


@billing_router.post("/create-checkout-session")
async def create_checkout_session(
    request: CheckoutRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db)
):
    """Stripe Checkout session for the requested tier"""
    result = await BillingService(db).create_checkout_session(profile, request.plan_tier)
    if result.get("is_error"):
        return _billing_error(result)
    return success_response(result["data"])


@billing_router.post("/confirm")
async def confirm_checkout(
    request: ConfirmRequest,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Confirm a completed checkout from the success page and activate the plan.
    Safe to call more than once for the same session.
    """
    result = await BillingService(db).confirm_checkout(
        request.session_id,
        user_id=request.user_id or current_user_id,
    )
    if result.get("is_error"):
        return _billing_error(result)
    return success_response(result["data"], message="Plan activated")
