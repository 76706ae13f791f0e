"""
Mail Service - transactional email through the Resend HTTP API
"""
import logging
from typing import Optional, Dict, Any

import httpx

from config.settings import settings, TRIAL_DAYS, TRIAL_REFERRAL, TRIAL_NORMAL, TRIAL_ACCOUNT_ID

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


def build_welcome_email(email: str, account_id: str, trial_type: Optional[str], referral_code: Optional[str]) -> Dict[str, str]:
    """Subject and HTML body of the signup welcome mail."""
    trial_days = TRIAL_DAYS.get(trial_type or TRIAL_NORMAL, TRIAL_DAYS[TRIAL_NORMAL])
    if trial_type == TRIAL_REFERRAL:
        trial_text = f"You signed up through a referral, so your free trial runs for {trial_days} days."
    else:
        trial_text = f"Your free trial runs for {trial_days} days."

    referral_html = ""
    if referral_code:
        base = (settings.app_base_url or "").rstrip("/")
        referral_html = (
            f"<p>Your referral code: <strong>{referral_code}</strong><br>"
            f"Friends who sign up at {base}/auth?ref={referral_code} get a "
            f"{TRIAL_DAYS[TRIAL_REFERRAL]}-day trial.</p>"
        )

    html = (
        "<p>Thanks for signing up for AutoPost Studio.</p>"
        f"<p>{trial_text}</p>"
        f"<p>Login email: {email}<br>Account ID: <strong>{account_id or TRIAL_ACCOUNT_ID}</strong></p>"
        f"{referral_html}"
    )
    return {"subject": "Welcome to AutoPost Studio", "html": html}


def build_account_id_email(account_id: str) -> Dict[str, str]:
    html = (
        "<p>Thank you for subscribing to AutoPost Studio.</p>"
        f"<p>Your account ID is <strong>{account_id}</strong>. "
        "Use it together with your email and password to log in.</p>"
    )
    return {"subject": "Your AutoPost Studio account ID", "html": html}


async def send_email(to: str, subject: str, html: str) -> Dict[str, Any]:
    """
    Send one email via Resend.

    Returns:
        Normalized response: {"data": message_id, "is_error": False}
        or {"error": code, "message": str, "is_error": True}
    """
    if not settings.resend_api_key:
        logger.warning(f"RESEND_API_KEY is not set. Skipping email '{subject}' to {to}")
        return {"error": "mail_not_configured", "message": "RESEND_API_KEY is not set.", "is_error": True}

    headers = {
        "Authorization": f"Bearer {settings.resend_api_key}",
        "Content-Type": "application/json",
    }
    payload = {
        "from": settings.mail_from,
        "to": [to],
        "subject": subject,
        "html": html,
    }

    try:
        async with httpx.AsyncClient() as client:
            res = await client.post(RESEND_API_URL, headers=headers, json=payload, timeout=15)
    except httpx.RequestError as e:
        logger.error(f"Resend request failed: {e}")
        return {"error": "mail_request_failed", "message": str(e), "is_error": True}

    if not res.is_success:
        logger.error(f"Resend returned {res.status_code}: {res.text}")
        return {"error": "mail_send_failed", "message": res.text, "is_error": True}

    message_id = res.json().get("id")
    logger.info(f"Sent '{subject}' to {to} ({message_id})")
    return {"data": message_id, "is_error": False}


async def send_welcome_email(
    email: str,
    account_id: str,
    trial_type: Optional[str],
    referral_code: Optional[str] = None,
) -> Dict[str, Any]:
    content = build_welcome_email(email, account_id, trial_type, referral_code)
    return await send_email(email, content["subject"], content["html"])


async def send_account_id_email(email: str, account_id: str) -> Dict[str, Any]:
    content = build_account_id_email(account_id)
    return await send_email(email, content["subject"], content["html"])
