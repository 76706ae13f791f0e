"""
AutoPost Studio Backend
Accounts, trial/paid plans, metered OpenAI features, referrals, Stripe billing and the admin dashboard
"""

from pathlib import Path
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from auth import auth_router
from routers.admin_router import admin_router
from routers.billing_router import billing_router
from routers.feature_router import feature_router
from routers.plan_router import plan_router
from routers.referral_router import referral_router
from utils.rate_limit import RateLimiterMiddleware
from database import init_db
from config.settings import settings, UPLOAD_DIR
from backend.utils.responses import success_response, error_response

# Logging setup - write ALL events to /logs/app.log
LOGS_DIR = Path("./logs")
LOGS_DIR.mkdir(exist_ok=True)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(LOGS_DIR / "app.log"),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

app = FastAPI(title="AutoPost Studio API")


def _is_render_env() -> bool:
    """Check if running in Render.com environment"""
    return bool(settings.render or settings.render_external_url)


# Uncaught exception middleware - logs all unhandled exceptions and returns 500
class UncaughtExceptionMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Uncaught exception: {e}\n{traceback.format_exc()}")
            return JSONResponse(
                status_code=500,
                content={
                    "ok": False,
                    "data": {},
                    "error": "internal_error",
                    "message": "Internal Server Error",
                }
            )


# Security headers middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses: CSP, HSTS, X-Frame-Options, X-Content-Type-Options"""
    async def dispatch(self, request, call_next):
        response = await call_next(request)

        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "img-src 'self' data: blob:; "
            "object-src 'none'; "
            "base-uri 'self'; "
            "form-action 'self';"
        )

        # Only set in production (Render environment) where HTTPS is guaranteed
        if _is_render_env():
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"

        return response


app.add_middleware(UncaughtExceptionMiddleware)
app.add_middleware(RateLimiterMiddleware, requests_per_minute=settings.rate_limit_per_minute)
app.add_middleware(SecurityHeadersMiddleware)

# CORS MUST be near the bottom
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

UPLOAD_DIR.mkdir(parents=True, exist_ok=True)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """HTTPException detail is either {"error", "message"} or a plain string"""
    if isinstance(exc.detail, dict):
        error = exc.detail.get("error", "http_error")
        message = exc.detail.get("message", "")
    else:
        error = {401: "unauthorized", 403: "forbidden", 404: "not_found"}.get(exc.status_code, "http_error")
        message = str(exc.detail)
    return error_response(error, status=exc.status_code, message=message)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(part) for part in err.get("loc", ()) if part != "body") for err in exc.errors()]
    return error_response(
        "validation_error",
        status=400,
        message=f"Invalid or missing fields: {', '.join(f for f in fields if f)}",
    )


@app.on_event("startup")
async def check_env_keys_on_startup():
    """Check for missing API keys on startup (non-fatal warning)"""
    key_checks = {
        "JWT_SECRET_KEY": settings.jwt_secret_key,
        "OPENAI_API_KEY": settings.openai_api_key,
        "STRIPE_SECRET_KEY": settings.stripe_secret_key,
        "STRIPE_WEBHOOK_SECRET": settings.stripe_webhook_secret,
        "STRIPE_PRICE_STARTER": settings.stripe_price_starter,
        "STRIPE_PRICE_PRO": settings.stripe_price_pro,
        "RESEND_API_KEY": settings.resend_api_key,
    }
    missing = [key for key, value in key_checks.items() if not value]
    if missing:
        logger.warning(f"Startup check: Missing environment variables: {', '.join(missing)}")
    else:
        logger.info("Startup check: All API keys loaded")


# Initialize database on startup
@app.on_event("startup")
async def initialize_database():
    """Create all tables."""
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


@app.get("/health")
async def health():
    return success_response({"status": "ok"})


# Billing first so the webhook route is registered before the rest
app.include_router(billing_router)
app.include_router(auth_router)
app.include_router(plan_router)
app.include_router(feature_router)
app.include_router(referral_router)
app.include_router(admin_router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
