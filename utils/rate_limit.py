import json
from time import time
from typing import Dict, Tuple, Optional
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
import logging

import redis

from config import settings

logger = logging.getLogger(__name__)

# Stripe retries webhooks; health checks come from the platform
EXEMPT_PATHS = {"/api/billing/webhook", "/health"}


def _connect_redis() -> Optional[redis.Redis]:
    if not settings.redis_url:
        logger.info("REDIS_URL not set. Using in-memory rate limiting.")
        return None
    try:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        client.ping()
    except redis.RedisError as e:
        logger.warning(f"Redis connection failed: {e}. Falling back to in-memory rate limiting.")
        return None
    logger.info("Redis connected successfully for rate limiting")
    return client


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """
    Distributed rate limiter using Redis (with fallback to in-memory).
    Uses Token Bucket Algorithm, per client IP.
    """

    def __init__(self, app, requests_per_minute: int = 60, redis_client: Optional[redis.Redis] = None):
        super().__init__(app)
        self.capacity = requests_per_minute
        self.refill_time_window = 60.0
        # Fallback: in-memory storage (ip -> (tokens, last_refill_ts))
        self._buckets: Dict[str, Tuple[float, float]] = {}
        self._redis = redis_client if redis_client is not None else _connect_redis()

    def _get_client_ip(self, request: Request) -> str:
        xff = request.headers.get("x-forwarded-for")
        if xff:
            return xff.split(",")[0].strip()
        client = request.client
        return client.host if client else "unknown"

    def _get_redis_key(self, ip: str) -> str:
        return f"rate_limit:{ip}"

    def _refill(self, tokens: float, last_refill: float, now: float) -> float:
        elapsed = max(0.0, now - last_refill)
        refill = (elapsed / self.refill_time_window) * self.capacity
        return min(self.capacity, tokens + refill)

    async def _check_rate_limit_redis(self, ip: str) -> Optional[bool]:
        """
        Check rate limit using Redis.
        Returns True if allowed, False if rate limited, None if Redis failed.
        """
        try:
            key = self._get_redis_key(ip)
            now = time()

            bucket_data = self._redis.get(key)
            if bucket_data:
                data = json.loads(bucket_data)
                tokens = float(data.get("tokens", 0))
                last_refill = float(data.get("last_refill", now))
            else:
                tokens = float(self.capacity)
                last_refill = now

            tokens = self._refill(tokens, last_refill, now)
            if tokens < 1.0:
                return False

            bucket_data = json.dumps({"tokens": tokens - 1.0, "last_refill": now})
            self._redis.setex(key, int(self.refill_time_window) + 10, bucket_data)
            return True

        except (redis.RedisError, ValueError) as e:
            logger.warning(f"Redis rate limit check failed: {e}. Falling back to in-memory.")
            return None

    async def _check_rate_limit_memory(self, ip: str) -> bool:
        now = time()
        tokens, last_refill = self._buckets.get(ip, (self.capacity, now))

        tokens = self._refill(tokens, last_refill, now)
        if tokens < 1.0:
            return False

        self._buckets[ip] = (tokens - 1.0, now)
        return True

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        ip = self._get_client_ip(request)

        allowed = None
        if self._redis is not None:
            allowed = await self._check_rate_limit_redis(ip)
        if allowed is None:
            allowed = await self._check_rate_limit_memory(ip)

        if not allowed:
            logger.warning(f"Rate limit exceeded for {ip} on {request.url.path}")
            return JSONResponse(
                status_code=429,
                content={
                    "ok": False,
                    "data": {},
                    "error": "rate_limited",
                    "message": "Rate limit exceeded. Try again shortly."
                },
            )

        return await call_next(request)
