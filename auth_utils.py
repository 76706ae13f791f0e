"""
Authentication utilities: argon2 password hashing and the session JWT
"""

import jwt
from datetime import datetime, timedelta, timezone
from passlib.context import CryptContext
from typing import Optional
from config import settings

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

# Session token: HS256, subject is the profile id, valid for 7 days
ALGORITHM = "HS256"
TOKEN_TTL_DAYS = 7
TOKEN_MAX_AGE_SECONDS = TOKEN_TTL_DAYS * 24 * 60 * 60
AUTH_COOKIE_NAME = "auth_token"
BEARER_PREFIX = "Bearer "


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """False for profiles without a stored hash."""
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def _secret_key(action: str) -> str:
    if not settings.jwt_secret_key:
        raise ValueError(f"JWT_SECRET_KEY is not set. Cannot {action} JWT token.")
    return settings.jwt_secret_key


def _encode(user_id: str, expires_at: datetime) -> str:
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "iat": min(now, expires_at), "exp": expires_at}
    return jwt.encode(payload, _secret_key("create"), algorithm=ALGORITHM)


def create_jwt(user_id: str) -> str:
    """Session token for a profile id."""
    return _encode(user_id, datetime.now(timezone.utc) + timedelta(days=TOKEN_TTL_DAYS))


def create_expired_jwt(user_id: str, expired_seconds_ago: int = 1) -> str:
    """Token that expired `expired_seconds_ago` seconds ago, used by the auth tests."""
    return _encode(user_id, datetime.now(timezone.utc) - timedelta(seconds=expired_seconds_ago))


def decode_jwt(token: str) -> Optional[dict]:
    """Claims of a valid token, None when expired or malformed."""
    secret = _secret_key("decode")
    try:
        return jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.InvalidTokenError:
        return None


def token_user_id(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    claims = decode_jwt(token)
    if not claims:
        return None
    return claims.get("sub") or None


def extract_token(auth_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    """Cookie first, then an `Authorization: Bearer` header."""
    if auth_token:
        return auth_token
    if authorization and authorization.startswith(BEARER_PREFIX):
        return authorization[len(BEARER_PREFIX):].strip() or None
    return None
