"""Security utilities: JWT tokens, password hashing, and token revocation."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import bcrypt
import jwt
import redis
from jwt.exceptions import PyJWTError

from app.core.config import settings

logger = logging.getLogger(__name__)

# Revoked token JTIs when Redis is not configured (cleared on restart)
_memory_blacklist: Dict[str, datetime] = {}


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against a bcrypt hash."""
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            hashed_password.encode("utf-8"),
        )
    except ValueError as e:
        logger.warning(f"Password verification error: {e}")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token with a unique JTI for revocation support."""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))

    to_encode.update({
        "exp": expire,
        "iat": now,
        "jti": secrets.token_urlsafe(16),
    })
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT token, rejecting revoked tokens."""
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"require_exp": True},
        )
    except PyJWTError as e:
        logger.debug(f"JWT decode error: {e}")
        return None

    jti = payload.get("jti")
    if jti and is_token_blacklisted(jti):
        logger.debug(f"Token {jti} is blacklisted")
        return None
    return payload


def redis_client():
    if not settings.redis_url:
        return None
    return redis.from_url(settings.redis_url, socket_connect_timeout=2)


def blacklist_token(token: str) -> bool:
    """Revoke a token until its natural expiry.

    Stored in Redis with a matching TTL when configured, otherwise in memory.
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"require_exp": True, "verify_exp": False},
        )
    except PyJWTError:
        return False

    jti = payload.get("jti")
    if not jti:
        return False

    ttl = max(int(payload.get("exp", 0) - datetime.now(timezone.utc).timestamp()), 60)

    client = redis_client()
    if client is not None:
        try:
            client.setex(f"token_blacklist:{jti}", ttl, "1")
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis blacklist failed, using memory: {e}")

    _memory_blacklist[jti] = datetime.now(timezone.utc) + timedelta(seconds=ttl)
    return True


def is_token_blacklisted(jti: str) -> bool:
    """Check whether a token JTI has been revoked."""
    client = redis_client()
    if client is not None:
        try:
            return bool(client.get(f"token_blacklist:{jti}"))
        except redis.RedisError as e:
            logger.warning(f"Redis blacklist check failed: {e}")

    expiry = _memory_blacklist.get(jti)
    if expiry is None:
        return False
    if datetime.now(timezone.utc) < expiry:
        return True
    del _memory_blacklist[jti]
    return False


def request_token(request) -> str | None:
    """Raw JWT from ``Authorization: Bearer`` or the ``access_token`` cookie."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme == "Bearer" and token:
        return token
    return request.cookies.get("access_token") or None


def request_token_payload(request) -> dict[str, Any] | None:
    """Decoded request token, trying the cookie when the header token is rejected."""
    token = request_token(request)
    payload = decode_access_token(token) if token else None
    cookie = request.cookies.get("access_token")
    if payload is None and cookie and cookie != token:
        payload = decode_access_token(cookie)
    return payload
