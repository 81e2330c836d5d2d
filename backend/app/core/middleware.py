"""HTTP middleware: auth enforcement, security headers, request and audit logging."""

import logging
import re
import time

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings
from app.core.security import request_token_payload
from app.services.audit_service import METHOD_ACTIONS, entity_from_path, log_action

API_PREFIX = settings.api_v1_prefix

request_logger = logging.getLogger("requests")

# Open to everyone, whatever the method
ALWAYS_PUBLIC = (
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/ws/",
    f"{API_PREFIX}/auth/login",
    f"{API_PREFIX}/auth/register",
)

# Customer menu browsing
PUBLIC_READS = (
    f"{API_PREFIX}/categories",
    f"{API_PREFIX}/menu-items",
    f"{API_PREFIX}/modifiers",
    f"{API_PREFIX}/offers",
    f"{API_PREFIX}/promotions/active",
    f"{API_PREFIX}/tax-settings",
    f"{API_PREFIX}/site-settings",
)

# Customer checkout, matched exactly
PUBLIC_POSTS = frozenset({
    f"{API_PREFIX}/orders",
    f"{API_PREFIX}/promotions/validate",
    f"{API_PREFIX}/qrcodes/scan",
})

# Review submission for any menu item
PUBLIC_POST_PATTERNS = (re.compile(rf"^{re.escape(API_PREFIX)}/menu-items/\d+/reviews/?$"),)

QUIET_PATHS = frozenset({"/", "/health", "/docs", "/openapi.json"})


def is_public_path(method: str, path: str) -> bool:
    """True when ``method path`` can be called without a token."""
    if path == "/" or path.startswith(ALWAYS_PUBLIC):
        return True
    if method == "GET":
        return path.startswith(PUBLIC_READS)
    if method == "POST":
        return path.rstrip("/") in PUBLIC_POSTS or any(p.match(path) for p in PUBLIC_POST_PATTERNS)
    return False


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class HTTPSRedirectMiddleware(BaseHTTPMiddleware):
    """Send plain-HTTP traffic seen by the reverse proxy to HTTPS."""

    async def dispatch(self, request: Request, call_next):
        if request.headers.get("x-forwarded-proto") == "http":
            return RedirectResponse(url=str(request.url.replace(scheme="https")), status_code=301)
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        connect_src = " ".join(["'self'", "ws:", "wss:", *settings.cors_origins_list])
        response.headers.update({
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Content-Security-Policy": (
                "default-src 'self'; img-src 'self' data: blob:; "
                f"style-src 'self' 'unsafe-inline'; connect-src {connect_src}"
            ),
        })
        return response


class AuthEnforcementMiddleware(BaseHTTPMiddleware):
    """Reject API calls without a valid token unless the path is public.

    Roles are checked later by the route dependencies; this layer only makes
    sure a forgotten dependency never exposes an admin endpoint.
    """

    async def dispatch(self, request: Request, call_next):
        path, method = request.url.path, request.method
        if method == "OPTIONS" or not path.startswith(f"{API_PREFIX}/") or is_public_path(method, path):
            return await call_next(request)

        payload = request_token_payload(request) or {}
        if not (payload.get("sub") and payload.get("username") and payload.get("role")):
            return JSONResponse(
                status_code=401,
                content={"detail": "Authentication required"},
                headers={"WWW-Authenticate": "Bearer"},
            )
        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        line = f"{request.method} {request.url.path}"
        try:
            response = await call_next(request)
        except Exception as e:
            request_logger.error(
                f"{line} - Exception: {e} - Time: {time.perf_counter() - started:.3f}s - Client: {_client_ip(request)}"
            )
            raise

        request_logger.log(
            logging.WARNING if response.status_code >= 400 else logging.INFO,
            f"{line} - Status: {response.status_code} - "
            f"Time: {time.perf_counter() - started:.3f}s - Client: {_client_ip(request)}",
        )
        return response


class AuditLoggingMiddleware(BaseHTTPMiddleware):
    """Write an audit entry for each successful POST/PUT/PATCH/DELETE under the API.

    Login and registration are skipped here; the auth routes record them
    with the attempted username.
    """

    SKIPPED = (f"{API_PREFIX}/auth/login", f"{API_PREFIX}/auth/register")

    async def dispatch(self, request: Request, call_next):
        path, method = request.url.path, request.method
        response = await call_next(request)

        if (
            method not in METHOD_ACTIONS
            or not path.startswith(f"{API_PREFIX}/")
            or path.startswith(self.SKIPPED)
            or not 200 <= response.status_code < 300
        ):
            return response

        payload = request_token_payload(request) or {}
        entity_type, entity_id = entity_from_path(path, API_PREFIX)
        log_action(
            action=METHOD_ACTIONS[method],
            entity_type=entity_type[:50],
            entity_id=entity_id,
            user_id=int(payload.get("sub", 0)) or None,
            user_name=str(payload.get("username", ""))[:200],
            ip_address=_client_ip(request),
            details={"method": method, "path": path, "status_code": response.status_code},
        )
        return response
