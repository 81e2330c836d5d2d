"""FastAPI application entry point."""

import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from app.api.routes import api_router, websocket_endpoints
from app.core.config import settings
from app.core.middleware import (
    AuditLoggingMiddleware,
    AuthEnforcementMiddleware,
    HTTPSRedirectMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from app.core.rate_limit import limiter
from app.core.security import redis_client
from app.db import session as db_session
from app.db.base import Base
from app.services.websocket_service import ws_manager

VERSION = "1.0.0"


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record):
        return json.dumps({
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        })


def configure_logging():
    handler = logging.StreamHandler(sys.stdout)
    if settings.debug:
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    else:
        handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level))


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.restaurant_name} API")
    # No migrations: tables come straight from the model metadata
    Base.metadata.create_all(bind=db_session.engine)
    yield
    logger.info(f"Shutting down {settings.restaurant_name} API")


app = FastAPI(
    title=f"{settings.restaurant_name} API",
    description="Restaurant ordering and administration backend",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Starlette runs middleware in reverse order of registration, so CORS goes
# last to decorate every response, including 401s from auth enforcement.
if not settings.debug:
    app.add_middleware(HTTPSRedirectMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(AuthEnforcementMiddleware)
app.add_middleware(AuditLoggingMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Requested-With"],
    max_age=600,
)

app.include_router(api_router, prefix=settings.api_v1_prefix)
app.include_router(websocket_endpoints.router)


@app.get("/")
def root():
    return {"message": f"{settings.restaurant_name} API", "docs": "/docs", "health": "/health"}


@app.get("/health")
def health_check():
    """Liveness check."""
    return {"status": "healthy", "version": VERSION}


def _check_database() -> str:
    db = db_session.SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return "unhealthy"
    finally:
        db.close()


def _check_redis() -> str:
    client = redis_client()
    if client is None:
        return "not configured"
    try:
        client.ping()
        return "healthy"
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return "unhealthy"


@app.get("/health/ready")
def readiness_check():
    """Readiness check: database, Redis (when configured) and the WebSocket manager."""
    checks = {
        "database": _check_database(),
        "redis": _check_redis(),
        "websocket_manager": f"healthy ({ws_manager.get_connection_count()} connections)",
    }
    ready = all(value.startswith("healthy") or value == "not configured" for value in checks.values())
    return {
        "status": "ready" if ready else "degraded",
        "version": VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
