"""
Kurator - curator and contact management

FastAPI application entry point with security hardening.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from starlette.middleware.base import BaseHTTPMiddleware

from kurator import __version__
from kurator.config import settings
from kurator.db.orm import Base
from kurator.security.encryption import FieldEncryption, MisconfiguredKeyError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Rate limiter
limiter = Limiter(key_func=get_remote_address, default_limits=[
    f"{settings.rate_limit_requests}/{settings.rate_limit_window_seconds}seconds"
])


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject oversized request bodies before they are read."""

    MAX_BODY_SIZE = 1 * 1024 * 1024  # 1MB

    # Per-endpoint limits (path prefix -> max bytes)
    ENDPOINT_LIMITS = {
        "/api/v1/auth": 1 * 1024,  # 1KB for auth endpoints
    }

    async def dispatch(self, request: Request, call_next) -> Response:
        max_size = self.MAX_BODY_SIZE
        for prefix, limit in self.ENDPOINT_LIMITS.items():
            if request.url.path.startswith(prefix):
                max_size = limit
                break

        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > max_size:
            return JSONResponse(
                status_code=413,
                content={
                    "error": "Request entity too large",
                    "message": f"Request body exceeds maximum size of {max_size // 1024}KB",
                    "max_size_bytes": max_size,
                },
            )

        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers["Cache-Control"] = "no-store"

        # HSTS (only in production with HTTPS)
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        if "server" in response.headers:
            del response.headers["server"]

        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log requests for security auditing."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID", f"req_{int(time.time() * 1000)}")

        # Never log headers or bodies: they carry tokens and personal data
        logger.info(
            f"Request: {request.method} {request.url.path} "
            f"[{request_id}] from {request.client.host if request.client else 'unknown'}"
        )

        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(process_time)

        logger.info(
            f"Response: {request.method} {request.url.path} "
            f"[{request_id}] status={response.status_code} time={process_time:.3f}s"
        )

        return response


# Database engine and session factory
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    logger.info("Starting Kurator...")

    if settings.create_schema_on_startup:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema created")

    app.state.db_session = async_session

    # The key is read once; a missing key only fails the requests that encrypt
    app.state.field_encryption = FieldEncryption(settings.field_encryption_key)
    if not app.state.field_encryption.configured:
        logger.warning("FIELD_ENCRYPTION_KEY not configured; writes of protected fields will fail")

    logger.info("Kurator started successfully")

    yield

    logger.info("Shutting down Kurator...")
    await engine.dispose()
    logger.info("Kurator shutdown complete")


app = FastAPI(
    title="Kurator",
    description="Curator and contact management with block-scoped access",
    version=__version__,
    lifespan=lifespan,
    # Disable docs in production
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
    openapi_url="/openapi.json" if not settings.is_production else None,
)

# Rate limiting
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(RequestSizeLimitMiddleware)

# Security headers middleware (must be added before CORS)
app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID", "X-Process-Time"],
    max_age=600,
)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "message": "Too many requests. Please try again later.",
            "retry_after": exc.detail,
        },
        headers={"Retry-After": str(exc.detail)},
    )


@app.exception_handler(MisconfiguredKeyError)
async def misconfigured_key_handler(request: Request, exc: MisconfiguredKeyError) -> JSONResponse:
    """Writes of encrypted fields are refused while no key is configured."""
    logger.error(f"Encryption unavailable for {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={
            "error": "Service unavailable",
            "message": "Field encryption is not configured",
        },
    )


@app.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """
    Health check endpoint.

    Reports database reachability and whether field encryption is configured.
    A missing encryption key degrades the status but never fails the check.
    """
    health_status: dict[str, Any] = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__,
        "services": {},
    }

    try:
        async with request.app.state.db_session() as session:
            await session.execute(text("SELECT 1"))
        health_status["services"]["database"] = {"status": "healthy"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["services"]["database"] = {"status": "unhealthy"}
        health_status["status"] = "degraded"

    encryption = getattr(request.app.state, "field_encryption", None)
    configured = encryption is not None and encryption.configured
    health_status["services"]["field_encryption"] = {"configured": configured}
    if not configured:
        health_status["status"] = "degraded"

    return health_status


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "name": "Kurator",
        "description": "Curator and contact management",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions securely."""
    logger.exception(f"Unhandled exception: {exc}")

    # Never expose internal error details in production
    if settings.is_production:
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred. Please contact support.",
            },
        )

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc),
            "type": type(exc).__name__,
        },
    )


# Import and include routers
from kurator.api.routes import (  # noqa: E402
    audit_router,
    auth_router,
    blocks_router,
    contacts_router,
    dashboard_router,
    faq_router,
    interactions_router,
    references_router,
    users_router,
    watchlist_router,
)

app.include_router(auth_router, prefix="/api/v1", tags=["authentication"])
app.include_router(users_router, prefix="/api/v1/users", tags=["users"])
app.include_router(blocks_router, prefix="/api/v1/blocks", tags=["blocks"])
app.include_router(contacts_router, prefix="/api/v1/contacts", tags=["contacts"])
app.include_router(interactions_router, prefix="/api/v1/interactions", tags=["interactions"])
app.include_router(watchlist_router, prefix="/api/v1/watchlist", tags=["watchlist"])
app.include_router(references_router, prefix="/api/v1/references", tags=["references"])
app.include_router(faq_router, prefix="/api/v1/faq", tags=["faq"])
app.include_router(dashboard_router, prefix="/api/v1/dashboard", tags=["dashboard"])
app.include_router(audit_router, prefix="/api/v1/audit", tags=["audit"])
