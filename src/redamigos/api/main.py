"""Main FastAPI application for the Red de Amigos API."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from redamigos import __version__
from redamigos.api.rate_limit import limiter
from redamigos.api.v1.auth import router as auth_router
from redamigos.api.v1.referral import router as referral_router
from redamigos.api.v1.referrals import router as referrals_router
from redamigos.api.v1.reports import router as reports_router
from redamigos.errors import (
    AuthError,
    CampaignError,
    ConflictError,
    GenerationCollision,
    GenerationExhausted,
    ImmutableRecordError,
    NotFoundError,
    OrphanedIdentity,
    TransientError,
    ValidationError,
)
from redamigos.logging_config import configure_logging, get_logger
from redamigos.settings import settings
from redamigos.storage.db import db

logger = get_logger(__name__)

# Most specific class first
ERROR_STATUS: list[tuple[type[CampaignError], int]] = [
    (ValidationError, 422),
    (ConflictError, 409),
    (ImmutableRecordError, 409),
    (NotFoundError, 404),
    (AuthError, 401),
    (TransientError, 503),
    (GenerationExhausted, 503),
    (GenerationCollision, 503),
    (OrphanedIdentity, 500),
]


def status_for(error: CampaignError) -> int:
    for error_class, status_code in ERROR_STATUS:
        if isinstance(error, error_class):
            return status_code
    return 400


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        # Prevent clickjacking - don't allow embedding in iframes
        response.headers["X-Frame-Options"] = "DENY"

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        # Referrer Policy - share links must not leak to other sites
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "img-src 'self' data: https:; "
            "style-src 'self' 'unsafe-inline'"
        )

        response.headers["Permissions-Policy"] = "camera=(), geolocation=(), microphone=(), payment=()"

        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    configure_logging()
    logger.info("app_starting", env=settings.env)

    # Initialize database tables
    db.create_tables()

    yield

    logger.info("app_shutting_down")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI app
    """
    # Hide API docs in production
    is_production = settings.env == "production"

    app = FastAPI(
        title="Red de Amigos API",
        description="Referral network tracking for campaign volunteers",
        version=__version__,
        docs_url=None if is_production else "/api/docs",
        redoc_url=None if is_production else "/api/redoc",
        openapi_url=None if is_production else "/api/openapi.json",
        lifespan=lifespan,
    )

    # Security Headers middleware (must be added before CORS)
    app.add_middleware(SecurityHeadersMiddleware)

    # CORS middleware - never allow wildcard in production
    allowed_origins = [
        origin.strip()
        for origin in settings.allowed_origins.split(",")
        if origin.strip()
    ]
    if is_production and "*" in allowed_origins:
        logger.error("cors_wildcard_blocked", message="Wildcard CORS not allowed in production")
        allowed_origins = []

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
        max_age=3600,
    )

    # Rate limiting (shared instance from rate_limit module)
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many requests. Please try again later."},
        )

    @app.exception_handler(CampaignError)
    async def campaign_error_handler(request: Request, exc: CampaignError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=type(exc).__name__, message=exc.message)
        else:
            logger.info("request_rejected", path=request.url.path, error=type(exc).__name__, status=status_code)
        return JSONResponse(status_code=status_code, content={"detail": exc.message})

    # Include v1 API routers
    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(referrals_router, prefix="/api/v1")
    app.include_router(referral_router, prefix="/api/v1")
    app.include_router(reports_router, prefix="/api/v1")

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "env": settings.env,
        }

    return app


# Create app instance
app = create_app()
