"""Main FastAPI application for Stream Control."""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.api_v1.auth import router as auth_router
from src.api_v1.channels import router as channels_router
from src.api_v1.moderation import router as moderation_router
from src.api_v1.twitch_oauth import router as twitch_oauth_router
from src.core.config import Settings, get_settings
from src.core.exceptions import (
    AuthError,
    AuthErrorReason,
    ConfigError,
    CryptoError,
    ProviderError,
    ValidationError,
)
from src.core.logging_config import configure_logging, trace_id_ctx
from src.core.models.db_helper import db_helper
from src.core.services.cipher import TokenCipher
from src.core.services.security import SessionAuthenticator
from src.core.services.token_manager import TokenManager
from src.core.services.twitch_oauth_service import TwitchOAuthService

# Configure logging based on environment settings early during startup
settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events for the application.
    """
    logger.info("Starting %s...", settings.app_name)

    try:
        async with db_helper.engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection successful")
    except Exception as e:
        logger.error("Failed to connect to database: %s", e)
        raise

    logger.info("%s started on %s:%s", settings.app_name, settings.host, settings.port)

    yield

    logger.info("Shutting down %s...", settings.app_name)
    await db_helper.dispose()
    logger.info("Database connections closed")


def build_services(app: FastAPI, settings: Settings) -> None:
    """Build the process-wide collaborators once and park them on ``app.state``.

    Raises ``ConfigError`` when key material is missing or malformed.
    """
    cipher = TokenCipher.from_hex(settings.encryption.key)
    authenticator = SessionAuthenticator(
        settings.secret_key,
        algorithm=settings.jwt.algorithm,
        default_ttl=timedelta(minutes=settings.jwt.expire_minutes),
    )
    twitch = TwitchOAuthService(settings.twitch)

    app.state.token_cipher = cipher
    app.state.session_authenticator = authenticator
    app.state.twitch_oauth = twitch
    app.state.token_manager = TokenManager(db_helper.session_factory, cipher, twitch)


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Twitch channel connections, token refresh and moderation audit log",
        debug=settings.debug,
        lifespan=lifespan,
    )
    build_services(app, settings)

    # ========================================
    # Middleware
    # ========================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def trace_id_middleware(request: Request, call_next):
        trace_id = request.headers.get("X-Trace-Id") or str(uuid.uuid4())
        request.state.trace_id = trace_id
        token = trace_id_ctx.set(trace_id)
        try:
            response = await call_next(request)
        finally:
            trace_id_ctx.reset(token)
        response.headers["X-Trace-Id"] = trace_id
        return response

    # ========================================
    # Routers
    # ========================================

    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(twitch_oauth_router, prefix="/api/v1")
    app.include_router(channels_router, prefix="/api/v1")
    app.include_router(moderation_router, prefix="/api/v1")

    # ========================================
    # Root Endpoints
    # ========================================

    @app.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "status": "running",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health():
        """Health status of the application and its dependencies."""
        try:
            async with db_helper.engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            db_status = "healthy"
        except Exception as e:
            logger.error("Database health check failed: %s", e)
            db_status = "unhealthy"

        overall_status = "healthy" if db_status == "healthy" else "degraded"
        return {"status": overall_status, "services": {"database": db_status}}

    # ========================================
    # Exception Handlers
    # ========================================

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc), "type": "validation_error"},
        )

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        if exc.reason is AuthErrorReason.FORBIDDEN:
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"detail": str(exc), "type": "forbidden"},
            )
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": str(exc), "type": f"auth_{exc.reason.value}"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(ProviderError)
    async def provider_error_handler(request: Request, exc: ProviderError):
        logger.warning("Provider error: %s (status=%s)", exc, exc.status_code)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": "Twitch rejected the request; reconnect the channel", "type": "needs_reconnect"},
        )

    @app.exception_handler(CryptoError)
    async def crypto_error_handler(request: Request, exc: CryptoError):
        logger.error("Stored credential failed authentication on %s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error", "type": "internal_error"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error", "type": "internal_error"},
        )

    return app


try:
    app = create_app()
except ConfigError as exc:
    logger.critical("Refusing to start: %s", exc)
    raise


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
