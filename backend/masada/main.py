"""
Masada API application.

`app` is what uvicorn serves (see `main`); tests import it directly. Tables
are created at startup and the maintenance loop runs for the lifetime of
the process.
"""
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Tuple
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from masada.core.config import settings
from masada.core.database import init_db, close_db
from masada.core.error_handlers import register_exception_handlers
from masada.core.logging_config import logger
from masada.core.middleware import (
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    RequestSizeLimitMiddleware,
)
from masada.core.rate_limiter import limiter, rate_limit_exceeded_handler
from masada.api.v1.router import api_router
from masada.services.email_service import email_service
from masada.services.maintenance import maintenance_scheduler

STARTED_AT = time.monotonic()

INSECURE_SECRETS = {"", "CHANGE_ME", "changeme", "secret"}
MIN_SECRET_LENGTH = 32


def check_config() -> Tuple[List[str], List[str]]:
    """
    (errors, warnings) for the settings the API cannot run safely without.

    Missing or weak database and JWT settings are errors in production and
    warnings everywhere else.
    """
    problems = []
    if not settings.DATABASE_URL:
        problems.append("DATABASE_URL is not set")
    for name in ("JWT_SECRET_KEY", "JWT_REFRESH_SECRET_KEY"):
        value = getattr(settings, name)
        if value in INSECURE_SECRETS:
            problems.append(f"{name} is not set or using default value")
        elif len(value) < MIN_SECRET_LENGTH:
            problems.append(f"{name} must be at least {MIN_SECRET_LENGTH} characters")

    warnings = []
    if not email_service.is_configured:
        warnings.append("SMTP credentials not set, emails will be logged instead of sent")
    if settings.is_production and "sqlite" in settings.DATABASE_URL:
        warnings.append("SQLite database used in production")

    if settings.is_production:
        return problems, warnings
    return [], problems + warnings


def validate_critical_config() -> None:
    """Refuse to start in production on a missing database URL or weak JWT secrets"""
    errors, warnings = check_config()
    for message in errors:
        logger.critical(f"[Startup] {message}")
    if errors:
        raise RuntimeError(f"Missing critical configuration: {', '.join(errors)}")
    for message in warnings:
        logger.warning(f"[Startup] {message}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"Starting {settings.APP_NAME} {settings.APP_VERSION} "
        f"(environment={settings.ENVIRONMENT}, api={settings.API_VERSION})"
    )
    validate_critical_config()

    await init_db()
    settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    await maintenance_scheduler.start()
    logger.info("[Startup] Ready")

    try:
        yield
    finally:
        logger.info(f"Shutting down {settings.APP_NAME}")
        await maintenance_scheduler.stop()
        await close_db()


def add_middleware(app: FastAPI) -> None:
    # Starlette runs the last added middleware first, so CORS wraps everything
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestSizeLimitMiddleware, max_size=settings.MAX_REQUEST_SIZE)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Response-Time"],
    )


async def health_check():
    return {
        "status": "OK",
        "timestamp": datetime.utcnow().isoformat(),
        "environment": settings.ENVIRONMENT,
        "version": settings.APP_VERSION,
        "uptime": round(time.monotonic() - STARTED_AT, 2),
    }


async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/health",
        "api": f"/api/{settings.API_VERSION}",
    }


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.APP_NAME,
        description="Usability testing marketplace connecting Ethiopian testers with product teams",
        version=settings.APP_VERSION,
        lifespan=lifespan,
        redirect_slashes=False,
    )

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    register_exception_handlers(application)
    add_middleware(application)

    application.add_api_route("/health", health_check, methods=["GET"], tags=["Health"])
    application.add_api_route("/", root, methods=["GET"], tags=["Root"])
    application.include_router(api_router, prefix=f"/api/{settings.API_VERSION}")
    return application


app = create_app()


def main():
    """Console entry point: serve the API with uvicorn"""
    import uvicorn
    uvicorn.run(
        "masada.main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    main()
