"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from fileswift.api.router import api_router
from fileswift.config import Settings, get_settings
from fileswift.errors import UploadServiceError
from fileswift.rate_limit import UploadRateLimitMiddleware, limiter
from fileswift.services.container import UploadServices, build_services

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan handler for startup/shutdown events."""
    services: UploadServices = app.state.services
    settings = services.settings
    logger.info(f"Starting {settings.app_name} v{settings.app_version} ({settings.environment})")

    for path in (settings.chunk_root, settings.assembled_root):
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Upload directory {path} unavailable: {e}")

    logger.info(
        f"Upload rate limit: {services.limiter.limit} requests per "
        f"{services.limiter.window_seconds}s per client"
    )
    services.sweeper.start()
    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application")
    await services.sweeper.stop()
    try:
        from fileswift.services.redis_manager import close_all_async
        await close_all_async()
        logger.info("Async Redis connection pool closed")
    except Exception as e:
        logger.warning(f"Error closing async Redis pool: {e}")


async def upload_error_handler(request: Request, exc: UploadServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
    message = "Invalid request"
    if fields:
        message = f"Invalid or missing field(s): {', '.join(f for f in fields if f)}"
    return JSONResponse(status_code=400, content={"error": message, "code": "INVALID_REQUEST"})


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[UploadServices] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if services is None:
        services = build_services(settings or get_settings())
    settings = services.settings

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Resumable chunked uploads and job submission for file-processing tools.",
        lifespan=lifespan,
    )
    app.state.services = services

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(UploadServiceError, upload_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.add_middleware(UploadRateLimitMiddleware)

    # CORS middleware, configurable via CORS_ORIGINS env variable (comma-separated)
    default_origins = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]
    extra_origins = [
        o.strip() for o in settings.cors_origins.split(",") if o.strip()
    ] if settings.cors_origins else []
    app.add_middleware(
        CORSMiddleware,
        allow_origins=default_origins + extra_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", settings.rate_limit_bypass_header],
        expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "Content-Disposition"],
    )

    app.include_router(api_router)

    @app.get("/")
    async def root() -> dict:
        """Root endpoint returning API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
        }

    return app


app = create_app()
