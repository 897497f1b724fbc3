"""
FastAPI application entry point.

This module creates and configures the FastAPI application.
Using an application factory pattern (create_app function) because:
- Easier to test with different configurations
- Explicit about initialization order

For local development:
    uvicorn media_relay.main:app --reload

For production:
    gunicorn media_relay.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api.routes import health, media
from .config.settings import get_settings
from .infrastructure.storage.client import create_storage_client
from .infrastructure.whatsapp.media import create_http_client

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=get_settings().log_level.upper(),
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup creates the process-wide clients (storage connection pool,
    media download pool) and optionally provisions the bucket. Shutdown
    closes the HTTP pool. Requests only ever borrow these clients.
    """
    # Startup
    settings = get_settings()

    logger.info(
        "Media relay starting",
        extra={
            "version": __version__,
            "environment": settings.environment,
            "bucket": settings.s3_bucket,
            "mock_mode": settings.s3_mock_mode,
        }
    )

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )
        raise RuntimeError(f"Missing required configuration: {', '.join(missing_fields)}")

    storage_client = create_storage_client(
        config=settings.storage_config(),
        mock_mode=settings.s3_mock_mode,
    )
    if settings.s3_auto_create_bucket:
        await storage_client.ensure_bucket()

    app.state.storage_client = storage_client
    app.state.http_client = create_http_client(settings.fetch_timeout_seconds)

    logger.info(
        "Media relay ready",
        extra={"cors_origins": settings.cors_origins_list}
    )

    yield

    # Shutdown
    await app.state.http_client.aclose()
    app.state.http_client = None
    app.state.storage_client = None
    logger.info("Media relay shutting down")


def create_app() -> FastAPI:
    """
    Application factory.

    Creates and configures the FastAPI application.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=__version__,
        description="""
        Decrypts WhatsApp media into S3-compatible object storage.

        Send the media URL, base64 media key, MIME type and identity tags
        to `POST /v1/download-media`; the service downloads and decrypts
        the media, streams it into the bucket, and returns a signed URL.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    # Configure allowed origins via CORS_ORIGINS environment variable
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_methods=["POST"],
        allow_headers=["Content-Type"],
    )

    # Include routers
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        media.router,
        prefix=f"/{settings.api_version}",
        tags=["Media"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Report invalid request fields as 400 with the field errors."""
        errors = [
            {
                "field": ".".join(str(part) for part in error.get("loc", ())[1:]),
                "message": error.get("msg", ""),
            }
            for error in exc.errors()
        ]
        logger.info(
            "Rejected invalid request",
            extra={"path": request.url.path, "fields": [e["field"] for e in errors]}
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "errors": errors},
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all exception handler.

        Prevents stack traces from leaking to clients. We log the full
        error server-side but return a generic message.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "Internal server error",
            }
        )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": __version__,
        }
    )

    return app


# Create the application instance
# This is what uvicorn/gunicorn will import
app = create_app()


# For debugging/development
if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "media_relay.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
