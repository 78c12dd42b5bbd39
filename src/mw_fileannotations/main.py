"""
File Annotations Service Entry Point

This module defines the FastAPI application instance, registers all routers,
configures global exception handling, and provides a test-friendly application
factory.
"""

from __future__ import annotations

import logging
from fastapi import FastAPI

from .config import settings
from .core.errors import (
    InvalidAnnotationIndex,
    MediaWikiRequestError,
    MediaWikiResponseError,
    invalid_index_handler,
    mediawiki_error_handler,
    unhandled_exception_handler,
)

from .api import (
    annotation_routes,
    health_routes,
)
from .api.dependencies import get_http_client, get_redis_client


logger = logging.getLogger("fa.app")


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    app = FastAPI(
        title="mw-fileannotations",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # --------------------------------------------------------------
    # Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(MediaWikiRequestError, mediawiki_error_handler)
    app.add_exception_handler(MediaWikiResponseError, mediawiki_error_handler)
    app.add_exception_handler(InvalidAnnotationIndex, invalid_index_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(annotation_routes.router)

    # --------------------------------------------------------------
    # Startup Validation Hook
    # --------------------------------------------------------------

    @app.on_event("startup")
    async def _startup_validation() -> None:
        """
        Fail-fast validation at application startup.
        """
        logger.info("Starting mw-fileannotations (cache backend: %s)", settings.cache_backend)

        if not settings.jwt_fa_to_mw_secret.get_secret_value():
            raise RuntimeError("jwt_fa_to_mw_secret must be configured")
        if not settings.jwt_mw_to_fa_secret.get_secret_value():
            raise RuntimeError("jwt_mw_to_fa_secret must be configured")
        if settings.cache_min_ttl > settings.cache_max_ttl:
            logger.warning(
                "cache_min_ttl (%d) exceeds cache_max_ttl (%d); changed values use the maximum",
                settings.cache_min_ttl,
                settings.cache_max_ttl,
            )

        logger.info("Configuration validated successfully")

    # --------------------------------------------------------------
    # Shutdown Hook
    # --------------------------------------------------------------

    @app.on_event("shutdown")
    async def _shutdown_cleanup() -> None:
        """
        Close the shared HTTP client and, if used, the Redis connection.
        """
        logger.info("Shutting down mw-fileannotations")
        await get_http_client().aclose()
        if settings.cache_backend == "redis":
            await get_redis_client().aclose()

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
