"""
Error Taxonomy and Global Error Handling

This module defines the exception hierarchy shared by the annotation
enrichment core, and the application-wide exception handlers registered on
the FastAPI app.

Recovery Model
--------------
- ClassificationFailure : malformed rendered fragment, treated as no match
- FetchFailure          : remote transport error or non-2xx, rendered as an
                          empty enrichment block and never cached
- PartialDataFailure    : expected field absent, the item is skipped and
                          the renderer leaves its block out
- CacheBackendFailure   : cache store unavailable, coordinator computes
                          without the cache

None of these are fatal to a batch. Only errors raised on the edit routes
(host wiki failures, bad indexes) reach the client.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("fa.errors")


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class FileAnnotationsError(RuntimeError):
    """Base exception for the file annotations service."""


class ClassificationFailure(FileAnnotationsError):
    """Raised when a rendered fragment cannot be parsed for classification."""


class FetchFailure(FileAnnotationsError):
    """Raised when a remote data provider cannot be reached or answers non-2xx."""

    def __init__(self, reason: str, status: Optional[int] = None) -> None:
        super().__init__(f"{reason} (HTTP {status})" if status is not None else reason)
        self.reason = reason
        self.status = status


class PartialDataFailure(FileAnnotationsError):
    """Raised when a remote payload lacks a field a renderer needs."""


class CacheBackendFailure(FileAnnotationsError):
    """Raised by cache stores when the backing store is unavailable."""


class MediaWikiRequestError(FileAnnotationsError):
    """Raised when the host wiki API cannot be reached or answers non-2xx."""


class MediaWikiResponseError(FileAnnotationsError):
    """Raised when the host wiki API returns an `error` object."""

    def __init__(self, code: str, info: str = "") -> None:
        super().__init__(f"{code}: {info}" if info else code)
        self.code = code
        self.info = info


class InvalidAnnotationIndex(FileAnnotationsError):
    """Raised when an edit targets an annotation index that does not exist."""


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Logs the full stack trace internally and returns a generic 500 with no
    internal details.
    """
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )


async def mediawiki_error_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Map host wiki failures on edit routes to a 502.

    The wiki's error code is passed through because the editing UI shows it
    (e.g. `protectedpage`, `badtoken`).
    """
    logger.warning(
        "Host wiki failure during request: %s %s (%s)",
        request.method,
        request.url.path,
        exc,
    )

    code = getattr(exc, "code", type(exc).__name__)
    return JSONResponse(
        status_code=502,
        content={"error": "mediawiki_error", "detail": code},
    )


async def invalid_index_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"error": "annotation_not_found", "detail": str(exc)},
    )
