"""
JWT Utility Functions

Helpers for generating short-lived JWT tokens used for server → wiki calls
(reading annotation documents, rendering markup, saving edits). These are
server-to-server credentials, not user tokens.
"""

from __future__ import annotations

import jwt
import time
from typing import List, Dict, Any, Optional

from ..config import settings


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class JWTConfigurationError(RuntimeError):
    """Raised when JWT generation cannot proceed due to configuration issues."""


# ---------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------

def _get_current_timestamp() -> int:
    """Return current UNIX timestamp in UTC as integer seconds."""
    return int(time.time())


def _validate_jwt_config() -> None:
    if not settings.jwt_fa_to_mw_secret.get_secret_value():
        raise JWTConfigurationError(
            "jwt_fa_to_mw_secret is not configured. Cannot generate JWT."
        )

    if settings.jwt_ttl_seconds <= 0:
        raise JWTConfigurationError(
            f"jwt_ttl_seconds must be a positive integer; got {settings.jwt_ttl_seconds}"
        )


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def create_fa_to_mw_jwt(scopes: List[str], acting_user: Optional[str] = None) -> str:
    """
    Generate a short-lived JWT for service → wiki communication.

    Parameters
    ----------
    scopes : List[str]
        Granted scopes, e.g. ["page_read"], ["page_write"].

    acting_user : Optional[str]
        Username an edit is performed on behalf of. Omitted for reads.

    Returns
    -------
    str
        Encoded JWT for an `Authorization: Bearer <token>` header.

    Raises
    ------
    JWTConfigurationError
        If configuration is missing or invalid.
    """
    _validate_jwt_config()

    now = _get_current_timestamp()

    payload: Dict[str, Any] = {
        "iss": "mw-fileannotations",
        "aud": "FileAnnotations",
        "iat": now,
        "exp": now + settings.jwt_ttl_seconds,
        "scope": scopes,
    }
    if acting_user:
        payload["user"] = acting_user

    secret = settings.jwt_fa_to_mw_secret.get_secret_value()
    algo = settings.jwt_algo

    try:
        token = jwt.encode(payload, secret, algorithm=algo)
    except Exception as exc:
        raise JWTConfigurationError(
            f"Failed to generate JWT: {type(exc).__name__}: {str(exc)}"
        ) from exc

    return token
