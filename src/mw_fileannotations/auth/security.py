"""
JWT Verification & Scope Enforcement

This module is responsible for:

1. Verifying viewer JWTs issued by the FileAnnotations wiki extension.
2. Enforcing scope-based authorization on edit routes.
3. Producing a `UserContext` for downstream routes, including an anonymous
   context for unauthenticated readers.

Security Model
--------------
- Incoming JWTs use a *different secret* from outbound service → wiki JWTs.
- Incoming JWTs represent viewer identity, language and permissions.
- Reading annotations does not require a token; editing does.
"""

from __future__ import annotations

import jwt
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import ValidationError

from ..config import settings
from .models import UserContext


# ---------------------------------------------------------------------
# Security Schemes
# ---------------------------------------------------------------------

security = HTTPBearer(auto_error=True)
optional_security = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class JWTVerificationError(RuntimeError):
    """Raised internally when token verification fails before converting to HTTP errors."""


# ---------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------

def _validate_jwt_config() -> None:
    if not settings.jwt_mw_to_fa_secret.get_secret_value():
        raise JWTVerificationError("Missing jwt_mw_to_fa_secret in configuration.")
    if not settings.jwt_algo:
        raise JWTVerificationError("Missing jwt_algo in configuration.")


def _decode_viewer_token(token: str) -> dict:
    """
    Decode and validate a JWT issued by the FileAnnotations extension.

    Raises
    ------
    Various JWT-related exceptions, which the public wrapper handles.
    """
    _validate_jwt_config()

    return jwt.decode(
        token,
        settings.jwt_mw_to_fa_secret.get_secret_value(),
        algorithms=[settings.jwt_algo],
        audience="mw-fileannotations",
        issuer="FileAnnotations",
        options={
            "require": ["iss", "aud", "iat", "exp", "user", "scope"],
        },
    )


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
    )


def _context_from_token(token: str) -> UserContext:
    try:
        payload = _decode_viewer_token(token)
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired.")
    except jwt.InvalidAudienceError:
        raise _unauthorized("Invalid token audience.")
    except jwt.InvalidIssuerError:
        raise _unauthorized("Invalid token issuer.")
    except jwt.InvalidTokenError:
        raise _unauthorized("Invalid or malformed token.")
    except JWTVerificationError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="JWT verification configuration error.",
        )

    username = payload.get("user")
    scopes = payload.get("scope")
    roles = payload.get("roles", [])

    if not username:
        raise _unauthorized("Token missing 'user' claim.")

    if not isinstance(scopes, list):
        raise _unauthorized("'scope' claim must be a list.")

    if not isinstance(roles, list):
        raise _unauthorized("'roles' claim must be a list.")

    try:
        return UserContext(
            username=username,
            language=payload.get("lang", settings.default_language),
            roles=roles,
            scopes=scopes,
            client_id=payload.get("client_id", "FileAnnotations"),
        )
    except ValidationError:
        raise _unauthorized("Token carries an invalid 'lang' claim.")


# ---------------------------------------------------------------------
# Public Authentication Dependencies
# ---------------------------------------------------------------------

def verify_viewer_jwt(
    creds: HTTPAuthorizationCredentials = Depends(security),
) -> UserContext:
    """
    Verify a viewer JWT and construct a UserContext.

    Expected claims:
      - iss: "FileAnnotations"
      - aud: "mw-fileannotations"
      - user: MediaWiki username
      - scope: list of granted operations
      - lang (optional): viewer interface language
      - roles (optional): list of MW user groups

    Raises
    ------
    HTTPException(401) for invalid or expired tokens.
    """
    return _context_from_token(creds.credentials)


def optional_viewer(
    lang: Optional[str] = Query(default=None, max_length=35),
    creds: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
) -> UserContext:
    """
    Resolve the viewer for read routes.

    A bearer token, when present, must be valid. Without one the reader is
    anonymous and the `lang` query parameter picks the language.
    """
    if creds is not None:
        return _context_from_token(creds.credentials)

    try:
        return UserContext(
            username="anonymous",
            language=lang or settings.default_language,
            client_id="anonymous",
        )
    except ValidationError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid 'lang' parameter.",
        )


# ---------------------------------------------------------------------
# Scope enforcement helper
# ---------------------------------------------------------------------

def require_scopes(*required_scopes: str) -> Callable:
    """
    Create a FastAPI dependency that enforces scope-based access control.

    Example:
        @router.post("/annotations/{title}")
        async def add(user = Depends(require_scopes("annotations_edit"))):
            ...
    """

    def check_scopes(
        user: UserContext = Depends(verify_viewer_jwt),
    ) -> UserContext:

        missing = [s for s in required_scopes if s not in user.scopes]

        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scope(s): {', '.join(missing)}",
            )

        return user

    return check_scopes
