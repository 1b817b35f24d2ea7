"""Bearer token verification shared by HTTP routes and the realtime socket.

Tokens are issued by the account service; this module only verifies them.
"""

from __future__ import annotations

import os
from typing import cast

from typing_extensions import TypedDict

import jwt
from fastapi import HTTPException, Request, status
from jwt import ExpiredSignatureError, InvalidTokenError

__all__ = [
    "AccessTokenPayload",
    "TokenConfigurationError",
    "TokenValidationError",
    "decode_access_token",
    "extract_bearer_token",
    "get_token_context",
]


class TokenConfigurationError(RuntimeError):
    """Raised when token verification settings are missing."""


class TokenValidationError(ValueError):
    """Raised when the provided token cannot be validated."""


class _AccessTokenRequiredClaims(TypedDict):
    user_id: str


class AccessTokenPayload(_AccessTokenRequiredClaims, total=False):
    """Decoded JWT payload for an authenticated participant."""

    aud: str | list[str]
    email: str
    exp: int
    iat: int
    iss: str
    role: str
    roles: list[str]
    type: str


def _get_env(name: str, *, required: bool = True, default: str | None = None) -> str:
    """Fetch an environment variable with optional requirement enforcement.

    Args:
        name: Name of the environment variable to read.
        required: Whether to raise when the variable is missing or empty.
        default: Value to use when ``required`` is ``False`` and the variable is
            undefined.

    Returns:
        str: Stripped environment variable value or provided default.

    Raises:
        TokenConfigurationError: If ``required`` is ``True`` and the variable
            is missing or blank.
    """

    value = os.getenv(name, default)
    if required and (value is None or not value.strip()):
        raise TokenConfigurationError(
            f"Environment variable '{name}' must be set for token validation.",
        )
    if value is None:
        return ""
    return value.strip()


def decode_access_token(token: str) -> AccessTokenPayload:
    """Decode and validate an access token.

    Args:
        token: Encoded JWT from the ``Authorization`` header or socket handshake.

    Returns:
        AccessTokenPayload: Parsed payload containing at least ``user_id``.

    Raises:
        TokenConfigurationError: If mandatory environment configuration is missing.
        TokenValidationError: If token signature, claims, or expiry are invalid.
    """

    secret_key = _get_env("AUTH_TOKEN_SECRET")
    audience = _get_env("AUTH_TOKEN_AUDIENCE")
    issuer = _get_env("AUTH_TOKEN_ISSUER")
    algorithm = _get_env("AUTH_TOKEN_ALGORITHM", required=False, default="HS256")

    if not token:
        raise TokenValidationError("Access token is missing.")

    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[algorithm],
            audience=audience,
            issuer=issuer,
            options={"require": ["exp", "aud", "iss"]},
        )
    except ExpiredSignatureError as exc:
        raise TokenValidationError("Access token has expired.") from exc
    except InvalidTokenError as exc:
        raise TokenValidationError("Access token is invalid.") from exc

    if not payload.get("user_id"):
        raise TokenValidationError("Access token payload must include 'user_id'.")
    type_claim = payload.get("type")
    if type_claim and type_claim != "access":
        raise TokenValidationError("Token must be an access token.")

    payload["user_id"] = str(payload["user_id"])
    return cast(AccessTokenPayload, payload)


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the credential of a ``Bearer`` authorization value, if any."""

    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if not credentials or scheme.lower() != "bearer":
        return None
    return credentials.strip()


async def get_token_context(request: Request) -> AccessTokenPayload:
    """Extract the caller's token payload from the ``Authorization`` header.

    Raises:
        HTTPException: With status ``401`` when the header is missing or invalid,
            or ``500`` if token verification is not configured.
    """

    authorization = request.headers.get("Authorization")
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access denied. No token provided.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    credentials = extract_bearer_token(authorization)
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must use Bearer scheme.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_access_token(credentials)
    except TokenConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    except TokenValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
