"""Session tokens (HS256) for Content OS callers."""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ISSUER = "contentos"
DEFAULT_SECRET = "test-secret-key-do-not-use"
_REQUIRED_CLAIMS = ["sub", "exp", "iss"]


class TokenExpiredError(Exception):
    """Raised when a session token is past its expiry."""


class TokenInvalidError(Exception):
    """Raised for tokens that are malformed, forged, or missing claims."""


def get_secret() -> str:
    return os.environ.get("CONTENTOS_JWT_SECRET", DEFAULT_SECRET)


def create_token(user_id: str, exp_minutes: int = 60, *, secret: str | None = None) -> str:
    """Issue a session token for ``user_id``.

    Only the subject is encoded; the caller's role is read from the store
    each time the token is resolved.
    """
    issued = datetime.now(UTC)
    claims = {
        "sub": user_id,
        "iss": ISSUER,
        "iat": issued,
        "exp": issued + timedelta(minutes=exp_minutes),
    }
    return jwt.encode(claims, secret or get_secret(), algorithm=ALGORITHM)


def verify_token(token: str, secret: str) -> dict[str, Any]:
    """Decode a session token, checking signature, expiry and issuer."""
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            issuer=ISSUER,
            options={"require": _REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenExpiredError("Token has expired") from e
    except jwt.MissingRequiredClaimError as e:
        logger.warning("Token rejected, missing claim %s", e.claim)
        raise TokenInvalidError(f"Token missing {e.claim} claim") from e
    except jwt.InvalidTokenError as e:
        logger.warning("Token rejected: %s", e)
        raise TokenInvalidError("Token is invalid") from e
