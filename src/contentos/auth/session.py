"""Resolve session tokens to callers."""

from __future__ import annotations

import logging

from contentos.auth.errors import PolicyEvaluationFailure
from contentos.auth.jwt import TokenExpiredError, TokenInvalidError, get_secret, verify_token
from contentos.models.user import Caller, User
from contentos.storage.base import StorageBackend

logger = logging.getLogger(__name__)


class SessionResolver:
    """Turns a bearer token into the caller it belongs to.

    The role is read from the user row on every call. Claims in the token
    other than the subject are ignored. A store failure while loading the
    user raises PolicyEvaluationFailure rather than resolving to no caller.
    """

    def __init__(self, store: StorageBackend, secret: str | None = None) -> None:
        self._store = store
        self._secret = secret or get_secret()

    async def resolve(self, token: str | None) -> Caller | None:
        if not token or not token.strip():
            return None
        try:
            payload = verify_token(token.strip(), self._secret)
        except (TokenExpiredError, TokenInvalidError):
            return None

        try:
            data = await self._store.get_user(payload["sub"])
        except Exception as e:
            logger.exception("Session lookup failed for user %s", payload["sub"])
            raise PolicyEvaluationFailure() from e
        if not data:
            logger.warning("Session for unknown user %s", payload["sub"])
            return None
        return User(**data).to_caller()
