"""Authorization error taxonomy.

Each error carries the HTTP-style status the outer surface reports and a
caller-safe ``message``. Diagnostic details (action, stage) stay on the
exception for logging and are never part of the message.
"""

from __future__ import annotations

from typing import ClassVar


class AuthorizationError(Exception):
    """Base class for authorization outcomes other than success."""

    status_code: ClassVar[int] = 500
    default_message: ClassVar[str] = "Authorization failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(AuthorizationError):
    """Raised when there is no valid caller session."""

    status_code = 401
    default_message = "Unauthorized"


class ResourceNotFound(AuthorizationError):
    """Raised when the target resource does not exist."""

    status_code = 404
    default_message = "Card not found"


class InvalidStage(AuthorizationError):
    """Raised when a stage name does not normalize or a stage id is unknown."""

    status_code = 400
    default_message = "Invalid stage"


class InvalidTransition(AuthorizationError):
    """Raised when a destination stage belongs to another team."""

    status_code = 400
    default_message = "Cannot move card to different team"


class Forbidden(AuthorizationError):
    """Raised when policy denies an authenticated caller."""

    status_code = 403
    default_message = "Forbidden"

    def __init__(
        self,
        message: str | None = None,
        *,
        action: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message)
        self.action = action
        self.stage = stage


class SelfLockoutError(Forbidden):
    """Raised when a change would leave the system without an admin."""


class PolicyEvaluationFailure(AuthorizationError):
    """Raised when an infrastructure error prevents a decision. Fails closed."""

    status_code = 500
    default_message = "Permission validation failed"
