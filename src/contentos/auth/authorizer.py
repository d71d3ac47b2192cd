"""Request authorization against the role/stage policy.

An authorization attempt runs

    Start -> ResolvingResource -> {ResourceNotFound | EvaluatingStage}
          -> {InvalidStage | EvaluatingPolicy} -> {Forbidden | Authorized}

exactly once per request. Every outcome other than ``Authorized`` is raised as
an :class:`~contentos.auth.errors.AuthorizationError` subclass; ``Authorized``
returns a :class:`~contentos.models.context.ResourceContext` for the handler.

Resolution and the mutation it gates are separate store calls with no lock
spanning both. A card moved between the check and the write is caught by the
next read, not here.
"""

from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from contentos.auth.errors import (
    AuthorizationError,
    Forbidden,
    InvalidStage,
    InvalidTransition,
    PolicyEvaluationFailure,
    ResourceNotFound,
    Unauthenticated,
)
from contentos.auth.permissions import (
    Action,
    GlobalPermission,
    Role,
    Stage,
    can_edit_card,
    has_global_permission,
    is_allowed,
    normalize_stage,
)
from contentos.models.card import ContentCard
from contentos.models.context import PermissionDecision, ResourceContext, StageContext
from contentos.models.team import StageRecord
from contentos.models.user import Caller
from contentos.storage.base import StorageBackend

logger = logging.getLogger(__name__)

R = TypeVar("R")
Extractor = Callable[..., Any]


def require_caller(caller: Caller | None) -> Caller:
    """Return the caller, or raise Unauthenticated when there is none."""
    if caller is None:
        raise Unauthenticated()
    return caller


async def _extract(extractor: Extractor, args: tuple, kwargs: dict) -> Any:
    value = extractor(*args, **kwargs)
    if inspect.isawaitable(value):
        value = await value
    return value


class Authorizer:
    """Evaluates the policy table for callers acting on cards and stages."""

    def __init__(self, store: StorageBackend) -> None:
        self._store = store

    @staticmethod
    def evaluate(role: Role | str, stage: Stage, action: Action | str) -> PermissionDecision:
        """Pure policy decision for one (role, stage, action)."""
        if is_allowed(role, stage, action):
            return PermissionDecision(allowed=True, stage=stage)
        return PermissionDecision(
            allowed=False,
            reason=f"{role} may not {action} in {stage}",
            stage=stage,
        )

    def _deny(self, caller: Caller, action: Action | str, stage: Stage, reason: str | None) -> Forbidden:
        logger.warning(
            "Permission denied: user=%s role=%s action=%s stage=%s (%s)",
            caller.id,
            caller.role,
            action,
            stage,
            reason,
        )
        return Forbidden(action=str(action), stage=str(stage))

    async def _load(self, loader: Callable[[str], Awaitable[Any]], key: str) -> Any:
        try:
            return await loader(key)
        except AuthorizationError:
            raise
        except Exception as e:
            logger.exception("Policy lookup failed for %s", key)
            raise PolicyEvaluationFailure() from e

    async def authorize(
        self,
        caller: Caller | None,
        card_id: str | None,
        action: Action | str,
        *,
        destination_stage_id: str | None = None,
    ) -> ResourceContext:
        """Authorize ``caller`` to perform ``action`` on a card.

        When ``destination_stage_id`` names a different stage, the caller must
        also be able to edit the destination, which must belong to the card's
        team.

        Raises:
            Unauthenticated: No caller.
            ResourceNotFound: The card does not exist.
            InvalidStage: A stage name does not normalize or the destination is unknown.
            InvalidTransition: The destination stage belongs to another team.
            Forbidden: The policy denies the action.
            PolicyEvaluationFailure: The store failed during lookup.
        """
        if caller is None:
            raise Unauthenticated()

        if not card_id:
            raise ResourceNotFound()
        data = await self._load(self._store.get_card, card_id)
        if not data:
            raise ResourceNotFound()
        card = ContentCard(**data)

        stage = normalize_stage(card.stage_name or "")
        if stage is None:
            raise InvalidStage()

        decision = self.evaluate(caller.role, stage, action)
        if not decision.allowed:
            raise self._deny(caller, action, stage, decision.reason)

        context = ResourceContext(
            card_id=card.id,
            team_id=card.team_id,
            stage_id=card.stage_id,
            stage=stage,
            card=card,
        )

        if destination_stage_id and destination_stage_id != card.stage_id:
            destination = await self._resolve_destination(caller, card, destination_stage_id)
            context.destination_stage_id = destination_stage_id
            context.destination_stage = destination

        logger.debug("Authorized %s on card %s for user %s", action, card.id, caller.id)
        return context

    async def _resolve_destination(
        self, caller: Caller, card: ContentCard, destination_stage_id: str
    ) -> Stage:
        data = await self._load(self._store.get_stage, destination_stage_id)
        if not data:
            raise InvalidStage("Invalid destination stage")
        record = StageRecord(**data)

        if record.team_id != card.team_id:
            logger.warning(
                "Cross-team move rejected: user=%s card=%s team=%s destination_team=%s",
                caller.id,
                card.id,
                card.team_id,
                record.team_id,
            )
            raise InvalidTransition()

        destination = normalize_stage(record.name)
        if destination is None:
            raise InvalidStage("Invalid destination stage name")

        if not can_edit_card(caller.role, destination):
            raise self._deny(caller, Action.WRITE, destination, "cannot edit destination stage")
        return destination

    async def authorize_stage(
        self, caller: Caller | None, stage_id: str | None, action: Action | str
    ) -> StageContext:
        """Authorize an action that targets a stage directly, such as creating a card."""
        if caller is None:
            raise Unauthenticated()
        if not stage_id:
            raise ResourceNotFound("Stage not found")
        data = await self._load(self._store.get_stage, stage_id)
        if not data:
            raise ResourceNotFound("Stage not found")
        record = StageRecord(**data)

        stage = normalize_stage(record.name)
        if stage is None:
            raise InvalidStage()

        decision = self.evaluate(caller.role, stage, action)
        if not decision.allowed:
            raise self._deny(caller, action, stage, decision.reason)
        return StageContext(stage_id=record.id, team_id=record.team_id, stage=stage, record=record)

    @staticmethod
    def check_global(caller: Caller | None, permission: GlobalPermission | str) -> Caller:
        """Require a stage-independent privilege."""
        if caller is None:
            raise Unauthenticated()
        if not has_global_permission(caller.role, permission):
            logger.warning(
                "Permission denied: user=%s role=%s permission=%s",
                caller.id,
                caller.role,
                permission,
            )
            raise Forbidden(action=str(permission))
        return caller

    # --- Handler decorators ---

    def require(
        self,
        action: Action | str,
        card_id_from: Extractor,
        *,
        destination_from: Extractor | None = None,
    ) -> Callable[[Callable[..., Awaitable[R]]], Callable[..., Awaitable[R]]]:
        """Wrap an async handler so it only runs for authorized callers.

        The wrapped callable takes ``(caller, *args, **kwargs)``. Extractors get
        ``(*args, **kwargs)`` and may be sync or async. The handler is invoked
        as ``handler(caller, context, *args, **kwargs)``.
        """

        def decorator(handler: Callable[..., Awaitable[R]]) -> Callable[..., Awaitable[R]]:
            @functools.wraps(handler)
            async def wrapper(caller: Caller | None, *args: Any, **kwargs: Any) -> R:
                if caller is None:
                    raise Unauthenticated()
                try:
                    card_id = await _extract(card_id_from, args, kwargs)
                except Exception as e:
                    logger.debug("Card id extraction failed: %s", e)
                    raise ResourceNotFound() from e

                destination = None
                if destination_from is not None:
                    try:
                        destination = await _extract(destination_from, args, kwargs)
                    except Exception as e:
                        logger.debug("Destination extraction failed: %s", e)
                        raise InvalidStage("Invalid destination stage") from e

                context = await self.authorize(
                    caller, card_id, action, destination_stage_id=destination
                )
                return await handler(caller, context, *args, **kwargs)

            return wrapper

        return decorator

    def require_global(
        self, permission: GlobalPermission | str
    ) -> Callable[[Callable[..., Awaitable[R]]], Callable[..., Awaitable[R]]]:
        """Wrap an async handler behind a global permission check."""

        def decorator(handler: Callable[..., Awaitable[R]]) -> Callable[..., Awaitable[R]]:
            @functools.wraps(handler)
            async def wrapper(caller: Caller | None, *args: Any, **kwargs: Any) -> R:
                self.check_global(caller, permission)
                return await handler(caller, *args, **kwargs)

            return wrapper

        return decorator
