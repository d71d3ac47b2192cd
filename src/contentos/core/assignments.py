"""Card assignments."""

from __future__ import annotations

import logging

from contentos.auth.authorizer import Authorizer, require_caller
from contentos.auth.permissions import Action
from contentos.core.audit import AuditLogService
from contentos.events.bus import EventBus
from contentos.events.types import EventType
from contentos.models.audit import AuditAction, AuditEntityType
from contentos.models.comment import Assignment
from contentos.models.user import Caller
from contentos.storage.base import StorageBackend

logger = logging.getLogger(__name__)


class AssignmentService:
    def __init__(
        self,
        store: StorageBackend,
        event_bus: EventBus,
        authorizer: Authorizer,
        audit: AuditLogService,
    ) -> None:
        self._store = store
        self._bus = event_bus
        self._authorizer = authorizer
        self._audit = audit

    async def assign(self, caller: Caller | None, card_id: str, user_id: str) -> Assignment:
        """Assign a user to a card.

        Raises:
            ValueError: If the user does not exist or is already assigned
        """
        caller = require_caller(caller)
        context = await self._authorizer.authorize(caller, card_id, Action.ASSIGN)

        if not await self._store.get_user(user_id):
            raise ValueError(f"User not found: {user_id}")
        existing = await self._store.list_assignments(card_id)
        if any(row["user_id"] == user_id for row in existing):
            raise ValueError(f"User {user_id} is already assigned to this card")

        assignment = Assignment(card_id=card_id, user_id=user_id, assigned_by=caller.id)
        await self._store.insert_assignment(assignment.to_storage())
        logger.info("Assigned user %s to card %s", user_id, card_id)

        await self._audit.create_log(
            entity_type=AuditEntityType.ASSIGNMENT,
            entity_id=assignment.id,
            action=AuditAction.CREATED,
            user_id=caller.id,
            team_id=context.team_id,
            metadata={"card_id": card_id, "assignee_id": user_id},
        )
        await self._bus.emit(
            EventType.CARD_ASSIGNED,
            {
                "card_id": card_id,
                "card_title": context.card.title,
                "user_id": user_id,
                "actor_id": caller.id,
            },
        )
        return assignment

    async def unassign(self, caller: Caller | None, card_id: str, user_id: str) -> bool:
        caller = require_caller(caller)
        context = await self._authorizer.authorize(caller, card_id, Action.ASSIGN)

        removed = await self._store.delete_assignment(card_id, user_id)
        if removed:
            await self._audit.create_log(
                entity_type=AuditEntityType.ASSIGNMENT,
                entity_id=card_id,
                action=AuditAction.DELETED,
                user_id=caller.id,
                team_id=context.team_id,
                metadata={"card_id": card_id, "assignee_id": user_id},
            )
            await self._bus.emit(
                EventType.CARD_UNASSIGNED,
                {"card_id": card_id, "user_id": user_id, "actor_id": caller.id},
            )
        return removed

    async def list_assignments(self, caller: Caller | None, card_id: str) -> list[Assignment]:
        caller = require_caller(caller)
        await self._authorizer.authorize(caller, card_id, Action.READ)
        return [Assignment(**row) for row in await self._store.list_assignments(card_id)]
