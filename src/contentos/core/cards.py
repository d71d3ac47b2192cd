"""Card engine: create, read, update, move, delete and approve content cards."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from contentos.auth.authorizer import Authorizer, require_caller
from contentos.auth.errors import Forbidden
from contentos.auth.permissions import Action, can_view_all_cards, filter_cards_by_permissions
from contentos.core.audit import AuditLogService
from contentos.events.bus import EventBus
from contentos.events.types import EventType
from contentos.models.audit import AuditAction, AuditEntityType
from contentos.models.card import TRACKED_FIELDS, VALID_PRIORITIES, VALID_STATUSES, ContentCard
from contentos.models.context import ResourceContext
from contentos.models.user import Caller
from contentos.storage.base import StorageBackend

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {
    "title",
    "description",
    "content",
    "content_type",
    "priority",
    "status",
    "assigned_to",
    "due_date",
    "tags",
    "stage_id",
}
_MAX_TITLE = 300


class CardService:
    """Card operations, each authorized against the caller's role and the card's stage."""

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

    async def create_card(
        self,
        caller: Caller | None,
        *,
        stage_id: str,
        title: str,
        description: str | None = None,
        content: str | None = None,
        content_type: str | None = None,
        priority: str = "medium",
        due_date: str | None = None,
        tags: list[str] | None = None,
    ) -> ContentCard:
        """Create a card in a stage the caller can write to.

        Raises:
            ValueError: If title or priority is invalid
        """
        caller = require_caller(caller)
        stage = await self._authorizer.authorize_stage(caller, stage_id, Action.WRITE)
        title = _validate_title(title)
        _validate_choice("priority", priority, VALID_PRIORITIES)

        card = ContentCard(
            team_id=stage.team_id,
            stage_id=stage.stage_id,
            title=title,
            description=description,
            content=content,
            content_type=content_type,
            priority=priority,
            created_by=caller.id,
            due_date=due_date,
            tags=tags,
            position=await self._store.next_card_position(stage.stage_id),
        )
        await self._store.insert_card(card.to_storage())
        card.stage_name = stage.record.name
        logger.info("Created card: %s (id=%s) in %s", card.title, card.id, stage.stage)

        await self._audit.create_log(
            entity_type=AuditEntityType.CONTENT_CARD,
            entity_id=card.id,
            action=AuditAction.CREATED,
            user_id=caller.id,
            team_id=card.team_id,
            metadata={"title": card.title, "stage": stage.record.name},
        )
        await self._bus.emit(
            EventType.CARD_CREATED,
            {"card_id": card.id, "team_id": card.team_id, "actor_id": caller.id},
        )
        return card

    async def get_card(self, caller: Caller | None, card_id: str) -> ContentCard:
        caller = require_caller(caller)
        context = await self._authorizer.authorize(caller, card_id, Action.READ)
        return context.card

    async def list_cards(
        self, caller: Caller | None, team_id: str, *, stage_id: str | None = None
    ) -> list[ContentCard]:
        """Cards on a team board that the caller may read.

        Roles that can view all cards see every team; others must be members.
        """
        caller = require_caller(caller)
        if not can_view_all_cards(caller.role) and not await self._store.is_team_member(
            team_id, caller.id
        ):
            logger.warning("Board access denied: user=%s team=%s", caller.id, team_id)
            raise Forbidden(action=str(Action.READ))

        rows = await self._store.list_cards(team_id, stage_id=stage_id)
        cards = [ContentCard(**row) for row in rows]
        return filter_cards_by_permissions(cards, caller.role)

    async def update_card(self, caller: Caller | None, card_id: str, **updates: Any) -> ContentCard:
        """Edit a card. A ``stage_id`` different from the current one also moves it.

        Raises:
            ValueError: If a field is unknown or has an invalid value
        """
        caller = require_caller(caller)
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown card fields: {sorted(unknown)}")

        context = await self._authorizer.authorize(
            caller, card_id, Action.WRITE, destination_stage_id=updates.get("stage_id")
        )
        await self._validate_updates(updates)

        old = context.card
        changed_fields = AuditLogService.detect_changed_fields(
            old.model_dump(), {**old.model_dump(), **updates}, TRACKED_FIELDS
        )

        if context.is_transition:
            updates["position"] = await self._store.next_card_position(updates["stage_id"])
        else:
            updates.pop("stage_id", None)
        updates["updated_at"] = datetime.now(UTC).isoformat()

        data = await self._store.update_card(card_id, updates)
        updated = ContentCard(**data)

        if changed_fields:
            await self._audit.create_log(
                entity_type=AuditEntityType.CONTENT_CARD,
                entity_id=card_id,
                action=AuditAction.UPDATED,
                user_id=caller.id,
                team_id=context.team_id,
                changed_fields=changed_fields,
            )
            await self._bus.emit(
                EventType.CARD_UPDATED,
                {"card_id": card_id, "fields": sorted(changed_fields), "actor_id": caller.id},
            )
            if "assigned_to" in changed_fields and updated.assigned_to:
                await self._bus.emit(
                    EventType.CARD_ASSIGNED,
                    {
                        "card_id": card_id,
                        "card_title": updated.title,
                        "user_id": updated.assigned_to,
                        "actor_id": caller.id,
                    },
                )
        if context.is_transition:
            await self._record_move(caller, context, updated)
        return updated

    async def move_card(
        self,
        caller: Caller | None,
        card_id: str,
        stage_id: str,
        *,
        position: int | None = None,
    ) -> ContentCard:
        """Move a card to a stage and/or position.

        Requires edit rights on both the current and the destination stage.

        Raises:
            ValueError: If position is below 1
        """
        caller = require_caller(caller)
        if position is not None and position < 1:
            raise ValueError("Position must be at least 1")

        context = await self._authorizer.authorize(
            caller, card_id, Action.WRITE, destination_stage_id=stage_id
        )

        if position is None:
            position = (
                await self._store.next_card_position(stage_id)
                if context.is_transition
                else context.card.position
            )
        data = await self._store.update_card(
            card_id,
            {
                "stage_id": stage_id,
                "position": position,
                "updated_at": datetime.now(UTC).isoformat(),
            },
        )
        moved = ContentCard(**data)

        if context.is_transition:
            await self._record_move(caller, context, moved)
        return moved

    async def _record_move(
        self, caller: Caller, context: ResourceContext, moved: ContentCard
    ) -> None:
        from_name = context.card.stage_name
        to_name = moved.stage_name
        logger.info("Moved card %s from %s to %s", moved.id, from_name, to_name)

        await self._audit.create_log(
            entity_type=AuditEntityType.CONTENT_CARD,
            entity_id=moved.id,
            action=AuditAction.MOVED,
            user_id=caller.id,
            team_id=context.team_id,
            metadata={
                "from_stage": from_name,
                "to_stage": to_name,
                "from_stage_id": context.stage_id,
                "to_stage_id": moved.stage_id,
            },
        )
        await self._bus.emit(
            EventType.CARD_MOVED,
            {
                "card_id": moved.id,
                "card_title": moved.title,
                "from_stage": from_name,
                "to_stage": to_name,
                "recipients": await self._recipients(moved),
                "actor_id": caller.id,
            },
        )

    async def delete_card(self, caller: Caller | None, card_id: str) -> bool:
        caller = require_caller(caller)
        context = await self._authorizer.authorize(caller, card_id, Action.DELETE)

        # Logged first so the entry exists even though the row is gone
        await self._audit.create_log(
            entity_type=AuditEntityType.CONTENT_CARD,
            entity_id=card_id,
            action=AuditAction.DELETED,
            user_id=caller.id,
            team_id=context.team_id,
            metadata={"title": context.card.title, "stage_id": context.stage_id},
        )
        deleted = await self._store.delete_card(card_id)
        if deleted:
            logger.info("Deleted card %s", card_id)
            await self._bus.emit(EventType.CARD_DELETED, {"card_id": card_id, "actor_id": caller.id})
        return deleted

    async def approve_card(
        self,
        caller: Caller | None,
        card_id: str,
        *,
        approved: bool = True,
        note: str | None = None,
    ) -> ContentCard:
        """Approve (complete) or reject (send back to in-progress) a card."""
        caller = require_caller(caller)
        context = await self._authorizer.authorize(caller, card_id, Action.APPROVE)

        status = "completed" if approved else "in_progress"
        data = await self._store.update_card(
            card_id, {"status": status, "updated_at": datetime.now(UTC).isoformat()}
        )
        card = ContentCard(**data)

        await self._audit.create_log(
            entity_type=AuditEntityType.CONTENT_CARD,
            entity_id=card_id,
            action=AuditAction.APPROVED if approved else AuditAction.REJECTED,
            user_id=caller.id,
            team_id=context.team_id,
            changed_fields=AuditLogService.detect_changed_fields(
                {"status": context.card.status}, {"status": status}, ["status"]
            ),
            metadata={"note": note} if note else None,
        )
        await self._bus.emit(
            EventType.CARD_APPROVED,
            {
                "card_id": card_id,
                "card_title": card.title,
                "approved": approved,
                "recipients": await self._recipients(card, include_creator=True),
                "actor_id": caller.id,
            },
        )
        return card

    async def _recipients(self, card: ContentCard, *, include_creator: bool = False) -> list[str]:
        users = {row["user_id"] for row in await self._store.list_assignments(card.id)}
        if card.assigned_to:
            users.add(card.assigned_to)
        if include_creator and card.created_by:
            users.add(card.created_by)
        return sorted(users)

    async def _validate_updates(self, updates: dict[str, Any]) -> None:
        if "title" in updates:
            updates["title"] = _validate_title(updates["title"])
        if "priority" in updates:
            _validate_choice("priority", updates["priority"], VALID_PRIORITIES)
        if "status" in updates:
            _validate_choice("status", updates["status"], VALID_STATUSES)
        if updates.get("assigned_to") and not await self._store.get_user(updates["assigned_to"]):
            raise ValueError(f"User not found: {updates['assigned_to']}")


def _validate_title(title: str | None) -> str:
    if not title or not title.strip():
        raise ValueError("Card title cannot be empty")
    title = title.strip()
    if len(title) > _MAX_TITLE:
        raise ValueError(f"Card title cannot exceed {_MAX_TITLE} characters")
    return title


def _validate_choice(field: str, value: str, allowed: set[str]) -> None:
    if value not in allowed:
        raise ValueError(f"Invalid {field}: {value}. Must be one of {sorted(allowed)}")
