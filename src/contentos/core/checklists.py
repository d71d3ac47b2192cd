"""Card checklists: ordered to-do items gated by the card's stage."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from contentos.auth.authorizer import Authorizer, require_caller
from contentos.auth.errors import ResourceNotFound
from contentos.auth.permissions import Action
from contentos.events.bus import EventBus
from contentos.events.types import EventType
from contentos.models.checklist import ChecklistItem
from contentos.models.user import Caller
from contentos.storage.base import StorageBackend

logger = logging.getLogger(__name__)

_MAX_TITLE = 200


class ChecklistService:
    """Reading a checklist needs read access to the card; changing it needs write."""

    def __init__(self, store: StorageBackend, event_bus: EventBus, authorizer: Authorizer) -> None:
        self._store = store
        self._bus = event_bus
        self._authorizer = authorizer

    async def list_items(self, caller: Caller | None, card_id: str) -> list[ChecklistItem]:
        await self._authorizer.authorize(require_caller(caller), card_id, Action.READ)
        return [ChecklistItem(**row) for row in await self._store.list_checklist_items(card_id)]

    async def add_item(
        self,
        caller: Caller | None,
        card_id: str,
        *,
        title: str,
        description: str | None = None,
        position: int | None = None,
    ) -> ChecklistItem:
        """Append an item, or place it at ``position`` when given.

        Raises:
            ValueError: If the title is empty or longer than 200 characters
        """
        caller = require_caller(caller)
        await self._authorizer.authorize(caller, card_id, Action.WRITE)

        title = (title or "").strip()
        if not title:
            raise ValueError("Checklist item title cannot be empty")
        if len(title) > _MAX_TITLE:
            raise ValueError(f"Checklist item title cannot exceed {_MAX_TITLE} characters")
        if position is None:
            position = await self._store.next_checklist_position(card_id)

        item = ChecklistItem(card_id=card_id, title=title, description=description, position=position)
        await self._store.insert_checklist_item(item.to_storage())
        logger.info("Checklist item %s added to card %s by %s", item.id, card_id, caller.id)
        await self._bus.emit(
            EventType.CHECKLIST_ITEM_ADDED,
            {"item_id": item.id, "card_id": card_id, "actor_id": caller.id},
        )
        return item

    async def set_completed(
        self, caller: Caller | None, card_id: str, item_id: str, completed: bool
    ) -> ChecklistItem:
        """Tick or untick an item. Unticking clears who completed it and when."""
        caller = require_caller(caller)
        await self._authorizer.authorize(caller, card_id, Action.WRITE)
        await self._get_on_card(card_id, item_id)

        now = datetime.now(UTC).isoformat()
        data = await self._store.update_checklist_item(
            item_id,
            {
                "is_completed": completed,
                "completed_at": now if completed else None,
                "completed_by": caller.id if completed else None,
                "updated_at": now,
            },
        )
        item = ChecklistItem(**data)
        await self._bus.emit(
            EventType.CHECKLIST_ITEM_TOGGLED,
            {"item_id": item_id, "card_id": card_id, "completed": completed, "actor_id": caller.id},
        )
        return item

    async def delete_item(self, caller: Caller | None, card_id: str, item_id: str) -> bool:
        caller = require_caller(caller)
        await self._authorizer.authorize(caller, card_id, Action.WRITE)
        await self._get_on_card(card_id, item_id)

        deleted = await self._store.delete_checklist_item(item_id)
        if deleted:
            logger.info("Checklist item %s removed from card %s by %s", item_id, card_id, caller.id)
            await self._bus.emit(
                EventType.CHECKLIST_ITEM_DELETED,
                {"item_id": item_id, "card_id": card_id, "actor_id": caller.id},
            )
        return deleted

    async def _get_on_card(self, card_id: str, item_id: str) -> ChecklistItem:
        data = await self._store.get_checklist_item(item_id)
        if not data:
            raise ResourceNotFound("Checklist item not found")
        if data["card_id"] != card_id:
            raise ValueError("Item does not belong to this card")
        return ChecklistItem(**data)
