"""Comment engine: threaded card comments with @mentions."""

from __future__ import annotations

import logging
import re

from contentos.auth.authorizer import Authorizer, require_caller
from contentos.auth.errors import Forbidden, ResourceNotFound
from contentos.auth.permissions import (
    Action,
    GlobalPermission,
    filter_cards_by_permissions,
    has_global_permission,
)
from contentos.core.audit import AuditLogService
from contentos.events.bus import EventBus
from contentos.events.types import EventType
from contentos.models.audit import AuditAction, AuditEntityType
from contentos.models.comment import Comment
from contentos.models.user import Caller
from contentos.storage.base import StorageBackend

logger = logging.getLogger(__name__)

_MAX_CONTENT = 5000
_MENTION_RE = re.compile(r"(?<![\w.])@([\w.+-]+@[\w-]+(?:\.[\w-]+)+)")


class CommentService:
    """Adds, lists and removes comments; mentions fan out as events."""

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

    async def add_comment(
        self,
        caller: Caller | None,
        card_id: str,
        content: str,
        *,
        mentions: list[str] | None = None,
        parent_comment_id: str | None = None,
    ) -> Comment:
        """Comment on a card.

        Mentions are user IDs passed explicitly plus ``@email`` tokens found
        in the content.

        Raises:
            ValueError: If content is empty or too long, the parent comment is
                not on this card, or a mentioned user does not exist
        """
        caller = require_caller(caller)
        context = await self._authorizer.authorize(caller, card_id, Action.COMMENT)

        if not content or not content.strip():
            raise ValueError("Comment cannot be empty")
        content = content.strip()
        if len(content) > _MAX_CONTENT:
            raise ValueError(f"Comment cannot exceed {_MAX_CONTENT} characters")

        if parent_comment_id:
            parent = await self._store.get_comment(parent_comment_id)
            if not parent or parent["card_id"] != card_id:
                raise ValueError(f"Parent comment not found on this card: {parent_comment_id}")

        mentioned = await self._resolve_mentions(content, mentions or [])
        comment = Comment(
            card_id=card_id,
            user_id=caller.id,
            content=content,
            mentions=mentioned or None,
            parent_comment_id=parent_comment_id,
        )
        await self._store.insert_comment(comment.to_storage())
        logger.info("Comment %s added to card %s by %s", comment.id, card_id, caller.id)

        await self._audit.create_log(
            entity_type=AuditEntityType.COMMENT,
            entity_id=comment.id,
            action=AuditAction.CREATED,
            user_id=caller.id,
            team_id=context.team_id,
            metadata={"card_id": card_id, "mentions": mentioned} if mentioned else {"card_id": card_id},
        )
        await self._bus.emit(
            EventType.COMMENT_CREATED,
            {"comment_id": comment.id, "card_id": card_id, "actor_id": caller.id},
        )
        for user_id in mentioned:
            await self._bus.emit(
                EventType.COMMENT_MENTIONED,
                {
                    "comment_id": comment.id,
                    "card_id": card_id,
                    "card_title": context.card.title,
                    "user_id": user_id,
                    "actor_id": caller.id,
                    "actor_name": caller.name,
                },
            )
        return comment

    async def _resolve_mentions(self, content: str, user_ids: list[str]) -> list[str]:
        resolved: list[str] = []
        for user_id in user_ids:
            if not await self._store.get_user(user_id):
                raise ValueError(f"Mentioned user not found: {user_id}")
            if user_id not in resolved:
                resolved.append(user_id)
        for email in _MENTION_RE.findall(content):
            user = await self._store.get_user_by_email(email)
            if not user:
                logger.debug("Ignoring mention of unknown email %s", email)
                continue
            if user["id"] not in resolved:
                resolved.append(user["id"])
        return resolved

    async def list_comments(self, caller: Caller | None, card_id: str) -> list[Comment]:
        caller = require_caller(caller)
        await self._authorizer.authorize(caller, card_id, Action.READ)
        return [Comment(**row) for row in await self._store.list_comments(card_id)]

    async def delete_comment(self, caller: Caller | None, comment_id: str) -> bool:
        """Delete a comment. Only its author or a user manager may do this."""
        caller = require_caller(caller)
        data = await self._store.get_comment(comment_id)
        if not data:
            raise ResourceNotFound("Comment not found")
        comment = Comment(**data)
        context = await self._authorizer.authorize(caller, comment.card_id, Action.READ)

        if comment.user_id != caller.id and not has_global_permission(
            caller.role, GlobalPermission.USER_MANAGEMENT
        ):
            logger.warning(
                "Comment delete denied: user=%s role=%s comment=%s",
                caller.id,
                caller.role,
                comment_id,
            )
            raise Forbidden(action="delete_comment", stage=str(context.stage))

        deleted = await self._store.delete_comment(comment_id)
        if deleted:
            await self._audit.create_log(
                entity_type=AuditEntityType.COMMENT,
                entity_id=comment_id,
                action=AuditAction.DELETED,
                user_id=caller.id,
                team_id=context.team_id,
                metadata={"card_id": comment.card_id},
            )
            await self._bus.emit(
                EventType.COMMENT_DELETED,
                {"comment_id": comment_id, "card_id": comment.card_id, "actor_id": caller.id},
            )
        return deleted

    async def list_mentions(
        self, caller: Caller | None, user_id: str, *, limit: int = 50
    ) -> list[dict]:
        """Comments that mention ``user_id``, newest first.

        Callers may list their own mentions; user managers may list anyone's.
        Comments on cards in stages the caller cannot read are left out.
        """
        caller = require_caller(caller)
        if user_id != caller.id and not has_global_permission(
            caller.role, GlobalPermission.USER_MANAGEMENT
        ):
            logger.warning(
                "Mention listing denied: user=%s role=%s target=%s",
                caller.id,
                caller.role,
                user_id,
            )
            raise Forbidden(action="list_mentions")

        rows = filter_cards_by_permissions(
            await self._store.list_mentions(user_id, limit=limit), caller.role
        )
        return [
            {
                **Comment(**row).to_response(),
                "card_title": row["card_title"],
                "stage_name": row["stage_name"],
                "author_name": row["author_name"],
            }
            for row in rows
        ]
