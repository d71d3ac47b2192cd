"""Audit log service: records and reads entity history."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from contentos.models.audit import AuditAction, AuditEntityType, AuditLog
from contentos.storage.base import StorageBackend

logger = logging.getLogger(__name__)

_FIELD_LABELS = {
    "title": "Title",
    "description": "Description",
    "content": "Content",
    "priority": "Priority",
    "status": "Status",
    "due_date": "Due Date",
    "assigned_to": "Assigned To",
    "stage_id": "Stage",
    "tags": "Tags",
    "content_type": "Content Type",
}


class AuditLogService:
    """Writes and queries audit log entries."""

    def __init__(self, store: StorageBackend, *, page_size: int = 50) -> None:
        self._store = store
        self._page_size = page_size

    async def create_log(
        self,
        *,
        entity_type: AuditEntityType | str,
        entity_id: str,
        action: AuditAction | str,
        user_id: str,
        team_id: str | None,
        changed_fields: dict[str, dict[str, Any]] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditLog | None:
        """Record an entry. Failures are logged and never raised to the caller."""
        try:
            entry = AuditLog(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                user_id=user_id,
                team_id=team_id,
                changed_fields=changed_fields or None,
                metadata=metadata or None,
            )
            await self._store.insert_audit_log(entry.to_storage())
        except Exception:
            logger.exception(
                "Failed to create audit log for %s %s (%s)", entity_type, entity_id, action
            )
            return None
        return entry

    async def get_logs_for_entity(
        self,
        entity_type: AuditEntityType | str,
        entity_id: str,
        *,
        limit: int | None = None,
        offset: int = 0,
        action: AuditAction | str | None = None,
        user_id: str | None = None,
    ) -> tuple[list[AuditLog], int]:
        """History of one entity, newest first, with the unpaged total."""
        rows, total = await self._store.query_audit_logs(
            entity_type=str(entity_type),
            entity_id=entity_id,
            action=str(action) if action else None,
            user_id=user_id,
            limit=limit or self._page_size,
            offset=offset,
        )
        return [AuditLog(**row) for row in rows], total

    async def get_logs_for_team(
        self, team_id: str, *, limit: int = 100, offset: int = 0
    ) -> tuple[list[AuditLog], int]:
        rows, total = await self._store.query_audit_logs(
            team_id=team_id, limit=limit, offset=offset
        )
        return [AuditLog(**row) for row in rows], total

    @staticmethod
    def detect_changed_fields(
        old: Mapping[str, Any], new: Mapping[str, Any], fields: Iterable[str]
    ) -> dict[str, dict[str, Any]] | None:
        """Diff two snapshots over ``fields``. Returns None when nothing changed."""
        changes: dict[str, dict[str, Any]] = {}
        for field in fields:
            old_value = old.get(field)
            new_value = new.get(field)
            if json.dumps(old_value, default=str, sort_keys=True) != json.dumps(
                new_value, default=str, sort_keys=True
            ):
                changes[field] = {"old": old_value, "new": new_value}
        return changes or None

    @staticmethod
    def format_changed_fields(
        changed_fields: Mapping[str, Mapping[str, Any]] | None,
    ) -> list[dict[str, str]]:
        """Human-readable rows for a changed-fields diff."""
        if not changed_fields:
            return []
        return [
            {
                "field": _format_field_name(field),
                "old": _format_field_value(values.get("old")),
                "new": _format_field_value(values.get("new")),
            }
            for field, values in changed_fields.items()
        ]


def _format_field_name(field: str) -> str:
    if field in _FIELD_LABELS:
        return _FIELD_LABELS[field]
    return field.replace("_", " ").capitalize()


def _format_field_value(value: Any) -> str:
    if value is None:
        return "None"
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)
