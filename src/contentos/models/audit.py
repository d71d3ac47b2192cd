"""Audit log model."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class AuditEntityType(StrEnum):
    CONTENT_CARD = "content_card"
    COMMENT = "comment"
    ASSIGNMENT = "assignment"
    USER = "user"
    TEAM = "team"


class AuditAction(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    MOVED = "moved"
    APPROVED = "approved"
    REJECTED = "rejected"


class AuditLog(BaseModel):
    """One recorded mutation of an entity."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    entity_type: AuditEntityType
    entity_id: str
    action: AuditAction
    user_id: str
    team_id: str | None = None
    changed_fields: dict[str, dict[str, Any]] | None = None
    metadata: dict[str, Any] | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    # Joined from users when listing
    user_name: str | None = None

    def to_storage(self) -> dict:
        return self.model_dump(mode="json", exclude={"user_name"})

    def to_response(self) -> dict:
        return {
            "_v": "1.0",
            "id": self.id,
            "entity_type": str(self.entity_type),
            "entity_id": self.entity_id,
            "action": str(self.action),
            "user_id": self.user_id,
            "user_name": self.user_name,
            "team_id": self.team_id,
            "changed_fields": self.changed_fields,
            "metadata": self.metadata,
            "created_at": self.created_at,
        }
