"""Content card model."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

VALID_PRIORITIES = {"low", "medium", "high", "urgent"}
VALID_STATUSES = {"not_started", "in_progress", "blocked", "ready_for_review", "completed"}

# Fields diffed into the audit log on update
TRACKED_FIELDS = (
    "title",
    "description",
    "content",
    "content_type",
    "priority",
    "status",
    "assigned_to",
    "due_date",
    "tags",
)

# Optional fields an update may reset to empty
CLEARABLE_FIELDS = frozenset(
    {"description", "content", "content_type", "assigned_to", "due_date", "tags"}
)


class ContentCard(BaseModel):
    """A piece of content moving through the REACH pipeline."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    team_id: str
    stage_id: str
    title: str
    description: str | None = None
    content: str | None = None
    content_type: str | None = None
    priority: str = "medium"
    status: str = "not_started"
    assigned_to: str | None = None
    created_by: str | None = None
    due_date: str | None = None
    position: int | None = None
    tags: list[str] | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    updated_at: str | None = None
    # Joined from the stages table, not stored on the card row
    stage_name: str | None = None

    def to_storage(self) -> dict:
        return self.model_dump(exclude={"stage_name"})

    def to_response(self, *, detail: str = "summary") -> dict[str, Any]:
        data: dict[str, Any] = {
            "_v": "1.0",
            "id": self.id,
            "title": self.title,
            "team_id": self.team_id,
            "stage_id": self.stage_id,
            "stage_name": self.stage_name,
            "priority": self.priority,
            "status": self.status,
        }
        if detail != "summary":
            data.update(
                {
                    "description": self.description,
                    "content": self.content,
                    "content_type": self.content_type,
                    "assigned_to": self.assigned_to,
                    "created_by": self.created_by,
                    "due_date": self.due_date,
                    "position": self.position,
                    "tags": self.tags,
                    "created_at": self.created_at,
                    "updated_at": self.updated_at,
                }
            )
        return data
