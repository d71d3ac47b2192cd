"""Card checklist model."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field


class ChecklistItem(BaseModel):
    """One to-do line on a card. Completion records who ticked it and when."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    card_id: str
    title: str
    description: str | None = None
    position: int
    is_completed: bool = False
    completed_at: str | None = None
    completed_by: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    updated_at: str | None = None

    def to_storage(self) -> dict:
        return self.model_dump()

    def to_response(self) -> dict:
        return {
            "_v": "1.0",
            "id": self.id,
            "card_id": self.card_id,
            "title": self.title,
            "description": self.description,
            "position": self.position,
            "is_completed": self.is_completed,
            "completed_at": self.completed_at,
            "completed_by": self.completed_by,
        }
