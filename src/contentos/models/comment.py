"""Comment and assignment models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field


class Comment(BaseModel):
    """A threaded comment on a card, optionally mentioning users."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    card_id: str
    user_id: str
    content: str
    mentions: list[str] | None = None
    parent_comment_id: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    updated_at: str | None = None

    def to_storage(self) -> dict:
        return self.model_dump()

    def to_response(self) -> dict:
        return {
            "_v": "1.0",
            "id": self.id,
            "card_id": self.card_id,
            "user_id": self.user_id,
            "content": self.content,
            "mentions": self.mentions or [],
            "parent_comment_id": self.parent_comment_id,
            "created_at": self.created_at,
        }


class Assignment(BaseModel):
    """A user assigned to work on a card."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    card_id: str
    user_id: str
    assigned_by: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_storage(self) -> dict:
        return self.model_dump()

    def to_response(self) -> dict:
        return {
            "_v": "1.0",
            "id": self.id,
            "card_id": self.card_id,
            "user_id": self.user_id,
            "assigned_by": self.assigned_by,
        }
