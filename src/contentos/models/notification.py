"""Notification records and queued notification jobs."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field

VALID_NOTIFICATION_TYPES = {"assignment", "mention", "deadline", "approval", "stage_change"}


class Notification(BaseModel):
    """An in-app notification delivered to one user."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    user_id: str
    type: str
    title: str
    message: str
    related_card_id: str | None = None
    related_comment_id: str | None = None
    is_read: bool = False
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_storage(self) -> dict:
        return self.model_dump()

    def to_response(self) -> dict:
        return {
            "_v": "1.0",
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "related_card_id": self.related_card_id,
            "is_read": self.is_read,
            "created_at": self.created_at,
        }


class NotificationJob(BaseModel):
    """A unit of work on the notification queue."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    type: str
    user_id: str
    title: str
    message: str
    card_id: str | None = None
    comment_id: str | None = None

    @property
    def priority(self) -> int:
        # Lower runs first
        return 1 if self.type == "deadline" else 5

    def to_notification(self) -> Notification:
        return Notification(
            user_id=self.user_id,
            type=self.type,
            title=self.title,
            message=self.message,
            related_card_id=self.card_id,
            related_comment_id=self.comment_id,
        )
