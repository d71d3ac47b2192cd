"""Abstract storage interface for Content OS."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class StorageBackend(ABC):
    """Abstract interface for Content OS storage backends."""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize database schema and connections."""

    @abstractmethod
    async def close(self) -> None:
        """Close all connections."""

    # --- Users ---

    @abstractmethod
    async def insert_user(self, user: dict[str, Any]) -> dict[str, Any]:
        """Insert a user. Returns the inserted user."""

    @abstractmethod
    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        """Get a user by ID."""

    @abstractmethod
    async def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        """Get a user by email address."""

    @abstractmethod
    async def list_users(self, *, role: str | None = None) -> list[dict[str, Any]]:
        """List users, optionally filtered by role."""

    @abstractmethod
    async def count_users(self, *, role: str | None = None) -> int:
        """Count users, optionally filtered by role."""

    @abstractmethod
    async def update_user(self, user_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        """Update a user. Returns updated user or None."""

    @abstractmethod
    async def delete_user(self, user_id: str) -> bool:
        """Delete a user. Returns True if found and deleted."""

    # --- Teams and stages ---

    @abstractmethod
    async def insert_team(self, team: dict[str, Any]) -> dict[str, Any]:
        """Insert a team."""

    @abstractmethod
    async def get_team(self, team_id: str) -> dict[str, Any] | None:
        """Get a team by ID."""

    @abstractmethod
    async def list_teams(self, *, is_client: bool | None = None) -> list[dict[str, Any]]:
        """List teams ordered by creation."""

    @abstractmethod
    async def list_teams_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """List the teams a user belongs to."""

    @abstractmethod
    async def insert_client_profile(self, profile: dict[str, Any]) -> dict[str, Any]:
        """Insert the brand profile of a client team."""

    @abstractmethod
    async def get_client_profile(self, team_id: str) -> dict[str, Any] | None:
        """Get a client team's profile, if it has one."""

    @abstractmethod
    async def add_team_member(self, team_id: str, user_id: str) -> None:
        """Add a user to a team. No-op if already a member."""

    @abstractmethod
    async def list_team_members(self, team_id: str) -> list[dict[str, Any]]:
        """List the users of a team."""

    @abstractmethod
    async def is_team_member(self, team_id: str, user_id: str) -> bool:
        """Check team membership."""

    @abstractmethod
    async def insert_stage(self, stage: dict[str, Any]) -> dict[str, Any]:
        """Insert a stage."""

    @abstractmethod
    async def get_stage(self, stage_id: str) -> dict[str, Any] | None:
        """Get a stage by ID."""

    @abstractmethod
    async def list_stages(self, team_id: str) -> list[dict[str, Any]]:
        """List a team's stages ordered by position."""

    # --- Cards ---

    @abstractmethod
    async def insert_card(self, card: dict[str, Any]) -> dict[str, Any]:
        """Insert a card."""

    @abstractmethod
    async def get_card(self, card_id: str) -> dict[str, Any] | None:
        """Get a card with its joined ``stage_name``."""

    @abstractmethod
    async def list_cards(
        self, team_id: str, *, stage_id: str | None = None
    ) -> list[dict[str, Any]]:
        """List a team's cards with joined stage names."""

    @abstractmethod
    async def update_card(self, card_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        """Update a card. Returns updated card or None."""

    @abstractmethod
    async def delete_card(self, card_id: str) -> bool:
        """Delete a card. Returns True if found and deleted."""

    @abstractmethod
    async def next_card_position(self, stage_id: str) -> int:
        """Position after the last card in a stage."""

    # --- Comments ---

    @abstractmethod
    async def insert_comment(self, comment: dict[str, Any]) -> dict[str, Any]:
        """Insert a comment."""

    @abstractmethod
    async def get_comment(self, comment_id: str) -> dict[str, Any] | None:
        """Get a comment by ID."""

    @abstractmethod
    async def list_comments(self, card_id: str) -> list[dict[str, Any]]:
        """List comments on a card, oldest first."""

    @abstractmethod
    async def delete_comment(self, comment_id: str) -> bool:
        """Delete a comment and its replies."""

    @abstractmethod
    async def list_mentions(self, user_id: str, *, limit: int = 50) -> list[dict[str, Any]]:
        """List comments mentioning a user, newest first, with card and stage names."""

    # --- Checklists ---

    @abstractmethod
    async def insert_checklist_item(self, item: dict[str, Any]) -> dict[str, Any]:
        """Insert a checklist item."""

    @abstractmethod
    async def get_checklist_item(self, item_id: str) -> dict[str, Any] | None:
        """Get a checklist item by ID."""

    @abstractmethod
    async def list_checklist_items(self, card_id: str) -> list[dict[str, Any]]:
        """List a card's checklist ordered by position."""

    @abstractmethod
    async def update_checklist_item(
        self, item_id: str, updates: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Update a checklist item. Returns updated item or None."""

    @abstractmethod
    async def delete_checklist_item(self, item_id: str) -> bool:
        """Delete a checklist item."""

    @abstractmethod
    async def next_checklist_position(self, card_id: str) -> int:
        """Position after the last checklist item of a card, 0 when empty."""

    # --- Assignments ---

    @abstractmethod
    async def insert_assignment(self, assignment: dict[str, Any]) -> dict[str, Any]:
        """Insert an assignment."""

    @abstractmethod
    async def list_assignments(self, card_id: str) -> list[dict[str, Any]]:
        """List assignments for a card."""

    @abstractmethod
    async def delete_assignment(self, card_id: str, user_id: str) -> bool:
        """Remove a user from a card."""

    # --- Notifications ---

    @abstractmethod
    async def insert_notification(self, notification: dict[str, Any]) -> dict[str, Any]:
        """Insert a notification."""

    @abstractmethod
    async def list_notifications(
        self, user_id: str, *, unread_only: bool = False, limit: int = 20, offset: int = 0
    ) -> list[dict[str, Any]]:
        """List a user's notifications, newest first."""

    @abstractmethod
    async def count_unread_notifications(self, user_id: str) -> int:
        """Count a user's unread notifications."""

    @abstractmethod
    async def mark_notification_read(self, notification_id: str, user_id: str) -> bool:
        """Mark one of the user's notifications read."""

    @abstractmethod
    async def mark_all_notifications_read(self, user_id: str) -> int:
        """Mark all of a user's notifications read. Returns rows changed."""

    # --- Audit log ---

    @abstractmethod
    async def insert_audit_log(self, entry: dict[str, Any]) -> dict[str, Any]:
        """Insert an audit log entry."""

    @abstractmethod
    async def query_audit_logs(
        self,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        team_id: str | None = None,
        action: str | None = None,
        user_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        """Query audit logs newest first. Returns (rows, total)."""

    # --- Stats ---

    @abstractmethod
    async def get_stats(self) -> dict[str, Any]:
        """Get row counts for the main tables."""
