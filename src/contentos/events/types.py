"""Event type constants for Content OS."""

from enum import StrEnum


class EventType(StrEnum):
    CARD_CREATED = "card.created"
    CARD_UPDATED = "card.updated"
    CARD_MOVED = "card.moved"
    CARD_DELETED = "card.deleted"
    CARD_APPROVED = "card.approved"
    CARD_ASSIGNED = "card.assigned"
    CARD_UNASSIGNED = "card.unassigned"

    COMMENT_CREATED = "comment.created"
    COMMENT_MENTIONED = "comment.mentioned"
    COMMENT_DELETED = "comment.deleted"

    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"

    TEAM_CREATED = "team.created"
    CLIENT_CREATED = "client.created"

    CHECKLIST_ITEM_ADDED = "checklist.item_added"
    CHECKLIST_ITEM_TOGGLED = "checklist.item_toggled"
    CHECKLIST_ITEM_DELETED = "checklist.item_deleted"
