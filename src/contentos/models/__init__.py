"""Content OS data models."""

from contentos.models.audit import AuditAction, AuditEntityType, AuditLog
from contentos.models.card import ContentCard
from contentos.models.checklist import ChecklistItem
from contentos.models.comment import Assignment, Comment
from contentos.models.context import PermissionDecision, ResourceContext, StageContext
from contentos.models.notification import Notification, NotificationJob
from contentos.models.team import ClientProfile, StageRecord, Team
from contentos.models.user import Caller, User

__all__ = [
    "Assignment",
    "AuditAction",
    "AuditEntityType",
    "AuditLog",
    "Caller",
    "ChecklistItem",
    "ClientProfile",
    "Comment",
    "ContentCard",
    "Notification",
    "NotificationJob",
    "PermissionDecision",
    "ResourceContext",
    "StageContext",
    "StageRecord",
    "Team",
    "User",
]
