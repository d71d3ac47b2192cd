"""User administration with self-lockout protection."""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import UTC, datetime
from typing import Any

from contentos.auth.authorizer import Authorizer
from contentos.auth.errors import ResourceNotFound
from contentos.auth.guards import check_role_change, check_user_deletion
from contentos.auth.permissions import GlobalPermission, Role
from contentos.core.audit import AuditLogService
from contentos.events.bus import EventBus
from contentos.events.types import EventType
from contentos.models.audit import AuditAction, AuditEntityType
from contentos.models.user import Caller, User
from contentos.storage.base import StorageBackend

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_UPDATABLE_FIELDS = {"email", "name", "role"}


class UserService:
    """Creates, edits and removes users. Mutations require user management.

    Updates and deletions run one at a time per service, so the admin count a
    lockout guard sees is still true when the write lands.
    """

    def __init__(
        self,
        store: StorageBackend,
        event_bus: EventBus,
        audit: AuditLogService,
    ) -> None:
        self._store = store
        self._bus = event_bus
        self._audit = audit
        self._admin_guard = asyncio.Lock()

    async def create_user(
        self, *, email: str, name: str, role: Role | str = Role.MEMBER
    ) -> User:
        """Create a user without an authorization check (bootstrap and CLI).

        Raises:
            ValueError: If a field is invalid or the email is taken
        """
        email = _validate_email(email)
        if not name or not name.strip():
            raise ValueError("Name cannot be empty")
        role = _validate_role(role)
        if await self._store.get_user_by_email(email):
            raise ValueError("Email already in use by another user")

        user = User(email=email, name=name.strip(), role=role)
        await self._store.insert_user(user.to_storage())
        logger.info("Created user %s (id=%s, role=%s)", user.email, user.id, user.role)
        await self._bus.emit(EventType.USER_CREATED, {"user_id": user.id, "role": str(user.role)})
        return user

    async def add_user(
        self, actor: Caller | None, *, email: str, name: str, role: Role | str = Role.MEMBER
    ) -> User:
        Authorizer.check_global(actor, GlobalPermission.USER_MANAGEMENT)
        return await self.create_user(email=email, name=name, role=role)

    async def get_user(self, user_id: str) -> User | None:
        data = await self._store.get_user(user_id)
        return User(**data) if data else None

    async def get_user_by_email(self, email: str) -> User | None:
        data = await self._store.get_user_by_email(email)
        return User(**data) if data else None

    async def list_users(self, actor: Caller | None, *, role: Role | str | None = None) -> list[User]:
        Authorizer.check_global(actor, GlobalPermission.USER_MANAGEMENT)
        rows = await self._store.list_users(role=str(_validate_role(role)) if role else None)
        return [User(**row) for row in rows]

    async def update_user(self, actor: Caller | None, user_id: str, **updates: Any) -> User:
        """Update a user's email, name or role.

        Raises:
            Forbidden: If the actor lacks user management
            ResourceNotFound: If the user does not exist
            SelfLockoutError: If the change would leave no admin
            ValueError: If a field is unknown or invalid, or the email is taken
        """
        actor = Authorizer.check_global(actor, GlobalPermission.USER_MANAGEMENT)
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)}")

        async with self._admin_guard:
            updated, changed_fields = await self._apply_update(actor, user_id, updates)

        if changed_fields:
            logger.info("Updated user %s: %s", user_id, sorted(changed_fields))
            await self._audit.create_log(
                entity_type=AuditEntityType.USER,
                entity_id=user_id,
                action=AuditAction.UPDATED,
                user_id=actor.id,
                team_id=None,
                changed_fields=changed_fields,
            )
            await self._bus.emit(
                EventType.USER_UPDATED, {"user_id": user_id, "fields": sorted(changed_fields)}
            )
        return updated

    async def _apply_update(
        self, actor: Caller, user_id: str, updates: dict[str, Any]
    ) -> tuple[User, dict[str, dict[str, Any]] | None]:
        target = await self.get_user(user_id)
        if target is None:
            raise ResourceNotFound("User not found")

        if "email" in updates:
            updates["email"] = _validate_email(updates["email"])
            if updates["email"].lower() != target.email.lower():
                existing = await self._store.get_user_by_email(updates["email"])
                if existing and existing["id"] != user_id:
                    raise ValueError("Email already in use by another user")
        if "name" in updates:
            if not updates["name"] or not updates["name"].strip():
                raise ValueError("Name cannot be empty")
            updates["name"] = updates["name"].strip()
        if "role" in updates:
            updates["role"] = _validate_role(updates["role"])
            check_role_change(
                actor, target, updates["role"], await self._store.count_users(role=str(Role.ADMIN))
            )
            updates["role"] = str(updates["role"])

        changed_fields = AuditLogService.detect_changed_fields(
            target.to_storage(), {**target.to_storage(), **updates}, sorted(_UPDATABLE_FIELDS)
        )
        updates["updated_at"] = datetime.now(UTC).isoformat()
        data = await self._store.update_user(user_id, updates)
        return User(**data), changed_fields

    async def delete_user(self, actor: Caller | None, user_id: str) -> bool:
        """Delete a user.

        Raises:
            Forbidden: If the actor lacks user management
            ResourceNotFound: If the user does not exist
            SelfLockoutError: If the user is the last admin
        """
        actor = Authorizer.check_global(actor, GlobalPermission.USER_MANAGEMENT)
        async with self._admin_guard:
            target = await self.get_user(user_id)
            if target is None:
                raise ResourceNotFound("User not found")
            check_user_deletion(actor, target, await self._store.count_users(role=str(Role.ADMIN)))
            deleted = await self._store.delete_user(user_id)

        if deleted:
            logger.info("Deleted user %s (%s)", user_id, target.email)
            await self._audit.create_log(
                entity_type=AuditEntityType.USER,
                entity_id=user_id,
                action=AuditAction.DELETED,
                user_id=actor.id,
                team_id=None,
                metadata={"email": target.email, "role": str(target.role)},
            )
            await self._bus.emit(EventType.USER_DELETED, {"user_id": user_id})
        return deleted


def _validate_email(email: str | None) -> str:
    if not email or not _EMAIL_RE.match(email.strip()):
        raise ValueError(f"Invalid email format: {email}")
    return email.strip()


def _validate_role(role: Role | str) -> Role:
    try:
        return Role(role)
    except ValueError as e:
        raise ValueError(f"Invalid role: {role}. Must be one of {[str(r) for r in Role]}") from e
