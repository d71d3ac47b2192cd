"""Self-lockout guards for user administration.

These run before a role change or deletion commits and are independent of
the stage policy. They keep at least one admin account in the system.
"""

from __future__ import annotations

import logging

from contentos.auth.errors import SelfLockoutError
from contentos.auth.permissions import Role
from contentos.models.user import Caller, User

logger = logging.getLogger(__name__)

SELF_DEMOTION_MESSAGE = "Cannot change your own admin role. This would lock you out of the system."
LAST_ADMIN_DEMOTION_MESSAGE = "Cannot demote the last admin user. System requires at least one admin."
LAST_ADMIN_DELETION_MESSAGE = "Cannot delete the last admin user. System requires at least one admin."


def check_role_change(actor: Caller, target: User, new_role: Role | str | None, admin_count: int) -> None:
    """Reject a role change that would leave no admin.

    Args:
        actor: The caller issuing the change
        target: The user being changed
        new_role: The requested role, or None when the role is not changing
        admin_count: Current number of admin accounts

    Raises:
        SelfLockoutError: If ``target`` is the last admin and would lose the role
    """
    if new_role is None or Role(new_role) is Role.ADMIN or target.role is not Role.ADMIN:
        return
    if admin_count > 1:
        return

    logger.warning("Blocked demotion of last admin %s by %s", target.id, actor.id)
    if actor.id == target.id:
        raise SelfLockoutError(SELF_DEMOTION_MESSAGE, action="update_role")
    raise SelfLockoutError(LAST_ADMIN_DEMOTION_MESSAGE, action="update_role")


def check_user_deletion(actor: Caller, target: User, admin_count: int) -> None:
    """Reject deleting the last admin account.

    Raises:
        SelfLockoutError: If ``target`` is the only admin
    """
    if target.role is Role.ADMIN and admin_count <= 1:
        logger.warning("Blocked deletion of last admin %s by %s", target.id, actor.id)
        raise SelfLockoutError(LAST_ADMIN_DELETION_MESSAGE, action="delete_user")
