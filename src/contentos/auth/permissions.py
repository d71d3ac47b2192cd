"""Role/stage permission matrix for the REACH pipeline."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any, TypeVar


class Role(StrEnum):
    ADMIN = "admin"
    STRATEGIST = "strategist"
    SCRIPTWRITER = "scriptwriter"
    EDITOR = "editor"
    COORDINATOR = "coordinator"
    MEMBER = "member"
    CLIENT = "client"


class Stage(StrEnum):
    RESEARCH = "research"
    ENVISION = "envision"
    ASSEMBLE = "assemble"
    CONNECT = "connect"
    HONE = "hone"


class Action(StrEnum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    ASSIGN = "assign"
    COMMENT = "comment"
    APPROVE = "approve"


class PermissionLevel(StrEnum):
    FULL = "full"
    COMMENT_APPROVE = "comment_approve"
    READ_ONLY = "read_only"
    NONE = "none"


class GlobalPermission(StrEnum):
    USER_MANAGEMENT = "user_management"
    TEAM_MANAGEMENT = "team_management"
    CLIENT_MANAGEMENT = "client_management"
    GLOBAL_REASSIGN = "global_reassign"
    GLOBAL_DELETE = "global_delete"
    VIEW_ALL = "view_all"
    GLOBAL_COMMENT = "global_comment"
    LIMITED_REASSIGN = "limited_reassign"
    COMMENT_ONLY = "comment_only"
    TIMELINE_MANAGEMENT = "timeline_management"
    GLOBAL_VIEW = "global_view"
    PUBLISHING = "publishing"
    BASIC_OPERATIONS = "basic_operations"
    VIEW_ASSIGNED = "view_assigned"


_F = PermissionLevel.FULL
_CA = PermissionLevel.COMMENT_APPROVE
_RO = PermissionLevel.READ_ONLY
_NO = PermissionLevel.NONE

PERMISSION_MATRIX: Mapping[Role, Mapping[Stage, PermissionLevel]] = {
    Role.ADMIN: {
        Stage.RESEARCH: _F,
        Stage.ENVISION: _F,
        Stage.ASSEMBLE: _F,
        Stage.CONNECT: _F,
        Stage.HONE: _F,
    },
    Role.STRATEGIST: {
        Stage.RESEARCH: _CA,
        Stage.ENVISION: _CA,
        Stage.ASSEMBLE: _CA,
        Stage.CONNECT: _CA,
        Stage.HONE: _CA,
    },
    Role.SCRIPTWRITER: {
        Stage.RESEARCH: _F,
        Stage.ENVISION: _F,
        Stage.ASSEMBLE: _RO,
        Stage.CONNECT: _RO,
        Stage.HONE: _RO,
    },
    Role.EDITOR: {
        Stage.RESEARCH: _RO,
        Stage.ENVISION: _RO,
        Stage.ASSEMBLE: _F,
        Stage.CONNECT: _F,
        Stage.HONE: _RO,
    },
    Role.COORDINATOR: {
        Stage.RESEARCH: _RO,
        Stage.ENVISION: _RO,
        Stage.ASSEMBLE: _RO,
        Stage.CONNECT: _F,
        Stage.HONE: _F,
    },
    Role.MEMBER: {
        Stage.RESEARCH: _F,
        Stage.ENVISION: _F,
        Stage.ASSEMBLE: _F,
        Stage.CONNECT: _CA,
        Stage.HONE: _RO,
    },
    Role.CLIENT: {
        Stage.RESEARCH: _NO,
        Stage.ENVISION: _NO,
        Stage.ASSEMBLE: _NO,
        Stage.CONNECT: _CA,
        Stage.HONE: _RO,
    },
}

# Actions granted by each level; anything not listed is denied
LEVEL_ACTIONS: Mapping[PermissionLevel, frozenset[Action]] = {
    PermissionLevel.FULL: frozenset(Action),
    PermissionLevel.COMMENT_APPROVE: frozenset({Action.READ, Action.COMMENT, Action.APPROVE}),
    PermissionLevel.READ_ONLY: frozenset({Action.READ}),
    PermissionLevel.NONE: frozenset(),
}

GLOBAL_PERMISSIONS: Mapping[Role, frozenset[GlobalPermission]] = {
    Role.ADMIN: frozenset(GlobalPermission),
    Role.STRATEGIST: frozenset(
        {
            GlobalPermission.GLOBAL_REASSIGN,
            GlobalPermission.GLOBAL_COMMENT,
            GlobalPermission.VIEW_ALL,
        }
    ),
    Role.SCRIPTWRITER: frozenset(
        {GlobalPermission.LIMITED_REASSIGN, GlobalPermission.COMMENT_ONLY}
    ),
    Role.EDITOR: frozenset({GlobalPermission.LIMITED_REASSIGN, GlobalPermission.COMMENT_ONLY}),
    Role.COORDINATOR: frozenset(
        {
            GlobalPermission.GLOBAL_REASSIGN,
            GlobalPermission.TIMELINE_MANAGEMENT,
            GlobalPermission.GLOBAL_VIEW,
            GlobalPermission.PUBLISHING,
        }
    ),
    Role.MEMBER: frozenset({GlobalPermission.BASIC_OPERATIONS}),
    Role.CLIENT: frozenset({GlobalPermission.VIEW_ASSIGNED}),
}


def _check_coverage() -> None:
    """Fail at import if a role or stage was added without a matrix entry."""
    for role in Role:
        if role not in PERMISSION_MATRIX or role not in GLOBAL_PERMISSIONS:
            raise RuntimeError(f"Permission tables missing role: {role}")
        missing = set(Stage) - set(PERMISSION_MATRIX[role])
        if missing:
            raise RuntimeError(f"Permission matrix for {role} missing stages: {sorted(missing)}")
    for level in PermissionLevel:
        if level not in LEVEL_ACTIONS:
            raise RuntimeError(f"No action set for permission level: {level}")


_check_coverage()


def _as_role(role: Role | str) -> Role | None:
    try:
        return Role(role)
    except ValueError:
        return None


def _as_action(action: Action | str) -> Action | None:
    try:
        return Action(action)
    except ValueError:
        return None


def normalize_stage(stage_or_name: Any) -> Stage | None:
    """Map a free-text stage label to its canonical Stage.

    Accepts a plain string, a Stage, a mapping with a ``name`` key, or any
    object with a ``name`` attribute. Returns None when nothing matches.
    """
    if isinstance(stage_or_name, Stage):
        return stage_or_name
    if isinstance(stage_or_name, Mapping):
        name = stage_or_name.get("name")
    elif isinstance(stage_or_name, str):
        name = stage_or_name
    else:
        name = getattr(stage_or_name, "name", None)
    if not isinstance(name, str):
        return None
    try:
        return Stage(name.strip().casefold())
    except ValueError:
        return None


def get_stage_permission_level(role: Role | str, stage: Stage | str) -> PermissionLevel:
    """Return the matrix level for a role in a stage, or NONE."""
    r = _as_role(role)
    s = normalize_stage(stage)
    if r is None or s is None:
        return PermissionLevel.NONE
    return PERMISSION_MATRIX.get(r, {}).get(s, PermissionLevel.NONE)


def has_stage_access(role: Role | str, stage: Stage | str, action: Action | str) -> bool:
    """Check if a role may perform an action in a stage. Denies by default."""
    a = _as_action(action)
    if a is None:
        return False
    level = get_stage_permission_level(role, stage)
    return a in LEVEL_ACTIONS.get(level, frozenset())


def can_edit_card(role: Role | str, stage: Stage | str) -> bool:
    return has_stage_access(role, stage, Action.WRITE)


def can_delete_card(role: Role | str, stage: Stage | str) -> bool:
    return has_stage_access(role, stage, Action.DELETE)


def can_comment(role: Role | str, stage: Stage | str) -> bool:
    return has_stage_access(role, stage, Action.COMMENT)


def can_approve(role: Role | str, stage: Stage | str) -> bool:
    return has_stage_access(role, stage, Action.APPROVE)


def has_global_permission(role: Role | str, permission: GlobalPermission | str) -> bool:
    """Check a stage-independent privilege. Unknown roles and keys are denied."""
    r = _as_role(role)
    if r is None:
        return False
    try:
        key = GlobalPermission(permission)
    except ValueError:
        return False
    return key in GLOBAL_PERMISSIONS.get(r, frozenset())


def can_assign_users(role: Role | str, stage: Stage | str | None = None) -> bool:
    """Check if a role may assign people to cards.

    Roles holding ``global_reassign`` or ``user_management`` (admin,
    strategist, coordinator) may assign in any stage, with or without one.
    ``limited_reassign`` roles (scriptwriter, editor) need ``assign`` on the
    given stage and are denied when no stage is given. Everyone else is denied.
    """
    if has_global_permission(role, GlobalPermission.GLOBAL_REASSIGN) or has_global_permission(
        role, GlobalPermission.USER_MANAGEMENT
    ):
        return True
    if stage is not None and has_global_permission(role, GlobalPermission.LIMITED_REASSIGN):
        return has_stage_access(role, stage, Action.ASSIGN)
    return False


def is_allowed(role: Role | str, stage: Stage | str, action: Action | str) -> bool:
    """Dispatch an action to its named check."""
    a = _as_action(action)
    if a is None:
        return False
    if a is Action.WRITE:
        return can_edit_card(role, stage)
    if a is Action.DELETE:
        return can_delete_card(role, stage)
    if a is Action.ASSIGN:
        return can_assign_users(role, stage)
    return has_stage_access(role, stage, a)


def get_accessible_stages(role: Role | str) -> list[Stage]:
    """Stages a role can at least read, in pipeline order."""
    return [stage for stage in Stage if has_stage_access(role, stage, Action.READ)]


def can_view_all_cards(role: Role | str) -> bool:
    return has_global_permission(role, GlobalPermission.VIEW_ALL) or has_global_permission(
        role, GlobalPermission.GLOBAL_VIEW
    )


_C = TypeVar("_C")


def filter_cards_by_permissions(cards: Iterable[_C], role: Role | str, *, stage_of=None) -> list[_C]:
    """Keep the cards whose stage the role can read.

    ``stage_of`` extracts the stage label from a card; by default the card's
    ``stage_name`` (attribute or key) is used.
    """
    cards = list(cards)
    if can_view_all_cards(role):
        return cards

    def _default_stage(card: Any) -> Any:
        if isinstance(card, Mapping):
            return card.get("stage_name")
        return getattr(card, "stage_name", None)

    extract = stage_of or _default_stage
    visible = []
    for card in cards:
        stage = normalize_stage(extract(card))
        if stage is not None and has_stage_access(role, stage, Action.READ):
            visible.append(card)
    return visible


_DESCRIPTIONS = {
    PermissionLevel.FULL: "Full access - create, edit, delete, move cards, assign users",
    PermissionLevel.COMMENT_APPROVE: "View cards, add comments, approve/reject content",
    PermissionLevel.READ_ONLY: "View cards and comments only",
    PermissionLevel.NONE: "No access to this stage",
}


def get_permission_description(role: Role | str, stage: Stage | str) -> str:
    return _DESCRIPTIONS[get_stage_permission_level(role, stage)]


def can_drag_card(role: Role | str, stage: Stage | str) -> bool:
    """Only full access allows drag-and-drop."""
    return get_stage_permission_level(role, stage) is PermissionLevel.FULL


def is_stage_read_only(role: Role | str, stage: Stage | str) -> bool:
    """Visible but restricted: read_only or comment_approve."""
    return get_stage_permission_level(role, stage) in (
        PermissionLevel.READ_ONLY,
        PermissionLevel.COMMENT_APPROVE,
    )


def describe_stage_access(role: Role | str, stage: Stage | str) -> dict[str, Any]:
    """What a role can do in one stage, in the shape board clients render."""
    return {
        "level": str(get_stage_permission_level(role, stage)),
        "description": get_permission_description(role, stage),
        "can_drag": can_drag_card(role, stage),
        "read_only": is_stage_read_only(role, stage),
    }


def matrix_as_dict() -> dict[str, dict[str, str]]:
    """Plain-string rendering of the matrix for responses and the CLI."""
    return {
        str(role): {str(stage): str(level) for stage, level in stages.items()}
        for role, stages in PERMISSION_MATRIX.items()
    }
