"""FastMCP server: 8 consolidated tools, 1 resource."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, Any, Literal

from fastmcp import FastMCP
from pydantic import Field

from contentos.auth.authorizer import Authorizer
from contentos.auth.errors import AuthorizationError, ResourceNotFound, Unauthenticated
from contentos.auth.permissions import (
    GLOBAL_PERMISSIONS,
    Action,
    Stage,
    describe_stage_access,
    get_accessible_stages,
    matrix_as_dict,
)
from contentos.auth.session import SessionResolver
from contentos.config import Config
from contentos.core.assignments import AssignmentService
from contentos.core.audit import AuditLogService
from contentos.core.cards import CardService
from contentos.core.checklists import ChecklistService
from contentos.core.comments import CommentService
from contentos.core.notifications import NotificationQueue, NotificationService
from contentos.core.teams import TeamService
from contentos.core.users import UserService
from contentos.events.bus import EventBus
from contentos.models.audit import AuditLog
from contentos.models.card import CLEARABLE_FIELDS
from contentos.models.context import ResourceContext
from contentos.models.team import ClientProfile, Team
from contentos.models.user import Caller
from contentos.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

Token = Annotated[str, Field(description="Session token issued by `contentos token`")]


def _json(data: dict[str, Any]) -> str:
    return json.dumps(data, default=str)


def _ok(data: dict[str, Any]) -> str:
    """Return a versioned JSON success response."""
    return _json({**data, "_v": "1.0"})


def _err(msg: str, status: int = 400) -> str:
    """Return a versioned JSON error response."""
    return _json({"_v": "1.0", "error": msg, "status": status})


async def _call(handler: Callable[..., Awaitable[str]], *args: Any, **kwargs: Any) -> str:
    """Run a tool handler, mapping domain errors to error responses."""
    try:
        return await handler(*args, **kwargs)
    except AuthorizationError as e:
        if e.status_code >= 500:
            logger.error("Tool %s failed: %s", handler.__name__, e)
        return _err(e.message, e.status_code)
    except ValueError as e:
        return _err(str(e), 400)


def _audit_rows(logs: list[AuditLog]) -> list[dict[str, Any]]:
    return [
        {**entry.to_response(), "changes": AuditLogService.format_changed_fields(entry.changed_fields)}
        for entry in logs
    ]


def _client_row(team: Team, profile: ClientProfile | None) -> dict[str, Any]:
    return {"team": team.to_response(), "profile": profile.to_response() if profile else None}


def create_server(db_path: str, *, config: Config | None = None) -> FastMCP:
    """Create FastMCP server with 8 consolidated tools.

    Services are built on the first tool call. When the server's lifespan
    ends, notification workers are stopped, queued jobs are delivered, and
    the store is closed; the next call builds everything again.
    """
    config = config or Config()

    state: dict[str, Any] = {}
    _lock = asyncio.Lock()

    async def _shutdown() -> None:
        async with _lock:
            queue: NotificationQueue | None = state.get("queue")
            store: SQLiteStore | None = state.get("store")
            state.clear()
            if queue is not None:
                await queue.stop()
                await queue.drain()
            if store is not None:
                await store.close()
                logger.info("Closed Content OS store at %s", db_path)

    @asynccontextmanager
    async def _lifespan(_server: FastMCP) -> AsyncIterator[dict[str, Any]]:
        try:
            yield {}
        finally:
            await _shutdown()

    mcp = FastMCP("contentos", version="0.1.0", lifespan=_lifespan)

    async def _init() -> dict[str, Any]:
        async with _lock:
            if "init_failed" in state:
                raise RuntimeError(f"Content OS init previously failed for {db_path}")
            if "cards" not in state:
                try:
                    store = SQLiteStore(Path(db_path), wal_mode=config.wal_mode)
                    await store.initialize()
                except Exception as e:
                    state["init_failed"] = True
                    logger.error("Failed to initialize database: %s", e)
                    raise RuntimeError(f"Content OS init failed: {db_path}") from e
                bus = EventBus()
                authorizer = Authorizer(store)
                audit = AuditLogService(store, page_size=config.audit_page_size)
                queue = NotificationQueue(store, workers=config.notification_workers)
                await queue.start()
                state["store"] = store
                state["sessions"] = SessionResolver(store)
                state["authorizer"] = authorizer
                state["audit"] = audit
                state["queue"] = queue
                state["notifications"] = NotificationService(store, bus, queue)
                state["teams"] = TeamService(
                    store, bus, agency_team_id=config.agency_team_id, audit=audit
                )
                state["users"] = UserService(store, bus, audit)
                state["comments"] = CommentService(store, bus, authorizer, audit)
                state["assignments"] = AssignmentService(store, bus, authorizer, audit)
                state["checklists"] = ChecklistService(store, bus, authorizer)
                state["cards"] = CardService(store, bus, authorizer, audit)
        return state

    async def _caller(s: dict[str, Any], token: str) -> Caller:
        caller = await s["sessions"].resolve(token)
        if caller is None:
            raise Unauthenticated()
        return caller

    async def _card_history(
        caller: Caller, context: ResourceContext, card_id: str, *, limit: int, offset: int
    ) -> str:
        s = await _init()
        logs, total = await s["audit"].get_logs_for_entity(
            "content_card", context.card_id, limit=limit, offset=offset
        )
        return _ok({"card_id": card_id, "total": total, "logs": _audit_rows(logs)})

    # ── co_card ───────────────────────────────────────────────

    @mcp.tool()
    async def co_card(
        token: Token,
        action: Annotated[
            Literal["create", "get", "list", "update", "move", "delete", "approve"],
            Field(description="create | get | list | update | move | delete | approve"),
        ],
        card_id: Annotated[str | None, Field(description="Card ID (all but create, list)")] = None,
        team_id: Annotated[str | None, Field(description="Team ID (list)")] = None,
        stage_id: Annotated[
            str | None,
            Field(description="Stage ID (create: target; move/update: destination; list: filter)"),
        ] = None,
        title: Annotated[str | None, Field(description="Title (create, update)")] = None,
        description: Annotated[str | None, Field(description="Description (create, update)")] = None,
        content: Annotated[str | None, Field(description="Script or body (create, update)")] = None,
        content_type: Annotated[
            str | None, Field(description="Format, e.g. reel or carousel (create, update)")
        ] = None,
        priority: Annotated[
            str | None, Field(description="low|medium|high|urgent (create, update)")
        ] = None,
        status: Annotated[str | None, Field(description="Workflow status (update)")] = None,
        assigned_to: Annotated[str | None, Field(description="Primary assignee user ID (update)")] = None,
        due_date: Annotated[str | None, Field(description="ISO due date (create, update)")] = None,
        tags: Annotated[list[str] | None, Field(description="Tags (create, update)")] = None,
        clear: Annotated[
            list[str] | None,
            Field(
                description="Fields to reset to empty (update): description, content, "
                "content_type, assigned_to, due_date, tags"
            ),
        ] = None,
        position: Annotated[int | None, Field(description="Position in stage (move)", ge=1)] = None,
        approved: Annotated[bool, Field(description="Approve or reject (approve)")] = True,
        note: Annotated[str | None, Field(description="Reviewer note (approve)")] = None,
        detail: Annotated[str, Field(description="summary or full (get, list)")] = "summary",
    ) -> str:
        """Content cards on the REACH board. Every action is checked against your role and the card's stage."""  # noqa: E501
        s = await _init()

        async def _handle() -> str:
            caller = await _caller(s, token)
            cards: CardService = s["cards"]

            if action == "create":
                if not stage_id:
                    return _err("stage_id is required for create")
                card = await cards.create_card(
                    caller,
                    stage_id=stage_id,
                    title=title or "",
                    description=description,
                    content=content,
                    content_type=content_type,
                    priority=priority or "medium",
                    due_date=due_date,
                    tags=tags,
                )
                return _ok(card.to_response(detail="full"))

            if action == "list":
                if not team_id:
                    return _err("team_id is required for list")
                items = await cards.list_cards(caller, team_id, stage_id=stage_id)
                return _ok({"count": len(items), "cards": [c.to_response(detail=detail) for c in items]})

            if not card_id:
                return _err(f"card_id is required for {action}")

            if action == "get":
                card = await cards.get_card(caller, card_id)
                return _ok(card.to_response(detail=detail))

            if action == "update":
                fields = {
                    key: value
                    for key, value in {
                        "title": title,
                        "description": description,
                        "content": content,
                        "content_type": content_type,
                        "priority": priority,
                        "status": status,
                        "assigned_to": assigned_to,
                        "due_date": due_date,
                        "tags": tags,
                        "stage_id": stage_id,
                    }.items()
                    if value is not None
                }
                for field in clear or []:
                    if field not in CLEARABLE_FIELDS:
                        return _err(f"Field cannot be cleared: {field}")
                    if field in fields:
                        return _err(f"Field is both set and cleared: {field}")
                    fields[field] = None
                card = await cards.update_card(caller, card_id, **fields)
                return _ok(card.to_response(detail="full"))

            if action == "move":
                if not stage_id:
                    return _err("stage_id is required for move")
                card = await cards.move_card(caller, card_id, stage_id, position=position)
                return _ok(card.to_response(detail="full"))

            if action == "delete":
                await cards.delete_card(caller, card_id)
                return _ok({"deleted": card_id})

            if action == "approve":
                card = await cards.approve_card(caller, card_id, approved=approved, note=note)
                return _ok(card.to_response())

            return _err(f"Unknown action: {action}")

        return await _call(_handle)

    # ── co_comment ────────────────────────────────────────────

    @mcp.tool()
    async def co_comment(
        token: Token,
        action: Annotated[Literal["add", "list", "delete"], Field(description="add | list | delete")],
        card_id: Annotated[str | None, Field(description="Card ID (add, list)")] = None,
        comment_id: Annotated[str | None, Field(description="Comment ID (delete)")] = None,
        content: Annotated[str | None, Field(description="Comment text; @email mentions (add)")] = None,
        mentions: Annotated[list[str] | None, Field(description="Mentioned user IDs (add)")] = None,
        parent_comment_id: Annotated[str | None, Field(description="Reply target (add)")] = None,
    ) -> str:
        """Card comments with @mentions. Mentioned users get notified."""
        s = await _init()

        async def _handle() -> str:
            caller = await _caller(s, token)
            comments: CommentService = s["comments"]

            if action == "delete":
                if not comment_id:
                    return _err("comment_id is required for delete")
                await comments.delete_comment(caller, comment_id)
                return _ok({"deleted": comment_id})

            if not card_id:
                return _err(f"card_id is required for {action}")

            if action == "add":
                comment = await comments.add_comment(
                    caller,
                    card_id,
                    content or "",
                    mentions=mentions,
                    parent_comment_id=parent_comment_id,
                )
                return _ok(comment.to_response())

            if action == "list":
                items = await comments.list_comments(caller, card_id)
                return _ok({"count": len(items), "comments": [c.to_response() for c in items]})

            return _err(f"Unknown action: {action}")

        return await _call(_handle)

    # ── co_assign ─────────────────────────────────────────────

    @mcp.tool()
    async def co_assign(
        token: Token,
        action: Annotated[Literal["add", "remove", "list"], Field(description="add | remove | list")],
        card_id: Annotated[str, Field(description="Card ID")],
        user_id: Annotated[str | None, Field(description="Assignee user ID (add, remove)")] = None,
    ) -> str:
        """Assign people to cards."""
        s = await _init()

        async def _handle() -> str:
            caller = await _caller(s, token)
            assignments: AssignmentService = s["assignments"]

            if action == "list":
                items = await assignments.list_assignments(caller, card_id)
                return _ok({"count": len(items), "assignments": [a.to_response() for a in items]})

            if not user_id:
                return _err(f"user_id is required for {action}")

            if action == "add":
                assignment = await assignments.assign(caller, card_id, user_id)
                return _ok(assignment.to_response())

            if action == "remove":
                if not await assignments.unassign(caller, card_id, user_id):
                    return _err("Assignment not found", 404)
                return _ok({"removed": user_id, "card_id": card_id})

            return _err(f"Unknown action: {action}")

        return await _call(_handle)

    # ── co_user ───────────────────────────────────────────────

    @mcp.tool()
    async def co_user(
        token: Token,
        action: Annotated[
            Literal["me", "get", "list", "create", "update", "delete", "mentions"],
            Field(description="me | get | list | create | update | delete | mentions"),
        ],
        user_id: Annotated[
            str | None, Field(description="User ID (get, update, delete; mentions: defaults to you)")
        ] = None,
        email: Annotated[str | None, Field(description="Email (create, update)")] = None,
        name: Annotated[str | None, Field(description="Display name (create, update)")] = None,
        role: Annotated[str | None, Field(description="Role (create, update; list: filter)")] = None,
        limit: Annotated[int | None, Field(description="Page size (mentions)", ge=1)] = None,
    ) -> str:
        """User administration. All actions except `me` and your own `mentions` require user management rights."""  # noqa: E501
        s = await _init()

        async def _handle() -> str:
            caller = await _caller(s, token)
            users: UserService = s["users"]

            if action == "me":
                data = {
                    "id": caller.id,
                    "email": caller.email,
                    "name": caller.name,
                    "role": str(caller.role),
                    "global_permissions": sorted(str(p) for p in GLOBAL_PERMISSIONS[caller.role]),
                    "accessible_stages": [str(stage) for stage in get_accessible_stages(caller.role)],
                    "stages": {
                        str(stage): describe_stage_access(caller.role, stage) for stage in Stage
                    },
                }
                return _ok(data)

            if action == "mentions":
                items = await s["comments"].list_mentions(
                    caller, user_id or caller.id, limit=config.page_limit(limit)
                )
                return _ok({"count": len(items), "mentions": items})

            if action == "list":
                items = await users.list_users(caller, role=role)
                return _ok({"count": len(items), "users": [u.to_response() for u in items]})

            if action == "create":
                user = await users.add_user(
                    caller, email=email or "", name=name or "", role=role or "member"
                )
                return _ok(user.to_response(detail="full"))

            if not user_id:
                return _err(f"user_id is required for {action}")

            if action == "get":
                Authorizer.check_global(caller, "user_management")
                user = await users.get_user(user_id)
                if user is None:
                    raise ResourceNotFound("User not found")
                return _ok(user.to_response(detail="full"))

            if action == "update":
                fields = {
                    key: value
                    for key, value in {"email": email, "name": name, "role": role}.items()
                    if value is not None
                }
                user = await users.update_user(caller, user_id, **fields)
                return _ok(user.to_response(detail="full"))

            if action == "delete":
                await users.delete_user(caller, user_id)
                return _ok({"success": True, "message": "User deleted successfully"})

            return _err(f"Unknown action: {action}")

        return await _call(_handle)

    # ── co_notify ─────────────────────────────────────────────

    @mcp.tool()
    async def co_notify(
        token: Token,
        action: Annotated[
            Literal["list", "read", "read_all", "unread_count"],
            Field(description="list | read | read_all | unread_count"),
        ],
        notification_id: Annotated[str | None, Field(description="Notification ID (read)")] = None,
        unread_only: Annotated[bool, Field(description="Only unread (list)")] = False,
        limit: Annotated[int | None, Field(description="Page size (list)", ge=1)] = None,
        offset: Annotated[int, Field(description="Pagination offset (list)", ge=0)] = 0,
    ) -> str:
        """Your in-app notifications: assignments, mentions, stage changes, approvals."""
        s = await _init()

        async def _handle() -> str:
            caller = await _caller(s, token)
            service: NotificationService = s["notifications"]
            await s["queue"].join()

            if action == "list":
                items = await service.list_notifications(
                    caller.id,
                    unread_only=unread_only,
                    limit=config.page_limit(limit),
                    offset=offset,
                )
                return _ok({"count": len(items), "notifications": [n.to_response() for n in items]})

            if action == "unread_count":
                return _ok({"count": await service.unread_count(caller.id)})

            if action == "read":
                if not notification_id:
                    return _err("notification_id is required for read")
                if not await service.mark_read(caller.id, notification_id):
                    return _err("Notification not found", 404)
                return _ok({"read": notification_id})

            if action == "read_all":
                return _ok({"updated": await service.mark_all_read(caller.id)})

            return _err(f"Unknown action: {action}")

        return await _call(_handle)

    # ── co_audit ──────────────────────────────────────────────

    @mcp.tool()
    async def co_audit(
        token: Token,
        action: Annotated[Literal["card", "team"], Field(description="card | team")],
        card_id: Annotated[str | None, Field(description="Card ID (card)")] = None,
        team_id: Annotated[str | None, Field(description="Team ID (team)")] = None,
        limit: Annotated[int | None, Field(description="Page size", ge=1)] = None,
        offset: Annotated[int, Field(description="Pagination offset", ge=0)] = 0,
    ) -> str:
        """Audit history for a card (readers of the card) or a whole team (admins)."""
        s = await _init()

        async def _handle() -> str:
            caller = await _caller(s, token)
            page = config.page_limit(limit)

            if action == "card":
                history = s["authorizer"].require(
                    Action.READ, lambda card_id, **_: card_id
                )(_card_history)
                return await history(caller, card_id, limit=page, offset=offset)

            if action == "team":
                if not team_id:
                    return _err("team_id is required for team")
                Authorizer.check_global(caller, "team_management")
                logs, total = await s["audit"].get_logs_for_team(team_id, limit=page, offset=offset)
                return _ok({"team_id": team_id, "total": total, "logs": _audit_rows(logs)})

            return _err(f"Unknown action: {action}")

        return await _call(_handle)

    # ── co_team ───────────────────────────────────────────────

    @mcp.tool()
    async def co_team(
        token: Token,
        action: Annotated[
            Literal["list", "stages", "members", "agency", "clients", "create_client"],
            Field(description="list | stages | members | agency | clients | create_client"),
        ],
        team_id: Annotated[str | None, Field(description="Team ID (stages, members)")] = None,
        name: Annotated[str | None, Field(description="Team name (create_client)")] = None,
        client_company_name: Annotated[
            str | None, Field(description="Client company (create_client)")
        ] = None,
        description: Annotated[str | None, Field(description="Team description (create_client)")] = None,
        industry: Annotated[str | None, Field(description="Industry (create_client)")] = None,
        contact_email: Annotated[str | None, Field(description="Contact email (create_client)")] = None,
        profile: Annotated[
            dict[str, Any] | None,
            Field(
                description="Brand profile (create_client): brand_bio, brand_voice, "
                "target_audience, content_pillars, style_guidelines, performance_goals"
            ),
        ] = None,
    ) -> str:
        """Teams, their REACH stages and members, and client accounts (client management)."""
        s = await _init()

        async def _handle() -> str:
            caller = await _caller(s, token)
            teams: TeamService = s["teams"]

            if action == "list":
                items = await teams.visible_teams(caller)
                return _ok({"count": len(items), "teams": [t.to_response() for t in items]})

            if action == "agency":
                team = await teams.agency_team()
                if team is None:
                    return _err("Agency team not configured", 404)
                members = await teams.list_members(team.id)
                return _ok({**team.to_response(), "members": [u.to_response() for u in members]})

            if action == "clients":
                clients = await teams.list_clients(caller)
                return _ok({"count": len(clients), "clients": [_client_row(*c) for c in clients]})

            if action == "create_client":
                team, client_profile = await teams.create_client(
                    caller,
                    name=name or "",
                    client_company_name=client_company_name or "",
                    description=description,
                    industry=industry,
                    contact_email=contact_email,
                    profile=profile,
                )
                return _ok(_client_row(team, client_profile))

            if not team_id:
                return _err(f"team_id is required for {action}")

            if action == "stages":
                stages = await teams.stage_overview(caller, team_id)
                return _ok({"team_id": team_id, "count": len(stages), "stages": stages})

            if action == "members":
                members = await teams.team_members(caller, team_id)
                return _ok(
                    {"team_id": team_id, "count": len(members), "members": [u.to_response() for u in members]}
                )

            return _err(f"Unknown action: {action}")

        return await _call(_handle)

    # ── co_checklist ──────────────────────────────────────────

    @mcp.tool()
    async def co_checklist(
        token: Token,
        action: Annotated[
            Literal["list", "add", "complete", "uncomplete", "delete"],
            Field(description="list | add | complete | uncomplete | delete"),
        ],
        card_id: Annotated[str, Field(description="Card ID")],
        item_id: Annotated[
            str | None, Field(description="Checklist item ID (complete, uncomplete, delete)")
        ] = None,
        title: Annotated[str | None, Field(description="Item title, 1-200 chars (add)")] = None,
        description: Annotated[str | None, Field(description="Item description (add)")] = None,
        position: Annotated[int | None, Field(description="Item position (add)", ge=0)] = None,
    ) -> str:
        """Card checklists. Reading needs read access to the card's stage; changes need edit access."""  # noqa: E501
        s = await _init()

        async def _handle() -> str:
            caller = await _caller(s, token)
            checklists: ChecklistService = s["checklists"]

            if action == "list":
                items = await checklists.list_items(caller, card_id)
                completed = sum(1 for item in items if item.is_completed)
                return _ok(
                    {
                        "card_id": card_id,
                        "count": len(items),
                        "completed": completed,
                        "items": [item.to_response() for item in items],
                    }
                )

            if action == "add":
                item = await checklists.add_item(
                    caller, card_id, title=title or "", description=description, position=position
                )
                return _ok(item.to_response())

            if not item_id:
                return _err(f"item_id is required for {action}")

            if action in ("complete", "uncomplete"):
                item = await checklists.set_completed(
                    caller, card_id, item_id, action == "complete"
                )
                return _ok(item.to_response())

            if action == "delete":
                await checklists.delete_item(caller, card_id, item_id)
                return _ok({"deleted": item_id, "card_id": card_id})

            return _err(f"Unknown action: {action}")

        return await _call(_handle)

    # ── Resources ─────────────────────────────────────────────

    @mcp.resource("co://matrix")
    async def co_resource_matrix() -> str:
        """The role/stage permission matrix and global permissions."""
        return _ok(
            {
                "stages": matrix_as_dict(),
                "global": {
                    str(role): sorted(str(p) for p in perms)
                    for role, perms in GLOBAL_PERMISSIONS.items()
                },
            }
        )

    return mcp
