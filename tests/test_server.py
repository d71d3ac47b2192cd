"""Tests for the FastMCP server (8 tools, 1 resource)."""

from __future__ import annotations

import json
import logging

import pytest
from fastmcp import Client

from contentos.auth.guards import LAST_ADMIN_DELETION_MESSAGE, SELF_DEMOTION_MESSAGE
from contentos.auth.jwt import create_token
from contentos.auth.permissions import Role, Stage
from contentos.server import create_server


def _data(result) -> dict:
    """Extract parsed JSON from CallToolResult."""
    return json.loads(result.content[0].text)


@pytest.fixture
async def client(tmp_db, team, stages):
    server = create_server(str(tmp_db))
    async with Client(server) as c:
        yield c


@pytest.fixture
def tokens(users) -> dict[Role, str]:
    return {role: create_token(user.id) for role, user in users.items()}


async def _create_card(client: Client, token: str, stage_id: str, title: str = "Launch video") -> dict:
    result = await client.call_tool(
        "co_card", {"token": token, "action": "create", "stage_id": stage_id, "title": title}
    )
    return _data(result)


async def test_list_tools(client: Client):
    tools = await client.list_tools()
    assert {t.name for t in tools} == {
        "co_card",
        "co_comment",
        "co_assign",
        "co_user",
        "co_notify",
        "co_audit",
        "co_team",
        "co_checklist",
    }


async def test_matrix_resource(client: Client):
    contents = await client.read_resource("co://matrix")
    data = json.loads(contents[0].text)
    assert data["stages"]["client"]["research"] == "none"
    assert "user_management" in data["global"]["admin"]


# --- co_card ---


async def test_create_card(client, tokens, stages):
    data = await _create_card(client, tokens[Role.MEMBER], stages[Stage.RESEARCH].id)
    assert data["_v"] == "1.0"
    assert data["title"] == "Launch video"
    assert data["stage_name"] == "Research"
    assert data["position"] == 1


async def test_create_card_forbidden(client, tokens, stages):
    data = await _create_card(client, tokens[Role.CLIENT], stages[Stage.RESEARCH].id)
    assert data == {"_v": "1.0", "error": "Forbidden", "status": 403}


@pytest.mark.parametrize("token", ["", "not-a-token", create_token("nobody")])
async def test_unauthenticated(client, stages, token):
    data = await _create_card(client, token, stages[Stage.RESEARCH].id)
    assert data["status"] == 401
    assert data["error"] == "Unauthorized"


async def test_get_missing_card(client, tokens):
    result = await client.call_tool(
        "co_card", {"token": tokens[Role.ADMIN], "action": "get", "card_id": "missing"}
    )
    assert _data(result) == {"_v": "1.0", "error": "Card not found", "status": 404}


async def test_validation_error(client, tokens, stages):
    data = await _create_card(client, tokens[Role.ADMIN], stages[Stage.RESEARCH].id, title=" ")
    assert data["status"] == 400
    assert "title" in data["error"]


async def test_list_cards_filtered_for_client(client, tokens, stages, team):
    for stage in Stage:
        await _create_card(client, tokens[Role.ADMIN], stages[stage].id, title=str(stage))
    result = await client.call_tool(
        "co_card", {"token": tokens[Role.CLIENT], "action": "list", "team_id": team.id}
    )
    data = _data(result)
    assert data["count"] == 2
    assert {c["stage_name"] for c in data["cards"]} == {"Connect", "Hone"}


async def test_move_card(client, tokens, stages):
    card = await _create_card(client, tokens[Role.EDITOR], stages[Stage.ASSEMBLE].id)

    denied = await client.call_tool(
        "co_card",
        {
            "token": tokens[Role.EDITOR],
            "action": "move",
            "card_id": card["id"],
            "stage_id": stages[Stage.HONE].id,
        },
    )
    assert _data(denied)["status"] == 403

    moved = await client.call_tool(
        "co_card",
        {
            "token": tokens[Role.EDITOR],
            "action": "move",
            "card_id": card["id"],
            "stage_id": stages[Stage.CONNECT].id,
        },
    )
    assert _data(moved)["stage_name"] == "Connect"


async def test_update_and_approve(client, tokens, stages):
    card = await _create_card(client, tokens[Role.ADMIN], stages[Stage.CONNECT].id)
    updated = await client.call_tool(
        "co_card",
        {
            "token": tokens[Role.COORDINATOR],
            "action": "update",
            "card_id": card["id"],
            "status": "ready_for_review",
        },
    )
    assert _data(updated)["status"] == "ready_for_review"

    approved = await client.call_tool(
        "co_card", {"token": tokens[Role.CLIENT], "action": "approve", "card_id": card["id"]}
    )
    assert _data(approved)["status"] == "completed"


async def test_delete_card(client, tokens, stages):
    card = await _create_card(client, tokens[Role.SCRIPTWRITER], stages[Stage.RESEARCH].id)
    result = await client.call_tool(
        "co_card", {"token": tokens[Role.SCRIPTWRITER], "action": "delete", "card_id": card["id"]}
    )
    assert _data(result)["deleted"] == card["id"]


# --- co_comment, co_assign, co_notify ---


async def test_comment_mention_notifies(client, tokens, stages, users):
    card = await _create_card(client, tokens[Role.ADMIN], stages[Stage.CONNECT].id)
    added = await client.call_tool(
        "co_comment",
        {
            "token": tokens[Role.CLIENT],
            "action": "add",
            "card_id": card["id"],
            "content": "@strategist@example.com thoughts?",
        },
    )
    assert _data(added)["mentions"] == [users[Role.STRATEGIST].id]

    inbox = await client.call_tool(
        "co_notify", {"token": tokens[Role.STRATEGIST], "action": "list"}
    )
    notifications = _data(inbox)["notifications"]
    assert notifications[0]["type"] == "mention"


async def test_comment_forbidden(client, tokens, stages):
    card = await _create_card(client, tokens[Role.ADMIN], stages[Stage.HONE].id)
    result = await client.call_tool(
        "co_comment",
        {"token": tokens[Role.MEMBER], "action": "add", "card_id": card["id"], "content": "Hi"},
    )
    assert _data(result)["status"] == 403


async def test_assign_and_read_notifications(client, tokens, stages, users):
    card = await _create_card(client, tokens[Role.ADMIN], stages[Stage.ASSEMBLE].id)
    assigned = await client.call_tool(
        "co_assign",
        {
            "token": tokens[Role.COORDINATOR],
            "action": "add",
            "card_id": card["id"],
            "user_id": users[Role.EDITOR].id,
        },
    )
    assert _data(assigned)["user_id"] == users[Role.EDITOR].id

    count = await client.call_tool(
        "co_notify", {"token": tokens[Role.EDITOR], "action": "unread_count"}
    )
    assert _data(count)["count"] == 1

    read_all = await client.call_tool(
        "co_notify", {"token": tokens[Role.EDITOR], "action": "read_all"}
    )
    assert _data(read_all)["updated"] == 1


async def test_assign_forbidden_for_member(client, tokens, stages, users):
    card = await _create_card(client, tokens[Role.MEMBER], stages[Stage.RESEARCH].id)
    result = await client.call_tool(
        "co_assign",
        {
            "token": tokens[Role.MEMBER],
            "action": "add",
            "card_id": card["id"],
            "user_id": users[Role.EDITOR].id,
        },
    )
    assert _data(result)["status"] == 403


# --- co_user ---


async def test_me(client, tokens):
    result = await client.call_tool("co_user", {"token": tokens[Role.CLIENT], "action": "me"})
    data = _data(result)
    assert data["role"] == "client"
    assert data["global_permissions"] == ["view_assigned"]


async def test_user_admin_requires_permission(client, tokens):
    result = await client.call_tool("co_user", {"token": tokens[Role.EDITOR], "action": "list"})
    assert _data(result)["status"] == 403


async def test_last_admin_cannot_be_deleted(client, tokens, users):
    result = await client.call_tool(
        "co_user",
        {"token": tokens[Role.ADMIN], "action": "delete", "user_id": users[Role.ADMIN].id},
    )
    assert _data(result) == {"_v": "1.0", "error": LAST_ADMIN_DELETION_MESSAGE, "status": 403}


async def test_self_demotion_blocked(client, tokens, users):
    result = await client.call_tool(
        "co_user",
        {
            "token": tokens[Role.ADMIN],
            "action": "update",
            "user_id": users[Role.ADMIN].id,
            "role": "member",
        },
    )
    assert _data(result)["error"] == SELF_DEMOTION_MESSAGE


async def test_create_and_delete_user(client, tokens):
    created = await client.call_tool(
        "co_user",
        {
            "token": tokens[Role.ADMIN],
            "action": "create",
            "email": "new@example.com",
            "name": "New Hire",
            "role": "scriptwriter",
        },
    )
    user = _data(created)
    assert user["role"] == "scriptwriter"

    deleted = await client.call_tool(
        "co_user", {"token": tokens[Role.ADMIN], "action": "delete", "user_id": user["id"]}
    )
    assert _data(deleted) == {"_v": "1.0", "success": True, "message": "User deleted successfully"}


# --- co_audit ---


async def test_card_history(client, tokens, stages):
    card = await _create_card(client, tokens[Role.ADMIN], stages[Stage.RESEARCH].id)
    await client.call_tool(
        "co_card",
        {"token": tokens[Role.ADMIN], "action": "update", "card_id": card["id"], "title": "v2"},
    )
    result = await client.call_tool(
        "co_audit", {"token": tokens[Role.MEMBER], "action": "card", "card_id": card["id"]}
    )
    data = _data(result)
    assert data["total"] == 2
    assert [log["action"] for log in data["logs"]] == ["updated", "created"]
    assert data["logs"][0]["user_name"] == "Admin"


async def test_card_history_respects_stage_access(client, tokens, stages):
    card = await _create_card(client, tokens[Role.ADMIN], stages[Stage.RESEARCH].id)
    result = await client.call_tool(
        "co_audit", {"token": tokens[Role.CLIENT], "action": "card", "card_id": card["id"]}
    )
    assert _data(result)["status"] == 403


async def test_team_history(client, tokens, stages, team):
    await _create_card(client, tokens[Role.ADMIN], stages[Stage.RESEARCH].id)
    denied = await client.call_tool(
        "co_audit", {"token": tokens[Role.MEMBER], "action": "team", "team_id": team.id}
    )
    assert _data(denied)["status"] == 403

    allowed = await client.call_tool(
        "co_audit", {"token": tokens[Role.ADMIN], "action": "team", "team_id": team.id}
    )
    assert _data(allowed)["total"] == 1


async def test_card_history_formats_changes(client, tokens, stages):
    card = await _create_card(client, tokens[Role.ADMIN], stages[Stage.RESEARCH].id)
    await client.call_tool(
        "co_card",
        {"token": tokens[Role.ADMIN], "action": "update", "card_id": card["id"], "title": "v2"},
    )
    result = await client.call_tool(
        "co_audit", {"token": tokens[Role.ADMIN], "action": "card", "card_id": card["id"]}
    )
    logs = _data(result)["logs"]
    assert logs[0]["changes"] == [{"field": "Title", "old": "Launch video", "new": "v2"}]
    assert logs[1]["changes"] == []


# --- co_card field clearing ---


async def test_update_content_type_and_clear_fields(client, tokens, stages, users):
    created = await client.call_tool(
        "co_card",
        {
            "token": tokens[Role.ADMIN],
            "action": "create",
            "stage_id": stages[Stage.RESEARCH].id,
            "title": "Teaser",
            "content_type": "reel",
            "due_date": "2026-11-01T00:00:00+00:00",
        },
    )
    card = _data(created)
    assert card["content_type"] == "reel"

    await client.call_tool(
        "co_card",
        {
            "token": tokens[Role.ADMIN],
            "action": "update",
            "card_id": card["id"],
            "assigned_to": users[Role.MEMBER].id,
            "content_type": "carousel",
        },
    )
    cleared = await client.call_tool(
        "co_card",
        {
            "token": tokens[Role.ADMIN],
            "action": "update",
            "card_id": card["id"],
            "clear": ["assigned_to", "due_date"],
        },
    )
    data = _data(cleared)
    assert data["assigned_to"] is None
    assert data["due_date"] is None
    assert data["content_type"] == "carousel"


async def test_clear_rejects_unknown_and_conflicting_fields(client, tokens, stages):
    card = await _create_card(client, tokens[Role.ADMIN], stages[Stage.RESEARCH].id)
    unknown = await client.call_tool(
        "co_card",
        {"token": tokens[Role.ADMIN], "action": "update", "card_id": card["id"], "clear": ["title"]},
    )
    assert _data(unknown) == {"_v": "1.0", "error": "Field cannot be cleared: title", "status": 400}

    conflict = await client.call_tool(
        "co_card",
        {
            "token": tokens[Role.ADMIN],
            "action": "update",
            "card_id": card["id"],
            "description": "New",
            "clear": ["description"],
        },
    )
    assert _data(conflict)["error"] == "Field is both set and cleared: description"


# --- co_user stage access and mentions ---


async def test_me_includes_stage_access(client, tokens):
    result = await client.call_tool("co_user", {"token": tokens[Role.EDITOR], "action": "me"})
    data = _data(result)
    assert data["accessible_stages"] == ["research", "envision", "assemble", "connect", "hone"]
    assert data["stages"]["assemble"] == {
        "level": "full",
        "description": "Full access - create, edit, delete, move cards, assign users",
        "can_drag": True,
        "read_only": False,
    }
    assert data["stages"]["hone"]["read_only"] is True


async def test_me_client_stage_access(client, tokens):
    data = _data(await client.call_tool("co_user", {"token": tokens[Role.CLIENT], "action": "me"}))
    assert data["accessible_stages"] == ["connect", "hone"]
    assert data["stages"]["research"]["level"] == "none"


async def test_mentions(client, tokens, stages, users):
    card = await _create_card(client, tokens[Role.ADMIN], stages[Stage.ASSEMBLE].id)
    await client.call_tool(
        "co_comment",
        {
            "token": tokens[Role.ADMIN],
            "action": "add",
            "card_id": card["id"],
            "content": "@editor@example.com take a look",
        },
    )
    own = await client.call_tool("co_user", {"token": tokens[Role.EDITOR], "action": "mentions"})
    data = _data(own)
    assert data["count"] == 1
    assert data["mentions"][0]["card_title"] == "Launch video"

    other = await client.call_tool(
        "co_user",
        {"token": tokens[Role.MEMBER], "action": "mentions", "user_id": users[Role.EDITOR].id},
    )
    assert _data(other)["status"] == 403


# --- co_team ---


async def test_team_list_and_stages(client, tokens, team):
    listed = _data(await client.call_tool("co_team", {"token": tokens[Role.MEMBER], "action": "list"}))
    assert [t["id"] for t in listed["teams"]] == [team.id]

    result = await client.call_tool(
        "co_team", {"token": tokens[Role.STRATEGIST], "action": "stages", "team_id": team.id}
    )
    stages = _data(result)["stages"]
    assert [s["stage"] for s in stages] == ["research", "envision", "assemble", "connect", "hone"]
    assert all(s["level"] == "comment_approve" and not s["can_drag"] for s in stages)


async def test_team_members_and_missing_team(client, tokens, team, users):
    members = await client.call_tool(
        "co_team", {"token": tokens[Role.CLIENT], "action": "members", "team_id": team.id}
    )
    assert _data(members)["count"] == len(users)

    missing = await client.call_tool(
        "co_team", {"token": tokens[Role.ADMIN], "action": "stages", "team_id": "missing"}
    )
    assert _data(missing) == {"_v": "1.0", "error": "Team not found", "status": 404}


async def test_agency_team(tmp_db, config, team, stages, tokens, users):
    unset = await _call_once(create_server(str(tmp_db)), "co_team", tokens[Role.MEMBER], "agency")
    assert unset == {"_v": "1.0", "error": "Agency team not configured", "status": 404}

    config.agency_team_id = team.id
    server = create_server(str(tmp_db), config=config)
    data = await _call_once(server, "co_team", tokens[Role.MEMBER], "agency")
    assert data["id"] == team.id
    assert len(data["members"]) == len(users)


async def test_client_management(client, tokens):
    denied = await client.call_tool(
        "co_team",
        {
            "token": tokens[Role.STRATEGIST],
            "action": "create_client",
            "name": "Acme",
            "client_company_name": "Acme Corp",
        },
    )
    assert _data(denied)["status"] == 403

    created = await client.call_tool(
        "co_team",
        {
            "token": tokens[Role.ADMIN],
            "action": "create_client",
            "name": "Acme",
            "client_company_name": "Acme Corp",
            "contact_email": "hi@acme.example",
            "profile": {"brand_voice": "Warm"},
        },
    )
    data = _data(created)
    assert data["team"]["is_client"] is True
    assert data["team"]["client_company_name"] == "Acme Corp"
    assert data["profile"]["brand_voice"] == "Warm"

    listed = _data(await client.call_tool("co_team", {"token": tokens[Role.ADMIN], "action": "clients"}))
    assert listed["count"] == 1
    assert listed["clients"][0]["team"]["id"] == data["team"]["id"]


# --- co_checklist ---


async def test_checklist_flow(client, tokens, stages, users):
    card = await _create_card(client, tokens[Role.EDITOR], stages[Stage.ASSEMBLE].id)
    added = await client.call_tool(
        "co_checklist",
        {"token": tokens[Role.EDITOR], "action": "add", "card_id": card["id"], "title": "Export 4K"},
    )
    item = _data(added)
    assert item["position"] == 0

    done = await client.call_tool(
        "co_checklist",
        {"token": tokens[Role.EDITOR], "action": "complete", "card_id": card["id"], "item_id": item["id"]},
    )
    assert _data(done)["completed_by"] == users[Role.EDITOR].id

    listed = await client.call_tool(
        "co_checklist", {"token": tokens[Role.STRATEGIST], "action": "list", "card_id": card["id"]}
    )
    assert _data(listed)["completed"] == 1

    denied = await client.call_tool(
        "co_checklist",
        {"token": tokens[Role.STRATEGIST], "action": "delete", "card_id": card["id"], "item_id": item["id"]},
    )
    assert _data(denied)["status"] == 403

    deleted = await client.call_tool(
        "co_checklist",
        {"token": tokens[Role.EDITOR], "action": "delete", "card_id": card["id"], "item_id": item["id"]},
    )
    assert _data(deleted) == {"_v": "1.0", "deleted": item["id"], "card_id": card["id"]}


async def test_checklist_missing_item(client, tokens, stages):
    card = await _create_card(client, tokens[Role.ADMIN], stages[Stage.RESEARCH].id)
    result = await client.call_tool(
        "co_checklist",
        {"token": tokens[Role.ADMIN], "action": "uncomplete", "card_id": card["id"], "item_id": "nope"},
    )
    assert _data(result) == {"_v": "1.0", "error": "Checklist item not found", "status": 404}


# --- Lifespan ---


async def test_lifespan_end_stops_workers_and_server_restarts(tmp_db, team, stages, tokens, caplog):
    server = create_server(str(tmp_db))
    with caplog.at_level(logging.INFO, logger="contentos"):
        async with Client(server) as first:
            await _create_card(first, tokens[Role.ADMIN], stages[Stage.RESEARCH].id)
    assert "Stopped 1 notification workers" in caplog.text
    assert "Closed Content OS store" in caplog.text

    async with Client(server) as second:
        result = await second.call_tool(
            "co_card", {"token": tokens[Role.ADMIN], "action": "list", "team_id": team.id}
        )
    assert _data(result)["count"] == 1


async def _call_once(server, tool: str, token: str, action: str) -> dict:
    async with Client(server) as c:
        return _data(await c.call_tool(tool, {"token": token, "action": action}))
