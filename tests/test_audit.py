"""Tests for the audit log service."""

from __future__ import annotations

import sqlite3

from contentos.auth.permissions import Role
from contentos.core.audit import AuditLogService
from contentos.models.audit import AuditAction, AuditEntityType


async def test_create_and_read_logs(audit, users):
    admin = users[Role.ADMIN]
    for action in (AuditAction.CREATED, AuditAction.UPDATED, AuditAction.MOVED):
        await audit.create_log(
            entity_type=AuditEntityType.CONTENT_CARD,
            entity_id="card-1",
            action=action,
            user_id=admin.id,
            team_id="team-1",
        )

    logs, total = await audit.get_logs_for_entity(AuditEntityType.CONTENT_CARD, "card-1")
    assert total == 3
    assert [log.action for log in logs] == ["moved", "updated", "created"]
    assert logs[0].user_name == admin.name


async def test_pagination_and_filters(audit):
    for i in range(5):
        await audit.create_log(
            entity_type="comment",
            entity_id="c-1",
            action="created" if i == 0 else "updated",
            user_id=f"user-{i % 2}",
            team_id=None,
        )
    page, total = await audit.get_logs_for_entity("comment", "c-1", limit=2, offset=2)
    assert total == 5
    assert len(page) == 2

    _, updated = await audit.get_logs_for_entity("comment", "c-1", action="updated")
    assert updated == 4
    _, by_user = await audit.get_logs_for_entity("comment", "c-1", user_id="user-0")
    assert by_user == 3


async def test_logs_for_team(audit):
    await audit.create_log(
        entity_type="content_card", entity_id="a", action="created", user_id="u", team_id="t1"
    )
    await audit.create_log(
        entity_type="content_card", entity_id="b", action="created", user_id="u", team_id="t2"
    )
    logs, total = await audit.get_logs_for_team("t1")
    assert total == 1
    assert logs[0].entity_id == "a"


async def test_history_survives_deleted_user(audit, user_service, callers, users):
    target = users[Role.CLIENT]
    await audit.create_log(
        entity_type="user", entity_id=target.id, action="created", user_id=target.id, team_id=None
    )
    await user_service.delete_user(callers[Role.ADMIN], target.id)
    logs, total = await audit.get_logs_for_entity("user", target.id)
    assert total == 2
    assert logs[1].user_name is None


async def test_create_log_failure_is_swallowed(audit, store, monkeypatch):
    async def _boom(entry):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(store, "insert_audit_log", _boom)
    result = await audit.create_log(
        entity_type="content_card", entity_id="x", action="created", user_id="u", team_id=None
    )
    assert result is None


async def test_create_log_rejects_unknown_action(audit):
    result = await audit.create_log(
        entity_type="content_card", entity_id="x", action="exploded", user_id="u", team_id=None
    )
    assert result is None


# --- Diffing ---


def test_detect_changed_fields():
    old = {"title": "A", "tags": ["x"], "status": "not_started", "due_date": None}
    new = {"title": "B", "tags": ["x"], "status": "not_started", "due_date": "2026-01-01"}
    changes = AuditLogService.detect_changed_fields(old, new, ["title", "tags", "status", "due_date"])
    assert changes == {
        "title": {"old": "A", "new": "B"},
        "due_date": {"old": None, "new": "2026-01-01"},
    }


def test_detect_no_changes():
    data = {"title": "Same", "tags": ["a", "b"]}
    assert AuditLogService.detect_changed_fields(data, dict(data), ["title", "tags"]) is None


def test_format_changed_fields():
    rows = AuditLogService.format_changed_fields(
        {
            "due_date": {"old": None, "new": "2026-01-01"},
            "tags": {"old": [], "new": ["launch"]},
            "is_client": {"old": False, "new": True},
        }
    )
    assert rows[0] == {"field": "Due Date", "old": "None", "new": "2026-01-01"}
    assert rows[1] == {"field": "Tags", "old": "[]", "new": '["launch"]'}
    assert rows[2] == {"field": "Is client", "old": "No", "new": "Yes"}


def test_format_empty():
    assert AuditLogService.format_changed_fields(None) == []
