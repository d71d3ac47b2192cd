"""Tests for the notification queue and inbox."""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime, timedelta

from contentos.auth.permissions import Role, Stage
from contentos.core.notifications import NotificationQueue
from contentos.models.notification import NotificationJob


def _job(type: str, user_id: str = "u1") -> NotificationJob:
    return NotificationJob(type=type, user_id=user_id, title=type, message=f"{type} message")


# --- Queue ---


def test_deadline_jobs_have_priority():
    assert _job("deadline").priority < _job("mention").priority


async def test_drain_runs_deadlines_first(queue, store, users, monkeypatch):
    delivered = []
    insert = store.insert_notification

    async def _record(notification):
        delivered.append(notification["type"])
        return await insert(notification)

    monkeypatch.setattr(store, "insert_notification", _record)
    user_id = users[Role.MEMBER].id
    await queue.enqueue(_job("mention", user_id))
    await queue.enqueue(_job("assignment", user_id))
    await queue.enqueue(_job("deadline", user_id))

    assert await queue.drain() == 3
    assert delivered == ["deadline", "mention", "assignment"]
    assert queue.pending == 0


async def test_workers_deliver_in_background(queue, store, users):
    user_id = users[Role.EDITOR].id
    await queue.start()
    assert queue.running
    try:
        await queue.enqueue(_job("assignment", user_id))
        await queue.join()
    finally:
        await queue.stop()
    assert not queue.running
    assert await store.count_unread_notifications(user_id) == 1


async def test_stop_is_logged_once_and_leaves_jobs_queued(store, users, caplog):
    queue = NotificationQueue(store, workers=2)
    await queue.stop()
    await queue.start()
    with caplog.at_level(logging.INFO, logger="contentos.core.notifications"):
        await queue.stop()
        await queue.stop()
    assert caplog.text.count("Stopped 2 notification workers") == 1

    await queue.enqueue(_job("mention", users[Role.MEMBER].id))
    assert queue.pending == 1
    assert await queue.drain() == 1


async def test_failed_delivery_is_logged_not_raised(queue, store, monkeypatch):
    async def _boom(notification):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(store, "insert_notification", _boom)
    await queue.enqueue(_job("mention"))
    assert await queue.drain() == 0
    assert queue.pending == 0


# --- Event fan-out ---


async def test_assignment_notifies_assignee(notifications, queue, assignments, callers, users, make_card):
    card = await make_card(Stage.RESEARCH)
    await assignments.assign(callers[Role.ADMIN], card.id, users[Role.SCRIPTWRITER].id)
    await queue.drain()

    inbox = await notifications.list_notifications(users[Role.SCRIPTWRITER].id)
    assert len(inbox) == 1
    assert inbox[0].type == "assignment"
    assert inbox[0].related_card_id == card.id
    assert "Launch video" in inbox[0].message


async def test_self_assignment_is_silent(notifications, queue, assignments, callers, make_card):
    card = await make_card(Stage.RESEARCH)
    await assignments.assign(callers[Role.ADMIN], card.id, callers[Role.ADMIN].id)
    await queue.drain()
    assert await notifications.unread_count(callers[Role.ADMIN].id) == 0


async def test_mention_notifies(notifications, queue, comments, callers, users, make_card):
    card = await make_card(Stage.ASSEMBLE)
    comment = await comments.add_comment(
        callers[Role.EDITOR], card.id, "@coordinator@example.com ready for scheduling"
    )
    await queue.drain()

    inbox = await notifications.list_notifications(users[Role.COORDINATOR].id)
    assert inbox[0].type == "mention"
    assert inbox[0].message.startswith("Editor mentioned you")
    assert inbox[0].to_response()["related_card_id"] == card.id
    assert comment.mentions == [users[Role.COORDINATOR].id]


async def test_move_notifies_assignees(
    notifications, queue, cards, assignments, callers, users, make_card, stages
):
    card = await make_card(Stage.ASSEMBLE)
    await assignments.assign(callers[Role.ADMIN], card.id, users[Role.COORDINATOR].id)
    await cards.move_card(callers[Role.EDITOR], card.id, stages[Stage.CONNECT].id)
    await queue.drain()

    inbox = await notifications.list_notifications(users[Role.COORDINATOR].id)
    assert [n.type for n in inbox] == ["stage_change", "assignment"]
    assert "Assemble to Connect" in inbox[0].message


async def test_approval_notifies_creator(notifications, queue, cards, callers, users, make_card):
    card = await make_card(Stage.CONNECT)
    await cards.approve_card(callers[Role.CLIENT], card.id)
    await queue.drain()

    inbox = await notifications.list_notifications(users[Role.ADMIN].id)
    assert inbox[0].type == "approval"
    assert inbox[0].title == "Content approved"


# --- Deadlines ---


async def test_deadline_reminders(notifications, queue, assignments, callers, users, make_card, team):
    now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    soon = await make_card(Stage.RESEARCH, title="Soon", due_date=(now + timedelta(hours=3)).isoformat())
    await make_card(Stage.RESEARCH, title="Later", due_date=(now + timedelta(days=3)).isoformat())
    await make_card(Stage.RESEARCH, title="Done", due_date=now.isoformat(), status="completed")
    await make_card(Stage.RESEARCH, title="Bad date", due_date="next tuesday")
    await assignments.assign(callers[Role.ADMIN], soon.id, users[Role.MEMBER].id)
    await queue.drain()

    jobs = await notifications.enqueue_deadline_reminders(team.id, now=now)
    assert [(j.type, j.user_id, j.card_id) for j in jobs] == [
        ("deadline", users[Role.MEMBER].id, soon.id)
    ]
    assert await queue.drain() == 1


# --- Inbox ---


async def test_mark_read(notifications, queue, users):
    user_id = users[Role.MEMBER].id
    await notifications.enqueue(type="mention", user_id=user_id, title="Hi", message="Hello")
    await notifications.enqueue(type="approval", user_id=user_id, title="Ok", message="Done")
    await queue.drain()
    assert await notifications.unread_count(user_id) == 2

    first = (await notifications.list_notifications(user_id))[0]
    assert await notifications.mark_read(user_id, first.id)
    assert not await notifications.mark_read(users[Role.CLIENT].id, first.id)
    assert await notifications.unread_count(user_id) == 1
    assert len(await notifications.list_notifications(user_id, unread_only=True)) == 1

    assert await notifications.mark_all_read(user_id) == 1
    assert await notifications.unread_count(user_id) == 0
