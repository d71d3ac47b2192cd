"""Shared test fixtures for Content OS."""

from __future__ import annotations

from pathlib import Path

import pytest

from contentos.auth.authorizer import Authorizer
from contentos.auth.permissions import Role, Stage, normalize_stage
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
from contentos.models.card import ContentCard
from contentos.models.team import StageRecord, Team
from contentos.models.user import Caller, User
from contentos.storage.sqlite_store import SQLiteStore


@pytest.fixture
def tmp_db(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
async def store(tmp_db: Path) -> SQLiteStore:
    s = SQLiteStore(tmp_db)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(workspace_path=tmp_path)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


# --- Services ---


@pytest.fixture
def authorizer(store):
    return Authorizer(store)


@pytest.fixture
def audit(store):
    return AuditLogService(store)


@pytest.fixture
def teams(store, event_bus):
    return TeamService(store, event_bus)


@pytest.fixture
def user_service(store, event_bus, audit):
    return UserService(store, event_bus, audit)


@pytest.fixture
def cards(store, event_bus, authorizer, audit):
    return CardService(store, event_bus, authorizer, audit)


@pytest.fixture
def comments(store, event_bus, authorizer, audit):
    return CommentService(store, event_bus, authorizer, audit)


@pytest.fixture
def assignments(store, event_bus, authorizer, audit):
    return AssignmentService(store, event_bus, authorizer, audit)


@pytest.fixture
def checklists(store, event_bus, authorizer):
    return ChecklistService(store, event_bus, authorizer)


@pytest.fixture
def queue(store):
    return NotificationQueue(store)


@pytest.fixture
def notifications(store, event_bus, queue):
    return NotificationService(store, event_bus, queue)


# --- Seeded board ---


@pytest.fixture
async def users(user_service) -> dict[Role, User]:
    """One user per role; exactly one admin."""
    created: dict[Role, User] = {}
    for role in Role:
        created[role] = await user_service.create_user(
            email=f"{role}@example.com", name=role.value.capitalize(), role=role
        )
    return created


@pytest.fixture
def callers(users) -> dict[Role, Caller]:
    return {role: user.to_caller() for role, user in users.items()}


@pytest.fixture
async def team(teams, users) -> Team:
    """Agency team with the five REACH stages and every seeded user as a member."""
    created = await teams.create_team(name="Agency", created_by=users[Role.ADMIN].id)
    for user in users.values():
        await teams.add_member(created.id, user.id)
    return created


@pytest.fixture
async def stages(teams, team) -> dict[Stage, StageRecord]:
    return {normalize_stage(s.name): s for s in await teams.list_stages(team.id)}


@pytest.fixture
def make_card(store, team, stages, users):
    """Insert a card directly, bypassing authorization."""

    async def _make(stage: Stage, title: str = "Launch video", **fields) -> ContentCard:
        record = stages[stage]
        card = ContentCard(
            team_id=team.id,
            stage_id=record.id,
            title=title,
            created_by=users[Role.ADMIN].id,
            position=await store.next_card_position(record.id),
            **fields,
        )
        await store.insert_card(card.to_storage())
        return ContentCard(**await store.get_card(card.id))

    return _make


@pytest.fixture
def capture(event_bus):
    """Record every event emitted on the bus."""
    events: list[dict] = []

    async def _listener(event_type, data):
        events.append({"type": event_type, "data": data})

    event_bus.on_all(_listener)
    return events
