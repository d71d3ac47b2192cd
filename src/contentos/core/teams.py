"""Team management: teams, REACH stages, membership and client accounts."""

from __future__ import annotations

import logging
import re
from typing import Any

from contentos.auth.authorizer import Authorizer, require_caller
from contentos.auth.errors import Forbidden, ResourceNotFound
from contentos.auth.permissions import (
    GlobalPermission,
    can_view_all_cards,
    describe_stage_access,
    has_global_permission,
    normalize_stage,
)
from contentos.core.audit import AuditLogService
from contentos.events.bus import EventBus
from contentos.events.types import EventType
from contentos.models.audit import AuditAction, AuditEntityType
from contentos.models.team import DEFAULT_STAGES, ClientProfile, StageRecord, Team
from contentos.models.user import Caller, User
from contentos.storage.base import StorageBackend

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PROFILE_FIELDS = {
    "brand_bio",
    "brand_voice",
    "target_audience",
    "content_pillars",
    "style_guidelines",
    "performance_goals",
}
# A profile row is only written when one of these carries a value
_PROFILE_TRIGGERS = ("brand_bio", "brand_voice", "target_audience", "content_pillars")


class TeamService:
    """Creates teams with their pipeline and answers membership questions."""

    def __init__(
        self,
        store: StorageBackend,
        event_bus: EventBus,
        *,
        agency_team_id: str | None = None,
        audit: AuditLogService | None = None,
    ) -> None:
        self._store = store
        self._bus = event_bus
        self._agency_team_id = agency_team_id
        self._audit = audit

    async def create_team(
        self,
        *,
        name: str,
        created_by: str | None = None,
        description: str | None = None,
        is_client: bool = False,
        create_default_stages: bool = True,
        client_company_name: str | None = None,
        industry: str | None = None,
        contact_email: str | None = None,
    ) -> Team:
        """Create a team, add its creator, and seed the five REACH stages.

        Raises:
            ValueError: If name is empty
        """
        if not name or not name.strip():
            raise ValueError("Team name cannot be empty")

        team = Team(
            name=name.strip(),
            description=description,
            is_client=is_client,
            client_company_name=client_company_name,
            industry=industry,
            contact_email=contact_email,
            created_by=created_by,
        )
        await self._store.insert_team(team.to_storage())
        if created_by:
            await self._store.add_team_member(team.id, created_by)

        if create_default_stages:
            for stage_name, position, stage_description in DEFAULT_STAGES:
                await self.add_stage(
                    team.id, name=stage_name, position=position, description=stage_description
                )

        logger.info("Created team: %s (id=%s)", team.name, team.id)
        await self._bus.emit(EventType.TEAM_CREATED, {"team_id": team.id, "name": team.name})
        return team

    async def add_stage(
        self,
        team_id: str,
        *,
        name: str,
        position: int,
        description: str | None = None,
        color: str | None = None,
    ) -> StageRecord:
        """Add a stage column. Names outside REACH are stored but logged."""
        if normalize_stage(name) is None:
            logger.warning("Stage %r on team %s is not a REACH stage", name, team_id)
        stage = StageRecord(
            team_id=team_id,
            name=name,
            position=position,
            description=description,
            color=color,
        )
        await self._store.insert_stage(stage.to_storage())
        return stage

    async def get_team(self, team_id: str) -> Team | None:
        data = await self._store.get_team(team_id)
        return Team(**data) if data else None

    async def list_teams(self, *, is_client: bool | None = None) -> list[Team]:
        return [Team(**row) for row in await self._store.list_teams(is_client=is_client)]

    async def list_stages(self, team_id: str) -> list[StageRecord]:
        return [StageRecord(**row) for row in await self._store.list_stages(team_id)]

    async def add_member(self, team_id: str, user_id: str) -> None:
        await self._store.add_team_member(team_id, user_id)

    async def list_members(self, team_id: str) -> list[User]:
        return [User(**row) for row in await self._store.list_team_members(team_id)]

    async def verify_team_access(self, user_id: str, team_id: str) -> bool:
        return await self._store.is_team_member(team_id, user_id)

    async def agency_team(self) -> Team | None:
        """The configured Main Agency Team, or None when unset or missing."""
        if not self._agency_team_id:
            return None
        team = await self.get_team(self._agency_team_id)
        if team is None:
            logger.warning("Configured agency team %s does not exist", self._agency_team_id)
        return team

    # --- Caller-scoped views ---

    @staticmethod
    def _sees_every_team(caller: Caller) -> bool:
        return can_view_all_cards(caller.role) or has_global_permission(
            caller.role, GlobalPermission.TEAM_MANAGEMENT
        )

    async def visible_teams(self, caller: Caller | None) -> list[Team]:
        """Every team for view-all and team managers, otherwise the caller's own."""
        caller = require_caller(caller)
        if self._sees_every_team(caller):
            return await self.list_teams()
        return [Team(**row) for row in await self._store.list_teams_for_user(caller.id)]

    async def require_team_access(self, caller: Caller | None, team_id: str) -> Team:
        """Return the team if the caller belongs to it or sees every team.

        Raises:
            ResourceNotFound: If the team does not exist
            Forbidden: If the caller is not a member
        """
        caller = require_caller(caller)
        team = await self.get_team(team_id)
        if team is None:
            raise ResourceNotFound("Team not found")
        if not self._sees_every_team(caller) and not await self.verify_team_access(
            caller.id, team_id
        ):
            logger.warning("Team access denied: user=%s team=%s", caller.id, team_id)
            raise Forbidden(action="view_team")
        return team

    async def stage_overview(self, caller: Caller | None, team_id: str) -> list[dict[str, Any]]:
        """The team's stages with what the caller may do in each."""
        caller = require_caller(caller)
        await self.require_team_access(caller, team_id)
        overview = []
        for record in await self.list_stages(team_id):
            stage = normalize_stage(record.name)
            overview.append(
                {
                    **record.to_response(),
                    "stage": str(stage) if stage else None,
                    **describe_stage_access(caller.role, stage or record.name),
                }
            )
        return overview

    async def team_members(self, caller: Caller | None, team_id: str) -> list[User]:
        await self.require_team_access(caller, team_id)
        return await self.list_members(team_id)

    # --- Client accounts ---

    async def create_client(
        self,
        caller: Caller | None,
        *,
        name: str,
        client_company_name: str,
        description: str | None = None,
        industry: str | None = None,
        contact_email: str | None = None,
        profile: dict[str, Any] | None = None,
    ) -> tuple[Team, ClientProfile | None]:
        """Create a client team with its REACH board and optional brand profile.

        Raises:
            Forbidden: If the caller lacks client management
            ValueError: If a required field is missing, the contact email is
                malformed, or the profile names an unknown field
        """
        caller = Authorizer.check_global(caller, GlobalPermission.CLIENT_MANAGEMENT)
        if not name or not name.strip() or not client_company_name or not client_company_name.strip():
            raise ValueError("Name and client company name are required")
        if contact_email and not _EMAIL_RE.match(contact_email.strip()):
            raise ValueError(f"Invalid email format: {contact_email}")
        profile = profile or {}
        unknown = set(profile) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown client profile fields: {sorted(unknown)}")

        team = await self.create_team(
            name=name,
            created_by=caller.id,
            description=description,
            is_client=True,
            client_company_name=client_company_name.strip(),
            industry=industry,
            contact_email=contact_email.strip() if contact_email else None,
        )

        client_profile = None
        if any(profile.get(key) for key in _PROFILE_TRIGGERS):
            client_profile = ClientProfile(team_id=team.id, **profile)
            await self._store.insert_client_profile(client_profile.to_storage())

        logger.info("Created client %s (team=%s)", team.client_company_name, team.id)
        if self._audit is not None:
            await self._audit.create_log(
                entity_type=AuditEntityType.TEAM,
                entity_id=team.id,
                action=AuditAction.CREATED,
                user_id=caller.id,
                team_id=team.id,
                metadata={"client_company_name": team.client_company_name},
            )
        await self._bus.emit(
            EventType.CLIENT_CREATED, {"team_id": team.id, "actor_id": caller.id}
        )
        return team, client_profile

    async def list_clients(
        self, caller: Caller | None
    ) -> list[tuple[Team, ClientProfile | None]]:
        Authorizer.check_global(caller, GlobalPermission.CLIENT_MANAGEMENT)
        clients = []
        for team in await self.list_teams(is_client=True):
            data = await self._store.get_client_profile(team.id)
            clients.append((team, ClientProfile(**data) if data else None))
        return clients
