"""Values produced by an authorization attempt."""

from __future__ import annotations

from pydantic import BaseModel

from contentos.auth.permissions import Stage
from contentos.models.card import ContentCard
from contentos.models.team import StageRecord


class PermissionDecision(BaseModel):
    """Outcome of evaluating the policy for one (role, stage, action)."""

    allowed: bool
    reason: str | None = None
    stage: Stage | None = None


class ResourceContext(BaseModel):
    """The card an authorized request acts on, resolved fresh per request."""

    card_id: str
    team_id: str
    stage_id: str
    stage: Stage
    card: ContentCard
    destination_stage_id: str | None = None
    destination_stage: Stage | None = None

    @property
    def is_transition(self) -> bool:
        return self.destination_stage_id is not None and self.destination_stage_id != self.stage_id


class StageContext(BaseModel):
    """The stage an authorized stage-scoped request acts on."""

    stage_id: str
    team_id: str
    stage: Stage
    record: StageRecord
