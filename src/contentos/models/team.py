"""Team and stage models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field

# Default REACH stages seeded for new teams: (name, position, description)
DEFAULT_STAGES: tuple[tuple[str, int, str], ...] = (
    ("Research", 1, "Research and ideation phase"),
    ("Envision", 2, "Content planning and framework design"),
    ("Assemble", 3, "Production and content creation"),
    ("Connect", 4, "Publishing and client approval"),
    ("Hone", 5, "Analytics and optimization"),
)


class Team(BaseModel):
    """An agency or client team owning a board of stages."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    name: str
    description: str | None = None
    is_client: bool = False
    client_company_name: str | None = None
    industry: str | None = None
    contact_email: str | None = None
    created_by: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_storage(self) -> dict:
        return self.model_dump()

    def to_response(self) -> dict:
        data = {
            "_v": "1.0",
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_client": self.is_client,
        }
        if self.is_client:
            data.update(
                {
                    "client_company_name": self.client_company_name,
                    "industry": self.industry,
                    "contact_email": self.contact_email,
                }
            )
        return data


class StageRecord(BaseModel):
    """A persisted pipeline column. ``name`` is free text until normalized."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    team_id: str
    name: str
    description: str | None = None
    position: int
    color: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_storage(self) -> dict:
        return self.model_dump()

    def to_response(self) -> dict:
        return {
            "_v": "1.0",
            "id": self.id,
            "team_id": self.team_id,
            "name": self.name,
            "position": self.position,
            "color": self.color,
        }


class ClientProfile(BaseModel):
    """Brand brief attached to a client team."""

    team_id: str
    brand_bio: str | None = None
    brand_voice: str | None = None
    target_audience: str | None = None
    content_pillars: list[str] | None = None
    style_guidelines: str | None = None
    performance_goals: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_storage(self) -> dict:
        return self.model_dump()

    def to_response(self) -> dict:
        return {"_v": "1.0", **self.model_dump(exclude={"created_at"})}
