"""User and caller models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from contentos.auth.permissions import Role


class User(BaseModel):
    """A person with a login and a single role."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    email: str
    name: str
    role: Role = Role.MEMBER
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    updated_at: str | None = None

    def to_storage(self) -> dict:
        return self.model_dump(mode="json")

    def to_caller(self) -> Caller:
        return Caller(id=self.id, role=self.role, email=self.email, name=self.name)

    def to_response(self, *, detail: str = "summary") -> dict[str, Any]:
        data: dict[str, Any] = {
            "_v": "1.0",
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": str(self.role),
        }
        if detail != "summary":
            data.update({"created_at": self.created_at, "updated_at": self.updated_at})
        return data


class Caller(BaseModel):
    """The authenticated identity behind a request, resolved server-side."""

    model_config = {"frozen": True}

    id: str
    role: Role
    email: str = ""
    name: str = ""
