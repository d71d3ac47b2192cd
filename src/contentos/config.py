"""Content OS configuration management."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class Config:
    """Content OS configuration."""

    workspace_path: Path = field(default_factory=lambda: Path.home() / ".contentos")
    log_level: str = "INFO"
    # Explicit reference to the Main Agency Team; never inferred from row order
    agency_team_id: str | None = None
    session_ttl_minutes: int = 60 * 24
    pagination_default: int = 20
    pagination_max: int = 100
    audit_page_size: int = 50
    notification_workers: int = 1
    wal_mode: bool = True

    @classmethod
    def load(cls, workspace_path: Path | None = None) -> Config:
        """Load config from defaults, then YAML file, then env vars."""
        config = cls()

        if workspace_path:
            config.workspace_path = workspace_path

        env_path = os.environ.get("CONTENTOS_WORKSPACE")
        if env_path:
            config.workspace_path = Path(env_path)

        config_file = config.workspace_path / "config.yaml"
        if config_file.exists():
            with open(config_file) as f:
                data = yaml.safe_load(f) or {}
            for key, value in data.items():
                if key == "workspace_path" or not hasattr(config, key):
                    continue
                current = getattr(config, key)
                if value is None or current is None:
                    setattr(config, key, value)
                else:
                    setattr(config, key, type(current)(value))

        env_log = os.environ.get("CONTENTOS_LOG_LEVEL")
        if env_log:
            config.log_level = env_log

        env_agency = os.environ.get("CONTENTOS_AGENCY_TEAM_ID")
        if env_agency:
            config.agency_team_id = env_agency

        return config

    @property
    def db_path(self) -> Path:
        return self.workspace_path / "contentos.db"

    def page_limit(self, requested: int | None) -> int:
        """Clamp a requested page size to the configured bounds."""
        if not requested or requested < 1:
            return self.pagination_default
        return min(requested, self.pagination_max)

    def save(self) -> None:
        """Save current config to YAML."""
        self.workspace_path.mkdir(parents=True, exist_ok=True)
        config_file = self.workspace_path / "config.yaml"
        data = {
            "log_level": self.log_level,
            "agency_team_id": self.agency_team_id,
            "session_ttl_minutes": self.session_ttl_minutes,
            "pagination_default": self.pagination_default,
            "pagination_max": self.pagination_max,
            "audit_page_size": self.audit_page_size,
            "notification_workers": self.notification_workers,
            "wal_mode": self.wal_mode,
        }
        with open(config_file, "w") as f:
            yaml.dump(data, f, default_flow_style=False)
