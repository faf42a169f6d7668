"""Configuration for the sync service."""

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "github-issue-sync"

# Environment variable -> SyncConfig field
ENV_VARS = {
    "GITHUB_TOKEN": "token",
    "GITHUB_OWNER": "owner",
    "GITHUB_REPO": "repo",
    "GITHUB_REFRESH_INTERVAL": "refresh_interval",
    "GITHUB_ITEMS_PER_PAGE": "items_per_page",
    "GITHUB_MAX_RECENT_ITEMS": "max_recent_items",
    "GITHUB_SYNC_CACHE_DIR": "cache_dir",
}


class SyncConfig(BaseModel):
    """Settings consumed by the sync service.

    Credential storage and editing belong to the host; this model only
    carries the values and enforces their bounds.
    """

    token: str | None = Field(None, description="GitHub personal access token")
    owner: str | None = Field(None, description="Repository owner")
    repo: str | None = Field(None, description="Repository name")
    refresh_interval: int = Field(
        5, ge=1, description="Minutes between automatic refreshes"
    )
    items_per_page: int = Field(25, ge=1, le=100, description="per_page for lists")
    max_recent_items: int = Field(
        50, ge=1, le=1000, description="Maximum records kept per partition"
    )
    cache_dir: Path = Field(DEFAULT_CACHE_DIR, description="Disk cache root")

    @field_validator("token", "owner", "repo")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @classmethod
    def from_env(cls, **overrides: Any) -> "SyncConfig":
        """Build a config from GITHUB_* environment variables.

        Args:
            **overrides: Field values that win over the environment; ``None``
                values are ignored

        Returns:
            Validated SyncConfig

        Raises:
            pydantic.ValidationError: If a value is out of bounds
        """
        values: dict[str, Any] = {}
        for env_name, field_name in ENV_VARS.items():
            env_value = os.getenv(env_name)
            if env_value:
                values[field_name] = env_value
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)

    def is_ready(self) -> bool:
        """Token, owner and repo are all required before any request."""
        return bool(self.token and self.owner and self.repo)

    @property
    def repo_slug(self) -> str:
        """Directory name for this repository's disk cache."""
        return f"{self.owner}-{self.repo}"

    def pagination_changed(self, other: "SyncConfig") -> bool:
        return (
            self.items_per_page != other.items_per_page
            or self.max_recent_items != other.max_recent_items
        )

    def repository_changed(self, other: "SyncConfig") -> bool:
        return (self.owner, self.repo) != (other.owner, other.repo)
