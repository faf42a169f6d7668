"""Pydantic models for GitHub issue and pull request records.

These models map to GitHub's REST API v3 response structures. Records are kept
permissive (extra fields allowed) because the cache stores whatever the API
returned and writes it back to disk unchanged.
API Reference: https://docs.github.com/en/rest/issues
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EntityType(str, Enum):
    """Kind of record held by a partition."""

    ISSUE = "issue"
    PULL = "pull"


class EntityState(str, Enum):
    """Open/closed state of an issue or pull request."""

    OPEN = "open"
    CLOSED = "closed"

    @property
    def opposite(self) -> "EntityState":
        return EntityState.CLOSED if self is EntityState.OPEN else EntityState.OPEN


@dataclass(frozen=True)
class ResourceKey:
    """Identifies one cache partition and one on-disk list file."""

    entity_type: EntityType
    state: EntityState

    @property
    def slug(self) -> str:
        """File stem for this partition, e.g. ``pull-open``."""
        return f"{self.entity_type.value}-{self.state.value}"

    def __str__(self) -> str:
        return self.slug


ALL_KEYS: tuple[ResourceKey, ...] = tuple(
    ResourceKey(entity_type, state)
    for entity_type in EntityType
    for state in EntityState
)


class GitHubUser(BaseModel):
    """GitHub user account.

    API Reference: https://docs.github.com/en/rest/users/users
    """

    model_config = ConfigDict(extra="allow")

    login: str = Field(..., description="GitHub username/login (string)")
    id: int = Field(..., description="Unique user identifier (integer)")


class GitHubLabel(BaseModel):
    """Repository label attached to an issue or pull request."""

    model_config = ConfigDict(extra="allow")

    name: str = Field(..., description="Name of the label (string)")
    color: str | None = Field(
        None, description="Hexadecimal color code without leading # (string)"
    )
    description: str | None = Field(None, description="Short label description")


class GitHubMilestone(BaseModel):
    """Milestone an issue is scheduled for."""

    model_config = ConfigDict(extra="allow")

    title: str = Field(..., description="Milestone title")
    number: int | None = Field(None, description="Milestone number")


class Comment(BaseModel):
    """Issue comment or pull request review comment.

    API Reference: https://docs.github.com/en/rest/issues/comments
    """

    model_config = ConfigDict(extra="allow")

    id: int = Field(..., description="Unique comment identifier (integer)")
    body: str = Field("", description="Text content of the comment")
    user: GitHubUser | None = Field(None, description="Comment author")
    html_url: str | None = Field(None, description="Browser URL of the comment")
    created_at: datetime | None = Field(None, description="Creation timestamp")
    updated_at: datetime | None = Field(None, description="Last update timestamp")

    @model_validator(mode="before")
    @classmethod
    def _null_body(cls, data: Any) -> Any:
        # review comments on deleted lines come back with "body": null
        if isinstance(data, dict) and data.get("body") is None:
            data = {**data, "body": ""}
        return data


class Entity(BaseModel):
    """A raw issue or pull request record from the list endpoint.

    ``id`` is the identity key across refreshes and ``updated_at`` is the
    change-detection watermark. Instances are mutated in place only by the
    mutation coordinator and by pull request hydration.
    """

    model_config = ConfigDict(extra="allow")

    id: int = Field(..., description="Globally unique record identifier")
    number: int = Field(..., description="Issue/PR number within the repository")
    title: str = Field("", description="Short title")
    body: str | None = Field(None, description="Markdown description")
    state: EntityState = Field(..., description="Current state: 'open' or 'closed'")
    state_reason: str | None = Field(
        None, description="completed, not_planned, duplicate or reopened"
    )
    html_url: str | None = Field(None, description="Browser URL")
    created_at: datetime | None = Field(None, description="Creation timestamp")
    updated_at: datetime | None = Field(None, description="Last update timestamp")
    closed_at: datetime | None = Field(None, description="Close timestamp")
    comments: int = Field(0, description="Number of issue comments")
    review_comments: int = Field(0, description="Number of PR review comments")
    user: GitHubUser | None = Field(None, description="Author")
    assignee: GitHubUser | None = Field(None, description="Primary assignee")
    assignees: list[GitHubUser] = Field(default_factory=list)
    milestone: GitHubMilestone | None = Field(None)
    labels: list[GitHubLabel] = Field(default_factory=list)
    draft: bool | None = Field(None, description="Draft flag (pull requests)")
    merged_at: datetime | None = Field(None, description="Merge timestamp (pulls)")
    pull_request: dict[str, Any] | None = Field(
        None, description="Present only when the record is a pull request"
    )

    @property
    def is_pull_request(self) -> bool:
        return self.pull_request is not None

    @property
    def entity_type(self) -> EntityType:
        return EntityType.PULL if self.is_pull_request else EntityType.ISSUE

    @property
    def key(self) -> ResourceKey:
        """Partition this record currently belongs to."""
        return ResourceKey(self.entity_type, self.state)


class CacheEntry(BaseModel):
    """In-memory partition contents plus the ETag of the request that produced it."""

    items: list[Entity] = Field(default_factory=list)
    etag: str | None = None


class CommentCacheEntry(BaseModel):
    """Cached comments for one issue or pull request."""

    etag: str | None = None
    items: list[Comment] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.items)
