"""GitHub client package for API interaction."""

from .client import GitHubApiError, GitHubClient, RateLimitInfo
from .models import (
    ALL_KEYS,
    CacheEntry,
    Comment,
    CommentCacheEntry,
    Entity,
    EntityState,
    EntityType,
    GitHubLabel,
    GitHubMilestone,
    GitHubUser,
    ResourceKey,
)

__all__ = [
    "ALL_KEYS",
    "CacheEntry",
    "Comment",
    "CommentCacheEntry",
    "Entity",
    "EntityState",
    "EntityType",
    "GitHubApiError",
    "GitHubClient",
    "GitHubLabel",
    "GitHubMilestone",
    "GitHubUser",
    "RateLimitInfo",
    "ResourceKey",
]
