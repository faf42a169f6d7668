"""Per-issue comment cache validated by comment counts and ETags."""

import logging

import httpx
from pydantic import ValidationError

from ..github_client.client import GitHubApiError, GitHubClient, RateLimitInfo
from ..github_client.models import Comment, CommentCacheEntry, EntityType
from ..storage.disk_cache import DiskCache
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def comment_cache_key(entity_type: EntityType, number: int) -> str:
    return f"comments-{entity_type.value}-{number}"


class CommentCache:
    """Comments for individual issues and pull requests, stored on disk.

    The record's own ``comments``/``review_comments`` count is used as a free
    staleness check: when it matches the cached count no request is made.
    """

    def __init__(
        self, client: GitHubClient, disk: DiskCache, limiter: RateLimiter
    ) -> None:
        self.client = client
        self.disk = disk
        self.limiter = limiter

    def load(self, entity_type: EntityType, number: int) -> CommentCacheEntry:
        """Read the cached entry; missing or corrupt files read as empty."""
        payload = self.disk.load(comment_cache_key(entity_type, number))
        if not isinstance(payload, dict):
            return CommentCacheEntry()
        try:
            return CommentCacheEntry(
                etag=payload.get("etag"),
                items=[Comment.model_validate(c) for c in payload.get("data") or []],
            )
        except (ValidationError, TypeError) as e:
            logger.warning(
                "Discarding malformed comment cache for %s #%d: %s",
                entity_type.value,
                number,
                e,
            )
            return CommentCacheEntry()

    def save(
        self, entity_type: EntityType, number: int, entry: CommentCacheEntry
    ) -> None:
        payload = {
            "etag": entry.etag,
            "data": [
                c.model_dump(mode="json", exclude_unset=True) for c in entry.items
            ],
        }
        self.disk.save(comment_cache_key(entity_type, number), payload)

    async def fetch_comments(
        self, entity_type: EntityType, number: int, expected_count: int
    ) -> list[Comment]:
        """Return the comments for one issue or pull request.

        Args:
            entity_type: ISSUE for issue comments, PULL for review comments
            number: Issue or pull request number
            expected_count: The record's live comment count

        Returns:
            Comments in API order; cached comments on any failure
        """
        label = f"{entity_type.value} #{number}"
        cache = self.load(entity_type, number)

        if self.limiter.is_limited():
            logger.debug(
                "[Comments] %s: rate-limited, using cached comments (%d)",
                label,
                cache.count,
            )
            return cache.items

        if cache.count == expected_count:
            logger.debug(
                "[Comments] %s: using cached comments (expected %d)",
                label,
                expected_count,
            )
            return cache.items

        logger.debug(
            "[Comments] %s: expected %d, cache has %d, fetching from API",
            label,
            expected_count,
            cache.count,
        )
        try:
            response = await self.client.list_comments(
                entity_type, number, etag=cache.etag
            )
            rate = RateLimitInfo.from_headers(response.headers)
            if rate.exhausted:
                self.limiter.trip(rate.reset_at or 0, "comments")
                return cache.items
            if response.status_code == 304:
                return cache.items
            if not response.is_success:
                raise GitHubApiError(response.status_code, response.text)

            items = [Comment.model_validate(c) for c in response.json()]
        except (GitHubApiError, httpx.HTTPError, ValueError, TypeError) as e:
            logger.warning("[Comments] Fetch failed for %s: %s", label, e)
            return cache.items

        self.save(
            entity_type,
            number,
            CommentCacheEntry(etag=response.headers.get("etag"), items=items),
        )
        return items
