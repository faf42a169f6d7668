"""Memory -> disk -> network cache for the paginated issue/pull lists."""

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..github_client.client import GitHubApiError, GitHubClient, RateLimitInfo
from ..github_client.models import CacheEntry, Entity, ResourceKey
from ..storage.disk_cache import DiskCache
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def serialize_entities(items: list[Entity]) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json", exclude_unset=True) for item in items]


def deserialize_entities(data: Any) -> list[Entity] | None:
    """Validate a disk snapshot; a malformed one counts as missing."""
    if not isinstance(data, list):
        return None
    try:
        return [Entity.model_validate(item) for item in data]
    except ValidationError as e:
        logger.warning("Discarding malformed cache snapshot: %s", e)
        return None


class ResourceCache:
    """Tiered cache of the four list partitions for one repository."""

    def __init__(
        self, client: GitHubClient, disk: DiskCache, limiter: RateLimiter
    ) -> None:
        self.client = client
        self.disk = disk
        self.limiter = limiter
        self._entries: dict[ResourceKey, CacheEntry] = {}
        self._etags: dict[ResourceKey, str] = {}

    def get(self, key: ResourceKey) -> CacheEntry | None:
        """Current in-memory entry, without touching disk or network."""
        return self._entries.get(key)

    def etag(self, key: ResourceKey) -> str | None:
        return self._etags.get(key)

    def store(self, key: ResourceKey, items: list[Entity]) -> None:
        """Replace a partition's items in memory and on disk, keeping its ETag."""
        self._entries[key] = CacheEntry(items=items, etag=self._etags.get(key))
        self.disk.save(key.slug, serialize_entities(items))

    def persist(self, key: ResourceKey) -> None:
        """Rewrite the disk snapshot from memory after in-place changes."""
        entry = self._entries.get(key)
        if entry is not None:
            self.disk.save(key.slug, serialize_entities(entry.items))

    def expire(self, key: ResourceKey) -> None:
        """Drop the memory entry but keep the ETag for a conditional refetch."""
        self._entries.pop(key, None)

    def invalidate(self, key: ResourceKey) -> None:
        """Drop both the memory entry and the ETag, forcing a full refetch."""
        self._entries.pop(key, None)
        self._etags.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
        self._etags.clear()

    def load_disk(self, key: ResourceKey) -> list[Entity] | None:
        return deserialize_entities(self.disk.load(key.slug))

    def _fallback(self, key: ResourceKey) -> list[Entity]:
        items = self.load_disk(key)
        if items is None:
            logger.warning("[%s] No disk snapshot; returning empty list", key)
            return []
        self._entries[key] = CacheEntry(items=items, etag=self._etags.get(key))
        return items

    async def fetch(
        self, key: ResourceKey, page_size: int, max_items: int
    ) -> list[Entity]:
        """Return up to ``max_items`` records for a partition.

        Memory wins when present. While rate limited only disk is consulted.
        Otherwise the list endpoint is paged until a short page or the cap is
        reached. Never raises: failures fall back to disk, then to an empty
        list.

        Args:
            key: Partition to fetch
            page_size: per_page sent to the API
            max_items: Cap on the number of records returned

        Returns:
            Records in API order (most recently created first)
        """
        entry = self._entries.get(key)
        if entry is not None:
            return entry.items

        if self.limiter.is_limited():
            logger.warning("[%s] Skipping fetch due to rate-limit", key)
            return self._fallback(key)

        try:
            return await self._fetch_pages(key, page_size, max_items)
        except (GitHubApiError, httpx.HTTPError, ValueError) as e:
            logger.warning("[%s] fetch failed: %s", key, e)
            return self._fallback(key)

    async def _fetch_pages(
        self, key: ResourceKey, page_size: int, max_items: int
    ) -> list[Entity]:
        # A stored ETag only describes a single page, so it is only safe when
        # the whole result fits in one.
        etag = self._etags.get(key) if max_items <= page_size else None
        page = 1
        items: list[Entity] = []
        response: httpx.Response | None = None

        while True:
            logger.debug(
                "[%s] Page %d, %d/%d total so far", key, page, len(items), max_items
            )
            send_etag = etag if page == 1 else None
            response = await self.client.list_issues_page(
                key.state, page_size, page, etag=send_etag
            )

            rate = RateLimitInfo.from_headers(response.headers)
            if rate.exhausted:
                self.limiter.trip(rate.reset_at or 0, "issues")
                return self._fallback(key)

            if response.status_code == 304:
                snapshot = self.load_disk(key)
                if snapshot is not None:
                    logger.debug("[%s] Not modified; using disk snapshot", key)
                    self._entries[key] = CacheEntry(items=snapshot, etag=send_etag)
                    return snapshot
                if send_etag is None:
                    raise GitHubApiError(304, "not modified without If-None-Match")
                # validator without a snapshot to back it: retry unconditionally
                logger.info("[%s] 304 without disk snapshot; refetching", key)
                self._etags.pop(key, None)
                etag = None
                continue

            if not response.is_success:
                raise GitHubApiError(response.status_code, response.text)

            data = response.json()
            if not isinstance(data, list):
                raise ValueError(
                    f"expected a list from issues endpoint, got {type(data).__name__}"
                )
            items.extend(Entity.model_validate(item) for item in data)
            logger.debug("[%s] Page %d, got %d items", key, page, len(data))

            if len(data) < page_size or len(items) >= max_items:
                break
            page += 1

        items = items[:max_items]

        new_etag = response.headers.get("etag")
        if new_etag and page == 1 and len(items) <= page_size:
            self._etags[key] = new_etag

        self.store(key, items)
        logger.info("[%s] Fetched %d items in %d page(s)", key, len(items), page)
        return items
