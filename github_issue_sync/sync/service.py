"""Refresh orchestration for the four sidebar partitions of one repository."""

import asyncio
import logging
import time
from collections import Counter
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime

import httpx
from pydantic import TypeAdapter

from ..cache.comment_cache import CommentCache
from ..cache.rate_limiter import RateLimiter
from ..cache.resource_cache import ResourceCache
from ..config import SyncConfig
from ..github_client.client import GitHubApiError, GitHubClient
from ..github_client.models import (
    ALL_KEYS,
    Comment,
    Entity,
    EntityState,
    EntityType,
    ResourceKey,
)
from ..storage.disk_cache import DiskCache
from .change_detector import ChangeDetector
from .locks import KeyLocks
from .mutation import MutationCoordinator, MutationResult
from .tree import EntityNode, PartitionTree

logger = logging.getLogger(__name__)

LAST_REFRESH_KEY = "last-refresh"

_OPTIONAL_DATETIME = TypeAdapter(datetime | None)

# fields the issues list lacks, filled in from GET /pulls/{number}
PULL_FIELDS = ("draft", "merged_at", "review_comments", "head", "base")


def read_last_refresh(disk: DiskCache) -> float:
    """Epoch seconds of the last completed refresh, 0 if never."""
    payload = disk.load(LAST_REFRESH_KEY)
    if not isinstance(payload, dict):
        return 0.0
    try:
        return float(payload.get("timestamp", 0))
    except (TypeError, ValueError):
        return 0.0


async def _load_comments(
    cache: CommentCache, key: ResourceKey, entity: Entity
) -> list[Comment]:
    """Issue comments followed by review comments, each only if counted."""
    comments: list[Comment] = []
    if entity.comments > 0:
        comments.extend(
            await cache.fetch_comments(EntityType.ISSUE, entity.number, entity.comments)
        )
    if key.entity_type is EntityType.PULL and entity.review_comments > 0:
        comments.extend(
            await cache.fetch_comments(
                EntityType.PULL, entity.number, entity.review_comments
            )
        )
    return comments


def carry_pull_fields(records: list[Entity], tree: PartitionTree) -> bool:
    """Copy hydrated pull fields from displayed nodes onto refetched records.

    Returns:
        True if any record received a value
    """
    carried = False
    for entity in records:
        node = tree.get(entity.id)
        if node is None or node.entity is entity:
            continue
        for name in PULL_FIELDS:
            value = getattr(node.entity, name, None)
            if value is not None:
                setattr(entity, name, value)
                carried = True
    return carried


class SyncService:
    """Owns the caches, trees and rate limiter for one repository context.

    Every refresh is tagged with the repository generation it started under;
    a result that arrives after a repository switch is discarded.
    """

    def __init__(
        self,
        config: SyncConfig,
        http_client: httpx.AsyncClient | None = None,
        limiter: RateLimiter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the service.

        Args:
            config: Repository and pagination settings
            http_client: Shared async HTTP client, mainly for tests
            limiter: Rate limiter; quota is per token so it survives
                repository switches
            clock: Epoch-seconds clock used for the refresh throttle
        """
        self.config = config
        self.limiter = limiter or RateLimiter(clock)
        self.detector = ChangeDetector()
        self.locks = KeyLocks()
        self.trees: dict[ResourceKey, PartitionTree] = {
            key: PartitionTree(key) for key in ALL_KEYS
        }
        self.generation = 0
        self._http_client = http_client
        self._clock = clock
        self._retired_clients: list[tuple[int, GitHubClient]] = []
        self._active: Counter[int] = Counter()
        self.client: GitHubClient | None = None
        self.disk: DiskCache | None = None
        self.resources: ResourceCache | None = None
        self.comments: CommentCache | None = None
        self.mutations: MutationCoordinator | None = None
        self._build_context()

    def _build_context(self) -> None:
        if not self.config.is_ready():
            self.client = self.disk = self.resources = None
            self.comments = self.mutations = None
            return
        assert self.config.owner is not None and self.config.repo is not None
        self.client = GitHubClient(
            self.config.token,
            self.config.owner,
            self.config.repo,
            http_client=self._http_client,
        )
        self.disk = DiskCache(
            self.config.cache_dir, self.config.owner, self.config.repo
        )
        self.resources = ResourceCache(self.client, self.disk, self.limiter)
        self.comments = CommentCache(self.client, self.disk, self.limiter)
        self.mutations = MutationCoordinator(
            self.client, self.resources, self.trees, self.locks
        )

    def is_ready(self) -> bool:
        return self.config.is_ready() and self.resources is not None

    # -- configuration -----------------------------------------------------

    async def switch_repository(self, owner: str, repo: str) -> None:
        """Point the service at another repository.

        All partitions' memory state is cleared before this returns and
        before any new fetch can start.
        """
        config = self.config.model_copy(update={"owner": owner, "repo": repo})
        await self._reset_context(config)

    async def _reset_context(self, config: SyncConfig) -> None:
        old_client, old_generation = self.client, self.generation
        self.generation += 1
        self.config = config
        for tree in self.trees.values():
            tree.clear()
        self._build_context()
        logger.info(
            "Repository context is now %s/%s (generation %d)",
            config.owner,
            config.repo,
            self.generation,
        )
        if old_client is not None:
            # in-flight requests of the old generation may still be using it
            self._retired_clients.append((old_generation, old_client))
        await self._close_idle_clients()

    @asynccontextmanager
    async def _in_flight(self) -> AsyncIterator[int]:
        """Count work running against the current generation's client."""
        generation = self.generation
        self._active[generation] += 1
        try:
            yield generation
        finally:
            self._active[generation] -= 1
            if self._active[generation] <= 0:
                del self._active[generation]
            await self._close_idle_clients()

    async def _close_idle_clients(self) -> None:
        """Close retired clients once no work of their generation remains."""
        idle = [
            (generation, client)
            for generation, client in self._retired_clients
            if generation not in self._active
        ]
        for entry in idle:
            self._retired_clients.remove(entry)
        for generation, client in idle:
            logger.debug("Closing client of generation %d", generation)
            await client.aclose()

    async def update_config(self, config: SyncConfig) -> dict[ResourceKey, bool]:
        """Apply new settings and refresh what they affect.

        Returns:
            Per-partition rebuild flags from the forced refresh
        """
        old = self.config
        if (
            old.repository_changed(config)
            or old.token != config.token
            or old.cache_dir != config.cache_dir
        ):
            await self._reset_context(config)
        else:
            self.config = config
            if old.pagination_changed(config) and self.resources is not None:
                logger.info("Pagination settings changed; invalidating partitions")
                for key in ALL_KEYS:
                    self.resources.invalidate(key)

        if not self.is_ready():
            logger.warning("Config incomplete (token/owner/repo); skipping refresh")
            return {}
        return await self.refresh_all(forced=True)

    # -- refresh -----------------------------------------------------------

    async def refresh_partition(
        self, key: ResourceKey, forced: bool = False, expire: bool = False
    ) -> bool:
        """Fetch one partition and rebuild its tree if anything changed.

        Args:
            key: Partition to refresh
            forced: Rebuild even when nothing changed
            expire: Drop the memory entry first so the network is consulted

        Returns:
            True if the tree was rebuilt
        """
        if not self.is_ready():
            logger.warning("[%s] Missing config (token/owner/repo); skipping", key)
            return False

        async with self._in_flight() as generation:
            return await self._refresh_locked(key, generation, forced, expire)

    async def _refresh_locked(
        self, key: ResourceKey, generation: int, forced: bool, expire: bool
    ) -> bool:
        resources = self.resources
        if resources is None:
            return False

        async with self.locks.hold(key):
            if expire:
                resources.expire(key)
            fetched = await resources.fetch(
                key, self.config.items_per_page, self.config.max_recent_items
            )
            if generation != self.generation:
                logger.info("[%s] Discarding result from a previous repository", key)
                return False

            records = [e for e in fetched if e.entity_type is key.entity_type]
            tree = self.trees[key]
            if not self.detector.should_rebuild(records, tree, forced):
                logger.debug("[%s] No updates; skipping", key)
                if key.entity_type is EntityType.PULL and carry_pull_fields(
                    records, tree
                ):
                    resources.persist(key)
                return False

            diff = self.detector.diff(records, tree)
            nodes = await self._materialize(key, records, hydrate=True)
            if generation != self.generation:
                logger.info("[%s] Discarding result from a previous repository", key)
                return False
            if key.entity_type is EntityType.PULL:
                resources.persist(key)
            tree.replace(nodes)
            logger.info("[%s] Rebuilt %d items (%s)", key, len(nodes), diff.summary())
            return True

    async def refresh_all(
        self, forced: bool = False, expire: bool = False
    ) -> dict[ResourceKey, bool]:
        """Refresh the four partitions concurrently.

        One partition failing never prevents the others from updating.
        """
        results = await asyncio.gather(
            *(self.refresh_partition(key, forced, expire) for key in ALL_KEYS),
            return_exceptions=True,
        )
        changed: dict[ResourceKey, bool] = {}
        for key, result in zip(ALL_KEYS, results):
            if isinstance(result, BaseException):
                logger.error("[%s] Refresh failed: %s", key, result, exc_info=result)
                changed[key] = False
            else:
                changed[key] = result
        return changed

    async def auto_refresh(self) -> dict[ResourceKey, bool]:
        """Timer-driven refresh, skipped if the last one was too recent."""
        if not self.is_ready():
            logger.warning("[Auto-refresh] Skipped; config incomplete")
            return {}
        now = self._clock()
        elapsed = now - self.last_refresh()
        if elapsed < self.config.refresh_interval * 60:
            logger.info("[Auto-refresh] Skipped; only %ds since last", int(elapsed))
            return {}

        changed = await self.refresh_all(expire=True)
        self.record_refresh(now)
        return changed

    async def initial_load(self) -> dict[ResourceKey, bool]:
        """First population of the trees.

        Within the refresh interval the disk snapshots are shown without any
        list request; otherwise a full refresh runs.
        """
        if not self.is_ready():
            logger.warning("[Initial Load] Skipped; config incomplete")
            return {}
        now = self._clock()
        elapsed = now - self.last_refresh()
        if elapsed >= self.config.refresh_interval * 60:
            changed = await self.refresh_all()
            self.record_refresh(now)
            return changed

        logger.info(
            "[Initial Load] Only %ds since last refresh; loading from cache",
            int(elapsed),
        )
        changed = {}
        for key in ALL_KEYS:
            changed[key] = await self.load_from_disk(key)
        return changed

    async def load_from_disk(self, key: ResourceKey) -> bool:
        """Materialize a partition from its disk snapshot only."""
        resources = self.resources
        if not self.is_ready() or resources is None:
            logger.warning("[%s] Missing config (token/owner/repo); skipping", key)
            return False

        async with self._in_flight() as generation, self.locks.hold(key):
            snapshot = resources.load_disk(key) or []
            records = [e for e in snapshot if e.entity_type is key.entity_type]
            nodes = await self._materialize(key, records, hydrate=False)
            if generation != self.generation:
                return False
            self.trees[key].replace(nodes)
            return True

    async def run(self, stop: asyncio.Event) -> None:
        """Load once, then refresh every ``refresh_interval`` minutes until stopped."""
        await self.initial_load()
        while not stop.is_set():
            try:
                await asyncio.wait_for(
                    stop.wait(), timeout=self.config.refresh_interval * 60
                )
            except TimeoutError:
                await self.auto_refresh()

    def last_refresh(self) -> float:
        if self.disk is None:
            return 0.0
        return read_last_refresh(self.disk)

    def record_refresh(self, timestamp: float | None = None) -> None:
        if self.disk is not None:
            when = self._clock() if timestamp is None else timestamp
            self.disk.save(LAST_REFRESH_KEY, {"timestamp": when})

    # -- materialization ---------------------------------------------------

    async def _materialize(
        self, key: ResourceKey, records: list[Entity], hydrate: bool
    ) -> list[EntityNode]:
        # bind to the current context so a repository switch mid-build cannot
        # write this repository's comments into the next one's cache
        client, comments = self.client, self.comments
        assert client is not None and comments is not None

        async def build(entity: Entity) -> EntityNode:
            if hydrate and key.entity_type is EntityType.PULL:
                await self._hydrate_pull(client, entity)
            return EntityNode(entity, await _load_comments(comments, key, entity))

        return list(await asyncio.gather(*(build(e) for e in records)))

    async def _hydrate_pull(self, client: GitHubClient, entity: Entity) -> None:
        """Merge pull-only fields the issue list does not carry."""
        if self.limiter.is_limited():
            return
        try:
            pull = await client.get_pull(entity.number)
            merged_at = _OPTIONAL_DATETIME.validate_python(pull.get("merged_at"))
            review_comments = int(pull.get("review_comments") or 0)
        except (GitHubApiError, httpx.HTTPError, ValueError, TypeError) as e:
            logger.debug("Could not hydrate pull #%d: %s", entity.number, e)
            return

        entity.draft = pull.get("draft")
        entity.merged_at = merged_at
        entity.review_comments = review_comments
        for name in ("head", "base"):
            if name in pull:
                setattr(entity, name, pull[name])

    # -- mutation ----------------------------------------------------------

    def find_entity(self, number: int) -> Entity | None:
        """Look up a displayed record by issue/PR number."""
        for tree in self.trees.values():
            node = tree.find_number(number)
            if node is not None:
                return node.entity
        return None

    async def apply_state_change(
        self, entity: Entity, new_state: EntityState | str, reason: str | None = None
    ) -> MutationResult:
        if self.mutations is None:
            raise ValueError("Config incomplete (token/owner/repo); cannot update")
        mutations = self.mutations
        async with self._in_flight():
            return await mutations.apply_state_change(entity, new_state, reason)

    async def wait_for_state(
        self, number: int, desired_state: EntityState | str, max_retries: int = 10
    ) -> bool:
        if self.mutations is None:
            return False
        mutations = self.mutations
        async with self._in_flight():
            return await mutations.wait_for_state(number, desired_state, max_retries)

    def partition_counts(self) -> dict[ResourceKey, int]:
        return {key: len(tree) for key, tree in self.trees.items()}

    async def aclose(self) -> None:
        for _, client in self._retired_clients:
            await client.aclose()
        self._retired_clients.clear()
        if self.client is not None:
            await self.client.aclose()
