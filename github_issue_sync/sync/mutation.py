"""Local state transitions (close/reopen) applied without a refetch."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from ..cache.resource_cache import ResourceCache
from ..github_client.client import GitHubApiError, GitHubClient
from ..github_client.models import Entity, EntityState, ResourceKey
from .locks import KeyLocks
from .tree import EntityNode, PartitionTree

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_reason(new_state: EntityState, reason: str | None) -> str:
    """Reopening always reports ``reopened``; closing defaults to ``completed``."""
    if new_state is EntityState.OPEN:
        return "reopened"
    return reason or "completed"


@dataclass
class MutationResult:
    """Outcome of a state change, suitable for a user notification."""

    number: int
    state: EntityState
    reason: str | None
    success: bool
    error: str | None = None
    skipped: bool = False

    @property
    def message(self) -> str:
        if self.skipped:
            return f"#{self.number} is already {self.state.value}"
        if self.success:
            return f"#{self.number} set to {self.state.value} ({self.reason})"
        return (
            f"GitHub returned an error while trying to set #{self.number} to "
            f'"{self.state.value}":\n{self.error}'
        )


class MutationCoordinator:
    """Applies a state change to one record and moves it between partitions."""

    def __init__(
        self,
        client: GitHubClient,
        resources: ResourceCache,
        trees: dict[ResourceKey, PartitionTree],
        locks: KeyLocks,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.client = client
        self.resources = resources
        self.trees = trees
        self.locks = locks
        self._clock = clock

    async def apply_state_change(
        self,
        entity: Entity,
        new_state: EntityState | str,
        reason: str | None = None,
    ) -> MutationResult:
        """PATCH the record's state, then patch caches and trees in place.

        On failure nothing local is modified and the server's error body is
        returned in the result. No retry is attempted here.
        """
        new_state = EntityState(new_state)
        if entity.state is new_state:
            return MutationResult(
                entity.number, new_state, entity.state_reason, True, skipped=True
            )

        reason = default_reason(new_state, reason)
        origin = entity.key
        destination = ResourceKey(entity.entity_type, new_state)

        async with self.locks.hold(origin, destination):
            try:
                await self.client.update_issue_state(entity.number, new_state, reason)
            except (GitHubApiError, httpx.HTTPError) as e:
                error = e.body if isinstance(e, GitHubApiError) else str(e)
                logger.error("Failed to update #%d: %s", entity.number, error)
                return MutationResult(
                    entity.number, new_state, reason, False, error=error
                )

            logger.info("#%d set to %s (%s)", entity.number, new_state.value, reason)
            logger.debug(
                "Before patch: state=%s reason=%s closed_at=%s updated_at=%s",
                entity.state.value,
                entity.state_reason,
                entity.closed_at,
                entity.updated_at,
            )
            now = self._clock()
            entity.state = new_state
            entity.state_reason = reason
            entity.closed_at = now if new_state is EntityState.CLOSED else None
            entity.updated_at = now

            self._migrate(entity, origin, destination)

        return MutationResult(entity.number, new_state, reason, True)

    def _migrate(
        self, entity: Entity, origin: ResourceKey, destination: ResourceKey
    ) -> None:
        origin_entry = self.resources.get(origin)
        if origin_entry is not None:
            self.resources.store(
                origin, [i for i in origin_entry.items if i.id != entity.id]
            )
        destination_entry = self.resources.get(destination)
        if destination_entry is not None:
            remaining = [i for i in destination_entry.items if i.id != entity.id]
            self.resources.store(destination, [entity, *remaining])

        node = None
        if origin in self.trees:
            node = self.trees[origin].remove(entity.id)
        if destination in self.trees:
            self.trees[destination].insert_head(node or EntityNode(entity))

    async def wait_for_state(
        self,
        number: int,
        desired_state: EntityState | str,
        max_retries: int = 10,
        delay: float = 1.0,
    ) -> bool:
        """Poll the issue until GitHub reports ``desired_state``.

        Stops early when the API returns an error. Returns whether the state
        was observed.
        """
        desired = EntityState(desired_state)
        for attempt in range(1, max_retries + 1):
            logger.debug(
                "Checking state for #%d (try %d/%d)", number, attempt, max_retries
            )
            try:
                issue = await self.client.get_issue(number)
            except (GitHubApiError, httpx.HTTPError) as e:
                logger.warning("GitHub API returned %s; stopping early", e)
                return False
            if issue.get("state") == desired.value:
                logger.info("#%d is now %s", number, desired.value)
                return True
            if attempt < max_retries:
                await asyncio.sleep(delay)

        logger.warning("Gave up waiting for #%d to reach %s", number, desired.value)
        return False
