"""Tests for close/reopen and partition migration."""

from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
import requests
from conftest import REPO_PATH, FakeGitHub, make_issue, reply
from github.GithubException import GithubException

from github_issue_sync.cache.rate_limiter import RateLimiter
from github_issue_sync.cache.resource_cache import ResourceCache
from github_issue_sync.github_client.client import GitHubClient
from github_issue_sync.github_client.models import (
    ALL_KEYS,
    Entity,
    EntityState,
    EntityType,
    ResourceKey,
)
from github_issue_sync.storage.disk_cache import DiskCache
from github_issue_sync.sync.locks import KeyLocks
from github_issue_sync.sync.mutation import MutationCoordinator, default_reason
from github_issue_sync.sync.tree import EntityNode, PartitionTree

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

ISSUE_OPEN = ResourceKey(EntityType.ISSUE, EntityState.OPEN)
ISSUE_CLOSED = ResourceKey(EntityType.ISSUE, EntityState.CLOSED)
PULL_OPEN = ResourceKey(EntityType.PULL, EntityState.OPEN)
PULL_CLOSED = ResourceKey(EntityType.PULL, EntityState.CLOSED)


@pytest.fixture
def resources(
    client: GitHubClient, disk: DiskCache, limiter: RateLimiter
) -> ResourceCache:
    return ResourceCache(client, disk, limiter)


@pytest.fixture
def trees() -> dict[ResourceKey, PartitionTree]:
    return {key: PartitionTree(key) for key in ALL_KEYS}


@pytest.fixture
def coordinator(
    client: GitHubClient,
    resources: ResourceCache,
    trees: dict[ResourceKey, PartitionTree],
) -> MutationCoordinator:
    return MutationCoordinator(client, resources, trees, KeyLocks(), clock=lambda: NOW)


def _seed(
    resources: ResourceCache,
    trees: dict[ResourceKey, PartitionTree],
    key: ResourceKey,
    entities: list[Entity],
) -> None:
    resources.store(key, entities)
    trees[key].replace([EntityNode(e) for e in entities])


def _mock_issue(mock_github_class: Mock) -> Mock:
    mock_issue = Mock()
    mock_repo = mock_github_class.return_value.get_repo.return_value
    mock_repo.get_issue.return_value = mock_issue
    return mock_issue


class TestDefaultReason:
    """Test state_reason defaults."""

    def test_reasons(self) -> None:
        """Test reopen ignores the reason and close defaults to completed."""
        assert default_reason(EntityState.OPEN, "not_planned") == "reopened"
        assert default_reason(EntityState.CLOSED, None) == "completed"
        assert default_reason(EntityState.CLOSED, "duplicate") == "duplicate"


class TestApplyStateChange:
    """Test MutationCoordinator.apply_state_change."""

    @pytest.mark.asyncio
    @patch("github_issue_sync.github_client.client.Github")
    async def test_close_moves_issue(
        self,
        mock_github_class: Mock,
        coordinator: MutationCoordinator,
        resources: ResourceCache,
        trees: dict[ResourceKey, PartitionTree],
        disk: DiskCache,
    ) -> None:
        """Test closing patches the record and moves it to the closed head."""
        mock_issue = _mock_issue(mock_github_class)
        target = Entity.model_validate(make_issue(42))
        other = Entity.model_validate(make_issue(1))
        _seed(resources, trees, ISSUE_OPEN, [other, target])
        _seed(resources, trees, ISSUE_CLOSED, [Entity.model_validate(make_issue(7))])

        result = await coordinator.apply_state_change(target, "closed", "not_planned")

        assert result.success
        mock_issue.edit.assert_called_once_with(
            state="closed", state_reason="not_planned"
        )
        assert target.state is EntityState.CLOSED
        assert target.state_reason == "not_planned"
        assert target.closed_at == NOW
        assert target.updated_at == NOW

        open_entry = resources.get(ISSUE_OPEN)
        closed_entry = resources.get(ISSUE_CLOSED)
        assert open_entry is not None and closed_entry is not None
        assert [e.id for e in open_entry.items] == [1]
        assert [e.id for e in closed_entry.items] == [42, 7]
        assert [n.id for n in trees[ISSUE_OPEN].roots] == [1]
        assert [n.id for n in trees[ISSUE_CLOSED].roots] == [42, 7]
        assert [r["id"] for r in disk.load("issue-closed")] == [42, 7]
        assert disk.load("issue-closed")[0]["state"] == "closed"

    @pytest.mark.asyncio
    @patch("github_issue_sync.github_client.client.Github")
    async def test_reopen_clears_closed_at(
        self,
        mock_github_class: Mock,
        coordinator: MutationCoordinator,
        resources: ResourceCache,
        trees: dict[ResourceKey, PartitionTree],
    ) -> None:
        """Test reopening reports reopened and clears closed_at."""
        mock_issue = _mock_issue(mock_github_class)
        target = Entity.model_validate(
            make_issue(5, state="closed", closed_at="2024-01-02T00:00:00Z")
        )
        _seed(resources, trees, ISSUE_CLOSED, [target])

        result = await coordinator.apply_state_change(target, EntityState.OPEN)

        assert result.success
        assert result.reason == "reopened"
        mock_issue.edit.assert_called_once_with(state="open", state_reason="reopened")
        assert target.closed_at is None
        assert target.state_reason == "reopened"
        assert len(trees[ISSUE_CLOSED]) == 0
        assert trees[ISSUE_OPEN].roots[0].entity is target

    @pytest.mark.asyncio
    @patch("github_issue_sync.github_client.client.Github")
    async def test_missing_destination_entry_is_not_created(
        self,
        mock_github_class: Mock,
        coordinator: MutationCoordinator,
        resources: ResourceCache,
        trees: dict[ResourceKey, PartitionTree],
    ) -> None:
        """Test only partitions already in memory are patched."""
        _mock_issue(mock_github_class)
        target = Entity.model_validate(make_issue(3, pull=True))
        _seed(resources, trees, PULL_OPEN, [target])

        result = await coordinator.apply_state_change(target, EntityState.CLOSED)

        assert result.reason == "completed"
        assert resources.get(PULL_CLOSED) is None
        assert [n.id for n in trees[PULL_CLOSED].roots] == [3]
        assert trees[ISSUE_CLOSED].roots == []

    @pytest.mark.asyncio
    @patch("github_issue_sync.github_client.client.Github")
    async def test_failure_leaves_everything_untouched(
        self,
        mock_github_class: Mock,
        coordinator: MutationCoordinator,
        resources: ResourceCache,
        trees: dict[ResourceKey, PartitionTree],
    ) -> None:
        """Test a rejected PATCH reports the error and changes nothing."""
        mock_issue = _mock_issue(mock_github_class)
        mock_issue.edit.side_effect = GithubException(
            403, {"message": "Must have admin rights"}, None
        )
        target = Entity.model_validate(make_issue(42))
        _seed(resources, trees, ISSUE_OPEN, [target])

        result = await coordinator.apply_state_change(target, EntityState.CLOSED)

        assert not result.success
        assert "Must have admin rights" in result.message
        assert target.state is EntityState.OPEN
        assert target.closed_at is None
        assert [n.id for n in trees[ISSUE_OPEN].roots] == [42]
        assert trees[ISSUE_CLOSED].roots == []

    @pytest.mark.asyncio
    @patch("github_issue_sync.github_client.client.Github")
    async def test_connection_failure_is_reported(
        self,
        mock_github_class: Mock,
        coordinator: MutationCoordinator,
        resources: ResourceCache,
        trees: dict[ResourceKey, PartitionTree],
    ) -> None:
        """Test an unreachable API yields a failed result, not an exception."""
        mock_issue = _mock_issue(mock_github_class)
        mock_issue.edit.side_effect = requests.exceptions.ConnectionError(
            "Connection refused"
        )
        target = Entity.model_validate(make_issue(42))
        _seed(resources, trees, ISSUE_OPEN, [target])

        result = await coordinator.apply_state_change(target, "closed")

        assert not result.success
        assert "Connection refused" in result.message
        assert target.state is EntityState.OPEN
        assert target.updated_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert [n.id for n in trees[ISSUE_OPEN].roots] == [42]
        open_entry = resources.get(ISSUE_OPEN)
        assert open_entry is not None and [e.id for e in open_entry.items] == [42]

    @pytest.mark.asyncio
    @patch("github_issue_sync.github_client.client.Github")
    async def test_same_state_is_skipped(
        self, mock_github_class: Mock, coordinator: MutationCoordinator
    ) -> None:
        """Test no request is made when the state would not change."""
        mock_issue = _mock_issue(mock_github_class)
        target = Entity.model_validate(make_issue(42))

        result = await coordinator.apply_state_change(target, EntityState.OPEN)

        assert result.skipped
        assert result.message == "#42 is already open"
        mock_issue.edit.assert_not_called()


class TestWaitForState:
    """Test MutationCoordinator.wait_for_state."""

    @pytest.mark.asyncio
    async def test_state_observed(
        self, coordinator: MutationCoordinator, fake_github: FakeGitHub
    ) -> None:
        """Test polling stops once GitHub reports the desired state."""
        fake_github.add(
            f"{REPO_PATH}/issues/42",
            reply(200, make_issue(42)),
            reply(200, make_issue(42, state="closed")),
        )

        assert await coordinator.wait_for_state(42, "closed", delay=0)
        assert len(fake_github.requests) == 2

    @pytest.mark.asyncio
    async def test_error_stops_early(
        self, coordinator: MutationCoordinator, fake_github: FakeGitHub
    ) -> None:
        """Test an API error ends polling."""
        fake_github.add(f"{REPO_PATH}/issues/42", reply(404, {"message": "gone"}))

        assert not await coordinator.wait_for_state(42, "closed", delay=0)
        assert len(fake_github.requests) == 1

    @pytest.mark.asyncio
    async def test_gives_up(
        self, coordinator: MutationCoordinator, fake_github: FakeGitHub
    ) -> None:
        """Test polling is bounded by max_retries."""
        fake_github.add(f"{REPO_PATH}/issues/42", reply(200, make_issue(42)))

        assert not await coordinator.wait_for_state(
            42, EntityState.CLOSED, max_retries=3, delay=0
        )
        assert len(fake_github.requests) == 3
