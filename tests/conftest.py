"""Test configuration and fixtures."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from github_issue_sync.cache.rate_limiter import RateLimiter
from github_issue_sync.github_client.client import GitHubClient
from github_issue_sync.storage.disk_cache import DiskCache

OWNER = "octo"
REPO = "widgets"
REPO_PATH = f"/repos/{OWNER}/{REPO}"
ISSUES_PATH = f"{REPO_PATH}/issues"

Handler = Callable[[httpx.Request], httpx.Response]


def reply(
    status: int = 200,
    json: Any = None,
    headers: dict[str, str] | None = None,
) -> Handler:
    """Build a handler that returns a fresh response on every call."""

    def _handler(request: httpx.Request) -> httpx.Response:
        if json is None:
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, json=json, headers=headers)

    return _handler


def make_issue(
    id: int,
    number: int | None = None,
    state: str = "open",
    updated_at: str = "2024-01-01T00:00:00Z",
    pull: bool = False,
    **extra: Any,
) -> dict[str, Any]:
    """Raw issue record as returned by the list endpoint."""
    record: dict[str, Any] = {
        "id": id,
        "number": number if number is not None else id,
        "title": f"Issue {id}",
        "state": state,
        "updated_at": updated_at,
        "created_at": "2024-01-01T00:00:00Z",
        "comments": 0,
        "user": {"login": "octocat", "id": 1},
        "labels": [],
    }
    if pull:
        record["pull_request"] = {
            "url": f"https://api.github.com{REPO_PATH}/pulls/{id}"
        }
    record.update(extra)
    return record


def make_comment(id: int, body: str = "LGTM") -> dict[str, Any]:
    return {
        "id": id,
        "body": body,
        "user": {"login": "reviewer", "id": 2},
        "created_at": "2024-01-02T00:00:00Z",
    }


class FakeGitHub:
    """Routes requests to per-path handlers and records every request."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Handler]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, *handlers: Handler, method: str = "GET") -> None:
        """Queue handlers for a path; the last one keeps answering."""
        self.routes.setdefault((method, path), []).extend(handlers)

    def add_pages(self, path: str, pages: list[list[dict[str, Any]]]) -> None:
        """Serve list pages selected by the ``page`` query parameter."""

        def _handler(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params.get("page", "1"))
            data = pages[page - 1] if page <= len(pages) else []
            return httpx.Response(200, json=data)

        self.add(path, _handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": "Not Found"})
        handler = queue.pop(0) if len(queue) > 1 else queue[0]
        return handler(request)

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def http_client(fake_github: FakeGitHub) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_github.handler))


@pytest.fixture
def client(http_client: httpx.AsyncClient) -> GitHubClient:
    return GitHubClient("test_token", OWNER, REPO, http_client=http_client)


@pytest.fixture
def cache_root(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def disk(cache_root: Path) -> DiskCache:
    return DiskCache(cache_root, OWNER, REPO)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(clock=clock)
