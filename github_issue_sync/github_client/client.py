"""GitHub REST client: conditional reads over httpx, writes through PyGitHub."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx
import requests
from github import Auth, Github
from github.GithubException import GithubException

from .models import EntityState, EntityType

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"
ACCEPT_HEADER = "application/vnd.github.v3+json"
USER_AGENT = "github-issue-sync/0.1.0"


class GitHubApiError(Exception):
    """Non-success response from the GitHub API."""

    def __init__(self, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        message = f"HTTP {status_code}: {body}" if body else f"HTTP {status_code}"
        super().__init__(message)


@dataclass(frozen=True)
class RateLimitInfo:
    """Rate-limit state reported by a response.

    ``None`` means the header was absent, which is not the same as exhausted.
    """

    remaining: int | None
    reset_at: float | None

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0

    @classmethod
    def from_headers(cls, headers: httpx.Headers) -> "RateLimitInfo":
        return cls(
            remaining=_int_header(headers, "x-ratelimit-remaining"),
            reset_at=_int_header(headers, "x-ratelimit-reset"),
        )


def _int_header(headers: httpx.Headers, name: str) -> int | None:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class GitHubClient:
    """GitHub API client bound to one repository.

    Reads are issued with ``httpx.AsyncClient`` so the caches can send
    ``If-None-Match`` and inspect status and rate-limit headers themselves.
    State changes go through PyGitHub.
    """

    def __init__(
        self,
        token: str | None,
        owner: str,
        repo: str,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = API_URL,
    ) -> None:
        """Initialize the client.

        Args:
            token: GitHub personal access token
            owner: Repository owner (user or organization)
            repo: Repository name
            http_client: Preconfigured async client, mainly for tests
            base_url: API root URL
        """
        if not token:
            raise ValueError(
                "GitHub token is required. Set GITHUB_TOKEN environment variable."
            )
        self.token = token
        self.owner = owner
        self.repo = repo
        self.base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=30.0)
        self._owns_http = http_client is None
        self._github: Github | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"token {self.token}",
            "Accept": ACCEPT_HEADER,
            "User-Agent": USER_AGENT,
        }

    @property
    def github(self) -> Github:
        """Get or create the PyGitHub instance used for writes."""
        if self._github is None:
            self._github = Github(
                auth=Auth.Token(self.token), base_url=self.base_url, lazy=True
            )
        return self._github

    def repo_url(self, path: str = "") -> str:
        return f"{self.base_url}/repos/{self.owner}/{self.repo}{path}"

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        etag: str | None = None,
    ) -> httpx.Response:
        """Issue a GET against a repository-relative path.

        The response is returned whatever its status; callers decide how to
        treat 304 and error statuses.
        """
        headers = self.headers
        if etag:
            headers["If-None-Match"] = etag
        return await self._http.get(self.repo_url(path), params=params, headers=headers)

    async def list_issues_page(
        self,
        state: EntityState,
        per_page: int,
        page: int,
        etag: str | None = None,
    ) -> httpx.Response:
        """Fetch one page of the repository issue list (issues and pulls mixed)."""
        params = {"state": state.value, "per_page": per_page, "page": page}
        return await self.get("/issues", params=params, etag=etag)

    async def list_comments(
        self, entity_type: EntityType, number: int, etag: str | None = None
    ) -> httpx.Response:
        """Fetch issue comments, or review comments for a pull request."""
        if entity_type is EntityType.PULL:
            return await self.get(f"/pulls/{number}/comments", etag=etag)
        return await self.get(f"/issues/{number}/comments", etag=etag)

    async def get_json(self, path: str) -> Any:
        """GET a path and decode it, raising GitHubApiError on failure."""
        response = await self.get(path)
        if not response.is_success:
            raise GitHubApiError(response.status_code, response.text)
        return response.json()

    async def get_pull(self, number: int) -> dict[str, Any]:
        return await self.get_json(f"/pulls/{number}")

    async def get_issue(self, number: int) -> dict[str, Any]:
        return await self.get_json(f"/issues/{number}")

    async def update_issue_state(
        self, number: int, state: EntityState, state_reason: str | None
    ) -> None:
        """PATCH an issue (or pull request) to a new state.

        Raises:
            GitHubApiError: If GitHub rejected the change; ``body`` holds the
                server's error payload. Connection failures are raised with
                status 0.
        """

        def _edit() -> None:
            repository = self.github.get_repo(self.full_name)
            issue = repository.get_issue(number)
            if state_reason:
                issue.edit(state=state.value, state_reason=state_reason)
            else:
                issue.edit(state=state.value)

        try:
            await asyncio.to_thread(_edit)
        except GithubException as e:
            if e.data is None:
                body = str(e)
            elif isinstance(e.data, str):
                body = e.data
            else:
                body = json.dumps(e.data)
            raise GitHubApiError(e.status, body) from e
        except requests.exceptions.RequestException as e:
            # transport failures never reach GitHub, so there is no status
            raise GitHubApiError(0, str(e)) from e

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
        if self._github is not None:
            self._github.close()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()
