"""GitHub REST API client with rate limit detection."""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from git_ingest.domain.remote import RemoteCommit, RemoteRepository

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    """Raised when GitHub reports the request quota as exhausted."""

    def __init__(self, reset_at: int):
        super().__init__(f"Rate limit exceeded, resets at {reset_at}")
        self.reset_at = reset_at


class GitHubUnavailable(Exception):
    """Raised for any GitHub failure other than rate limiting."""
    pass


class GitHubRestClient:
    """Client for the three read-only GitHub calls the ingestion core needs.

    Every call raises RateLimitExceeded when GitHub signals the quota is used up
    and GitHubUnavailable for everything else. Retrying is left to the caller.
    """

    DEFAULT_BASE_URL = "https://api.github.com"
    RATE_LIMIT_REMAINING_HEADER = "X-RateLimit-Remaining"
    RATE_LIMIT_RESET_HEADER = "X-RateLimit-Reset"

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize GitHub REST client.

        Args:
            token: GitHub personal access token. If None, uses GITHUB_TOKEN env var.
            base_url: API root. If None, uses GITHUB_BASE_URL env var or api.github.com.
            timeout: Request timeout in seconds. If None, uses GITHUB_TIMEOUT_SECONDS.
            session: Optional pre-built requests session.
        """
        if token is None:
            token = os.getenv("GITHUB_TOKEN")
        if base_url is None:
            base_url = os.getenv("GITHUB_BASE_URL", self.DEFAULT_BASE_URL)
        if timeout is None:
            timeout = float(os.getenv("GITHUB_TIMEOUT_SECONDS", "30"))

        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {
            "Accept": "application/vnd.github+json",
        }

        if self.token:
            self.headers["Authorization"] = f"Bearer {self.token}"

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Issue a GET request and return the decoded JSON body.

        The rate limit headers are checked before the status code, since GitHub
        answers an exhausted quota with 403 or 429.

        Raises:
            RateLimitExceeded: If X-RateLimit-Remaining is 0
            GitHubUnavailable: On transport errors, non-2xx statuses or bad JSON
        """
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(
                url,
                params=params,
                headers=self.headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise GitHubUnavailable(f"Request to {url} failed: {e}") from e

        if response.headers.get(self.RATE_LIMIT_REMAINING_HEADER) == "0":
            raw_reset = response.headers.get(self.RATE_LIMIT_RESET_HEADER, "")
            try:
                reset_at = int(raw_reset)
            except ValueError as e:
                raise GitHubUnavailable(f"Invalid rate limit reset header: {raw_reset!r}") from e
            logger.warning(f"GitHub rate limit exhausted for {path}, resets at {reset_at}")
            raise RateLimitExceeded(reset_at)

        if response.status_code != 200:
            raise GitHubUnavailable(f"GET {url} returned {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise GitHubUnavailable(f"Malformed JSON from {url}") from e

    def search(self, keyword: str) -> List[RemoteRepository]:
        """
        Search repositories by keyword, first result page only.

        Args:
            keyword: GitHub search query string

        Returns:
            Repositories on the first result page
        """
        data = self._get("/search/repositories", params={"q": keyword})
        try:
            return [_parse_repository(item) for item in data["items"]]
        except (KeyError, TypeError) as e:
            raise GitHubUnavailable(f"Unexpected search payload: {e}") from e

    def fetch_repository(self, owner: str, name: str) -> RemoteRepository:
        """Fetch a single repository."""
        data = self._get(f"/repos/{owner}/{name}")
        try:
            return _parse_repository(data, owner=owner)
        except (KeyError, TypeError) as e:
            raise GitHubUnavailable(f"Unexpected repository payload: {e}") from e

    def fetch_commits(self, owner: str, name: str) -> List[RemoteCommit]:
        """Fetch the first page of commits for a repository."""
        data = self._get(f"/repos/{owner}/{name}/commits")
        try:
            return [_parse_commit(item) for item in data]
        except (KeyError, TypeError, ValueError) as e:
            raise GitHubUnavailable(f"Unexpected commits payload: {e}") from e


def _parse_repository(node: Dict[str, Any], owner: Optional[str] = None) -> RemoteRepository:
    if owner is None:
        owner = node["owner"]["login"]

    return RemoteRepository(
        name=node["name"],
        owner=owner,
        description=node.get("description") or "",
        url=node.get("html_url") or "",
        language=node.get("language") or "",
        forks_count=node.get("forks_count") or 0,
        stars_count=node.get("stargazers_count") or 0,
        open_issues_count=node.get("open_issues_count") or 0,
        watchers_count=node.get("watchers_count") or 0,
        created_at=node.get("created_at") or "",
        updated_at=node.get("updated_at") or "",
    )


def _parse_commit(node: Dict[str, Any]) -> RemoteCommit:
    commit = node["commit"]
    author = commit.get("author") or {}
    # Parse datetime strings; a commit without an author date is stored undated
    raw_date = author.get("date")
    date = datetime.fromisoformat(raw_date.replace("Z", "+00:00")) if raw_date else None

    return RemoteCommit(
        sha=node["sha"],
        author_name=author.get("name") or "",
        author_email=author.get("email") or "",
        message=commit.get("message") or "",
        date=date,
    )
