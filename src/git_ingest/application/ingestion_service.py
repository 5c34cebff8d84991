"""Application service for ingesting GitHub repositories and commits."""

import logging
import threading
from typing import Any, Callable, List, Optional

from git_ingest.application.fleet_refresh import CampaignResult, FleetRefreshCampaign
from git_ingest.application.retry import RateLimitRetryPolicy
from git_ingest.domain.remote import RemoteRepository, new_identifier
from git_ingest.domain.repository import Commit, Repository
from git_ingest.infrastructure.database import DatabaseRepository
from git_ingest.infrastructure.github_client import GitHubRestClient, GitHubUnavailable

logger = logging.getLogger(__name__)


class ProcessingError(Exception):
    """Raised when GitHub fails for a reason other than rate limiting."""

    def __init__(self, message: str = "unable to process"):
        super().__init__(message)


class IngestionService:
    """Service for pulling GitHub data into the store and reading it back."""

    def __init__(
        self,
        github_client: GitHubRestClient,
        database_repository: DatabaseRepository,
        retry_policy: Optional[RateLimitRetryPolicy] = None,
    ):
        """
        Initialize ingestion service.

        Args:
            github_client: GitHub API client
            database_repository: Database repository for storing data
            retry_policy: Policy wrapped around every GitHub call
        """
        self.github_client = github_client
        self.database_repository = database_repository
        self.retry_policy = retry_policy or RateLimitRetryPolicy()

    def _call_github(self, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return self.retry_policy.call(func, *args)
        except GitHubUnavailable as e:
            logger.error(f"Error calling GitHub: {e}")
            raise ProcessingError() from e

    def fetch_repository(self, owner: str, name: str) -> Repository:
        """
        Fetch one repository from GitHub and reconcile it into the store.

        When the repository is already stored its identifier is kept, the record
        is updated, and the stored record as it was before the update is
        returned. A new repository is created and returned as written.

        Args:
            owner: Repository owner login
            name: Repository name

        Returns:
            The pre-update snapshot on update, the created record on create

        Raises:
            ValueError: If owner or name is empty
            ProcessingError: If GitHub fails for a reason other than rate limiting
            StorageError: If the store fails
        """
        if not owner or not name:
            raise ValueError("owner and name are required")

        existing = self.database_repository.get_repository(owner, name)
        remote = self._call_github(self.github_client.fetch_repository, owner, name)
        payload = remote.to_record(existing.id if existing is not None else new_identifier())

        if existing is not None:
            self.database_repository.update_repository(payload)
            return existing

        self.database_repository.create_repository(payload)
        return payload

    def ingest_commits(self, owner: str, name: str) -> List[Commit]:
        """
        Refresh a repository and store the first page of its commits.

        Every call inserts a fresh batch; commits already stored for the
        repository are not checked, so repeated calls store duplicates.

        Returns:
            The commits inserted by this call
        """
        repository = self.fetch_repository(owner, name)
        remote_commits = self._call_github(self.github_client.fetch_commits, owner, name)

        commits = [commit.to_record(repository.id) for commit in remote_commits]
        self.database_repository.create_commits(commits)
        logger.info(f"Ingested {len(commits)} commits for {owner}/{name}")
        return commits

    def search_repositories(self, keyword: str) -> int:
        """
        Search GitHub for a keyword and upsert every result on the first page.

        A failure on one result is logged and the remaining results are still
        processed.

        Args:
            keyword: Free-text search keyword

        Returns:
            Number of results upserted successfully
        """
        if not keyword:
            raise ValueError("keyword is required")

        results = self._call_github(self.github_client.search, keyword)

        upserted = 0
        for remote in results:
            try:
                self._upsert_repository(remote)
                upserted += 1
            except Exception as e:
                logger.error(f"Error processing repository {remote.owner}/{remote.name}: {e}")

        logger.info(f"Search '{keyword}' upserted {upserted}/{len(results)} repositories")
        return upserted

    def _upsert_repository(self, remote: RemoteRepository):
        existing = self.database_repository.get_repository(remote.owner, remote.name)
        if existing is not None:
            self.database_repository.update_repository(remote.to_record(existing.id))
        else:
            self.database_repository.create_repository(remote.to_record(new_identifier()))

    def refresh_fleet(self, cancel_event: Optional[threading.Event] = None) -> CampaignResult:
        """Refresh commit history for every stored repository."""
        campaign = FleetRefreshCampaign(
            self.database_repository,
            refresh=self.ingest_commits,
            cancel_event=cancel_event,
        )
        return campaign.run()

    def get_repositories_by_language(self, language: str) -> List[Repository]:
        return self.database_repository.get_repositories_by_language(language)

    def get_top_repositories(self, n: int) -> List[Repository]:
        if n <= 0:
            raise ValueError("n must be positive")
        return self.database_repository.get_top_repositories(n)
