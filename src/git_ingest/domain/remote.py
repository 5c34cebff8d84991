"""Upstream GitHub payloads, before they are assigned storage identifiers."""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from git_ingest.domain.repository import Commit, Repository


def new_identifier() -> str:
    """Generate a fresh opaque record identifier."""
    return str(uuid.uuid4())


@dataclass(frozen=True)
class RemoteRepository:
    """Repository as returned by the GitHub API."""

    name: str
    owner: str
    description: str
    url: str
    language: str
    forks_count: int
    stars_count: int
    open_issues_count: int
    watchers_count: int
    created_at: str
    updated_at: str

    def to_record(self, repo_id: str) -> Repository:
        return Repository(
            id=repo_id,
            name=self.name,
            owner=self.owner,
            description=self.description,
            url=self.url,
            language=self.language,
            forks_count=self.forks_count,
            stars_count=self.stars_count,
            open_issues_count=self.open_issues_count,
            watchers_count=self.watchers_count,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


@dataclass(frozen=True)
class RemoteCommit:
    """Commit as returned by the GitHub commits listing."""

    sha: str
    author_name: str
    author_email: str
    message: str
    date: Optional[datetime]

    def to_record(self, repo_id: str) -> Commit:
        return Commit(
            id=new_identifier(),
            repo_id=repo_id,
            sha=self.sha,
            author_name=self.author_name,
            author_email=self.author_email,
            message=self.message,
            commit_date=self.date,
        )
