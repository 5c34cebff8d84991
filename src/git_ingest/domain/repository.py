"""Domain entities for stored GitHub repositories and commits."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Repository:
    """Stored repository record, unique per (owner, name).

    created_at and updated_at are kept exactly as GitHub supplied them.
    """

    id: str
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


@dataclass(frozen=True)
class Commit:
    """Stored commit record attributed to a repository by repo_id."""

    id: str
    repo_id: str
    sha: str
    author_name: str
    author_email: str
    message: str
    commit_date: Optional[datetime]
