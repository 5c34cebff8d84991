"""Database connection and repository/commit storage implementation."""

import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Dict, List, Optional, Tuple

import psycopg2
from psycopg2.extras import execute_values
from psycopg2.pool import ThreadedConnectionPool

from git_ingest.domain.repository import Commit, Repository

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a statement against the store fails."""
    pass


REPOSITORY_COLUMNS = (
    "id, name, owner, description, url, language, forks_count, stars_count, "
    "open_issues_count, watchers_count, created_at, updated_at"
)


def _repository_from_row(row) -> Repository:
    return Repository(
        id=str(row[0]),
        name=row[1],
        owner=row[2],
        description=row[3],
        url=row[4],
        language=row[5],
        forks_count=row[6],
        stars_count=row[7],
        open_issues_count=row[8],
        watchers_count=row[9],
        created_at=row[10],
        updated_at=row[11],
    )


class DatabaseRepository:
    """Store for GitHub repositories and commits in PostgreSQL.

    The connection pool is the only resource shared between the ingestion
    threads; each method borrows one connection for the duration of a
    single statement or transaction.
    """

    def __init__(
        self,
        connection_string: Optional[str] = None,
        max_open: Optional[int] = None,
        max_idle: Optional[int] = None,
        max_lifetime: Optional[float] = None,
    ):
        """
        Initialize database repository.

        Args:
            connection_string: PostgreSQL connection string. If None, uses env vars.
            max_open: Maximum open connections (POSTGRES_POOL_MAX_OPEN).
            max_idle: Maximum idle connections kept in the pool (POSTGRES_POOL_MAX_IDLE).
            max_lifetime: Seconds a connection may be reused (POSTGRES_POOL_MAX_LIFETIME_SECONDS).
        """
        if connection_string is None:
            # Build connection string from environment variables
            db_host = os.getenv("POSTGRES_HOST", "localhost")
            db_port = os.getenv("POSTGRES_PORT", "5432")
            db_name = os.getenv("POSTGRES_DB", "github_ingest")
            db_user = os.getenv("POSTGRES_USER", "postgres")
            db_password = os.getenv("POSTGRES_PASSWORD", "postgres")

            connection_string = (
                f"host={db_host} port={db_port} dbname={db_name} "
                f"user={db_user} password={db_password}"
            )

        if max_open is None:
            max_open = int(os.getenv("POSTGRES_POOL_MAX_OPEN", "10"))
        if max_idle is None:
            max_idle = int(os.getenv("POSTGRES_POOL_MAX_IDLE", "2"))
        if max_lifetime is None:
            max_lifetime = float(os.getenv("POSTGRES_POOL_MAX_LIFETIME_SECONDS", "3600"))

        self.connection_string = connection_string
        self.max_open = max_open
        self.max_idle = min(max_idle, max_open)
        self.max_lifetime = max_lifetime
        self.pool: Optional[ThreadedConnectionPool] = None
        self._opened_at: Dict[int, float] = {}
        self._lock = threading.Lock()
        # getconn raises PoolError at max_open, borrowers wait on a slot instead
        self._slots = threading.BoundedSemaphore(max_open)

    def connect(self):
        """Initialize connection pool."""
        try:
            # psycopg2 keeps at most minconn idle connections and closes the rest on return
            self.pool = ThreadedConnectionPool(self.max_idle, self.max_open, self.connection_string)
            logger.info(
                f"Database connection pool created (max_open={self.max_open}, max_idle={self.max_idle})"
            )
        except psycopg2.Error as e:
            logger.error(f"Error creating connection pool: {e}")
            raise StorageError(f"Unable to connect to database: {e}") from e

    def close(self):
        """Close connection pool."""
        if self.pool:
            self.pool.closeall()
            self.pool = None
            logger.info("Database connection pool closed")

    def _get_connection(self):
        """Get a connection from the pool, waiting while max_open are borrowed."""
        self._slots.acquire()
        try:
            with self._lock:
                if not self.pool:
                    self.connect()
            conn = self.pool.getconn()
        except psycopg2.Error as e:
            self._slots.release()
            raise StorageError(f"Unable to obtain database connection: {e}") from e
        except Exception:
            self._slots.release()
            raise
        with self._lock:
            self._opened_at.setdefault(id(conn), time.monotonic())
        return conn

    def _return_connection(self, conn):
        """Return a connection to the pool, retiring it once past its lifetime."""
        try:
            if not self.pool:
                return
            with self._lock:
                opened_at = self._opened_at.get(id(conn), time.monotonic())
            expired = time.monotonic() - opened_at >= self.max_lifetime
            self.pool.putconn(conn, close=expired)
            # Connections beyond max_idle are closed by the pool itself
            if conn.closed:
                with self._lock:
                    self._opened_at.pop(id(conn), None)
        finally:
            self._slots.release()

    @contextmanager
    def _transaction(self, action: str):
        """Borrow a connection, commit on success and roll back on failure."""
        conn = self._get_connection()
        try:
            with conn.cursor() as cur:
                yield cur
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            logger.error(f"Error {action}: {e}")
            raise StorageError(f"Error {action}: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            self._return_connection(conn)

    def initialize_schema(self):
        """Create database tables if they don't exist."""
        with self._transaction("initializing schema") as cur:
            # No uniqueness on commits (repo_id, sha): re-ingestion stores duplicates
            cur.execute("""
                CREATE TABLE IF NOT EXISTS repositories (
                    id UUID PRIMARY KEY,
                    name VARCHAR(255) NOT NULL,
                    owner VARCHAR(255) NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    url TEXT NOT NULL DEFAULT '',
                    language VARCHAR(255) NOT NULL DEFAULT '',
                    forks_count INTEGER NOT NULL DEFAULT 0,
                    stars_count INTEGER NOT NULL DEFAULT 0,
                    open_issues_count INTEGER NOT NULL DEFAULT 0,
                    watchers_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL DEFAULT '',
                    updated_at TEXT NOT NULL DEFAULT '',
                    CONSTRAINT idx_name_owner UNIQUE (owner, name)
                );

                CREATE INDEX IF NOT EXISTS idx_repositories_language ON repositories(language);
                CREATE INDEX IF NOT EXISTS idx_repositories_stars_count ON repositories(stars_count);

                CREATE TABLE IF NOT EXISTS commits (
                    id UUID PRIMARY KEY,
                    repo_id UUID NOT NULL,
                    sha VARCHAR(64) NOT NULL,
                    author_name TEXT NOT NULL DEFAULT '',
                    author_email TEXT NOT NULL DEFAULT '',
                    message TEXT NOT NULL DEFAULT '',
                    commit_date TIMESTAMPTZ
                );

                CREATE INDEX IF NOT EXISTS idx_commits_repo_id ON commits(repo_id);
            """)
        logger.info("Database schema initialized")

    def create_repository(self, repository: Repository):
        """Insert a new repository record."""
        with self._transaction("creating repository") as cur:
            cur.execute(
                f"INSERT INTO repositories ({REPOSITORY_COLUMNS}) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
                (
                    repository.id,
                    repository.name,
                    repository.owner,
                    repository.description,
                    repository.url,
                    repository.language,
                    repository.forks_count,
                    repository.stars_count,
                    repository.open_issues_count,
                    repository.watchers_count,
                    repository.created_at,
                    repository.updated_at,
                ),
            )
        logger.info(f"Created repository {repository.owner}/{repository.name}")

    def update_repository(self, repository: Repository):
        """Overwrite the mutable fields of the repository with the same id."""
        with self._transaction("updating repository") as cur:
            cur.execute(
                """
                UPDATE repositories SET
                    name = %s,
                    owner = %s,
                    description = %s,
                    url = %s,
                    language = %s,
                    forks_count = %s,
                    stars_count = %s,
                    open_issues_count = %s,
                    watchers_count = %s,
                    created_at = %s,
                    updated_at = %s
                WHERE id = %s
                """,
                (
                    repository.name,
                    repository.owner,
                    repository.description,
                    repository.url,
                    repository.language,
                    repository.forks_count,
                    repository.stars_count,
                    repository.open_issues_count,
                    repository.watchers_count,
                    repository.created_at,
                    repository.updated_at,
                    repository.id,
                ),
            )
        logger.info(f"Updated repository {repository.owner}/{repository.name}")

    def create_commits(self, commits: List[Commit]):
        """
        Insert a batch of commits in one statement.

        No existence check is made, so the same SHA can be stored repeatedly
        for a repository.

        Args:
            commits: Commit entities to store
        """
        if not commits:
            return

        with self._transaction("creating commits") as cur:
            values = [
                (
                    commit.id,
                    commit.repo_id,
                    commit.sha,
                    commit.author_name,
                    commit.author_email,
                    commit.message,
                    commit.commit_date,
                )
                for commit in commits
            ]
            execute_values(
                cur,
                """
                INSERT INTO commits (
                    id, repo_id, sha, author_name, author_email, message, commit_date
                ) VALUES %s
                """,
                values,
                template=None,
                page_size=1000
            )
        logger.info(f"Inserted {len(commits)} commits")

    def get_repository(self, owner: str, name: str) -> Optional[Repository]:
        """Look up a repository by (owner, name); None when absent."""
        with self._transaction("looking up repository") as cur:
            cur.execute(
                f"SELECT {REPOSITORY_COLUMNS} FROM repositories WHERE owner = %s AND name = %s LIMIT 1",
                (owner, name),
            )
            row = cur.fetchone()
        return _repository_from_row(row) if row else None

    def list_repositories(self, page_size: int, page: int) -> Tuple[List[Repository], int]:
        """
        List one page of stored repositories.

        Args:
            page_size: Number of repositories per page
            page: 1-based page index

        Returns:
            Tuple of (repositories on the page, total number of stored repositories)
        """
        offset = page_size * (page - 1)
        with self._transaction("listing repositories") as cur:
            cur.execute("SELECT COUNT(*) FROM repositories")
            total = cur.fetchone()[0]
            cur.execute(
                f"SELECT {REPOSITORY_COLUMNS} FROM repositories "
                "ORDER BY owner, name OFFSET %s LIMIT %s",
                (offset, page_size),
            )
            rows = cur.fetchall()
        return [_repository_from_row(row) for row in rows], total

    def get_repositories_by_language(self, language: str) -> List[Repository]:
        """Get all stored repositories with the given primary language."""
        with self._transaction("filtering repositories by language") as cur:
            cur.execute(
                f"SELECT {REPOSITORY_COLUMNS} FROM repositories WHERE language = %s",
                (language,),
            )
            rows = cur.fetchall()
        return [_repository_from_row(row) for row in rows]

    def get_top_repositories(self, n: int) -> List[Repository]:
        """Get the n repositories with the most stars."""
        with self._transaction("getting top repositories") as cur:
            cur.execute(
                f"SELECT {REPOSITORY_COLUMNS} FROM repositories ORDER BY stars_count DESC LIMIT %s",
                (n,),
            )
            rows = cur.fetchall()
        return [_repository_from_row(row) for row in rows]

    def get_repository_count(self) -> int:
        """Get the total number of repositories in the database."""
        with self._transaction("getting repository count") as cur:
            cur.execute("SELECT COUNT(*) FROM repositories")
            return cur.fetchone()[0]

