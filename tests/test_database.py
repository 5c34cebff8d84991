from __future__ import annotations

import threading
from typing import Any

import psycopg2
import psycopg2.pool
import pytest

from factories import make_repository
from git_ingest.domain.remote import new_identifier
from git_ingest.domain.repository import Commit
from git_ingest.infrastructure import database
from git_ingest.infrastructure.database import DatabaseRepository, StorageError


class FakeCursor:
    def __init__(self, connection: "FakeConnection") -> None:
        self.connection = connection

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def execute(self, sql: str, params: Any = None) -> None:
        self.connection.executed.append((" ".join(sql.split()), params))
        if self.connection.error is not None:
            raise self.connection.error

    def fetchone(self) -> Any:
        return self.connection.results.pop(0)

    def fetchall(self) -> Any:
        return self.connection.results.pop(0)


class FakeConnection:
    def __init__(self) -> None:
        self.executed: list[tuple[str, Any]] = []
        self.results: list[Any] = []
        self.error: Exception | None = None
        self.commits = 0
        self.rollbacks = 0
        self.closed = 0

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1


class FakePool:
    def __init__(self, minconn: int, maxconn: int, dsn: str) -> None:
        self.minconn = minconn
        self.maxconn = maxconn
        self.dsn = dsn
        self.connection = FakeConnection()
        self.returned: list[tuple[FakeConnection, bool]] = []
        self.exhausted = False

    def getconn(self) -> FakeConnection:
        if self.exhausted:
            raise psycopg2.pool.PoolError("connection pool exhausted")
        return self.connection

    def putconn(self, conn: FakeConnection, close: bool = False) -> None:
        self.returned.append((conn, close))
        if close:
            conn.closed = 1

    def closeall(self) -> None:
        pass


@pytest.fixture
def db(monkeypatch: pytest.MonkeyPatch) -> DatabaseRepository:
    monkeypatch.setattr(database, "ThreadedConnectionPool", FakePool)
    repo = DatabaseRepository("dbname=test", max_open=5, max_idle=2, max_lifetime=3600)
    repo.connect()
    return repo


@pytest.fixture
def pool(db: DatabaseRepository) -> FakePool:
    return db.pool


def row_for(repository: Any) -> tuple:
    return (
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
    )


def test_pool_is_sized_from_idle_and_open_limits(pool: FakePool) -> None:
    assert pool.minconn == 2
    assert pool.maxconn == 5
    assert pool.dsn == "dbname=test"


def test_pool_limits_default_to_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("POSTGRES_POOL_MAX_OPEN", "7")
    monkeypatch.setenv("POSTGRES_POOL_MAX_IDLE", "9")
    monkeypatch.setenv("POSTGRES_POOL_MAX_LIFETIME_SECONDS", "60")
    monkeypatch.setenv("POSTGRES_DB", "ingest_test")

    repo = DatabaseRepository()

    assert repo.max_open == 7
    assert repo.max_idle == 7
    assert repo.max_lifetime == 60
    assert "dbname=ingest_test" in repo.connection_string


def test_get_repository_returns_none_when_absent(db: DatabaseRepository, pool: FakePool) -> None:
    pool.connection.results = [None]

    assert db.get_repository("octo", "missing") is None
    sql, params = pool.connection.executed[0]
    assert "WHERE owner = %s AND name = %s" in sql
    assert params == ("octo", "missing")


def test_get_repository_maps_row(db: DatabaseRepository, pool: FakePool) -> None:
    stored = make_repository("octo", "hello")
    pool.connection.results = [row_for(stored)]

    assert db.get_repository("octo", "hello") == stored
    assert pool.connection.commits == 1
    assert pool.returned == [(pool.connection, False)]


def test_list_repositories_returns_page_and_total(db: DatabaseRepository, pool: FakePool) -> None:
    repos = [make_repository("octo", f"repo-{i}") for i in range(3)]
    pool.connection.results = [(23,), [row_for(r) for r in repos]]

    page, total = db.list_repositories(10, 3)

    assert page == repos
    assert total == 23
    sql, params = pool.connection.executed[1]
    assert "ORDER BY owner, name OFFSET %s LIMIT %s" in sql
    assert params == (20, 10)


def test_update_repository_targets_id(db: DatabaseRepository, pool: FakePool) -> None:
    repository = make_repository("octo", "hello")

    db.update_repository(repository)

    sql, params = pool.connection.executed[0]
    assert sql.startswith("UPDATE repositories SET")
    assert sql.endswith("WHERE id = %s")
    assert params[-1] == repository.id


def test_create_commits_bulk_inserts(db: DatabaseRepository, pool: FakePool, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []
    monkeypatch.setattr(database, "execute_values", lambda cur, sql, values, **kwargs: calls.append(values))
    repo_id = new_identifier()
    commits = [
        Commit(new_identifier(), repo_id, sha, "Mona", "mona@example.com", "msg", None)
        for sha in ("a1", "a1")
    ]

    db.create_commits(commits)

    assert len(calls) == 1
    assert [row[2] for row in calls[0]] == ["a1", "a1"]
    assert pool.connection.commits == 1


def test_create_commits_skips_empty_batch(db: DatabaseRepository, pool: FakePool) -> None:
    db.create_commits([])

    assert pool.returned == []


def test_database_errors_roll_back_and_raise_storage_error(db: DatabaseRepository, pool: FakePool) -> None:
    pool.connection.error = psycopg2.IntegrityError("duplicate key value violates unique constraint")

    with pytest.raises(StorageError):
        db.create_repository(make_repository("octo", "hello"))

    assert pool.connection.rollbacks == 1
    assert pool.connection.commits == 0
    assert pool.returned == [(pool.connection, False)]


def test_expired_connections_are_closed_on_return(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(database, "ThreadedConnectionPool", FakePool)
    repo = DatabaseRepository("dbname=test", max_open=5, max_idle=2, max_lifetime=0)
    repo.connect()
    pool = repo.pool
    pool.connection.results = [(4,)]

    assert repo.get_repository_count() == 4
    assert pool.returned == [(pool.connection, True)]


def test_connect_failure_is_storage_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(*args: Any) -> None:
        raise psycopg2.OperationalError("could not connect to server")

    monkeypatch.setattr(database, "ThreadedConnectionPool", refuse)

    with pytest.raises(StorageError):
        DatabaseRepository("dbname=test").connect()


def test_borrower_beyond_max_open_waits_for_a_returned_connection(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(database, "ThreadedConnectionPool", FakePool)
    repo = DatabaseRepository("dbname=test", max_open=2, max_idle=1, max_lifetime=3600)
    repo.connect()
    repo.pool.connection.results = [(7,)]
    held = [repo._get_connection(), repo._get_connection()]
    finished = threading.Event()
    counts: list[int] = []

    def count() -> None:
        counts.append(repo.get_repository_count())
        finished.set()

    borrower = threading.Thread(target=count)
    borrower.start()

    assert not finished.wait(0.2)
    assert counts == []

    repo._return_connection(held.pop())
    borrower.join(timeout=2)

    assert finished.is_set()
    assert counts == [7]
    repo._return_connection(held.pop())


def test_failed_borrow_gives_its_slot_back(db: DatabaseRepository, pool: FakePool) -> None:
    pool.exhausted = True

    with pytest.raises(StorageError, match="connection pool exhausted"):
        db.get_repository_count()

    pool.exhausted = False
    pool.connection.results = [(1,)]
    for _ in range(db.max_open):
        assert db._slots.acquire(timeout=1)
    for _ in range(db.max_open):
        db._slots.release()
    assert db.get_repository_count() == 1
