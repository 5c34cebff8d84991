from __future__ import annotations

import pytest

from factories import FakeClock, FakeGitHub, FakeStore
from git_ingest.application.ingestion_service import IngestionService
from git_ingest.application.retry import RateLimitRetryPolicy


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(github: FakeGitHub, store: FakeStore, clock: FakeClock) -> IngestionService:
    policy = RateLimitRetryPolicy(clock=clock.time, sleep=clock.sleep)
    return IngestionService(github, store, retry_policy=policy)
