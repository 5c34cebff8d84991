"""FastAPI read API over the ingestion service."""

import logging
import threading
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from git_ingest.application.ingestion_service import IngestionService, ProcessingError
from git_ingest.application.retry import RetryAborted
from git_ingest.infrastructure.database import StorageError

logger = logging.getLogger(__name__)


def create_app(service: IngestionService, stop_event: Optional[threading.Event] = None) -> FastAPI:
    """Build the read API around an ingestion service.

    Fetching a repository or its commits goes to GitHub and writes to the
    store before responding; the language and top-N listings only read.
    Sync handlers run on FastAPI's threadpool, so the blocking service calls
    are safe here.

    stop_event is set when the app shuts down so that requests waiting out
    a rate limit are released.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if stop_event is not None:
            logger.info("API shutting down, cancelling rate-limit waits")
            stop_event.set()

    app = FastAPI(
        lifespan=lifespan,
        title="GitHub Commit Ingestor",
        description="Read API over ingested GitHub repositories and commits",
        version="1.0.0",
    )
    app.state.service = service

    @app.exception_handler(ValueError)
    async def invalid_input(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(ProcessingError)
    @app.exception_handler(StorageError)
    @app.exception_handler(RetryAborted)
    async def service_failure(request: Request, exc: Exception):
        logger.error(f"Request {request.url.path} failed: {exc}")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.get("/health")
    def health_check():
        return {"status": "healthy"}

    @app.get("/repo/{owner}/{name}")
    def fetch_repository(owner: str, name: str, request: Request):
        return request.app.state.service.fetch_repository(owner, name)

    @app.get("/commit/{owner}/{name}")
    def fetch_commits(owner: str, name: str, request: Request):
        return request.app.state.service.ingest_commits(owner, name)

    @app.get("/repos/language/{language}")
    def repositories_by_language(language: str, request: Request):
        return request.app.state.service.get_repositories_by_language(language)

    @app.get("/repos/top/{n}")
    def top_repositories(n: str, request: Request):
        try:
            count = int(n)
        except ValueError:
            return JSONResponse(status_code=400, content={"error": "invalid number"})
        if count <= 0:
            return JSONResponse(status_code=400, content={"error": "invalid number"})
        return request.app.state.service.get_top_repositories(count)

    return app
