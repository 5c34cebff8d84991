#!/usr/bin/env python3
"""Serve the read API and run the periodic ingestion jobs."""

import logging
import sys
import os
import threading

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import uvicorn

from git_ingest.api.app import create_app
from git_ingest.application.ingestion_service import IngestionService
from git_ingest.application.retry import RateLimitRetryPolicy
from git_ingest.application.scheduler import Scheduler
from git_ingest.infrastructure.database import DatabaseRepository, StorageError
from git_ingest.infrastructure.github_client import GitHubRestClient

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

HOUR = 3600


def main():
    """Bootstrap the store, start the schedules and serve until interrupted."""
    try:
        port = int(os.getenv("PORT", "8181"))
    except ValueError:
        logger.error("error parsing port, must be numeric")
        return 1

    db_repository = DatabaseRepository()
    try:
        db_repository.connect()
        db_repository.initialize_schema()
    except StorageError as e:
        logger.error(f"Failed to connect to the database: {e}")
        return 1

    # Shared by the schedules, the campaign and rate limit waits
    stop_event = threading.Event()
    service = IngestionService(
        GitHubRestClient(),
        db_repository,
        retry_policy=RateLimitRetryPolicy(cancel_event=stop_event),
    )

    keyword = os.getenv("SEARCH_KEYWORD", "cryptocurrency")
    scheduler = Scheduler(stop_event)
    scheduler.add_job(
        "fleet-refresh",
        float(os.getenv("REFRESH_INTERVAL_HOURS", "5")) * HOUR,
        lambda: service.refresh_fleet(cancel_event=stop_event),
    )
    scheduler.add_job(
        "search",
        float(os.getenv("SEARCH_INTERVAL_HOURS", "1")) * HOUR,
        lambda: service.search_repositories(keyword),
    )
    scheduler.start()

    try:
        logger.info(f"Listening on port {port}")
        uvicorn.run(
            create_app(service, stop_event=stop_event),
            host="0.0.0.0",
            port=port,
            timeout_graceful_shutdown=30,
        )
    finally:
        logger.info("Shutting down, waiting for in-flight work to drain")
        scheduler.stop(timeout=30)
        db_repository.close()
        logger.info("Server exiting...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
