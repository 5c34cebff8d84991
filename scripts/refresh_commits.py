#!/usr/bin/env python3
"""Script to refresh commit history for every stored repository."""

import logging
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from git_ingest.application.ingestion_service import IngestionService
from git_ingest.infrastructure.database import DatabaseRepository
from git_ingest.infrastructure.github_client import GitHubRestClient

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    """Run one fleet refresh campaign."""
    db_repository = DatabaseRepository()
    try:
        if not os.getenv("GITHUB_TOKEN"):
            logger.warning("GITHUB_TOKEN not found. Using unauthenticated requests (limited rate).")

        db_repository.connect()
        db_repository.initialize_schema()

        service = IngestionService(GitHubRestClient(), db_repository)
        result = service.refresh_fleet()

        logger.info(
            f"Refresh completed. {result.processed} repositories refreshed, {result.failed} failed"
        )
        return 0 if result.failed == 0 else 1

    except Exception as e:
        logger.error(f"Refresh failed: {e}", exc_info=True)
        return 1
    finally:
        db_repository.close()


if __name__ == "__main__":
    sys.exit(main())
