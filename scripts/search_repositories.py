#!/usr/bin/env python3
"""Script to discover repositories by keyword and store them."""

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
    """Search GitHub for a keyword and upsert the results."""
    keyword = sys.argv[1] if len(sys.argv) > 1 else os.getenv("SEARCH_KEYWORD", "cryptocurrency")
    db_repository = DatabaseRepository()
    try:
        db_repository.connect()
        db_repository.initialize_schema()

        service = IngestionService(GitHubRestClient(), db_repository)
        upserted = service.search_repositories(keyword)

        final_count = db_repository.get_repository_count()
        logger.info(
            f"Search completed. {upserted} repositories upserted, {final_count} in database"
        )
        return 0

    except Exception as e:
        logger.error(f"Search failed: {e}", exc_info=True)
        return 1
    finally:
        db_repository.close()


if __name__ == "__main__":
    sys.exit(main())
