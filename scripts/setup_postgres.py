#!/usr/bin/env python3
"""Script to initialize the repositories and commits tables."""

import logging
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from git_ingest.infrastructure.database import DatabaseRepository, StorageError

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    """Initialize database schema."""
    db_repo = DatabaseRepository()
    try:
        db_repo.connect()
        db_repo.initialize_schema()
        logger.info("Database schema setup completed successfully")
        return 0
    except StorageError as e:
        logger.error(f"Failed to setup database schema: {e}")
        return 1
    finally:
        db_repo.close()


if __name__ == "__main__":
    sys.exit(main())
