#!/usr/bin/env python3
"""Database bootstrap: run Alembic migrations, then seed the challenge catalog.

- Always run `alembic upgrade head` on startup.
- If migrations fail, fail fast (don't start with an unknown schema).
- Catalog seeding is idempotent; existing challenges are never modified.
"""

import os
import sys
import time
import logging
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("run_migrations")


def check_db_ready() -> bool:
    """Check if database is ready"""
    from core.database import check_db_connection

    return check_db_connection()


def _get_alembic_config():
    """Load Alembic config for programmatic migrations."""
    from alembic.config import Config

    here = os.path.dirname(os.path.abspath(__file__))
    cfg = Config(os.path.join(here, "alembic.ini"))
    return cfg


def alembic_upgrade_head() -> None:
    """Apply all pending migrations."""
    from alembic import command

    command.upgrade(_get_alembic_config(), "head")


def seed_default_catalog() -> int:
    from core.database import get_db_sync
    from services.challenge_catalog import seed_catalog

    db = get_db_sync()
    try:
        created = seed_catalog(db)
        db.commit()
        return created
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def main():
    from core.logging import setup_logging

    setup_logging()
    logger.info("Waiting for database to be ready...")
    max_retries = 30
    retry_count = 0

    while retry_count < max_retries:
        if check_db_ready():
            logger.info("Database is ready!")
            break
        retry_count += 1
        logger.warning(f"Database is unavailable - sleeping (attempt {retry_count}/{max_retries})")
        time.sleep(1)
    else:
        logger.error("Database is not ready after maximum retries")
        sys.exit(1)

    try:
        alembic_upgrade_head()
        logger.info("Migrations completed successfully!")
    except Exception as e:
        logger.error(f"Alembic upgrade failed: {e}", exc_info=True)
        sys.exit(1)

    if os.getenv("SEED_CHALLENGE_CATALOG", "true").lower() in ("1", "true", "yes"):
        created = seed_default_catalog()
        logger.info(f"Challenge catalog seeded ({created} new)")


if __name__ == '__main__':
    main()
