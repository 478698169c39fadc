"""
Seed the default challenge catalog.

Inserts every default challenge that is not present yet (matched by type and
title). Safe to run repeatedly; existing challenges are left as they are.

Usage (from apps/api):
    python -m scripts.seed_challenge_catalog
"""
import logging

from core.database import get_db_sync
from core.logging import setup_logging
from services.challenge_catalog import DEFAULT_CATALOG, seed_catalog

logger = logging.getLogger(__name__)


def main() -> int:
    setup_logging()
    db = get_db_sync()
    try:
        created = seed_catalog(db, DEFAULT_CATALOG)
        db.commit()
    except Exception:
        db.rollback()
        logger.error("Catalog seeding failed", exc_info=True)
        raise
    finally:
        db.close()

    logger.info(f"Catalog seeding complete: {created} created, "
                f"{len(DEFAULT_CATALOG) - created} already present")
    return created


if __name__ == "__main__":
    main()
