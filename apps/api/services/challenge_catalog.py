"""
Challenge Catalog

Read-only access to the administered challenge definitions, plus the default
catalog the platform ships with. The progression engine never writes here.
"""

from decimal import Decimal
from typing import Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from models import Challenge, CHALLENGE_TYPES

logger = logging.getLogger(__name__)


# Default catalog. order_index is the unlock sequence within a type.
DEFAULT_CATALOG: List[Dict] = [
    {
        "title": "First Kilometre",
        "description": "Run 1 km without stopping",
        "type": "distance",
        "target_distance_km": Decimal("1.00"),
        "target_time_s": None,
        "points_reward": 100,
        "order_index": 1,
    },
    {
        "title": "Three K Explorer",
        "description": "Complete a 3 km run",
        "type": "distance",
        "target_distance_km": Decimal("3.00"),
        "target_time_s": None,
        "points_reward": 150,
        "order_index": 2,
    },
    {
        "title": "Five K Finisher",
        "description": "Complete a 5 km run",
        "type": "distance",
        "target_distance_km": Decimal("5.00"),
        "target_time_s": None,
        "points_reward": 250,
        "order_index": 3,
    },
    {
        "title": "Ten K Champion",
        "description": "Complete a 10 km run",
        "type": "distance",
        "target_distance_km": Decimal("10.00"),
        "target_time_s": None,
        "points_reward": 500,
        "order_index": 4,
    },
    {
        "title": "High Knees",
        "description": "Three sets of 30 seconds high knees",
        "type": "drill",
        "target_distance_km": None,
        "target_time_s": 90,
        "points_reward": 100,
        "order_index": 5,
    },
    {
        "title": "Butt Kicks",
        "description": "Three sets of 30 seconds butt kicks",
        "type": "drill",
        "target_distance_km": None,
        "target_time_s": 90,
        "points_reward": 100,
        "order_index": 6,
    },
    {
        "title": "Tall Posture",
        "description": "Run 200 m focusing on tall posture and relaxed shoulders",
        "type": "form",
        "target_distance_km": None,
        "target_time_s": None,
        "points_reward": 100,
        "order_index": 7,
    },
    {
        "title": "Arm Swing",
        "description": "Run 200 m with a forward-and-back arm swing",
        "type": "form",
        "target_distance_km": None,
        "target_time_s": None,
        "points_reward": 100,
        "order_index": 8,
    },
    {
        "title": "Twenty Minute Run",
        "description": "Keep running for 20 minutes",
        "type": "endurance",
        "target_distance_km": None,
        "target_time_s": 1200,
        "points_reward": 200,
        "order_index": 9,
    },
    {
        "title": "Thirty Minute Run",
        "description": "Keep running for 30 minutes",
        "type": "endurance",
        "target_distance_km": None,
        "target_time_s": 1800,
        "points_reward": 300,
        "order_index": 10,
    },
]


class ChallengeCatalog:
    """Query helpers over the challenge table."""

    def __init__(self, db: Session):
        self.db = db

    def active(self) -> List[Challenge]:
        """All active challenges ordered by order_index."""
        return (
            self.db.query(Challenge)
            .filter(Challenge.is_active.is_(True))
            .order_by(Challenge.order_index.asc(), Challenge.id.asc())
            .all()
        )

    def get(self, challenge_id: int) -> Optional[Challenge]:
        return self.db.query(Challenge).filter(Challenge.id == challenge_id).first()

    def next_of_type(self, challenge: Challenge) -> Optional[Challenge]:
        """
        The active challenge that follows `challenge` in its type's sequence.

        Gaps in order_index are allowed; the next higher value wins.
        """
        return (
            self.db.query(Challenge)
            .filter(
                Challenge.type == challenge.type,
                Challenge.is_active.is_(True),
                Challenge.order_index > challenge.order_index,
            )
            .order_by(Challenge.order_index.asc(), Challenge.id.asc())
            .first()
        )


def seed_catalog(db: Session, entries: Optional[List[Dict]] = None) -> int:
    """
    Insert catalog entries that are not present yet, matched by (type, title).

    Existing rows are left untouched. Returns the number of rows created.
    Caller commits.
    """
    entries = DEFAULT_CATALOG if entries is None else entries
    created = 0

    for entry in entries:
        if entry["type"] not in CHALLENGE_TYPES:
            raise ValueError(f"Unknown challenge type: {entry['type']}")

        exists = (
            db.query(Challenge.id)
            .filter(Challenge.type == entry["type"], Challenge.title == entry["title"])
            .first()
        )
        if exists:
            continue

        db.add(Challenge(is_active=True, **entry))
        created += 1

    if created:
        db.flush()
        logger.info(f"Seeded {created} catalog challenges")

    return created
