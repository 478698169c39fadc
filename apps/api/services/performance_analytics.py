"""
Performance Analytics Tracker

Rolling per-athlete statistics updated after every challenge outcome:
- avg_completion_rate: nudged up on success, down harder on failure
- avg_attempt_count: smoothed mean of attempts per outcome
- recent_trend: direction of the last rate change

These rows feed the adaptive difficulty model. Every update is a single
locked read-modify-write so concurrent outcomes for the same athlete do not
lose increments.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import AthletePerformanceAnalytics

logger = logging.getLogger(__name__)

DEFAULT_COMPLETION_RATE = Decimal("80")
DEFAULT_ATTEMPT_COUNT = Decimal("1")
DEFAULT_TREND = "stable"
DEFAULT_ADAPTIVE_LEVEL = Decimal("1")

RATE_STEP_UP = Decimal("2")
RATE_STEP_DOWN = Decimal("5")
TREND_THRESHOLD = Decimal("5")

TREND_IMPROVING = "improving"
TREND_STABLE = "stable"
TREND_DECLINING = "declining"


def next_completion_rate(old_rate: Decimal, completed: bool) -> Decimal:
    if completed:
        return min(Decimal("100"), old_rate + RATE_STEP_UP)
    return max(Decimal("0"), old_rate - RATE_STEP_DOWN)


def next_attempt_count(old_avg: Decimal, attempts: int) -> Decimal:
    return max(Decimal("1"), (old_avg + Decimal(attempts)) / 2)


def classify_trend(old_rate: Decimal, new_rate: Decimal) -> str:
    if new_rate > old_rate + TREND_THRESHOLD:
        return TREND_IMPROVING
    if new_rate < old_rate - TREND_THRESHOLD:
        return TREND_DECLINING
    return TREND_STABLE


class PerformanceAnalyticsTracker:
    """Reads and updates AthletePerformanceAnalytics rows."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, athlete_id: int) -> Optional[AthletePerformanceAnalytics]:
        return (
            self.db.query(AthletePerformanceAnalytics)
            .filter(AthletePerformanceAnalytics.athlete_id == athlete_id)
            .first()
        )

    def get_or_create(self, athlete_id: int, lock: bool = False) -> AthletePerformanceAnalytics:
        """
        Return the athlete's analytics row, creating the default one on first access.

        With lock=True the row is read FOR UPDATE (ignored by SQLite).
        """
        query = self.db.query(AthletePerformanceAnalytics).filter(
            AthletePerformanceAnalytics.athlete_id == athlete_id
        )
        if lock:
            query = query.with_for_update().populate_existing()
        row = query.first()
        if row is not None:
            return row

        row = AthletePerformanceAnalytics(
            athlete_id=athlete_id,
            avg_completion_rate=DEFAULT_COMPLETION_RATE,
            avg_attempt_count=DEFAULT_ATTEMPT_COUNT,
            recent_trend=DEFAULT_TREND,
            adaptive_level=DEFAULT_ADAPTIVE_LEVEL,
            total_challenges_completed=0,
            total_challenges_attempted=0,
        )
        try:
            with self.db.begin_nested():
                self.db.add(row)
                self.db.flush()
        except IntegrityError:
            # Another request created the row first.
            logger.debug(f"Analytics row for athlete {athlete_id} created concurrently")
            query = self.db.query(AthletePerformanceAnalytics).filter(
                AthletePerformanceAnalytics.athlete_id == athlete_id
            )
            if lock:
                query = query.with_for_update().populate_existing()
            row = query.one()
        return row

    def update(self, athlete_id: int, completed: bool, attempts: int) -> AthletePerformanceAnalytics:
        """
        Fold one challenge outcome into the athlete's rolling statistics.

        Args:
            athlete_id: Athlete whose statistics change
            completed: Whether the outcome was a completion
            attempts: Attempts the outcome took (the state row's attempt count)
        """
        row = self.get_or_create(athlete_id, lock=True)

        old_rate = Decimal(row.avg_completion_rate)
        new_rate = next_completion_rate(old_rate, completed)

        row.avg_completion_rate = new_rate
        row.avg_attempt_count = next_attempt_count(Decimal(row.avg_attempt_count), attempts)
        row.recent_trend = classify_trend(old_rate, new_rate)
        row.total_challenges_attempted = (row.total_challenges_attempted or 0) + 1
        if completed:
            row.total_challenges_completed = (row.total_challenges_completed or 0) + 1
        row.last_analysis_at = datetime.now(timezone.utc)

        self.db.flush()
        logger.debug(
            f"Analytics updated for athlete {athlete_id}: rate {old_rate} -> {new_rate}, "
            f"trend {row.recent_trend}"
        )
        return row

    def record_adaptive_level(self, athlete_id: int, multiplier: float) -> AthletePerformanceAnalytics:
        """Store the most recently computed difficulty multiplier."""
        row = self.get_or_create(athlete_id, lock=True)
        row.adaptive_level = Decimal(str(multiplier))
        row.last_analysis_at = datetime.now(timezone.utc)
        self.db.flush()
        return row
