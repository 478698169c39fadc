"""
Adaptive Difficulty

Personalises a challenge's target to the athlete. Four factors each contribute
a sub-multiplier and a human-readable reason:

1. Completion rate   - how often the athlete finishes what they start
2. Trend             - stored trend plus the last ten outcomes
3. Age               - gentler progression for younger runners
4. Challenge type    - technique work scales less than raw distance

The product is clamped to [0.5, 2.0]. Higher multipliers mean harder
targets: distance grows with the multiplier and time shrinks with it.

compute_difficulty() is pure. AdaptiveDifficultyService gathers its inputs
from the database and degrades to a neutral result when they are missing.
"""

from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence, Tuple
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import (
    Athlete,
    Challenge,
    UserChallenge,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
)
from services.performance_analytics import (
    DEFAULT_COMPLETION_RATE,
    DEFAULT_TREND,
    PerformanceAnalyticsTracker,
    TREND_DECLINING,
    TREND_IMPROVING,
)

logger = logging.getLogger(__name__)

MIN_MULTIPLIER = 0.5
MAX_MULTIPLIER = 2.0
RECENT_HISTORY_SIZE = 10
NO_HISTORY_RATIO = 0.8
FALLBACK_REASONING = "fallback"

# (minimum completion rate, multiplier, reason), checked top-down.
COMPLETION_RATE_BANDS: List[Tuple[float, float, str]] = [
    (90, 1.3, "High completion rate - increasing difficulty"),
    (75, 1.1, "Good completion rate - slight increase"),
    (50, 1.0, "Average completion rate - maintaining difficulty"),
    (25, 0.8, "Low completion rate - reducing difficulty"),
]
COMPLETION_RATE_FLOOR = (0.6, "Very low completion rate - significant reduction")

# (min age, max age, multiplier, reason), inclusive.
AGE_BANDS: List[Tuple[int, int, float, str]] = [
    (6, 8, 0.7, "Elementary age - gentler progression"),
    (9, 12, 0.9, "Middle school age - moderate progression"),
    (13, 18, 1.1, "High school age - standard progression"),
]

TYPE_FACTORS = {
    "distance": (1.0, "Standard distance scaling"),
    "drill": (0.9, "Drill challenges - technique focus"),
    "form": (0.8, "Form challenges - learning emphasis"),
    "endurance": (1.1, "Endurance challenges - gradual building"),
}


class AdaptiveCalculationFailure(Exception):
    """Inputs for a difficulty calculation could not be resolved."""
    pass


@dataclass(frozen=True)
class DifficultySettings:
    multiplier: float
    adapted_distance_km: Optional[float]
    adapted_time_s: Optional[int]
    reasoning: str

    def to_dict(self) -> dict:
        return asdict(self)


NEUTRAL_SETTINGS = DifficultySettings(
    multiplier=1.0,
    adapted_distance_km=None,
    adapted_time_s=None,
    reasoning=FALLBACK_REASONING,
)


def completion_rate_factor(completion_rate: float) -> Tuple[float, str]:
    for threshold, multiplier, reason in COMPLETION_RATE_BANDS:
        if completion_rate >= threshold:
            return multiplier, reason
    return COMPLETION_RATE_FLOOR


def trend_factor(trend: str, recent_outcomes: Sequence[bool]) -> Tuple[float, str]:
    """
    recent_outcomes holds one bool per recent attempted challenge (True when
    completed). With no history the ratio is treated as 0.8.
    """
    if recent_outcomes:
        ratio = sum(1 for done in recent_outcomes if done) / len(recent_outcomes)
    else:
        ratio = NO_HISTORY_RATIO

    if trend == TREND_IMPROVING or ratio > 0.8:
        return 1.2, "Improving performance - progressive difficulty"
    if trend == TREND_DECLINING or ratio < 0.4:
        return 0.7, "Declining performance - reducing challenge"
    return 1.0, "Stable performance - maintaining progression"


def age_factor(age: Optional[int]) -> Tuple[float, str]:
    if age is not None:
        for low, high, multiplier, reason in AGE_BANDS:
            if low <= age <= high:
                return multiplier, reason
    return 1.0, "Standard age scaling"


def type_factor(challenge_type: str) -> Tuple[float, str]:
    return TYPE_FACTORS.get(challenge_type, (1.0, "Standard challenge scaling"))


def _round_half_up(value: Decimal, places: str) -> Decimal:
    return value.quantize(Decimal(places), rounding=ROUND_HALF_UP)


def compute_difficulty(
    analytics,
    user_age: Optional[int],
    challenge: Challenge,
    recent_outcomes: Sequence[bool] = (),
) -> DifficultySettings:
    """
    Compute personalised difficulty for one challenge.

    Args:
        analytics: AthletePerformanceAnalytics row, or None for defaults
        user_age: Athlete age in years (None scales neutrally)
        challenge: Catalog entry being displayed
        recent_outcomes: Completed flags of the athlete's last attempted challenges

    Returns:
        DifficultySettings. Same inputs always give the same result.
    """
    if analytics is not None:
        completion_rate = float(analytics.avg_completion_rate)
        trend = analytics.recent_trend or DEFAULT_TREND
    else:
        completion_rate = float(DEFAULT_COMPLETION_RATE)
        trend = DEFAULT_TREND

    factors = [
        completion_rate_factor(completion_rate),
        trend_factor(trend, recent_outcomes),
        age_factor(user_age),
        type_factor(challenge.type),
    ]

    multiplier = 1.0
    reasons = ["Base difficulty"]
    for factor, reason in factors:
        multiplier *= factor
        reasons.append(reason)

    multiplier = max(MIN_MULTIPLIER, min(MAX_MULTIPLIER, multiplier))
    exact = Decimal(str(multiplier))

    adapted_distance = None
    if challenge.target_distance_km is not None:
        target = Decimal(str(challenge.target_distance_km))
        adapted_distance = float(_round_half_up(target * exact, "0.01"))

    adapted_time = None
    if challenge.target_time_s:
        adapted_time = int(_round_half_up(Decimal(challenge.target_time_s) / exact, "1"))

    return DifficultySettings(
        multiplier=float(_round_half_up(exact, "0.01")),
        adapted_distance_km=adapted_distance,
        adapted_time_s=adapted_time,
        reasoning="; ".join(reasons),
    )


class AdaptiveDifficultyService:
    """Loads inputs for compute_difficulty() and never mutates challenge state."""

    def __init__(self, db: Session):
        self.db = db
        self.tracker = PerformanceAnalyticsTracker(db)

    def recent_outcomes(self, athlete_id: int, limit: int = RECENT_HISTORY_SIZE) -> List[bool]:
        rows = (
            self.db.query(UserChallenge.status)
            .filter(
                UserChallenge.athlete_id == athlete_id,
                UserChallenge.status.in_([STATUS_IN_PROGRESS, STATUS_COMPLETED]),
            )
            .order_by(UserChallenge.completed_at.desc().nulls_last(), UserChallenge.id.desc())
            .limit(limit)
            .all()
        )
        return [status == STATUS_COMPLETED for (status,) in rows]

    def _load_inputs(self, athlete_id: int, challenge_id: int):
        challenge = self.db.query(Challenge).filter(Challenge.id == challenge_id).first()
        if challenge is None:
            raise AdaptiveCalculationFailure(f"Challenge {challenge_id} not found")

        athlete = self.db.query(Athlete).filter(Athlete.id == athlete_id).first()
        if athlete is None:
            raise AdaptiveCalculationFailure(f"Athlete {athlete_id} not found")

        analytics = self.tracker.get(athlete_id)
        return athlete, challenge, analytics

    def calculate(self, athlete_id: int, challenge_id: int) -> DifficultySettings:
        """Difficulty for the athlete, or the neutral settings when any lookup fails."""
        try:
            athlete, challenge, analytics = self._load_inputs(athlete_id, challenge_id)
            outcomes = self.recent_outcomes(athlete_id)
        except AdaptiveCalculationFailure as e:
            logger.warning(f"Adaptive difficulty fallback for athlete {athlete_id}: {e}")
            return NEUTRAL_SETTINGS
        except SQLAlchemyError as e:
            # A failed statement aborts the transaction.
            self.db.rollback()
            logger.error(f"Adaptive difficulty lookup failed for athlete {athlete_id}: {e}", exc_info=True)
            return NEUTRAL_SETTINGS

        return compute_difficulty(analytics, athlete.age, challenge, outcomes)
