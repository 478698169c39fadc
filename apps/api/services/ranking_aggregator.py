"""
Ranking Aggregator

Points are GPS distance: one point per kilometre, summed over every activity
and rounded half-up to one decimal. Nothing is persisted; every read
recomputes from the activity table.

Ordering (one function, used by every view):
    total_points desc, activity_count desc, athlete_name asc, athlete_id asc
Ranks are ordinal (1, 2, 3, ...) even on ties.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.config import settings
from models import Activity, Athlete

logger = logging.getLogger(__name__)

NO_SCHOOL = "No School"


@dataclass(frozen=True)
class AgeBracket:
    key: str
    label: str
    min_age: int
    max_age: int

    def contains(self, age: Optional[int]) -> bool:
        return age is not None and self.min_age <= age <= self.max_age


AGE_BRACKETS: Dict[str, AgeBracket] = {
    "elementary": AgeBracket("elementary", "Elementary (Ages 6-8)", 6, 8),
    "middle": AgeBracket("middle", "Middle School (Ages 9-12)", 9, 12),
    "high": AgeBracket("high", "High School (Ages 13-18)", 13, 18),
}


class AthleteNotFound(Exception):
    pass


class InvalidAgeBracket(ValueError):
    pass


@dataclass
class AthleteRanking:
    rank: int
    athlete_id: int
    athlete_name: str
    school_club: Optional[str]
    age: Optional[int]
    total_points: float
    activity_count: int


@dataclass
class IndividualRank:
    rank: int
    total_points: float
    school_club: str


@dataclass
class SchoolRanking:
    rank: int
    school_club: str
    total_points: float
    athlete_count: int
    avg_points: float


@dataclass
class AgeGroupRankings:
    bracket: str
    label: str
    rankings: List[AthleteRanking] = field(default_factory=list)
    total_participants: int = 0
    is_active: bool = False
    needs_more_participants: int = 0


@dataclass
class _AthleteTotals:
    athlete_id: int
    athlete_name: str
    school_club: Optional[str]
    age: Optional[int]
    distance_sum: Decimal
    activity_count: int

    @property
    def points(self) -> Decimal:
        return round_points(self.distance_sum)


def round_points(value) -> Decimal:
    """Round a distance total to one decimal, half-up."""
    return Decimal(str(value or 0)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def _athlete_sort_key(totals: _AthleteTotals):
    return (-totals.points, -totals.activity_count, totals.athlete_name, totals.athlete_id)


def rank_athletes(totals: List[_AthleteTotals]) -> List[AthleteRanking]:
    ordered = sorted(totals, key=_athlete_sort_key)
    return [
        AthleteRanking(
            rank=position,
            athlete_id=t.athlete_id,
            athlete_name=t.athlete_name,
            school_club=t.school_club,
            age=t.age,
            total_points=float(t.points),
            activity_count=t.activity_count,
        )
        for position, t in enumerate(ordered, start=1)
    ]


class RankingAggregator:
    """Read-only ranking queries. Safe to run concurrently with writers."""

    def __init__(self, db: Session):
        self.db = db

    def _athlete_totals(self, bracket: Optional[AgeBracket] = None) -> List[_AthleteTotals]:
        query = (
            self.db.query(
                Athlete.id,
                Athlete.athlete_name,
                Athlete.school_club,
                Athlete.age,
                func.coalesce(func.sum(Activity.distance_km), 0),
                func.count(Activity.id),
            )
            .outerjoin(Activity, Activity.athlete_id == Athlete.id)
            .group_by(Athlete.id, Athlete.athlete_name, Athlete.school_club, Athlete.age)
        )
        if bracket is not None:
            query = query.filter(Athlete.age >= bracket.min_age, Athlete.age <= bracket.max_age)

        return [
            _AthleteTotals(
                athlete_id=athlete_id,
                athlete_name=name,
                school_club=school,
                age=age,
                distance_sum=Decimal(str(distance_sum)),
                activity_count=int(count),
            )
            for athlete_id, name, school, age, distance_sum, count in query.all()
        ]

    def individual_rank(self, user_id: int) -> IndividualRank:
        """
        The athlete's position among all athletes.

        Raises:
            AthleteNotFound: no athlete with that id
        """
        for entry in rank_athletes(self._athlete_totals()):
            if entry.athlete_id == user_id:
                return IndividualRank(
                    rank=entry.rank,
                    total_points=entry.total_points,
                    school_club=entry.school_club or NO_SCHOOL,
                )
        raise AthleteNotFound(f"Athlete {user_id} not found")

    def global_rankings(self, limit: Optional[int] = None) -> List[AthleteRanking]:
        limit = limit or settings.GLOBAL_RANKINGS_LIMIT
        return rank_athletes(self._athlete_totals())[:limit]

    def school_rankings(self) -> List[SchoolRanking]:
        """
        Every school with athletes plus every registered school, zero-point
        schools included.
        """
        schools: Dict[str, Dict] = {
            name: {"points": Decimal("0"), "distance": Decimal("0"), "activities": 0, "athletes": 0}
            for name in settings.school_clubs
        }

        for totals in self._athlete_totals():
            if not totals.school_club:
                continue
            school = schools.setdefault(
                totals.school_club,
                {"points": Decimal("0"), "distance": Decimal("0"), "activities": 0, "athletes": 0},
            )
            school["points"] += totals.points
            school["distance"] += totals.distance_sum
            school["activities"] += totals.activity_count
            school["athletes"] += 1

        def sort_key(item):
            name, data = item
            return (-data["points"], -data["athletes"], name)

        rankings = []
        for position, (name, data) in enumerate(sorted(schools.items(), key=sort_key), start=1):
            avg = data["distance"] / data["activities"] if data["activities"] else Decimal("0")
            rankings.append(
                SchoolRanking(
                    rank=position,
                    school_club=name,
                    total_points=float(round_points(data["points"])),
                    athlete_count=data["athletes"],
                    avg_points=float(round_points(avg)),
                )
            )
        return rankings

    def age_group_rankings(self, bracket: str) -> AgeGroupRankings:
        """
        Rankings within one age bracket.

        Raises:
            InvalidAgeBracket: bracket is not elementary, middle or high
        """
        age_bracket = AGE_BRACKETS.get(bracket)
        if age_bracket is None:
            raise InvalidAgeBracket(
                f"Unknown age group '{bracket}'. Expected one of: {', '.join(AGE_BRACKETS)}"
            )

        totals = self._athlete_totals(age_bracket)
        total_participants = len(totals)
        return AgeGroupRankings(
            bracket=age_bracket.key,
            label=age_bracket.label,
            rankings=rank_athletes(totals)[:settings.AGE_GROUP_RANKINGS_LIMIT],
            total_participants=total_participants,
            is_active=total_participants > 0,
            needs_more_participants=max(0, settings.AGE_GROUP_MIN_PARTICIPANTS - total_participants),
        )

    def all_age_group_rankings(self) -> Dict[str, AgeGroupRankings]:
        return {key: self.age_group_rankings(key) for key in AGE_BRACKETS}
