"""
Rankings API Router

Individual, global, school and age-group leaderboards. All views are
recomputed from activity distance on every request.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from core.config import settings
from core.database import get_db
from core.auth import get_current_user, AuthenticatedUser
from core.exceptions import NotFoundError, ValidationError
from schemas import (
    AgeGroupRankingsResponse,
    AllAgeGroupRankingsResponse,
    AthleteRankingResponse,
    IndividualRankResponse,
    SchoolRankingResponse,
)
from services.ranking_aggregator import AthleteNotFound, InvalidAgeBracket, RankingAggregator

router = APIRouter(prefix="/v1/rankings", tags=["rankings"])


@router.get("/me", response_model=IndividualRankResponse)
def get_my_rank(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return RankingAggregator(db).individual_rank(current_user.id)
    except AthleteNotFound:
        raise NotFoundError("Athlete", str(current_user.id))


@router.get("/global", response_model=List[AthleteRankingResponse])
def get_global_rankings(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Maximum athletes to return (default 100)"),
):
    return RankingAggregator(db).global_rankings(limit)


@router.get("/schools", response_model=List[SchoolRankingResponse])
def get_school_rankings(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Every registered school, including those without athletes yet."""
    return RankingAggregator(db).school_rankings()


@router.get("/schools/registry", response_model=List[str])
def get_school_registry():
    """Registered schools and clubs, sorted. Public: sign-up forms read it before login."""
    return settings.school_clubs


@router.get("/age-groups", response_model=AllAgeGroupRankingsResponse)
def get_all_age_group_rankings(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return AllAgeGroupRankingsResponse(
        age_groups={
            key: AgeGroupRankingsResponse.model_validate(group)
            for key, group in RankingAggregator(db).all_age_group_rankings().items()
        }
    )


@router.get("/age-groups/{bracket}", response_model=AgeGroupRankingsResponse)
def get_age_group_rankings(
    bracket: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """One bracket: elementary (6-8), middle (9-12) or high (13-18)."""
    try:
        return RankingAggregator(db).age_group_rankings(bracket)
    except InvalidAgeBracket as e:
        raise ValidationError(str(e), field="bracket")
