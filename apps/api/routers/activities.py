"""
Activities API Router

Records GPS runs and lists the caller's history. Every recorded run is fed
through the progression engine, which may complete distance challenges.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List
from core.database import get_db
from core.auth import get_current_user, AuthenticatedUser
from core.exceptions import BadRequestError
from schemas import (
    ActivityCreate,
    ActivityRecordedResponse,
    ActivityResponse,
    CompletedChallengeResponse,
)
from services.challenge_progression import (
    ActivityInput,
    ChallengeProgressionEngine,
    InvalidActivity,
)

router = APIRouter(prefix="/v1/activities", tags=["activities"])


@router.post("", response_model=ActivityRecordedResponse, status_code=status.HTTP_201_CREATED)
def record_activity(
    body: ActivityCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Record a finished run.

    Returns the stored activity and every challenge the run completed,
    including successors unlocked and completed by the same run.
    """
    engine = ChallengeProgressionEngine(db)
    try:
        outcome = engine.record_activity(current_user, ActivityInput(**body.model_dump()))
    except InvalidActivity as e:
        raise BadRequestError(e.message, error_code="INVALID_ACTIVITY")

    return ActivityRecordedResponse(
        activity=ActivityResponse.model_validate(outcome.activity),
        challenges_completed=[
            CompletedChallengeResponse.model_validate(c) for c in outcome.completed_challenges
        ],
    )


@router.get("", response_model=List[ActivityResponse])
def list_activities(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    limit: int = Query(50, ge=1, le=200, description="Number of activities to return"),
):
    """List the caller's activities, most recent first."""
    return ChallengeProgressionEngine(db).list_activities(current_user.id, limit=limit)
