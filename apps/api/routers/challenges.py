"""
Challenges API Router

Per-athlete challenge states, manual transitions for form and drill
challenges, earned achievements and personalised difficulty.
"""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from core.database import get_db
from core.auth import get_current_user, AuthenticatedUser
from core.exceptions import BadRequestError, NotFoundError
from schemas import (
    AchievementResponse,
    ChallengeActionResponse,
    DifficultyResponse,
    InitializeChallengesResponse,
    UserChallengeResponse,
)
from services.adaptive_difficulty import AdaptiveDifficultyService, FALLBACK_REASONING
from services.challenge_progression import (
    ChallengeActionFailure,
    ChallengeActionResult,
    ChallengeProgressionEngine,
)
from services.performance_analytics import PerformanceAnalyticsTracker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/challenges", tags=["challenges"])

_FAILURE_CODES = {
    ChallengeActionFailure.ALREADY_COMPLETED: "ALREADY_COMPLETED",
    ChallengeActionFailure.CHALLENGE_LOCKED: "CHALLENGE_LOCKED",
    ChallengeActionFailure.UNSUPPORTED_CHALLENGE_TYPE: "UNSUPPORTED_CHALLENGE_TYPE",
}


def _raise_for_failure(result: ChallengeActionResult, challenge_id: int) -> None:
    if result.success:
        return
    if result.reason == ChallengeActionFailure.NOT_FOUND:
        raise NotFoundError("Challenge", str(challenge_id))
    raise BadRequestError(result.message, error_code=_FAILURE_CODES[result.reason])


@router.get("", response_model=List[UserChallengeResponse])
def list_challenges(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """The caller's challenges in catalog order. States are created on first access."""
    engine = ChallengeProgressionEngine(db)
    engine.initialize_for_user(current_user.id)
    return engine.list_user_challenges(current_user.id)


@router.post("/initialize", response_model=InitializeChallengesResponse)
def initialize_challenges(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    engine = ChallengeProgressionEngine(db)
    created = engine.initialize_for_user(current_user.id)
    db.commit()
    return InitializeChallengesResponse(
        created=created,
        challenges=[
            UserChallengeResponse.model_validate(state)
            for state in engine.list_user_challenges(current_user.id)
        ],
    )


@router.get("/achievements", response_model=List[AchievementResponse])
def list_achievements(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return ChallengeProgressionEngine(db).list_achievements(current_user.id)


@router.post("/{challenge_id}/start", response_model=ChallengeActionResponse)
def start_challenge(
    challenge_id: int,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Start a form or drill challenge (available -> in_progress)."""
    result = ChallengeProgressionEngine(db).start_challenge(current_user, challenge_id)
    _raise_for_failure(result, challenge_id)
    return ChallengeActionResponse(
        success=True,
        message=result.message,
        user_challenge=UserChallengeResponse.model_validate(result.user_challenge),
    )


@router.post("/{challenge_id}/mark-done", response_model=ChallengeActionResponse)
def mark_challenge_done(
    challenge_id: int,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Manually complete a form or drill challenge.

    Returns 404 for unknown challenges and 400 when the challenge is already
    completed, still locked, or completes automatically from runs.
    """
    result = ChallengeProgressionEngine(db).mark_manual_complete(current_user, challenge_id)
    _raise_for_failure(result, challenge_id)
    return ChallengeActionResponse(
        success=True,
        message=result.message,
        points_awarded=result.points_awarded,
        user_challenge=UserChallengeResponse.model_validate(result.user_challenge),
    )


@router.get("/{challenge_id}/adaptive-difficulty", response_model=DifficultyResponse)
def get_adaptive_difficulty(
    challenge_id: int,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Personalised targets for one challenge.

    Unknown challenges degrade to the neutral multiplier instead of failing.
    The multiplier is stored as the caller's adaptive level.
    """
    difficulty = AdaptiveDifficultyService(db).calculate(current_user.id, challenge_id)

    if difficulty.reasoning != FALLBACK_REASONING:
        try:
            with db.begin_nested():
                PerformanceAnalyticsTracker(db).record_adaptive_level(current_user.id, difficulty.multiplier)
        except Exception as e:
            logger.error(f"Failed to record adaptive level for athlete {current_user.id}: {e}", exc_info=True)

    return DifficultyResponse(challenge_id=challenge_id, **difficulty.to_dict())
