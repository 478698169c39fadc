"""
Analytics API Router

Exposes the caller's rolling performance statistics, the same numbers the
adaptive difficulty model reads.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from core.database import get_db
from core.auth import get_current_user, AuthenticatedUser
from schemas import PerformanceAnalyticsResponse
from services.performance_analytics import PerformanceAnalyticsTracker

router = APIRouter(prefix="/v1/analytics", tags=["analytics"])


@router.get("/me", response_model=PerformanceAnalyticsResponse)
def get_my_analytics(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Current analytics; a default row is created on first access."""
    return PerformanceAnalyticsTracker(db).get_or_create(current_user.id)
