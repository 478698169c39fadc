from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional, List, Dict


class ActivityCreate(BaseModel):
    """
    A finished GPS run. Distance arrives pre-computed by the client.

    Positivity is checked by the progression engine so that bad values come
    back as InvalidActivity (400) rather than schema errors.
    """
    distance_km: float
    duration_s: int
    pace_min_per_km: float
    calories: Optional[int] = None
    started_at: Optional[datetime] = None
    challenge_id: Optional[int] = None


class ActivityResponse(BaseModel):
    id: int
    athlete_id: int
    challenge_id: Optional[int] = None
    distance_km: float
    duration_s: int
    pace_min_per_km: float
    calories: Optional[int] = None
    started_at: datetime
    completed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CompletedChallengeResponse(BaseModel):
    challenge_id: int
    title: str
    type: str
    target_distance_km: Optional[float] = None
    points_awarded: int

    model_config = ConfigDict(from_attributes=True)


class ActivityRecordedResponse(BaseModel):
    activity: ActivityResponse
    challenges_completed: List[CompletedChallengeResponse]


class ChallengeResponse(BaseModel):
    id: int
    title: str
    description: str
    type: str
    target_distance_km: Optional[float] = None
    target_time_s: Optional[int] = None
    points_reward: int
    order_index: int

    model_config = ConfigDict(from_attributes=True)


class UserChallengeResponse(BaseModel):
    """One athlete's state for one catalog challenge."""
    id: int
    challenge_id: int
    status: str  # locked, available, in_progress, completed
    attempts: int
    best_time_s: Optional[int] = None
    best_pace_min_per_km: Optional[float] = None
    completed_at: Optional[datetime] = None
    points: int
    year_earned: int
    challenge: ChallengeResponse

    model_config = ConfigDict(from_attributes=True)


class InitializeChallengesResponse(BaseModel):
    created: int
    challenges: List[UserChallengeResponse]


class ChallengeActionResponse(BaseModel):
    success: bool
    message: str
    points_awarded: int = 0
    user_challenge: Optional[UserChallengeResponse] = None


class AchievementResponse(BaseModel):
    id: int
    challenge_id: Optional[int] = None
    type: str
    title: str
    description: Optional[str] = None
    earned_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DifficultyResponse(BaseModel):
    challenge_id: int
    multiplier: float
    adapted_distance_km: Optional[float] = None
    adapted_time_s: Optional[int] = None
    reasoning: str


class PerformanceAnalyticsResponse(BaseModel):
    athlete_id: int
    avg_completion_rate: float
    avg_attempt_count: float
    recent_trend: str
    adaptive_level: float
    total_challenges_completed: int
    total_challenges_attempted: int
    last_analysis_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class IndividualRankResponse(BaseModel):
    rank: int
    total_points: float
    school_club: str

    model_config = ConfigDict(from_attributes=True)


class AthleteRankingResponse(BaseModel):
    rank: int
    athlete_id: int
    athlete_name: str
    school_club: Optional[str] = None
    age: Optional[int] = None
    total_points: float
    activity_count: int

    model_config = ConfigDict(from_attributes=True)


class SchoolRankingResponse(BaseModel):
    rank: int
    school_club: str
    total_points: float
    athlete_count: int
    avg_points: float

    model_config = ConfigDict(from_attributes=True)


class AgeGroupRankingsResponse(BaseModel):
    bracket: str
    label: str
    rankings: List[AthleteRankingResponse]
    total_participants: int
    is_active: bool
    needs_more_participants: int

    model_config = ConfigDict(from_attributes=True)


class AllAgeGroupRankingsResponse(BaseModel):
    age_groups: Dict[str, AgeGroupRankingsResponse]
