from sqlalchemy import Column, Integer, Boolean, CheckConstraint, DateTime, ForeignKey, Numeric, Text, String, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from core.database import Base
from datetime import datetime, timezone


# Challenge types understood by the progression engine and the difficulty model.
CHALLENGE_TYPES = ("distance", "drill", "form", "endurance")

# UserChallenge.status values, in state-machine order.
STATUS_LOCKED = "locked"
STATUS_AVAILABLE = "available"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
CHALLENGE_STATUSES = (STATUS_LOCKED, STATUS_AVAILABLE, STATUS_IN_PROGRESS, STATUS_COMPLETED)


def _current_year() -> int:
    return datetime.now(timezone.utc).year


class Athlete(Base):
    """
    Athlete profile as consumed by the challenge engine.

    Accounts, consent and billing are owned by the identity service; only the
    fields the engine reads live here.
    """
    __tablename__ = "athlete"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    email = Column(Text, unique=True, nullable=True)
    athlete_name = Column(Text, nullable=False)
    age = Column(Integer, nullable=True)  # 6-18 for the youth programme; others still rank globally
    school_club = Column(Text, nullable=True, index=True)
    year_joined = Column(Integer, default=_current_year, nullable=False)

    # --- RELATIONSHIPS ---
    # lazy="dynamic" prevents auto-loading (returns query, no perf impact).
    activities = relationship("Activity", back_populates="athlete", lazy="dynamic")
    challenges = relationship("UserChallenge", back_populates="athlete", lazy="dynamic")
    analytics = relationship("AthletePerformanceAnalytics", back_populates="athlete", uselist=False)


class Challenge(Base):
    """
    Catalog entry. Administered outside the engine and never mutated by it.

    order_index sequences challenges within a type: completing one unlocks the
    next higher order_index of the same type.
    """
    __tablename__ = "challenge"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    type = Column(String(16), nullable=False)  # 'distance', 'drill', 'form', 'endurance'
    is_active = Column(Boolean, default=True, nullable=False)
    order_index = Column(Integer, nullable=False)
    points_reward = Column(Integer, default=100, nullable=False)
    target_distance_km = Column(Numeric(8, 2), nullable=True)
    target_time_s = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "type IN ('distance', 'drill', 'form', 'endurance')",
            name="ck_challenge_type",
        ),
        Index("ix_challenge_type_order", "type", "order_index"),
    )


class UserChallenge(Base):
    """
    Per-athlete state for one catalog challenge.

    Exactly one row per (athlete, challenge). Status only moves forward
    (locked -> available -> in_progress -> completed); completed is terminal.
    """
    __tablename__ = "user_challenge"

    id = Column(Integer, primary_key=True, autoincrement=True)
    athlete_id = Column(Integer, ForeignKey("athlete.id"), nullable=False, index=True)
    challenge_id = Column(Integer, ForeignKey("challenge.id"), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=STATUS_LOCKED)
    attempts = Column(Integer, nullable=False, default=0)
    best_time_s = Column(Integer, nullable=True)
    best_pace_min_per_km = Column(Numeric(6, 2), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    points = Column(Integer, nullable=False, default=0)
    year_earned = Column(Integer, nullable=False, default=_current_year)

    athlete = relationship("Athlete", back_populates="challenges")
    challenge = relationship("Challenge")

    __table_args__ = (
        UniqueConstraint("athlete_id", "challenge_id", name="uq_user_challenge_athlete_challenge"),
        CheckConstraint(
            "status IN ('locked', 'available', 'in_progress', 'completed')",
            name="ck_user_challenge_status",
        ),
    )


class Activity(Base):
    """
    Completed run. Append-only; distance arrives pre-computed from GPS.
    """
    __tablename__ = "activity"

    id = Column(Integer, primary_key=True, autoincrement=True)
    athlete_id = Column(Integer, ForeignKey("athlete.id"), nullable=False, index=True)
    challenge_id = Column(Integer, ForeignKey("challenge.id"), nullable=True, index=True)
    distance_km = Column(Numeric(8, 2), nullable=False)
    duration_s = Column(Integer, nullable=False)
    pace_min_per_km = Column(Numeric(6, 2), nullable=False)
    calories = Column(Integer, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    athlete = relationship("Athlete", back_populates="activities")

    __table_args__ = (
        CheckConstraint("distance_km > 0", name="ck_activity_distance_positive"),
        CheckConstraint("duration_s > 0", name="ck_activity_duration_positive"),
    )


class Achievement(Base):
    """Earned on every challenge completion (automatic or manual)."""
    __tablename__ = "achievement"

    id = Column(Integer, primary_key=True, autoincrement=True)
    athlete_id = Column(Integer, ForeignKey("athlete.id"), nullable=False, index=True)
    challenge_id = Column(Integer, ForeignKey("challenge.id"), nullable=True)
    type = Column(String(32), nullable=False)  # 'distance_milestone', 'manual_complete'
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    earned_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class AthletePerformanceAnalytics(Base):
    """
    Rolling per-athlete statistics feeding the adaptive difficulty model.

    New rows start optimistic (80% completion) so a first difficulty
    calculation does not penalise a brand-new athlete.
    """
    __tablename__ = "athlete_performance_analytics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    athlete_id = Column(Integer, ForeignKey("athlete.id"), nullable=False, unique=True, index=True)
    avg_completion_rate = Column(Numeric(5, 2), nullable=False, default=80)  # 0-100
    avg_attempt_count = Column(Numeric(6, 2), nullable=False, default=1)
    recent_trend = Column(String(16), nullable=False, default="stable")  # improving, stable, declining
    adaptive_level = Column(Numeric(4, 2), nullable=False, default=1)  # last computed multiplier
    total_challenges_completed = Column(Integer, nullable=False, default=0)
    total_challenges_attempted = Column(Integer, nullable=False, default=0)
    last_analysis_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    athlete = relationship("Athlete", back_populates="analytics")
