"""
Challenge Progression Engine

Owns the per-athlete challenge state machine:

    locked -> available -> in_progress -> completed

- Runs auto-complete distance challenges whose target they meet.
- Form and drill challenges are started and marked done by hand.
- Completing a challenge unlocks the next one of the same type; an unlocked
  successor is evaluated against the same run, so one long run can clear a
  whole ladder.

Completion is a conditional UPDATE guarded on the open statuses. Its rowcount
decides whether points and the achievement are awarded, so concurrent
submissions award exactly once. Analytics updates run in a savepoint and never
roll back the activity or the completion.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, List, Optional, Tuple
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.auth import AuthenticatedUser
from core.events import (
    emit,
    EVENT_ACTIVITY_RECORDED,
    EVENT_CHALLENGE_COMPLETED,
    EVENT_CHALLENGE_STARTED,
)
from models import (
    Achievement,
    Activity,
    Challenge,
    UserChallenge,
    STATUS_AVAILABLE,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_LOCKED,
)
from services.challenge_catalog import ChallengeCatalog
from services.performance_analytics import PerformanceAnalyticsTracker

logger = logging.getLogger(__name__)

OPEN_STATUSES = (STATUS_AVAILABLE, STATUS_IN_PROGRESS)

# Types completed from run distance, and types completed by hand.
AUTO_COMPLETE_TYPES = ("distance",)
MANUAL_COMPLETION_TYPES = ("form", "drill")

ACHIEVEMENT_DISTANCE_MILESTONE = "distance_milestone"
ACHIEVEMENT_MANUAL_COMPLETE = "manual_complete"


@dataclass(frozen=True)
class UnlockPolicy:
    """Which challenges start available when an athlete's states are created."""
    first_of_type_available: bool = True
    always_available_types: Tuple[str, ...] = MANUAL_COMPLETION_TYPES

    def initial_status(self, challenge: Challenge, is_first_of_type: bool) -> str:
        if challenge.type in self.always_available_types:
            return STATUS_AVAILABLE
        if self.first_of_type_available and is_first_of_type:
            return STATUS_AVAILABLE
        return STATUS_LOCKED


UNLOCK_POLICY = UnlockPolicy()


class InvalidActivity(Exception):
    """Activity payload rejected before anything was written."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ChallengeActionFailure(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_COMPLETED = "already_completed"
    CHALLENGE_LOCKED = "challenge_locked"
    UNSUPPORTED_CHALLENGE_TYPE = "unsupported_challenge_type"


@dataclass
class ChallengeActionResult:
    success: bool
    message: str
    reason: Optional[ChallengeActionFailure] = None
    user_challenge: Optional[UserChallenge] = None


@dataclass
class ManualCompletionResult(ChallengeActionResult):
    points_awarded: int = 0


@dataclass
class ActivityInput:
    distance_km: Decimal
    duration_s: int
    pace_min_per_km: Decimal
    calories: Optional[int] = None
    started_at: Optional[datetime] = None
    challenge_id: Optional[int] = None


@dataclass
class CompletedChallenge:
    challenge_id: int
    title: str
    type: str
    target_distance_km: Optional[float]
    points_awarded: int


@dataclass
class ActivityOutcome:
    activity: Activity
    completed_challenges: List[CompletedChallenge] = field(default_factory=list)


def _as_decimal(value, places: str = "0.01") -> Decimal:
    return Decimal(str(value)).quantize(Decimal(places), rounding=ROUND_HALF_UP)


def _is_positive(value) -> bool:
    """True when the value is still above zero after rounding to storage precision."""
    if value is None:
        return False
    try:
        number = Decimal(str(value))
        return number.is_finite() and _as_decimal(number) > 0
    except ArithmeticError:
        return False


class ChallengeProgressionEngine:
    """State transitions for one request. Services never read request state."""

    def __init__(self, db: Session, policy: UnlockPolicy = UNLOCK_POLICY):
        self.db = db
        self.policy = policy
        self.catalog = ChallengeCatalog(db)
        self.tracker = PerformanceAnalyticsTracker(db)

    # ------------------------------------------------------------------
    # Initialisation and listings
    # ------------------------------------------------------------------

    def initialize_for_user(self, user_id: int) -> int:
        """
        Create missing state rows for every active catalog entry.

        Existing rows are never touched. Returns the number of rows created.
        """
        challenges = self.catalog.active()
        existing = {
            challenge_id
            for (challenge_id,) in self.db.query(UserChallenge.challenge_id)
            .filter(UserChallenge.athlete_id == user_id)
            .all()
        }

        seen_types = set()
        created = 0
        for challenge in challenges:
            is_first_of_type = challenge.type not in seen_types
            seen_types.add(challenge.type)
            if challenge.id in existing:
                continue

            state = UserChallenge(
                athlete_id=user_id,
                challenge_id=challenge.id,
                status=self.policy.initial_status(challenge, is_first_of_type),
                attempts=0,
                points=0,
            )
            try:
                with self.db.begin_nested():
                    self.db.add(state)
                    self.db.flush()
                created += 1
            except IntegrityError:
                logger.debug(
                    f"Challenge state {challenge.id} for athlete {user_id} created concurrently"
                )

        if created:
            logger.info(f"Initialized {created} challenges for athlete {user_id}")
        return created

    def list_user_challenges(self, user_id: int) -> List[UserChallenge]:
        return (
            self.db.query(UserChallenge)
            .join(Challenge, UserChallenge.challenge_id == Challenge.id)
            .filter(UserChallenge.athlete_id == user_id, Challenge.is_active.is_(True))
            .order_by(Challenge.order_index.asc(), Challenge.id.asc())
            .all()
        )

    def list_achievements(self, user_id: int) -> List[Achievement]:
        return (
            self.db.query(Achievement)
            .filter(Achievement.athlete_id == user_id)
            .order_by(Achievement.earned_at.desc(), Achievement.id.desc())
            .all()
        )

    def list_activities(self, user_id: int, limit: int = 50) -> List[Activity]:
        return (
            self.db.query(Activity)
            .filter(Activity.athlete_id == user_id)
            .order_by(Activity.completed_at.desc(), Activity.id.desc())
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Activity ingestion
    # ------------------------------------------------------------------

    def _validate(self, payload: ActivityInput) -> Optional[Challenge]:
        for name in ("distance_km", "duration_s", "pace_min_per_km"):
            if not _is_positive(getattr(payload, name)):
                raise InvalidActivity(f"{name} must be greater than zero", field=name)

        if payload.calories is not None and payload.calories < 0:
            raise InvalidActivity("calories cannot be negative", field="calories")

        if payload.challenge_id is None:
            return None
        challenge = self.catalog.get(payload.challenge_id)
        if challenge is None:
            raise InvalidActivity(f"Unknown challenge {payload.challenge_id}", field="challenge_id")
        return challenge

    def record_activity(self, user: AuthenticatedUser, payload: ActivityInput) -> ActivityOutcome:
        """
        Persist a run and advance every distance challenge it satisfies.

        Raises:
            InvalidActivity: distance, duration or pace not strictly positive,
                or an unknown linked challenge. Nothing is written.
        """
        linked_challenge = self._validate(payload)
        self.initialize_for_user(user.id)

        now = datetime.now(timezone.utc)
        activity = Activity(
            athlete_id=user.id,
            challenge_id=payload.challenge_id,
            distance_km=_as_decimal(payload.distance_km),
            duration_s=int(payload.duration_s),
            pace_min_per_km=_as_decimal(payload.pace_min_per_km),
            calories=payload.calories,
            started_at=payload.started_at or now - timedelta(seconds=int(payload.duration_s)),
            completed_at=now,
        )
        self.db.add(activity)
        self.db.flush()

        completed = self._auto_complete(user.id, activity)

        completed_ids = {c.challenge_id for c in completed}
        if linked_challenge is not None and linked_challenge.id not in completed_ids:
            self._record_linked_attempt(user.id, linked_challenge)

        self.db.commit()
        logger.info(
            f"Activity {activity.id} recorded for athlete {user.id}: "
            f"{activity.distance_km} km, {len(completed)} challenges completed"
        )

        emit(
            EVENT_ACTIVITY_RECORDED,
            activity_id=activity.id,
            athlete_id=user.id,
            distance_km=float(activity.distance_km),
        )
        for item in completed:
            emit(
                EVENT_CHALLENGE_COMPLETED,
                athlete_id=user.id,
                challenge_id=item.challenge_id,
                points=item.points_awarded,
                source="activity",
            )

        return ActivityOutcome(activity=activity, completed_challenges=completed)

    def _auto_complete(self, user_id: int, activity: Activity) -> List[CompletedChallenge]:
        """
        Single pass over the athlete's auto-complete states ordered by
        (type, order_index). Status is re-read from the row on every step,
        so a successor unlocked earlier in the pass is evaluated too.
        """
        rows = (
            self.db.query(UserChallenge, Challenge)
            .join(Challenge, UserChallenge.challenge_id == Challenge.id)
            .filter(
                UserChallenge.athlete_id == user_id,
                Challenge.type.in_(AUTO_COMPLETE_TYPES),
                Challenge.is_active.is_(True),
                UserChallenge.status != STATUS_COMPLETED,
            )
            .order_by(Challenge.type.asc(), Challenge.order_index.asc(), Challenge.id.asc())
            .with_for_update(of=UserChallenge)
            .populate_existing()
            .all()
        )

        distance = Decimal(activity.distance_km)
        completed: List[CompletedChallenge] = []
        for state, challenge in rows:
            if state.status not in OPEN_STATUSES:
                continue
            if challenge.target_distance_km is None:
                continue
            if distance < Decimal(challenge.target_distance_km):
                continue

            if self._complete(state, challenge, ACHIEVEMENT_DISTANCE_MILESTONE, activity):
                completed.append(
                    CompletedChallenge(
                        challenge_id=challenge.id,
                        title=challenge.title,
                        type=challenge.type,
                        target_distance_km=float(challenge.target_distance_km),
                        points_awarded=challenge.points_reward,
                    )
                )
        return completed

    def _record_linked_attempt(self, user_id: int, challenge: Challenge) -> None:
        """
        A run aimed at an open distance challenge that fell short adds one attempt.

        Status is left alone: distance challenges only move available -> completed,
        and in_progress is reached through an explicit start.
        """
        if challenge.type not in AUTO_COMPLETE_TYPES:
            return
        state = self._locked_state(user_id, challenge.id)
        if state is None or state.status not in OPEN_STATUSES:
            return

        state.attempts = (state.attempts or 0) + 1
        self.db.flush()

    # ------------------------------------------------------------------
    # Manual transitions
    # ------------------------------------------------------------------

    def _locked_state(self, user_id: int, challenge_id: int) -> Optional[UserChallenge]:
        return (
            self.db.query(UserChallenge)
            .filter(
                UserChallenge.athlete_id == user_id,
                UserChallenge.challenge_id == challenge_id,
            )
            .with_for_update()
            .populate_existing()
            .first()
        )

    def _check_manual(self, user_id: int, challenge_id: int):
        """Shared guards for start and mark-done. Returns (challenge, state, failure)."""
        challenge = self.catalog.get(challenge_id)
        if challenge is None or not challenge.is_active:
            return None, None, ChallengeActionResult(
                success=False,
                message="Challenge not found",
                reason=ChallengeActionFailure.NOT_FOUND,
            )

        state = self._locked_state(user_id, challenge_id)
        if state is None:
            self.initialize_for_user(user_id)
            state = self._locked_state(user_id, challenge_id)
        if state is None:
            return challenge, None, ChallengeActionResult(
                success=False,
                message="Challenge not found",
                reason=ChallengeActionFailure.NOT_FOUND,
            )

        if challenge.type not in MANUAL_COMPLETION_TYPES:
            return challenge, state, ChallengeActionResult(
                success=False,
                message=f"{challenge.type.capitalize()} challenges complete automatically from runs",
                reason=ChallengeActionFailure.UNSUPPORTED_CHALLENGE_TYPE,
                user_challenge=state,
            )
        if state.status == STATUS_COMPLETED:
            return challenge, state, ChallengeActionResult(
                success=False,
                message="Challenge already completed",
                reason=ChallengeActionFailure.ALREADY_COMPLETED,
                user_challenge=state,
            )
        if state.status == STATUS_LOCKED:
            return challenge, state, ChallengeActionResult(
                success=False,
                message="Challenge is locked",
                reason=ChallengeActionFailure.CHALLENGE_LOCKED,
                user_challenge=state,
            )
        return challenge, state, None

    def start_challenge(self, user: AuthenticatedUser, challenge_id: int) -> ChallengeActionResult:
        """Move a form or drill challenge from available to in_progress."""
        challenge, state, failure = self._check_manual(user.id, challenge_id)
        if failure is not None:
            return failure

        if state.status == STATUS_IN_PROGRESS:
            return ChallengeActionResult(
                success=True,
                message=f"{challenge.title} already in progress",
                user_challenge=state,
            )

        updated = (
            self.db.query(UserChallenge)
            .filter(UserChallenge.id == state.id, UserChallenge.status == STATUS_AVAILABLE)
            .update(
                {
                    UserChallenge.status: STATUS_IN_PROGRESS,
                    UserChallenge.attempts: UserChallenge.attempts + 1,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        self.db.refresh(state)

        if updated:
            emit(EVENT_CHALLENGE_STARTED, athlete_id=user.id, challenge_id=challenge.id)
        return ChallengeActionResult(
            success=True,
            message=f"{challenge.title} started",
            user_challenge=state,
        )

    def mark_manual_complete(self, user: AuthenticatedUser, challenge_id: int) -> ManualCompletionResult:
        """
        Complete a form or drill challenge without a distance check.

        Only available or in-progress challenges qualify. Failures come back
        as typed results; the first award of an already-completed challenge
        is kept.
        """
        challenge, state, failure = self._check_manual(user.id, challenge_id)
        if failure is not None:
            return ManualCompletionResult(
                success=False,
                message=failure.message,
                reason=failure.reason,
                user_challenge=failure.user_challenge,
            )

        if not self._complete(state, challenge, ACHIEVEMENT_MANUAL_COMPLETE):
            # Lost a race with a concurrent completion.
            self.db.commit()
            return ManualCompletionResult(
                success=False,
                message="Challenge already completed",
                reason=ChallengeActionFailure.ALREADY_COMPLETED,
                user_challenge=state,
            )

        self.db.commit()
        logger.info(f"Athlete {user.id} manually completed challenge {challenge.id}")
        emit(
            EVENT_CHALLENGE_COMPLETED,
            athlete_id=user.id,
            challenge_id=challenge.id,
            points=challenge.points_reward,
            source="manual",
        )
        return ManualCompletionResult(
            success=True,
            message=f"{challenge.title} marked as done!",
            user_challenge=state,
            points_awarded=challenge.points_reward,
        )

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _complete(
        self,
        state: UserChallenge,
        challenge: Challenge,
        achievement_type: str,
        activity: Optional[Activity] = None,
    ) -> bool:
        """
        Transition one open state to completed. Returns False when another
        writer completed it first; nothing is awarded in that case.
        """
        now = datetime.now(timezone.utc)
        attempts = state.attempts or 0
        if activity is not None or state.status == STATUS_AVAILABLE:
            attempts += 1

        values: Dict = {
            UserChallenge.status: STATUS_COMPLETED,
            UserChallenge.completed_at: now,
            UserChallenge.points: challenge.points_reward,
            UserChallenge.year_earned: now.year,
            UserChallenge.attempts: attempts,
        }
        if activity is not None:
            if state.best_time_s is None or activity.duration_s < state.best_time_s:
                values[UserChallenge.best_time_s] = activity.duration_s
            if state.best_pace_min_per_km is None or activity.pace_min_per_km < state.best_pace_min_per_km:
                values[UserChallenge.best_pace_min_per_km] = activity.pace_min_per_km

        updated = (
            self.db.query(UserChallenge)
            .filter(UserChallenge.id == state.id, UserChallenge.status.in_(OPEN_STATUSES))
            .update(values, synchronize_session=False)
        )
        self.db.refresh(state)
        if not updated:
            return False

        if achievement_type == ACHIEVEMENT_DISTANCE_MILESTONE:
            title = f"{challenge.title} Complete"
            description = (
                f"Completed {float(challenge.target_distance_km):g}km distance challenge - "
                f"{challenge.points_reward} points awarded"
            )
        else:
            title = f"{challenge.title} Done!"
            description = (
                f"Manually marked {challenge.title} as complete - "
                f"{challenge.points_reward} points awarded"
            )
        self.db.add(
            Achievement(
                athlete_id=state.athlete_id,
                challenge_id=challenge.id,
                type=achievement_type,
                title=title,
                description=description,
                earned_at=now,
            )
        )

        self._unlock_successor(state.athlete_id, challenge)
        self.db.flush()
        self._record_outcome(state.athlete_id, completed=True, attempts=state.attempts)
        return True

    def _unlock_successor(self, user_id: int, challenge: Challenge) -> None:
        successor = self.catalog.next_of_type(challenge)
        if successor is None:
            return

        state = (
            self.db.query(UserChallenge)
            .filter(
                UserChallenge.athlete_id == user_id,
                UserChallenge.challenge_id == successor.id,
            )
            .first()
        )
        if state is None:
            return

        updated = (
            self.db.query(UserChallenge)
            .filter(UserChallenge.id == state.id, UserChallenge.status == STATUS_LOCKED)
            .update({UserChallenge.status: STATUS_AVAILABLE}, synchronize_session=False)
        )
        self.db.refresh(state)
        if updated:
            logger.debug(f"Unlocked challenge {successor.id} for athlete {user_id}")

    def _record_outcome(self, user_id: int, completed: bool, attempts: int) -> None:
        try:
            with self.db.begin_nested():
                self.tracker.update(user_id, completed=completed, attempts=attempts)
        except Exception as e:
            logger.error(f"Analytics update failed for athlete {user_id}: {e}", exc_info=True)
