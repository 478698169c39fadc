"""
Tests for the challenge progression engine.

Covers state initialisation, the distance unlock cascade, manual start and
completion, single awarding and analytics isolation.
"""
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest

from core import events
from models import Achievement, Activity, AthletePerformanceAnalytics, UserChallenge
from services.challenge_progression import (
    ActivityInput,
    ChallengeActionFailure,
    ChallengeProgressionEngine,
    InvalidActivity,
    UNLOCK_POLICY,
)


def _run(distance_km, duration_s=1800, pace=6.0, challenge_id=None):
    return ActivityInput(
        distance_km=Decimal(str(distance_km)),
        duration_s=duration_s,
        pace_min_per_km=Decimal(str(pace)),
        challenge_id=challenge_id,
    )


def _state(db_session, athlete_id, challenge_id) -> UserChallenge:
    return (
        db_session.query(UserChallenge)
        .filter_by(athlete_id=athlete_id, challenge_id=challenge_id)
        .populate_existing()
        .one()
    )


@pytest.fixture
def engine(db_session):
    return ChallengeProgressionEngine(db_session)


@pytest.fixture
def captured_events():
    received = []

    def on_completed(**kwargs):
        received.append(("challenge.completed", kwargs))

    def on_recorded(**kwargs):
        received.append(("activity.recorded", kwargs))

    events.subscribe(events.EVENT_CHALLENGE_COMPLETED, on_completed)
    events.subscribe(events.EVENT_ACTIVITY_RECORDED, on_recorded)
    yield received
    events.unsubscribe(events.EVENT_CHALLENGE_COMPLETED, on_completed)
    events.unsubscribe(events.EVENT_ACTIVITY_RECORDED, on_recorded)


class TestInitialize:
    def test_seeding_policy(self, db_session, engine, athlete, distance_ladder, technique_challenges, make_challenge):
        endurance = make_challenge("20 min", type="endurance", order_index=20, target_time_s=1200)
        endurance_2 = make_challenge("30 min", type="endurance", order_index=21, target_time_s=1800)

        created = engine.initialize_for_user(athlete.id)
        db_session.commit()

        assert created == 7
        statuses = {s.challenge_id: s.status for s in engine.list_user_challenges(athlete.id)}
        assert statuses[distance_ladder[0].id] == "available"
        assert statuses[distance_ladder[1].id] == "locked"
        assert statuses[distance_ladder[2].id] == "locked"
        assert statuses[technique_challenges["drill"].id] == "available"
        assert statuses[technique_challenges["form"].id] == "available"
        assert statuses[endurance.id] == "available"
        assert statuses[endurance_2.id] == "locked"

    def test_is_idempotent_and_keeps_existing_rows(self, db_session, engine, athlete, distance_ladder):
        engine.initialize_for_user(athlete.id)
        db_session.commit()
        first = _state(db_session, athlete.id, distance_ladder[0].id)
        first.status = "in_progress"
        db_session.commit()

        assert engine.initialize_for_user(athlete.id) == 0
        assert _state(db_session, athlete.id, distance_ladder[0].id).status == "in_progress"
        assert db_session.query(UserChallenge).count() == 3

    def test_inactive_challenges_are_skipped(self, db_session, engine, athlete, make_challenge):
        make_challenge("Retired", order_index=1, target_distance_km=2, is_active=False)
        live = make_challenge("Live", order_index=2, target_distance_km=2)

        engine.initialize_for_user(athlete.id)

        states = engine.list_user_challenges(athlete.id)
        assert [s.challenge_id for s in states] == [live.id]
        # first *active* challenge of the type starts available
        assert states[0].status == "available"

    def test_policy_is_data(self):
        assert UNLOCK_POLICY.first_of_type_available is True
        assert set(UNLOCK_POLICY.always_available_types) == {"form", "drill"}


class TestRecordActivity:
    def test_long_run_cascades_through_ladder(self, db_session, engine, user, distance_ladder):
        outcome = engine.record_activity(user, _run(5.0))

        assert [c.title for c in outcome.completed_challenges] == ["1K", "3K", "5K"]
        for challenge in distance_ladder:
            state = _state(db_session, user.id, challenge.id)
            assert state.status == "completed"
            assert state.points == challenge.points_reward
            assert state.completed_at is not None
        assert db_session.query(Achievement).filter_by(type="distance_milestone").count() == 3

    def test_partial_run_unlocks_but_does_not_complete_next(self, db_session, engine, user, distance_ladder):
        outcome = engine.record_activity(user, _run(3.5))

        assert [c.challenge_id for c in outcome.completed_challenges] == [
            distance_ladder[0].id, distance_ladder[1].id,
        ]
        assert _state(db_session, user.id, distance_ladder[2].id).status == "available"

    def test_short_run_completes_nothing(self, db_session, engine, user, distance_ladder):
        outcome = engine.record_activity(user, _run(0.5))

        assert outcome.completed_challenges == []
        assert outcome.activity.id is not None
        assert _state(db_session, user.id, distance_ladder[1].id).status == "locked"

    def test_exact_target_completes(self, db_session, engine, user, distance_ladder):
        outcome = engine.record_activity(user, _run(1.0))

        assert [c.challenge_id for c in outcome.completed_challenges] == [distance_ladder[0].id]

    def test_points_awarded_once(self, db_session, engine, user, distance_ladder):
        engine.record_activity(user, _run(5.0))
        second = engine.record_activity(user, _run(5.0))

        assert second.completed_challenges == []
        total_points = sum(
            s.points for s in db_session.query(UserChallenge).filter_by(athlete_id=user.id)
        )
        assert total_points == 100 + 150 + 250
        assert db_session.query(Achievement).count() == 3
        assert db_session.query(Activity).count() == 2

    def test_completed_state_never_regresses(self, db_session, engine, user, distance_ladder):
        engine.record_activity(user, _run(1.0))
        completed_at = _state(db_session, user.id, distance_ladder[0].id).completed_at

        engine.record_activity(user, _run(0.2))

        state = _state(db_session, user.id, distance_ladder[0].id)
        assert state.status == "completed"
        assert state.completed_at == completed_at

    def test_best_time_and_pace_recorded(self, db_session, engine, user, distance_ladder):
        engine.record_activity(user, _run(1.2, duration_s=420, pace=5.83))

        state = _state(db_session, user.id, distance_ladder[0].id)
        assert state.best_time_s == 420
        assert Decimal(state.best_pace_min_per_km) == Decimal("5.83")
        assert state.attempts == 1

    @pytest.mark.parametrize("payload,field", [
        (dict(distance_km=0, duration_s=600, pace_min_per_km=5), "distance_km"),
        (dict(distance_km=-1, duration_s=600, pace_min_per_km=5), "distance_km"),
        (dict(distance_km=2, duration_s=0, pace_min_per_km=5), "duration_s"),
        (dict(distance_km=2, duration_s=600, pace_min_per_km=0), "pace_min_per_km"),
    ])
    def test_invalid_activity_writes_nothing(self, db_session, engine, user, distance_ladder, payload, field):
        with pytest.raises(InvalidActivity) as exc_info:
            engine.record_activity(user, ActivityInput(**payload))

        assert exc_info.value.field == field
        assert db_session.query(Activity).count() == 0
        assert db_session.query(UserChallenge).count() == 0

    def test_unknown_linked_challenge_rejected(self, db_session, engine, user, distance_ladder):
        with pytest.raises(InvalidActivity):
            engine.record_activity(user, _run(2.0, challenge_id=9999))
        assert db_session.query(Activity).count() == 0

    @pytest.mark.parametrize("payload,field", [
        (dict(distance_km=Decimal("0.004"), duration_s=10, pace_min_per_km=5), "distance_km"),
        (dict(distance_km=2, duration_s=600, pace_min_per_km=Decimal("0.004")), "pace_min_per_km"),
        (dict(distance_km=float("inf"), duration_s=600, pace_min_per_km=5), "distance_km"),
        (dict(distance_km=2, duration_s=600, pace_min_per_km=float("nan")), "pace_min_per_km"),
    ])
    def test_values_that_do_not_survive_storage_rounding_are_rejected(
        self, db_session, engine, user, distance_ladder, payload, field
    ):
        with pytest.raises(InvalidActivity) as exc_info:
            engine.record_activity(user, ActivityInput(**payload))

        assert exc_info.value.field == field
        assert db_session.query(Activity).count() == 0

    def test_smallest_storable_distance_is_accepted(self, db_session, engine, user, distance_ladder):
        outcome = engine.record_activity(user, _run(0.005, duration_s=5, pace=16.67))

        assert Decimal(outcome.activity.distance_km) == Decimal("0.01")
        assert outcome.completed_challenges == []

    def test_linked_short_run_adds_attempt_without_changing_status(
        self, db_session, engine, user, distance_ladder
    ):
        engine.record_activity(user, _run(1.0))
        second = distance_ladder[1]

        engine.record_activity(user, _run(2.0, challenge_id=second.id))

        state = _state(db_session, user.id, second.id)
        assert state.status == "available"
        assert state.attempts == 1
        analytics = db_session.query(AthletePerformanceAnalytics).filter_by(athlete_id=user.id).one()
        # only the 1 km completion is reported
        assert Decimal(analytics.avg_completion_rate) == Decimal("82")
        assert analytics.total_challenges_attempted == 1

    def test_linked_run_never_starts_a_technique_challenge(self, db_session, engine, user, technique_challenges):
        drill = technique_challenges["drill"]

        engine.record_activity(user, _run(1.0, challenge_id=drill.id))

        state = _state(db_session, user.id, drill.id)
        assert state.status == "available"
        assert state.attempts == 0

    def test_completion_updates_analytics(self, db_session, engine, user, distance_ladder):
        engine.record_activity(user, _run(3.0))

        analytics = db_session.query(AthletePerformanceAnalytics).filter_by(athlete_id=user.id).one()
        assert Decimal(analytics.avg_completion_rate) == Decimal("84")
        assert analytics.total_challenges_completed == 2

    def test_analytics_failure_does_not_block_completion(self, db_session, engine, user, distance_ladder):
        with patch.object(engine.tracker, "update", side_effect=RuntimeError("analytics down")):
            outcome = engine.record_activity(user, _run(1.0))

        assert len(outcome.completed_challenges) == 1
        assert _state(db_session, user.id, distance_ladder[0].id).status == "completed"
        assert db_session.query(Activity).count() == 1
        assert db_session.query(AthletePerformanceAnalytics).count() == 0

    def test_events_emitted(self, engine, user, distance_ladder, captured_events):
        outcome = engine.record_activity(user, _run(1.0))

        names = [name for name, _ in captured_events]
        assert names == ["activity.recorded", "challenge.completed"]
        assert captured_events[0][1]["activity_id"] == outcome.activity.id
        assert captured_events[1][1]["challenge_id"] == distance_ladder[0].id
        assert captured_events[1][1]["source"] == "activity"

    def test_failing_event_handler_does_not_break_recording(self, db_session, engine, user, distance_ladder):
        def broken(**kwargs):
            raise ValueError("boom")

        events.subscribe(events.EVENT_ACTIVITY_RECORDED, broken)
        try:
            outcome = engine.record_activity(user, _run(1.0))
        finally:
            events.unsubscribe(events.EVENT_ACTIVITY_RECORDED, broken)

        assert outcome.activity.id is not None


class TestManualTransitions:
    def test_mark_done_drill(self, db_session, engine, user, technique_challenges):
        drill = technique_challenges["drill"]

        result = engine.mark_manual_complete(user, drill.id)

        assert result.success is True
        assert result.points_awarded == 100
        state = _state(db_session, user.id, drill.id)
        assert state.status == "completed"
        assert state.attempts == 1
        achievement = db_session.query(Achievement).one()
        assert achievement.type == "manual_complete"
        assert achievement.title == "High Knees Done!"

    def test_mark_done_twice_keeps_first_award(self, db_session, engine, user, technique_challenges):
        form = technique_challenges["form"]
        engine.mark_manual_complete(user, form.id)
        completed_at = _state(db_session, user.id, form.id).completed_at

        result = engine.mark_manual_complete(user, form.id)

        assert result.success is False
        assert result.reason == ChallengeActionFailure.ALREADY_COMPLETED
        assert _state(db_session, user.id, form.id).completed_at == completed_at
        assert db_session.query(Achievement).count() == 1

    def test_mark_done_locked(self, db_session, engine, user, make_challenge):
        make_challenge("Drill A", type="drill", order_index=1)
        drill_b = make_challenge("Drill B", type="drill", order_index=2)
        engine.initialize_for_user(user.id)
        state = _state(db_session, user.id, drill_b.id)
        state.status = "locked"
        db_session.commit()

        result = engine.mark_manual_complete(user, drill_b.id)

        assert result.reason == ChallengeActionFailure.CHALLENGE_LOCKED
        assert _state(db_session, user.id, drill_b.id).status == "locked"

    def test_mark_done_distance_is_unsupported(self, engine, user, distance_ladder):
        result = engine.mark_manual_complete(user, distance_ladder[0].id)

        assert result.success is False
        assert result.reason == ChallengeActionFailure.UNSUPPORTED_CHALLENGE_TYPE

    def test_mark_done_unknown_challenge(self, engine, user):
        result = engine.mark_manual_complete(user, 12345)

        assert result.reason == ChallengeActionFailure.NOT_FOUND

    def test_start_then_complete(self, db_session, engine, user, technique_challenges):
        drill = technique_challenges["drill"]

        started = engine.start_challenge(user, drill.id)
        again = engine.start_challenge(user, drill.id)
        completed = engine.mark_manual_complete(user, drill.id)

        assert started.success and again.success and completed.success
        state = _state(db_session, user.id, drill.id)
        assert state.status == "completed"
        # starting twice counts one attempt; completing from in_progress adds none
        assert state.attempts == 1

    def test_start_completed_challenge_fails(self, engine, user, technique_challenges):
        form = technique_challenges["form"]
        engine.mark_manual_complete(user, form.id)

        result = engine.start_challenge(user, form.id)

        assert result.reason == ChallengeActionFailure.ALREADY_COMPLETED

    def test_manual_completion_unlocks_successor(self, db_session, engine, user, make_challenge):
        first = make_challenge("Drill A", type="drill", order_index=1)
        second = make_challenge("Drill B", type="drill", order_index=2)
        engine.initialize_for_user(user.id)
        state = _state(db_session, user.id, second.id)
        state.status = "locked"
        db_session.commit()

        engine.mark_manual_complete(user, first.id)

        assert _state(db_session, user.id, second.id).status == "available"


class TestSingleAward:
    def test_conditional_update_loses_race(self, db_session, engine, user, technique_challenges):
        form = technique_challenges["form"]
        engine.initialize_for_user(user.id)
        db_session.commit()
        stale = _state(db_session, user.id, form.id)

        # A concurrent writer completes the row behind the engine's back.
        db_session.query(UserChallenge).filter(UserChallenge.id == stale.id).update(
            {
                UserChallenge.status: "completed",
                UserChallenge.points: 100,
                UserChallenge.completed_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
        db_session.commit()

        awarded = engine._complete(stale, form, "manual_complete")

        assert awarded is False
        assert db_session.query(Achievement).count() == 0
        assert db_session.query(AthletePerformanceAnalytics).count() == 0
        assert _state(db_session, user.id, form.id).points == 100
