"""
Pytest configuration and fixtures

Every test gets its own in-memory SQLite database built from the models.
Nothing is shared between tests, so application code is free to commit.
"""
import os
import sys
from decimal import Decimal

import pytest

# Settings are read at import time; configure before any app module loads.
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-kickstart-run-0123456789")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_FORMAT", "text")

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session  # noqa: E402

from core.auth import AuthenticatedUser  # noqa: E402
from core.database import Base, build_engine, get_db  # noqa: E402
from core.security import create_access_token  # noqa: E402
from models import Athlete, Challenge  # noqa: E402


@pytest.fixture(scope="function")
def db_session():
    """
    Fresh schema per test on a private in-memory database.

    The engine uses a single static connection so the app, fixtures and
    assertions all see the same data.
    """
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    session = Session(bind=engine, autoflush=False, expire_on_commit=False)

    yield session

    session.close()
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def make_athlete(db_session):
    """Factory: make_athlete(name="Ava", age=10, school_club="...")."""
    counter = {"n": 0}

    def _make(athlete_name="Test Athlete", age=10, school_club=None, email=None):
        counter["n"] += 1
        athlete = Athlete(
            email=email or f"athlete{counter['n']}@example.com",
            athlete_name=athlete_name,
            age=age,
            school_club=school_club,
        )
        db_session.add(athlete)
        db_session.commit()
        return athlete

    return _make


@pytest.fixture
def make_challenge(db_session):
    """Factory for catalog entries."""

    def _make(
        title,
        type="distance",
        order_index=1,
        target_distance_km=None,
        target_time_s=None,
        points_reward=100,
        is_active=True,
    ):
        challenge = Challenge(
            title=title,
            description=f"{title} description",
            type=type,
            order_index=order_index,
            target_distance_km=Decimal(str(target_distance_km)) if target_distance_km is not None else None,
            target_time_s=target_time_s,
            points_reward=points_reward,
            is_active=is_active,
        )
        db_session.add(challenge)
        db_session.commit()
        return challenge

    return _make


@pytest.fixture
def distance_ladder(make_challenge):
    """1 km, 3 km and 5 km distance challenges in unlock order."""
    return [
        make_challenge("1K", order_index=1, target_distance_km=1, points_reward=100),
        make_challenge("3K", order_index=2, target_distance_km=3, points_reward=150),
        make_challenge("5K", order_index=3, target_distance_km=5, points_reward=250),
    ]


@pytest.fixture
def technique_challenges(make_challenge):
    """One drill and one form challenge."""
    return {
        "drill": make_challenge("High Knees", type="drill", order_index=10, target_time_s=90),
        "form": make_challenge("Tall Posture", type="form", order_index=11),
    }


@pytest.fixture
def athlete(make_athlete):
    return make_athlete(athlete_name="Ava Runner", age=10, school_club="International School of Prague")


@pytest.fixture
def user(athlete):
    return AuthenticatedUser.from_athlete(athlete)


@pytest.fixture
def auth_headers():
    """auth_headers(athlete) -> bearer header for that athlete."""

    def _headers(athlete) -> dict:
        token = create_access_token({"sub": str(athlete.id)})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def client(db_session):
    """TestClient whose requests use the test session."""
    from fastapi.testclient import TestClient
    from main import app

    def _override_get_db():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.pop(get_db, None)
