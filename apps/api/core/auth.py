"""
Authentication dependencies.

Provides FastAPI dependencies for:
- Getting the current authenticated athlete as an AuthenticatedUser context

Services never look at request or session state; routers resolve the caller
here and pass the resulting AuthenticatedUser into every core call.
"""
from dataclasses import dataclass
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional

from core.database import get_db
from core.exceptions import UnauthorizedError
from core.logging import bind_athlete
from core.security import decode_access_token
from models import Athlete

# Use auto_error=False to handle missing credentials manually and return 401 (not 403)
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthenticatedUser:
    """The caller's profile as the core consumes it."""
    id: int
    athlete_name: str
    age: Optional[int]
    school_club: Optional[str]

    @classmethod
    def from_athlete(cls, athlete: Athlete) -> "AuthenticatedUser":
        return cls(
            id=athlete.id,
            athlete_name=athlete.athlete_name,
            age=athlete.age,
            school_club=athlete.school_club,
        )


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> AuthenticatedUser:
    """
    Get the current authenticated user from JWT token.

    Raises UnauthorizedError if token is invalid or user not found.
    """
    # Check if credentials are missing (return 401, not 403)
    if not credentials:
        raise UnauthorizedError("Not authenticated")

    payload = decode_access_token(credentials.credentials)

    if not payload:
        raise UnauthorizedError("Invalid authentication credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid token payload")

    try:
        user_id_int = int(user_id)
    except ValueError:
        raise UnauthorizedError("Invalid user ID format")

    athlete = db.query(Athlete).filter(Athlete.id == user_id_int).first()
    if not athlete:
        raise UnauthorizedError("User not found")

    bind_athlete(athlete.id)
    return AuthenticatedUser.from_athlete(athlete)
