"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins when set (any SQLAlchemy URL, e.g. sqlite:// for local runs).
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="kickstart_run")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # JWT Authentication - REQUIRED for token verification
    # Must be set via environment variable, never use default in production
    SECRET_KEY: str = Field(
        default=...,  # Required - no default
        description="JWT signing key. Must be cryptographically secure (32+ chars). "
                    "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8000)
    API_RELOAD: bool = Field(default=False)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Rankings
    GLOBAL_RANKINGS_LIMIT: int = Field(default=100, ge=1, le=1000)
    AGE_GROUP_RANKINGS_LIMIT: int = Field(default=50, ge=1, le=1000)
    # Below this many athletes a bracket reports how many more it needs.
    AGE_GROUP_MIN_PARTICIPANTS: int = Field(default=5, ge=0)

    # Registered schools and clubs, comma-separated.
    # Every entry appears in school rankings even with zero athletes.
    SCHOOL_CLUBS: str = Field(
        default=(
            "American International School of Bucharest,"
            "American International School of Budapest,"
            "American International School of Zagreb,"
            "American International School Vienna,"
            "American School of Warsaw,"
            "American International School of Vilnius,"
            "Anglo-American School of Sofia,"
            "Baku International School,"
            "Bishkek International School,"
            "International School of Prague,"
            "International School of Helsinki,"
            "International School of Krakow,"
            "International School of Latvia,"
            "International School of Estonia,"
            "International School of Belgrade,"
            "Istanbul International Community School,"
            "NOVA International School Skopje,"
            "Pechersk School International,"
            "Tashkent International School,"
            "The International School of Azerbaijan,"
            "Vienna International School"
        )
    )

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)
    EXPOSE_API_DOCS: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    # e.g., "https://kickstartrun.app,https://www.kickstartrun.app"
    CORS_ORIGINS: Optional[str] = Field(default=None)

    @property
    def database_url(self) -> str:
        """Resolved SQLAlchemy URL."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:"
            f"{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:"
            f"{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )

    @property
    def school_clubs(self) -> List[str]:
        return sorted({s.strip() for s in self.SCHOOL_CLUBS.split(",") if s.strip()})


# Global settings instance
settings = Settings()
