import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get database URL, using absolute path for SQLite to avoid path resolution issues.

    SQLite is fine for a single household running the planner locally. Set
    DATABASE_URL to a PostgreSQL connection string for shared deployments.
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        logger.info(f"Using DATABASE_URL from environment: {db_url}")
        return db_url

    db_path = Path(__file__).parent.parent.parent / "schoolday.db"
    abs_path = db_path.resolve()
    db_url = f"sqlite:///{abs_path}"
    logger.warning(f"Using default SQLite database: {db_url}. Set DATABASE_URL to use PostgreSQL.")
    return db_url


class Settings(BaseSettings):
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="DATABASE_URL",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    ical_token: str = Field(
        default="",
        validation_alias="ICAL_TOKEN",
        description="Shared secret required by the calendar feed. Empty disables the feed.",
    )
    calendar_name: str = Field(
        default="Schoolday",
        validation_alias="CALENDAR_NAME",
        description="Display name published as X-WR-CALNAME",
    )
    ical_uid_domain: str = Field(
        default="schoolday.local",
        validation_alias="ICAL_UID_DOMAIN",
        description="Right-hand side of exported UIDs (uid@domain)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(sorted(valid_levels))}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    @field_validator("ical_uid_domain")
    @classmethod
    def validate_uid_domain(cls, value: str) -> str:
        """Strip stray '@' so UIDs stay in uid@domain form."""
        cleaned = value.strip().lstrip("@")
        if not cleaned:
            logger.warning("ICAL_UID_DOMAIN is empty. Falling back to schoolday.local")
            return "schoolday.local"
        return cleaned


settings = Settings()
