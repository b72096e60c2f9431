"""
Application settings and configuration.
All settings are loaded from environment variables or a .env file.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database shared with the SMS gateway and the staff UI
    database_url: str = "postgresql+asyncpg://localhost/wrangler"

    # Postgres NOTIFY channel the gateway signals on new inbound messages
    notify_channel: str = "received"

    # Fallback re-check for notifications missed while disconnected
    recheck_interval_seconds: int = 30

    # Start the intake loop together with the HTTP app
    run_dispatcher: bool = True

    # Message interpretation
    fuzzy_max_distance: int = 3
    reply_locale: str = "en"  # "en" or "pl"
    phone_country_prefix: str = "+48"  # Guardians are stored without it
    require_explicit_student: bool = False  # Otherwise all of the sender's students

    # Application Settings
    debug: bool = False

    # Timezone of the catering schedules (arrival times are local)
    timezone: str = "Europe/Warsaw"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
