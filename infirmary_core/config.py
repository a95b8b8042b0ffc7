from typing import Literal

from pydantic import PostgresDsn, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application Configuration.
    Reads from environment variables and .env file.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore")

    # Functionality
    ENVIRONMENT: Literal["development", "production", "testing"] = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    SECRET_KEY: str  # Required

    # Database
    DATABASE_URL: PostgresDsn  # Required

    # Message Bus (NATS)
    NATS_URL: str  # Required
    NATS_CLIENT_ID: str = "infirmary-core-1"
    NOTIFICATION_SUBJECT_PREFIX: str = "infirmary.notifications"
    OBSERVABILITY_SUBJECT: str = "infirmary.observability.delivery"

    # Redis (read-side cache owned by the query layer; we only invalidate)
    REDIS_URL: RedisDsn  # Required
    CACHE_PREFIXES: list[str] = ["health_event", "health_events_list", "statistics"]

    # Workflow
    INCIDENT_CODE_PREFIX: str = "HE"
    TRANSITION_RETRIES: int = 3
    OPERATION_TIMEOUT: float = 10.0  # Seconds; applied when the caller passes none

    # Background escalation (pending incidents nobody picked up)
    ESCALATION_CHECK_INTERVAL: int = 15    # Seconds between sweeps
    ESCALATION_THRESHOLD: int = 300        # Seconds a pending incident may wait
    ESCALATION_REPEAT: int = 900           # Seconds before the same incident escalates again
    REMINDER_THRESHOLD: int = 600          # Seconds in progress before the owner is reminded
    REMINDER_REPEAT: int = 1800

    # Notification expiry windows (hours)
    GUARDIAN_URGENT_TTL_HOURS: int = 168
    GUARDIAN_INFO_TTL_HOURS: int = 168
    GUARDIAN_UPDATE_TTL_HOURS: int = 72
    STAFF_BROADCAST_TTL_HOURS: int = 4
    PEER_TAKEOVER_TTL_HOURS: int = 4
    PEER_TAKEOVER_URGENT_TTL_HOURS: int = 8
    PEER_COMPLETION_TTL_HOURS: int = 6
    PEER_COMPLETION_URGENT_TTL_HOURS: int = 12


settings = Settings()
