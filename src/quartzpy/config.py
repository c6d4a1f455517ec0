"""Configuration management for quartzpy."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# quartzpy config directory
QUARTZ_DIR = Path.home() / ".quartzpy"
QUARTZ_ENV_FILE = QUARTZ_DIR / ".env"


class Settings(BaseSettings):
    """Scheduler settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="QUARTZ_",
        # Later files override earlier ones
        env_file=(str(QUARTZ_ENV_FILE), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Scheduler loop
    sleep_time: float = Field(
        default=5,
        description="Seconds between scheduler loop cycles",
    )
    max_count: int = Field(
        default=10,
        description="Maximum number of triggers acquired per cycle",
    )
    time_window: float = Field(
        default=30,
        description="Extra seconds of look-ahead when acquiring triggers",
    )

    # Misfires and firing
    misfire_threshold: float = Field(
        default=60,
        description="Seconds a fire time may lag behind the clock before it counts as misfired",
    )
    max_fire_wait: float = Field(
        default=120,
        description="Longest time the run shell waits for a trigger's scheduled fire time",
    )

    # Storage
    store_path: Path | None = Field(
        default=None,
        description="JSON job store used by schedulers created without a store (in memory when unset)",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Default logging level",
    )


# Global settings instance
settings = Settings()
