from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FleetConfig(BaseSettings):
    """Engine configuration.

    Automatically loads from ``BUSTRACK_*`` environment variables and .env file.
    """

    model_config = SettingsConfigDict(env_prefix="BUSTRACK_", env_file=".env", extra="ignore")

    db_path: Path = Field(default=Path("data/bustrack.db"), description="Registry database")

    # Staleness
    staleness_threshold_seconds: float = Field(default=60.0, gt=0)
    sweep_interval_seconds: float = Field(default=10.0, gt=0)

    # Snapshot publishing
    publish_interval_seconds: float = Field(default=3.0, gt=0)

    # Ingest validation
    max_speed_kmh: float = Field(default=150.0, gt=0)
    max_future_skew_seconds: float = Field(default=30.0, ge=0)

    # ETA projection
    speed_smoothing_alpha: float = Field(default=0.3, gt=0, le=1)
    min_moving_speed_kmh: float = Field(default=1.0, gt=0)
    default_route_speed_kmh: float = Field(default=20.0, gt=0)
    off_route_threshold_m: float = Field(default=150.0, gt=0)

    # State store
    lock_shards: int = Field(default=64, ge=1)

    # GTFS-RT vehicle positions feed (optional)
    feed_url: str | None = None
    api_key: str | None = None
    feed_poll_interval_seconds: float = Field(default=15.0, gt=0)
    feed_max_backoff_seconds: float = Field(default=300.0, gt=0)


@lru_cache
def get_fleet_config() -> FleetConfig:
    """Get engine configuration (cached singleton).

    Returns:
        FleetConfig with values from .env file or environment variables.
    """
    return FleetConfig()
