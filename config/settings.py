"""Application settings."""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine configuration loaded from environment variables."""

    # Plant configuration
    kpi_targets_file: Optional[str] = Field(
        default=None,
        description="YAML file with KPI targets, escalation tiers and defect codes "
                    "(bundled default_plant.yaml when unset)"
    )
    plant_id: str = Field(default="PLANT-01", description="Plant identifier used in logs")

    # Escalation signals
    rework_rate_window_minutes: int = Field(
        default=60,
        description="Look-back window for the rolling rework rate (%/hr)"
    )
    consecutive_lookback: int = Field(
        default=20,
        description="Number of most recent defect outcomes scanned for a same-cause streak"
    )

    # Dashboard
    default_date_range: str = Field(
        default="mtd",
        description="Default dashboard window: today, mtd or ytd"
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Singleton instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
