"""Process configuration loaded from the environment."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Runtime settings for the engine (env prefix ``SYNCCTL_``)."""

    model_config = SettingsConfigDict(
        env_prefix="SYNCCTL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    data_dir: str = Field(default=".syncctl")
    log_dir: Optional[str] = Field(default=None)  # defaults to <data_dir>/logs
    copy_tool: str = Field(default="robocopy")

    # Scheduler
    tick_interval_seconds: float = Field(default=60.0, gt=0, le=120)
    initial_delay_seconds: float = Field(default=10.0, ge=0)

    log_retention_days: int = Field(default=30, ge=1)
    debug: bool = Field(default=False)

    @property
    def log_path(self) -> Path:
        if self.log_dir:
            return Path(self.log_dir)
        return Path(self.data_dir) / "logs"


@lru_cache
def get_config() -> AppConfig:
    """Get cached application config."""
    return AppConfig()
