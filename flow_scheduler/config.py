# flow_scheduler/config.py
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseSettings):
    app_name: str = "Flow Scheduler"

    enabled: bool = Field(default=True, description="Run ticks at all")
    max_concurrent_workflows: int = Field(default=10, ge=1)
    check_interval: float = Field(default=60.0, gt=0, description="Seconds between ticks")

    persistent: bool = True
    schedule_file: Optional[str] = "/tmp/flow-scheduler/schedules.json"

    default_timezone: str = "UTC"

    enable_notifications: bool = False
    notification_webhook: Optional[str] = None

    # Honored as a setting only; pruning old history happens elsewhere.
    history_retention_days: int = Field(default=30, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("schedule_file", "notification_webhook", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def persistence_enabled(self) -> bool:
        return self.persistent and self.schedule_file is not None

    @property
    def notifications_enabled(self) -> bool:
        return self.enable_notifications and self.notification_webhook is not None


def load_settings(
    path: Optional[Union[str, Path]] = None,
    **overrides: Any
) -> SchedulerSettings:
    """Build settings from an optional YAML file plus explicit overrides.

    The YAML file may either hold the options at top level or nest them
    under a ``scheduler:`` key. Values missing from both the file and the
    overrides fall back to environment variables and then to defaults.
    """
    data: Dict[str, Any] = {}

    if path is not None:
        with open(path, "r") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Settings file {path} must contain a mapping")
        data = loaded.get("scheduler", loaded)

    data.update({k: v for k, v in overrides.items() if v is not None})
    return SchedulerSettings(**data)


@lru_cache()
def get_settings() -> SchedulerSettings:
    return SchedulerSettings()
