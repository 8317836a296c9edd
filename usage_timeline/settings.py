"""User settings that drive how the event log is interpreted."""

from __future__ import annotations

import json
import logging
from datetime import tzinfo
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from usage_timeline.daily_stats import DEFAULT_BUCKET_SIZE_MINUTES
from usage_timeline.projection import DEFAULT_GRACE_MS, InterpretationConfig
from usage_timeline.suggestion_stats import DEFAULT_END_SOON_THRESHOLD_MS
from usage_timeline.timeutil import MINUTES_PER_DAY, resolve_zone

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "ut"
DEFAULT_DB_PATH = DEFAULT_DATA_DIR / "events.db"
DEFAULT_SETTINGS_PATH = DEFAULT_DATA_DIR / "settings.json"


class SettingsError(Exception):
    """Raised when the settings file cannot be read or is invalid."""


class InterpretationSettings(BaseModel):
    grace_period_ms: int = Field(default=DEFAULT_GRACE_MS, ge=0)
    bucket_size_minutes: int = Field(default=DEFAULT_BUCKET_SIZE_MINUTES, ge=1, le=MINUTES_PER_DAY)
    end_soon_threshold_ms: int = Field(default=DEFAULT_END_SOON_THRESHOLD_MS, ge=0)
    target_packages: frozenset[str] = frozenset()
    timezone: str | None = None

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str | None) -> str | None:
        if value:
            try:
                resolve_zone(value)
            except (KeyError, ValueError) as e:
                raise ValueError(f"unknown timezone {value!r}") from e
        return value

    def interpretation(self) -> InterpretationConfig:
        return InterpretationConfig(
            grace_ms=self.grace_period_ms,
            bucket_size_minutes=self.bucket_size_minutes,
            end_soon_threshold_ms=self.end_soon_threshold_ms,
        )

    def zone(self) -> tzinfo:
        return resolve_zone(self.timezone)


def load_settings(path: Path = DEFAULT_SETTINGS_PATH) -> InterpretationSettings:
    """Load settings from a JSON file, falling back to defaults if it does not exist.

    Raises:
        SettingsError: If the file is not valid JSON or fails validation.
    """
    if not path.exists():
        logger.debug("No settings file at %s; using defaults", path)
        return InterpretationSettings()
    try:
        return InterpretationSettings.model_validate_json(path.read_text())
    except ValidationError as e:
        raise SettingsError(f"Invalid settings in {path}: {e}") from e
    except OSError as e:
        raise SettingsError(f"Cannot read settings {path}: {e}") from e


def save_settings(settings: InterpretationSettings, path: Path = DEFAULT_SETTINGS_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    data = settings.model_dump(mode="json")
    data["target_packages"] = sorted(settings.target_packages)
    path.write_text(json.dumps(data, indent=2) + "\n")
