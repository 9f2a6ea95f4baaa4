"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Constructor arguments
  2. Environment variables  (BOOTCACHE__RESUME__THROTTLE_SECONDS=10)
  3. bootcache.yaml         (searched in cwd, then the platform config dir)
  4. Hardcoded defaults

The config file is optional; every field has a default.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("bootcache")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "cache.db")

LANE_COUNT = 5


def _find_config_file() -> str | None:
    """Return the path of the first bootcache.yaml found, or None."""
    candidates = [
        Path("bootcache.yaml"),
        Path(platformdirs.user_config_dir("bootcache")) / "bootcache.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class LaneSettings(_Section):
    # Delay of each lane from t0. Lane 0 above the fold, lane 4 derived.
    lane_delays_ms: list[int] = [0, 100, 400, 1000, 2000]
    top_conversations: int = 3

    @field_validator("lane_delays_ms")
    @classmethod
    def validate_delays(cls, v: list[int]) -> list[int]:
        if len(v) != LANE_COUNT:
            raise ValueError(f"lane_delays_ms must have exactly {LANE_COUNT} entries")
        if any(d < 0 for d in v):
            raise ValueError("lane delays must be >= 0")
        if any(later < earlier for earlier, later in zip(v, v[1:], strict=False)):
            raise ValueError("lane delays must be non-decreasing")
        return v

    @field_validator("top_conversations")
    @classmethod
    def validate_top_conversations(cls, v: int) -> int:
        if v < 0:
            raise ValueError("top_conversations must be >= 0")
        return v


class DetectorSettings(_Section):
    full_threshold: int = 7


class ResumeSettings(_Section):
    throttle_seconds: float = 30.0


class StalenessSettings(_Section):
    default_seconds: float = 60.0
    # Per query-area overrides, keyed by the first element of the query key.
    overrides: dict[str, float] = {
        "posts": 30.0,
        "profile": 30.0,
        "profilePosts": 30.0,
        "stories": 60.0,
        "events": 120.0,
        "activities": 30.0,
    }

    def budget_for(self, area: str) -> float:
        return self.overrides.get(area, self.default_seconds)


class PersistenceSettings(_Section):
    db_path: str = _DEFAULT_DB_PATH
    storage_key: str = "bootcache-query-cache"
    max_age_seconds: float = 30 * 60
    buster: str = "v1"
    persisted_prefixes: list[str] = [
        "stories",
        "posts",
        "messages",
        "profile",
        "notifications",
        "badges",
        "events",
        "profilePosts",
        "bookmarks",
        "activities",
    ]


class GuardSettings(_Section):
    safe_mode_threshold: int = 3
    boot_timeout_seconds: float = 15.0


class MediaSettings(_Section):
    enabled: bool = True
    max_concurrency: int = 4
    timeout_seconds: float = 10.0


class LoggingSettings(_Section):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: BOOTCACHE__LANES__TOP_CONVERSATIONS=5
        env_prefix="BOOTCACHE__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    lanes: LaneSettings = LaneSettings()
    detector: DetectorSettings = DetectorSettings()
    resume: ResumeSettings = ResumeSettings()
    staleness: StalenessSettings = StalenessSettings()
    persistence: PersistenceSettings = PersistenceSettings()
    guard: GuardSettings = GuardSettings()
    media: MediaSettings = MediaSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
