"""Configuration helpers: process settings from the environment and the
sections file that drives generation."""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .models import Section
from .schema import validate_config_payload


class Settings(BaseSettings):
    """Process settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )

    config_path: Path = Field(
        Path("config/sections.json"),
        alias="CONFIG_PATH",
        description="JSON file describing the Ollama endpoint, schedule and sections.",
    )
    public_dir: Path = Field(
        Path("public"),
        alias="PUBLIC_DIR",
        description="Root served over HTTP; articles and news.json are written here.",
    )
    host: str = Field("0.0.0.0", alias="HOST")
    port: int = Field(3000, alias="PORT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")


def get_settings() -> Settings:
    """Return a settings instance read from the current environment."""
    return Settings()


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)


class OllamaConfig(_CamelModel):
    base_url: str = Field(..., alias="baseUrl")
    model: str
    temperature: float = 0.7
    timeout_seconds: float = Field(
        300.0,
        alias="timeoutSeconds",
        gt=0,
        description="Per-request timeout; local models can take minutes per article.",
    )


class DailyAtHour(_CamelModel):
    """Run once a day at ``hour``:00 local time, retrying failures after a fixed delay."""

    hour: int = Field(1, ge=0, le=23)
    retry_delay_minutes: float = Field(10.0, alias="retryDelayMinutes", gt=0)

    @property
    def retry_delay(self) -> timedelta:
        return timedelta(minutes=self.retry_delay_minutes)


class FixedInterval(_CamelModel):
    """Run every ``interval_minutes``; a failure is retried one interval later."""

    interval_minutes: float = Field(..., alias="intervalMinutes", gt=0)
    run_on_startup: bool = Field(False, alias="runOnStartup")

    @property
    def period(self) -> timedelta:
        return timedelta(minutes=self.interval_minutes)

    @property
    def retry_delay(self) -> timedelta:
        return self.period


SchedulePolicy = Union[FixedInterval, DailyAtHour]


class AppConfig(_CamelModel):
    """Everything the generator and scheduler need, loaded once at startup."""

    ollama: OllamaConfig = Field(..., alias="ollamaConfig")
    system_prompt: Optional[str] = Field(None, alias="systemPrompt")
    schedule: SchedulePolicy = Field(default_factory=DailyAtHour)
    sections: List[Section] = Field(..., min_length=1)

    @field_validator("sections")
    @classmethod
    def _unique_section_ids(cls, sections: List[Section]) -> List[Section]:
        seen: set[str] = set()
        for section in sections:
            if section.id in seen:
                raise ValueError(f"duplicate section id: {section.id}")
            seen.add(section.id)
        return sections


def parse_config(payload: dict) -> AppConfig:
    """Validate a decoded config payload and build an ``AppConfig``."""
    try:
        validate_config_payload(payload)
        return AppConfig.model_validate(payload)
    except (ValueError, ValidationError) as exc:
        raise ConfigError(str(exc)) from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read config schema: {exc}") from exc


def load_config(path: Path | str) -> AppConfig:
    """Read and validate the sections file; raises ConfigError on any problem."""
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {config_path}: {exc}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file {config_path} is not valid JSON: {exc}") from exc
    return parse_config(payload)
