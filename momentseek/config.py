from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "MOMENTSEEK_"

logger = logging.getLogger(__name__)


class PredictionSettings(BaseModel):
    endpoint: str = "http://localhost:8000"
    timeout_seconds: int = 300
    max_retries: int = 0
    response_field: str = "predicted_moments"
    include_document: bool = False


class TimelineSettings(BaseModel):
    resolution: int = Field(default=200, gt=0)
    fallback_duration_seconds: float = Field(default=150.0, gt=0)
    inclusive_end: bool = False


class PlaybackSettings(BaseModel):
    skip_seconds: float = Field(default=10.0, gt=0)


class HistorySettings(BaseModel):
    store_dir: Path = Path("data/history")
    page_size: int = Field(default=10, gt=0)


class IngestSettings(BaseModel):
    max_video_mb: int = Field(default=300, gt=0)
    max_document_mb: int = Field(default=50, gt=0)


class OutputSettings(BaseModel):
    output_dir: Path = Path("data/outputs")


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: Path | None = None


class Settings(BaseModel):
    prediction: PredictionSettings = Field(default_factory=PredictionSettings)
    timeline: TimelineSettings = Field(default_factory=TimelineSettings)
    playback: PlaybackSettings = Field(default_factory=PlaybackSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    ingest: IngestSettings = Field(default_factory=IngestSettings)
    output: OutputSettings = Field(default_factory=OutputSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides.

    A missing config file is not an error; defaults apply.
    """

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    raw_config: dict[str, Any] = {}
    if resolved_path.exists():
        raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    data = Settings.model_validate(raw_config).model_dump(mode="python")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix in {"CONFIG", "OWNER"}:
            continue

        _apply_override(data, key, raw_value)

    return Settings.model_validate(data)


def _apply_override(data: dict[str, Any], env_key: str, raw_value: str) -> None:
    """Write one `MOMENTSEEK_SECTION__FIELD` value into the dumped settings tree."""

    *parents, leaf = env_key[len(ENV_PREFIX) :].lower().split("__")
    section: Any = data
    for name in parents:
        section = section.get(name) if isinstance(section, dict) else None

    if not isinstance(section, dict) or leaf not in section or isinstance(section[leaf], dict):
        logger.debug("Ignoring %s: no matching setting.", env_key)
        return

    try:
        section[leaf] = _coerce_value(raw_value, section[leaf])
    except ValueError as exc:
        raise ValueError(f"{env_key}={raw_value!r} is not a valid value: {exc}") from exc


def _coerce_value(raw_value: str, current_value: Any) -> Any:
    # bool first: it is also an int
    if isinstance(current_value, bool):
        lowered = raw_value.strip().lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
        raise ValueError("expected a boolean such as true/false")
    if isinstance(current_value, int):
        return int(raw_value)
    if isinstance(current_value, float):
        return float(raw_value)
    if isinstance(current_value, Path):
        return Path(raw_value)
    return raw_value


_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off"}
