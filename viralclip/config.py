from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "VIRALCLIP_"

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
]


class PipelineSettings(BaseModel):
    output_dir: Path = Path("output")
    work_dir: Path = Path("data/downloads")
    clip_count: int = 5
    min_clip_seconds: float = 30.0
    max_clip_seconds: float = 60.0
    batch_size: int = 3
    vertical_crop: bool = False
    use_agents: bool = False

    @model_validator(mode="after")
    def _check_clip_band(self) -> PipelineSettings:
        if self.min_clip_seconds <= 0 or self.min_clip_seconds > self.max_clip_seconds:
            raise ValueError("min_clip_seconds must be positive and not exceed max_clip_seconds.")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1.")
        return self


class SignalSettings(BaseModel):
    silence_noise_floor_db: float = -30.0
    silence_min_duration_seconds: float = 2.0
    energy_rms_threshold: float = 0.1
    energy_max_results: int = 20
    scene_threshold: float = 0.5
    scene_backend: str = "ffmpeg"
    scene_analysis_fps: float = 2.0
    detect_scene_changes: bool = True


class EngineSettings(BaseModel):
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    ytdlp_path: str = "yt-dlp"


class TranscodeSettings(BaseModel):
    video_codec: str = "libx264"
    preset: str = "fast"
    crf: int = 23
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    max_dimension: int = 1280
    fps: int = 30
    vertical_width: int = 1080
    vertical_height: int = 1920
    timeout_seconds: float = 0.0


class AgentSettings(BaseModel):
    max_concurrent: int = 4
    stage_timeout_seconds: float = 0.0
    spawn_retries: int = 3
    spawn_retry_delay_seconds: float = 2.0


class SourceSettings(BaseModel):
    user_agents: list[str] = Field(default_factory=lambda: list(DEFAULT_USER_AGENTS))
    max_retries: int = 3
    min_delay_seconds: float = 1.0
    max_delay_seconds: float = 3.0


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str | None = None


class Settings(BaseModel):
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    signals: SignalSettings = Field(default_factory=SignalSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    transcode: TranscodeSettings = Field(default_factory=TranscodeSettings)
    agents: AgentSettings = Field(default_factory=AgentSettings)
    source: SourceSettings = Field(default_factory=SourceSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides.

    A missing config file is not an error; built-in defaults are used instead.
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
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        _apply_override(data, path, raw_value)

    return Settings.model_validate(data)


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> None:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return
        current = current[segment]

    if not isinstance(current, dict):
        return

    final_key = path[-1]
    if final_key not in current:
        return

    current[final_key] = _coerce_value(raw_value, current[final_key])


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    return raw_value
