from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

_LOGGER = logging.getLogger("notetrail.config")

SAMPLE_RATE = 44_100

# Silence after the last event that every live session and every export keeps.
RELEASE_TAIL = 0.2


def _env_str(name: str) -> str | None:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = _env_str(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        _LOGGER.warning("Ignoring invalid %s=%r; using %s.", name, value, default)
        return default


def _env_float(name: str, default: float) -> float:
    value = _env_str(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        _LOGGER.warning("Ignoring invalid %s=%r; using %s.", name, value, default)
        return default


class Settings(BaseModel):
    """Runtime knobs for playback and export.

    Every field can be overridden with a ``NOTETRAIL_<FIELD>`` environment
    variable through :meth:`from_env`.
    """

    sample_rate: int = Field(default=SAMPLE_RATE, ge=8_000, le=192_000)
    block_size: int = Field(default=512, ge=32, le=8_192)
    schedule_lead: float = Field(default=0.12, ge=0.0, le=2.0)
    release_tail: float = Field(default=RELEASE_TAIL, ge=0.0, le=2.0)
    fps: int = Field(default=30, ge=1, le=120)
    frame_width: int = Field(default=540, ge=16)
    frame_height: int = Field(default=960, ge=16)
    asset_dir: Path | None = None
    asset_url: str | None = None
    normalizer_url: str | None = None
    normalizer_timeout: float = Field(default=60.0, gt=0.0)
    ffmpeg_path: str | None = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @field_validator("frame_width", "frame_height")
    @classmethod
    def _even_dimension(cls, value: int) -> int:
        # yuv420p needs even frame dimensions
        if value % 2:
            raise ValueError("frame dimensions must be even")
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        asset_dir = _env_str("NOTETRAIL_ASSET_DIR")
        return cls(
            sample_rate=_env_int("NOTETRAIL_SAMPLE_RATE", SAMPLE_RATE),
            block_size=_env_int("NOTETRAIL_BLOCK_SIZE", 512),
            schedule_lead=_env_float("NOTETRAIL_SCHEDULE_LEAD", 0.12),
            release_tail=_env_float("NOTETRAIL_RELEASE_TAIL", RELEASE_TAIL),
            fps=_env_int("NOTETRAIL_FPS", 30),
            frame_width=_env_int("NOTETRAIL_FRAME_WIDTH", 540),
            frame_height=_env_int("NOTETRAIL_FRAME_HEIGHT", 960),
            asset_dir=Path(asset_dir).expanduser() if asset_dir else None,
            asset_url=_env_str("NOTETRAIL_ASSET_URL"),
            normalizer_url=_env_str("NOTETRAIL_NORMALIZER_URL"),
            normalizer_timeout=_env_float("NOTETRAIL_NORMALIZER_TIMEOUT", 60.0),
            ffmpeg_path=_env_str("NOTETRAIL_FFMPEG_PATH"),
        )
