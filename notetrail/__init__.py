from __future__ import annotations

from .assets import (
    DirectoryPitchSource,
    HttpPitchSource,
    PitchAsset,
    PitchAssetCache,
    SynthPitchSource,
    get_default_cache,
)
from .clock import AudioClock, ManualClock, SampleClock
from .config import RELEASE_TAIL, SAMPLE_RATE, Settings
from .dial import (
    build_clock_plan,
    build_date_plan,
    build_phone_plan,
    format_date,
    format_phone,
)
from .errors import (
    AssetError,
    AudioLockedError,
    ConversionError,
    EncoderUnavailableError,
    ExportError,
    NotetrailError,
    PlaybackError,
)
from .export import (
    EncoderFormat,
    ExportPipeline,
    ExportResult,
    ExportState,
    artifact_filename,
    negotiate_format,
)
from .logging_utils import configure_logging as _configure_logging
from .mixer import VoiceMixer
from .normalizer import FfmpegNormalizer, RemoteNormalizer
from .output import DeviceOutput
from .player import LivePlayer
from .scheduler import AudioScheduler, PlaybackSession, session_end
from .share import ShareState
from .timeline import (
    DEFAULT_RULES,
    Event,
    EventKind,
    MappingRules,
    TimelinePlan,
    build_plan,
    build_text_plan,
)
from .tokenizer import MAX_INPUT_CHARS, Token, sanitize_text, tokenize
from .visual import TrailState, VisualSyncLoop, caption_spans

__all__ = [
    "DEFAULT_RULES",
    "MAX_INPUT_CHARS",
    "RELEASE_TAIL",
    "SAMPLE_RATE",
    "AssetError",
    "AudioClock",
    "AudioLockedError",
    "AudioScheduler",
    "ConversionError",
    "DeviceOutput",
    "DirectoryPitchSource",
    "EncoderFormat",
    "EncoderUnavailableError",
    "Event",
    "EventKind",
    "ExportError",
    "ExportPipeline",
    "ExportResult",
    "ExportState",
    "FfmpegNormalizer",
    "HttpPitchSource",
    "LivePlayer",
    "ManualClock",
    "MappingRules",
    "NotetrailError",
    "PitchAsset",
    "PitchAssetCache",
    "PlaybackError",
    "PlaybackSession",
    "RemoteNormalizer",
    "SampleClock",
    "Settings",
    "ShareState",
    "SynthPitchSource",
    "TimelinePlan",
    "Token",
    "TrailState",
    "VisualSyncLoop",
    "VoiceMixer",
    "artifact_filename",
    "build_clock_plan",
    "build_date_plan",
    "build_phone_plan",
    "build_plan",
    "build_text_plan",
    "caption_spans",
    "format_date",
    "format_phone",
    "get_default_cache",
    "negotiate_format",
    "sanitize_text",
    "session_end",
    "tokenize",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
