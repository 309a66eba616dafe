from __future__ import annotations


class NotetrailError(Exception):
    """Base error for the notetrail library."""


class AssetError(NotetrailError):
    """Raised when a pitch sample is missing or cannot be decoded."""


class PlaybackError(NotetrailError):
    """Raised when no audio output backend can be used."""


class AudioLockedError(PlaybackError):
    """Raised when audio is requested before the output has been unlocked."""


class ExportError(NotetrailError):
    """Raised when an export cannot be recorded."""


class EncoderUnavailableError(ExportError):
    """Raised when no candidate container/codec is supported by the encoder."""


class ConversionError(NotetrailError):
    """Raised when container normalization fails or returns nothing."""
