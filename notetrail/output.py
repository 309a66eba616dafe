"""Audio output device: a sounddevice stream whose callback drives the mixer."""

from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

import numpy as np
from pydantic import BaseModel, ConfigDict

from .errors import AudioLockedError, PlaybackError
from .mixer import VoiceMixer

_LOGGER = logging.getLogger("notetrail.output")

StreamCallback = Callable[[Any, int, Any, Any], None]


class OutputStream(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...

    def close(self) -> None: ...


class OutputBackend(BaseModel):
    name: str
    open_stream: Callable[[int, int, StreamCallback], OutputStream]

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


def _load_sounddevice() -> OutputBackend | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        # OSError: the module imports but PortAudio itself is missing
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    sd: Any = sd_module

    def _open_stream(sample_rate: int, block_size: int, callback: StreamCallback) -> OutputStream:
        return sd.OutputStream(
            samplerate=sample_rate,
            blocksize=block_size,
            channels=1,
            dtype="float32",
            latency="low",
            callback=callback,
        )

    return OutputBackend(name="sounddevice", open_stream=_open_stream)


def load_backend() -> OutputBackend | None:
    return _load_sounddevice()


class DeviceOutput:
    """Audio device that starts locked.

    Nothing reaches the speakers until :meth:`unlock` succeeds, mirroring
    platforms that only allow audio after a user gesture.
    """

    def __init__(
        self,
        mixer: VoiceMixer,
        *,
        block_size: int = 512,
        backend_loader: Callable[[], OutputBackend | None] = load_backend,
    ) -> None:
        self.mixer = mixer
        self.block_size = block_size
        self._backend_loader = backend_loader
        self._stream: OutputStream | None = None
        self._listeners: list[Callable[[], None]] = []
        self.backend_name: str | None = None

    @property
    def locked(self) -> bool:
        return self._stream is None

    def on_unlock(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def require_unlocked(self) -> None:
        if self.locked:
            raise AudioLockedError("Audio output is locked; call unlock() first.")

    def _callback(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        _ = time_info
        if status:
            _LOGGER.debug("Output stream status: %s", status)
        block = self.mixer.render(frames)
        outdata[:] = np.asarray(block, dtype=np.float32).reshape(-1, 1)

    def unlock(self) -> bool:
        """Open and start the device stream. Returns whether audio is unlocked."""

        if not self.locked:
            return True
        backend = self._backend_loader()
        if backend is None:
            _LOGGER.warning("No audio backend available; install notetrail[audio].")
            return False
        try:
            stream = backend.open_stream(self.mixer.sample_rate, self.block_size, self._callback)
            stream.start()
        except Exception as exc:
            _LOGGER.warning("Audio device unavailable: %s", exc, exc_info=True)
            return False
        self._stream = stream
        self.backend_name = backend.name
        _LOGGER.info("Audio unlocked via %s", backend.name)

        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener()
        return True

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as exc:
            raise PlaybackError(f"Failed to close audio stream: {exc}") from exc
