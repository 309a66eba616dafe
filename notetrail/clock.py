from __future__ import annotations

from typing import Protocol

from .config import SAMPLE_RATE


class AudioClock(Protocol):
    """Monotonic seconds on the audio timeline."""

    def now(self) -> float: ...


class SampleClock:
    """Counts frames the mixer has rendered.

    Only the audio callback advances it; other threads read a single int,
    which needs no lock.
    """

    def __init__(self, sample_rate: int = SAMPLE_RATE) -> None:
        self.sample_rate = sample_rate
        self._frames = 0

    @property
    def frames(self) -> int:
        return self._frames

    def advance_frames(self, frames: int) -> None:
        self._frames += frames

    def now(self) -> float:
        return self._frames / self.sample_rate


class ManualClock:
    """Explicitly driven clock for offline rendering and tests."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def set(self, seconds: float) -> None:
        if seconds < self._now:
            raise ValueError("clock cannot run backwards")
        self._now = float(seconds)

    def advance(self, seconds: float) -> float:
        self.set(self._now + seconds)
        return self._now
