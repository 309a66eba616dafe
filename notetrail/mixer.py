"""Sample-accurate voice mixing for the audio callback.

Voices are handed to the callback thread through a ``queue.SimpleQueue``.
Cancellation is an integer run-id comparison inside :meth:`VoiceMixer.render`,
so the callback never takes a lock.
"""

from __future__ import annotations

import logging
import math
import queue
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from .clock import SampleClock
from .config import RELEASE_TAIL, SAMPLE_RATE

_LOGGER = logging.getLogger("notetrail.mixer")

FloatArray = NDArray[np.float32]

ATTACK_SECONDS = 0.01
RELEASE_TAU = 0.05
DECLICK_SECONDS = 0.005
HEADROOM = 0.8


@dataclass(frozen=True, slots=True, eq=False)
class Voice:
    """One pitch sample scheduled at an absolute frame of the mixer timeline."""

    samples: FloatArray
    start_frame: int
    sustain_frames: int
    run_id: int
    gain: float = 1.0


def envelope(
    offsets: NDArray[np.int64],
    sustain_frames: int,
    *,
    sample_rate: int = SAMPLE_RATE,
    release_tail: float = RELEASE_TAIL,
) -> FloatArray:
    """Gain for frame offsets relative to a voice onset.

    Linear 10 ms attack, flat sustain, then an exponential release
    (tau 0.05 s) rescaled so it reaches exactly zero at the end of the tail.
    """

    attack = max(1, int(ATTACK_SECONDS * sample_rate))
    tail = max(1, int(release_tail * sample_rate))
    tau = RELEASE_TAU * sample_rate
    floor = math.exp(-tail / tau)

    x = offsets.astype(np.float64)
    gain = np.clip(x / attack, 0.0, 1.0)
    released = x - sustain_frames
    decay = (np.exp(-np.maximum(released, 0.0) / tau) - floor) / (1.0 - floor)
    gain = np.where(released > 0, np.minimum(gain, decay), gain)
    gain = np.where((x < 0) | (released >= tail), 0.0, gain)
    return gain.astype(np.float32)


class _PlayingVoice:
    __slots__ = ("voice", "fade_start", "ramp_start")

    def __init__(self, voice: Voice, ramp_start: int | None = None) -> None:
        self.voice = voice
        self.fade_start: int | None = None
        self.ramp_start = ramp_start


class VoiceMixer:
    """Mixes scheduled voices into mono blocks and advances the sample clock."""

    def __init__(
        self,
        sample_rate: int = SAMPLE_RATE,
        *,
        clock: SampleClock | None = None,
        release_tail: float = RELEASE_TAIL,
    ) -> None:
        self.sample_rate = sample_rate
        self.clock = clock or SampleClock(sample_rate)
        self.release_tail = release_tail
        self._incoming: queue.SimpleQueue[Voice] = queue.SimpleQueue()
        self._voices: list[_PlayingVoice] = []
        self._active_run = 0
        self._tail_frames = max(1, int(release_tail * sample_rate))
        self._declick_frames = max(1, int(DECLICK_SECONDS * sample_rate))
        self._attack_frames = max(1, int(ATTACK_SECONDS * sample_rate))

    @property
    def active_run(self) -> int:
        return self._active_run

    def set_active_run(self, run_id: int) -> None:
        """Voices of any other run fade out on the next rendered block."""

        self._active_run = run_id

    def frame_for(self, seconds: float) -> int:
        return int(round(seconds * self.sample_rate))

    def schedule(self, voice: Voice) -> None:
        self._incoming.put(voice)

    @property
    def pending_voices(self) -> int:
        """Voices known to the callback that have not finished (approximate)."""

        return len(self._voices) + self._incoming.qsize()

    def _drain_incoming(self, block_start: int) -> None:
        while True:
            try:
                voice = self._incoming.get_nowait()
            except queue.Empty:
                return
            if voice.run_id != self._active_run:
                continue
            if voice.start_frame < block_start:
                # joins mid-note: ramp in from this block instead of jumping
                _LOGGER.debug("Voice arrived %d frames late", block_start - voice.start_frame)
                self._voices.append(_PlayingVoice(voice, ramp_start=block_start))
            else:
                self._voices.append(_PlayingVoice(voice))

    def render(self, frames: int) -> FloatArray:
        """Mix the next ``frames`` frames; called from the audio callback."""

        block_start = self.clock.frames
        out = np.zeros(frames, dtype=np.float32)
        self._drain_incoming(block_start)

        survivors: list[_PlayingVoice] = []
        run_id = self._active_run
        for playing in self._voices:
            voice = playing.voice
            if voice.run_id != run_id:
                if voice.start_frame >= block_start:
                    continue  # never started, nothing to fade
                if playing.fade_start is None:
                    playing.fade_start = block_start
            if self._mix_voice(out, playing, block_start):
                survivors.append(playing)
        self._voices = survivors

        np.clip(out, -1.0, 1.0, out=out)
        self.clock.advance_frames(frames)
        return out

    def _mix_voice(self, out: FloatArray, playing: _PlayingVoice, block_start: int) -> bool:
        voice = playing.voice
        frames = len(out)
        end = voice.start_frame + voice.sustain_frames + self._tail_frames
        if playing.fade_start is not None:
            end = min(end, playing.fade_start + self._declick_frames)
        if voice.start_frame >= block_start + frames:
            return True
        if end <= block_start:
            return False

        offsets = np.arange(block_start, block_start + frames, dtype=np.int64) - voice.start_frame
        gain = envelope(
            offsets,
            voice.sustain_frames,
            sample_rate=self.sample_rate,
            release_tail=self.release_tail,
        )
        if playing.fade_start is not None:
            remaining = (playing.fade_start + self._declick_frames) - (offsets + voice.start_frame)
            gain *= np.clip(remaining / self._declick_frames, 0.0, 1.0).astype(np.float32)
        if playing.ramp_start is not None:
            ramp = (offsets + voice.start_frame - playing.ramp_start) / self._attack_frames
            gain *= np.clip(ramp, 0.0, 1.0).astype(np.float32)

        valid = (offsets >= 0) & (offsets < len(voice.samples))
        if np.any(valid):
            samples = np.zeros(frames, dtype=np.float32)
            samples[valid] = voice.samples[offsets[valid]]
            out += samples * gain * (voice.gain * HEADROOM)
        return end > block_start + frames

    def render_until(self, frame: int, *, block_size: int = 1024) -> FloatArray:
        """Render offline up to an absolute frame; returns the rendered audio."""

        blocks: list[FloatArray] = []
        while self.clock.frames < frame:
            blocks.append(self.render(min(block_size, frame - self.clock.frames)))
        if not blocks:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(blocks)
