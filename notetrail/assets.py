"""Pitch Asset Cache: memoized, de-duplicated fetch and decode of pitch samples."""

from __future__ import annotations

import asyncio
import io
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import httpx
import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray

from .config import SAMPLE_RATE, Settings
from .errors import AssetError
from .pitches import PitchId, midi_to_freq, pitch_to_midi

_LOGGER = logging.getLogger("notetrail.assets")

FloatArray = NDArray[np.float32]

SYNTH_SECONDS = 1.2
SYNTH_PARTIALS: tuple[tuple[int, float], ...] = ((1, 1.0), (2, 0.35), (3, 0.12), (4, 0.05))


@dataclass(frozen=True, eq=False)
class PitchAsset:
    """Decoded mono samples for one pitch, already at the mixer sample rate."""

    id: PitchId
    samples: FloatArray
    sample_rate: int

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate


class PitchSource(Protocol):
    async def fetch(self, pitch_id: PitchId) -> bytes: ...


def asset_name(pitch_id: PitchId) -> str:
    """File name of a pitch sample; ``#`` is kept on disk and escaped in URLs."""

    return f"{pitch_id}.wav"


def asset_url_path(pitch_id: PitchId) -> str:
    return asset_name(pitch_id).replace("#", "%23")


class DirectoryPitchSource:
    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    async def fetch(self, pitch_id: PitchId) -> bytes:
        path = self._root / asset_name(pitch_id)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise AssetError(f"Missing sample for {pitch_id}: {path}") from exc


class HttpPitchSource:
    """Fetches ``<base_url>/<name>.wav``, e.g. ``/audio/notes/C%234.wav``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def url_for(self, pitch_id: PitchId) -> str:
        return f"{self._base_url}/{asset_url_path(pitch_id)}"

    async def fetch(self, pitch_id: PitchId) -> bytes:
        url = self.url_for(pitch_id)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            raise AssetError(f"fetch failed: {url}") from exc
        if response.status_code >= 400:
            raise AssetError(f"fetch failed: {url} ({response.status_code})")
        return response.content


def render_tone(freq: float, *, sample_rate: int = SAMPLE_RATE, seconds: float = SYNTH_SECONDS) -> FloatArray:
    """A plucked, decaying additive tone."""

    t = np.arange(int(sample_rate * seconds), dtype=np.float32) / sample_rate
    tone = np.zeros_like(t)
    for harmonic, weight in SYNTH_PARTIALS:
        if freq * harmonic >= sample_rate / 2:
            break
        tone += weight * np.sin(2 * np.pi * freq * harmonic * t) * np.exp(-t * (2.5 + harmonic))
    # 5ms onset ramp prevents a click at sample zero
    ramp = min(len(tone), int(0.005 * sample_rate))
    tone[:ramp] *= np.linspace(0.0, 1.0, ramp, dtype=np.float32)
    peak = float(np.max(np.abs(tone))) if tone.size else 0.0
    if peak > 0:
        tone *= 0.6 / peak
    return tone.astype(np.float32)


def encode_wav(samples: FloatArray, sample_rate: int) -> bytes:
    buffer = io.BytesIO()
    sf.write(buffer, np.asarray(samples, dtype=np.float32), sample_rate, format="WAV", subtype="FLOAT")  # type: ignore[reportUnknownMemberType]
    return buffer.getvalue()


class SynthPitchSource:
    """Renders pitches locally when no sample library is configured."""

    def __init__(self, *, sample_rate: int = SAMPLE_RATE) -> None:
        self._sample_rate = sample_rate

    async def fetch(self, pitch_id: PitchId) -> bytes:
        try:
            freq = midi_to_freq(pitch_to_midi(pitch_id))
        except ValueError as exc:
            raise AssetError(str(exc)) from exc
        tone = await asyncio.to_thread(render_tone, freq, sample_rate=self._sample_rate)
        return encode_wav(tone, self._sample_rate)


def _resample_linear(samples: FloatArray, source_rate: int, target_rate: int) -> FloatArray:
    if source_rate == target_rate or samples.size == 0:
        return samples
    target_len = max(1, int(round(len(samples) * target_rate / source_rate)))
    positions = np.linspace(0.0, len(samples) - 1, target_len)
    return np.interp(positions, np.arange(len(samples)), samples).astype(np.float32)


def decode_asset(pitch_id: PitchId, data: bytes, *, sample_rate: int = SAMPLE_RATE) -> PitchAsset:
    if not data:
        raise AssetError(f"Empty sample for {pitch_id}")
    try:
        frames, source_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)  # type: ignore[reportUnknownMemberType]
    except (RuntimeError, sf.LibsndfileError) as exc:
        raise AssetError(f"Corrupt sample for {pitch_id}: {exc}") from exc
    mono: FloatArray = np.asarray(frames, dtype=np.float32).mean(axis=1)
    mono = _resample_linear(mono, int(source_rate), sample_rate)
    return PitchAsset(id=pitch_id, samples=mono, sample_rate=sample_rate)


@dataclass
class PitchAssetCache:
    """Process-wide pitch cache.

    Successful loads are kept forever. Concurrent requests for the same id
    share one in-flight task; a failure reaches every waiter and is not
    remembered, so a later request retries.
    """

    source: PitchSource
    sample_rate: int = SAMPLE_RATE
    _assets: dict[PitchId, PitchAsset] = field(default_factory=dict, init=False, repr=False)
    _inflight: dict[PitchId, asyncio.Task[PitchAsset]] = field(
        default_factory=dict, init=False, repr=False
    )

    def peek(self, pitch_id: PitchId) -> PitchAsset | None:
        return self._assets.get(pitch_id)

    def __contains__(self, pitch_id: object) -> bool:
        return pitch_id in self._assets

    def __len__(self) -> int:
        return len(self._assets)

    async def _load(self, pitch_id: PitchId) -> PitchAsset:
        try:
            data = await self.source.fetch(pitch_id)
            asset = await asyncio.to_thread(decode_asset, pitch_id, data, sample_rate=self.sample_rate)
        finally:
            self._inflight.pop(pitch_id, None)
        self._assets[pitch_id] = asset
        _LOGGER.debug("Loaded pitch asset %s (%.2fs)", pitch_id, asset.duration)
        return asset

    async def get(self, pitch_id: PitchId) -> PitchAsset:
        cached = self._assets.get(pitch_id)
        if cached is not None:
            return cached
        task = self._inflight.get(pitch_id)
        if task is None or task.get_loop() is not asyncio.get_running_loop():
            task = asyncio.get_running_loop().create_task(self._load(pitch_id))
            self._inflight[pitch_id] = task
        # One waiter giving up must not cancel the shared load.
        return await asyncio.shield(task)

    async def preload(self, pitch_ids: Iterable[PitchId]) -> list[PitchId]:
        """Load many ids concurrently; returns the ids that failed."""

        ids = list(dict.fromkeys(pitch_ids))
        results: list[Any] = await asyncio.gather(
            *(self.get(pitch_id) for pitch_id in ids), return_exceptions=True
        )
        failed: list[PitchId] = []
        for pitch_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                _LOGGER.warning("Pitch asset %s unavailable: %s", pitch_id, result)
                failed.append(pitch_id)
        return failed


def source_from_settings(settings: Settings) -> PitchSource:
    if settings.asset_dir is not None:
        return DirectoryPitchSource(settings.asset_dir)
    if settings.asset_url:
        return HttpPitchSource(settings.asset_url)
    return SynthPitchSource(sample_rate=settings.sample_rate)


_DEFAULT_CACHE: PitchAssetCache | None = None


def get_default_cache(settings: Settings | None = None) -> PitchAssetCache:
    global _DEFAULT_CACHE
    if _DEFAULT_CACHE is None:
        resolved = settings or Settings.from_env()
        _DEFAULT_CACHE = PitchAssetCache(
            source=source_from_settings(resolved), sample_rate=resolved.sample_rate
        )
    return _DEFAULT_CACHE
