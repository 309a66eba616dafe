import asyncio
import io
from pathlib import Path

import httpx
import numpy as np
import pytest
import soundfile as sf

from notetrail.assets import (
    DirectoryPitchSource,
    HttpPitchSource,
    PitchAssetCache,
    SynthPitchSource,
    decode_asset,
    encode_wav,
    source_from_settings,
)
from notetrail.config import Settings
from notetrail.errors import AssetError


class _GatedSource:
    def __init__(self, *, fail_first: bool = False) -> None:
        self.calls: list[str] = []
        self.gate = asyncio.Event()
        self._fail_first = fail_first

    async def fetch(self, pitch_id: str) -> bytes:
        self.calls.append(pitch_id)
        await self.gate.wait()
        if self._fail_first and len(self.calls) == 1:
            raise AssetError("flaky")
        return encode_wav(np.full(64, 0.25, dtype=np.float32), 8_000)


@pytest.mark.asyncio
async def test_concurrent_gets_share_one_fetch() -> None:
    source = _GatedSource()
    cache = PitchAssetCache(source, sample_rate=8_000)

    waiters = [asyncio.create_task(cache.get("A3")) for _ in range(5)]
    await asyncio.sleep(0)
    source.gate.set()
    assets = await asyncio.gather(*waiters)

    assert source.calls == ["A3"]
    assert all(asset is assets[0] for asset in assets)
    assert "A3" in cache
    assert await cache.get("A3") is assets[0]
    assert source.calls == ["A3"]


@pytest.mark.asyncio
async def test_failure_reaches_every_waiter_and_is_not_cached() -> None:
    source = _GatedSource(fail_first=True)
    cache = PitchAssetCache(source, sample_rate=8_000)

    waiters = [asyncio.create_task(cache.get("C4")) for _ in range(3)]
    await asyncio.sleep(0)
    source.gate.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)

    assert all(isinstance(result, AssetError) for result in results)
    assert "C4" not in cache

    asset = await cache.get("C4")
    assert asset.id == "C4"
    assert source.calls == ["C4", "C4"]


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_load() -> None:
    source = _GatedSource()
    cache = PitchAssetCache(source, sample_rate=8_000)

    impatient = asyncio.create_task(cache.get("E4"))
    patient = asyncio.create_task(cache.get("E4"))
    await asyncio.sleep(0)
    impatient.cancel()
    source.gate.set()

    asset = await patient
    assert asset.id == "E4"
    with pytest.raises(asyncio.CancelledError):
        await impatient


@pytest.mark.asyncio
async def test_preload_reports_failures(tmp_path: Path) -> None:
    (tmp_path / "A3.wav").write_bytes(encode_wav(np.zeros(32, dtype=np.float32), 8_000))
    cache = PitchAssetCache(DirectoryPitchSource(tmp_path), sample_rate=8_000)

    failed = await cache.preload(["A3", "B3", "A3"])

    assert failed == ["B3"]
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_directory_source_keeps_sharp_in_file_name(tmp_path: Path) -> None:
    payload = encode_wav(np.zeros(16, dtype=np.float32), 8_000)
    (tmp_path / "C#4.wav").write_bytes(payload)
    assert await DirectoryPitchSource(tmp_path).fetch("C#4") == payload


@pytest.mark.asyncio
async def test_http_source_escapes_sharp() -> None:
    seen: list[str] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        if request.url.path.endswith("missing.wav"):
            return httpx.Response(404)
        return httpx.Response(200, content=b"RIFF")

    source = HttpPitchSource("http://assets.test/audio/notes/", transport=httpx.MockTransport(_handler))

    assert source.url_for("C#4") == "http://assets.test/audio/notes/C%234.wav"
    assert await source.fetch("C#4") == b"RIFF"
    assert seen == ["http://assets.test/audio/notes/C%234.wav"]
    with pytest.raises(AssetError):
        await source.fetch("missing")


@pytest.mark.asyncio
async def test_synth_source_renders_decodable_audio() -> None:
    data = await SynthPitchSource(sample_rate=8_000).fetch("A4")
    asset = decode_asset("A4", data, sample_rate=8_000)
    assert asset.samples.dtype == np.float32
    assert asset.duration == pytest.approx(1.2, abs=1e-3)
    assert 0.5 < float(np.max(np.abs(asset.samples))) <= 0.61


@pytest.mark.asyncio
async def test_synth_source_rejects_bad_pitch() -> None:
    with pytest.raises(AssetError):
        await SynthPitchSource().fetch("nope")


def test_decode_folds_stereo_and_resamples() -> None:
    stereo = np.stack([np.full(100, 0.5), np.full(100, -0.1)], axis=1).astype(np.float32)
    buffer = io.BytesIO()
    sf.write(buffer, stereo, 4_000, format="WAV", subtype="FLOAT")

    asset = decode_asset("A3", buffer.getvalue(), sample_rate=8_000)

    assert asset.samples.ndim == 1
    assert len(asset.samples) == 200
    assert np.allclose(asset.samples, 0.2, atol=1e-5)


def test_decode_rejects_corrupt_bytes() -> None:
    with pytest.raises(AssetError):
        decode_asset("A3", b"not a wav file")
    with pytest.raises(AssetError):
        decode_asset("A3", b"")


def test_source_from_settings(tmp_path: Path) -> None:
    assert isinstance(source_from_settings(Settings(asset_dir=tmp_path)), DirectoryPitchSource)
    assert isinstance(source_from_settings(Settings(asset_url="http://x")), HttpPitchSource)
    assert isinstance(source_from_settings(Settings()), SynthPitchSource)
