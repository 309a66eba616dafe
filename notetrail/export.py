"""Export Pipeline: re-drives a plan offline into a muxed audio/video clip."""

from __future__ import annotations

import asyncio
import logging
import math
import re
import subprocess
import tempfile
import unicodedata
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray

from .assets import PitchAssetCache, get_default_cache
from .clock import ManualClock
from .config import Settings
from .errors import EncoderUnavailableError, ExportError
from .mixer import VoiceMixer
from .normalizer import Normalizer, resolve_ffmpeg
from .raster import RasterRenderer
from .scheduler import AudioScheduler
from .timeline import TimelinePlan
from .visual import VisualSyncLoop

_LOGGER = logging.getLogger("notetrail.export")

FloatArray = NDArray[np.float32]


class ExportState(str, Enum):
    IDLE = "idle"
    PRIMING = "priming"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class EncoderFormat:
    container: str
    video_codec: str
    audio_codec: str
    content_type: str
    extension: str
    audio_rate: int | None = None


ENCODER_CANDIDATES: tuple[EncoderFormat, ...] = (
    EncoderFormat("mp4", "libx264", "aac", 'video/mp4;codecs="avc1.42E01E,mp4a.40.2"', ".mp4"),
    EncoderFormat("webm", "libvpx-vp9", "libopus", "video/webm;codecs=vp9,opus", ".webm", 48_000),
    EncoderFormat("webm", "libvpx", "libvorbis", "video/webm;codecs=vp8,vorbis", ".webm"),
)

DELIVERY_CONTAINER = "mp4"


def negotiate_format(
    candidates: Sequence[EncoderFormat],
    probe: Callable[[EncoderFormat], bool],
) -> EncoderFormat:
    """First candidate the probe accepts, in preference order."""

    for candidate in candidates:
        try:
            supported = probe(candidate)
        except Exception as exc:
            _LOGGER.debug("Probe failed for %s: %s", candidate.content_type, exc)
            supported = False
        if supported:
            _LOGGER.info("Recording as %s", candidate.content_type)
            return candidate
    raise EncoderUnavailableError("No supported recording format.")


_ENCODER_LINE = re.compile(r"^\s*[VAS][F.][S.][X.][B.][D.]\s+(\S+)")


def ffmpeg_encoder_probe(ffmpeg: str | None) -> Callable[[EncoderFormat], bool]:
    """Probe backed by ``ffmpeg -encoders``; run once, cached for all candidates."""

    names: set[str] = set()
    if ffmpeg is not None:
        try:
            proc = subprocess.run(
                [ffmpeg, "-hide_banner", "-encoders"], capture_output=True, text=True, timeout=10
            )
        except (OSError, subprocess.SubprocessError) as exc:
            _LOGGER.warning("Could not list ffmpeg encoders: %s", exc)
        else:
            for line in proc.stdout.splitlines():
                match = _ENCODER_LINE.match(line)
                if match:
                    names.add(match.group(1))

    def _probe(fmt: EncoderFormat) -> bool:
        return fmt.video_codec in names and fmt.audio_codec in names

    return _probe


_RESERVED = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')
_NON_WORD = re.compile(r"[\W_]+")


def artifact_filename(text: str, extension: str = ".mp4") -> str:
    """Filesystem-safe download name derived from the user's text."""

    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    stripped = _RESERVED.sub("", stripped).strip().lower()
    slug = _NON_WORD.sub("_", stripped).strip("_")[:32]
    return f"{slug or 'clip'}{extension}"


@dataclass(frozen=True)
class ExportResult:
    data: bytes
    filename: str
    content_type: str
    state: ExportState
    recorded_format: EncoderFormat
    duration: float
    frame_count: int
    audio_frames: int
    error: str | None = None

    @property
    def normalized(self) -> bool:
        return self.state is ExportState.DONE and self.recorded_format.container != DELIVERY_CONTAINER

    def save(self, directory: Path) -> Path:
        target = Path(directory) / self.filename
        target.write_bytes(self.data)
        return target


@dataclass(eq=False)
class ExportJob:
    plan: TimelinePlan
    frame_clock: ManualClock
    encoder_format: EncoderFormat
    mix_destination: VoiceMixer


class Encoder(Protocol):
    def encode(
        self,
        frames: Iterable[bytes],
        audio: FloatArray,
        fmt: EncoderFormat,
        *,
        width: int,
        height: int,
        fps: int,
        sample_rate: int,
        duration: float,
    ) -> bytes: ...


class FfmpegEncoder:
    """Muxes raw RGB frames (stdin) with a WAV of the offline mix."""

    def __init__(self, ffmpeg: str) -> None:
        self.ffmpeg = ffmpeg

    def build_command(
        self,
        audio_path: Path,
        output_path: Path,
        fmt: EncoderFormat,
        *,
        width: int,
        height: int,
        fps: int,
        duration: float,
    ) -> list[str]:
        command = [
            self.ffmpeg, "-hide_banner", "-loglevel", "error", "-y",
            "-f", "rawvideo", "-pix_fmt", "rgb24", "-s", f"{width}x{height}",
            "-framerate", str(fps), "-i", "pipe:0",
            "-i", str(audio_path),
            "-map", "0:v:0", "-map", "1:a:0",
            "-c:v", fmt.video_codec, "-pix_fmt", "yuv420p",
            "-c:a", fmt.audio_codec, "-b:a", "128k",
        ]
        if fmt.audio_rate is not None:
            command += ["-ar", str(fmt.audio_rate)]
        if fmt.container == "mp4":
            command += ["-movflags", "+faststart"]
        command += ["-t", f"{duration:.6f}", str(output_path)]
        return command

    def encode(
        self,
        frames: Iterable[bytes],
        audio: FloatArray,
        fmt: EncoderFormat,
        *,
        width: int,
        height: int,
        fps: int,
        sample_rate: int,
        duration: float,
    ) -> bytes:
        with tempfile.TemporaryDirectory(prefix="notetrail_export_") as tmp:
            tmp_dir = Path(tmp)
            audio_path = tmp_dir / "mix.wav"
            output_path = tmp_dir / f"clip{fmt.extension}"
            sf.write(audio_path, audio, sample_rate, subtype="FLOAT")  # type: ignore[reportUnknownMemberType]
            command = self.build_command(
                audio_path, output_path, fmt, width=width, height=height, fps=fps, duration=duration
            )
            with subprocess.Popen(
                command, stdin=subprocess.PIPE, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE
            ) as proc:
                assert proc.stdin is not None
                try:
                    for frame in frames:
                        proc.stdin.write(frame)
                except BrokenPipeError:
                    _LOGGER.debug("ffmpeg closed its input early")
                finally:
                    proc.stdin.close()
                stderr = proc.stderr.read() if proc.stderr else b""
                code = proc.wait()
            if code != 0:
                message = stderr.decode("utf-8", errors="replace").strip()
                raise ExportError(f"ffmpeg exit {code}: {message[-400:] or '(no stderr)'}")
            data = output_path.read_bytes() if output_path.exists() else b""
        if not data:
            raise ExportError("encoder produced 0 bytes")
        return data


class ExportPipeline:
    """Offline export with its own clock, mixer, session and trails.

    Audio and video are both exactly ``total_duration + release_tail`` long
    because they are rendered from the frame clock, never the wall clock.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        cache: PitchAssetCache | None = None,
        normalizer: Normalizer | None = None,
        *,
        encoder: Encoder | None = None,
        probe: Callable[[EncoderFormat], bool] | None = None,
        candidates: Sequence[EncoderFormat] = ENCODER_CANDIDATES,
    ) -> None:
        self.settings = settings or Settings()
        self.cache = cache or get_default_cache(self.settings)
        self.normalizer = normalizer
        self.candidates = tuple(candidates)
        self._encoder = encoder
        self._probe = probe
        self.state = ExportState.IDLE
        self.history: list[ExportState] = []

    def _transition(self, state: ExportState) -> None:
        _LOGGER.debug("Export %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _resolve_encoder(self) -> tuple[Encoder, Callable[[EncoderFormat], bool]]:
        if self._encoder is not None and self._probe is not None:
            return self._encoder, self._probe
        ffmpeg = resolve_ffmpeg(self.settings.ffmpeg_path)
        if ffmpeg is None and self._encoder is None:
            raise EncoderUnavailableError("Export requires ffmpeg on PATH or NOTETRAIL_FFMPEG_PATH.")
        probe = self._probe or ffmpeg_encoder_probe(ffmpeg)
        encoder = self._encoder or FfmpegEncoder(ffmpeg or "ffmpeg")
        return encoder, probe

    def _iter_frames(self, job: ExportJob, loop: VisualSyncLoop, renderer: RasterRenderer, count: int) -> Iterator[bytes]:
        fps = self.settings.fps
        length = job.plan.total_duration + self.settings.release_tail
        for index in range(count):
            # the last frame lands on the end of the tail and freezes the trails
            job.frame_clock.set(length if index == count - 1 else index / fps)
            loop.tick()
            yield renderer.frame_bytes()

    async def export(self, plan: TimelinePlan, *, text: str | None = None) -> ExportResult:
        self.history = []
        self._transition(ExportState.IDLE)
        try:
            self._transition(ExportState.PRIMING)
            encoder, probe = self._resolve_encoder()
            fmt = negotiate_format(self.candidates, probe)
            failed = await self.cache.preload(plan.pitch_ids())
            if failed:
                _LOGGER.warning("Exporting without %d pitch(es): %s", len(failed), ", ".join(failed))

            self._transition(ExportState.RECORDING)
            settings = self.settings
            length = plan.total_duration + settings.release_tail
            frame_count = max(1, math.ceil(length * settings.fps))
            audio_frames = int(round(length * settings.sample_rate))

            job = ExportJob(
                plan=plan,
                frame_clock=ManualClock(),
                encoder_format=fmt,
                mix_destination=VoiceMixer(settings.sample_rate, release_tail=settings.release_tail),
            )
            scheduler = AudioScheduler(
                job.mix_destination,
                self.cache,
                clock=job.frame_clock,
                lead=0.0,
                release_tail=settings.release_tail,
            )
            session = scheduler.start(plan)
            await scheduler.schedule(plan, session)
            audio = job.mix_destination.render_until(audio_frames, block_size=settings.block_size)

            renderer = RasterRenderer(settings.frame_width, settings.frame_height)
            loop = VisualSyncLoop(
                plan, session, job.frame_clock, renderer, release_tail=settings.release_tail
            )
            raw = await asyncio.to_thread(
                encoder.encode,
                self._iter_frames(job, loop, renderer, frame_count),
                audio,
                fmt,
                width=settings.frame_width,
                height=settings.frame_height,
                fps=settings.fps,
                sample_rate=settings.sample_rate,
                duration=length,
            )
        except BaseException:
            self._transition(ExportState.IDLE)
            raise

        self._transition(ExportState.FINALIZING)
        name_source = plan.source if text is None else text
        data, content_type, error = raw, fmt.content_type, None
        extension = fmt.extension
        if fmt.container != DELIVERY_CONTAINER:
            try:
                if self.normalizer is None:
                    raise ExportError("no normalizer configured")
                data = await self.normalizer.normalize(raw, fmt.content_type)
                content_type, extension = "video/mp4", ".mp4"
            except Exception as exc:
                _LOGGER.warning("[convert] fallback to raw container: %s", exc)
                data, error = raw, str(exc)

        state = ExportState.FAILED if error is not None else ExportState.DONE
        self._transition(state)
        return ExportResult(
            data=data,
            filename=artifact_filename(name_source, extension),
            content_type=content_type,
            state=state,
            recorded_format=fmt,
            duration=length,
            frame_count=frame_count,
            audio_frames=len(audio),
            error=error,
        )
