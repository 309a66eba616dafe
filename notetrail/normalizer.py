"""Container normalization: remote HTTP service or a local ffmpeg recipe."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Protocol

import httpx

from .errors import ConversionError

_LOGGER = logging.getLogger("notetrail.normalizer")

DELIVERY_CONTENT_TYPE = "video/mp4"

# Portrait 1080x1920 with an 8px margin, 30 fps, H.264 + AAC, -14 LUFS,
# fragmented so it can be written to a non-seekable pipe.
NORMALIZE_OUTPUT_ARGS: tuple[str, ...] = (
    "-vf", "scale=1064:1904:force_original_aspect_ratio=decrease,"
    "pad=1080:1920:(1080-iw)/2:(1920-ih)/2,setsar=1",
    "-r", "30",
    "-c:v", "libx264", "-profile:v", "high", "-level", "4.1", "-pix_fmt", "yuv420p",
    "-b:v", "6M", "-maxrate", "8M", "-bufsize", "12M",
    "-c:a", "aac", "-b:a", "128k", "-ar", "44100",
    "-af", "loudnorm=I=-14:TP=-1.5:LRA=11",
    "-movflags", "+frag_keyframe+empty_moov",
    "-metadata:s:v:0", "rotate=0",
    "-f", "mp4", "pipe:1",
)


def resolve_ffmpeg(configured: str | None = None) -> str | None:
    """Configured path, then ``NOTETRAIL_FFMPEG_PATH``/``FFMPEG_PATH``, then PATH."""

    for candidate in (
        configured,
        os.environ.get("NOTETRAIL_FFMPEG_PATH"),
        os.environ.get("FFMPEG_PATH"),
    ):
        value = (candidate or "").strip().strip('"')
        if value and Path(value).exists():
            return value
    return shutil.which("ffmpeg")


def input_format_for(content_type: str) -> str | None:
    lowered = content_type.lower()
    if "mp4" in lowered:
        return "mp4"
    if "webm" in lowered:
        return "webm"
    return None


class Normalizer(Protocol):
    async def normalize(self, data: bytes, content_type: str) -> bytes: ...


class RemoteNormalizer:
    """POSTs the recorded bytes to a conversion service."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def normalize(self, data: bytes, content_type: str) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    content=data,
                    headers={"Content-Type": content_type or "application/octet-stream"},
                )
        except httpx.HTTPError as exc:
            raise ConversionError(f"normalizer request failed: {exc}") from exc
        if not response.is_success:
            raise ConversionError(f"server convert failed: {response.status_code}")
        if not response.content:
            raise ConversionError("server returned empty body")
        return response.content


class FfmpegNormalizer:
    """Runs the portrait MP4 recipe with a local ffmpeg binary."""

    def __init__(self, ffmpeg: str | None = None) -> None:
        self._ffmpeg = ffmpeg

    def build_command(self, ffmpeg: str, content_type: str) -> list[str]:
        command = [ffmpeg, "-hide_banner", "-loglevel", "warning"]
        input_format = input_format_for(content_type)
        if input_format:
            command += ["-f", input_format]
        command += ["-i", "pipe:0", *NORMALIZE_OUTPUT_ARGS]
        return command

    async def normalize(self, data: bytes, content_type: str) -> bytes:
        ffmpeg = resolve_ffmpeg(self._ffmpeg)
        if ffmpeg is None:
            raise ConversionError("No working ffmpeg binary found.")
        command = self.build_command(ffmpeg, content_type)
        try:
            proc = await asyncio.to_thread(subprocess.run, command, input=data, capture_output=True)
        except OSError as exc:
            raise ConversionError(f"ffmpeg failed to start: {exc}") from exc
        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", errors="replace").strip()
            raise ConversionError(f"ffmpeg exit {proc.returncode}: {stderr[-400:] or '(no stderr)'}")
        if not proc.stdout:
            raise ConversionError("ffmpeg produced 0 bytes")
        _LOGGER.debug("Normalized %d -> %d bytes", len(data), len(proc.stdout))
        return proc.stdout
