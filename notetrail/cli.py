from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .assets import get_default_cache
from .config import Settings
from .dial import DATE_FORMATS, MONTH_MODES, REGION_INFO, ZERO_POLICIES
from .export import ExportPipeline, ExportState
from .logging_utils import DEBUG_ENV, configure_logging, log_exception
from .mixer import VoiceMixer
from .normalizer import FfmpegNormalizer, Normalizer, RemoteNormalizer
from .output import DeviceOutput
from .player import LivePlayer
from .raster import RasterRenderer
from .share import MODES, ShareState
from .spinner import PlaybackProgress, Spinner, render_error
from .timeline import TimelinePlan

_LOGGER = logging.getLogger("notetrail.cli")
_CONSOLE = Console()
_PROGRESS_INTERVAL = 0.1


def _add_input_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("text", help="Text, date, phone number or clock string.")
    parser.add_argument("--mode", choices=MODES, default="text")
    parser.add_argument("--date-format", choices=DATE_FORMATS, default="DD-MM-YYYY")
    parser.add_argument("--region", choices=sorted(REGION_INFO), default="US")
    parser.add_argument("--month-mode", choices=MONTH_MODES, default="word")
    parser.add_argument("--zero-policy", choices=ZERO_POLICIES, default="chromatic")


def _state_from_args(args: argparse.Namespace) -> ShareState:
    return ShareState(
        mode=args.mode,
        text=args.text,
        date_format=args.date_format,
        region=args.region,
        month_mode=args.month_mode,
        zero_policy=args.zero_policy,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="notetrail")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logs on the console.")
    sub = parser.add_subparsers(dest="command", required=True)

    plan = sub.add_parser("plan", help="Print the timeline for an input.")
    _add_input_args(plan)

    play = sub.add_parser("play", help="Play an input through the audio device.")
    _add_input_args(play)
    play.add_argument("--snapshot", type=Path, default=None, help="Save the final dial frame (PNG).")

    export = sub.add_parser("export", help="Render an input to a video clip.")
    _add_input_args(export)
    export.add_argument("--output-dir", type=Path, default=Path("."))
    export.add_argument("--normalizer-url", type=str, default=None)

    share = sub.add_parser("share", help="Print the shareable query string.")
    _add_input_args(share)
    return parser


def _print_plan(plan: TimelinePlan) -> None:
    table = Table(title=escape(f"{plan.mode}: {plan.source!r}"))
    table.add_column("#", justify="right")
    table.add_column("kind")
    table.add_column("label")
    table.add_column("start", justify="right")
    table.add_column("dur", justify="right")
    table.add_column("pitches")
    table.add_column("nodes")
    for index, event in enumerate(plan.events):
        table.add_row(
            str(index),
            event.kind.value,
            event.label or "",
            f"{event.start_time:.3f}",
            f"{event.duration:.3f}",
            " ".join(event.pitches),
            " ".join(str(node) for node in event.nodes),
        )
    _CONSOLE.print(table)
    _CONSOLE.print(f"total {plan.total_duration:.3f}s  digest {plan.source_digest[:12]}")


async def _play_with_progress(player: LivePlayer, plan: TimelinePlan, progress: PlaybackProgress) -> bool:
    task = asyncio.create_task(player.play(plan))
    while not task.done():
        await asyncio.wait({task}, timeout=_PROGRESS_INTERVAL)
        if player.session is not None:
            progress.update(player.scheduler.clock.now() - player.session.epoch)
    return task.result()


def _play(plan: TimelinePlan, settings: Settings, snapshot: Path | None) -> int:
    output = DeviceOutput(VoiceMixer(settings.sample_rate, release_tail=settings.release_tail), block_size=settings.block_size)
    if not output.unlock():
        _CONSOLE.print("[bold red]Audio output unavailable.[/] Install notetrail\\[audio] or check your device.")
        return 1
    renderer = RasterRenderer(settings.frame_width, settings.frame_height) if snapshot else None
    player = LivePlayer(output, get_default_cache(settings), settings=settings, renderer=renderer)
    try:
        with PlaybackProgress(f"♪ {plan.mode}", plan.total_duration) as progress:
            completed = asyncio.run(_play_with_progress(player, plan, progress))
    finally:
        output.close()
    if renderer is not None and snapshot is not None:
        renderer.save(snapshot)
        _CONSOLE.print(f"Saved final frame to {snapshot}")
    return 0 if completed else 1


def _export(plan: TimelinePlan, settings: Settings, text: str, output_dir: Path, url: str | None) -> int:
    normalizer_url = url or settings.normalizer_url
    normalizer: Normalizer
    if normalizer_url:
        normalizer = RemoteNormalizer(normalizer_url, timeout=settings.normalizer_timeout)
    else:
        normalizer = FfmpegNormalizer(settings.ffmpeg_path)
    pipeline = ExportPipeline(settings, get_default_cache(settings), normalizer)
    with Spinner("Rendering clip"):
        result = asyncio.run(pipeline.export(plan, text=text))
    output_dir.mkdir(parents=True, exist_ok=True)
    path = result.save(output_dir)
    if result.state is ExportState.FAILED:
        _CONSOLE.print(f"[yellow]Conversion failed ({escape(result.error or '')}); saved raw {result.content_type}.[/]")
    _CONSOLE.print(f"Wrote {path} ({len(result.data)} bytes, {result.duration:.2f}s)")
    return 0


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.verbose:
            configure_logging(force=True, verbose=True)
        state = _state_from_args(args)
        settings = Settings.from_env()

        if args.command == "share":
            _CONSOLE.print(f"?{state.to_query()}")
            return 0

        plan = state.build_plan()
        if args.command == "plan":
            _print_plan(plan)
            return 0
        if args.command == "play":
            return _play(plan, settings, args.snapshot)
        if args.command == "export":
            return _export(plan, settings, args.text, args.output_dir, args.normalizer_url)

        parser.print_help()
        return 1
    except Exception as exc:
        debug = bool(os.environ.get(DEBUG_ENV))
        _LOGGER.warning("notetrail CLI failed: %s", exc, exc_info=debug)
        log_exception("notetrail CLI", exc)
        render_error("notetrail CLI", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
