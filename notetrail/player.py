"""Live playback: the audio scheduler and the visual loop driven by one clock."""

from __future__ import annotations

import asyncio
import logging

from .assets import PitchAssetCache
from .config import Settings
from .output import DeviceOutput
from .scheduler import AudioScheduler, PlaybackSession
from .timeline import TimelinePlan
from .visual import Renderer, VisualSyncLoop

_LOGGER = logging.getLogger("notetrail.player")


class LivePlayer:
    """Plays plans through a :class:`DeviceOutput`.

    Starting while the output is still locked defers playback; the plan is
    started as soon as the output reports a successful unlock. Only the
    latest deferred plan is kept.
    """

    def __init__(
        self,
        output: DeviceOutput,
        cache: PitchAssetCache,
        *,
        settings: Settings | None = None,
        renderer: Renderer | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.output = output
        self.renderer = renderer
        self.scheduler = AudioScheduler(
            output.mixer,
            cache,
            lead=self.settings.schedule_lead,
            release_tail=self.settings.release_tail,
        )
        self.session: PlaybackSession | None = None
        self.plan: TimelinePlan | None = None
        self.visual: VisualSyncLoop | None = None
        self._visual_task: asyncio.Task[bool] | None = None
        self._deferred: TimelinePlan | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._listening = False
        self._deferred_task: asyncio.Task[PlaybackSession | None] | None = None
        self.started = asyncio.Event()

    @property
    def deferred(self) -> TimelinePlan | None:
        return self._deferred

    async def start(self, plan: TimelinePlan) -> PlaybackSession | None:
        """Start ``plan``; returns None when playback was deferred."""

        self._loop = asyncio.get_running_loop()
        if self.output.locked:
            self._deferred = plan
            self.started.clear()
            if not self._listening:
                self.output.on_unlock(self._on_unlock)
                self._listening = True
            _LOGGER.info("Audio locked; playback deferred until unlock")
            return None

        self._deferred = None
        pending = self._deferred_task
        if pending is not None and pending is not asyncio.current_task():
            pending.cancel()
            self._deferred_task = None
        self._cancel_session()
        session = self.scheduler.start(plan)
        self.session = session
        self.plan = plan
        await self.scheduler.schedule(plan, session)
        if self.renderer is not None and self.scheduler.is_current(session):
            self.visual = VisualSyncLoop(
                plan,
                session,
                self.scheduler.clock,
                self.renderer,
                release_tail=self.settings.release_tail,
            )
            self._visual_task = asyncio.create_task(self.visual.run(self.settings.fps))
        self.started.set()
        return session

    def _on_unlock(self) -> None:
        self._listening = False
        loop = self._loop
        if self._deferred is None or loop is None:
            return
        loop.call_soon_threadsafe(self._start_deferred)

    def _start_deferred(self) -> None:
        plan = self._deferred
        if plan is None or self._loop is None:
            return
        task = self._loop.create_task(self.start(plan))
        task.add_done_callback(self._deferred_done)
        self._deferred_task = task

    def _deferred_done(self, task: asyncio.Task[PlaybackSession | None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _LOGGER.warning("Deferred playback failed: %s", exc, exc_info=exc)
            # release play(); wait() re-raises the failure
            self.started.set()

    def _cancel_session(self) -> None:
        if self.session is not None:
            self.scheduler.cancel(self.session)

    def stop(self) -> None:
        """Cancel the current session and any pending deferred start.

        A ``play()`` still waiting on a deferred start returns False. The
        visual loop exits on its next tick.
        """

        pending = self._deferred is not None
        self._deferred = None
        task, self._deferred_task = self._deferred_task, None
        if task is not None and not task.done():
            task.cancel()
            pending = True
        self._cancel_session()
        if pending:
            self.started.set()

    async def wait(self) -> bool:
        """Wait for the current session; True if it ran to completion."""

        task, self._deferred_task = self._deferred_task, None
        if task is not None:
            await task
        if self.session is None or self.plan is None:
            return False
        completed = await self.scheduler.wait(self.plan, self.session)
        if self._visual_task is not None:
            await self._visual_task
        return completed

    async def play(self, plan: TimelinePlan) -> bool:
        if await self.start(plan) is None:
            await self.started.wait()
        return await self.wait()
