"""Audio Scheduler: pre-schedules a plan's voices against the audio clock."""

from __future__ import annotations

import asyncio
import itertools
import logging
import math
from dataclasses import dataclass

from .assets import PitchAssetCache
from .clock import AudioClock
from .config import RELEASE_TAIL
from .mixer import Voice, VoiceMixer
from .timeline import TimelinePlan

_LOGGER = logging.getLogger("notetrail.scheduler")

SCHEDULE_LEAD = 0.12


@dataclass(eq=False)
class PlaybackSession:
    """One playback of a plan. ``epoch`` is audio-clock seconds of event time 0."""

    epoch: float
    run_id: int
    cancelled: bool = False
    voices_scheduled: int = 0
    voices_skipped: int = 0


def session_end(plan: TimelinePlan, session: PlaybackSession, release_tail: float = RELEASE_TAIL) -> float:
    return session.epoch + plan.total_duration + release_tail


class AudioScheduler:
    """Turns plans into mixer voices and owns the run-id counter.

    Starting a session invalidates the previous one; cancelling a session
    bumps the run id so every voice of that session is dropped or faded out
    by the mixer on its next block.
    """

    def __init__(
        self,
        mixer: VoiceMixer,
        cache: PitchAssetCache,
        *,
        clock: AudioClock | None = None,
        lead: float = SCHEDULE_LEAD,
        release_tail: float = RELEASE_TAIL,
    ) -> None:
        self.mixer = mixer
        self.cache = cache
        self.clock: AudioClock = clock or mixer.clock
        self.lead = lead
        self.release_tail = release_tail
        self._run_ids = itertools.count(1)
        self._run_id = 0
        self._current: PlaybackSession | None = None

    @property
    def current(self) -> PlaybackSession | None:
        return self._current

    def is_current(self, session: PlaybackSession) -> bool:
        return not session.cancelled and session.run_id == self._run_id

    def _bump_run(self) -> int:
        self._run_id = next(self._run_ids)
        self.mixer.set_active_run(self._run_id)
        return self._run_id

    def start(self, plan: TimelinePlan) -> PlaybackSession:
        previous = self._current
        if previous is not None and not previous.cancelled:
            previous.cancelled = True
            _LOGGER.debug("Session %d superseded", previous.run_id)
        run_id = self._bump_run()
        session = PlaybackSession(epoch=self.clock.now() + self.lead, run_id=run_id)
        self._current = session
        _LOGGER.info(
            "Session %d: %d events, %.2fs from t=%.3f",
            run_id,
            len(plan.events),
            plan.total_duration,
            session.epoch,
        )
        return session

    async def schedule(self, plan: TimelinePlan, session: PlaybackSession) -> int:
        """Queue every sounding event of ``plan`` for ``session``.

        Missing assets skip just their voice. If the session stopped being
        current while assets were loading, nothing is queued; if loading ran
        past the lead, the epoch moves to one lead after the current time.
        """

        failed = set(await self.cache.preload(plan.pitch_ids()))
        if not self.is_current(session):
            _LOGGER.debug("Dropping stale schedule for session %d", session.run_id)
            return 0

        earliest = self.clock.now() + self.lead
        if session.epoch < earliest:
            _LOGGER.info(
                "Session %d: assets loaded late, onset moved by %.3fs",
                session.run_id,
                earliest - session.epoch,
            )
            session.epoch = earliest

        for event in plan.events:
            if event.is_rest or not event.pitches:
                continue
            gain = 1.0 / math.sqrt(len(event.pitches))
            start_frame = self.mixer.frame_for(session.epoch + event.start_time)
            sustain_frames = self.mixer.frame_for(event.duration)
            for pitch in event.pitches:
                asset = None if pitch in failed else self.cache.peek(pitch)
                if asset is None:
                    session.voices_skipped += 1
                    continue
                self.mixer.schedule(
                    Voice(
                        samples=asset.samples,
                        start_frame=start_frame,
                        sustain_frames=sustain_frames,
                        run_id=session.run_id,
                        gain=gain,
                    )
                )
                session.voices_scheduled += 1
        if session.voices_skipped:
            _LOGGER.warning(
                "Session %d: skipped %d voice(s) with missing samples",
                session.run_id,
                session.voices_skipped,
            )
        return session.voices_scheduled

    async def play(self, plan: TimelinePlan) -> PlaybackSession:
        session = self.start(plan)
        await self.schedule(plan, session)
        return session

    def cancel(self, session: PlaybackSession) -> None:
        if session.cancelled:
            return
        session.cancelled = True
        if session.run_id == self._run_id:
            self._bump_run()
        _LOGGER.info("Session %d cancelled", session.run_id)

    def session_end(self, plan: TimelinePlan, session: PlaybackSession) -> float:
        return session_end(plan, session, self.release_tail)

    async def wait(self, plan: TimelinePlan, session: PlaybackSession, *, poll: float = 0.05) -> bool:
        """Sleep until the session completes; returns False if it was cancelled."""

        end = self.session_end(plan, session)
        while not session.cancelled and self.clock.now() < end:
            await asyncio.sleep(poll)
        return not session.cancelled
