"""Visual Sync Loop: trails, caption highlight and dial nodes driven by the audio clock."""

from __future__ import annotations

import asyncio
import logging
import math
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Protocol

from .clock import AudioClock
from .config import RELEASE_TAIL
from .scheduler import PlaybackSession
from .timeline import Event, TimelinePlan

_LOGGER = logging.getLogger("notetrail.visual")


@dataclass(frozen=True, slots=True)
class TrailPolicy:
    max_nodes: int
    ttl: float | None = None  # seconds; None keeps nodes until the trail resets


TRAIL_POLICIES: Mapping[str, TrailPolicy] = MappingProxyType(
    {
        "text": TrailPolicy(max_nodes=24, ttl=2.4),
        "date": TrailPolicy(max_nodes=64),
        "phone": TrailPolicy(max_nodes=64),
        "clock": TrailPolicy(max_nodes=4096),
    }
)


@dataclass(frozen=True, slots=True)
class TrailNode:
    node: int
    expires_at: float


class TrailState:
    """Recently activated nodes of one channel, oldest first."""

    def __init__(self, policy: TrailPolicy) -> None:
        self.policy = policy
        self._nodes: deque[TrailNode] = deque(maxlen=policy.max_nodes)
        self.frozen = False

    def append(self, node: int, now: float) -> None:
        expires = math.inf if self.policy.ttl is None else now + self.policy.ttl
        self._nodes.append(TrailNode(node, expires))

    def expire(self, now: float) -> None:
        if self.frozen:
            return
        while self._nodes and self._nodes[0].expires_at <= now:
            self._nodes.popleft()

    def freeze(self) -> None:
        self._nodes = deque(
            (TrailNode(item.node, math.inf) for item in self._nodes), maxlen=self.policy.max_nodes
        )
        self.frozen = True

    def clear(self) -> None:
        self._nodes.clear()

    def nodes(self) -> tuple[int, ...]:
        return tuple(item.node for item in self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)


class Renderer(Protocol):
    def begin_frame(self, elapsed: float) -> None: ...

    def draw_segment(self, channel: str, start: int, end: int) -> None: ...

    def draw_node(self, channel: str, node: int, *, active: bool) -> None: ...

    def draw_caption(self, text: str, highlight: tuple[int, int] | None) -> None: ...

    def end_frame(self) -> None: ...


@dataclass(frozen=True, slots=True)
class CaptionSpan:
    start_time: float
    end_time: float
    span: tuple[int, int] | None
    label: str | None


def caption_spans(plan: TimelinePlan) -> list[CaptionSpan]:
    """One highlight span per event, in playback order."""

    return [CaptionSpan(e.start_time, e.end_time, e.span, e.label) for e in plan.events]


class VisualSyncLoop:
    """Frame-rate loop that only reads the audio clock.

    Every tick processes all events whose start has been crossed since the
    previous tick, so a late frame catches up rather than skipping events.
    """

    def __init__(
        self,
        plan: TimelinePlan,
        session: PlaybackSession,
        clock: AudioClock,
        renderer: Renderer,
        *,
        policy: TrailPolicy | None = None,
        release_tail: float = RELEASE_TAIL,
    ) -> None:
        self.plan = plan
        self.session = session
        self.clock = clock
        self.renderer = renderer
        self.release_tail = release_tail
        self.policy = policy or TRAIL_POLICIES.get(plan.mode, TRAIL_POLICIES["text"])
        self.trails: dict[str, TrailState] = {}
        self.processed = 0
        self.highlight: tuple[int, int] | None = None
        self.active: Event | None = None
        self.completed = False
        self.stopped = False
        self._resets = frozenset(plan.trail_resets)

    @property
    def running(self) -> bool:
        return not (self.completed or self.stopped)

    def trail(self, channel: str) -> TrailState:
        state = self.trails.get(channel)
        if state is None:
            state = TrailState(self.policy)
            self.trails[channel] = state
        return state

    def _activate(self, event: Event, at: float) -> None:
        if self.processed in self._resets:
            for state in self.trails.values():
                state.clear()
        if event.nodes:
            trail = self.trail(event.channel)
            for node in event.nodes:
                trail.append(node, at)
        if event.span is not None:
            self.highlight = event.span
        self.active = event
        self.processed += 1

    def tick(self) -> bool:
        """Advance to the current audio time and draw one frame.

        Returns False once the loop has completed or been cancelled.
        """

        if not self.running:
            return False
        if self.session.cancelled:
            self.stopped = True
            _LOGGER.debug("Visual loop for session %d stopped", self.session.run_id)
            return False

        elapsed = self.clock.now() - self.session.epoch
        events = self.plan.events
        while self.processed < len(events) and events[self.processed].start_time <= elapsed:
            event = events[self.processed]
            self._activate(event, event.start_time)

        if self.active is not None and elapsed >= self.active.end_time:
            self.active = None
        for state in self.trails.values():
            state.expire(elapsed)

        if elapsed >= self.plan.total_duration + self.release_tail:
            for state in self.trails.values():
                state.freeze()
            self.completed = True
            self.draw(elapsed)
            return False

        self.draw(elapsed)
        return True

    def draw(self, elapsed: float) -> None:
        active_nodes = set(self.active.nodes) if self.active is not None else set()
        active_channel = self.active.channel if self.active is not None else None
        self.renderer.begin_frame(elapsed)
        for channel, state in self.trails.items():
            nodes = state.nodes()
            for start, end in zip(nodes, nodes[1:]):
                self.renderer.draw_segment(channel, start, end)
            for node in dict.fromkeys(nodes):
                self.renderer.draw_node(
                    channel, node, active=channel == active_channel and node in active_nodes
                )
        self.renderer.draw_caption(self.plan.source, self.highlight)
        self.renderer.end_frame()

    async def run(self, fps: float = 30.0) -> bool:
        """Tick on a timer until completion (True) or cancellation (False)."""

        interval = 1.0 / fps
        while self.tick():
            await asyncio.sleep(interval)
        return self.completed
