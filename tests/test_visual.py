import pytest

from notetrail.clock import ManualClock
from notetrail.dial import build_clock_plan
from notetrail.scheduler import PlaybackSession
from notetrail.timeline import build_text_plan
from notetrail.visual import (
    TRAIL_POLICIES,
    TrailPolicy,
    TrailState,
    VisualSyncLoop,
    caption_spans,
)


class _RecordingRenderer:
    def __init__(self) -> None:
        self.frames: list[dict] = []
        self._frame: dict | None = None

    def begin_frame(self, elapsed: float) -> None:
        self._frame = {"elapsed": elapsed, "segments": [], "nodes": [], "caption": None}

    def draw_segment(self, channel: str, start: int, end: int) -> None:
        self._frame["segments"].append((channel, start, end))

    def draw_node(self, channel: str, node: int, *, active: bool) -> None:
        self._frame["nodes"].append((channel, node, active))

    def draw_caption(self, text: str, highlight: tuple[int, int] | None) -> None:
        self._frame["caption"] = (text, highlight)

    def end_frame(self) -> None:
        self.frames.append(self._frame)
        self._frame = None


class _SteppingClock:
    def __init__(self, step: float) -> None:
        self.step = step
        self.t = 0.0

    def now(self) -> float:
        self.t += self.step
        return self.t


def _loop(text: str = "AB1", **kwargs) -> tuple[VisualSyncLoop, ManualClock, _RecordingRenderer]:
    clock = ManualClock(1.0)
    renderer = _RecordingRenderer()
    session = PlaybackSession(epoch=1.0, run_id=1)
    return VisualSyncLoop(build_text_plan(text), session, clock, renderer, **kwargs), clock, renderer


def test_trail_state_caps_and_expires() -> None:
    state = TrailState(TrailPolicy(max_nodes=3, ttl=1.0))
    for i, node in enumerate([1, 2, 3, 4]):
        state.append(node, float(i))
    assert state.nodes() == (2, 3, 4)
    state.expire(2.5)
    assert state.nodes() == (3, 4)
    state.freeze()
    state.expire(100.0)
    assert state.nodes() == (3, 4)


def test_first_tick_activates_the_first_event() -> None:
    loop, _, renderer = _loop()
    assert loop.tick()
    assert loop.processed == 1
    assert loop.trail("text").nodes() == (0,)
    assert renderer.frames[-1]["caption"] == ("AB1", (0, 1))


def test_late_frame_catches_up_on_every_crossed_event() -> None:
    loop, clock, renderer = _loop()
    loop.tick()
    clock.set(1.7)

    assert loop.tick()

    assert loop.processed == 3
    assert loop.trail("text").nodes() == (0, 2, 0, 9, 1)
    assert loop.highlight == (2, 3)
    frame = renderer.frames[-1]
    assert len(frame["segments"]) == 4
    active = {node for _, node, is_active in frame["nodes"] if is_active}
    assert active == {0, 9, 1}


def test_nodes_expire_after_their_ttl() -> None:
    loop, clock, _ = _loop(policy=TrailPolicy(max_nodes=24, ttl=0.45))
    clock.set(1.7)
    loop.tick()
    assert loop.trail("text").nodes() == (2, 0, 9, 1)


def test_completion_freezes_the_trail() -> None:
    loop, clock, renderer = _loop()
    clock.set(2.2)

    assert not loop.tick()

    assert loop.completed
    assert not loop.running
    assert loop.active is None
    assert loop.trail("text").nodes() == (0, 2, 0, 9, 1)
    drawn = len(renderer.frames)
    assert not loop.tick()
    assert len(renderer.frames) == drawn


def test_cancelled_session_stops_the_loop() -> None:
    loop, _, renderer = _loop()
    loop.tick()
    loop.session.cancelled = True

    assert not loop.tick()
    assert loop.stopped
    assert not loop.completed
    assert len(renderer.frames) == 1


@pytest.mark.asyncio
async def test_run_until_complete() -> None:
    renderer = _RecordingRenderer()
    plan = build_text_plan("AB1")
    loop = VisualSyncLoop(plan, PlaybackSession(epoch=0.0, run_id=1), _SteppingClock(0.05), renderer)

    assert await loop.run(fps=1000)
    assert loop.processed == len(plan.events)
    assert len(renderer.frames) > 10


def test_trail_resets_at_each_pass() -> None:
    plan = build_clock_plan("12/25")
    clock = ManualClock(0.0)
    loop = VisualSyncLoop(plan, PlaybackSession(epoch=0.0, run_id=1), clock, _RecordingRenderer())
    assert loop.policy == TRAIL_POLICIES["clock"]

    clock.set(0.9)
    loop.tick()
    first_pass = sum((e.nodes for e in plan.events[:4] if e.channel == "major"), ())
    assert loop.trail("major").nodes() == first_pass

    clock.set(1.1)
    loop.tick()
    assert loop.trail("major").nodes() == plan.events[4].nodes


def test_caption_spans_follow_events() -> None:
    spans = caption_spans(build_text_plan("A B"))
    assert [span.span for span in spans] == [(0, 1), (1, 2), (2, 3)]
    assert [span.label for span in spans] == ["A", "space", "B"]
    assert spans[1].start_time == pytest.approx(0.3)
    assert spans[1].end_time == pytest.approx(0.55)
