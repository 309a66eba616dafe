"""Timeline Builder: maps tokens to a contiguous, deterministic TimelinePlan."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Final, Literal

from .pitches import (
    PitchId,
    dial_node,
    pitch_class,
    place_in_register,
    unique_pitches,
)
from .tokenizer import Token, sanitize_text, tokenize

_LOGGER = logging.getLogger("notetrail.timeline")

RULES_VERSION: Final[str] = "text-v1"
TEXT_TONIC_PC: Final[int] = 9  # A minor
TEXT_CHANNEL: Final[str] = "text"

DurationBucket = Literal["default", "space", "micro", "tick"]


class EventKind(str, Enum):
    MELODY = "melody"
    CHORD = "chord"
    REST = "rest"


@dataclass(frozen=True, slots=True)
class Event:
    """One scheduled unit with absolute start time and duration (seconds)."""

    kind: EventKind
    pitches: tuple[PitchId, ...]
    label: str | None
    start_time: float
    duration: float
    nodes: tuple[int, ...] = ()
    channel: str = TEXT_CHANNEL
    span: tuple[int, int] | None = None

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    @property
    def is_rest(self) -> bool:
        return self.kind is EventKind.REST


@dataclass(frozen=True, slots=True)
class TimelinePlan:
    """The ordered, gap-free sequence of events derived from one input."""

    events: tuple[Event, ...]
    total_duration: float
    source_digest: str
    mode: str = "text"
    source: str = ""
    # Event indices at which every visual trail starts over.
    trail_resets: tuple[int, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.events

    def pitch_ids(self) -> tuple[PitchId, ...]:
        return unique_pitches(event.pitches for event in self.events)

    def channels(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for event in self.events:
            if event.nodes:
                seen.setdefault(event.channel, None)
        return tuple(seen)


@dataclass(frozen=True, slots=True)
class PlannedStep:
    """An event before start times are assigned."""

    kind: EventKind
    duration: float
    pitches: tuple[PitchId, ...] = ()
    label: str | None = None
    nodes: tuple[int, ...] = ()
    channel: str = TEXT_CHANNEL
    span: tuple[int, int] | None = None
    restarts_trail: bool = False


def source_digest(mode: str, source: str, options: Mapping[str, str] | None = None) -> str:
    items = sorted((options or {}).items())
    payload = "\x1f".join([mode, source, *(f"{k}={v}" for k, v in items)])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def plan_from_steps(
    steps: Iterable[PlannedStep],
    *,
    mode: str,
    source: str,
    options: Mapping[str, str] | None = None,
) -> TimelinePlan:
    """Assign start times with a running cursor so the plan has no gaps."""

    cursor = 0.0
    events: list[Event] = []
    resets: list[int] = []
    for step in steps:
        if step.restarts_trail:
            resets.append(len(events))
        events.append(
            Event(
                kind=step.kind,
                pitches=step.pitches,
                label=step.label,
                start_time=cursor,
                duration=step.duration,
                nodes=step.nodes,
                channel=step.channel,
                span=step.span,
            )
        )
        cursor += step.duration
    return TimelinePlan(
        events=tuple(events),
        total_duration=cursor,
        source_digest=source_digest(mode, source, options),
        mode=mode,
        source=source,
        trail_resets=tuple(resets),
    )


# -----------------------------------------------------------------------------
# Text mapping rules
# -----------------------------------------------------------------------------

LETTER_SCALE: Final[tuple[str, ...]] = ("A", "B", "C", "D", "E", "F", "G")

SINGLE_MAP: Mapping[int, tuple[str, ...]] = MappingProxyType(
    {
        1: ("A", "C", "E"), 2: ("B", "D", "F"), 3: ("C", "E", "G"),
        4: ("D", "F", "A"), 5: ("E", "G", "B"), 6: ("F", "A", "C"),
        7: ("G", "B", "D"), 8: ("A", "C", "E", "G"), 9: ("C", "E", "G", "B"),
    }
)
TEEN_MAP: Mapping[int, tuple[str, ...]] = MappingProxyType(
    {
        10: ("A", "C", "E", "B"), 11: ("B", "D", "F", "A"), 12: ("C", "E", "G", "A"),
        13: ("D", "F", "A", "E"), 14: ("E", "G", "B", "D"), 15: ("F", "A", "C", "E"),
        16: ("G", "B", "D", "E"), 17: ("A", "C", "E", "B"), 18: ("C", "E", "G", "F"),
        19: ("E", "G", "B", "F"),
    }
)
TENS_MAP: Mapping[int, tuple[str, ...]] = MappingProxyType(
    {
        20: ("C", "E", "A", "D"), 30: ("E", "A", "C"), 40: ("F", "A", "D"),
        50: ("G", "B", "E"), 60: ("C", "F", "A"), 70: ("D", "G", "B"),
        80: ("G", "C", "E"), 90: ("B", "E", "G"),
    }
)
CADENCE_A: Final[tuple[str, ...]] = ("E", "G", "B")
CADENCE_B: Final[tuple[str, ...]] = ("C", "E", "A")

SOFT_TICK: Final[tuple[PitchId, ...]] = ("A3",)
HIGH_TICK: Final[tuple[PitchId, ...]] = ("A4",)

# Symbol -> sequence of (chord pitch classes or None for a micro rest, label)
SYMBOL_MAP: Mapping[str, tuple[tuple[tuple[str, ...] | None, str], ...]] = MappingProxyType(
    {
        "?": ((("G", "B", "D"), "?"),),
        "!": ((("E", "G", "B"), "!"),),
        "%": ((("E", "G", "B"), "%-1"), (("C", "E", "A"), "%-2")),
        "/": ((("E", "G", "B"), "/"),),
        "+": ((("D", "F", "A"), "+"),),
        "=": ((("C", "E", "A"), "="), (None, "eq-rest")),
        "#": ((("G", "B", "D"), "#"), (None, "hash-rest")),
        "$": ((("F", "A", "C", "E"), "$"), (None, "dlr-rest")),
    }
)
PRE_SYMBOL_BREATH: Final[frozenset[str]] = frozenset("%/=@#$")
SPACE_DASH_LABELS: Final[frozenset[str]] = frozenset({"space", "-"})


@dataclass(frozen=True)
class MappingRules:
    """Fixed duration buckets for the text mapping (seconds)."""

    default: float = 0.30
    space: float = 0.25
    micro: float = 0.10
    tick: float = 0.125
    version: str = RULES_VERSION

    def duration(self, bucket: DurationBucket) -> float:
        return {
            "default": self.default,
            "space": self.space,
            "micro": self.micro,
            "tick": self.tick,
        }[bucket]


DEFAULT_RULES: Final[MappingRules] = MappingRules()


def _text_nodes(pitches: Sequence[PitchId]) -> tuple[int, ...]:
    nodes: dict[int, None] = {}
    for pitch in pitches:
        nodes.setdefault(dial_node(pitch_class(pitch), TEXT_TONIC_PC), None)
    return tuple(nodes)


@dataclass
class _TextPlanBuilder:
    """Per-run builder; the cadence alternation lives and dies with it."""

    rules: MappingRules
    steps: list[PlannedStep] = field(default_factory=list)
    cadence_count: int = 0

    # -- step helpers ---------------------------------------------------------

    def _sounding(
        self,
        kind: EventKind,
        pitches: tuple[PitchId, ...],
        label: str | None,
        span: tuple[int, int],
        bucket: DurationBucket = "default",
    ) -> None:
        self.steps.append(
            PlannedStep(
                kind=kind,
                duration=self.rules.duration(bucket),
                pitches=pitches,
                label=label,
                nodes=_text_nodes(pitches),
                span=span,
            )
        )

    def chord(self, pcs: Sequence[str], label: str, span: tuple[int, int]) -> None:
        self._sounding(EventKind.CHORD, place_in_register(pcs), label, span)

    def tick(self, label: str | None, span: tuple[int, int]) -> None:
        self._sounding(EventKind.CHORD, SOFT_TICK, label, span, bucket="tick")

    def rest(self, label: str, span: tuple[int, int]) -> None:
        bucket: DurationBucket = "space" if label in SPACE_DASH_LABELS else "micro"
        self.steps.append(
            PlannedStep(kind=EventKind.REST, duration=self.rules.duration(bucket), label=label, span=span)
        )

    def digit(self, value: int, span: tuple[int, int]) -> None:
        self.chord(SINGLE_MAP.get(value, SINGLE_MAP[1]), str(value), span)

    def cadence(self, span: tuple[int, int]) -> None:
        shape = CADENCE_A if self.cadence_count % 2 == 0 else CADENCE_B
        self.cadence_count += 1
        self.chord(shape, "100", span)

    # -- token handlers -------------------------------------------------------

    def letter(self, token: Token) -> None:
        letter = token.raw.upper()
        pc = LETTER_SCALE[(ord(letter) - ord("A")) % len(LETTER_SCALE)]
        octave = 3 if pc in ("A", "B") else 4
        span = (token.position, token.position + 1)
        self._sounding(EventKind.MELODY, (f"{pc}{octave}",), token.raw, span)

    def below_hundred(self, value: int, start: int, end: int) -> None:
        """Teen, tens, tens+unit or single digit for the last two places of a run."""

        if value == 0:
            return
        if 10 <= value <= 19:
            self.chord(TEEN_MAP[value], str(value), (start, end))
        elif value >= 20 and value % 10 == 0:
            self.chord(TENS_MAP[value], str(value), (start, end))
        elif value > 20:
            tens, unit = divmod(value, 10)
            self.chord(TENS_MAP[tens * 10], str(tens * 10), (start, end - 1))
            self.digit(unit, (end - 1, end))
        else:
            self.digit(value, (start, end))

    def digit_run(self, run: str, start: int) -> None:
        end = start + len(run)
        if len(run) > 3:
            for offset, ch in enumerate(run):
                span = (start + offset, start + offset + 1)
                if ch == "0":
                    self.tick(None, span)
                else:
                    self.digit(int(ch), span)
            return

        if run == "100":
            self.cadence((start, end))
            self.rest("cad-rest", (end, end))
            return

        if len(run) == 3:
            lead = int(run[0])
            if run[0] != "1" and lead != 0:
                self.digit(lead, (start, start + 1))
            self.cadence((start, start + 1))
            self.below_hundred(int(run[1:]), start + 1, end)
            return

        value = int(run)
        if len(run) == 2 and (10 <= value <= 19 or value >= 20):
            self.below_hundred(value, start, end)
            return
        self.digit(value, (start, end))

    def symbol(self, token: Token) -> None:
        ch = token.raw
        here = (token.position, token.position + 1)
        if ch in PRE_SYMBOL_BREATH:
            self.rest("pre-sym", (token.position, token.position))

        if ch in (".", ":"):
            self.tick(ch, here)
        elif ch == "@":
            self._sounding(EventKind.CHORD, HIGH_TICK, "@A4", here)
            self.rest("at-rest", (here[1], here[1]))
        elif ch in SYMBOL_MAP:
            for pcs, label in SYMBOL_MAP[ch]:
                if pcs is None:
                    self.rest(label, (here[1], here[1]))
                else:
                    self.chord(pcs, label, here)
        else:
            # Unknown symbols still keep their place in time.
            self.rest(ch, here)

    def separator(self, token: Token) -> None:
        ch = token.raw
        here = (token.position, token.position + 1)
        if ch.isspace():
            self.rest("space", here)
        elif ch == "'":
            self.rest("apost", here)
        else:
            self.rest(ch, here)

    def feed(self, tokens: Sequence[Token]) -> None:
        index = 0
        while index < len(tokens):
            token = tokens[index]
            match token.category:
                case "letter":
                    self.letter(token)
                    index += 1
                case "digit":
                    stop = index
                    while stop < len(tokens) and tokens[stop].category == "digit":
                        stop += 1
                    run = "".join(t.raw for t in tokens[index:stop])
                    self.digit_run(run, token.position)
                    index = stop
                case "symbol" if token.raw == "." and _is_ellipsis(tokens, index):
                    for dot in tokens[index : index + 3]:
                        self.tick(".", (dot.position, dot.position + 1))
                    index += 3
                case "symbol":
                    self.symbol(token)
                    index += 1
                case _:
                    self.separator(token)
                    index += 1


def _is_ellipsis(tokens: Sequence[Token], index: int) -> bool:
    window = tokens[index : index + 3]
    return len(window) == 3 and all(t.raw == "." for t in window)


def build_plan(
    tokens: Sequence[Token],
    rules: MappingRules = DEFAULT_RULES,
    *,
    source: str | None = None,
) -> TimelinePlan:
    """Build a text-mode plan from tokens.

    The mapping is deterministic and stateless across calls: alternation
    counters start fresh on every call.
    """

    text = source if source is not None else "".join(t.raw for t in tokens)
    builder = _TextPlanBuilder(rules=rules)
    builder.feed(tokens)
    plan = plan_from_steps(builder.steps, mode="text", source=text, options={"rules": rules.version})
    _LOGGER.debug("Built text plan: %d events, %.3fs", len(plan.events), plan.total_duration)
    return plan


def build_text_plan(raw: str, rules: MappingRules = DEFAULT_RULES) -> TimelinePlan:
    text = sanitize_text(raw)
    return build_plan(tokenize(text), rules, source=text)
