"""Circle modes: dates, phone numbers and the key clock on the degree dial.

All three modes share a fixed 0.25 s step, alternate between B♭ major and
C minor, and draw each key on its own channel of the dial.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Final, Literal

from .pitches import PitchId, dial_node, midi_to_pitch
from .timeline import EventKind, PlannedStep, TimelinePlan, plan_from_steps

_LOGGER = logging.getLogger("notetrail.dial")

KeyName = Literal["BbMajor", "Cminor"]
DateFormat = Literal["DD-MM-YYYY", "YYYY-MM-DD", "MM-DD-YYYY"]
MonthMode = Literal["word", "number"]
ZeroPolicy = Literal["chromatic", "rest"]

DATE_FORMATS: Final[tuple[str, ...]] = ("DD-MM-YYYY", "YYYY-MM-DD", "MM-DD-YYYY")
MONTH_MODES: Final[tuple[str, ...]] = ("word", "number")
ZERO_POLICIES: Final[tuple[str, ...]] = ("chromatic", "rest")

STEP_SECONDS: Final[float] = 0.25
DATE_STEPS: Final[int] = 32   # 8 s
PHONE_STEPS: Final[int] = 40  # 10 s
NOTES_PER_KEY: Final[int] = 8
CLOCK_SEGMENTS: Final[tuple[KeyName, ...]] = ("BbMajor", "BbMajor", "Cminor", "Cminor")

KEY_TONIC_PC: Mapping[str, int] = MappingProxyType({"BbMajor": 10, "Cminor": 0})
KEY_CHANNEL: Mapping[str, str] = MappingProxyType({"BbMajor": "major", "Cminor": "minor"})

MAJOR_DEG: Mapping[str, int] = MappingProxyType(
    {"1": 0, "2": 2, "3": 4, "4": 5, "5": 7, "6": 9, "7": 11}
)
MINOR_DEG: Mapping[str, int] = MappingProxyType(
    {"1": 0, "2": 2, "3": 3, "4": 5, "5": 7, "6": 8, "7": 10}
)

# Altered degree -> (diatonic degree it alters, semitone shift)
_ALTERED: Mapping[str, tuple[str, int]] = MappingProxyType(
    {"♯4": ("4", 1), "♭2": ("2", -1), "♭6": ("6", -1), "♭3": ("3", -1), "♭7": ("7", -1)}
)

_LOW_MIDI = 36
_HIGH_MIDI = 84


def degree_offset(degree: str, key: KeyName) -> int:
    """Semitones above the tonic for a (possibly altered) degree label."""

    table = MAJOR_DEG if key == "BbMajor" else MINOR_DEG
    if degree in table:
        return table[degree]
    base, shift = _ALTERED[degree]
    return (table[base] + shift) % 12


def _first_midi_for_pc(pc: int, base: int) -> int:
    for midi in range(base - 12, base + 13):
        if _LOW_MIDI <= midi <= _HIGH_MIDI and midi % 12 == pc:
            return midi
    return base + pc


def degree_to_midi(degree: str, key: KeyName, up: bool = False) -> int:
    pc = (KEY_TONIC_PC[key] + degree_offset(degree, key)) % 12
    return _first_midi_for_pc(pc, (5 if up else 4) * 12)


def snap_to_comfortable(pc: int) -> int:
    return _first_midi_for_pc(pc % 12, 4 * 12)


@dataclass(frozen=True, slots=True)
class DialNote:
    degree: str
    up: bool = False


def _note_step(
    notes: tuple[int, ...],
    key: KeyName,
    label: str,
    span: tuple[int, int] | None,
    *,
    restarts_trail: bool = False,
) -> PlannedStep:
    tonic = KEY_TONIC_PC[key]
    nodes: dict[int, None] = {}
    for midi in notes:
        nodes.setdefault(dial_node(midi % 12, tonic), None)
    pitches: tuple[PitchId, ...] = tuple(midi_to_pitch(midi) for midi in notes)
    return PlannedStep(
        kind=EventKind.MELODY if len(pitches) == 1 else EventKind.CHORD,
        duration=STEP_SECONDS,
        pitches=pitches,
        label=label,
        nodes=tuple(nodes),
        channel=KEY_CHANNEL[key],
        span=span,
        restarts_trail=restarts_trail,
    )


def _rest_step(
    key: KeyName, label: str, span: tuple[int, int] | None, *, restarts_trail: bool = False
) -> PlannedStep:
    return PlannedStep(
        kind=EventKind.REST,
        duration=STEP_SECONDS,
        label=label,
        channel=KEY_CHANNEL[key],
        span=span,
        restarts_trail=restarts_trail,
    )


# -----------------------------------------------------------------------------
# Date mode
# -----------------------------------------------------------------------------

def format_date(raw: str, fmt: DateFormat = "DD-MM-YYYY") -> str:
    """Keep up to eight digits and dash them into the chosen layout."""

    digits = re.sub(r"\D+", "", raw)[:8]
    if fmt == "YYYY-MM-DD":
        parts = (digits[0:4], digits[4:6], digits[6:8])
    else:
        # DD-MM-YYYY and MM-DD-YYYY share the 2-2-4 layout
        parts = (digits[0:2], digits[2:4], digits[4:8])
    return "-".join(part for part in parts if part)


def is_complete_date(text: str) -> bool:
    return len(re.sub(r"\D+", "", text)) == 8


def map_date_char(ch: str) -> DialNote | None:
    if ch in "1234567":
        return DialNote(ch)
    if ch == "8":
        return DialNote("1", up=True)
    if ch == "9":
        return DialNote("2", up=True)
    return None


def build_date_plan(raw: str, fmt: DateFormat = "DD-MM-YYYY") -> TimelinePlan:
    """Loop the dashed date over eight seconds; the key flips every 8 notes."""

    text = format_date(raw, fmt)
    sequence = [(index, ch) for index, ch in enumerate(text) if ch.isdigit() or ch == "-"]
    steps: list[PlannedStep] = []
    sounded = 0
    if sequence:
        for step_index in range(DATE_STEPS):
            position, ch = sequence[step_index % len(sequence)]
            key: KeyName = "BbMajor" if (sounded // NOTES_PER_KEY) % 2 == 0 else "Cminor"
            span = (position, position + 1)
            note = map_date_char(ch)
            if note is None:
                steps.append(_rest_step(key, ch, span))
                continue
            steps.append(_note_step((degree_to_midi(note.degree, key, note.up),), key, ch, span))
            sounded += 1
    _LOGGER.debug("Date plan for %r: %d steps, %d sounded", text, len(steps), sounded)
    return plan_from_steps(steps, mode="date", source=text, options={"format": fmt})


# -----------------------------------------------------------------------------
# Phone mode
# -----------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class RegionInfo:
    required: int
    groups: tuple[int, ...]
    placeholder: str


REGION_INFO: Mapping[str, RegionInfo] = MappingProxyType(
    {
        "US": RegionInfo(10, (3, 3, 4), "555-123-4567"),
        "CA": RegionInfo(10, (3, 3, 4), "555-123-4567"),
        "UK": RegionInfo(11, (5, 3, 3), "07xxx-xxx-xxx"),
        "IE": RegionInfo(9, (2, 4, 3), "08-xxxx-xxx"),
        "MT": RegionInfo(8, (4, 4), "9999-9999"),
        "AU": RegionInfo(9, (1, 4, 4), "4-xxxx-xxxx"),
        "NZ": RegionInfo(9, (2, 3, 4), "02-xxx-xxxx"),
        "FJ": RegionInfo(8, (4, 4), "9999-9999"),
        "PG": RegionInfo(7, (3, 4), "xxx-xxxx"),
        "ZA": RegionInfo(9, (2, 3, 4), "xx-xxx-xxxx"),
        "NG": RegionInfo(10, (2, 4, 4), "xx-xxxx-xxxx"),
        "GH": RegionInfo(9, (2, 3, 4), "xx-xxx-xxxx"),
        "KE": RegionInfo(9, (2, 3, 4), "xx-xxx-xxxx"),
        "UG": RegionInfo(9, (2, 3, 4), "xx-xxx-xxxx"),
        "IN": RegionInfo(10, (4, 3, 3), "9999-999-999"),
        "SG": RegionInfo(8, (4, 4), "9999-9999"),
        "PK": RegionInfo(10, (3, 4, 3), "xxx-xxxx-xxx"),
        "PH": RegionInfo(10, (2, 4, 4), "xx-xxxx-xxxx"),
        "EU": RegionInfo(10, (3, 3, 4), "xxx-xxx-xxxx"),
    }
)
DEFAULT_REGION: Final[str] = "US"


def format_by_groups(raw: str, total: int, groups: tuple[int, ...]) -> str:
    digits = re.sub(r"\D+", "", raw)[:total]
    parts: list[str] = []
    index = 0
    for size in groups:
        if index >= len(digits):
            break
        parts.append(digits[index : index + size])
        index += size
    if len(parts) <= 1 and len(digits) < total:
        # Still typing: no forced group boundaries yet.
        return digits
    return "-".join(parts)


def format_phone(raw: str, region: str = DEFAULT_REGION) -> str:
    info = REGION_INFO.get(region)
    if info is None:
        raise ValueError(f"Unknown region: {region!r}")
    return format_by_groups(raw, info.required, info.groups)


def is_complete_phone(text: str, region: str = DEFAULT_REGION) -> bool:
    info = REGION_INFO.get(region)
    return info is not None and len(re.sub(r"\D+", "", text)) == info.required


def map_phone_char(ch: str) -> DialNote | None:
    if ch == "0":
        return DialNote("1")
    return map_date_char(ch)


def build_phone_plan(raw: str, region: str = DEFAULT_REGION) -> TimelinePlan:
    """Loop the grouped number over ten seconds; the key flips on each pass."""

    text = format_phone(raw, region)
    steps: list[PlannedStep] = []
    if text:
        for step_index in range(PHONE_STEPS):
            position = step_index % len(text)
            key: KeyName = "BbMajor" if (step_index // len(text)) % 2 == 0 else "Cminor"
            ch = text[position]
            span = (position, position + 1)
            note = map_phone_char(ch)
            if note is None:
                steps.append(_rest_step(key, ch, span))
            else:
                steps.append(_note_step((degree_to_midi(note.degree, key, note.up),), key, ch, span))
    return plan_from_steps(steps, mode="phone", source=text, options={"region": region})


# -----------------------------------------------------------------------------
# Key clock
# -----------------------------------------------------------------------------

MONTHS: Mapping[str, str] = MappingProxyType(
    {
        "january": "1", "february": "2", "march": "3", "april": "4", "may": "5",
        "june": "6", "july": "7", "august": "8", "september": "9", "october": "10",
        "november": "11", "december": "12",
        "jan": "1", "feb": "2", "mar": "3", "apr": "4", "jun": "6", "jul": "7",
        "aug": "8", "sep": "9", "sept": "9", "oct": "10", "nov": "11", "dec": "12",
    }
)

T9: Mapping[str, str] = MappingProxyType(
    {
        **dict.fromkeys("ABC", "2"), **dict.fromkeys("DEF", "3"), **dict.fromkeys("GHI", "4"),
        **dict.fromkeys("JKL", "5"), **dict.fromkeys("MNO", "6"), **dict.fromkeys("PQRS", "7"),
        **dict.fromkeys("TUV", "8"), **dict.fromkeys("WXYZ", "9"),
    }
)

CLOCK_SEPARATORS: Final[frozenset[str]] = frozenset("/,.-")
_CLOCK_DISALLOWED = re.compile(r"[^A-Za-z0-9/,.\-\s]")
_WORD = re.compile(r"[A-Za-z]+")

ClockTokenKind = Literal["rest", "deg", "chroma", "dual"]


@dataclass(frozen=True, slots=True)
class ClockToken:
    kind: ClockTokenKind
    src: str
    position: int
    degrees: tuple[str, ...] = ()
    up: bool = False


def sanitize_clock_text(raw: str) -> str:
    return _CLOCK_DISALLOWED.sub("", raw)


def replace_months(text: str, month_mode: MonthMode) -> str:
    if month_mode != "number":
        return text
    return _WORD.sub(lambda match: MONTHS.get(match.group(0).lower(), match.group(0)), text)


def normalize_clock_text(raw: str, month_mode: MonthMode = "word") -> str:
    return replace_months(sanitize_clock_text(raw), month_mode)


def _reduce_second_digit(ch: str) -> str:
    if ch == "9":
        return "2"
    if ch in "1234567":
        return ch
    return "1"


def tokenize_clock(text: str, zero_policy: ZeroPolicy = "chromatic") -> list[ClockToken]:
    """Turn clock text into dial tokens.

    The ♭2/♯4 alternation for zeros starts at ♭2 on every call.
    """

    tokens: list[ClockToken] = []
    flat_two_next = True

    def push_digit(digit: str, src: str, position: int) -> None:
        nonlocal flat_two_next
        if digit == "0":
            if zero_policy == "rest":
                tokens.append(ClockToken("rest", src, position))
            else:
                degree = "♭2" if flat_two_next else "♯4"
                flat_two_next = not flat_two_next
                tokens.append(ClockToken("chroma", src, position, (degree,)))
            return
        note = map_date_char(digit)
        if note is not None:
            tokens.append(ClockToken("deg", src, position, (note.degree,), note.up))

    index = 0
    while index < len(text):
        ch = text[index]
        if ch in CLOCK_SEPARATORS:
            tokens.append(ClockToken("rest", ch, index))
        elif ch.isascii() and ch.isalpha():
            push_digit(T9[ch.upper()], ch, index)
        elif ch.isascii() and ch.isdigit():
            pair = text[index : index + 2]
            if len(pair) == 2 and pair.isdigit() and 17 <= int(pair) <= 31:
                tokens.append(ClockToken("dual", pair, index, (ch, _reduce_second_digit(pair[1]))))
                index += 2
                continue
            push_digit(ch, ch, index)
        index += 1
    return tokens


def _clock_notes(token: ClockToken, key: KeyName) -> tuple[int, ...]:
    if token.kind == "chroma":
        pc = KEY_TONIC_PC[key] + degree_offset(token.degrees[0], key)
        return (snap_to_comfortable(pc),)
    if token.kind == "dual":
        return tuple(degree_to_midi(degree, key) for degree in token.degrees)
    return (degree_to_midi(token.degrees[0], key, token.up),)


def build_clock_plan(
    raw: str,
    *,
    month_mode: MonthMode = "word",
    zero_policy: ZeroPolicy = "chromatic",
) -> TimelinePlan:
    """Play the token string four times: major, major, minor, minor."""

    text = normalize_clock_text(raw, month_mode)
    tokens = tokenize_clock(text, zero_policy)
    steps: list[PlannedStep] = []
    for key in CLOCK_SEGMENTS if tokens else ():
        for offset, token in enumerate(tokens):
            span = (token.position, token.position + len(token.src))
            restart = offset == 0
            if token.kind == "rest":
                steps.append(_rest_step(key, token.src, span, restarts_trail=restart))
            else:
                steps.append(
                    _note_step(_clock_notes(token, key), key, token.src, span, restarts_trail=restart)
                )
    return plan_from_steps(
        steps,
        mode="clock",
        source=text,
        options={"month_mode": month_mode, "zero_policy": zero_policy},
    )
