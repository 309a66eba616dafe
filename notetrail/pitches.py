"""Pitch ids, MIDI numbers, register placement and dial geometry."""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping, Sequence
from types import MappingProxyType
from typing import Final, TypeAlias

PitchId: TypeAlias = str

NOTE_ORDER: Final[tuple[str, ...]] = (
    "C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B",
)

# Natural pitch class -> semitone above C
NATURAL_SEMITONES: Mapping[str, int] = MappingProxyType(
    {"C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11}
)

# Dial spokes in circle-of-fifths order, tonic at the top.
DEGREE_ORDER: Final[tuple[str, ...]] = (
    "1", "5", "2", "6", "3", "7", "♯4", "♭2", "♭6", "♭3", "♭7", "4",
)
DIAL_SIZE: Final[int] = len(DEGREE_ORDER)

REGISTER_LOW: Final[int] = 57   # A3
REGISTER_HIGH: Final[int] = 69  # A4
MAX_CHORD_NOTES: Final[int] = 4

_PITCH_PATTERN = re.compile(r"^([A-Ga-g])([#b]?)(-?\d+)$")


def pitch_to_midi(pitch: PitchId) -> int:
    """Convert a scientific pitch name ("A3", "C#4", "Bb2") to a MIDI number."""

    match = _PITCH_PATTERN.match(pitch)
    if match is None:
        raise ValueError(f"Unknown pitch: {pitch!r}")
    letter, accidental, octave = match.groups()
    pc = NATURAL_SEMITONES[letter.upper()]
    if accidental == "#":
        pc = (pc + 1) % 12
    elif accidental == "b":
        pc = (pc + 11) % 12
    return (int(octave) + 1) * 12 + pc


def midi_to_pitch(midi: int) -> PitchId:
    """Sharps-only pitch id for a MIDI number (60 -> "C4")."""

    return f"{NOTE_ORDER[midi % 12]}{midi // 12 - 1}"


def pitch_class(pitch: PitchId) -> int:
    return pitch_to_midi(pitch) % 12


def midi_to_freq(midi: int) -> float:
    return 440.0 * math.pow(2.0, (midi - 69) / 12.0)


def dial_node(pc: int, tonic_pc: int) -> int:
    """Spoke index of a pitch class on the dial of a key with ``tonic_pc``.

    The dial is laid out in fifths, so the spoke is the interval from the
    tonic multiplied by seven (mod 12).
    """

    return ((pc - tonic_pc) * 7) % DIAL_SIZE


def node_position(index: int, radius: float = 36.0) -> tuple[float, float]:
    """Dial node centre in a 100x100 viewbox, index 0 at twelve o'clock."""

    angle = (index / DIAL_SIZE) * math.pi * 2 - math.pi / 2
    return (
        round(50 + math.cos(angle) * radius, 3),
        round(50 + math.sin(angle) * radius, 3),
    )


def _guess_octave(letter: str) -> int:
    return 3 if letter in ("A", "B", "C") else 4


def place_in_register(pitch_classes: Sequence[str]) -> tuple[PitchId, ...]:
    """Voice natural pitch classes inside A3-A4.

    Each pitch class gets its default octave, is pulled into the register,
    and a pitch that coincides with one already placed moves an octave up
    (or down) only while it stays inside the register. Chords longer than
    four notes keep A/C/E before the colour tones.
    """

    placed: list[int] = []
    for letter in pitch_classes:
        midi = pitch_to_midi(f"{letter}{_guess_octave(letter)}")
        if midi < REGISTER_LOW:
            midi += 12
        elif midi > REGISTER_HIGH:
            midi -= 12
        placed.append(midi)

    seen: set[int] = set()
    voiced: list[int] = []
    for midi in placed:
        if midi in seen:
            if midi + 12 <= REGISTER_HIGH and midi + 12 not in seen:
                midi += 12
            elif midi - 12 >= REGISTER_LOW and midi - 12 not in seen:
                midi -= 12
        seen.add(midi)
        voiced.append(midi)

    pitches = [midi_to_pitch(midi) for midi in voiced]
    if len(pitches) > MAX_CHORD_NOTES:
        core = {"A", "C", "E"}
        # sorted() is stable, so chord order survives inside each group
        pitches = sorted(pitches, key=lambda p: 0 if p[0] in core else 1)[:MAX_CHORD_NOTES]
    return tuple(pitches)


def unique_pitches(groups: Iterable[Iterable[PitchId]]) -> tuple[PitchId, ...]:
    """Distinct pitch ids across many events, in first-seen order."""

    seen: dict[PitchId, None] = {}
    for group in groups:
        for pitch in group:
            seen.setdefault(pitch, None)
    return tuple(seen)
