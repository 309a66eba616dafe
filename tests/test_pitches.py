import pytest

from notetrail.pitches import (
    DEGREE_ORDER,
    dial_node,
    midi_to_freq,
    midi_to_pitch,
    node_position,
    pitch_to_midi,
    place_in_register,
    unique_pitches,
)


def test_pitch_to_midi_and_back() -> None:
    assert pitch_to_midi("A4") == 69
    assert pitch_to_midi("C4") == 60
    assert pitch_to_midi("C#4") == 61
    assert pitch_to_midi("Bb3") == 58
    assert midi_to_pitch(61) == "C#4"
    assert midi_to_pitch(57) == "A3"


def test_pitch_to_midi_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        pitch_to_midi("H2")


def test_midi_to_freq_a440() -> None:
    assert midi_to_freq(69) == pytest.approx(440.0)
    assert midi_to_freq(57) == pytest.approx(220.0)


def test_dial_node_follows_degree_order() -> None:
    # semitones above the tonic for each dial label
    semitones = {"1": 0, "5": 7, "2": 2, "6": 9, "3": 4, "7": 11, "♯4": 6,
                 "♭2": 1, "♭6": 8, "♭3": 3, "♭7": 10, "4": 5}
    for tonic in (0, 9, 10):
        for label, offset in semitones.items():
            assert dial_node((tonic + offset) % 12, tonic) == DEGREE_ORDER.index(label)


def test_node_position_starts_at_twelve_o_clock() -> None:
    assert node_position(0) == (50.0, 14.0)
    assert node_position(3) == (86.0, 50.0)


def test_place_in_register_basic_chord() -> None:
    assert place_in_register(["A", "C", "E"]) == ("A3", "C4", "E4")


def test_place_in_register_moves_duplicates_within_range() -> None:
    assert place_in_register(["A", "A"]) == ("A3", "A4")
    # no room above or below: the duplicate stays
    assert place_in_register(["C", "C"]) == ("C4", "C4")


def test_place_in_register_keeps_core_tones_for_big_chords() -> None:
    assert place_in_register(["G", "B", "D", "F", "A"]) == ("A3", "G4", "B3", "D4")


def test_unique_pitches_first_seen_order() -> None:
    assert unique_pitches([("A3", "C4"), (), ("C4", "E4")]) == ("A3", "C4", "E4")
