import pytest

from notetrail.dial import (
    ClockToken,
    build_clock_plan,
    build_date_plan,
    build_phone_plan,
    degree_to_midi,
    format_date,
    format_phone,
    is_complete_date,
    is_complete_phone,
    replace_months,
    tokenize_clock,
)
from notetrail.pitches import DEGREE_ORDER
from notetrail.timeline import EventKind


def test_format_date_layouts() -> None:
    assert format_date("25/12/2024") == "25-12-2024"
    assert format_date("20241225", "YYYY-MM-DD") == "2024-12-25"
    assert format_date("12252024", "MM-DD-YYYY") == "12-25-2024"
    assert format_date("251") == "25-1"
    assert format_date("2512202499") == "25-12-2024"
    assert is_complete_date("25-12-2024")
    assert not is_complete_date("25-12")


def test_degree_to_midi_scans_from_the_low_octave() -> None:
    # degree 2 of B-flat major is C
    assert degree_to_midi("2", "BbMajor") == 36
    assert degree_to_midi("1", "BbMajor", up=True) == 58
    assert degree_to_midi("3", "Cminor") == 39


def test_date_plan_loops_for_eight_seconds() -> None:
    plan = build_date_plan("25122024")
    assert plan.mode == "date"
    assert plan.source == "25-12-2024"
    assert len(plan.events) == 32
    assert plan.total_duration == pytest.approx(8.0)
    assert all(event.duration == pytest.approx(0.25) for event in plan.events)

    first = plan.events[0]
    assert first.pitches == ("C2",)
    assert first.nodes == (DEGREE_ORDER.index("2"),)
    assert first.span == (0, 1)
    # dashes and zeros rest
    assert plan.events[2].kind is EventKind.REST
    assert plan.events[7].kind is EventKind.REST


def test_date_plan_flips_key_every_eight_notes() -> None:
    plan = build_date_plan("25122024")
    # seven notes sound per pass; the eighth note is event 10
    assert plan.events[10].channel == "major"
    assert plan.events[11].channel == "minor"
    assert plan.events[11].pitches == ("G2",)


def test_date_plan_empty_input() -> None:
    plan = build_date_plan("")
    assert plan.events == ()
    assert plan.total_duration == 0


def test_format_phone_by_region() -> None:
    assert format_phone("5551234567", "US") == "555-123-4567"
    assert format_phone("(555) 123-4567 ext 9", "US") == "555-123-4567"
    assert format_phone("07123456789", "UK") == "07123-456-789"
    assert format_phone("412345678", "AU") == "4-1234-5678"
    assert format_phone("555", "US") == "555"
    assert format_phone("5551", "US") == "555-1"
    assert is_complete_phone("555-123-4567", "US")
    assert not is_complete_phone("555-123", "US")
    with pytest.raises(ValueError):
        format_phone("123", "XX")


def test_phone_plan_flips_key_each_pass() -> None:
    plan = build_phone_plan("5550001111", "US")
    assert plan.source == "555-000-1111"
    assert len(plan.events) == 40
    assert plan.total_duration == pytest.approx(10.0)
    assert plan.events[11].channel == "major"
    assert plan.events[12].channel == "minor"
    assert plan.events[24].channel == "major"
    # zeros sound degree 1, dashes rest
    zero = plan.events[4]
    assert zero.label == "0"
    assert zero.kind is EventKind.MELODY
    assert zero.nodes == (0,)
    assert plan.events[3].kind is EventKind.REST


def test_replace_months() -> None:
    assert replace_months("Jan 5", "number") == "1 5"
    assert replace_months("September 9", "number") == "9 9"
    assert replace_months("Janet", "number") == "Janet"
    assert replace_months("Jan 5", "word") == "Jan 5"


def test_tokenize_clock_zero_policy() -> None:
    chromatic = tokenize_clock("0 0 0")
    assert [token.degrees for token in chromatic] == [("♭2",), ("♯4",), ("♭2",)]
    rests = tokenize_clock("0 0", "rest")
    assert [token.kind for token in rests] == ["rest", "rest"]
    # the alternation starts over on every call
    assert tokenize_clock("0")[0].degrees == ("♭2",)


def test_tokenize_clock_dual_days() -> None:
    assert tokenize_clock("25") == [ClockToken("dual", "25", 0, ("2", "5"))]
    assert tokenize_clock("29")[0].degrees == ("2", "2")
    assert tokenize_clock("30")[0].degrees == ("3", "1")
    assert tokenize_clock("18")[0].degrees == ("1", "1")
    assert [token.kind for token in tokenize_clock("12")] == ["deg", "deg"]


def test_tokenize_clock_t9_and_separators() -> None:
    tokens = tokenize_clock("ab/w")
    assert [token.kind for token in tokens] == ["deg", "deg", "rest", "deg"]
    assert tokens[0].degrees == ("2",)
    # W is 9 on the keypad: degree 2 an octave up
    assert tokens[3].degrees == ("2",) and tokens[3].up


def test_clock_plan_plays_four_passes() -> None:
    plan = build_clock_plan("12/25")
    assert plan.mode == "clock"
    assert len(plan.events) == 16
    assert plan.trail_resets == (0, 4, 8, 12)
    assert [event.channel for event in plan.events[::4]] == ["major", "major", "minor", "minor"]
    dual = plan.events[3]
    assert dual.kind is EventKind.CHORD
    assert len(dual.pitches) == 2
    assert dual.span == (3, 5)
    assert plan.events[2].kind is EventKind.REST


def test_clock_chromatic_neighbour_is_relative_to_the_tonic() -> None:
    plan = build_clock_plan("0")
    major = plan.events[0]
    minor = plan.events[2]
    assert major.pitches == ("B2",)
    assert minor.pitches == ("C#2",)
    assert major.nodes == (DEGREE_ORDER.index("♭2"),)
    assert minor.nodes == (DEGREE_ORDER.index("♭2"),)


def test_clock_plan_month_numbers_and_determinism() -> None:
    worded = build_clock_plan("Jan 5", month_mode="number")
    assert worded.source == "1 5"
    assert worded == build_clock_plan("Jan 5", month_mode="number")
    assert worded.source_digest != build_clock_plan("Jan 5").source_digest
    assert build_clock_plan("").events == ()
