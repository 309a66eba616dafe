import pytest

from notetrail.timeline import (
    DEFAULT_RULES,
    EventKind,
    MappingRules,
    TimelinePlan,
    build_plan,
    build_text_plan,
)
from notetrail.tokenizer import tokenize


def _labels(plan: TimelinePlan) -> list[str | None]:
    return [event.label for event in plan.events]


def _assert_contiguous(plan: TimelinePlan) -> None:
    if not plan.events:
        assert plan.total_duration == 0
        return
    assert plan.events[0].start_time == 0
    for current, following in zip(plan.events, plan.events[1:]):
        assert current.start_time + current.duration == following.start_time
    last = plan.events[-1]
    assert last.start_time + last.duration == plan.total_duration


def test_ab1_scenario() -> None:
    plan = build_text_plan("AB1")
    kinds = [event.kind for event in plan.events]
    assert kinds == [EventKind.MELODY, EventKind.MELODY, EventKind.CHORD]
    assert [event.pitches for event in plan.events] == [("A3",), ("B3",), ("A3", "C4", "E4")]
    assert [event.start_time for event in plan.events] == pytest.approx([0.0, 0.3, 0.6])
    assert all(event.duration == pytest.approx(0.3) for event in plan.events)
    assert plan.events[2].label == "1"
    assert plan.total_duration == pytest.approx(0.9)


def test_comma_is_a_micro_rest() -> None:
    plan = build_text_plan("A,B")
    assert [event.kind for event in plan.events] == [EventKind.MELODY, EventKind.REST, EventKind.MELODY]
    assert plan.events[1].duration == pytest.approx(0.1)
    assert plan.events[1].pitches == ()
    assert plan.events[2].start_time == pytest.approx(0.4)


def test_empty_input_gives_empty_plan() -> None:
    plan = build_text_plan("")
    assert plan.events == ()
    assert plan.total_duration == 0
    assert plan.is_empty


def test_build_is_deterministic() -> None:
    text = "Meet me at 7:45 on 12/25, ok?! 100% #1 $9.99 ... 2024"
    first = build_text_plan(text)
    second = build_text_plan(text)
    assert first == second
    assert first.source_digest == second.source_digest
    assert len(first.source_digest) == 64


def test_digest_tracks_input() -> None:
    assert build_text_plan("abc").source_digest != build_text_plan("abd").source_digest


def test_plans_are_contiguous() -> None:
    for text in ["", "a", "AB1", "Hello, world...", "x 100 y 250 z 2024!", "@#$%=/+?!:;'-"]:
        _assert_contiguous(build_text_plan(text))


def test_letters_use_the_a_minor_scale() -> None:
    plan = build_text_plan("hH")
    # H wraps around to A
    assert [event.pitches for event in plan.events] == [("A3",), ("A3",)]
    plan = build_text_plan("G")
    assert plan.events[0].pitches == ("G4",)


def test_hundred_cadence_alternates_and_resets_per_build() -> None:
    plan = build_text_plan("150 150")
    cadences = [event.pitches for event in plan.events if event.label == "100"]
    assert cadences == [("E4", "G4", "B3"), ("C4", "E4", "A3")]
    assert _labels(plan) == ["100", "50", "space", "100", "50"]

    again = build_text_plan("150")
    assert [event.pitches for event in again.events if event.label == "100"] == [("E4", "G4", "B3")]


def test_cadences_alternate_across_many_runs() -> None:
    plan = build_text_plan("101-101-101-101")
    cadences = [event.pitches for event in plan.events if event.label == "100"]
    first, second = ("E4", "G4", "B3"), ("C4", "E4", "A3")
    assert cadences == [first, second, first, second]


def test_exact_hundred_breathes() -> None:
    plan = build_text_plan("100")
    assert _labels(plan) == ["100", "cad-rest"]
    assert plan.events[1].kind is EventKind.REST
    assert plan.events[1].duration == pytest.approx(0.1)


def test_three_digit_run_with_other_lead() -> None:
    assert _labels(build_text_plan("250")) == ["2", "100", "50"]
    assert _labels(build_text_plan("200")) == ["2", "100"]
    assert _labels(build_text_plan("105")) == ["100", "5"]
    assert _labels(build_text_plan("117")) == ["100", "17"]


def test_two_digit_runs() -> None:
    assert _labels(build_text_plan("12")) == ["12"]
    assert _labels(build_text_plan("40")) == ["40"]
    assert _labels(build_text_plan("25")) == ["20", "5"]
    assert _labels(build_text_plan("07")) == ["7"]


def test_long_digit_runs_play_digit_by_digit() -> None:
    plan = build_text_plan("2024")
    assert _labels(plan) == ["2", None, "2", "4"]
    tick = plan.events[1]
    assert tick.pitches == ("A3",)
    assert tick.duration == pytest.approx(0.125)


def test_lone_zero_falls_back_to_the_first_chord() -> None:
    plan = build_text_plan("0")
    assert plan.events[0].pitches == ("A3", "C4", "E4")


def test_symbol_mapping() -> None:
    plan = build_text_plan("?")
    assert plan.events[0].pitches == ("G4", "B3", "D4")

    plan = build_text_plan("@")
    assert [event.kind for event in plan.events] == [EventKind.REST, EventKind.CHORD, EventKind.REST]
    assert plan.events[1].pitches == ("A4",)
    assert [event.duration for event in plan.events] == pytest.approx([0.1, 0.3, 0.1])

    plan = build_text_plan("%")
    assert _labels(plan) == ["pre-sym", "%-1", "%-2"]


def test_ellipsis_and_ticks() -> None:
    plan = build_text_plan("...")
    assert len(plan.events) == 3
    assert all(event.duration == pytest.approx(0.125) for event in plan.events)
    assert build_text_plan(":").events[0].duration == pytest.approx(0.125)


def test_space_and_dash_rests_are_longer() -> None:
    assert build_text_plan(" ").events[0].duration == pytest.approx(0.25)
    assert build_text_plan("-").events[0].duration == pytest.approx(0.25)
    assert build_text_plan(";").events[0].duration == pytest.approx(0.1)
    assert build_text_plan("'").events[0].duration == pytest.approx(0.1)


def test_unknown_symbol_is_a_micro_rest() -> None:
    plan = build_plan(tokenize("("))
    assert plan.events[0].kind is EventKind.REST
    assert plan.events[0].duration == pytest.approx(0.1)


def test_events_carry_spans_and_dial_nodes() -> None:
    plan = build_text_plan("AB1")
    assert [event.span for event in plan.events] == [(0, 1), (1, 2), (2, 3)]
    assert [event.nodes for event in plan.events] == [(0,), (2,), (0, 9, 1)]
    assert {event.channel for event in plan.events} == {"text"}


def test_custom_rules_change_durations() -> None:
    slow = MappingRules(default=0.5)
    plan = build_plan(tokenize("AB"), slow)
    assert plan.total_duration == pytest.approx(1.0)
    assert build_plan(tokenize("AB"), DEFAULT_RULES).total_duration == pytest.approx(0.6)
