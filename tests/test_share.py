from __future__ import annotations

import pytest
from pydantic import ValidationError

from notetrail.share import ShareState


def test_defaults_write_only_mode_and_text() -> None:
    assert ShareState(text="Hi there").to_query() == "m=text&q=Hi+there"


def test_round_trip_keeps_every_option() -> None:
    state = ShareState(
        mode="clock",
        text="Jan 25",
        month_mode="number",
        zero_policy="rest",
    )
    query = state.to_query()
    assert "month=number" in query
    assert "zero=rest" in query
    assert "fmt=" not in query
    assert ShareState.from_query(query) == state


def test_from_query_accepts_leading_question_mark() -> None:
    state = ShareState.from_query("?m=phone&q=5551234567&region=UK")
    assert state.mode == "phone"
    assert state.region == "UK"


def test_invalid_values_fall_back_to_defaults() -> None:
    state = ShareState.from_query("m=karaoke&q=AB&fmt=YY&region=ZZ&zero=maybe&junk=1")
    assert state == ShareState(text="AB")


def test_oversized_text_is_dropped() -> None:
    state = ShareState.from_query("m=date&q=" + "1" * 1_000)
    assert state.mode == "date"
    assert state.text == ""


def test_state_is_frozen_and_strict() -> None:
    state = ShareState()
    with pytest.raises(ValidationError):
        state.mode = "date"  # type: ignore[misc]
    with pytest.raises(ValidationError):
        ShareState.model_validate({"mode": "text", "extra": 1})


def test_unknown_region_is_rejected_at_construction() -> None:
    with pytest.raises(ValidationError, match="unknown region"):
        ShareState(mode="phone", text="5551234567", region="ZZ")
    assert ShareState(mode="phone", region="UK").region == "UK"


@pytest.mark.parametrize(
    ("query", "mode"),
    [
        ("m=text&q=AB1", "text"),
        ("m=date&q=25122024", "date"),
        ("m=phone&q=5551234567", "phone"),
        ("m=clock&q=12/25", "clock"),
    ],
)
def test_build_plan_dispatches_on_mode(query: str, mode: str) -> None:
    plan = ShareState.from_query(query).build_plan()
    assert plan.mode == mode
    assert plan.events
    assert plan == ShareState.from_query(query).build_plan()
