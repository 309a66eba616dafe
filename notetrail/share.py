"""Shareable state: everything needed to rebuild a plan, as flat query params."""

from __future__ import annotations

import logging
from typing import Literal
from urllib.parse import parse_qsl, urlencode

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .dial import (
    DATE_FORMATS,
    DEFAULT_REGION,
    MONTH_MODES,
    REGION_INFO,
    ZERO_POLICIES,
    build_clock_plan,
    build_date_plan,
    build_phone_plan,
)
from .timeline import TimelinePlan, build_text_plan
from .tokenizer import MAX_INPUT_CHARS

_LOGGER = logging.getLogger("notetrail.share")

Mode = Literal["text", "date", "phone", "clock"]
MODES: tuple[str, ...] = ("text", "date", "phone", "clock")

# field name -> query parameter
_PARAMS = {
    "mode": "m",
    "text": "q",
    "date_format": "fmt",
    "region": "region",
    "month_mode": "month",
    "zero_policy": "zero",
}


class ShareState(BaseModel):
    mode: Mode = "text"
    text: str = Field(default="", max_length=MAX_INPUT_CHARS * 2)
    date_format: Literal["DD-MM-YYYY", "YYYY-MM-DD", "MM-DD-YYYY"] = "DD-MM-YYYY"
    region: str = DEFAULT_REGION
    month_mode: Literal["word", "number"] = "word"
    zero_policy: Literal["chromatic", "rest"] = "chromatic"

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @field_validator("region")
    @classmethod
    def _validate_region(cls, value: str) -> str:
        if value not in REGION_INFO:
            raise ValueError(f"unknown region {value!r}; expected one of {', '.join(sorted(REGION_INFO))}")
        return value

    def to_query(self) -> str:
        defaults = ShareState()
        pairs = [("m", self.mode), ("q", self.text)]
        for field, param in _PARAMS.items():
            if field in ("mode", "text"):
                continue
            value = getattr(self, field)
            if value != getattr(defaults, field):
                pairs.append((param, value))
        return urlencode(pairs)

    @classmethod
    def from_query(cls, query: str) -> "ShareState":
        """Parse a query string; unknown keys and invalid values fall back to defaults."""

        raw = dict(parse_qsl(query.lstrip("?"), keep_blank_values=True))
        allowed = {
            "mode": MODES,
            "date_format": DATE_FORMATS,
            "month_mode": MONTH_MODES,
            "zero_policy": ZERO_POLICIES,
            "region": tuple(REGION_INFO),
        }
        values: dict[str, str] = {}
        for field, param in _PARAMS.items():
            if param not in raw:
                continue
            value = raw[param]
            if field in allowed and value not in allowed[field]:
                _LOGGER.debug("Ignoring invalid share value %s=%r", param, value)
                continue
            values[field] = value
        try:
            return cls(**values)
        except ValidationError as exc:
            _LOGGER.debug("Share state rejected (%s); using defaults", exc)
            return cls(**{k: v for k, v in values.items() if k != "text"})

    def build_plan(self) -> TimelinePlan:
        match self.mode:
            case "date":
                return build_date_plan(self.text, self.date_format)
            case "phone":
                return build_phone_plan(self.text, self.region)
            case "clock":
                return build_clock_plan(
                    self.text, month_mode=self.month_mode, zero_policy=self.zero_policy
                )
            case _:
                return build_text_plan(self.text)
