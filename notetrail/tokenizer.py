"""Tokenizer: splits sanitized input into one token per character."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final, Literal

TokenCategory = Literal["letter", "digit", "symbol", "separator"]

MAX_INPUT_CHARS: Final[int] = 120

SEPARATOR_CHARS: Final[frozenset[str]] = frozenset(",;-'")

_DASHES = re.compile("[—–]")
_LONG_ELLIPSIS = re.compile(r"\.{3,}")
_DISALLOWED = re.compile(r"[^A-Za-z0-9 .,;?\-!'/%+=:@#$()&]+")


@dataclass(frozen=True, slots=True)
class Token:
    """One input character with its musical category and source position."""

    category: TokenCategory
    raw: str
    position: int


def sanitize_text(raw: str, *, max_chars: int = MAX_INPUT_CHARS) -> str:
    """Fold dashes and ellipses, drop characters outside the allowed classes."""

    normalized = _DASHES.sub("-", raw)
    normalized = _LONG_ELLIPSIS.sub("...", normalized)
    return _DISALLOWED.sub("", normalized)[:max_chars]


def classify(ch: str) -> TokenCategory:
    if ch.isascii() and ch.isalpha():
        return "letter"
    if ch.isascii() and ch.isdigit():
        return "digit"
    if ch.isspace() or ch in SEPARATOR_CHARS:
        return "separator"
    return "symbol"


def tokenize(text: str) -> list[Token]:
    """Return one token per character; no character is ever dropped."""

    return [Token(category=classify(ch), raw=ch, position=index) for index, ch in enumerate(text)]
