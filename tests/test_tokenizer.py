from notetrail.tokenizer import MAX_INPUT_CHARS, Token, classify, sanitize_text, tokenize


def test_tokenize_keeps_every_character() -> None:
    text = "Hi, 42 ... ok?"
    tokens = tokenize(text)
    assert len(tokens) == len(text)
    assert "".join(token.raw for token in tokens) == text
    assert [token.position for token in tokens] == list(range(len(text)))


def test_tokenize_categories() -> None:
    tokens = tokenize("a1 -';,?(")
    assert [token.category for token in tokens] == [
        "letter",
        "digit",
        "separator",
        "separator",
        "separator",
        "separator",
        "separator",
        "symbol",
        "symbol",
    ]
    assert tokens[0] == Token(category="letter", raw="a", position=0)


def test_classify_non_ascii_is_symbol() -> None:
    assert classify("é") == "symbol"
    assert classify("٣") == "symbol"


def test_tokenize_empty() -> None:
    assert tokenize("") == []


def test_sanitize_folds_dashes_and_ellipses() -> None:
    assert sanitize_text("a—b–c") == "a-b-c"
    assert sanitize_text("wait.....") == "wait..."


def test_sanitize_drops_disallowed_characters() -> None:
    assert sanitize_text("héllo *world*~") == "hllo world"


def test_sanitize_enforces_max_chars() -> None:
    assert len(sanitize_text("a" * 500)) == MAX_INPUT_CHARS
    assert sanitize_text("abcdef", max_chars=3) == "abc"
