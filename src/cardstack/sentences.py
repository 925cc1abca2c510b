from __future__ import annotations

import re

DEFAULT_TARGET_WORDS = 50

_TERMINALS = frozenset(".!?")
_STRAIGHT_QUOTE = '"'
_OPEN_QUOTE = "“"
_CLOSE_QUOTE = "”"
# A run ending in terminal punctuation followed by whitespace or end of text,
# otherwise the rest of the line.
_SAFE_PIECE_RE = re.compile(r".*?[.!?](?:\s+|$)|.+")


def word_count(text: str) -> int:
    return len(text.split())


def _is_upper_letter(ch: str) -> bool:
    return ch.upper() == ch and ch.lower() != ch


def _ends_sentence(text: str, index: int) -> bool:
    cursor = index + 1
    while cursor < len(text) and text[cursor].isspace():
        cursor += 1
    if cursor >= len(text):
        return True
    return _is_upper_letter(text[cursor])


def split_sentences(text: str) -> list[str]:
    """
    Split ``text`` into sentences without losing any characters.

    Terminal punctuation inside a quoted span never ends a sentence; outside
    of quotes it does so only when the next non-space character is an
    uppercase letter or the text ends. Abbreviations followed by a
    capitalised word ("Mr. Smith") are therefore split, which is accepted.
    """
    sentences: list[str] = []
    start = 0
    straight_open = False
    curly_depth = 0
    for idx, ch in enumerate(text):
        if ch == _STRAIGHT_QUOTE:
            straight_open = not straight_open
            continue
        if ch == _OPEN_QUOTE:
            curly_depth += 1
            continue
        if ch == _CLOSE_QUOTE:
            curly_depth = max(0, curly_depth - 1)
            continue
        if ch not in _TERMINALS or straight_open or curly_depth:
            continue
        if _ends_sentence(text, idx):
            sentence = text[start : idx + 1].strip()
            if sentence:
                sentences.append(sentence)
            start = idx + 1
    tail = text[start:].strip()
    if tail:
        sentences.append(tail)
    return sentences


def safe_split_spans(text: str) -> list[tuple[int, int]]:
    """Return stripped ``(start, end)`` offsets of the pieces found by :func:`safe_split`."""
    spans: list[tuple[int, int]] = []
    for match in _SAFE_PIECE_RE.finditer(text):
        start, end = match.span()
        while start < end and text[start].isspace():
            start += 1
        while end > start and text[end - 1].isspace():
            end -= 1
        if start < end:
            spans.append((start, end))
    return spans


def safe_split(text: str) -> list[str]:
    """
    Slice ``text`` into sentence-like pieces, keeping any trailing fragment.

    Unlike :func:`split_sentences` this never looks at capitalisation or
    quotes; a piece ends at ``.``, ``!`` or ``?`` followed by whitespace, and
    whatever remains without punctuation becomes the final piece.
    """
    return [text[start:end] for start, end in safe_split_spans(text)]


def split_by_word_target(text: str, target_words: int = DEFAULT_TARGET_WORDS) -> list[str]:
    """Greedily pack whole sentences into pieces of roughly ``target_words`` words."""
    pieces: list[str] = []
    current: list[str] = []
    current_words = 0
    for sentence in split_sentences(text):
        words = word_count(sentence)
        if current and current_words + words > target_words:
            pieces.append(" ".join(current))
            current = []
            current_words = 0
        current.append(sentence)
        current_words += words
    if current:
        pieces.append(" ".join(current))
    return pieces


__all__ = [
    "DEFAULT_TARGET_WORDS",
    "safe_split",
    "safe_split_spans",
    "split_by_word_target",
    "split_sentences",
    "word_count",
]
