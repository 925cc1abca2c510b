from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from .models import OriginalChunk

SNIPPET_CONTEXT = 50
ELLIPSIS = "..."
_PUNCT_RE = re.compile(r"[^\w\s]")


@dataclass(frozen=True)
class SearchHit:
    original_index: int
    start: int
    end: int
    snippet: str
    # match position inside ``snippet``
    highlight_start: int
    highlight_end: int


def build_query_pattern(query: str) -> re.Pattern[str] | None:
    """
    Compile a punctuation-tolerant, case-insensitive pattern for ``query``.

    Punctuation is removed from the query, and any run of punctuation is
    allowed between consecutive query characters, so ``dont`` finds
    ``don't`` and ``mr smith`` finds ``Mr. Smith``.
    """
    cleaned = _PUNCT_RE.sub("", query).strip()
    if not cleaned:
        return None
    return re.compile(r"[^\w\s]*".join(re.escape(ch) for ch in cleaned), re.IGNORECASE)


def _snippet(text: str, start: int, end: int, context: int) -> tuple[str, int, int]:
    lo = max(0, start - context)
    hi = min(len(text), end + context)
    snippet = text[lo:hi]
    shift = -lo
    if lo > 0:
        snippet = ELLIPSIS + snippet
        shift += len(ELLIPSIS)
    if hi < len(text):
        snippet = snippet + ELLIPSIS
    return snippet, start + shift, end + shift


def search(
    chunks: Iterable[OriginalChunk],
    query: str,
    *,
    context: int = SNIPPET_CONTEXT,
) -> list[SearchHit]:
    """Return the first match of ``query`` in every text chunk, in chunk order."""
    pattern = build_query_pattern(query)
    if pattern is None:
        return []
    hits: list[SearchHit] = []
    for chunk in chunks:
        if not chunk.is_text or not chunk.text:
            continue
        match = pattern.search(chunk.text)
        if match is None:
            continue
        snippet, hl_start, hl_end = _snippet(chunk.text, match.start(), match.end(), context)
        hits.append(
            SearchHit(
                original_index=chunk.index,
                start=match.start(),
                end=match.end(),
                snippet=snippet,
                highlight_start=hl_start,
                highlight_end=hl_end,
            )
        )
    return hits


__all__ = ["SearchHit", "build_query_pattern", "search"]
