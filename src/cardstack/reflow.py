from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from .logging_utils import debug_log
from .models import ChunkKind, DisplayChunk, OriginalChunk
from .sentences import safe_split_spans

# measure(text, is_heading) -> rendered height for the current style and width
Measure = Callable[[str, bool], float]

MIN_HEIGHT_BUDGET = 1.0
MERGE_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class ReflowResult:
    chunks: tuple[DisplayChunk, ...]
    display_to_original: tuple[tuple[int, ...], ...]
    # indexed by OriginalIndex; first display chunk holding that original
    original_to_display: tuple[int, ...]
    viewport_width: float = 0.0
    height_budget: float = 0.0

    def __iter__(self):
        return iter((self.chunks, self.display_to_original, self.original_to_display))

    def __len__(self) -> int:
        return len(self.chunks)


def _as_display(chunk: OriginalChunk) -> DisplayChunk:
    return DisplayChunk(
        kind=chunk.kind,
        section=chunk.section,
        source_file_key=chunk.source_file_key,
        contributing_original_indices=(chunk.index,),
        text=chunk.text,
        image_bytes=chunk.image_bytes,
        is_heading=chunk.is_heading,
        links=chunk.links,
    )


def _sub_chunk(chunk: OriginalChunk, start: int, end: int) -> DisplayChunk:
    text = chunk.text or ""
    # Links crossing the window edge are dropped, never truncated.
    links = tuple(link.shifted(-start) for link in chunk.links if link.within(start, end))
    return DisplayChunk(
        kind=ChunkKind.TEXT,
        section=chunk.section,
        source_file_key=chunk.source_file_key,
        contributing_original_indices=(chunk.index,),
        text=text[start:end],
        is_heading=False,
        links=links,
    )


def split_chunk_by_height(chunk: OriginalChunk, height_budget: float, measure: Measure) -> list[DisplayChunk]:
    """
    Slice a too-tall text chunk into sentence-aligned pieces that fit ``height_budget``.

    Images and headings pass through whole. Each piece is a window
    ``text[start:end]`` of the original text, so contained links keep their
    relative offsets.
    """
    if not chunk.is_text or chunk.is_heading or not chunk.text:
        return [_as_display(chunk)]
    text = chunk.text
    if measure(text, False) <= height_budget:
        return [_as_display(chunk)]
    spans = safe_split_spans(text)
    if not spans:
        return [_as_display(chunk)]

    pieces: list[DisplayChunk] = []
    window_start, window_end = spans[0]
    for start, end in spans[1:]:
        if measure(text[window_start:end], False) > height_budget:
            pieces.append(_sub_chunk(chunk, window_start, window_end))
            window_start = start
        window_end = end
    pieces.append(_sub_chunk(chunk, window_start, window_end))
    return pieces


def _can_merge(pending: DisplayChunk, incoming: DisplayChunk) -> bool:
    return (
        pending.kind is ChunkKind.TEXT
        and incoming.kind is ChunkKind.TEXT
        and pending.section == incoming.section
        and pending.source_file_key == incoming.source_file_key
        and pending.is_heading == incoming.is_heading
    )


def _merged(pending: DisplayChunk, incoming: DisplayChunk, text: str) -> DisplayChunk:
    offset = len(pending.text or "") + len(MERGE_SEPARATOR)
    indices = pending.contributing_original_indices
    for index in incoming.contributing_original_indices:
        if index != indices[-1]:
            indices = indices + (index,)
    return DisplayChunk(
        kind=ChunkKind.TEXT,
        section=pending.section,
        source_file_key=pending.source_file_key,
        contributing_original_indices=indices,
        text=text,
        is_heading=pending.is_heading,
        links=pending.links + tuple(link.shifted(offset) for link in incoming.links),
    )


def reflow(
    original_chunks: Sequence[OriginalChunk],
    viewport_width: float,
    height_budget: float,
    measure: Measure,
) -> ReflowResult:
    """
    Re-chunk ``original_chunks`` into display chunks that fit ``height_budget``.

    Oversized text is split on sentence boundaries, then neighbours from the
    same section, file and heading state are packed together while the
    joined text still measures within the budget. The output is a pure
    function of the inputs when ``measure`` is.
    """
    budget = max(float(height_budget), MIN_HEIGHT_BUDGET)
    display: list[DisplayChunk] = []
    pending: DisplayChunk | None = None

    for original in original_chunks:
        for piece in split_chunk_by_height(original, budget, measure):
            if piece.kind is not ChunkKind.TEXT:
                if pending is not None:
                    display.append(pending)
                    pending = None
                display.append(piece)
                continue
            if pending is None:
                pending = piece
                continue
            if _can_merge(pending, piece):
                joined = f"{pending.text or ''}{MERGE_SEPARATOR}{piece.text or ''}"
                if measure(joined, pending.is_heading) <= budget:
                    pending = _merged(pending, piece, joined)
                    continue
            display.append(pending)
            pending = piece
    if pending is not None:
        display.append(pending)

    display_to_original = tuple(chunk.contributing_original_indices for chunk in display)
    original_to_display = _invert(display_to_original, len(original_chunks))
    debug_log(
        f"reflow: {len(original_chunks)} original -> {len(display)} display chunks "
        f"(width={viewport_width}, budget={budget:.1f})"
    )
    return ReflowResult(
        chunks=tuple(display),
        display_to_original=display_to_original,
        original_to_display=original_to_display,
        viewport_width=viewport_width,
        height_budget=budget,
    )


def _invert(display_to_original: Sequence[Sequence[int]], count: int) -> tuple[int, ...]:
    mapping = [-1] * count
    for display_index, indices in enumerate(display_to_original):
        for original_index in indices:
            if 0 <= original_index < count and mapping[original_index] == -1:
                mapping[original_index] = display_index
    # originals that never showed up inherit the previous page
    previous = 0
    for original_index, display_index in enumerate(mapping):
        if display_index == -1:
            mapping[original_index] = previous
        else:
            previous = display_index
    return tuple(mapping)


__all__ = [
    "MERGE_SEPARATOR",
    "MIN_HEIGHT_BUDGET",
    "Measure",
    "ReflowResult",
    "reflow",
    "split_chunk_by_height",
]
