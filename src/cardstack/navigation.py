from __future__ import annotations

from typing import Mapping
from urllib.parse import unquote

from .logging_utils import debug_log
from .models import Bookmark, ChapterNode
from .reflow import ReflowResult


def _clamp(value: int, upper: int) -> int:
    if upper <= 0:
        return 0
    return max(0, min(value, upper - 1))


class NavigationResolver:
    """
    Stateless lookups from original-chunk space into display-chunk space.

    Built from a segmentation anchor map and one reflow result; rebuild it
    together with the layout. Out-of-range original indices (stale
    bookmarks, a different edition) are clamped instead of rejected.
    """

    def __init__(self, anchor_map: Mapping[str, int], layout: ReflowResult) -> None:
        self.anchor_map = anchor_map
        self.layout = layout

    @property
    def original_count(self) -> int:
        return len(self.layout.original_to_display)

    @property
    def display_count(self) -> int:
        return len(self.layout.chunks)

    def resolve_original(self, original_index: int) -> int:
        if not self.original_count:
            return 0
        return self.layout.original_to_display[_clamp(original_index, self.original_count)]

    def resolve_anchor(self, anchor_id: str) -> int | None:
        original_index = self.anchor_map.get(anchor_id)
        if original_index is None or not 0 <= original_index < self.original_count:
            debug_log(f"anchor not found: {anchor_id!r}")
            return None
        return self.layout.original_to_display[original_index]

    def resolve_link(self, url: str) -> int | None:
        """Resolve an internal href such as ``ch2.xhtml#note3`` or ``#note3``."""
        anchor = url.split("#", 1)[1] if "#" in url else url
        anchor = unquote(anchor).strip()
        if not anchor:
            return None
        return self.resolve_anchor(anchor)

    def resolve_chapter(self, node: ChapterNode) -> int:
        return self.resolve_original(node.original_chunk_index)

    def resolve_bookmark(self, bookmark: Bookmark) -> int:
        return self.resolve_original(bookmark.original_index)

    def first_original(self, display_index: int) -> int:
        """Original index to persist as the reading position for a display page."""
        if not self.display_count:
            return 0
        return self.layout.display_to_original[_clamp(display_index, self.display_count)][0]


__all__ = ["NavigationResolver"]
