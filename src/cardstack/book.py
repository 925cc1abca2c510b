from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Hashable, Mapping

from .epub import read_epub
from .logging_utils import debug_log
from .measure import MonospaceMeasurer
from .models import Bookmark, ChapterNode, DisplayChunk, OriginalChunk, read_only_anchors
from .navigation import NavigationResolver
from .reflow import Measure, ReflowResult, reflow
from .search import SearchHit, search
from .segmentation import SegmentationConfig, segment
from .settings import ReadingSettings, Viewport, content_width, height_budget


@dataclass(frozen=True)
class Book:
    title: str
    author: str | None
    chunks: tuple[OriginalChunk, ...]
    anchor_map: Mapping[str, int] = field(default_factory=dict)
    chapters: tuple[ChapterNode, ...] = ()
    used_fallback: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "anchor_map", read_only_anchors(self.anchor_map))

    def chapter_at(self, original_index: int) -> ChapterNode | None:
        """Deepest chapter whose start is at or before ``original_index``."""
        best: ChapterNode | None = None
        for top in self.chapters:
            for node in top.walk():
                if node.original_chunk_index <= original_index:
                    if best is None or node.original_chunk_index >= best.original_chunk_index:
                        best = node
        return best


def load_book(source: bytes | str | Path, config: SegmentationConfig | None = None) -> Book:
    """Read an EPUB (bytes or path) and segment it into original chunks."""
    package = read_epub(source)
    result = segment(package.sections, package.images, package.toc, config)
    return Book(
        title=package.title,
        author=package.author,
        chunks=result.chunks,
        anchor_map=result.anchor_map,
        chapters=result.chapters,
        used_fallback=result.used_fallback,
    )


@dataclass(frozen=True)
class _Layout:
    key: tuple[Hashable, ...]
    result: ReflowResult
    resolver: NavigationResolver


class ReaderSession:
    """
    Keeps one book's display chunks in step with the viewport and settings.

    The reading position is tracked as an original index, so it survives a
    relayout; the display layout and its resolver are replaced together.
    """

    def __init__(self, book: Book, last_read_index: int = 0) -> None:
        self.book = book
        last = max(len(book.chunks) - 1, 0)
        self.target_original_index = max(0, min(last_read_index, last))
        self.return_original_index: int | None = None
        self.current_page = 0
        self._layout: _Layout | None = None

    @property
    def layout(self) -> ReflowResult:
        return self._require_layout().result

    @property
    def resolver(self) -> NavigationResolver:
        return self._require_layout().resolver

    @property
    def current_chunk(self) -> DisplayChunk:
        return self.layout.chunks[self.current_page]

    def _require_layout(self) -> _Layout:
        if self._layout is None:
            raise RuntimeError("relayout() must be called before navigating")
        return self._layout

    def relayout(
        self,
        viewport: Viewport,
        settings: ReadingSettings | None = None,
        measure: Measure | None = None,
    ) -> int:
        """Rebuild display chunks if the layout inputs changed; return the current page."""
        settings = settings or ReadingSettings()
        if measure is None:
            measure = MonospaceMeasurer(content_width(viewport), settings)
        key = (viewport, settings, measure)
        if self._layout is None or self._layout.key != key:
            result = reflow(self.book.chunks, content_width(viewport), height_budget(viewport, settings), measure)
            self._layout = _Layout(
                key=key,
                result=result,
                resolver=NavigationResolver(self.book.anchor_map, result),
            )
        self.current_page = self._layout.resolver.resolve_original(self.target_original_index)
        return self.current_page

    def page_changed(self, display_index: int) -> int:
        """Record a page turn; returns the original index to persist as last read."""
        resolver = self.resolver
        page = max(0, min(display_index, resolver.display_count - 1))
        self.target_original_index = resolver.first_original(page)
        self.current_page = page
        return self.target_original_index

    def _jump(self, display_index: int) -> int:
        self.return_original_index = self.target_original_index
        self.page_changed(display_index)
        return self.current_page

    def jump_to_original(self, original_index: int) -> int:
        return self._jump(self.resolver.resolve_original(original_index))

    def jump_to_link(self, url: str) -> int | None:
        display_index = self.resolver.resolve_link(url)
        if display_index is None:
            debug_log(f"link target not found: {url!r}")
            return None
        return self._jump(display_index)

    def jump_to_chapter(self, node: ChapterNode) -> int:
        return self.jump_to_original(node.original_chunk_index)

    def jump_to_bookmark(self, bookmark: Bookmark) -> int:
        return self.jump_to_original(bookmark.original_index)

    def jump_to_hit(self, hit: SearchHit) -> int:
        return self.jump_to_original(hit.original_index)

    def jump_back(self) -> int | None:
        """Return to the position saved before the last jump."""
        if self.return_original_index is None:
            return None
        return self.jump_to_original(self.return_original_index)

    def search(self, query: str) -> list[SearchHit]:
        return search(self.book.chunks, query)


__all__ = ["Book", "ReaderSession", "load_book"]
