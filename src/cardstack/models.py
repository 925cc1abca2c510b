from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class ChunkKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class ChunkSection(str, Enum):
    """Whether a chunk belongs to front/back matter or to the main text."""

    FRONT_MATTER = "front_matter"
    CONTENT = "content"


@dataclass(frozen=True)
class LinkSpan:
    """Half-open ``[start, end)`` character range of ``text`` that links to ``url``."""

    start: int
    end: int
    url: str

    def shifted(self, delta: int) -> LinkSpan:
        return replace(self, start=self.start + delta, end=self.end + delta)

    def within(self, start: int, end: int) -> bool:
        return start <= self.start and self.end <= end


@dataclass(frozen=True)
class OriginalChunk:
    """Atomic unit produced by segmentation. Never mutated after creation."""

    index: int
    kind: ChunkKind
    section: ChunkSection = ChunkSection.CONTENT
    source_file_key: str = ""
    text: str | None = None
    image_bytes: bytes | None = None
    is_heading: bool = False
    links: tuple[LinkSpan, ...] = ()

    @property
    def is_text(self) -> bool:
        return self.kind is ChunkKind.TEXT

    def with_index(self, index: int) -> OriginalChunk:
        if index == self.index:
            return self
        return replace(self, index=index)


@dataclass(frozen=True)
class DisplayChunk:
    """Viewport-sized unit assembled from one or more OriginalChunks."""

    kind: ChunkKind
    section: ChunkSection
    source_file_key: str
    contributing_original_indices: tuple[int, ...]
    text: str | None = None
    image_bytes: bytes | None = None
    is_heading: bool = False
    links: tuple[LinkSpan, ...] = ()

    @property
    def first_original_index(self) -> int:
        return self.contributing_original_indices[0]


@dataclass(frozen=True)
class TocEntry:
    """Raw table-of-contents entry as found in the package navigation document."""

    title: str
    href: str | None
    fragment: str | None = None
    children: tuple[TocEntry, ...] = ()


@dataclass(frozen=True)
class ChapterNode:
    title: str
    original_chunk_index: int
    depth: int = 0
    children: tuple[ChapterNode, ...] = ()

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass(frozen=True)
class Bookmark:
    """Persisted reading reference supplied by the caller."""

    original_index: int
    label: str = ""


def read_only_anchors(anchor_map: Mapping[str, int]) -> Mapping[str, int]:
    """Snapshot an anchor map into a mapping callers cannot mutate."""
    return MappingProxyType(dict(anchor_map))


@dataclass(frozen=True)
class SegmentationResult:
    chunks: tuple[OriginalChunk, ...]
    anchor_map: Mapping[str, int] = field(default_factory=dict)
    chapters: tuple[ChapterNode, ...] = ()
    used_fallback: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "anchor_map", read_only_anchors(self.anchor_map))

    def __iter__(self):
        return iter((self.chunks, self.anchor_map, self.chapters))


__all__ = [
    "Bookmark",
    "ChapterNode",
    "ChunkKind",
    "ChunkSection",
    "DisplayChunk",
    "LinkSpan",
    "OriginalChunk",
    "SegmentationResult",
    "TocEntry",
    "read_only_anchors",
]
