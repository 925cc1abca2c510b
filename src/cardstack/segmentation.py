from __future__ import annotations

import html
import re
import warnings
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Iterable, Mapping, Sequence
from urllib.parse import unquote

from bs4 import BeautifulSoup, FeatureNotFound, NavigableString, Tag, XMLParsedAsHTMLWarning  # type: ignore
from bs4.element import PreformattedString  # type: ignore

from .epub import SectionParseFailure
from .logging_utils import debug_log
from .models import (
    ChapterNode,
    ChunkKind,
    ChunkSection,
    LinkSpan,
    OriginalChunk,
    SegmentationResult,
    TocEntry,
)
from .sentences import split_by_word_target, word_count

# Keywords that mark a file (by name) or a TOC entry (by title) as
# non-narrative material.
FRONT_MATTER_KEYWORDS = (
    "cover",
    "titlepage",
    "copyright",
    "dedication",
    "epigraph",
    "foreword",
    "preface",
    "prologue",
    "acknowledgment",
    "acknowledgement",
    "about",
    "also",
    "toc",
    "contents",
    "nav",
    "index",
    "half-title",
    "frontispiece",
    "colophon",
    "publisher",
    "edition",
    "isbn",
    "introduction",
    "frontmatter",
    "backmatter",
    "endnotes",
    "appendix",
    "glossary",
    "bibliography",
)
# Every one of these closes the current chunk on entry and on exit.
BLOCK_TAGS = frozenset(
    {
        "p",
        "div",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "li",
        "blockquote",
        "section",
        "article",
        "header",
        "footer",
        "main",
        "figure",
        "figcaption",
        "pre",
        "hr",
        "br",
    }
)
HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6"})
IMAGE_TAGS = frozenset({"img", "image"})
IGNORED_TAGS = frozenset({"script", "style"})
PLACEHOLDER_TEXT = "Could not parse this book."

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_TAG_RE = re.compile(r"<[^>]*>")
_INVISIBLE_BLOCK_RE = re.compile(r"<(head|script|style)\b.*?</\1\s*>", re.IGNORECASE | re.DOTALL)


class DegradedSegmentation(UserWarning):
    """Warning category for books that fell back to tag-stripped text."""


@dataclass(frozen=True)
class SegmentationConfig:
    hard_max_words: int = 80
    target_words: int = 50
    tiny_chunk_words: int = 15
    front_matter_keywords: tuple[str, ...] = FRONT_MATTER_KEYWORDS
    block_tags: frozenset[str] = BLOCK_TAGS
    heading_tags: frozenset[str] = HEADING_TAGS
    image_tags: frozenset[str] = IMAGE_TAGS
    ignored_tags: frozenset[str] = IGNORED_TAGS
    placeholder_text: str = PLACEHOLDER_TEXT
    # Resolve chapter starts from the emitted chunks instead of block counts.
    exact_chapter_starts: bool = False


DEFAULT_CONFIG = SegmentationConfig()


# ---------- front matter classification ----------


def _normalized_keywords(config: SegmentationConfig) -> tuple[str, ...]:
    return tuple(_NON_ALNUM_RE.sub("", kw.lower()) for kw in config.front_matter_keywords)


def is_front_matter_file(key: str, config: SegmentationConfig = DEFAULT_CONFIG) -> bool:
    """True when the base name of ``key`` contains a front-matter keyword."""
    name = _NON_ALNUM_RE.sub("", PurePosixPath(key).name.lower())
    return any(kw and kw in name for kw in _normalized_keywords(config))


def is_front_matter_title(title: str, config: SegmentationConfig = DEFAULT_CONFIG) -> bool:
    lowered = title.lower().strip()
    return any(kw in lowered for kw in config.front_matter_keywords)


def trusted_chapter_files(
    toc: Iterable[TocEntry],
    config: SegmentationConfig = DEFAULT_CONFIG,
) -> set[str]:
    """Content files referenced by TOC entries whose titles look like real chapters."""
    trusted: set[str] = set()

    def _collect(entries: Iterable[TocEntry]) -> None:
        for entry in entries:
            if entry.href and not is_front_matter_title(entry.title, config):
                trusted.add(entry.href)
                trusted.add(PurePosixPath(entry.href).name)
            _collect(entry.children)

    _collect(toc)
    return trusted


def _is_trusted(key: str, trusted: set[str]) -> bool:
    return key in trusted or PurePosixPath(key).name in trusted


def classify_sections(
    section_keys: Sequence[str],
    toc: Iterable[TocEntry] = (),
    config: SegmentationConfig = DEFAULT_CONFIG,
) -> list[ChunkSection]:
    """
    Assign a :class:`ChunkSection` to every section key, in spine order.

    The first key that is either referenced by a trusted TOC entry or has a
    clean file name starts the content; everything before it is front
    matter. Later keys fall back to front matter (back matter) whenever
    their file name says so.
    """
    trusted = trusted_chapter_files(toc, config)
    first_content = 0
    for position, key in enumerate(section_keys):
        if _is_trusted(key, trusted) or not is_front_matter_file(key, config):
            first_content = position
            break
    sections: list[ChunkSection] = []
    for position, key in enumerate(section_keys):
        if position < first_content:
            sections.append(ChunkSection.FRONT_MATTER)
        elif position == first_content or not is_front_matter_file(key, config):
            sections.append(ChunkSection.CONTENT)
        else:
            sections.append(ChunkSection.FRONT_MATTER)
    return sections


# ---------- markup helpers ----------


def _soup_from_html(markup: str) -> BeautifulSoup:
    stripped = markup.lstrip()
    lower_head = stripped[:200].lower()
    xmlish = stripped.startswith("<?xml") or ("<html" in lower_head and "xmlns" in lower_head)

    if xmlish:
        try:
            return BeautifulSoup(markup, "lxml-xml")
        except FeatureNotFound:
            pass

    for parser in ("lxml", "html.parser"):
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
                return BeautifulSoup(markup, parser)
        except FeatureNotFound:
            continue
    return BeautifulSoup(markup, "html.parser")


def resolve_image(images: Mapping[str, bytes], src: str) -> bytes | None:
    """Find the bytes for an image reference by matching the end of its path."""
    path = unquote(src.split("#", 1)[0]).strip()
    name = PurePosixPath(path).name if path else ""
    if not name:
        return None
    for key, data in images.items():
        if PurePosixPath(key).name == name:
            return data
    for key, data in images.items():
        if key.endswith(name):
            return data
    return None


def _local_name(node: Tag) -> str:
    return (node.name or "").rsplit(":", 1)[-1].lower()


def _image_source(node: Tag) -> str | None:
    for attr in ("src", "xlink:href", "href"):
        value = node.get(attr)
        if value:
            return value
    return None


# ---------- DOM walk ----------


@dataclass(frozen=True)
class _SectionContext:
    key: str
    section: ChunkSection
    images: Mapping[str, bytes]


@dataclass
class _ChunkBuilder:
    """Mutable state threaded through the DOM walk of all sections."""

    config: SegmentationConfig
    chunks: list[OriginalChunk] = field(default_factory=list)
    # anchor id -> position of the chunk that will hold its content
    anchor_slots: dict[str, int] = field(default_factory=dict)
    in_heading: bool = False
    generation: int = 0
    _parts: list[str] = field(default_factory=list)
    _length: int = 0
    _links: list[LinkSpan] = field(default_factory=list)

    @property
    def length(self) -> int:
        return self._length

    def append_text(self, raw: str) -> None:
        text = " ".join(raw.split())
        if not text:
            return
        if self._length:
            self._parts.append(" ")
            self._length += 1
        self._parts.append(text)
        self._length += len(text)

    def record_anchor(self, anchor_id: str) -> None:
        self.anchor_slots[anchor_id] = len(self.chunks)

    def add_link(self, start: int, url: str) -> None:
        if start:
            # skip the separating space written before the link text
            start += 1
        if self._length > start:
            self._links.append(LinkSpan(start=start, end=self._length, url=url))

    def _emit(self, ctx: _SectionContext, **fields) -> None:
        self.chunks.append(
            OriginalChunk(
                index=len(self.chunks),
                section=ctx.section,
                source_file_key=ctx.key,
                **fields,
            )
        )

    def add_image(self, ctx: _SectionContext, data: bytes) -> None:
        self._emit(ctx, kind=ChunkKind.IMAGE, image_bytes=data)

    def reset(self) -> None:
        if self._parts:
            self.generation += 1
        self._parts = []
        self._length = 0
        self._links = []

    def flush(self, ctx: _SectionContext) -> None:
        text = "".join(self._parts).strip()
        links = tuple(self._links)
        self.reset()
        if not text:
            return
        if word_count(text) <= self.config.hard_max_words:
            self._emit(ctx, kind=ChunkKind.TEXT, text=text, is_heading=self.in_heading, links=links)
            return
        # Link offsets cannot follow a multi-way split; they are dropped.
        for piece in split_by_word_target(text, self.config.target_words):
            self._emit(ctx, kind=ChunkKind.TEXT, text=piece, is_heading=self.in_heading)


@dataclass(frozen=True)
class _Leave:
    """Work left for when a tag's children have all been walked."""

    is_block: bool = False
    # heading state to restore, set only for heading tags
    was_heading: bool | None = None
    # (href, buffer length, generation) captured on entering a link
    link: tuple[str, int, int] | None = None


def _enter(node, ctx: _SectionContext, builder: _ChunkBuilder) -> _Leave | None:
    """Handle the opening side of ``node``; returns None when its children are skipped."""
    if isinstance(node, NavigableString):
        if not isinstance(node, PreformattedString):
            builder.append_text(str(node))
        return None
    if not isinstance(node, Tag):
        return None

    config = builder.config
    name = _local_name(node)
    if name in config.ignored_tags:
        return None

    is_block = name in config.block_tags
    is_image = name in config.image_tags
    if is_block or is_image:
        builder.flush(ctx)
    for attr in ("id", "name"):
        value = node.get(attr)
        if isinstance(value, str) and value:
            builder.record_anchor(value)

    if is_image:
        src = _image_source(node)
        data = resolve_image(ctx.images, src) if src else None
        if data is not None:
            builder.add_image(ctx, data)
        else:
            debug_log(f"unresolved image {src!r} in {ctx.key}")
        return None

    href = node.get("href") if name == "a" else None
    if isinstance(href, str) and href:
        return _Leave(link=(href, builder.length, builder.generation))

    was_heading: bool | None = None
    if name in config.heading_tags:
        was_heading = builder.in_heading
        builder.in_heading = True
    return _Leave(is_block=is_block, was_heading=was_heading)


def _leave(leave: _Leave, ctx: _SectionContext, builder: _ChunkBuilder) -> None:
    if leave.link is not None:
        href, start, generation = leave.link
        if builder.generation == generation and builder.length > start:
            builder.add_link(start, href)
    if leave.is_block:
        builder.flush(ctx)
    if leave.was_heading is not None:
        builder.in_heading = leave.was_heading


def _walk_tree(root, ctx: _SectionContext, builder: _ChunkBuilder) -> None:
    """Depth-first walk with an explicit stack, so nesting depth is unbounded."""
    stack: list = [root]
    while stack:
        item = stack.pop()
        if isinstance(item, _Leave):
            _leave(item, ctx, builder)
            continue
        leave = _enter(item, ctx, builder)
        if leave is not None:
            stack.append(leave)
            stack.extend(reversed(list(item.children)))


def _segment_sections(
    sections: Sequence[tuple[str, str]],
    images: Mapping[str, bytes],
    toc: Sequence[TocEntry],
    config: SegmentationConfig,
) -> _ChunkBuilder:
    builder = _ChunkBuilder(config=config)
    kinds = classify_sections([key for key, _ in sections], toc, config)
    first_content = next(
        (key for (key, _), kind in zip(sections, kinds) if kind is ChunkSection.CONTENT),
        None,
    )
    debug_log(f"{len(sections)} sections, first content key = {first_content}")
    for (key, markup), kind in zip(sections, kinds):
        if not markup or not markup.strip():
            continue
        ctx = _SectionContext(key=key, section=kind, images=images)
        builder.reset()
        builder.in_heading = False
        chunk_count = len(builder.chunks)
        anchor_slots = dict(builder.anchor_slots)
        try:
            soup = _soup_from_html(markup)
            body = soup.find("body") or soup
            _walk_tree(body, ctx, builder)
            builder.flush(ctx)
        except Exception as exc:
            # drop everything the section emitted before it failed
            del builder.chunks[chunk_count:]
            builder.anchor_slots = anchor_slots
            builder.reset()
            warnings.warn(
                f"Skipping section {key!r}: {exc}",
                SectionParseFailure,
                stacklevel=3,
            )
    return builder


# ---------- post-processing ----------


def _join_text_chunks(pending: OriginalChunk, incoming: OriginalChunk) -> OriginalChunk:
    pending_text = pending.text or ""
    offset = len(pending_text) + 2
    return OriginalChunk(
        index=pending.index,
        kind=ChunkKind.TEXT,
        section=pending.section,
        source_file_key=pending.source_file_key,
        text=f"{pending_text}\n\n{incoming.text or ''}",
        is_heading=pending.is_heading,
        links=pending.links + tuple(link.shifted(offset) for link in incoming.links),
    )


def merge_tiny_chunks(
    chunks: Sequence[OriginalChunk],
    config: SegmentationConfig = DEFAULT_CONFIG,
) -> tuple[list[OriginalChunk], list[int]]:
    """
    Fold very short text chunks into their successor and re-index densely.

    Returns the merged chunks together with a list mapping every input
    position to the index of the output chunk that absorbed it.
    """
    result: list[OriginalChunk] = []
    index_map: list[int] = [0] * len(chunks)
    pending: OriginalChunk | None = None
    members: list[int] = []

    def _emit(chunk: OriginalChunk, positions: list[int]) -> None:
        new_index = len(result)
        result.append(chunk.with_index(new_index))
        for position in positions:
            index_map[position] = new_index

    for position, chunk in enumerate(chunks):
        if not chunk.is_text:
            if pending is not None:
                _emit(pending, members)
                pending = None
            _emit(chunk, [position])
            continue
        if pending is None:
            pending, members = chunk, [position]
            continue
        pending_words = word_count(pending.text or "")
        incoming_words = word_count(chunk.text or "")
        if (
            pending_words < config.tiny_chunk_words
            and pending_words + incoming_words <= config.hard_max_words
            and pending.section == chunk.section
            and pending.source_file_key == chunk.source_file_key
            and pending.is_heading == chunk.is_heading
        ):
            pending = _join_text_chunks(pending, chunk)
            members.append(position)
        else:
            _emit(pending, members)
            pending, members = chunk, [position]
    if pending is not None:
        _emit(pending, members)
    return result, index_map


def _resolve_anchor_slots(slots: Mapping[str, int], index_map: Sequence[int], count: int) -> dict[str, int]:
    anchors: dict[str, int] = {}
    if not count:
        return anchors
    for anchor_id, slot in slots.items():
        # an anchor after the last flush points past the end
        anchors[anchor_id] = index_map[slot] if slot < len(index_map) else count - 1
    return anchors


# ---------- fallback ----------


def fallback_chunks(
    sections: Sequence[tuple[str, str]],
    config: SegmentationConfig = DEFAULT_CONFIG,
) -> list[OriginalChunk]:
    """Tag-stripped, sentence-split rendition of every section; never empty."""
    paragraphs: list[str] = []
    for _, markup in sections:
        if not markup:
            continue
        visible = _INVISIBLE_BLOCK_RE.sub(" ", markup)
        text = " ".join(html.unescape(_TAG_RE.sub(" ", visible)).split())
        if text:
            paragraphs.append(text)
    full_text = "\n\n".join(paragraphs)
    pieces = split_by_word_target(full_text, config.target_words) if full_text else []
    if not pieces:
        pieces = [config.placeholder_text]
    return [
        OriginalChunk(index=idx, kind=ChunkKind.TEXT, section=ChunkSection.CONTENT, text=piece)
        for idx, piece in enumerate(pieces)
    ]


# ---------- chapters ----------


def _count_blocks(markup: str, config: SegmentationConfig) -> int:
    try:
        soup = _soup_from_html(markup)
    except Exception:
        return 1
    body = soup.find("body") or soup
    counted = config.block_tags | config.image_tags
    count = sum(1 for tag in body.find_all(True) if _local_name(tag) in counted)
    return max(count, 1)


def _estimated_section_starts(
    sections: Sequence[tuple[str, str]],
    config: SegmentationConfig,
) -> dict[str, int]:
    starts: dict[str, int] = {}
    running = 0
    for key, markup in sections:
        starts.setdefault(key, running)
        starts.setdefault(PurePosixPath(key).name, running)
        running += _count_blocks(markup, config) if markup else 1
    return starts


def _emitted_section_starts(chunks: Sequence[OriginalChunk]) -> dict[str, int]:
    starts: dict[str, int] = {}
    for chunk in chunks:
        if chunk.source_file_key:
            starts.setdefault(chunk.source_file_key, chunk.index)
            starts.setdefault(PurePosixPath(chunk.source_file_key).name, chunk.index)
    return starts


def resolve_chapters(
    sections: Sequence[tuple[str, str]],
    toc: Sequence[TocEntry],
    chunks: Sequence[OriginalChunk],
    anchor_map: Mapping[str, int] | None = None,
    config: SegmentationConfig = DEFAULT_CONFIG,
) -> tuple[ChapterNode, ...]:
    """
    Build the chapter tree with a best-effort starting chunk per TOC entry.

    By default each section is assumed to contribute as many chunks as it
    has block-level tags (at least one), which approximates the real
    position. With ``exact_chapter_starts`` the first emitted chunk of the
    file, or the chunk holding the entry's fragment anchor, is used. Either
    way the result is clamped to the chunk range.
    """
    if not toc or not chunks:
        return ()
    last = len(chunks) - 1
    if config.exact_chapter_starts:
        starts = _emitted_section_starts(chunks)
    else:
        starts = _estimated_section_starts(sections, config)

    def _start_for(entry: TocEntry) -> int:
        if config.exact_chapter_starts and entry.fragment and anchor_map and entry.fragment in anchor_map:
            return anchor_map[entry.fragment]
        if not entry.href:
            return 0
        found = starts.get(entry.href)
        if found is None:
            found = starts.get(PurePosixPath(entry.href).name, 0)
        return found

    def _walk(entries: Sequence[TocEntry], depth: int) -> tuple[ChapterNode, ...]:
        nodes: list[ChapterNode] = []
        for entry in entries:
            title = entry.title.strip()
            if not title:
                continue
            nodes.append(
                ChapterNode(
                    title=title,
                    original_chunk_index=max(0, min(_start_for(entry), last)),
                    depth=depth,
                    children=_walk(entry.children, depth + 1),
                )
            )
        return tuple(nodes)

    return _walk(toc, 0)


# ---------- entry point ----------


def segment(
    sections: Iterable[tuple[str, str]],
    images: Mapping[str, bytes] | None = None,
    toc: Sequence[TocEntry] = (),
    config: SegmentationConfig | None = None,
) -> SegmentationResult:
    """
    Turn ordered ``(section_key, markup)`` pairs into original chunks.

    Returns the chunks, an anchor map (id -> chunk index) and the chapter
    tree. Never raises: books the DOM walk cannot handle are rendered
    through :func:`fallback_chunks`, and the worst case is a single
    placeholder chunk.
    """
    config = config or DEFAULT_CONFIG
    sections = list(sections)
    images = images or {}
    toc = list(toc)

    chunks: list[OriginalChunk] = []
    anchor_map: dict[str, int] = {}
    chapters: tuple[ChapterNode, ...] = ()
    try:
        builder = _segment_sections(sections, images, toc, config)
        chunks, index_map = merge_tiny_chunks(builder.chunks, config)
        anchor_map = _resolve_anchor_slots(builder.anchor_slots, index_map, len(chunks))
        if chunks:
            chapters = resolve_chapters(sections, toc, chunks, anchor_map, config)
    except Exception as exc:
        debug_log(f"segmentation failed: {exc!r}")
        chunks = []

    if not chunks:
        warnings.warn(
            "Structured segmentation produced no chunks; using plain-text fallback",
            DegradedSegmentation,
            stacklevel=2,
        )
        fallback = fallback_chunks(sections, config)
        debug_log(f"fallback produced {len(fallback)} chunks")
        return SegmentationResult(chunks=tuple(fallback), used_fallback=True)

    front = sum(1 for chunk in chunks if chunk.section is ChunkSection.FRONT_MATTER)
    debug_log(
        f"{len(chunks)} chunks ({front} front matter, {len(chunks) - front} content), "
        f"{len(anchor_map)} anchors, {len(chapters)} top-level chapters"
    )
    return SegmentationResult(chunks=tuple(chunks), anchor_map=anchor_map, chapters=chapters)


__all__ = [
    "BLOCK_TAGS",
    "DEFAULT_CONFIG",
    "DegradedSegmentation",
    "FRONT_MATTER_KEYWORDS",
    "HEADING_TAGS",
    "SegmentationConfig",
    "classify_sections",
    "fallback_chunks",
    "is_front_matter_file",
    "merge_tiny_chunks",
    "resolve_chapters",
    "resolve_image",
    "segment",
    "trusted_chapter_files",
]
