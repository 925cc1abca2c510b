from .book import Book, ReaderSession, load_book
from .epub import EpubPackage, PackageUnreadable, SectionParseFailure, read_epub
from .models import (
    Bookmark,
    ChapterNode,
    ChunkKind,
    ChunkSection,
    DisplayChunk,
    LinkSpan,
    OriginalChunk,
    SegmentationResult,
    TocEntry,
)
from .navigation import NavigationResolver
from .reflow import ReflowResult, reflow
from .search import SearchHit, search
from .segmentation import DegradedSegmentation, SegmentationConfig, segment
from .sentences import safe_split, split_sentences

__all__ = [
    "Book",
    "Bookmark",
    "ChapterNode",
    "ChunkKind",
    "ChunkSection",
    "DegradedSegmentation",
    "DisplayChunk",
    "EpubPackage",
    "LinkSpan",
    "NavigationResolver",
    "OriginalChunk",
    "PackageUnreadable",
    "ReaderSession",
    "ReflowResult",
    "SearchHit",
    "SectionParseFailure",
    "SegmentationConfig",
    "SegmentationResult",
    "TocEntry",
    "load_book",
    "read_epub",
    "reflow",
    "safe_split",
    "search",
    "segment",
    "split_sentences",
]
