from __future__ import annotations

import io
import zipfile
from pathlib import Path

import pytest

from cardstack.epub import DEFAULT_TITLE, PackageUnreadable, SectionParseFailure, read_epub
from cardstack.models import TocEntry

from conftest import xhtml


def test_reads_metadata_spine_and_images(sample_epub: bytes) -> None:
    package = read_epub(sample_epub)
    assert package.title == "Sample Book"
    assert package.author == "Sample Author"
    assert [key for key, _ in package.sections] == [
        "OEBPS/text/cover.xhtml",
        "OEBPS/text/dedication.xhtml",
        "OEBPS/text/ch1.xhtml",
        "OEBPS/text/ch2.xhtml",
        "OEBPS/text/glossary.xhtml",
    ]
    assert "Chapter One" in package.sections[2][1]
    assert package.images == {
        "OEBPS/images/cover.png": b"\x89PNG-cover",
        "OEBPS/images/map.png": b"\x89PNG-map",
    }


def test_nav_document_builds_toc_tree(sample_epub: bytes) -> None:
    toc = read_epub(sample_epub).toc
    assert [entry.title for entry in toc] == ["Cover", "Chapter One", "Chapter Two", "Glossary"]
    chapter_two = toc[2]
    assert chapter_two.href == "OEBPS/text/ch2.xhtml"
    assert chapter_two.fragment == "c2"
    assert chapter_two.children == (
        TocEntry(title="The Note", href="OEBPS/text/ch2.xhtml", fragment="note1"),
    )
    assert toc[0].fragment is None


def test_ncx_is_used_without_nav_document(make_epub) -> None:
    data = make_epub(
        [("one.xhtml", xhtml("<p>One.</p>")), ("two.xhtml", xhtml("<p>Two.</p>"))],
        ncx=[("Part One", "one.xhtml", (("Section A", "one.xhtml#a", ()),)), ("Part Two", "two.xhtml", ())],
    )
    toc = read_epub(data).toc
    assert [(e.title, e.href) for e in toc] == [("Part One", "OEBPS/one.xhtml"), ("Part Two", "OEBPS/two.xhtml")]
    child = toc[0].children[0]
    assert (child.title, child.href, child.fragment) == ("Section A", "OEBPS/one.xhtml", "a")


def test_nav_takes_precedence_over_ncx(make_epub) -> None:
    data = make_epub(
        [("one.xhtml", xhtml("<p>One.</p>"))],
        nav=[("From Nav", "one.xhtml", ())],
        ncx=[("From NCX", "one.xhtml", ())],
    )
    assert [e.title for e in read_epub(data).toc] == ["From Nav"]


def test_missing_metadata_uses_defaults(make_epub) -> None:
    package = read_epub(make_epub([("one.xhtml", xhtml("<p>One.</p>"))], title="", author=None))
    assert package.title == DEFAULT_TITLE
    assert package.author is None
    assert package.toc == []


def test_reads_from_path(tmp_path: Path, sample_epub: bytes) -> None:
    path = tmp_path / "book.epub"
    path.write_bytes(sample_epub)
    assert read_epub(path).title == "Sample Book"
    assert read_epub(str(path)).title == "Sample Book"


def test_missing_spine_entry_is_skipped_with_warning(make_epub) -> None:
    data = make_epub([("one.xhtml", xhtml("<p>One.</p>"))], missing=["gone.xhtml"])
    with pytest.warns(SectionParseFailure, match="gone.xhtml"):
        package = read_epub(data)
    assert [key for key, _ in package.sections] == ["OEBPS/one.xhtml"]


def test_non_zip_input_is_unreadable() -> None:
    with pytest.raises(PackageUnreadable):
        read_epub(b"this is not an epub")


def test_zip_without_package_document_is_unreadable() -> None:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip")
        zf.writestr("OEBPS/one.xhtml", xhtml("<p>One.</p>"))
    with pytest.raises(PackageUnreadable):
        read_epub(buffer.getvalue())


def test_broken_package_document_is_unreadable() -> None:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("content.opf", "<package><manifest>")
    with pytest.raises(PackageUnreadable):
        read_epub(buffer.getvalue())
