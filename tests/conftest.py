from __future__ import annotations

import io
import zipfile
from pathlib import PurePosixPath
from typing import Callable, Sequence

import pytest

# (title, href, children)
TocSpec = Sequence[tuple]

_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
}


def xhtml(body: str, title: str = "Chapter") -> str:
    return f"""<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
  <head><title>{title}</title></head>
  <body>
{body}
  </body>
</html>
"""


def _nav_list(entries: TocSpec) -> str:
    items = []
    for title, href, children in entries:
        sub = _nav_list(children) if children else ""
        items.append(f'<li><a href="{href}">{title}</a>{sub}</li>')
    return "<ol>" + "".join(items) + "</ol>"


def _ncx_points(entries: TocSpec, counter: list[int]) -> str:
    points = []
    for title, href, children in entries:
        counter[0] += 1
        order = counter[0]
        sub = _ncx_points(children, counter) if children else ""
        points.append(
            f'<navPoint id="np{order}" playOrder="{order}">'
            f"<navLabel><text>{title}</text></navLabel>"
            f'<content src="{href}"/>{sub}</navPoint>'
        )
    return "".join(points)


def build_epub(
    chapters: Sequence[tuple[str, str]],
    *,
    nav: TocSpec | None = None,
    ncx: TocSpec | None = None,
    images: dict[str, bytes] | None = None,
    title: str = "Sample Book",
    author: str | None = "Sample Author",
    missing: Sequence[str] = (),
) -> bytes:
    """Assemble an EPUB in memory; hrefs are relative to ``OEBPS/content.opf``."""
    images = images or {}
    manifest: list[str] = []
    spine: list[str] = []
    for idx, (href, _) in enumerate(chapters):
        manifest.append(f'<item id="ch{idx}" href="{href}" media-type="application/xhtml+xml"/>')
        spine.append(f'<itemref idref="ch{idx}"/>')
    for idx, href in enumerate(missing):
        manifest.append(f'<item id="missing{idx}" href="{href}" media-type="application/xhtml+xml"/>')
        spine.append(f'<itemref idref="missing{idx}"/>')
    for idx, href in enumerate(images):
        media_type = _MEDIA_TYPES.get(PurePosixPath(href).suffix.lower(), "image/png")
        manifest.append(f'<item id="img{idx}" href="{href}" media-type="{media_type}"/>')
    if nav is not None:
        manifest.append('<item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>')
    if ncx is not None:
        manifest.append('<item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>')
    creator = f"<dc:creator>{author}</dc:creator>" if author else ""
    spine_attr = ' toc="ncx"' if ncx is not None else ""
    opf_xml = f"""<?xml version="1.0" encoding="UTF-8"?>
<package version="3.0" unique-identifier="BookId" xmlns="http://www.idpf.org/2007/opf">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:title>{title}</dc:title>
    {creator}
  </metadata>
  <manifest>
    {"".join(manifest)}
  </manifest>
  <spine{spine_attr}>
    {"".join(spine)}
  </spine>
</package>
"""
    container_xml = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip")
        zf.writestr("META-INF/container.xml", container_xml)
        zf.writestr("OEBPS/content.opf", opf_xml)
        for href, markup in chapters:
            zf.writestr(f"OEBPS/{href}", markup)
        for href, data in images.items():
            zf.writestr(f"OEBPS/{href}", data)
        if nav is not None:
            nav_body = f'<nav epub:type="toc" id="toc"><h1>Contents</h1>{_nav_list(nav)}</nav>'
            zf.writestr("OEBPS/nav.xhtml", xhtml(nav_body, title="Contents"))
        if ncx is not None:
            ncx_xml = (
                '<?xml version="1.0" encoding="UTF-8"?>'
                '<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">'
                f"<navMap>{_ncx_points(ncx, [0])}</navMap></ncx>"
            )
            zf.writestr("OEBPS/toc.ncx", ncx_xml)
    return buffer.getvalue()


@pytest.fixture
def make_epub() -> Callable[..., bytes]:
    return build_epub


@pytest.fixture
def sample_epub() -> bytes:
    """Cover, dedication, two chapters with a footnote link, an image and a glossary."""
    chapters = [
        ("text/cover.xhtml", xhtml('<div><img src="../images/cover.png" alt="Cover"/></div>', "Cover")),
        ("text/dedication.xhtml", xhtml("<p>For everyone who reads on the bus.</p>", "Dedication")),
        (
            "text/ch1.xhtml",
            xhtml(
                '<h1 id="c1">Chapter One</h1>'
                "<p>It was a bright cold day in April, and the clocks were striking thirteen. "
                "Nobody in the square seemed to notice it at all.</p>"
                '<p>She read the <a href="ch2.xhtml#note1">first note</a> twice before turning the page.</p>',
                "Chapter One",
            ),
        ),
        (
            "text/ch2.xhtml",
            xhtml(
                '<h1 id="c2">Chapter Two</h1>'
                "<p>The second chapter opened with rain that would not stop for three whole days.</p>"
                '<p id="note1">A note about the rain and the people who had to walk through it.</p>'
                '<figure><img src="../images/map.png"/><figcaption>The map of the town.</figcaption></figure>',
                "Chapter Two",
            ),
        ),
        ("text/glossary.xhtml", xhtml("<p>Clock: a device that tells the time.</p>", "Glossary")),
    ]
    nav = [
        ("Cover", "text/cover.xhtml", ()),
        ("Chapter One", "text/ch1.xhtml#c1", ()),
        ("Chapter Two", "text/ch2.xhtml#c2", (("The Note", "text/ch2.xhtml#note1", ()),)),
        ("Glossary", "text/glossary.xhtml", ()),
    ]
    images = {"images/cover.png": b"\x89PNG-cover", "images/map.png": b"\x89PNG-map"}
    return build_epub(chapters, nav=nav, images=images)
