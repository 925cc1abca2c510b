from __future__ import annotations

import io
import posixpath
import unicodedata
import warnings
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from urllib.parse import unquote

from bs4 import BeautifulSoup, Tag  # type: ignore

from .logging_utils import debug_log
from .models import TocEntry

HTML_EXTS = (".xhtml", ".html", ".htm")
IMAGE_EXTS = (".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".bmp")
HTML_MEDIA_TYPES = {"application/xhtml+xml", "text/html"}
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"
DC_NS = "http://purl.org/dc/elements/1.1/"
CONTAINER_NS = {"c": "urn:oasis:names:tc:opendocument:xmlns:container"}
DEFAULT_TITLE = "Unknown Title"


class PackageUnreadable(RuntimeError):
    """Raised when the EPUB container or its package document cannot be opened."""


class SectionParseFailure(UserWarning):
    """Warning category for spine entries that were skipped."""


@dataclass
class EpubPackage:
    title: str
    author: str | None
    sections: list[tuple[str, str]]
    images: dict[str, bytes]
    toc: list[TocEntry] = field(default_factory=list)


@dataclass
class _ManifestItem:
    item_id: str
    path: str
    media_type: str
    properties: str


def _zip_read_text(zf: zipfile.ZipFile, name: str) -> str:
    raw = zf.read(name)
    for enc in ("utf-8", "utf-16", "cp1252"):
        try:
            return raw.decode(enc)
        except UnicodeDecodeError:
            continue
    return raw.decode("utf-8", errors="ignore")


def _strip_tag(tag: str) -> str:
    return tag.split("}", 1)[-1] if "}" in tag else tag


def _get_attr(elem: ET.Element, name: str) -> str | None:
    for attr, value in elem.attrib.items():
        if _strip_tag(attr) == name:
            return value
    return None


def _normalize_zip_path(path: str) -> str:
    normalized = posixpath.normpath(unquote(path))
    return "" if normalized == "." else normalized


def _resolve_relative_path(base_file: str, href: str) -> str:
    base = str(PurePosixPath(base_file).parent)
    if base not in ("", ".", "/"):
        combined = f"{base}/{href}"
    else:
        combined = href
    return _normalize_zip_path(combined)


def _split_href_fragment(href: str) -> tuple[str, str | None]:
    if "#" in href:
        base, frag = href.split("#", 1)
        return base, unquote(frag) or None
    return href, None


def _find_opf_path(zf: zipfile.ZipFile) -> str:
    # META-INF/container.xml -> rootfiles/rootfile@full-path
    try:
        container = _zip_read_text(zf, "META-INF/container.xml")
        root = ET.fromstring(container)
        for rf in root.findall(".//c:rootfile", CONTAINER_NS):
            full = rf.attrib.get("full-path")
            if full:
                return full
    except (KeyError, ET.ParseError):
        pass
    for n in zf.namelist():
        if n.lower().endswith(".opf"):
            return n
    raise PackageUnreadable("OPF package document not found in EPUB")


def _read_manifest(root: ET.Element, opf_path: str) -> dict[str, _ManifestItem]:
    manifest: dict[str, _ManifestItem] = {}
    for elem in root.iter():
        if _strip_tag(elem.tag) != "item":
            continue
        item_id = elem.attrib.get("id")
        href = elem.attrib.get("href")
        if not item_id or not href:
            continue
        manifest[item_id] = _ManifestItem(
            item_id=item_id,
            path=_resolve_relative_path(opf_path, href),
            media_type=(elem.attrib.get("media-type") or "").lower(),
            properties=(elem.attrib.get("properties") or "").lower(),
        )
    return manifest


def _spine_paths(
    zf: zipfile.ZipFile,
    root: ET.Element,
    manifest: dict[str, _ManifestItem],
) -> tuple[list[str], str | None]:
    paths: list[str] = []
    toc_id: str | None = None
    for elem in root.iter():
        tag = _strip_tag(elem.tag)
        if tag == "spine":
            toc_id = elem.attrib.get("toc")
        elif tag == "itemref":
            item = manifest.get(elem.attrib.get("idref") or "")
            if item is None:
                debug_log(f"spine itemref {elem.attrib.get('idref')!r} missing from manifest")
                continue
            if item.media_type and item.media_type not in HTML_MEDIA_TYPES:
                if not item.path.lower().endswith(HTML_EXTS):
                    continue
            paths.append(item.path)
    # No spine: fall back to all HTML files in zip order.
    if not paths:
        paths = [n for n in zf.namelist() if n.lower().endswith(HTML_EXTS)]
    return paths, toc_id


def _read_metadata(root: ET.Element) -> tuple[str, str | None]:
    title = DEFAULT_TITLE
    for title_el in root.iter(f"{{{DC_NS}}}title"):
        title_text = "".join(title_el.itertext()).strip()
        if title_text:
            title = unicodedata.normalize("NFKC", title_text)
            break
    authors: list[str] = []
    for creator_el in root.iter(f"{{{DC_NS}}}creator"):
        name = unicodedata.normalize("NFKC", "".join(creator_el.itertext())).strip()
        if not name:
            continue
        role = _get_attr(creator_el, "role")
        if role and role.lower() not in {"aut", "author"}:
            continue
        if name not in authors:
            authors.append(name)
    return title, (", ".join(authors) if authors else None)


def _read_images(zf: zipfile.ZipFile, manifest: dict[str, _ManifestItem]) -> dict[str, bytes]:
    names = set(zf.namelist())
    images: dict[str, bytes] = {}
    candidates = [item.path for item in manifest.values() if item.media_type.startswith("image/")]
    if not candidates:
        candidates = [n for n in zf.namelist() if n.lower().endswith(IMAGE_EXTS)]
    for path in candidates:
        if path not in names or path in images:
            continue
        try:
            images[path] = zf.read(path)
        except (KeyError, zipfile.BadZipFile, OSError) as exc:
            debug_log(f"could not read image {path!r}: {exc}")
    return images


def _toc_entry_from_href(base: str, title: str, href: str | None, children: list[TocEntry]) -> TocEntry:
    target: str | None = None
    fragment: str | None = None
    if href:
        path, fragment = _split_href_fragment(href)
        target = _resolve_relative_path(base, path) if path else base
    return TocEntry(title=title, href=target, fragment=fragment, children=tuple(children))


def _parse_nav_list(base: str, ol: Tag) -> list[TocEntry]:
    entries: list[TocEntry] = []
    for li in ol.find_all("li", recursive=False):
        label = li.find(["a", "span"], recursive=False)
        title = label.get_text(" ", strip=True) if label is not None else ""
        href = label.get("href") if label is not None and label.name == "a" else None
        sub_list = li.find("ol", recursive=False)
        children = _parse_nav_list(base, sub_list) if sub_list is not None else []
        entries.append(_toc_entry_from_href(base, " ".join(title.split()), href, children))
    return entries


def _parse_nav_document(html: str, base: str) -> list[TocEntry]:
    soup = BeautifulSoup(html, "html.parser")
    nav_tags = []
    for nav in soup.find_all("nav"):
        nav_type = (nav.get("epub:type") or "").lower()
        role = (nav.get("role") or "").lower()
        if "toc" in nav_type or role == "doc-toc":
            nav_tags.append(nav)
    if not nav_tags:
        nav_tags = soup.find_all("nav")
    for nav in nav_tags:
        top = nav.find("ol")
        if top is None:
            continue
        entries = _parse_nav_list(base, top)
        if entries:
            return entries
    return []


def _parse_ncx_document(xml_text: str, base: str) -> list[TocEntry]:
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError:
        return []
    ns = {"ncx": root.tag.split("}")[0].strip("{")} if "}" in root.tag else {"ncx": ""}

    def _collect_points(elem: ET.Element) -> list[TocEntry]:
        acc: list[TocEntry] = []
        for nav_point in elem.findall("ncx:navPoint", ns):
            label_elem = nav_point.find("ncx:navLabel/ncx:text", ns)
            content_elem = nav_point.find("ncx:content", ns)
            title = ""
            if label_elem is not None:
                title = " ".join("".join(label_elem.itertext()).split())
            href = content_elem.attrib.get("src") if content_elem is not None else None
            acc.append(_toc_entry_from_href(base, title, href, _collect_points(nav_point)))
        return acc

    nav_map = root.find("ncx:navMap", ns)
    if nav_map is None:
        return []
    return _collect_points(nav_map)


def _read_toc(
    zf: zipfile.ZipFile,
    manifest: dict[str, _ManifestItem],
    toc_id: str | None,
) -> list[TocEntry]:
    nav_candidates = [item.path for item in manifest.values() if "nav" in item.properties.split()]
    ncx_candidates = [item.path for item in manifest.values() if item.media_type == NCX_MEDIA_TYPE]
    if toc_id and toc_id in manifest and manifest[toc_id].path not in ncx_candidates:
        ncx_candidates.insert(0, manifest[toc_id].path)
    for nav_path in nav_candidates:
        try:
            entries = _parse_nav_document(_zip_read_text(zf, nav_path), nav_path)
        except KeyError:
            continue
        if entries:
            return entries
    for ncx_path in ncx_candidates:
        try:
            entries = _parse_ncx_document(_zip_read_text(zf, ncx_path), ncx_path)
        except KeyError:
            continue
        if entries:
            return entries
    return []


def _open_zip(source: bytes | str | Path) -> zipfile.ZipFile:
    try:
        if isinstance(source, (bytes, bytearray)):
            return zipfile.ZipFile(io.BytesIO(bytes(source)), "r")
        return zipfile.ZipFile(source, "r")
    except (zipfile.BadZipFile, OSError, ValueError) as exc:
        raise PackageUnreadable(f"EPUB container cannot be opened: {exc}") from exc


def read_epub(source: bytes | str | Path) -> EpubPackage:
    """
    Open an EPUB and collect its spine markup, images and table of contents.

    ``source`` is either the raw package bytes or a path. Raises
    :class:`PackageUnreadable` when the container or its OPF cannot be read;
    individual broken spine entries are skipped with a
    :class:`SectionParseFailure` warning.
    """
    with _open_zip(source) as zf:
        opf_path = _find_opf_path(zf)
        try:
            root = ET.fromstring(_zip_read_text(zf, opf_path))
        except (KeyError, ET.ParseError) as exc:
            raise PackageUnreadable(f"OPF package document {opf_path!r} is unreadable: {exc}") from exc
        manifest = _read_manifest(root, opf_path)
        spine, toc_id = _spine_paths(zf, root, manifest)
        title, author = _read_metadata(root)

        names = set(zf.namelist())
        sections: list[tuple[str, str]] = []
        for path in spine:
            name = path
            if name not in names:
                # Some spines use relative paths; try to resolve simply
                candidates = [n for n in zf.namelist() if n.endswith("/" + name)]
                if not candidates:
                    warnings.warn(
                        f"Skipping spine entry {path!r}: not found in package",
                        SectionParseFailure,
                        stacklevel=2,
                    )
                    continue
                name = candidates[0]
            try:
                markup = _zip_read_text(zf, name)
            except (KeyError, zipfile.BadZipFile, OSError) as exc:
                warnings.warn(
                    f"Skipping spine entry {name!r}: {exc}",
                    SectionParseFailure,
                    stacklevel=2,
                )
                continue
            sections.append((name, markup))

        images = _read_images(zf, manifest)
        toc = _read_toc(zf, manifest, toc_id)

    debug_log(
        f"read {title!r}: {len(sections)} sections, {len(images)} images, "
        f"{len(toc)} top-level TOC entries"
    )
    return EpubPackage(title=title, author=author, sections=sections, images=images, toc=toc)


__all__ = [
    "DEFAULT_TITLE",
    "EpubPackage",
    "PackageUnreadable",
    "SectionParseFailure",
    "read_epub",
]
