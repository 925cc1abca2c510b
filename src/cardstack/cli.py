from __future__ import annotations

import argparse
import sys
import warnings
from importlib import metadata
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

import tomllib

from .book import Book, ReaderSession, load_book
from .epub import PackageUnreadable
from .logging_utils import set_debug_logging
from .models import ChapterNode, ChunkKind, ChunkSection
from .settings import ContentDensity, FontSize, ReadingSettings, Viewport, height_budget

PREVIEW_CHARS = 60


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("cardstack")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _parse_viewport(value: str) -> Viewport:
    try:
        width_text, height_text = value.lower().split("x", 1)
        width, height = float(width_text), float(height_text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected WIDTHxHEIGHT, got {value!r}") from exc
    if width <= 0 or height <= 0:
        raise argparse.ArgumentTypeError("viewport dimensions must be positive")
    return Viewport(width=width, height=height)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="cardstack",
        description="Inspect how an EPUB is segmented into reading cards and paginated for a viewport.",
    )
    ap.add_argument("-v", "--version", action="version", version=f"cardstack {__version__}")
    ap.add_argument("input_path", help="Path to the .epub file")
    ap.add_argument("--chunks", action="store_true", help="List every original chunk.")
    ap.add_argument("--toc", action="store_true", help="Show the chapter tree with resolved chunk indices.")
    ap.add_argument(
        "--reflow",
        metavar="WIDTHxHEIGHT",
        type=_parse_viewport,
        help="Paginate for a viewport (e.g. 390x844) and list the display chunks.",
    )
    ap.add_argument(
        "--density",
        choices=[d.value for d in ContentDensity],
        default=ContentDensity.MEDIUM.value,
        help="Content density used with --reflow (default: medium).",
    )
    ap.add_argument(
        "--font-size",
        choices=[s.value for s in FontSize],
        default=FontSize.M.value,
        help="Font size step used with --reflow (default: m).",
    )
    ap.add_argument("--search", metavar="QUERY", help="Search the original chunks.")
    ap.add_argument("--debug", action="store_true", help="Enable verbose debug logging.")
    return ap


def _preview(text: str | None) -> str:
    flat = " ".join((text or "").split())
    if len(flat) > PREVIEW_CHARS:
        return flat[: PREVIEW_CHARS - 1] + "…"
    return flat


def _print_summary(console: Console, book: Book) -> None:
    front = sum(1 for c in book.chunks if c.section is ChunkSection.FRONT_MATTER)
    images = sum(1 for c in book.chunks if c.kind is ChunkKind.IMAGE)
    byline = f" by {escape(book.author)}" if book.author else ""
    console.print(f"[bold]{escape(book.title)}[/bold]{byline}")
    console.print(
        f"{len(book.chunks)} chunks ({front} front matter, {images} images), "
        f"{len(book.anchor_map)} anchors, {len(book.chapters)} top-level chapters"
    )
    if book.used_fallback:
        console.print("[yellow]Structured parsing failed; plain-text fallback in use.[/yellow]")


def _print_chunks(console: Console, book: Book) -> None:
    table = Table(title="Original chunks")
    table.add_column("#", justify="right")
    table.add_column("Kind")
    table.add_column("Section")
    table.add_column("Source")
    table.add_column("H")
    table.add_column("Links", justify="right")
    table.add_column("Text")
    for chunk in book.chunks:
        table.add_row(
            str(chunk.index),
            chunk.kind.value,
            chunk.section.value,
            Path(chunk.source_file_key).name if chunk.source_file_key else "",
            "✓" if chunk.is_heading else "",
            str(len(chunk.links)),
            _preview(chunk.text) if chunk.is_text else f"<{len(chunk.image_bytes or b'')} bytes>",
        )
    console.print(table)


def _add_chapters(tree: Tree, nodes: tuple[ChapterNode, ...]) -> None:
    for node in nodes:
        branch = tree.add(f"{escape(node.title)} [dim]→ chunk {node.original_chunk_index}[/dim]")
        _add_chapters(branch, node.children)


def _print_reflow(console: Console, book: Book, viewport: Viewport, settings: ReadingSettings) -> None:
    session = ReaderSession(book)
    session.relayout(viewport, settings)
    layout = session.layout
    table = Table(
        title=f"Display chunks for {viewport.width:g}x{viewport.height:g} "
        f"(budget {height_budget(viewport, settings):.0f}px)"
    )
    table.add_column("#", justify="right")
    table.add_column("Originals")
    table.add_column("Text")
    for index, chunk in enumerate(layout.chunks):
        originals = ",".join(str(i) for i in chunk.contributing_original_indices)
        body = _preview(chunk.text) if chunk.kind is ChunkKind.TEXT else "<image>"
        table.add_row(str(index), originals, body)
    console.print(table)


def _run(args: argparse.Namespace, console: Console) -> int:
    input_path = Path(args.input_path)
    if not input_path.exists():
        raise FileNotFoundError(f"Input path not found: {input_path}")
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        book = load_book(input_path)
    for warning in caught:
        console.print(f"[yellow]warning:[/yellow] {escape(str(warning.message))}")

    _print_summary(console, book)
    if args.chunks:
        _print_chunks(console, book)
    if args.toc:
        tree = Tree("Table of contents")
        _add_chapters(tree, book.chapters)
        console.print(tree)
    if args.search:
        hits = ReaderSession(book).search(args.search)
        console.print(f"{len(hits)} result(s) for {args.search!r}")
        for hit in hits:
            console.print(f"  [{hit.original_index}] {hit.snippet}", markup=False)
    if args.reflow is not None:
        settings = ReadingSettings(density=ContentDensity(args.density), font_size=FontSize(args.font_size))
        _print_reflow(console, book, args.reflow, settings)
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    args = parser.parse_args(argv)
    set_debug_logging(bool(args.debug))
    console = Console()
    try:
        return _run(args, console)
    except (FileNotFoundError, PackageUnreadable) as exc:
        Console(stderr=True).print(f"[red]error:[/red] {escape(str(exc))}")
        return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
