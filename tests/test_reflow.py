from __future__ import annotations

import random

import pytest

from cardstack.measure import MonospaceMeasurer
from cardstack.models import ChunkKind, ChunkSection, LinkSpan, OriginalChunk
from cardstack.reflow import MIN_HEIGHT_BUDGET, reflow, split_chunk_by_height


def by_length(text: str, is_heading: bool) -> float:
    return float(len(text))


def text_chunk(index: int, text: str, **kwargs) -> OriginalChunk:
    kwargs.setdefault("source_file_key", "ch.xhtml")
    return OriginalChunk(index=index, kind=ChunkKind.TEXT, text=text, **kwargs)


def assert_partition(result, count: int) -> None:
    flattened: list[int] = []
    for indices in result.display_to_original:
        for index in indices:
            if not flattened or flattened[-1] != index:
                flattened.append(index)
    assert flattened == list(range(count))
    assert len(result.original_to_display) == count
    for original_index, display_index in enumerate(result.original_to_display):
        assert original_index in result.display_to_original[display_index]
        assert all(original_index not in earlier for earlier in result.display_to_original[:display_index])


def test_chunks_from_different_files_stay_apart() -> None:
    chunks = [
        text_chunk(0, "Short one.", source_file_key="a.xhtml"),
        text_chunk(1, "Short two.", source_file_key="b.xhtml"),
    ]
    result = reflow(chunks, 40, 200, by_length)
    assert len(result.chunks) == 2
    assert result.display_to_original == ((0,), (1,))
    assert result.original_to_display == (0, 1)


def test_neighbours_merge_while_they_fit() -> None:
    chunks = [text_chunk(0, "Short one."), text_chunk(1, "Short two."), text_chunk(2, "x" * 30)]
    result = reflow(chunks, 40, 25, by_length)
    assert [c.text for c in result.chunks] == ["Short one.\n\nShort two.", "x" * 30]
    assert result.display_to_original == ((0, 1), (2,))
    assert result.original_to_display == (0, 0, 1)


def test_merge_shifts_links_of_later_chunk() -> None:
    chunks = [
        text_chunk(0, "Intro."),
        text_chunk(1, "A link here.", links=(LinkSpan(2, 6, "#n1"),)),
    ]
    result = reflow(chunks, 100, 1000, by_length)
    merged = result.chunks[0]
    link = merged.links[0]
    assert merged.text[link.start : link.end] == "link"


def test_sections_and_headings_never_merge() -> None:
    chunks = [
        text_chunk(0, "Cover blurb.", section=ChunkSection.FRONT_MATTER),
        text_chunk(1, "Chapter", is_heading=True),
        text_chunk(2, "Body text."),
        text_chunk(3, "More body."),
    ]
    result = reflow(chunks, 100, 1000, by_length)
    assert result.display_to_original == ((0,), (1,), (2, 3))
    assert result.chunks[1].is_heading
    assert not result.chunks[2].is_heading


def test_image_passes_through_and_breaks_merging() -> None:
    chunks = [
        text_chunk(0, "Before."),
        OriginalChunk(index=1, kind=ChunkKind.IMAGE, source_file_key="ch.xhtml", image_bytes=b"IMG"),
        text_chunk(2, "After."),
    ]
    result = reflow(chunks, 10, 1, by_length)
    assert [c.kind for c in result.chunks] == [ChunkKind.TEXT, ChunkKind.IMAGE, ChunkKind.TEXT]
    assert result.chunks[1].image_bytes == b"IMG"
    assert result.display_to_original == ((0,), (1,), (2,))


def test_heading_taller_than_budget_is_not_split() -> None:
    heading = text_chunk(0, "A very long heading. That goes on. And on.", is_heading=True)
    pieces = split_chunk_by_height(heading, 5, by_length)
    assert len(pieces) == 1
    assert pieces[0].text == heading.text
    assert pieces[0].is_heading


def test_oversized_text_split_on_sentences_keeps_contained_links() -> None:
    text = "Abcdefghijklm. Nopqrstuvwxyza."
    assert len(text) == 30
    chunk = text_chunk(
        0,
        text,
        links=(LinkSpan(2, 8, "#inside"), LinkSpan(10, 20, "#across"), LinkSpan(16, 20, "#second")),
    )
    pieces = split_chunk_by_height(chunk, 20, by_length)
    assert [p.text for p in pieces] == ["Abcdefghijklm.", "Nopqrstuvwxyza."]
    assert pieces[0].links == (LinkSpan(2, 8, "#inside"),)
    assert pieces[1].links == (LinkSpan(1, 5, "#second"),)
    assert all(p.contributing_original_indices == (0,) for p in pieces)
    for piece in pieces:
        for link in piece.links:
            assert 0 <= link.start < link.end <= len(piece.text)


def test_split_original_maps_to_its_first_piece() -> None:
    chunks = [
        text_chunk(0, "Tiny."),
        text_chunk(1, "First sentence here. Second sentence here. Third sentence here."),
        text_chunk(2, "Tail."),
    ]
    result = reflow(chunks, 100, 30, by_length)
    assert_partition(result, 3)
    assert result.original_to_display[1] == 0
    assert all(len(c.text) <= 30 for c in result.chunks)


def test_unsplittable_text_is_kept_whole() -> None:
    chunk = text_chunk(0, "a" * 50)
    result = reflow([chunk], 100, 10, by_length)
    assert [c.text for c in result.chunks] == ["a" * 50]


def test_non_positive_budget_is_clamped() -> None:
    chunks = [text_chunk(0, "One. Two."), text_chunk(1, "Three.")]
    result = reflow(chunks, 100, 0, by_length)
    assert result.height_budget == MIN_HEIGHT_BUDGET
    assert_partition(result, 2)


def test_empty_input_gives_empty_layout() -> None:
    result = reflow([], 100, 100, by_length)
    assert result.chunks == ()
    assert result.original_to_display == ()
    assert len(result) == 0


def _random_book(rng: random.Random, count: int) -> list[OriginalChunk]:
    words = ["lorem", "ipsum", "dolor", "sit", "amet", "consectetur", "adipiscing", "elit"]
    chunks: list[OriginalChunk] = []
    for index in range(count):
        roll = rng.random()
        key = f"ch{index // 7}.xhtml"
        if roll < 0.1:
            chunks.append(OriginalChunk(index=index, kind=ChunkKind.IMAGE, source_file_key=key, image_bytes=b"x"))
            continue
        sentences = []
        for _ in range(rng.randint(1, 6)):
            body = " ".join(rng.choice(words) for _ in range(rng.randint(2, 14)))
            sentences.append(body.capitalize() + rng.choice(".!?"))
        section = ChunkSection.FRONT_MATTER if index < 3 else ChunkSection.CONTENT
        chunks.append(
            text_chunk(index, " ".join(sentences), source_file_key=key, section=section, is_heading=roll > 0.9)
        )
    return chunks


@pytest.mark.parametrize("seed", [1, 7, 42])
def test_random_books_partition_and_stay_total(seed: int) -> None:
    rng = random.Random(seed)
    chunks = _random_book(rng, 60)
    measure = MonospaceMeasurer(320)
    for budget in (40.0, 150.0, 600.0):
        result = reflow(chunks, 320, budget, measure)
        assert_partition(result, len(chunks))
        for chunk in result.chunks:
            for link in chunk.links:
                assert 0 <= link.start < link.end <= len(chunk.text or "")
        source_words = " ".join(c.text for c in chunks if c.text).split()
        display_words = " ".join(c.text for c in result.chunks if c.text).split()
        assert display_words == source_words


def test_reflow_is_deterministic() -> None:
    chunks = _random_book(random.Random(3), 40)
    measure = MonospaceMeasurer(280)
    first = reflow(chunks, 280, 120, measure)
    second = reflow(chunks, 280, 120, measure)
    assert first == second
