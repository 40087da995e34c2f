"""
Tests for the textbook chunker.
"""

import pytest

from pedsquery.rag.chunker import SectionTitleExtractor, TextbookChunker

PARA_ONE = (
    "Kawasaki disease is an acute febrile vasculitis affecting young children "
    "worldwide"
)
PARA_TWO = (
    "Coronary artery aneurysms develop in a quarter of untreated patients with "
    "the disease"
)
PARA_THREE = (
    "Intravenous immunoglobulin within ten days of fever onset lowers aneurysm "
    "risk sharply"
)

CHAPTER_TEXT = (
    f"# Kawasaki Disease\n\n{PARA_ONE}\n\n{PARA_TWO}\n\n## Treatment\n\n{PARA_THREE}"
)


def _words(count: int) -> str:
    return " ".join(f"word{i}" for i in range(count))


class TestSectionTitleExtractor:
    """Tests for heading detection."""

    @pytest.mark.unit
    def test_markdown_heading(self):
        assert SectionTitleExtractor().extract("## Clinical Manifestations\nFever") == (
            "Clinical Manifestations"
        )

    @pytest.mark.unit
    def test_numbered_heading(self):
        assert SectionTitleExtractor().extract("Intro\n12.3 Laboratory Findings\nCBC") == (
            "Laboratory Findings"
        )

    @pytest.mark.unit
    def test_no_heading(self):
        assert SectionTitleExtractor().extract("Fever lasting five days.") is None


class TestTextbookChunker:
    """Tests for chapter chunking."""

    @pytest.mark.unit
    def test_overlap_must_be_smaller_than_size(self):
        with pytest.raises(ValueError):
            TextbookChunker(chunk_size=100, chunk_overlap=100)

    @pytest.mark.unit
    def test_empty_text(self):
        chunker = TextbookChunker()
        assert chunker.chunk("", "Cardiology") == []
        assert chunker.chunk("   \n\n ", "Cardiology") == []
        assert chunker.split("  ") == []

    @pytest.mark.unit
    def test_chunks_respect_size(self):
        chunker = TextbookChunker(chunk_size=100, chunk_overlap=20)
        chunks = chunker.chunk(_words(200), "Cardiology")

        assert len(chunks) > 1
        assert all(len(c.content) <= 100 for c in chunks)

    @pytest.mark.unit
    def test_consecutive_chunks_overlap(self):
        chunker = TextbookChunker(chunk_size=100, chunk_overlap=30)
        segments = chunker.split(_words(200))

        last_word = segments[0].split()[-1]
        assert last_word in segments[1].split()

    @pytest.mark.unit
    def test_sequential_indices_and_provenance(self):
        chunker = TextbookChunker(chunk_size=100, chunk_overlap=10)
        chunks = chunker.chunk(
            CHAPTER_TEXT, "Cardiology", page_number=2310, metadata={"edition": "22nd Edition"}
        )

        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert all(c.chapter_title == "Cardiology" for c in chunks)
        assert all(c.page_number == 2310 for c in chunks)
        assert all(c.edition == "22nd Edition" for c in chunks)

    @pytest.mark.unit
    def test_metadata_is_copied_per_chunk(self):
        chunker = TextbookChunker(chunk_size=100, chunk_overlap=10)
        chunks = chunker.chunk(CHAPTER_TEXT, "Cardiology", metadata={"edition": "22nd"})

        chunks[0].metadata["edition"] = "changed"
        assert chunks[1].metadata["edition"] == "22nd"

    @pytest.mark.unit
    def test_ids_are_stable(self):
        chunker = TextbookChunker(chunk_size=100, chunk_overlap=10)
        first = chunker.chunk(CHAPTER_TEXT, "Cardiology")
        second = chunker.chunk(CHAPTER_TEXT, "Cardiology")

        assert [c.id for c in first] == [c.id for c in second]

    @pytest.mark.unit
    def test_repeated_passages_get_distinct_ids(self):
        chunker = TextbookChunker(chunk_size=100, chunk_overlap=10)
        chunks = chunker.chunk(f"{PARA_ONE}\n\n{PARA_TWO}\n\n{PARA_ONE}", "Cardiology")

        assert chunks[0].content == chunks[2].content
        assert len({c.id for c in chunks}) == len(chunks)

    @pytest.mark.unit
    def test_same_text_in_other_chapter_gets_other_id(self):
        chunker = TextbookChunker(chunk_size=100, chunk_overlap=10)
        cardiology = chunker.chunk(PARA_ONE, "Cardiology")
        rheumatology = chunker.chunk(PARA_ONE, "Rheumatology")

        assert cardiology[0].id != rheumatology[0].id

    @pytest.mark.unit
    def test_section_title_carries_forward(self):
        chunker = TextbookChunker(chunk_size=100, chunk_overlap=10)
        chunks = chunker.chunk(CHAPTER_TEXT, "Cardiology")

        by_text = {c.content: c.section_title for c in chunks}
        assert chunks[0].section_title == "Kawasaki Disease"
        assert by_text[PARA_TWO] == "Kawasaki Disease"
        assert by_text[PARA_THREE] == "Treatment"

    @pytest.mark.unit
    def test_content_is_normalized(self):
        chunker = TextbookChunker()
        chunks = chunker.chunk("Give 5 MG   twice daily...", "Pharmacology")
        assert chunks[0].content == "Give 5mg twice daily."
