"""
Extraction Service Unit Tests

Verifies TextExtractor behaviour for PDF, DOCX and TXT bytes, and that
every failure surfaces as ExtractionFailed.

No external services required; runs entirely offline.
"""

from __future__ import annotations

import io

import docx
import fitz
import pytest

from knowledge_ingest.core.exceptions import ExtractionFailed
from knowledge_ingest.models.schemas import FileType
from knowledge_ingest.services.extraction import SUPPORTED_TYPES, TextExtractor

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def extractor() -> TextExtractor:
    """Fresh TextExtractor instance."""
    return TextExtractor()


def _pdf_bytes(pages: list[str]) -> bytes:
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text)
    raw = doc.tobytes()
    doc.close()
    return raw


@pytest.fixture
def sample_pdf() -> bytes:
    """Minimal single-page PDF with known text content."""
    return _pdf_bytes(["Hello Knowledge Base"])


@pytest.fixture
def multipage_pdf() -> bytes:
    """3-page PDF for pagination tests."""
    return _pdf_bytes([f"Page {i + 1} content" for i in range(3)])


@pytest.fixture
def sample_docx() -> bytes:
    """DOCX with two paragraphs and a 2x2 table."""
    document = docx.Document()
    document.add_paragraph("Refund policy")
    document.add_paragraph("Refunds are issued within 14 days.")
    table = document.add_table(rows=2, cols=2)
    table.cell(0, 0).text = "Plan"
    table.cell(0, 1).text = "Price"
    table.cell(1, 0).text = "Pro"
    table.cell(1, 1).text = "20 EUR"
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------


class TestPDFExtraction:
    """Tests for PDF text extraction."""

    @pytest.mark.asyncio
    async def test_extracts_text(self, extractor: TextExtractor, sample_pdf: bytes) -> None:
        text = await extractor.extract(sample_pdf, FileType.PDF)

        assert "Hello Knowledge Base" in text

    @pytest.mark.asyncio
    async def test_pages_in_order(
        self, extractor: TextExtractor, multipage_pdf: bytes
    ) -> None:
        text = await extractor.extract(multipage_pdf, FileType.PDF)

        positions = [text.index(f"Page {i} content") for i in (1, 2, 3)]
        assert positions == sorted(positions)

    @pytest.mark.asyncio
    async def test_pdf_without_text_layer_is_empty(self, extractor: TextExtractor) -> None:
        text = await extractor.extract(_pdf_bytes(["", ""]), FileType.PDF)

        assert text.strip() == ""

    @pytest.mark.asyncio
    async def test_corrupt_pdf_raises(self, extractor: TextExtractor) -> None:
        with pytest.raises(ExtractionFailed) as exc_info:
            await extractor.extract(b"not a pdf at all", FileType.PDF)

        assert exc_info.value.file_type == "pdf"
        assert str(exc_info.value).startswith("Failed to extract text from pdf file")


# ---------------------------------------------------------------------------
# DOCX
# ---------------------------------------------------------------------------


class TestDocxExtraction:
    """Tests for Word document extraction."""

    @pytest.mark.asyncio
    async def test_paragraphs_separated_by_blank_line(
        self, extractor: TextExtractor, sample_docx: bytes
    ) -> None:
        text = await extractor.extract(sample_docx, FileType.DOCX)

        assert "Refund policy\n\nRefunds are issued within 14 days." in text

    @pytest.mark.asyncio
    async def test_table_cells_included(
        self, extractor: TextExtractor, sample_docx: bytes
    ) -> None:
        text = await extractor.extract(sample_docx, FileType.DOCX)

        assert "Plan\tPrice" in text
        assert "Pro\t20 EUR" in text

    @pytest.mark.asyncio
    async def test_not_a_zip_raises(self, extractor: TextExtractor) -> None:
        with pytest.raises(ExtractionFailed) as exc_info:
            await extractor.extract(b"plain bytes, not a docx", FileType.DOCX)

        assert exc_info.value.file_type == "docx"


# ---------------------------------------------------------------------------
# TXT
# ---------------------------------------------------------------------------


class TestTxtExtraction:
    """Tests for plain text decoding."""

    @pytest.mark.asyncio
    async def test_utf8_roundtrip(self, extractor: TextExtractor) -> None:
        text = await extractor.extract("Crème brûlée\nline two".encode(), FileType.TXT)

        assert text == "Crème brûlée\nline two"

    @pytest.mark.asyncio
    async def test_invalid_bytes_are_replaced(self, extractor: TextExtractor) -> None:
        text = await extractor.extract(b"ok \xff\xfe end", FileType.TXT)

        assert text.startswith("ok ")
        assert text.endswith(" end")
        assert "�" in text

    @pytest.mark.asyncio
    async def test_empty_file(self, extractor: TextExtractor) -> None:
        assert await extractor.extract(b"", FileType.TXT) == ""

    @pytest.mark.asyncio
    async def test_accepts_plain_string_type(self, extractor: TextExtractor) -> None:
        assert await extractor.extract(b"hello", "txt") == "hello"


# ---------------------------------------------------------------------------
# Unsupported types
# ---------------------------------------------------------------------------


class TestUnsupportedType:
    @pytest.mark.asyncio
    async def test_unknown_type_raises(self, extractor: TextExtractor) -> None:
        with pytest.raises(ExtractionFailed, match="unsupported file type"):
            await extractor.extract(b"<html></html>", "html")

    def test_supported_types(self) -> None:
        assert SUPPORTED_TYPES == {FileType.PDF, FileType.DOCX, FileType.TXT}
