"""
Text Extraction Service

Converts raw file bytes of a declared type into plain text.

Supported formats:
    - PDF (pdf): Text layer via PyMuPDF (fitz), no page rendering
    - Word (docx): Paragraph and table text via python-docx
    - Plain text (txt): UTF-8 decoding

An image-only PDF yields an empty string; that is not an error.
"""

from __future__ import annotations

import asyncio
import io
import logging
from collections.abc import Callable
from typing import Final

import docx
import fitz  # PyMuPDF

from knowledge_ingest.core.exceptions import ExtractionFailed
from knowledge_ingest.models.schemas import FileType

logger = logging.getLogger(__name__)

SUPPORTED_TYPES: Final[frozenset[FileType]] = frozenset(FileType)


def _extract_pdf(raw: bytes) -> str:
    """Join the text layer of every page."""
    with fitz.open(stream=raw, filetype="pdf") as pdf:
        return "\n".join(page.get_text() for page in pdf)


def _extract_docx(raw: bytes) -> str:
    """Body paragraphs separated by blank lines, then table cell text."""
    document = docx.Document(io.BytesIO(raw))
    blocks = [p.text for p in document.paragraphs if p.text.strip()]

    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                blocks.append("\t".join(cells))

    return "\n\n".join(blocks)


def _extract_txt(raw: bytes) -> str:
    # Invalid sequences become U+FFFD rather than failing the document
    return raw.decode("utf-8", errors="replace")


_HANDLERS: Final[dict[FileType, Callable[[bytes], str]]] = {
    FileType.PDF: _extract_pdf,
    FileType.DOCX: _extract_docx,
    FileType.TXT: _extract_txt,
}


class TextExtractor:
    """
    Async text extractor for uploaded documents.

    Parsing is CPU-bound and is offloaded to a thread pool via
    ``asyncio.to_thread``. Every failure is reported as
    ``ExtractionFailed`` naming the file type whose handler failed.

    Usage::

        extractor = TextExtractor()
        text = await extractor.extract(raw, FileType.PDF)
    """

    async def extract(self, raw: bytes, file_type: FileType | str) -> str:
        """
        Extract plain text from file bytes.

        Args:
            raw: File content.
            file_type: Declared type of the file.

        Returns:
            Extracted text, possibly empty.

        Raises:
            ExtractionFailed: Unsupported type, or the handler failed.
        """
        try:
            kind = FileType(file_type)
        except ValueError as exc:
            raise ExtractionFailed(str(file_type), "unsupported file type") from exc

        handler = _HANDLERS[kind]
        try:
            text = await asyncio.to_thread(handler, raw)
        except Exception as exc:
            raise ExtractionFailed(kind.value, str(exc) or type(exc).__name__) from exc

        logger.info(
            "Extracted %d characters from %s file (%d bytes)",
            len(text),
            kind.value,
            len(raw),
        )
        return text
