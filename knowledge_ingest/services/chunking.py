"""
Chunking Service

Splits extracted text into bounded, overlapping chunks suitable for
embedding and retrieval. Uses LangChain's RecursiveCharacterTextSplitter
for boundary detection: paragraph > line > sentence > word, with a hard
character cut only when no natural break fits in the window.

Configuration tuned for text-embedding-3-small (8191-token input):
    - chunk_size=2000 chars: ~500 tokens, well inside the model window
    - chunk_overlap=200 chars: preserves context across boundaries
"""

from __future__ import annotations

import logging
import math

from langchain_text_splitters import RecursiveCharacterTextSplitter

from knowledge_ingest.models.schemas import TextChunk

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE: int = 2000
DEFAULT_CHUNK_OVERLAP: int = 200

# Rough English average for OpenAI tokenizers
CHARS_PER_TOKEN: int = 4


def estimate_token_count(text: str) -> int:
    """
    Cheap token estimate: characters / 4, rounded up.

    Correlates with text length only; never an exact tokenizer count.
    """
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class TextChunker:
    """
    Splits text into ordered, overlapping TextChunks.

    Deterministic: the same text always yields the same chunks.
    Empty or whitespace-only text yields no chunks.

    Usage::

        chunker = TextChunker()
        chunks = chunker.split(text)
        # Each chunk has: chunk_index, content, token_count

    Args:
        chunk_size: Maximum characters per chunk.
        chunk_overlap: Characters shared between consecutive chunks.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        if chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be less than "
                f"chunk_size ({chunk_size})"
            )

        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            length_function=len,
            separators=["\n\n", "\n", ". ", " ", ""],
            # "end": sentences keep their full stop instead of the next chunk
            keep_separator="end",
        )
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap

    @property
    def chunk_size(self) -> int:
        """Maximum characters per chunk."""
        return self._chunk_size

    @property
    def chunk_overlap(self) -> int:
        """Characters shared between consecutive chunks."""
        return self._chunk_overlap

    def split(self, text: str) -> list[TextChunk]:
        """
        Split text into chunks.

        Args:
            text: Extracted document text.

        Returns:
            TextChunks with contiguous indices starting at 0.
        """
        if not text or not text.strip():
            return []

        pieces = [piece for piece in self._splitter.split_text(text) if piece.strip()]

        chunks = [
            TextChunk(
                chunk_index=i,
                content=piece,
                token_count=estimate_token_count(piece),
            )
            for i, piece in enumerate(pieces)
        ]

        logger.debug(
            "Split %d chars into %d chunks (size=%d, overlap=%d)",
            len(text),
            len(chunks),
            self._chunk_size,
            self._chunk_overlap,
        )

        return chunks
