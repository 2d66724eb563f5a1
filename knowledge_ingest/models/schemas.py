"""
Ingestion Schemas

Enums and Pydantic models for the values flowing between pipeline
stages: chunker output, vector payloads, and run outcomes.
"""

from __future__ import annotations

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class FileType(str, Enum):
    """Declared type of an uploaded source file."""

    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"


class DocumentStatus(str, Enum):
    """Document lifecycle: pending → processing → completed | error."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class ChunkStatus(str, Enum):
    """Chunk lifecycle: pending → embedded | error."""

    PENDING = "pending"
    EMBEDDED = "embedded"
    ERROR = "error"


class TextChunk(BaseModel):
    """
    A bounded segment of extracted text, before persistence.

    Attributes:
        chunk_index: Zero-based position within the document.
        content: Chunk text.
        token_count: Cheap size estimate (see ``estimate_token_count``).
    """

    chunk_index: int = Field(ge=0, description="Position in document (0-based)")
    content: str = Field(min_length=1, description="Chunk text content")
    token_count: int = Field(ge=0, description="Estimated token count")


class VectorPayload(BaseModel):
    """One (id, vector, metadata) triple for the vector store."""

    id: str = Field(min_length=1, description="Vector id (the chunk id)")
    values: list[float] = Field(description="Embedding vector")
    metadata: dict[str, str] = Field(default_factory=dict)


class ProcessingStats(BaseModel):
    """Per-document chunk counts by status."""

    total_chunks: int = 0
    embedded_chunks: int = 0
    error_chunks: int = 0
    pending_chunks: int = 0


class ProcessingOutcome(BaseModel):
    """
    Result of one pipeline run for a document.

    ``skipped`` is set when the document was not claimable (already
    processing or completed) and nothing was done.
    """

    document_id: UUID
    status: DocumentStatus
    message: str | None = None
    total_chunks: int = 0
    embedded_chunks: int = 0
    failed_chunks: int = 0
    used_fallback: bool = False
    skipped: bool = False
