"""
Document API Schemas

Pydantic models for the document processing endpoints.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from knowledge_ingest.models.schemas import DocumentStatus, FileType, ProcessingStats


class ProcessAcceptedResponse(BaseModel):
    """Response for a document accepted for background processing."""

    document_id: UUID = Field(description="Document identifier")
    status: str = Field(default="queued", description="'queued' or 'already_queued'")
    message: str = Field(description="Human-readable status message")


class DocumentStatusResponse(BaseModel):
    """Current processing state of a document."""

    document_id: UUID = Field(description="Document identifier")
    collection_id: UUID = Field(description="Owning collection (knowledge base)")
    file_name: str = Field(description="Original filename")
    file_type: FileType = Field(description="Declared file type")
    status: DocumentStatus = Field(description="Lifecycle status")
    message: str | None = Field(
        default=None,
        description="Failure reason, or a warning for degraded completions",
    )
    stats: ProcessingStats = Field(description="Chunk counts by status")
    created_at: datetime
    updated_at: datetime | None = None
