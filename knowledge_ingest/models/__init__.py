"""Models package: Pydantic schemas and SQLAlchemy ORM for the ingestion pipeline."""

from knowledge_ingest.models.orm import ChunkRecord, DocumentRecord
from knowledge_ingest.models.schemas import (
    ChunkStatus,
    DocumentStatus,
    FileType,
    ProcessingOutcome,
    ProcessingStats,
    TextChunk,
    VectorPayload,
)
from knowledge_ingest.models.vector_index import EMBEDDING_DIMENSION, VectorEntryRecord

__all__ = [
    # Pydantic schemas (pipeline values)
    "ChunkStatus",
    "DocumentStatus",
    "FileType",
    "ProcessingOutcome",
    "ProcessingStats",
    "TextChunk",
    "VectorPayload",
    # SQLAlchemy ORM (relational store)
    "ChunkRecord",
    "DocumentRecord",
    # Vector index
    "EMBEDDING_DIMENSION",
    "VectorEntryRecord",
]
