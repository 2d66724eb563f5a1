"""
Relational Store Models

SQLAlchemy 2.0 ORM models for documents and their chunks.

Tables:
    documents       : Uploaded files registered for ingestion, with status.
    document_chunks : Ordered text segments of a document, with status.

Enum columns are stored as plain strings (``native_enum=False``) so the
same models run on PostgreSQL and on SQLite in tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from knowledge_ingest.models.base import Base, TimestampMixin
from knowledge_ingest.models.schemas import ChunkStatus, DocumentStatus, FileType


def _string_enum(enum_cls: type[PyEnum]) -> Enum:
    """Enum column stored by value ('pending'), not by member name ('PENDING')."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=16,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class DocumentRecord(Base, TimestampMixin):
    """
    A source file owned by a collection (chatbot knowledge base).

    Rows are created by the upload layer with status ``pending``; from
    then on only the IngestionPipeline changes ``status`` and
    ``error_message``.

    Attributes:
        id: UUID primary key.
        collection_id: Owning chatbot / knowledge base.
        file_name: Original filename with extension.
        file_type: Declared type (pdf, docx, txt).
        storage_path: Location reference resolvable by a StorageBackend.
        file_size: Size in bytes, if known.
        status: Lifecycle state.
        error_message: Failure reason or degraded-mode warning.
        chunks: Related ChunkRecord instances (cascade delete).
    """

    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    collection_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_type: Mapped[FileType] = mapped_column(_string_enum(FileType), nullable=False)
    storage_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[DocumentStatus] = mapped_column(
        _string_enum(DocumentStatus),
        nullable=False,
        default=DocumentStatus.PENDING,
        index=True,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    chunks: Mapped[list[ChunkRecord]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ChunkRecord.chunk_index",
    )

    def __repr__(self) -> str:
        return (
            f"<DocumentRecord(id={self.id!s:.8}, file='{self.file_name}', "
            f"status={self.status})>"
        )


class ChunkRecord(Base):
    """
    A segment of a parent document, the unit of embedding and retrieval.

    ``(document_id, chunk_index)`` is unique: indices are contiguous from
    0 and never reused within a document's chunk set.

    Attributes:
        id: UUID primary key, also used as the vector id.
        document_id: Foreign key to parent document (CASCADE delete).
        chunk_index: Zero-based position within the parent document.
        content: Chunk text.
        token_count: Estimated token count.
        status: pending until the embedding + upsert stage settles it.
        embedding_id: Vector-store id once embedded.
        is_placeholder: True when the stored vector is a fallback vector.
    """

    __tablename__ = "document_chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_chunks_document_index"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[ChunkStatus] = mapped_column(
        _string_enum(ChunkStatus),
        nullable=False,
        default=ChunkStatus.PENDING,
    )
    embedding_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_placeholder: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    document: Mapped[DocumentRecord] = relationship(back_populates="chunks")

    def __repr__(self) -> str:
        return (
            f"<ChunkRecord(id={self.id!s:.8}, "
            f"doc={self.document_id!s:.8}, idx={self.chunk_index})>"
        )
