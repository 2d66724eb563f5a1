"""
Vector Index Model

Backing table of PgVectorStore. It is declared on its own base because
the vector index is a separate system from the relational store: the
ingestion pipeline never joins or transacts across the two.
"""

from __future__ import annotations

from typing import Any

from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Output size of text-embedding-3-small
EMBEDDING_DIMENSION: int = 1536


class VectorBase(DeclarativeBase):
    """Declarative base for vector index tables."""

    pass


class VectorEntryRecord(VectorBase):
    """
    One indexed vector with its retrieval metadata.

    Attributes:
        id: Vector id (the chunk id).
        collection_id: Owning collection, duplicated out of ``payload``
            for filtered similarity search.
        document_id: Source document.
        embedding: 1536-dim vector.
        is_placeholder: True for fallback vectors awaiting re-embedding.
        payload: String metadata (text, file name, chunk index, ...).
    """

    __tablename__ = "vector_index"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    collection_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    document_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    embedding: Mapped[list[float]] = mapped_column(
        Vector(EMBEDDING_DIMENSION),
        nullable=False,
    )
    is_placeholder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payload: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        default=dict,
    )

    def __repr__(self) -> str:
        return f"<VectorEntryRecord(id={self.id:.8}, doc={self.document_id:.8})>"
