"""
Document Repository

Data access layer for documents and their chunks in the relational store.
Offers persistence primitives only; which status a document or chunk
moves to, and when, is decided by the IngestionPipeline.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Collection, Sequence
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_ingest.core.exceptions import ChunkPersistenceFailed
from knowledge_ingest.models.orm import ChunkRecord, DocumentRecord
from knowledge_ingest.models.schemas import (
    ChunkStatus,
    DocumentStatus,
    FileType,
    ProcessingStats,
    TextChunk,
)

logger = logging.getLogger(__name__)

# A run may start from these states; processing/completed documents are left alone
CLAIMABLE_STATUSES: tuple[DocumentStatus, ...] = (
    DocumentStatus.PENDING,
    DocumentStatus.ERROR,
)


def _db_error_message(exc: SQLAlchemyError) -> str:
    """Driver-level message without the SQL statement and parameters."""
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)


class DocumentRepository:
    """
    Repository for document and chunk rows.

    All methods expect an externally managed ``AsyncSession`` and commit
    their own work, so every call is one transaction.

    Key guarantees:
        - ``claim_document``: atomic compare-and-set on ``status``; at most
          one concurrent caller wins.
        - ``insert_chunks``: atomic; either every chunk row is written or
          none is.
    """

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def create_document(
        self,
        session: AsyncSession,
        *,
        collection_id: uuid.UUID,
        file_name: str,
        file_type: FileType,
        storage_path: str,
        file_size: int | None = None,
    ) -> DocumentRecord:
        """
        Register an uploaded file as a ``pending`` document.

        This is the inbound contract of the upload layer; the pipeline
        itself never creates documents.
        """
        document = DocumentRecord(
            id=uuid.uuid4(),
            collection_id=collection_id,
            file_name=file_name,
            file_type=file_type,
            storage_path=storage_path,
            file_size=file_size,
            status=DocumentStatus.PENDING,
        )
        session.add(document)
        await session.commit()
        await session.refresh(document)
        return document

    async def get_document(
        self,
        session: AsyncSession,
        document_id: uuid.UUID,
    ) -> DocumentRecord | None:
        """Look up a document by id, always reloading its columns."""
        stmt = (
            select(DocumentRecord)
            .where(DocumentRecord.id == document_id)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def list_documents(
        self,
        session: AsyncSession,
        *,
        status: DocumentStatus | None = None,
        collection_id: uuid.UUID | None = None,
    ) -> Sequence[DocumentRecord]:
        """List documents, optionally filtered by status and collection."""
        stmt = select(DocumentRecord).order_by(DocumentRecord.created_at)
        if status is not None:
            stmt = stmt.where(DocumentRecord.status == status)
        if collection_id is not None:
            stmt = stmt.where(DocumentRecord.collection_id == collection_id)
        result = await session.execute(stmt)
        return result.scalars().all()

    async def claim_document(
        self,
        session: AsyncSession,
        document_id: uuid.UUID,
    ) -> bool:
        """
        Move a document to ``processing`` if it is pending or errored.

        The status check and the write are one conditional UPDATE, which
        makes ``processing`` a lightweight lock against double submission.

        Returns:
            True if this caller claimed the document.
        """
        stmt = (
            update(DocumentRecord)
            .where(
                DocumentRecord.id == document_id,
                DocumentRecord.status.in_(CLAIMABLE_STATUSES),
            )
            .values(status=DocumentStatus.PROCESSING, error_message=None)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        await session.commit()
        return result.rowcount == 1

    async def set_document_status(
        self,
        session: AsyncSession,
        document_id: uuid.UUID,
        status: DocumentStatus,
        message: str | None = None,
    ) -> None:
        """Write the document status and message (overwrites the message)."""
        stmt = (
            update(DocumentRecord)
            .where(DocumentRecord.id == document_id)
            .values(status=status, error_message=message)
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)
        await session.commit()

    async def touch_document(
        self,
        session: AsyncSession,
        document_id: uuid.UUID,
    ) -> None:
        """Refresh ``updated_at`` so a live run is not mistaken for a stale one."""
        stmt = (
            update(DocumentRecord)
            .where(DocumentRecord.id == document_id)
            .values(updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)
        await session.commit()

    async def list_stale_documents(
        self,
        session: AsyncSession,
        cutoff: datetime,
    ) -> Sequence[DocumentRecord]:
        """Documents in ``processing`` whose last write is older than ``cutoff``."""
        last_write = func.coalesce(DocumentRecord.updated_at, DocumentRecord.created_at)
        stmt = (
            select(DocumentRecord)
            .where(
                DocumentRecord.status == DocumentStatus.PROCESSING,
                last_write < cutoff,
            )
            .order_by(DocumentRecord.created_at)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def insert_chunks(
        self,
        session: AsyncSession,
        document_id: uuid.UUID,
        chunks: Sequence[TextChunk],
    ) -> list[ChunkRecord]:
        """
        Persist a document's chunk set in one transaction, status ``pending``.

        Chunk ids are generated here so callers can address the rows
        without a round trip.

        Returns:
            ChunkRecords in chunk_index order.

        Raises:
            ChunkPersistenceFailed: The insert was rolled back; no rows exist.
        """
        records = [
            ChunkRecord(
                id=uuid.uuid4(),
                document_id=document_id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                token_count=chunk.token_count,
                status=ChunkStatus.PENDING,
            )
            for chunk in sorted(chunks, key=lambda c: c.chunk_index)
        ]

        try:
            session.add_all(records)
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise ChunkPersistenceFailed(_db_error_message(exc)) from exc

        logger.info("Inserted %d chunk rows for document %s", len(records), document_id)
        return records

    async def mark_chunks(
        self,
        session: AsyncSession,
        chunk_ids: Sequence[uuid.UUID],
        status: ChunkStatus,
        *,
        placeholder_ids: Collection[uuid.UUID] = (),
    ) -> None:
        """
        Set the status of many chunks in one bulk UPDATE.

        Embedded chunks get ``embedding_id`` set to their own id (the
        vector id) and ``is_placeholder`` from ``placeholder_ids``; any
        other status clears both.
        """
        if not chunk_ids:
            return

        embedded = status is ChunkStatus.EMBEDDED
        rows = [
            {
                "id": chunk_id,
                "status": status,
                "embedding_id": str(chunk_id) if embedded else None,
                "is_placeholder": embedded and chunk_id in placeholder_ids,
            }
            for chunk_id in chunk_ids
        ]
        await session.execute(update(ChunkRecord), rows)
        await session.commit()

    async def fail_pending_chunks(
        self,
        session: AsyncSession,
        document_id: uuid.UUID,
    ) -> int:
        """Move a document's ``pending`` chunks to ``error``. Returns the row count."""
        stmt = (
            update(ChunkRecord)
            .where(
                ChunkRecord.document_id == document_id,
                ChunkRecord.status == ChunkStatus.PENDING,
            )
            .values(status=ChunkStatus.ERROR)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        await session.commit()
        return result.rowcount or 0

    async def delete_chunks(
        self,
        session: AsyncSession,
        document_id: uuid.UUID,
    ) -> int:
        """Delete every chunk row of a document. Returns the row count."""
        stmt = delete(ChunkRecord).where(ChunkRecord.document_id == document_id)
        result = await session.execute(stmt)
        await session.commit()
        return result.rowcount or 0

    async def get_chunks(
        self,
        session: AsyncSession,
        document_id: uuid.UUID,
    ) -> Sequence[ChunkRecord]:
        """Get all chunks for a document, ordered by index."""
        stmt = (
            select(ChunkRecord)
            .where(ChunkRecord.document_id == document_id)
            .order_by(ChunkRecord.chunk_index)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def get_processing_stats(
        self,
        session: AsyncSession,
        document_id: uuid.UUID,
    ) -> ProcessingStats:
        """Count a document's chunks by status."""
        stmt = (
            select(ChunkRecord.status, func.count())
            .where(ChunkRecord.document_id == document_id)
            .group_by(ChunkRecord.status)
        )
        result = await session.execute(stmt)
        counts = {status: count for status, count in result.all()}

        return ProcessingStats(
            total_chunks=sum(counts.values()),
            embedded_chunks=counts.get(ChunkStatus.EMBEDDED, 0),
            error_chunks=counts.get(ChunkStatus.ERROR, 0),
            pending_chunks=counts.get(ChunkStatus.PENDING, 0),
        )


# Module-level singleton for convenience imports
document_repository = DocumentRepository()
