"""
Vector Store Service

Writes (id, vector, metadata) triples to the vector index in one bulk
call. From the pipeline's point of view an upsert is all-or-nothing:
it either returns (every vector accepted) or raises UpsertFailed (none
credited). ``delete_document`` drops a document's vectors before it is
re-ingested, so the index never keeps vectors of chunk rows that no
longer exist.

PgVectorStore keeps the index in PostgreSQL via pgvector, in its own
transaction, independent of the document/chunk rows.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from knowledge_ingest.core.exceptions import UpsertFailed, VectorDeleteFailed
from knowledge_ingest.models.schemas import VectorPayload
from knowledge_ingest.models.vector_index import VectorEntryRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class VectorStore(Protocol):
    """External vector index accepting bulk upserts and per-document deletes."""

    async def upsert(self, vectors: Sequence[VectorPayload]) -> None: ...

    async def delete_document(self, document_id: uuid.UUID) -> int: ...


def build_upsert_rows(vectors: Sequence[VectorPayload]) -> list[dict[str, Any]]:
    """Map payloads to ``vector_index`` rows."""
    return [
        {
            "id": vector.id,
            "collection_id": vector.metadata.get("collection_id", ""),
            "document_id": vector.metadata.get("document_id", ""),
            "embedding": vector.values,
            "is_placeholder": vector.metadata.get("is_placeholder") == "true",
            "metadata": dict(vector.metadata),
        }
        for vector in vectors
    ]


class PgVectorStore:
    """
    Vector index stored in the ``vector_index`` table (pgvector).

    One upsert is one ``INSERT ... ON CONFLICT (id) DO UPDATE`` statement
    in one transaction, so partial writes cannot be observed. A document
    delete is one ``DELETE ... WHERE document_id = ...``.

    Usage::

        store = PgVectorStore(get_session_factory(), timeout=30)
        await store.upsert(payload)

    Args:
        session_factory: Async session maker bound to the index database.
        timeout: Seconds before the call is abandoned (treated as failure).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        timeout: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._timeout = timeout

    async def upsert(self, vectors: Sequence[VectorPayload]) -> None:
        """
        Insert or replace vectors by id.

        Raises:
            UpsertFailed: The write was rolled back or timed out.
        """
        if not vectors:
            return

        try:
            await asyncio.wait_for(self._write(vectors), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise UpsertFailed(f"vector upsert timed out after {self._timeout}s") from exc

        logger.info("Upserted %d vectors", len(vectors))

    async def _write(self, vectors: Sequence[VectorPayload]) -> None:
        stmt = insert(VectorEntryRecord.__table__).values(build_upsert_rows(vectors))
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "collection_id": stmt.excluded["collection_id"],
                "document_id": stmt.excluded["document_id"],
                "embedding": stmt.excluded["embedding"],
                "is_placeholder": stmt.excluded["is_placeholder"],
                "metadata": stmt.excluded["metadata"],
            },
        )

        async with self._session_factory() as session:
            try:
                await session.execute(stmt)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise UpsertFailed(_db_error_message(exc)) from exc

    async def delete_document(self, document_id: uuid.UUID) -> int:
        """
        Remove every vector of a document.

        Returns:
            Number of vectors removed.

        Raises:
            VectorDeleteFailed: The delete was rolled back or timed out.
        """
        stmt = delete(VectorEntryRecord).where(
            VectorEntryRecord.document_id == str(document_id)
        )
        try:
            removed = await asyncio.wait_for(self._delete(stmt), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise VectorDeleteFailed(
                f"vector delete timed out after {self._timeout}s"
            ) from exc

        if removed:
            logger.info("Deleted %d vectors of document %s", removed, document_id)
        return removed

    async def _delete(self, stmt: Any) -> int:
        async with self._session_factory() as session:
            try:
                result = await session.execute(stmt)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise VectorDeleteFailed(_db_error_message(exc)) from exc
        return result.rowcount or 0


def _db_error_message(exc: SQLAlchemyError) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)
