"""
Ingestion Pipeline Orchestrator

Coordinates one document run end to end and owns every status
transition of documents and chunks:

    claim (pending|error → processing)
      → drop vectors and chunk rows of a previous run
      → fetch bytes (StorageBackend)
      → extract text (TextExtractor)
      → chunk (TextChunker)          zero chunks → completed, "No content"
      → persist chunk rows (pending)
      → embed (EmbeddingBatcher)     failed batches → placeholder vectors
      → upsert (VectorStore)         failure → chunks + document error
      → chunks embedded, document completed (+ warning if degraded)

Storage, extraction and chunk-persistence failures are fatal for the run
and are not retried; embedding failures are absorbed; an upsert failure
is fatal for the run. Any other exception is converted to a document
``error``. A cancelled run (worker shutdown) is settled as ``error``
before the cancellation propagates. Every run ends in ``completed`` or
``error`` and leaves no chunk ``pending``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import NamedTuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from knowledge_ingest.core.exceptions import (
    DocumentNotFound,
    StorageFetchFailed,
    UpsertFailed,
    VectorDeleteFailed,
)
from knowledge_ingest.core.logging import document_context
from knowledge_ingest.models.orm import ChunkRecord, DocumentRecord
from knowledge_ingest.models.schemas import (
    ChunkStatus,
    DocumentStatus,
    FileType,
    ProcessingOutcome,
    VectorPayload,
)
from knowledge_ingest.repositories.documents import DocumentRepository
from knowledge_ingest.services.chunking import TextChunker
from knowledge_ingest.services.embedding import EmbeddingBatcher, EmbeddingResult
from knowledge_ingest.services.extraction import TextExtractor
from knowledge_ingest.services.storage import StorageBackend
from knowledge_ingest.services.vector_store import VectorStore

logger = logging.getLogger(__name__)

NO_CONTENT_MESSAGE = "No content to process."
FALLBACK_WARNING = "Warning: Some or all embeddings are placeholder vectors."
INTERRUPTED_MESSAGE = "Processing was interrupted before it finished."


@dataclass(frozen=True)
class _DocumentRef:
    """Column snapshot taken at claim time; safe to read after a rollback."""

    id: uuid.UUID
    collection_id: uuid.UUID
    file_name: str
    file_type: FileType
    storage_path: str

    @classmethod
    def of(cls, document: DocumentRecord) -> _DocumentRef:
        return cls(
            id=document.id,
            collection_id=document.collection_id,
            file_name=document.file_name,
            file_type=document.file_type,
            storage_path=document.storage_path,
        )


@dataclass
class _Run:
    """Mutable state of one run, used to settle chunks on any exit path."""

    document: _DocumentRef
    chunk_ids: list[uuid.UUID] = field(default_factory=list)
    settled: set[uuid.UUID] = field(default_factory=set)
    used_fallback: bool = False
    upserted: bool = False

    @property
    def label(self) -> str:
        return f"Document {self.document.id}:"

    def unsettled(self) -> list[uuid.UUID]:
        return [cid for cid in self.chunk_ids if cid not in self.settled]


class _Payload(NamedTuple):
    vectors: list[VectorPayload]
    included_ids: list[uuid.UUID]
    placeholder_ids: set[uuid.UUID]
    unmatched_ids: list[uuid.UUID]


class IngestionPipeline:
    """
    Turns a registered document into embedded, retrievable chunks.

    Composes the stage services into one state machine. Each run opens
    its own database session, so runs for different documents can
    proceed concurrently on independent tasks.

    Usage::

        pipeline = IngestionPipeline(
            session_factory,
            storage=LocalStorage("./storage"),
            batcher=EmbeddingBatcher(provider),
            vector_store=PgVectorStore(session_factory),
        )
        outcome = await pipeline.process_document(document_id)

    Args:
        session_factory: Async session maker for the relational store.
        storage: Source file backend.
        batcher: Embedding batcher (owns provider, batch size, pacing).
        vector_store: Vector index.
        extractor: Text extractor (default TextExtractor()).
        chunker: Text chunker (default TextChunker()).
        repository: Document/chunk repository.
        storage_timeout: Seconds before a storage fetch counts as failed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        storage: StorageBackend,
        batcher: EmbeddingBatcher,
        vector_store: VectorStore,
        extractor: TextExtractor | None = None,
        chunker: TextChunker | None = None,
        repository: DocumentRepository | None = None,
        storage_timeout: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._storage = storage
        self._batcher = batcher
        self._vector_store = vector_store
        self._extractor = extractor or TextExtractor()
        self._chunker = chunker or TextChunker()
        self._repository = repository or DocumentRepository()
        self._storage_timeout = storage_timeout

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process_document(self, document_id: uuid.UUID) -> ProcessingOutcome:
        """
        Run the full pipeline for one document.

        A document that is already ``processing`` or ``completed`` is not
        touched; the returned outcome has ``skipped=True``.

        Args:
            document_id: Id of a registered document.

        Returns:
            ProcessingOutcome describing the final state.

        Raises:
            DocumentNotFound: No document has this id. Failures during the
                run are never raised; they end in a document ``error``.
            asyncio.CancelledError: Re-raised after the run was recorded
                as interrupted.
        """
        with document_context(document_id):
            return await self._process(document_id)

    async def _process(self, document_id: uuid.UUID) -> ProcessingOutcome:
        async with self._session_factory() as session:
            claimed = await self._repository.claim_document(session, document_id)
            document = await self._repository.get_document(session, document_id)

            if document is None:
                raise DocumentNotFound(document_id)

            if not claimed:
                logger.info(
                    "Document %s is %s, not reprocessing",
                    document_id,
                    document.status.value,
                )
                return ProcessingOutcome(
                    document_id=document_id,
                    status=document.status,
                    message=document.error_message,
                    skipped=True,
                )

            run = _Run(_DocumentRef.of(document))
            logger.info(
                "%s processing '%s' (%s)",
                run.label,
                run.document.file_name,
                run.document.file_type.value,
            )

            try:
                return await self._run(session, run)
            except asyncio.CancelledError:
                logger.warning("%s cancelled, recording the interruption", run.label)
                await asyncio.shield(self._interrupt(session, run))
                raise
            except Exception as exc:
                logger.exception("%s processing failed", run.label)
                return await self._abort(session, run, str(exc) or type(exc).__name__)

    async def recover_stale_documents(self, max_age: timedelta) -> list[uuid.UUID]:
        """
        Fail documents stuck in ``processing`` longer than ``max_age``.

        A run killed mid-flight (process crash) cannot settle its own
        document. Recovered documents go to ``error`` with their pending
        chunks, lose any vectors the run may have written, and become
        claimable again.

        Returns:
            Ids of the recovered documents.
        """
        cutoff = datetime.now(UTC) - max_age
        async with self._session_factory() as session:
            stale = await self._repository.list_stale_documents(session, cutoff)
            recovered: list[uuid.UUID] = []
            for document in stale:
                document_id = document.id
                await self._discard_vectors(document_id)
                failed = await self._repository.fail_pending_chunks(session, document_id)
                await self._repository.set_document_status(
                    session,
                    document_id,
                    DocumentStatus.ERROR,
                    INTERRUPTED_MESSAGE,
                )
                logger.warning(
                    "Document %s: recovered from stale processing (%d chunks failed)",
                    document_id,
                    failed,
                )
                recovered.append(document_id)
            return recovered

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run(self, session: AsyncSession, run: _Run) -> ProcessingOutcome:
        document = run.document

        # Resubmitted after an error: vectors go first, while their chunk rows still exist
        purged = await self._vector_store.delete_document(document.id)
        removed = await self._repository.delete_chunks(session, document.id)
        if purged or removed:
            logger.info(
                "%s removed %d vectors and %d chunk rows of a previous run",
                run.label,
                purged,
                removed,
            )

        raw = await self._fetch(document)
        text = await self._extractor.extract(raw, document.file_type)

        chunks = self._chunker.split(text)
        logger.info(
            "%s %d chunks from %d chars",
            run.label,
            len(chunks),
            len(text),
        )
        if not chunks:
            return await self._finish(
                session, run, DocumentStatus.COMPLETED, NO_CONTENT_MESSAGE
            )

        records = await self._repository.insert_chunks(session, document.id, chunks)
        run.chunk_ids = [record.id for record in records]
        await self._repository.touch_document(session, document.id)

        embedding = await self._batcher.embed(
            [record.content for record in records],
            label=run.label,
        )
        run.used_fallback = embedding.used_fallback
        await self._repository.touch_document(session, document.id)

        payload = self._build_payload(run, records, embedding)
        if payload.unmatched_ids:
            logger.error(
                "%s %d vectors for %d chunks; marking %d chunks as error",
                run.label,
                len(embedding.vectors),
                len(records),
                len(payload.unmatched_ids),
            )
            await self._settle(session, run, payload.unmatched_ids, ChunkStatus.ERROR)

        if not payload.vectors:
            return await self._finish(
                session,
                run,
                DocumentStatus.ERROR,
                "No embeddings were produced for the document's chunks.",
            )

        try:
            await self._vector_store.upsert(payload.vectors)
        except UpsertFailed as exc:
            logger.error("%s %s", run.label, exc)
            await self._settle(session, run, payload.included_ids, ChunkStatus.ERROR)
            return await self._finish(session, run, DocumentStatus.ERROR, str(exc))
        run.upserted = True

        await self._settle(
            session,
            run,
            payload.included_ids,
            ChunkStatus.EMBEDDED,
            placeholder_ids=payload.placeholder_ids,
        )
        return await self._finish(
            session,
            run,
            DocumentStatus.COMPLETED,
            self._completion_message(embedding, len(payload.unmatched_ids)),
        )

    async def _fetch(self, document: _DocumentRef) -> bytes:
        try:
            raw = await asyncio.wait_for(
                self._storage.fetch(document.storage_path),
                timeout=self._storage_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise StorageFetchFailed(
                document.storage_path,
                f"timed out after {self._storage_timeout}s",
            ) from exc

        logger.info("Document %s: downloaded %d bytes", document.id, len(raw))
        return raw

    def _build_payload(
        self,
        run: _Run,
        records: Sequence[ChunkRecord],
        embedding: EmbeddingResult,
    ) -> _Payload:
        """Pair chunks with vectors by position; chunks past the last vector are unmatched."""
        document = run.document
        matched = min(len(records), len(embedding.vectors))

        vectors: list[VectorPayload] = []
        placeholder_ids: set[uuid.UUID] = set()
        for record, values, is_placeholder in zip(
            records[:matched],
            embedding.vectors[:matched],
            embedding.placeholder_mask[:matched],
        ):
            if is_placeholder:
                placeholder_ids.add(record.id)
            vectors.append(
                VectorPayload(
                    id=str(record.id),
                    values=values,
                    metadata={
                        "collection_id": str(document.collection_id),
                        "document_id": str(document.id),
                        "chunk_id": str(record.id),
                        "chunk_index": str(record.chunk_index),
                        "text": record.content,
                        "file_name": document.file_name,
                        "file_type": document.file_type.value,
                        "is_placeholder": "true" if is_placeholder else "false",
                    },
                )
            )

        return _Payload(
            vectors=vectors,
            included_ids=[record.id for record in records[:matched]],
            placeholder_ids=placeholder_ids,
            unmatched_ids=[record.id for record in records[matched:]],
        )

    @staticmethod
    def _completion_message(embedding: EmbeddingResult, unmatched: int) -> str | None:
        parts: list[str] = []
        if embedding.used_fallback:
            last = embedding.degraded_batches[-1]
            parts.append(
                f"{FALLBACK_WARNING} {embedding.placeholder_count} of "
                f"{len(embedding.vectors)} chunks in {len(embedding.degraded_batches)} "
                f"degraded batch(es); last provider error: {last.reason}"
            )
        if unmatched:
            parts.append(f"{unmatched} chunks had no embedding and were marked error.")
        return " ".join(parts) or None

    # ------------------------------------------------------------------
    # Status write-back
    # ------------------------------------------------------------------

    async def _settle(
        self,
        session: AsyncSession,
        run: _Run,
        chunk_ids: Sequence[uuid.UUID],
        status: ChunkStatus,
        *,
        placeholder_ids: set[uuid.UUID] | None = None,
    ) -> None:
        await self._repository.mark_chunks(
            session,
            chunk_ids,
            status,
            placeholder_ids=placeholder_ids or set(),
        )
        run.settled.update(chunk_ids)

    async def _finish(
        self,
        session: AsyncSession,
        run: _Run,
        status: DocumentStatus,
        message: str | None,
    ) -> ProcessingOutcome:
        # Terminal invariant: nothing from this run stays pending
        leftover = run.unsettled()
        if leftover:
            await self._settle(session, run, leftover, ChunkStatus.ERROR)

        await self._repository.set_document_status(session, run.document.id, status, message)
        stats = await self._repository.get_processing_stats(session, run.document.id)

        log = logger.info if status is DocumentStatus.COMPLETED else logger.error
        log(
            "%s finished as %s (%d/%d chunks embedded)%s",
            run.label,
            status.value,
            stats.embedded_chunks,
            stats.total_chunks,
            f": {message}" if message else "",
        )

        return ProcessingOutcome(
            document_id=run.document.id,
            status=status,
            message=message,
            total_chunks=stats.total_chunks,
            embedded_chunks=stats.embedded_chunks,
            failed_chunks=stats.error_chunks,
            used_fallback=run.used_fallback,
        )

    async def _abort(
        self,
        session: AsyncSession,
        run: _Run,
        message: str,
    ) -> ProcessingOutcome:
        """Convert an exception anywhere in the run into a document error."""
        await session.rollback()
        if run.upserted:
            # Vectors of chunks about to be settled as error
            await self._discard_vectors(run.document.id)
        try:
            return await self._finish(session, run, DocumentStatus.ERROR, message)
        except SQLAlchemyError:
            # The store itself is failing; the stale-run sweep settles this document later
            logger.exception("%s could not record the failure", run.label)
            return ProcessingOutcome(
                document_id=run.document.id,
                status=DocumentStatus.ERROR,
                message=message,
                total_chunks=len(run.chunk_ids),
                failed_chunks=len(run.chunk_ids),
                used_fallback=run.used_fallback,
            )

    async def _interrupt(self, session: AsyncSession, run: _Run) -> None:
        """Settle a cancelled run; the cancelled session may be mid-statement."""
        try:
            await session.rollback()
        except SQLAlchemyError:
            logger.exception("%s could not roll back the cancelled session", run.label)

        async with self._session_factory() as fresh:
            await self._abort(fresh, run, INTERRUPTED_MESSAGE)

    async def _discard_vectors(self, document_id: uuid.UUID) -> None:
        try:
            await self._vector_store.delete_document(document_id)
        except VectorDeleteFailed as exc:
            # Resubmission deletes them before anything is written again
            logger.warning("Document %s: %s", document_id, exc)
