"""
Document Repository Unit Tests

Persistence primitives against an in-memory SQLite store: the atomic
claim, chunk insert/update/delete and per-status counts.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from knowledge_ingest.core.exceptions import ChunkPersistenceFailed
from knowledge_ingest.models.orm import DocumentRecord
from knowledge_ingest.models.schemas import (
    ChunkStatus,
    DocumentStatus,
    FileType,
    TextChunk,
)


def _chunks(count: int) -> list[TextChunk]:
    return [
        TextChunk(chunk_index=i, content=f"chunk {i}", token_count=2)
        for i in range(count)
    ]


@pytest.fixture
def new_document(session_factory, repository):
    async def _create(collection_id: uuid.UUID | None = None):
        async with session_factory() as session:
            return await repository.create_document(
                session,
                collection_id=collection_id or uuid.uuid4(),
                file_name="manual.pdf",
                file_type=FileType.PDF,
                storage_path="uploads/manual.pdf",
                file_size=1024,
            )

    return _create


class TestDocuments:
    @pytest.mark.asyncio
    async def test_created_as_pending(self, new_document) -> None:
        document = await new_document()

        assert document.status is DocumentStatus.PENDING
        assert document.error_message is None
        assert document.created_at is not None

    @pytest.mark.asyncio
    async def test_get_unknown_returns_none(self, session_factory, repository) -> None:
        async with session_factory() as session:
            assert await repository.get_document(session, uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_list_filters_by_status_and_collection(
        self, session_factory, repository, new_document
    ) -> None:
        collection = uuid.uuid4()
        first = await new_document(collection)
        second = await new_document(collection)
        await new_document()

        async with session_factory() as session:
            await repository.set_document_status(
                session, second.id, DocumentStatus.ERROR, "boom"
            )
            errored = await repository.list_documents(
                session, status=DocumentStatus.ERROR, collection_id=collection
            )
            in_collection = await repository.list_documents(session, collection_id=collection)

        assert [d.id for d in errored] == [second.id]
        assert {d.id for d in in_collection} == {first.id, second.id}


class TestClaim:
    """The processing claim is a compare-and-set on status."""

    @pytest.mark.asyncio
    async def test_claims_pending_once(self, session_factory, repository, new_document) -> None:
        document = await new_document()

        async with session_factory() as session:
            assert await repository.claim_document(session, document.id) is True
            assert await repository.claim_document(session, document.id) is False
            stored = await repository.get_document(session, document.id)

        assert stored.status is DocumentStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_claiming_error_clears_message(
        self, session_factory, repository, new_document
    ) -> None:
        document = await new_document()

        async with session_factory() as session:
            await repository.set_document_status(
                session, document.id, DocumentStatus.ERROR, "Failed to download file"
            )
            assert await repository.claim_document(session, document.id) is True
            stored = await repository.get_document(session, document.id)

        assert stored.error_message is None

    @pytest.mark.asyncio
    async def test_completed_is_not_claimable(
        self, session_factory, repository, new_document
    ) -> None:
        document = await new_document()

        async with session_factory() as session:
            await repository.set_document_status(session, document.id, DocumentStatus.COMPLETED)
            assert await repository.claim_document(session, document.id) is False

    @pytest.mark.asyncio
    async def test_unknown_id_is_not_claimed(self, session_factory, repository) -> None:
        async with session_factory() as session:
            assert await repository.claim_document(session, uuid.uuid4()) is False


class TestChunks:
    @pytest.mark.asyncio
    async def test_insert_returns_pending_rows_in_order(
        self, session_factory, repository, new_document
    ) -> None:
        document = await new_document()
        chunks = list(reversed(_chunks(3)))

        async with session_factory() as session:
            records = await repository.insert_chunks(session, document.id, chunks)

        assert [r.chunk_index for r in records] == [0, 1, 2]
        assert all(r.status is ChunkStatus.PENDING for r in records)
        assert len({r.id for r in records}) == 3

    @pytest.mark.asyncio
    async def test_duplicate_index_rolls_back_everything(
        self, session_factory, repository, new_document
    ) -> None:
        document = await new_document()
        duplicated = _chunks(2) + [TextChunk(chunk_index=1, content="again", token_count=1)]

        async with session_factory() as session:
            with pytest.raises(ChunkPersistenceFailed) as exc_info:
                await repository.insert_chunks(session, document.id, duplicated)
            remaining = await repository.get_chunks(session, document.id)

        assert isinstance(exc_info.value.__cause__, IntegrityError)
        assert list(remaining) == []

    @pytest.mark.asyncio
    async def test_mark_embedded_records_vector_id_and_placeholder(
        self, session_factory, repository, new_document
    ) -> None:
        document = await new_document()

        async with session_factory() as session:
            records = await repository.insert_chunks(session, document.id, _chunks(3))
            ids = [r.id for r in records]
            await repository.mark_chunks(
                session, ids, ChunkStatus.EMBEDDED, placeholder_ids={ids[1]}
            )
            stored = await repository.get_chunks(session, document.id)

        assert [c.status for c in stored] == [ChunkStatus.EMBEDDED] * 3
        assert [c.embedding_id for c in stored] == [str(i) for i in ids]
        assert [c.is_placeholder for c in stored] == [False, True, False]

    @pytest.mark.asyncio
    async def test_mark_error_clears_vector_id(
        self, session_factory, repository, new_document
    ) -> None:
        document = await new_document()

        async with session_factory() as session:
            records = await repository.insert_chunks(session, document.id, _chunks(2))
            await repository.mark_chunks(session, [records[0].id], ChunkStatus.ERROR)
            stored = await repository.get_chunks(session, document.id)

        assert [c.status for c in stored] == [ChunkStatus.ERROR, ChunkStatus.PENDING]
        assert stored[0].embedding_id is None

    @pytest.mark.asyncio
    async def test_fail_pending_and_stats(
        self, session_factory, repository, new_document
    ) -> None:
        document = await new_document()

        async with session_factory() as session:
            records = await repository.insert_chunks(session, document.id, _chunks(4))
            await repository.mark_chunks(session, [records[0].id], ChunkStatus.EMBEDDED)
            failed = await repository.fail_pending_chunks(session, document.id)
            stats = await repository.get_processing_stats(session, document.id)

        assert failed == 3
        assert stats.total_chunks == 4
        assert stats.embedded_chunks == 1
        assert stats.error_chunks == 3
        assert stats.pending_chunks == 0

    @pytest.mark.asyncio
    async def test_delete_chunks(self, session_factory, repository, new_document) -> None:
        document = await new_document()

        async with session_factory() as session:
            await repository.insert_chunks(session, document.id, _chunks(3))
            removed = await repository.delete_chunks(session, document.id)
            stats = await repository.get_processing_stats(session, document.id)

        assert removed == 3
        assert stats.total_chunks == 0


class TestStaleness:
    @pytest.mark.asyncio
    async def test_touch_keeps_a_live_run_out_of_the_stale_list(
        self, session_factory, repository, new_document
    ) -> None:
        document = await new_document()
        cutoff = datetime.now(UTC) - timedelta(minutes=5)

        async with session_factory() as session:
            await repository.claim_document(session, document.id)
            await session.execute(
                update(DocumentRecord)
                .where(DocumentRecord.id == document.id)
                .values(updated_at=datetime(2000, 1, 1))
            )
            await session.commit()
            before = await repository.list_stale_documents(session, cutoff)

            await repository.touch_document(session, document.id)
            after = await repository.list_stale_documents(session, cutoff)

        assert [d.id for d in before] == [document.id]
        assert after == []
