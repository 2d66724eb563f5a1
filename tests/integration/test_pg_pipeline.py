"""
PostgreSQL Integration Tests

Runs the pipeline against a live PostgreSQL with pgvector, migrated to
head (alembic upgrade head). Skipped when the database is unreachable.

Prerequisites:
    - PostgreSQL with the vector extension, POSTGRES_* env vars set
    - Schema migrated: alembic upgrade head
"""

import uuid

import pytest
import pytest_asyncio
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from knowledge_ingest.core.config import settings
from knowledge_ingest.models.orm import DocumentRecord
from knowledge_ingest.models.schemas import ChunkStatus, DocumentStatus, FileType
from knowledge_ingest.models.vector_index import VectorEntryRecord
from knowledge_ingest.repositories.documents import DocumentRepository
from knowledge_ingest.services.chunking import TextChunker
from knowledge_ingest.services.embedding import EmbeddingBatcher
from knowledge_ingest.services.pipeline import IngestionPipeline
from knowledge_ingest.services.vector_store import PgVectorStore

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def pg_session_factory():
    engine = create_async_engine(settings.DATABASE_URL)
    try:
        async with engine.connect():
            pass
    except Exception as exc:  # noqa: BLE001
        await engine.dispose()
        pytest.skip(f"PostgreSQL unreachable: {exc}")

    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.mark.asyncio
async def test_document_is_indexed_in_pgvector(pg_session_factory, storage, provider):
    """
    Full run with the real relational store and vector index.

    The provider is the offline fake with 1536-dim vectors; the vector
    index column is fixed at that size.
    """
    provider.dimension = 1536
    repository = DocumentRepository()
    storage.put("it/notes.txt", b"First paragraph.\n\nSecond paragraph.")

    async with pg_session_factory() as session:
        document = await repository.create_document(
            session,
            collection_id=uuid.uuid4(),
            file_name="notes.txt",
            file_type=FileType.TXT,
            storage_path="it/notes.txt",
        )

    pipeline = IngestionPipeline(
        pg_session_factory,
        storage=storage,
        batcher=EmbeddingBatcher(provider, batch_delay=0),
        vector_store=PgVectorStore(pg_session_factory, timeout=10),
        chunker=TextChunker(),
    )

    try:
        outcome = await pipeline.process_document(document.id)

        assert outcome.status is DocumentStatus.COMPLETED
        async with pg_session_factory() as session:
            chunks = await repository.get_chunks(session, document.id)
            result = await session.execute(
                select(VectorEntryRecord).where(
                    VectorEntryRecord.document_id == str(document.id)
                )
            )
            entries = result.scalars().all()

        assert {c.status for c in chunks} == {ChunkStatus.EMBEDDED}
        assert {e.id for e in entries} == {str(c.id) for c in chunks}
        assert all(e.payload["file_name"] == "notes.txt" for e in entries)
    finally:
        async with pg_session_factory() as session:
            await session.execute(
                delete(VectorEntryRecord).where(
                    VectorEntryRecord.document_id == str(document.id)
                )
            )
            await session.execute(
                delete(DocumentRecord).where(DocumentRecord.id == document.id)
            )
            await session.commit()
