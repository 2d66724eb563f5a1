"""
Ingestion Runtime

Builds the process-wide object graph from Settings: client pool,
embedding provider and batcher, vector store, storage backend, pipeline
and worker. The API lifespan and the scripts both create one runtime
and close it on exit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from knowledge_ingest.core.config import Settings
from knowledge_ingest.core.database import get_session_factory
from knowledge_ingest.models.vector_index import EMBEDDING_DIMENSION as INDEX_DIMENSION
from knowledge_ingest.services.chunking import TextChunker
from knowledge_ingest.services.embedding import EmbeddingBatcher, OpenAIEmbeddingProvider
from knowledge_ingest.services.pipeline import IngestionPipeline
from knowledge_ingest.services.storage import build_storage
from knowledge_ingest.services.vector_store import PgVectorStore
from knowledge_ingest.workers.ingestion import IngestionWorker
from knowledge_ingest.workers.pool import ClientPool

logger = logging.getLogger(__name__)


async def _close_client(client: AsyncOpenAI) -> None:
    await client.close()


@dataclass
class IngestionRuntime:
    """Owned resources of one ingestion process."""

    client_pool: ClientPool[AsyncOpenAI]
    pipeline: IngestionPipeline
    worker: IngestionWorker

    @classmethod
    def create(
        cls,
        config: Settings,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> IngestionRuntime:
        """
        Wire every component from configuration.

        Raises:
            ValueError: EMBEDDING_DIMENSION differs from the size of the
                ``vector_index.embedding`` column, so every upsert would fail.
        """
        if config.EMBEDDING_DIMENSION != INDEX_DIMENSION:
            raise ValueError(
                f"EMBEDDING_DIMENSION={config.EMBEDDING_DIMENSION} does not match the "
                f"vector_index column size ({INDEX_DIMENSION}); changing it needs a "
                "migration of the vector index"
            )

        factory = session_factory or get_session_factory()

        client_pool: ClientPool[AsyncOpenAI] = ClientPool(
            lambda: AsyncOpenAI(
                api_key=config.OPENAI_API_KEY,
                timeout=config.EMBEDDING_TIMEOUT_SECONDS,
                max_retries=0,
            ),
            max_size=config.CLIENT_POOL_SIZE,
            ttl_seconds=config.CLIENT_POOL_TTL_SECONDS,
            close=_close_client,
        )
        provider = OpenAIEmbeddingProvider(
            client_pool,
            api_key=config.OPENAI_API_KEY,
            model=config.EMBEDDING_MODEL,
            dimension=config.EMBEDDING_DIMENSION,
        )
        if not config.OPENAI_API_KEY:
            logger.warning(
                "OPENAI_API_KEY is not set; all chunks will get placeholder embeddings"
            )

        pipeline = IngestionPipeline(
            factory,
            storage=build_storage(config),
            batcher=EmbeddingBatcher(
                provider,
                batch_size=config.EMBEDDING_BATCH_SIZE,
                batch_delay=config.EMBEDDING_BATCH_DELAY_SECONDS,
                timeout=config.EMBEDDING_TIMEOUT_SECONDS,
            ),
            vector_store=PgVectorStore(factory, timeout=config.UPSERT_TIMEOUT_SECONDS),
            chunker=TextChunker(config.CHUNK_SIZE, config.CHUNK_OVERLAP),
            storage_timeout=config.STORAGE_TIMEOUT_SECONDS,
        )
        worker = IngestionWorker(pipeline, concurrency=config.WORKER_CONCURRENCY)

        return cls(client_pool=client_pool, pipeline=pipeline, worker=worker)

    async def aclose(self) -> None:
        """Stop the worker, then release pooled clients."""
        await self.worker.stop()
        await self.client_pool.close()
