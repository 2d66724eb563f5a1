"""
Pytest Configuration and Fixtures

Shared fixtures for the offline test suite: an in-memory SQLite store
(aiosqlite) for documents and chunks, and in-process fakes for the
storage backend, embedding provider and vector store.
"""

import os

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Test environment defaults: MUST be set before any knowledge_ingest imports.
#
# 1. Load .env first so local credentials are available.
# 2. setdefault fills in anything still missing (CI runners, fresh clones
#    without a .env file) so that pydantic Settings validation doesn't crash.
# ---------------------------------------------------------------------------
load_dotenv()  # .env → os.environ (no-op if file is missing)

_test_env = {
    "POSTGRES_USER": "ingest",
    "POSTGRES_PASSWORD": "ingest_password",
    "POSTGRES_HOST": "localhost",
    "POSTGRES_PORT": "5432",
    "POSTGRES_DB": "ingest_db",
    "OPENAI_API_KEY": "mock",
}
for _key, _value in _test_env.items():
    os.environ.setdefault(_key, _value)

# ---------------------------------------------------------------------------
# Imports (safe now that env vars are set)
# ---------------------------------------------------------------------------
import uuid  # noqa: E402
from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from knowledge_ingest.core.exceptions import (  # noqa: E402
    EmbeddingProviderError,
    StorageFetchFailed,
    UpsertFailed,
    VectorDeleteFailed,
)
from knowledge_ingest.models.base import Base  # noqa: E402
from knowledge_ingest.models.orm import DocumentRecord  # noqa: E402
from knowledge_ingest.models.schemas import FileType, VectorPayload  # noqa: E402
from knowledge_ingest.repositories.documents import DocumentRepository  # noqa: E402
from knowledge_ingest.services.chunking import TextChunker  # noqa: E402
from knowledge_ingest.services.embedding import EmbeddingBatcher  # noqa: E402
from knowledge_ingest.services.pipeline import IngestionPipeline  # noqa: E402

TEST_DIMENSION = 8


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeStorage:
    """In-memory storage backend keyed by location."""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.fetched: list[str] = []

    def put(self, location: str, raw: bytes) -> None:
        self.files[location] = raw

    async def fetch(self, location: str) -> bytes:
        self.fetched.append(location)
        try:
            return self.files[location]
        except KeyError:
            raise StorageFetchFailed(location, "file not found") from None


class FakeEmbeddingProvider:
    """
    Deterministic provider. Calls listed in ``fail_calls`` (0-based)
    raise EmbeddingProviderError, like a rate-limited API would.
    """

    def __init__(
        self,
        dimension: int = TEST_DIMENSION,
        fail_calls: set[int] | None = None,
    ) -> None:
        self.dimension = dimension
        self.fail_calls = fail_calls or set()
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        call_index = len(self.calls)
        self.calls.append(list(texts))
        if call_index in self.fail_calls:
            raise EmbeddingProviderError("Error code: 429 - rate limit exceeded")
        return [[0.5] * self.dimension for _ in texts]


class FakeVectorStore:
    """
    Records upserts and keeps the resulting index by vector id. Raises
    UpsertFailed when ``fail_with`` is set and VectorDeleteFailed when
    ``fail_delete_with`` is set.
    """

    def __init__(self, fail_with: str | None = None) -> None:
        self.fail_with = fail_with
        self.fail_delete_with: str | None = None
        self.upserts: list[list[VectorPayload]] = []
        self.index: dict[str, VectorPayload] = {}

    @property
    def vectors(self) -> list[VectorPayload]:
        return [vector for batch in self.upserts for vector in batch]

    def ids_for(self, document_id: uuid.UUID) -> set[str]:
        return {
            vector_id
            for vector_id, vector in self.index.items()
            if vector.metadata.get("document_id") == str(document_id)
        }

    async def upsert(self, vectors: Sequence[VectorPayload]) -> None:
        if self.fail_with is not None:
            raise UpsertFailed(self.fail_with)
        self.upserts.append(list(vectors))
        self.index.update({vector.id: vector for vector in vectors})

    async def delete_document(self, document_id: uuid.UUID) -> int:
        if self.fail_delete_with is not None:
            raise VectorDeleteFailed(self.fail_delete_with)
        doomed = self.ids_for(document_id)
        for vector_id in doomed:
            del self.index[vector_id]
        return len(doomed)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Fresh in-memory SQLite database with the documents/chunks schema.

    StaticPool keeps one connection so every session sees the same
    in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def repository() -> DocumentRepository:
    return DocumentRepository()


# ---------------------------------------------------------------------------
# Pipeline wiring
# ---------------------------------------------------------------------------


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def vector_store() -> FakeVectorStore:
    return FakeVectorStore()


@pytest.fixture
def pipeline(
    session_factory: async_sessionmaker[AsyncSession],
    storage: FakeStorage,
    provider: FakeEmbeddingProvider,
    vector_store: FakeVectorStore,
) -> IngestionPipeline:
    """Pipeline with 2000/200 chunking and batches of 2, without pacing."""
    return IngestionPipeline(
        session_factory,
        storage=storage,
        batcher=EmbeddingBatcher(provider, batch_size=2, batch_delay=0),
        vector_store=vector_store,
        chunker=TextChunker(2000, 200),
    )


DocumentMaker = Callable[..., Awaitable[DocumentRecord]]


@pytest.fixture
def make_document(
    session_factory: async_sessionmaker[AsyncSession],
    storage: FakeStorage,
    repository: DocumentRepository,
) -> DocumentMaker:
    """Register a pending document and put its bytes in the fake storage."""

    async def _make(
        raw: bytes | None,
        file_type: FileType = FileType.TXT,
        file_name: str = "notes.txt",
    ) -> DocumentRecord:
        location = f"uploads/{uuid.uuid4()}/{file_name}"
        if raw is not None:
            storage.put(location, raw)
        async with session_factory() as session:
            return await repository.create_document(
                session,
                collection_id=uuid.uuid4(),
                file_name=file_name,
                file_type=file_type,
                storage_path=location,
                file_size=len(raw) if raw is not None else None,
            )

    return _make


@pytest.fixture
def long_text() -> str:
    """8,999 characters of distinct words: splits into 5 chunks at 2000/200."""
    return " ".join(f"w{i:04d}" for i in range(1500))
