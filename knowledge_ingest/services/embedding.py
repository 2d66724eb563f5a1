"""
Embedding Service

Turns ordered chunk texts into fixed-dimension vectors, in fixed-size
batches, through an EmbeddingProvider.

Degraded mode:
    A batch whose provider call fails (network, rate limit, timeout,
    malformed response) does not abort the document. Its texts get
    placeholder vectors of the same dimension and the batch is recorded
    as degraded, so the knowledge base stays queryable, with poorer
    retrieval for those chunks, instead of stalling.

Placeholder vectors are derived from a SHA-256 of the chunk text, so a
degraded run is reproducible.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import random
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import NamedTuple, Protocol, runtime_checkable

from openai import APIStatusError, AsyncOpenAI, OpenAIError

from knowledge_ingest.core.exceptions import EmbeddingProviderError
from knowledge_ingest.workers.pool import ClientPool

logger = logging.getLogger(__name__)

DEFAULT_MODEL: str = "text-embedding-3-small"
EMBEDDING_DIMENSION: int = 1536  # text-embedding-3-small output size
DEFAULT_BATCH_SIZE: int = 20
DEFAULT_BATCH_DELAY_SECONDS: float = 0.1


# ---------------------------------------------------------------------------
# Provider interface
# ---------------------------------------------------------------------------


@runtime_checkable
class EmbeddingProvider(Protocol):
    """External embedding service: ≤ batch_size texts in, one vector each out."""

    dimension: int

    async def embed(self, texts: list[str]) -> list[list[float]]: ...


class OpenAIEmbeddingProvider:
    """
    Embedding provider backed by the OpenAI embeddings API.

    Clients are checked out of a ClientPool per request. Without an API
    key every call raises EmbeddingProviderError, which the batcher turns
    into placeholder vectors (local development without API costs).

    Usage::

        pool = ClientPool(lambda: AsyncOpenAI(api_key=key), max_size=8,
                          ttl_seconds=300)
        provider = OpenAIEmbeddingProvider(pool, api_key=key)
        vectors = await provider.embed(["hello", "world"])
    """

    def __init__(
        self,
        pool: ClientPool[AsyncOpenAI],
        *,
        api_key: str | None,
        model: str = DEFAULT_MODEL,
        dimension: int = EMBEDDING_DIMENSION,
    ) -> None:
        self._pool = pool
        self._api_key = api_key
        self._model = model
        self.dimension = dimension

    @property
    def model(self) -> str:
        return self._model

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """
        Embed a batch of texts.

        Raises:
            EmbeddingProviderError: Missing API key or any API failure.
        """
        if not self._api_key or self._api_key.lower() == "mock":
            raise EmbeddingProviderError("OpenAI API key is not configured")

        # OpenAI recommends single-line input
        inputs = [text.replace("\n", " ") for text in texts]

        async with self._pool.acquire() as client:
            try:
                response = await client.embeddings.create(
                    input=inputs,
                    model=self._model,
                    encoding_format="float",
                )
            except APIStatusError as exc:
                raise EmbeddingProviderError(
                    f"OpenAI API error (HTTP {exc.status_code}): {exc.message}"
                ) from exc
            except OpenAIError as exc:
                raise EmbeddingProviderError(f"OpenAI API error: {exc}") from exc

        items = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in items]


# ---------------------------------------------------------------------------
# Placeholder vectors
# ---------------------------------------------------------------------------


def placeholder_embedding(text: str, dimension: int = EMBEDDING_DIMENSION) -> list[float]:
    """
    Deterministic stand-in vector for a text the provider could not embed.

    Values are uniform in [-1, 1] from a PRNG seeded by the text's SHA-256.
    Only the shape matters to the vector store.
    """
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
    rng = random.Random(seed)
    return [rng.uniform(-1.0, 1.0) for _ in range(dimension)]


# ---------------------------------------------------------------------------
# Batcher
# ---------------------------------------------------------------------------


class EmbeddingBatchDegraded(NamedTuple):
    """Warning record for a batch that fell back to placeholder vectors."""

    batch_index: int
    start: int
    size: int
    reason: str


@dataclass
class EmbeddingResult:
    """
    Output of EmbeddingBatcher.embed.

    Attributes:
        vectors: One vector per input text, in input order.
        placeholder_mask: True where the vector is a placeholder.
        degraded_batches: One record per batch that fell back.
    """

    vectors: list[list[float]] = field(default_factory=list)
    placeholder_mask: list[bool] = field(default_factory=list)
    degraded_batches: list[EmbeddingBatchDegraded] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return bool(self.degraded_batches)

    @property
    def placeholder_count(self) -> int:
        return sum(self.placeholder_mask)


class EmbeddingBatcher:
    """
    Calls an EmbeddingProvider in fixed-size, strictly ordered batches.

    Downstream metadata relies on position: ``result.vectors[i]`` belongs
    to ``texts[i]``. Batches therefore run one after another, with a short
    pause between them to stay under provider rate limits.

    Usage::

        batcher = EmbeddingBatcher(provider, batch_size=20)
        result = await batcher.embed([c.content for c in chunks])
        if result.used_fallback:
            ...

    Args:
        provider: Embedding service.
        batch_size: Maximum texts per provider call.
        batch_delay: Seconds to sleep between batches.
        timeout: Per-call timeout in seconds; expiry degrades the batch.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS,
        timeout: float | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")

        self._provider = provider
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._timeout = timeout

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def dimension(self) -> int:
        return self._provider.dimension

    async def embed(self, texts: Sequence[str], *, label: str = "") -> EmbeddingResult:
        """
        Embed all texts, degrading failed batches to placeholders.

        Args:
            texts: Chunk texts in chunk_index order.
            label: Prefix for log lines (usually the document id).

        Returns:
            EmbeddingResult with exactly one vector per text.
        """
        result = EmbeddingResult()
        starts = range(0, len(texts), self._batch_size)
        total_batches = len(starts)

        for batch_index, start in enumerate(starts):
            batch = list(texts[start : start + self._batch_size])
            logger.debug(
                "%s embedding batch %d/%d (%d texts)",
                label,
                batch_index + 1,
                total_batches,
                len(batch),
            )

            try:
                vectors = await self._embed_batch(batch)
            except Exception as exc:
                reason = str(exc) or type(exc).__name__
                logger.warning(
                    "%s embedding batch %d/%d failed, using placeholder vectors: %s",
                    label,
                    batch_index + 1,
                    total_batches,
                    reason,
                )
                vectors = [placeholder_embedding(text, self.dimension) for text in batch]
                result.degraded_batches.append(
                    EmbeddingBatchDegraded(batch_index, start, len(batch), reason)
                )
                result.placeholder_mask.extend([True] * len(batch))
            else:
                result.placeholder_mask.extend([False] * len(batch))

            result.vectors.extend(vectors)

            if batch_index < total_batches - 1 and self._batch_delay > 0:
                await asyncio.sleep(self._batch_delay)

        logger.info(
            "%s generated %d embeddings (%d placeholders)",
            label,
            len(result.vectors),
            result.placeholder_count,
        )
        return result

    async def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        """One provider call, with the timeout and response shape enforced."""
        call = self._provider.embed(batch)
        if self._timeout is not None:
            try:
                vectors = await asyncio.wait_for(call, timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                raise EmbeddingProviderError(
                    f"embedding request timed out after {self._timeout}s"
                ) from exc
        else:
            vectors = await call

        if len(vectors) != len(batch):
            raise EmbeddingProviderError(
                f"provider returned {len(vectors)} vectors for {len(batch)} texts"
            )
        for vector in vectors:
            if len(vector) != self.dimension:
                raise EmbeddingProviderError(
                    f"provider returned a {len(vector)}-dim vector, "
                    f"expected {self.dimension}"
                )
        return vectors
