"""
Ingestion Worker

Runs IngestionPipeline for queued document ids on a fixed number of
asyncio tasks. One process-wide worker is owned by the runtime; the HTTP
layer and scripts only submit ids.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from knowledge_ingest.core.exceptions import DocumentNotFound
from knowledge_ingest.services.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)


class IngestionWorker:
    """
    Bounded-concurrency consumer of document ids.

    An id that is already queued or running is not enqueued again; the
    ``processing`` claim in the database covers submissions from other
    processes.

    Usage::

        worker = IngestionWorker(pipeline, concurrency=4)
        worker.start()
        worker.submit(document_id)
        await worker.join()   # wait for the queue to drain
        await worker.stop()
    """

    def __init__(self, pipeline: IngestionPipeline, *, concurrency: int = 4) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        self._pipeline = pipeline
        self._concurrency = concurrency
        self._queue: asyncio.Queue[uuid.UUID] = asyncio.Queue()
        self._in_flight: set[uuid.UUID] = set()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def is_scheduled(self, document_id: uuid.UUID) -> bool:
        """True while the id is queued or being processed."""
        return document_id in self._in_flight

    def submit(self, document_id: uuid.UUID) -> bool:
        """
        Queue a document for processing.

        Returns:
            False if the document is already queued or running.
        """
        if document_id in self._in_flight:
            logger.debug("Document %s already scheduled, ignoring", document_id)
            return False

        self._in_flight.add(document_id)
        self._queue.put_nowait(document_id)
        logger.info("Document %s queued (backlog=%d)", document_id, self._queue.qsize())
        return True

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._consume(slot), name=f"ingestion-worker-{slot}")
            for slot in range(self._concurrency)
        ]
        logger.info("Ingestion worker started (%d slots)", self._concurrency)

    async def join(self) -> None:
        """Wait until every submitted document has been processed."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the worker slots. Queued documents stay ``pending``."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info(
                "Ingestion worker stopped (%d documents left in queue)",
                self._queue.qsize(),
            )

    async def _consume(self, slot: int) -> None:
        while True:
            document_id = await self._queue.get()
            try:
                outcome = await self._pipeline.process_document(document_id)
                logger.debug(
                    "Slot %d: document %s -> %s",
                    slot,
                    document_id,
                    outcome.status.value,
                )
            except DocumentNotFound:
                logger.warning("Document %s no longer exists, skipping", document_id)
            except Exception:
                logger.exception("Unexpected failure processing document %s", document_id)
            finally:
                self._in_flight.discard(document_id)
                self._queue.task_done()
