#!/usr/bin/env python3
"""
Reprocess Failed Documents

Resubmits every document in ``error`` (optionally for one collection)
through the ingestion worker, after failing runs left in ``processing``
by a crashed process.

Usage:
    $ python scripts/reprocess_failed.py
    $ python scripts/reprocess_failed.py --collection <uuid> --concurrency 2
    $ python scripts/reprocess_failed.py --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import uuid
from datetime import timedelta

from knowledge_ingest.core.config import settings
from knowledge_ingest.core.database import dispose_engine, get_session_factory
from knowledge_ingest.core.logging import setup_logging
from knowledge_ingest.models.schemas import DocumentStatus
from knowledge_ingest.repositories.documents import document_repository
from knowledge_ingest.runtime import IngestionRuntime

logger = logging.getLogger("knowledge_ingest.scripts.reprocess_failed")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Resubmit errored documents for ingestion.")
    parser.add_argument(
        "--collection",
        type=uuid.UUID,
        default=None,
        help="Only documents of this collection",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.WORKER_CONCURRENCY,
        help="Documents processed in parallel",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the documents without processing them",
    )
    return parser.parse_args()


async def main(args: argparse.Namespace) -> None:
    config = settings.model_copy(update={"WORKER_CONCURRENCY": args.concurrency})
    runtime = IngestionRuntime.create(config)

    try:
        if not args.dry_run:
            await runtime.pipeline.recover_stale_documents(
                timedelta(seconds=config.STALE_PROCESSING_SECONDS)
            )

        async with get_session_factory()() as session:
            failed = await document_repository.list_documents(
                session,
                status=DocumentStatus.ERROR,
                collection_id=args.collection,
            )

        logger.info("Found %d errored documents", len(failed))
        for document in failed:
            logger.info(
                "  %s  %s  (%s)",
                document.id,
                document.file_name,
                document.error_message or "no message",
            )

        if args.dry_run or not failed:
            return

        runtime.worker.start()
        for document in failed:
            runtime.worker.submit(document.id)
        await runtime.worker.join()
        logger.info("Reprocessing finished")
    finally:
        await runtime.aclose()
        await dispose_engine()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main(parse_args()))
