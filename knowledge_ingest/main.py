"""
Knowledge Ingest: Application Entry Point

FastAPI application that accepts processing requests for registered
documents and runs the ingestion pipeline on an in-process worker.

Start locally:
    uvicorn knowledge_ingest.main:app --host 0.0.0.0 --port 8002 --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI

from knowledge_ingest.api.v1.documents import router as documents_router
from knowledge_ingest.core.config import settings
from knowledge_ingest.core.database import dispose_engine, verify_database
from knowledge_ingest.core.logging import setup_logging
from knowledge_ingest.runtime import IngestionRuntime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
        1. Configure logging.
        2. Validate database connectivity.
        3. Build the runtime and fail runs interrupted by a previous process.
        4. Start the ingestion worker.

    Shutdown:
        1. Stop the worker and close pooled clients.
        2. Dispose the database engine.
    """
    setup_logging()
    logger.info("Starting %s (%s)...", settings.PROJECT_NAME, settings.ENVIRONMENT)

    try:
        await verify_database()
        logger.info("Database connection verified")
    except Exception:
        logger.exception("Database connection failed")
        raise

    runtime = IngestionRuntime.create(settings)
    recovered = await runtime.pipeline.recover_stale_documents(
        timedelta(seconds=settings.STALE_PROCESSING_SECONDS)
    )
    if recovered:
        logger.warning("Marked %d interrupted documents as error", len(recovered))

    runtime.worker.start()
    app.state.runtime = runtime

    yield

    await runtime.aclose()
    await dispose_engine()
    logger.info("%s shutdown complete", settings.PROJECT_NAME)


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Document text extraction, chunking, embedding and vector indexing.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(documents_router, prefix="/api/v1/documents", tags=["Documents"])


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check for load balancers and orchestrators."""
    return {
        "status": "ok",
        "service": "knowledge-ingest",
        "environment": settings.ENVIRONMENT,
    }
