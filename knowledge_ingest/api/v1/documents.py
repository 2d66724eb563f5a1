"""
Documents API Router

HTTP endpoints for triggering and inspecting document ingestion.

Endpoints:
    POST /{document_id}/process: Queue a registered document (returns 202).
    GET  /{document_id}: Status, message and chunk counts.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_ingest.core.database import get_db
from knowledge_ingest.repositories.documents import (
    CLAIMABLE_STATUSES,
    DocumentRepository,
)
from knowledge_ingest.schemas.documents import (
    DocumentStatusResponse,
    ProcessAcceptedResponse,
)
from knowledge_ingest.workers.ingestion import IngestionWorker

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_repository() -> DocumentRepository:
    """FastAPI dependency: document repository."""
    return DocumentRepository()


def _get_worker(request: Request) -> IngestionWorker:
    """FastAPI dependency: the worker built in the application lifespan."""
    return request.app.state.runtime.worker


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/{document_id}/process",
    response_model=ProcessAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a document for ingestion",
    responses={
        404: {"description": "Unknown document"},
        409: {"description": "Document is already processing or completed"},
    },
)
async def process_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    repo: DocumentRepository = Depends(_get_repository),
    worker: IngestionWorker = Depends(_get_worker),
) -> ProcessAcceptedResponse:
    """
    Queue a ``pending`` or ``error`` document for background processing.

    The status check here only gives callers a fast answer; the pipeline's
    atomic claim is what prevents double processing.
    """
    document = await repo.get_document(db, document_id)
    if document is None:
        raise HTTPException(status_code=404, detail=f"Document not found: {document_id}")

    if document.status not in CLAIMABLE_STATUSES:
        raise HTTPException(
            status_code=409,
            detail=f"Document is already {document.status.value}",
        )

    if not worker.submit(document_id):
        return ProcessAcceptedResponse(
            document_id=document_id,
            status="already_queued",
            message="Document is already queued for processing.",
        )

    return ProcessAcceptedResponse(
        document_id=document_id,
        message=f"'{document.file_name}' accepted for processing.",
    )


@router.get(
    "/{document_id}",
    response_model=DocumentStatusResponse,
    summary="Get document processing status",
    responses={404: {"description": "Unknown document"}},
)
async def get_document_status(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    repo: DocumentRepository = Depends(_get_repository),
) -> DocumentStatusResponse:
    """Return the document's status, message and chunk counts."""
    document = await repo.get_document(db, document_id)
    if document is None:
        raise HTTPException(status_code=404, detail=f"Document not found: {document_id}")

    stats = await repo.get_processing_stats(db, document_id)

    return DocumentStatusResponse(
        document_id=document.id,
        collection_id=document.collection_id,
        file_name=document.file_name,
        file_type=document.file_type,
        status=document.status,
        message=document.error_message,
        stats=stats,
        created_at=document.created_at,
        updated_at=document.updated_at,
    )
