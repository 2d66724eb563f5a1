"""Repositories package."""

from knowledge_ingest.repositories.documents import (
    CLAIMABLE_STATUSES,
    DocumentRepository,
    document_repository,
)

__all__ = [
    "CLAIMABLE_STATUSES",
    "DocumentRepository",
    "document_repository",
]
