"""
Ingestion Errors

Failures raised by pipeline stages. Stages only raise; the
IngestionPipeline decides which ones are fatal for a document.
"""

from __future__ import annotations


class IngestionError(Exception):
    """Base class for stage failures."""


class DocumentNotFound(IngestionError):
    """Raised when a document id does not resolve to a record."""

    def __init__(self, document_id: object) -> None:
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class StorageFetchFailed(IngestionError):
    """Raised when the source file cannot be downloaded."""

    def __init__(self, location: str, cause: str) -> None:
        self.location = location
        self.cause = cause
        super().__init__(f"Failed to download file {location}: {cause}")


class ExtractionFailed(IngestionError):
    """Raised when a file-type handler cannot produce text."""

    def __init__(self, file_type: str, cause: str) -> None:
        self.file_type = file_type
        self.cause = cause
        super().__init__(f"Failed to extract text from {file_type} file: {cause}")


class ChunkPersistenceFailed(IngestionError):
    """Raised when chunk rows cannot be written. Nothing is left behind."""

    def __init__(self, cause: str) -> None:
        self.cause = cause
        super().__init__(f"Failed to insert chunks: {cause}")


class EmbeddingProviderError(IngestionError):
    """Raised by an embedding provider for a failed or malformed batch."""


class UpsertFailed(IngestionError):
    """Raised when the vector store rejects a bulk upsert."""

    def __init__(self, cause: str) -> None:
        self.cause = cause
        super().__init__(f"Failed to upsert vectors: {cause}")


class VectorDeleteFailed(IngestionError):
    """Raised when a document's vectors cannot be removed from the index."""

    def __init__(self, cause: str) -> None:
        self.cause = cause
        super().__init__(f"Failed to delete vectors: {cause}")
