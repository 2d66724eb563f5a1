"""
Logging Configuration

Stdout logging for the API process and ingestion workers.

Several documents are processed concurrently on one event loop, so their
log lines interleave. Every record is tagged with the document id of the
run that emitted it (``-`` outside a run), including records from the
storage, embedding and vector store layers that never see the id.
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from logging.config import dictConfig

from knowledge_ingest.core.config import settings

# Third-party loggers that log per request/statement at INFO
QUIET_LOGGERS: tuple[str, ...] = ("sqlalchemy.engine", "httpx", "openai", "botocore")

_current_document: ContextVar[str] = ContextVar("current_document", default="-")


@contextmanager
def document_context(document_id: uuid.UUID) -> Iterator[None]:
    """Tag log records emitted inside the block (and tasks it spawns) with ``document_id``."""
    token = _current_document.set(str(document_id))
    try:
        yield
    finally:
        _current_document.reset(token)


class DocumentContextFilter(logging.Filter):
    """Sets ``record.document`` from the active document context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.document = _current_document.get()
        return True


def setup_logging(level: str | None = None) -> None:
    """
    Initialize logging with consistent formatting.

    Configuration:
        - Output: stdout
        - Format: Timestamp | Level | Module | Document | Message
        - Level: ``level`` argument, else the LOG_LEVEL env var

    Note:
        Call once at process startup (API lifespan or script entry point).
    """
    log_level = (level or settings.LOG_LEVEL).upper()

    handler = ["console"]
    quiet = {
        name: {"level": "WARNING", "handlers": handler, "propagate": False}
        for name in QUIET_LOGGERS
    }

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "document": {"()": DocumentContextFilter},
            },
            "formatters": {
                "default": {
                    "format": (
                        "%(asctime)s | %(levelname)-8s | %(name)s | "
                        "%(document)s | %(message)s"
                    ),
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "stream": sys.stdout,
                    "formatter": "default",
                    "filters": ["document"],
                },
            },
            "root": {"level": log_level, "handlers": handler},
            "loggers": {
                "knowledge_ingest": {
                    "level": log_level,
                    "handlers": handler,
                    "propagate": False,
                },
                "uvicorn": {"level": "INFO", "handlers": handler, "propagate": False},
                "uvicorn.access": {"level": "INFO", "handlers": handler, "propagate": False},
                **quiet,
            },
        }
    )
