"""
Application Configuration

Centralized settings for the ingestion pipeline using Pydantic BaseSettings.
All values are loaded from environment variables or a .env file.
"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Ingestion settings with environment variable binding.

    Required env vars (no defaults):
        POSTGRES_USER, POSTGRES_PASSWORD, POSTGRES_HOST, POSTGRES_DB

    Optional env vars:
        OPENAI_API_KEY (unset = every embedding batch degrades to placeholders),
        STORAGE_BACKEND (local), S3_BUCKET, CHUNK_SIZE (2000),
        EMBEDDING_BATCH_SIZE (20), WORKER_CONCURRENCY (4), LOG_LEVEL (INFO)
    """

    PROJECT_NAME: str = "Knowledge Ingest"
    ENVIRONMENT: str = "local"

    # Database
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_HOST: str
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str

    # Source file storage
    STORAGE_BACKEND: Literal["local", "s3"] = "local"
    STORAGE_ROOT: str = "./storage"
    S3_BUCKET: str | None = None
    AWS_REGION: str = "us-east-1"
    STORAGE_TIMEOUT_SECONDS: float = 60.0

    # Embeddings
    OPENAI_API_KEY: str | None = None
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    # Must equal the vector_index column size (checked when the runtime is built)
    EMBEDDING_DIMENSION: int = 1536
    EMBEDDING_BATCH_SIZE: int = 20
    EMBEDDING_BATCH_DELAY_SECONDS: float = 0.1
    EMBEDDING_TIMEOUT_SECONDS: float = 30.0

    # Vector index
    UPSERT_TIMEOUT_SECONDS: float = 30.0

    # Chunking
    CHUNK_SIZE: int = 2000
    CHUNK_OVERLAP: int = 200

    # Workers
    WORKER_CONCURRENCY: int = 4
    CLIENT_POOL_SIZE: int = 8
    CLIENT_POOL_TTL_SECONDS: float = 300.0
    # Runs in processing longer than this are treated as interrupted
    STALE_PROCESSING_SECONDS: float = 3600.0

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    @property
    def DATABASE_URL(self) -> str:
        """Async PostgreSQL connection string using asyncpg driver."""
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()  # type: ignore[call-arg]
