"""create vector_index

Revision ID: c84e0b51d6a2
Revises: 3f1c9a7d2b40
Create Date: 2026-09-02 11:06:52.550318

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "c84e0b51d6a2"
down_revision: str | Sequence[str] | None = "3f1c9a7d2b40"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the pgvector-backed vector index table."""
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "vector_index",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("collection_id", sa.String(64), nullable=False),
        sa.Column("document_id", sa.String(64), nullable=False),
        sa.Column("embedding", Vector(1536), nullable=False),
        sa.Column(
            "is_placeholder",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "metadata",
            JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_vector_index_collection_id", "vector_index", ["collection_id"])
    op.create_index("ix_vector_index_document_id", "vector_index", ["document_id"])

    # HNSW index for cosine similarity search
    op.execute(
        """
        CREATE INDEX ix_vector_index_embedding_hnsw
        ON vector_index
        USING hnsw (embedding vector_cosine_ops)
        WITH (m = 16, ef_construction = 64)
        """
    )


def downgrade() -> None:
    """Drop the vector index table."""
    op.execute("DROP INDEX IF EXISTS ix_vector_index_embedding_hnsw")
    op.drop_index("ix_vector_index_document_id", table_name="vector_index")
    op.drop_index("ix_vector_index_collection_id", table_name="vector_index")
    op.drop_table("vector_index")
