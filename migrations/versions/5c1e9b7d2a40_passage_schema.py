"""Passage schema

Revision ID: 5c1e9b7d2a40
Revises: 
Create Date: 2025-10-19 10:02:11.418203

"""
import os
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector


# revision identifiers, used by Alembic.
revision: str = '5c1e9b7d2a40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# HNSW needs a fixed width; leave EMBED_DIMENSIONS unset for an unconstrained column
EMBED_DIMENSIONS = int(os.getenv("EMBED_DIMENSIONS", "0")) or None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # Create documents table
    op.create_table('documents',
        sa.Column('id', sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('company_id', sa.BigInteger(), nullable=True),
        sa.Column('doc_type', sa.Text(), server_default='webpage', nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('url')
    )

    # Create ingested_documents table
    op.create_table('ingested_documents',
        sa.Column('id', sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('body_text', sa.Text(), nullable=False),
        sa.Column('document_id', sa.BigInteger(), nullable=True),
        sa.Column('processed', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('fetched_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['document_id'], ['documents.id'], ),
        sa.PrimaryKeyConstraint('id')
    )

    # Create passages table
    op.create_table('passages',
        sa.Column('id', sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column('document_id', sa.BigInteger(), nullable=False),
        sa.Column('company_id', sa.BigInteger(), nullable=True),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('embedding', Vector(EMBED_DIMENSIONS), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['document_id'], ['documents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )

    # Create indexes
    op.create_index('idx_ingested_pending', 'ingested_documents', ['processed', sa.text('fetched_at DESC')])
    op.create_index('idx_passages_document_id', 'passages', ['document_id'])
    if EMBED_DIMENSIONS:
        op.create_index(
            'idx_passages_embedding_hnsw', 'passages', ['embedding'],
            postgresql_using='hnsw',
            postgresql_ops={'embedding': 'vector_cosine_ops'},
        )


def downgrade() -> None:
    """Downgrade schema."""
    # Drop indexes
    if EMBED_DIMENSIONS:
        op.drop_index('idx_passages_embedding_hnsw', table_name='passages')
    op.drop_index('idx_passages_document_id', table_name='passages')
    op.drop_index('idx_ingested_pending', table_name='ingested_documents')

    # Drop tables
    op.drop_table('passages')
    op.drop_table('ingested_documents')
    op.drop_table('documents')
