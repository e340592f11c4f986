"""Create file_transfers

Revision ID: 5c21d7e0a3b4
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5c21d7e0a3b4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'file_transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transfer_key', sa.Integer(), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False),
        sa.Column('mime_type', sa.String(length=255), nullable=False),
        sa.Column('storage_locator', sa.String(length=1024), nullable=False),
        sa.Column('encryption_iv', sa.String(length=32), nullable=False),
        sa.Column('auth_tag', sa.String(length=32), nullable=False),
        sa.Column('download_count', sa.Integer(), nullable=False),
        sa.Column('max_downloads', sa.Integer(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_file_transfers_id', 'file_transfers', ['id'], unique=False)
    op.create_index('ix_file_transfers_transfer_key', 'file_transfers', ['transfer_key'], unique=True)
    op.create_index('ix_file_transfers_expires_at', 'file_transfers', ['expires_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_file_transfers_expires_at', table_name='file_transfers')
    op.drop_index('ix_file_transfers_transfer_key', table_name='file_transfers')
    op.drop_index('ix_file_transfers_id', table_name='file_transfers')
    op.drop_table('file_transfers')
