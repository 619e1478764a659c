"""create kv_entries table

Revision ID: 5c1e9a7b3d20
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5c1e9a7b3d20'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add kv_entries table holding job records and rate windows."""
    op.create_table('kv_entries',
        sa.Column('key', sa.String(length=255), nullable=False),
        sa.Column('value', sa.LargeBinary(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('key')
    )
    # Purge scans by expiry
    op.create_index('ix_kv_entries_expires_at', 'kv_entries', ['expires_at'])


def downgrade() -> None:
    """Remove kv_entries table."""
    op.drop_index('ix_kv_entries_expires_at', table_name='kv_entries')
    op.drop_table('kv_entries')
