"""Create db_locks table for lease-based process coordination

Revision ID: 0001_create_lock_table
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_create_lock_table'
down_revision = None
branch_labels = None
depends_on = None

TABLE_NAME = 'db_locks'


def upgrade():
    """Add db_locks table."""

    # Keep in sync with tablelock.models.lock_row.build_lock_table
    op.create_table(
        TABLE_NAME,
        sa.Column('host_name', sa.String(64), nullable=True),
        sa.Column('target', sa.String(255), nullable=False),
        sa.Column('code', sa.String(64), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('expiry_time', sa.TIMESTAMP(), nullable=False),
        sa.Column('update_time', sa.TIMESTAMP(), nullable=False),
        sa.Column('create_time', sa.TIMESTAMP(), nullable=False),
        sa.UniqueConstraint('target', name='uq_db_locks_target'),
    )


def downgrade():
    """Remove db_locks table."""

    op.drop_table(TABLE_NAME)
