"""create assets and texts tables

Revision ID: 1a2b3c4d5e6f
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import advanced_alchemy.types


# revision identifiers, used by Alembic.
revision: str = '1a2b3c4d5e6f'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('assets',
        sa.Column('id', advanced_alchemy.types.guid.GUID(length=16), nullable=False),
        sa.Column('storage_id', sa.String(length=64), nullable=False),
        sa.Column('memo_id', sa.String(length=64), nullable=False),
        sa.Column('file_name', sa.String(length=1024), nullable=False),
        sa.Column('encrypted', sa.Boolean(), nullable=False),
        sa.Column('expire_at', advanced_alchemy.types.datetime.DateTimeUTC(timezone=True), nullable=False),
        sa.Column('sa_orm_sentinel', sa.Integer(), nullable=True),
        sa.Column('created_at', advanced_alchemy.types.datetime.DateTimeUTC(timezone=True), nullable=False),
        sa.Column('updated_at', advanced_alchemy.types.datetime.DateTimeUTC(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_assets')),
        sa.UniqueConstraint('memo_id', name=op.f('uq_assets_memo_id')),
        sa.UniqueConstraint('storage_id', name=op.f('uq_assets_storage_id')),
    )
    op.create_index(op.f('ix_assets_expire_at'), 'assets', ['expire_at'], unique=False)

    op.create_table('texts',
        sa.Column('id', advanced_alchemy.types.guid.GUID(length=16), nullable=False),
        sa.Column('storage_id', sa.String(length=64), nullable=False),
        sa.Column('memo_id', sa.String(length=64), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('expire_at', advanced_alchemy.types.datetime.DateTimeUTC(timezone=True), nullable=False),
        sa.Column('sa_orm_sentinel', sa.Integer(), nullable=True),
        sa.Column('created_at', advanced_alchemy.types.datetime.DateTimeUTC(timezone=True), nullable=False),
        sa.Column('updated_at', advanced_alchemy.types.datetime.DateTimeUTC(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_texts')),
        sa.UniqueConstraint('memo_id', name=op.f('uq_texts_memo_id')),
        sa.UniqueConstraint('storage_id', name=op.f('uq_texts_storage_id')),
    )
    op.create_index(op.f('ix_texts_expire_at'), 'texts', ['expire_at'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_texts_expire_at'), table_name='texts')
    op.drop_table('texts')
    op.drop_index(op.f('ix_assets_expire_at'), table_name='assets')
    op.drop_table('assets')
