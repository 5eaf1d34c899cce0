"""Add message recipients and read flags

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column('messages', sa.Column('recipient_identity', sa.String(100), nullable=True))
    op.add_column('messages', sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.false()))
    op.create_index('ix_messages_sender_identity', 'messages', ['sender_identity'])
    op.create_index('ix_messages_recipient_read', 'messages', ['recipient_identity', 'read'])


def downgrade() -> None:
    op.drop_index('ix_messages_recipient_read', table_name='messages')
    op.drop_index('ix_messages_sender_identity', table_name='messages')
    op.drop_column('messages', 'read')
    op.drop_column('messages', 'recipient_identity')
