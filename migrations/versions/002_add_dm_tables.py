"""add dm tables

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 10:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- dm_requests ---
    op.create_table(
        'dm_requests',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('from_user_id', sa.String(length=64), nullable=False),
        sa.Column('to_user_id', sa.String(length=64), nullable=False),
        sa.Column('first_message', sa.Text(), nullable=False),
        sa.Column('message_type', sa.String(length=16), nullable=False, server_default='text'),
        sa.Column('file_url', sa.String(length=512), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('pending_key', sa.String(length=160), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('from_user_id <> to_user_id', name='chk_dm_requests_not_self'),
        sa.ForeignKeyConstraint(['from_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['to_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pending_key')
    )
    op.create_index('idx_dm_requests_to_status', 'dm_requests', ['to_user_id', 'status'], unique=False)
    op.create_index('idx_dm_requests_from_status', 'dm_requests', ['from_user_id', 'status'], unique=False)

    # --- dm_chats ---
    op.create_table(
        'dm_chats',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('user1_id', sa.String(length=64), nullable=False),
        sa.Column('user2_id', sa.String(length=64), nullable=False),
        sa.Column('user1_last_read', sa.DateTime(), nullable=True),
        sa.Column('user2_last_read', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('user1_id < user2_id', name='chk_dm_chats_canonical'),
        sa.ForeignKeyConstraint(['user1_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user2_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user1_id', 'user2_id', name='uq_dm_chats_pair')
    )
    op.create_index('idx_dm_chats_user2', 'dm_chats', ['user2_id'], unique=False)

    # --- dm_messages ---
    op.create_table(
        'dm_messages',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('chat_id', sa.String(length=64), nullable=False),
        sa.Column('seq', sa.BigInteger(), nullable=False),
        sa.Column('sender_id', sa.String(length=64), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('message_type', sa.String(length=16), nullable=False, server_default='text'),
        sa.Column('file_url', sa.String(length=512), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['chat_id'], ['dm_chats.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('chat_id', 'seq', name='uq_dm_messages_chat_seq')
    )
    op.create_index('idx_dm_messages_chat_created', 'dm_messages', ['chat_id', 'created_at'], unique=False)
    op.create_index('idx_dm_messages_sender', 'dm_messages', ['sender_id'], unique=False)

    # --- dm_blocks ---
    op.create_table(
        'dm_blocks',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('blocker_id', sa.String(length=64), nullable=False),
        sa.Column('blocked_id', sa.String(length=64), nullable=False),
        sa.Column('block_type', sa.String(length=16), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('blocker_id <> blocked_id', name='chk_dm_blocks_not_self'),
        sa.ForeignKeyConstraint(['blocker_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['blocked_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('blocker_id', 'blocked_id', name='uq_dm_blocks_pair')
    )
    op.create_index('idx_dm_blocks_expires', 'dm_blocks', ['block_type', 'expires_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_dm_blocks_expires', table_name='dm_blocks')
    op.drop_table('dm_blocks')
    op.drop_index('idx_dm_messages_sender', table_name='dm_messages')
    op.drop_index('idx_dm_messages_chat_created', table_name='dm_messages')
    op.drop_table('dm_messages')
    op.drop_index('idx_dm_chats_user2', table_name='dm_chats')
    op.drop_table('dm_chats')
    op.drop_index('idx_dm_requests_from_status', table_name='dm_requests')
    op.drop_index('idx_dm_requests_to_status', table_name='dm_requests')
    op.drop_table('dm_requests')
