"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- users ---
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=128), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('hashed_password', sa.String(length=255), nullable=False),
        sa.Column('avatar_url', sa.String(length=512), nullable=True),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('account_status', sa.String(length=16), nullable=False, server_default='live'),
        sa.Column('account_status_reason', sa.Text(), nullable=True),
        sa.Column('followers_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('following_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('posts_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username')
    )

    # --- follows ---
    op.create_table(
        'follows',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('follower_id', sa.String(length=64), nullable=False),
        sa.Column('following_id', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('follower_id <> following_id', name='chk_follows_not_self'),
        sa.ForeignKeyConstraint(['follower_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['following_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('follower_id', 'following_id', name='uq_follows_pair')
    )
    op.create_index('idx_follows_following', 'follows', ['following_id'], unique=False)

    # --- friend_requests ---
    op.create_table(
        'friend_requests',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('from_user_id', sa.String(length=64), nullable=False),
        sa.Column('to_user_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('responded_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('from_user_id <> to_user_id', name='chk_friend_requests_not_self'),
        sa.ForeignKeyConstraint(['from_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['to_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_friend_requests_to_status', 'friend_requests', ['to_user_id', 'status'], unique=False)
    op.create_index('idx_friend_requests_from_status', 'friend_requests', ['from_user_id', 'status'], unique=False)

    # --- posts ---
    op.create_table(
        'posts',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('is_admin_post', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('rank', sa.Integer(), nullable=True),
        sa.Column('caption', sa.Text(), nullable=True),
        sa.Column('media_url', sa.String(length=512), nullable=True),
        sa.Column('link', sa.String(length=512), nullable=True),
        sa.Column('likes_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('dislikes_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('votes_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('comments_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_posts_created', 'posts', ['created_at'], unique=False)
    op.create_index('idx_posts_user', 'posts', ['user_id'], unique=False)

    # --- post_reactions ---
    op.create_table(
        'post_reactions',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('post_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['post_id'], ['posts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('post_id', 'user_id', name='uq_post_reactions_post_user')
    )

    # --- post_votes ---
    op.create_table(
        'post_votes',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('post_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['post_id'], ['posts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('post_id', 'user_id', name='uq_post_votes_post_user')
    )

    # --- comments ---
    op.create_table(
        'comments',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('post_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['post_id'], ['posts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_comments_post_created', 'comments', ['post_id', 'created_at'], unique=False)

    # --- vibes ---
    op.create_table(
        'vibes',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('media_url', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_vibes_expires', 'vibes', ['expires_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_vibes_expires', table_name='vibes')
    op.drop_table('vibes')
    op.drop_index('idx_comments_post_created', table_name='comments')
    op.drop_table('comments')
    op.drop_table('post_votes')
    op.drop_table('post_reactions')
    op.drop_index('idx_posts_user', table_name='posts')
    op.drop_index('idx_posts_created', table_name='posts')
    op.drop_table('posts')
    op.drop_index('idx_friend_requests_from_status', table_name='friend_requests')
    op.drop_index('idx_friend_requests_to_status', table_name='friend_requests')
    op.drop_table('friend_requests')
    op.drop_index('idx_follows_following', table_name='follows')
    op.drop_table('follows')
    op.drop_table('users')
