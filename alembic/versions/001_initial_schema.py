"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'listings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('owner_identity', sa.String(100), nullable=False),
        sa.Column('counterpart_identity', sa.String(100), nullable=True),
        sa.Column('kind', sa.String(10), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('category', sa.String(20), nullable=False),
        sa.Column('amount', sa.Numeric(18, 6), nullable=False),
        sa.Column('currency', sa.String(10), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('escrow_status', sa.String(20), nullable=False),
        sa.Column('escrow_tx_ref', sa.String(200), nullable=True, unique=True),
        sa.Column('escrow_funded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('escrow_released_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('owner_confirmed', sa.Boolean(), nullable=False),
        sa.Column('counterpart_confirmed', sa.Boolean(), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
    )
    op.create_index('ix_listings_id', 'listings', ['id'])
    op.create_index('ix_listings_owner_identity', 'listings', ['owner_identity'])
    op.create_index('ix_listings_counterpart_identity', 'listings', ['counterpart_identity'])
    op.create_index('ix_listings_category', 'listings', ['category'])
    op.create_index('ix_listings_status', 'listings', ['status'])
    op.create_index('ix_listings_created_at', 'listings', ['created_at'])
    op.create_index('ix_listings_status_kind', 'listings', ['status', 'kind'])
    op.create_index('ix_listings_status_created_at', 'listings', ['status', 'created_at'])

    op.create_table(
        'bids',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('listing_id', sa.Integer(), sa.ForeignKey('listings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('bidder_identity', sa.String(100), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_bids_id', 'bids', ['id'])
    op.create_index('ix_bids_listing_bidder', 'bids', ['listing_id', 'bidder_identity'])

    op.create_table(
        'ratings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('listing_id', sa.Integer(), sa.ForeignKey('listings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rater_identity', sa.String(100), nullable=False),
        sa.Column('ratee_identity', sa.String(100), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('review', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('listing_id', 'rater_identity', name='uq_ratings_listing_rater'),
    )
    op.create_index('ix_ratings_id', 'ratings', ['id'])
    op.create_index('ix_ratings_ratee_identity', 'ratings', ['ratee_identity'])

    op.create_table(
        'user_profiles',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('identity', sa.String(100), nullable=False, unique=True),
        sa.Column('display_name', sa.String(100), nullable=False),
        sa.Column('completed_jobs', sa.Integer(), nullable=False),
        sa.Column('average_rating', sa.Float(), nullable=False),
        sa.Column('rating_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_user_profiles_id', 'user_profiles', ['id'])

    op.create_table(
        'messages',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('listing_id', sa.Integer(), sa.ForeignKey('listings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_identity', sa.String(100), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_messages_id', 'messages', ['id'])
    op.create_index('ix_messages_listing_created_at', 'messages', ['listing_id', 'created_at'])

    op.create_table(
        'problems',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('author_identity', sa.String(100), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('total_votes', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_problems_id', 'problems', ['id'])
    op.create_index('ix_problems_author_identity', 'problems', ['author_identity'])
    op.create_index('ix_problems_created_at', 'problems', ['created_at'])

    op.create_table(
        'problem_votes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('problem_id', sa.Integer(), sa.ForeignKey('problems.id', ondelete='CASCADE'), nullable=False),
        sa.Column('voter_identity', sa.String(100), nullable=False),
        sa.Column('direction', sa.String(10), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('problem_id', 'voter_identity', name='uq_problem_votes_problem_voter'),
    )
    op.create_index('ix_problem_votes_id', 'problem_votes', ['id'])


def downgrade() -> None:
    op.drop_table('problem_votes')
    op.drop_table('problems')
    op.drop_table('messages')
    op.drop_table('user_profiles')
    op.drop_table('ratings')
    op.drop_table('bids')
    op.drop_table('listings')
