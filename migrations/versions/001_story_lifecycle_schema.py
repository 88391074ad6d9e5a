"""Story lifecycle schema

Revision ID: 001_story_lifecycle
Revises:
Create Date: 2026-10-16

This migration:
- Creates stories with lifecycle state + revision for compare-and-swap
- Creates comments (live tier) and archived_comments (database cold tier)
- Creates story_lifecycle_events audit trail
- Creates story_trees cache and queued_jobs queue
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_story_lifecycle'
down_revision = None
branch_labels = None
depends_on = None


def _comment_columns():
    return [
        sa.Column('tenant_id', sa.String(64), primary_key=True),
        sa.Column('id', sa.String(128), primary_key=True),
        sa.Column('story_id', sa.String(128), nullable=False),
        sa.Column('parent_id', sa.String(128), nullable=True),
        sa.Column('author_id', sa.String(128), nullable=True),
        sa.Column('body', sa.Text, nullable=True),
        sa.Column('reply_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('tier', sa.String(8), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'stories',
        sa.Column('tenant_id', sa.String(64), primary_key=True),
        sa.Column('id', sa.String(128), primary_key=True),
        sa.Column('url', sa.Text, nullable=True),
        sa.Column('state', sa.String(32), nullable=False, server_default='open'),
        sa.Column('revision', sa.Integer, nullable=False, server_default='0'),
        sa.Column('archived_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('unarchived_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_stories_tenant_state', 'stories', ['tenant_id', 'state'])

    op.create_table('comments', *_comment_columns())
    op.create_index('ix_comments_tenant_story', 'comments', ['tenant_id', 'story_id', 'created_at'])

    op.create_table('archived_comments', *_comment_columns())
    op.create_index(
        'ix_archived_comments_tenant_story', 'archived_comments', ['tenant_id', 'story_id', 'created_at']
    )

    op.create_table(
        'story_lifecycle_events',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('story_id', sa.String(128), nullable=False),
        sa.Column('event', sa.String(32), nullable=False),
        sa.Column('from_state', sa.String(32), nullable=False),
        sa.Column('to_state', sa.String(32), nullable=False),
        sa.Column('revision', sa.Integer, nullable=False),
        sa.Column('initiated_by', sa.String(64), nullable=True),
        sa.Column('details', sa.JSON, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        'ix_story_lifecycle_events_story', 'story_lifecycle_events', ['tenant_id', 'story_id', 'created_at']
    )

    op.create_table(
        'story_trees',
        sa.Column('tenant_id', sa.String(64), primary_key=True),
        sa.Column('story_id', sa.String(128), primary_key=True),
        sa.Column('tree', sa.JSON, nullable=False),
        sa.Column('comment_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('integrity_warnings', sa.Integer, nullable=False, server_default='0'),
        sa.Column('generated_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'queued_jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('queue', sa.String(64), nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('payload', sa.JSON, nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error', sa.Text, nullable=True),
    )
    op.create_index('ix_queued_jobs_queue_status', 'queued_jobs', ['queue', 'status', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_queued_jobs_queue_status', table_name='queued_jobs')
    op.drop_table('queued_jobs')
    op.drop_table('story_trees')
    op.drop_index('ix_story_lifecycle_events_story', table_name='story_lifecycle_events')
    op.drop_table('story_lifecycle_events')
    op.drop_index('ix_archived_comments_tenant_story', table_name='archived_comments')
    op.drop_table('archived_comments')
    op.drop_index('ix_comments_tenant_story', table_name='comments')
    op.drop_table('comments')
    op.drop_index('ix_stories_tenant_state', table_name='stories')
    op.drop_table('stories')
