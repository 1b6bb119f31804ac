"""Create style learning tables

Revision ID: create_style_learning_tables
Revises:
Create Date: 2026-10-18

Adds tables for:
- users (embedded style profile, version history, manual overrides)
- contents (generated drafts with embedded edit metadata)
- learning_jobs
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'create_style_learning_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('github_id', sa.String(64), unique=True, nullable=False, index=True),
        sa.Column('username', sa.String(255), nullable=False),
        sa.Column('style_profile', sa.JSON, nullable=True),
        sa.Column('profile_versions', sa.JSON, nullable=False, server_default='[]'),
        sa.Column('manual_overrides', sa.JSON, nullable=True),
        sa.Column('voice_strength', sa.Integer, nullable=False, server_default='80'),
        sa.Column('emoji_preference', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('version_id', sa.Integer, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False),
    )

    op.create_table(
        'contents',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('analysis_id', sa.String(36), nullable=True),
        sa.Column('platform', sa.String(20), nullable=False),
        sa.Column('content_format', sa.String(20), nullable=False, server_default='single'),
        sa.Column('tone', sa.String(50), nullable=False, server_default='professional'),
        sa.Column('generated_text', sa.Text, nullable=False),
        sa.Column('edited_text', sa.Text, nullable=True),
        sa.Column('tweets', sa.JSON, nullable=True),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('edit_metadata', sa.JSON, nullable=True),
        sa.Column('edit_timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.Column('learning_processed', sa.Boolean, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False),
    )
    op.create_index('idx_contents_user_edit_ts', 'contents', ['user_id', 'edit_timestamp'])

    op.create_table(
        'learning_jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('content_id', sa.String(36), sa.ForeignKey('contents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('priority', sa.Integer, nullable=False, server_default='0'),
        sa.Column('attempts', sa.Integer, nullable=False, server_default='0'),
        sa.Column('error', sa.Text, nullable=True),
        sa.Column('style_delta', sa.JSON, nullable=True),
        sa.Column('metadata', sa.JSON, nullable=False, server_default='{}'),
        sa.Column('processing_started', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processing_completed', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False),
    )
    op.create_index('idx_learning_jobs_user_status', 'learning_jobs', ['user_id', 'status'])


def downgrade():
    op.drop_index('idx_learning_jobs_user_status', table_name='learning_jobs')
    op.drop_table('learning_jobs')
    op.drop_index('idx_contents_user_edit_ts', table_name='contents')
    op.drop_table('contents')
    op.drop_table('users')
