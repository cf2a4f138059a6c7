"""account tokens, notification preferences and job templates

Revision ID: 0002_tokens_prefs_templates
Revises: 0001_initial_schema
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa

revision = "0002_tokens_prefs_templates"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None


def upgrade():
    op.add_column('users', sa.Column('email_verified', sa.Boolean(), nullable=False, server_default=sa.false()))

    op.create_table('user_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('purpose', sa.String(length=30), nullable=False),
        sa.Column('selector', sa.String(length=64), nullable=False),
        sa.Column('verifier_hash', sa.String(length=255), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_user_tokens_user_id', 'user_tokens', ['user_id'])
    op.create_index('ix_user_tokens_selector', 'user_tokens', ['selector'], unique=True)

    op.create_table('notification_preferences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('email_enabled', sa.Boolean(), nullable=False),
        sa.Column('push_enabled', sa.Boolean(), nullable=False),
        sa.Column('job_assigned', sa.Boolean(), nullable=False),
        sa.Column('job_status_changed', sa.Boolean(), nullable=False),
        sa.Column('job_completed', sa.Boolean(), nullable=False),
        sa.Column('inspection_scheduled', sa.Boolean(), nullable=False),
        sa.Column('inspection_completed', sa.Boolean(), nullable=False),
        sa.Column('service_request_created', sa.Boolean(), nullable=False),
        sa.Column('service_request_approved', sa.Boolean(), nullable=False),
        sa.Column('payment_failed', sa.Boolean(), nullable=False),
        sa.Column('payment_succeeded', sa.Boolean(), nullable=False),
        sa.Column('trial_expiring', sa.Boolean(), nullable=False),
        sa.Column('email_digest_frequency', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id')
    )

    op.create_table('job_templates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('manager_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('category', sa.String(length=50), nullable=True),
        sa.Column('priority', sa.String(length=20), nullable=False),
        sa.Column('estimated_cost', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('estimated_hours', sa.Numeric(precision=6, scale=2), nullable=True),
        sa.Column('instructions', sa.Text(), nullable=True),
        sa.Column('required_skills', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('usage_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['manager_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_job_templates_manager_id', 'job_templates', ['manager_id'])
    op.create_index('ix_job_templates_category', 'job_templates', ['category'])


def downgrade():
    for table in ('job_templates', 'notification_preferences', 'user_tokens'):
        op.drop_table(table)
    with op.batch_alter_table('users') as batch:
        batch.drop_column('email_verified')
