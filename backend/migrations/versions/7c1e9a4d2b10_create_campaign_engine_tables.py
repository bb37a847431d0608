"""create_campaign_engine_tables

Revision ID: 7c1e9a4d2b10
Revises:
Create Date: 2025-11-20 10:12:44.318207

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '7c1e9a4d2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Enum columns store member names
campaign_type = sa.Enum(
    'EMAIL', 'SMS', 'SOCIAL', 'PAID_ADS', 'EVENT', 'WEBINAR', 'DIRECT', 'MULTI_CHANNEL',
    name='campaign_type',
)
campaign_status = sa.Enum(
    'DRAFT', 'SCHEDULED', 'ACTIVE', 'PAUSED', 'COMPLETED', 'CANCELLED',
    name='campaign_status',
)
lead_status = sa.Enum('NEW', 'CONTACTED', 'QUALIFIED', 'LOST', 'CONVERTED', name='lead_status')
lead_type = sa.Enum('INBOUND', 'OUTBOUND', name='lead_type')
pipeline_stage = sa.Enum(
    'PROSPECTING', 'INITIAL_CONTACT', 'MEETING_SCHEDULED', 'PROPOSAL',
    'NEGOTIATION', 'CLOSED_WON', 'CLOSED_LOST',
    name='pipeline_stage',
)
segment_type = sa.Enum('DYNAMIC', 'STATIC', name='segment_type')
job_type = sa.Enum('CAMPAIGN_TICK', 'OTHER', name='job_type')
job_status = sa.Enum('PENDING', 'PROCESSING', 'DONE', 'FAILED', name='job_status')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('role', sa.String(length=50), nullable=False, server_default='User'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'companies',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='Prospect'),
        sa.Column('contracted_courses', postgresql.JSONB(), nullable=True),
    )

    op.create_table(
        'courses',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='Upcoming'),
    )

    op.create_table(
        'students',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='Active'),
        sa.Column('course', sa.String(length=100), nullable=True),
        sa.Column('course_title', sa.String(length=255), nullable=True),
        sa.Column('enrollment_date', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_students_email', 'students', ['email'])

    op.create_table(
        'leads',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('status', lead_status, nullable=False),
        sa.Column('source', sa.String(length=100), nullable=True),
        sa.Column('type', lead_type, nullable=False),
        sa.Column('pipeline', pipeline_stage, nullable=False),
        sa.Column('campaign', sa.String(length=100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('company_id', sa.Uuid(), sa.ForeignKey('companies.id', ondelete='SET NULL'), nullable=True),
        sa.Column('course_of_interest', sa.String(length=100), nullable=True),
        sa.Column('selected_courses', postgresql.JSONB(), nullable=True),
        sa.Column('contract_name', sa.String(length=255), nullable=True),
        sa.Column('converted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('date', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(),
                  comment='Date the lead was added'),
        sa.Column('last_interaction_by', sa.String(length=255), nullable=True),
        sa.Column('last_interaction_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_contact_date', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_leads_email', 'leads', ['email'])
    op.create_index('ix_leads_status', 'leads', ['status'])
    op.create_index('ix_leads_pipeline', 'leads', ['pipeline'])

    op.create_table(
        'segments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', segment_type, nullable=False),
        sa.Column('criteria', postgresql.JSONB(), nullable=False,
                  comment='Ordered list of {field, operator, value}'),
        sa.Column('member_ids', postgresql.JSONB(), nullable=True,
                  comment='Frozen lead ids for static segments'),
        sa.Column('lead_count', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'email_templates',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('subject', sa.String(length=500), nullable=False, server_default=''),
        sa.Column('body', sa.Text(), nullable=False, server_default=''),
        sa.Column('category', sa.String(length=50), nullable=True,
                  comment='welcome, lead, course, announcement, custom'),
        sa.Column('variables', postgresql.JSONB(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'campaigns',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', campaign_type, nullable=False),
        sa.Column('status', campaign_status, nullable=False),
        sa.Column('schedule', postgresql.JSONB(), nullable=True,
                  comment='startDate, endDate, frequency, sendTime, timezone'),
        sa.Column('audience', postgresql.JSONB(), nullable=True,
                  comment='Segment reference or inline criteria'),
        sa.Column('content', postgresql.JSONB(), nullable=True),
        sa.Column('ab_test', postgresql.JSONB(), nullable=True),
        sa.Column('funnel', postgresql.JSONB(), nullable=True),
        sa.Column('metrics', postgresql.JSONB(), nullable=True),
        sa.Column('tags', postgresql.JSONB(), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('last_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_campaigns_type', 'campaigns', ['type'])
    op.create_index('ix_campaigns_status', 'campaigns', ['status'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])

    op.create_table(
        'jobs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('type', job_type, nullable=False),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=False),
        sa.Column('run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', job_status, nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payload', postgresql.JSONB(), nullable=True,
                  comment='Last run summary (fired, failed, correlation id)'),
        sa.Column('lock_key', sa.BigInteger(), nullable=True,
                  comment='Used with pg_try_advisory_lock for distributed locking'),
        *_timestamps(),
    )
    op.create_index('ix_jobs_type', 'jobs', ['type'])
    op.create_index('ix_jobs_scheduled_for', 'jobs', ['scheduled_for'])
    op.create_index('ix_jobs_status', 'jobs', ['status'])


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        'jobs', 'notifications', 'campaigns', 'email_templates', 'segments',
        'leads', 'students', 'courses', 'companies', 'users',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum in (
        job_status, job_type, segment_type, pipeline_stage, lead_type,
        lead_status, campaign_status, campaign_type,
    ):
        enum.drop(bind, checkfirst=True)
