"""create visitor, touchpoint, handoff and completion tables

Revision ID: c3f1a9d2e7b4
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = 'c3f1a9d2e7b4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('visitors',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('visitor_id', sa.String(length=32), nullable=False),
        sa.Column('email_hash', sa.String(length=64), nullable=True),
        sa.Column('first_seen_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('visit_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('first_touch', sa.Text(), nullable=True),
        sa.Column('device_info', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_visitors_visitor_id'), 'visitors', ['visitor_id'], unique=True)
    op.create_index(op.f('ix_visitors_email_hash'), 'visitors', ['email_hash'], unique=False)

    op.create_table('touchpoints',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('visitor_id', sa.String(length=32), nullable=False),
        sa.Column('instance_id', sa.Integer(), nullable=True),
        sa.Column('touch_type', sa.String(length=32), nullable=False),
        sa.Column('step', sa.String(length=64), nullable=True),
        sa.Column('utm_source', sa.String(length=255), nullable=True),
        sa.Column('utm_medium', sa.String(length=255), nullable=True),
        sa.Column('utm_campaign', sa.String(length=255), nullable=True),
        sa.Column('utm_term', sa.String(length=255), nullable=True),
        sa.Column('utm_content', sa.String(length=255), nullable=True),
        sa.Column('gclid', sa.String(length=255), nullable=True),
        sa.Column('fbclid', sa.String(length=255), nullable=True),
        sa.Column('msclkid', sa.String(length=255), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=True),
        sa.Column('referrer_domain', sa.String(length=255), nullable=True),
        sa.Column('landing_page', sa.Text(), nullable=True),
        sa.Column('page_url', sa.Text(), nullable=True),
        sa.Column('promo_code', sa.String(length=100), nullable=True),
        sa.Column('touch_data', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_touchpoints_visitor_created', 'touchpoints', ['visitor_id', 'created_at'], unique=False)
    op.create_index('ix_touchpoints_instance_type_created', 'touchpoints', ['instance_id', 'touch_type', 'created_at'], unique=False)

    op.create_table('handoffs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('handoff_token', sa.String(length=32), nullable=False),
        sa.Column('instance_id', sa.Integer(), nullable=False),
        sa.Column('visitor_id', sa.String(length=32), nullable=True),
        sa.Column('destination_url', sa.Text(), nullable=False),
        sa.Column('status', sa.Enum('CREATED', 'REDIRECTED', 'COMPLETED', 'ABANDONED', 'EXPIRED', name='handoffstatus'), nullable=False),
        sa.Column('account_number', sa.String(length=100), nullable=True),
        sa.Column('external_id', sa.String(length=100), nullable=True),
        sa.Column('attribution', sa.Text(), nullable=True),
        sa.Column('completion_data', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('redirected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_handoffs_handoff_token'), 'handoffs', ['handoff_token'], unique=True)
    op.create_index(op.f('ix_handoffs_visitor_id'), 'handoffs', ['visitor_id'], unique=False)
    op.create_index(op.f('ix_handoffs_account_number'), 'handoffs', ['account_number'], unique=False)
    op.create_index('ix_handoffs_instance_created', 'handoffs', ['instance_id', 'created_at'], unique=False)

    op.create_table('external_completions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('instance_id', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(length=20), nullable=False, server_default='import'),
        sa.Column('account_number', sa.String(length=100), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('external_id', sa.String(length=100), nullable=True),
        sa.Column('completion_type', sa.String(length=50), nullable=False, server_default='enrollment'),
        sa.Column('handoff_id', sa.Integer(), nullable=True),
        sa.Column('match_confidence', sa.Float(), nullable=True),
        sa.Column('match_strategy', sa.String(length=32), nullable=True),
        sa.Column('raw_data', sa.Text(), nullable=True),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['handoff_id'], ['handoffs.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_external_completions_instance_id'), 'external_completions', ['instance_id'], unique=False)
    op.create_index(op.f('ix_external_completions_handoff_id'), 'external_completions', ['handoff_id'], unique=False)
    op.create_index('ix_external_completions_instance_account', 'external_completions', ['instance_id', 'account_number'], unique=False)

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('actor', sa.String(length=100), nullable=False, server_default='system'),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('target_type', sa.String(length=50), nullable=False),
        sa.Column('target_id', sa.Integer(), nullable=True),
        sa.Column('meta_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_audit_logs_action'), 'audit_logs', ['action'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_audit_logs_action'), table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('ix_external_completions_instance_account', table_name='external_completions')
    op.drop_index(op.f('ix_external_completions_handoff_id'), table_name='external_completions')
    op.drop_index(op.f('ix_external_completions_instance_id'), table_name='external_completions')
    op.drop_table('external_completions')
    op.drop_index('ix_handoffs_instance_created', table_name='handoffs')
    op.drop_index(op.f('ix_handoffs_account_number'), table_name='handoffs')
    op.drop_index(op.f('ix_handoffs_visitor_id'), table_name='handoffs')
    op.drop_index(op.f('ix_handoffs_handoff_token'), table_name='handoffs')
    op.drop_table('handoffs')
    sa.Enum(name='handoffstatus').drop(op.get_bind(), checkfirst=True)
    op.drop_index('ix_touchpoints_instance_type_created', table_name='touchpoints')
    op.drop_index('ix_touchpoints_visitor_created', table_name='touchpoints')
    op.drop_table('touchpoints')
    op.drop_index(op.f('ix_visitors_email_hash'), table_name='visitors')
    op.drop_index(op.f('ix_visitors_visitor_id'), table_name='visitors')
    op.drop_table('visitors')
