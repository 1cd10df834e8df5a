"""Initial QuickBooks connector schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create quickbooks_connections table
    op.create_table(
        'quickbooks_connections',
        sa.Column('tenant_id', sa.Text(), nullable=False),
        sa.Column('realm_id', sa.Text(), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('access_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refresh_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('scope', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False, server_default='pending'),
        sa.Column('last_refresh_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('tenant_id'),
        sa.CheckConstraint(
            "status IN ('connected', 'needs_reauth', 'error', 'disconnected', 'pending')",
            name='ck_quickbooks_connections_status'
        )
    )
    op.create_index(
        'ix_quickbooks_connections_status_expiry',
        'quickbooks_connections',
        ['status', 'access_expires_at']
    )

    # Create financial_report_periods table
    op.create_table(
        'financial_report_periods',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.Text(), nullable=False),
        sa.Column('period_type', sa.Text(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('label', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'tenant_id', 'period_type', 'start_date', 'end_date',
            name='uq_financial_report_periods_range'
        )
    )
    op.create_index('ix_financial_report_periods_tenant', 'financial_report_periods', ['tenant_id'])

    # Create financial_reports table
    op.create_table(
        'financial_reports',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.Text(), nullable=False),
        sa.Column('report_type', sa.Text(), nullable=False),
        sa.Column('period_id', sa.Integer(), nullable=False),
        sa.Column('source', sa.Text(), nullable=False, server_default='quickbooks'),
        sa.Column('raw_json', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(
            ['period_id'], ['financial_report_periods.id'], ondelete='CASCADE'
        ),
        sa.UniqueConstraint(
            'tenant_id', 'report_type', 'period_id', name='uq_financial_reports_type_period'
        )
    )
    op.create_index('ix_financial_reports_period', 'financial_reports', ['period_id'])

    # Create financial_metrics table
    op.create_table(
        'financial_metrics',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.Text(), nullable=False),
        sa.Column('period_id', sa.Integer(), nullable=False),
        sa.Column('metric_key', sa.Text(), nullable=False),
        sa.Column('value', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('unit', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(
            ['period_id'], ['financial_report_periods.id'], ondelete='CASCADE'
        ),
        sa.UniqueConstraint(
            'tenant_id', 'period_id', 'metric_key', name='uq_financial_metrics_period_key'
        )
    )

    # Create sync_state table
    op.create_table(
        'sync_state',
        sa.Column('tenant_id', sa.Text(), nullable=False),
        sa.Column('domain', sa.Text(), nullable=False),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.Text(), nullable=True, server_default='success'),
        sa.Column('error_count', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('sync_metadata', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('tenant_id', 'domain')
    )
    op.create_index('ix_sync_state_status', 'sync_state', ['status'])


def downgrade() -> None:
    op.drop_index('ix_sync_state_status', table_name='sync_state')
    op.drop_table('sync_state')
    op.drop_table('financial_metrics')
    op.drop_index('ix_financial_reports_period', table_name='financial_reports')
    op.drop_table('financial_reports')
    op.drop_index('ix_financial_report_periods_tenant', table_name='financial_report_periods')
    op.drop_table('financial_report_periods')
    op.drop_index('ix_quickbooks_connections_status_expiry', table_name='quickbooks_connections')
    op.drop_table('quickbooks_connections')
