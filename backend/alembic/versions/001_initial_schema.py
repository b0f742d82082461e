"""Initial schema - tenants, invoices, reminders, verification and audit logs

Revision ID: 001
Revises:
Create Date: 2026-09-28

WHAT: Creates every table the engine needs.

WHY: Tenants own plans and quota counters; invoices carry the seal
(verification_code + sealed_hash); payment_reminders carry the dispatch
claim columns; verification_logs and audit_logs are append-only.

HOW: The active-slot uniqueness for reminders is a partial unique index
(status = 'PENDING') so cancelled or sent history never blocks a new
reminder for the same slot.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


AUDIT_ACTIONS = (
    'INVOICE_ISSUED', 'INVOICE_STATUS_CHANGED', 'INVOICE_DUE_DATE_CHANGED',
    'INVOICE_SENT', 'INVOICE_DELETED', 'REMINDERS_CREATED', 'REMINDER_CREATED',
    'REMINDER_CANCELLED', 'REMINDERS_CANCELLED', 'REMINDER_SENT_MANUALLY',
    'QUOTA_RESET',
)


def _enum(name: str, *values: str) -> sa.Enum:
    return sa.Enum(*values, name=name, create_type=False)


def upgrade() -> None:
    """
    Create enum types, tables and indexes.

    WHY: PostgreSQL ENUMs provide type safety at the database level.
    """
    op.execute("CREATE TYPE plantier AS ENUM ('FREE', 'BASIC', 'PRO', 'PREMIUM', 'LIFETIME')")
    op.execute(
        "CREATE TYPE paymentstatus AS ENUM ('DRAFT', 'PENDING', 'PAID', 'OVERDUE', 'CANCELLED')"
    )
    op.execute("CREATE TYPE deliverystatus AS ENUM ('DRAFT', 'SENT', 'VIEWED', 'DOWNLOADED')")
    op.execute("CREATE TYPE remindertype AS ENUM ('BEFORE_DUE', 'ON_DUE', 'AFTER_DUE', 'CUSTOM')")
    op.execute("CREATE TYPE reminderchannel AS ENUM ('EMAIL', 'WHATSAPP', 'SMS')")
    op.execute(
        "CREATE TYPE reminderstatus AS ENUM ('PENDING', 'SENT', 'FAILED', 'CANCELLED', 'SKIPPED')"
    )
    op.execute("CREATE TYPE verificationoutcome AS ENUM ('VALID', 'TAMPERED', 'NOT_FOUND')")
    op.execute(
        "CREATE TYPE auditaction AS ENUM ("
        + ", ".join(f"'{action}'" for action in AUDIT_ACTIONS)
        + ")"
    )

    timestamps = lambda: [  # noqa: E731
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    ]

    # Tenants
    op.create_table(
        'tenants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column(
            'plan',
            _enum('plantier', 'FREE', 'BASIC', 'PRO', 'PREMIUM', 'LIFETIME'),
            nullable=False,
            server_default='FREE',
        ),
        sa.Column('settings', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        *timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_tenants_id', 'tenants', ['id'])
    op.create_index('ix_tenants_email', 'tenants', ['email'])

    op.create_table(
        'quota_counters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('invoices_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pdf_api_usage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ocr_usage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_reset_date', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        *timestamps(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_quota_counters_id', 'quota_counters', ['id'])
    op.create_index('ix_quota_counters_tenant_id', 'quota_counters', ['tenant_id'], unique=True)

    op.create_table(
        'team_members',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('role', sa.String(length=50), nullable=False, server_default='MEMBER'),
        *timestamps(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_team_members_id', 'team_members', ['id'])
    op.create_index('ix_team_members_tenant_id', 'team_members', ['tenant_id'])

    # Invoices
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=50), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('buyer_name', sa.String(length=255), nullable=False),
        sa.Column('buyer_email', sa.String(length=255), nullable=True),
        sa.Column('buyer_phone', sa.String(length=50), nullable=True),
        sa.Column('buyer_address', sa.Text(), nullable=True),
        sa.Column('buyer_tax_id', sa.String(length=100), nullable=True),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('terms', sa.Text(), nullable=True),
        sa.Column('issue_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column(
            'payment_status',
            _enum('paymentstatus', 'DRAFT', 'PENDING', 'PAID', 'OVERDUE', 'CANCELLED'),
            nullable=False,
            server_default='PENDING',
        ),
        sa.Column(
            'delivery_status',
            _enum('deliverystatus', 'DRAFT', 'SENT', 'VIEWED', 'DOWNLOADED'),
            nullable=False,
            server_default='DRAFT',
        ),
        sa.Column('verification_code', sa.String(length=32), nullable=True),
        sa.Column('sealed_hash', sa.String(length=64), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'invoice_number', name='uq_invoices_tenant_number'),
    )
    op.create_index('ix_invoices_id', 'invoices', ['id'])
    op.create_index('ix_invoices_tenant_id', 'invoices', ['tenant_id'])
    op.create_index('ix_invoices_invoice_number', 'invoices', ['invoice_number'])
    op.create_index('ix_invoices_payment_status', 'invoices', ['payment_status'])
    op.create_index('ix_invoices_verification_code', 'invoices', ['verification_code'], unique=True)

    op.create_table(
        'invoice_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False, server_default='1'),
        sa.Column('unit', sa.String(length=20), nullable=True),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('discount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_invoice_items_id', 'invoice_items', ['id'])
    op.create_index('ix_invoice_items_invoice_id', 'invoice_items', ['invoice_id'])

    # Payment reminders
    op.create_table(
        'payment_reminders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column(
            'type',
            _enum('remindertype', 'BEFORE_DUE', 'ON_DUE', 'AFTER_DUE', 'CUSTOM'),
            nullable=False,
        ),
        sa.Column('days_offset', sa.Integer(), nullable=False, server_default='0'),
        sa.Column(
            'channel',
            _enum('reminderchannel', 'EMAIL', 'WHATSAPP', 'SMS'),
            nullable=False,
            server_default='EMAIL',
        ),
        sa.Column('scheduled_for', sa.DateTime(), nullable=False),
        sa.Column(
            'status',
            _enum('reminderstatus', 'PENDING', 'SENT', 'FAILED', 'CANCELLED', 'SKIPPED'),
            nullable=False,
            server_default='PENDING',
        ),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('provider_message_id', sa.String(length=255), nullable=True),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('claim_token', sa.String(length=64), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_payment_reminders_id', 'payment_reminders', ['id'])
    op.create_index('ix_payment_reminders_tenant_id', 'payment_reminders', ['tenant_id'])
    op.create_index('ix_payment_reminders_invoice_id', 'payment_reminders', ['invoice_id'])
    op.create_index('ix_payment_reminders_scheduled_for', 'payment_reminders', ['scheduled_for'])
    op.create_index('ix_payment_reminders_status', 'payment_reminders', ['status'])
    op.create_index('ix_payment_reminders_due', 'payment_reminders', ['status', 'scheduled_for'])
    op.create_index(
        'uq_payment_reminders_active_slot',
        'payment_reminders',
        ['invoice_id', 'type', 'days_offset', 'scheduled_for'],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
    )

    # Verification logs
    op.create_table(
        'verification_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('verification_code', sa.String(length=32), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column(
            'outcome',
            _enum('verificationoutcome', 'VALID', 'TAMPERED', 'NOT_FOUND'),
            nullable=False,
        ),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_verification_logs_id', 'verification_logs', ['id'])
    op.create_index('ix_verification_logs_verification_code', 'verification_logs', ['verification_code'])
    op.create_index('ix_verification_logs_invoice_id', 'verification_logs', ['invoice_id'])

    # Audit logs
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('action', _enum('auditaction', *AUDIT_ACTIONS), nullable=False),
        sa.Column('resource_type', sa.String(length=100), nullable=False),
        sa.Column('resource_id', sa.Integer(), nullable=True),
        sa.Column('tenant_id', sa.Integer(), nullable=True),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.Column('extra_data', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_logs_id', 'audit_logs', ['id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_resource_type', 'audit_logs', ['resource_type'])
    op.create_index('ix_audit_logs_resource_id', 'audit_logs', ['resource_id'])
    op.create_index('ix_audit_logs_tenant_id', 'audit_logs', ['tenant_id'])
    op.create_index('ix_audit_logs_ip_address', 'audit_logs', ['ip_address'])


def downgrade() -> None:
    """Drop all tables and enum types in reverse dependency order."""
    op.drop_table('audit_logs')
    op.drop_table('verification_logs')
    op.drop_index('uq_payment_reminders_active_slot', table_name='payment_reminders')
    op.drop_table('payment_reminders')
    op.drop_table('invoice_items')
    op.drop_table('invoices')
    op.drop_table('team_members')
    op.drop_table('quota_counters')
    op.drop_table('tenants')

    for type_name in (
        'auditaction',
        'verificationoutcome',
        'reminderstatus',
        'reminderchannel',
        'remindertype',
        'deliverystatus',
        'paymentstatus',
        'plantier',
    ):
        op.execute(f"DROP TYPE {type_name}")
