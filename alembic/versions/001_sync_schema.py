"""Initial sync schema

Revision ID: 001_sync_schema
Revises:
Create Date: 2026-03-01

Adds:
- properties with the PMS listing mapping
- reservations with the outbound idempotency marker
- calendar_days, unique per (property_id, date)
- sync_audit_events (append-only)
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_sync_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'properties',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('max_guests', sa.Integer(), nullable=True),
        sa.Column('pms_listing_id', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now()),
    )
    op.create_index('ix_properties_organization_id', 'properties', ['organization_id'])
    op.create_index('ix_property_pms_listing', 'properties', ['pms_listing_id'])

    op.create_table(
        'reservations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(36), nullable=False),
        sa.Column('property_id', sa.String(36), sa.ForeignKey('properties.id', ondelete='CASCADE'), nullable=False),
        sa.Column('confirmation_code', sa.String(32), nullable=True),
        sa.Column('check_in', sa.Date(), nullable=False),
        sa.Column('check_out', sa.Date(), nullable=False),
        sa.Column('adults', sa.Integer(), default=1),
        sa.Column('children', sa.Integer(), default=0),
        sa.Column('guest_first_name', sa.String(100), nullable=True),
        sa.Column('guest_last_name', sa.String(100), nullable=True),
        sa.Column('guest_email', sa.String(255), nullable=True),
        sa.Column('guest_phone', sa.String(30), nullable=True),
        sa.Column('guest_notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), default='pending'),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('external_reservation_id', sa.String(255), nullable=True),
        sa.Column('external_synced_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now()),
    )
    op.create_index('ix_reservations_organization_id', 'reservations', ['organization_id'])
    op.create_index('ix_reservation_external', 'reservations', ['external_reservation_id'])
    op.create_index('ix_reservation_property', 'reservations', ['property_id'])

    op.create_table(
        'calendar_days',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(36), nullable=True),
        sa.Column('property_id', sa.String(36), sa.ForeignKey('properties.id', ondelete='CASCADE'), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='available'),
        sa.Column('reason', sa.String(255), nullable=True),
        sa.Column('reservation_id', sa.String(36), sa.ForeignKey('reservations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now()),
        sa.UniqueConstraint('property_id', 'date', name='uq_calendar_property_date'),
    )
    op.create_index('ix_calendar_property_status', 'calendar_days', ['property_id', 'status', 'date'])
    op.create_index('ix_calendar_reservation', 'calendar_days', ['reservation_id'])

    op.create_table(
        'sync_audit_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(36), nullable=True),
        sa.Column('property_id', sa.String(36), nullable=True),
        sa.Column('reservation_id', sa.String(36), nullable=True),
        sa.Column('direction', sa.String(20), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('days_processed', sa.Integer(), default=0),
        sa.Column('days_blocked', sa.Integer(), default=0),
        sa.Column('days_freed', sa.Integer(), default=0),
        sa.Column('errors', sa.JSON(), nullable=True),
        sa.Column('external_reservation_id', sa.String(255), nullable=True),
        sa.Column('error_code', sa.String(100), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_sync_audit_property_created', 'sync_audit_events', ['property_id', 'created_at'])
    op.create_index('ix_sync_audit_org_created', 'sync_audit_events', ['organization_id', 'created_at'])
    op.create_index('ix_sync_audit_direction', 'sync_audit_events', ['direction'])


def downgrade() -> None:
    op.drop_index('ix_sync_audit_direction', 'sync_audit_events')
    op.drop_index('ix_sync_audit_org_created', 'sync_audit_events')
    op.drop_index('ix_sync_audit_property_created', 'sync_audit_events')
    op.drop_table('sync_audit_events')

    op.drop_index('ix_calendar_reservation', 'calendar_days')
    op.drop_index('ix_calendar_property_status', 'calendar_days')
    op.drop_table('calendar_days')

    op.drop_index('ix_reservation_property', 'reservations')
    op.drop_index('ix_reservation_external', 'reservations')
    op.drop_index('ix_reservations_organization_id', 'reservations')
    op.drop_table('reservations')

    op.drop_index('ix_property_pms_listing', 'properties')
    op.drop_index('ix_properties_organization_id', 'properties')
    op.drop_table('properties')
