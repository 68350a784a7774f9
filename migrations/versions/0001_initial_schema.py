"""initial schema: suppression ledger, campaign mappings, audit events

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'suppression_records',
        sa.Column('seq', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('campaign_id', sa.String(length=255), nullable=False),
        sa.Column('zone_id', sa.String(length=255), nullable=False),
        sa.Column('provider', sa.String(length=64), nullable=False),
        sa.Column('observed_at', sa.DateTime(), nullable=False),
        sa.Column('synced', sa.Boolean(), nullable=False),
        sa.Column('verified', sa.Boolean(), nullable=False),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('reverted', sa.Boolean(), nullable=False),
        sa.Column('reverted_at', sa.DateTime(), nullable=True),
        sa.Column('revert_confirmed', sa.Boolean(), nullable=False),
        sa.Column('revert_message', sa.String(length=512), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('schema_version', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('seq'),
    )
    op.create_index('ix_suppression_records_id', 'suppression_records', ['id'], unique=True)
    op.create_index('ix_suppression_records_campaign_id', 'suppression_records', ['campaign_id'])
    op.create_index('ix_suppression_records_zone_id', 'suppression_records', ['zone_id'])
    op.create_index('ix_suppression_records_reverted', 'suppression_records', ['reverted'])
    # At most one non-reverted record per (campaign_id, zone_id).
    op.create_index(
        'uq_active_suppression', 'suppression_records', ['campaign_id', 'zone_id'],
        unique=True,
        sqlite_where=sa.text('reverted = 0'),
        postgresql_where=sa.text('reverted = false'),
    )

    op.create_table(
        'campaign_mappings',
        sa.Column('key', sa.String(length=512), nullable=False),
        sa.Column('provider_id', sa.String(length=64), nullable=True),
        sa.Column('ignored', sa.Boolean(), nullable=False),
        sa.Column('display_name', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('schema_version', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('key'),
    )

    op.create_table(
        'audit_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('ts', sa.DateTime(), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_events_ts', 'audit_events', ['ts'])
    op.create_index('ix_audit_events_category', 'audit_events', ['category'])


def downgrade():
    op.drop_index('ix_audit_events_category', table_name='audit_events')
    op.drop_index('ix_audit_events_ts', table_name='audit_events')
    op.drop_table('audit_events')
    op.drop_table('campaign_mappings')
    op.drop_index('uq_active_suppression', table_name='suppression_records')
    op.drop_index('ix_suppression_records_reverted', table_name='suppression_records')
    op.drop_index('ix_suppression_records_zone_id', table_name='suppression_records')
    op.drop_index('ix_suppression_records_campaign_id', table_name='suppression_records')
    op.drop_index('ix_suppression_records_id', table_name='suppression_records')
    op.drop_table('suppression_records')
