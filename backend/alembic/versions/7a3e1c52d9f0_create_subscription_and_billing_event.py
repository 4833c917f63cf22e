"""create subscription and billing event tables

Revision ID: 7a3e1c52d9f0
Revises:
Create Date: 2026-10-19 09:12:44.318207

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7a3e1c52d9f0'
down_revision = None
branch_labels = None
depends_on = None

LIVE_STATUS_CLAUSE = "status IN ('on_trial', 'active', 'past_due', 'paused')"


def upgrade():
    op.create_table(
        'subscription',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('organization_id', sa.UUID(), nullable=False),
        sa.Column('external_subscription_id', sa.String(length=64), nullable=False),
        sa.Column('external_subscription_item_id', sa.String(length=64), nullable=True),
        sa.Column('external_customer_id', sa.String(length=64), nullable=True),
        sa.Column('external_variant_id', sa.String(length=64), nullable=True),
        sa.Column('billing_type', sa.String(length=32), nullable=False, server_default='legacy'),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('current_seats', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pending_seats', sa.Integer(), nullable=True),
        sa.Column('pending_effective_at', sa.DateTime(), nullable=True),
        sa.Column('period_start', sa.DateTime(), nullable=True),
        sa.Column('renews_at', sa.DateTime(), nullable=True),
        sa.Column('ends_at', sa.DateTime(), nullable=True),
        sa.Column('trial_ends_at', sa.DateTime(), nullable=True),
        sa.Column(
            'per_seat_price', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'
        ),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('last_changed_at', sa.DateTime(), nullable=False),
        sa.Column('provider_event_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('modified_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('current_seats >= 0', name='ck_subscription_current_seats_non_negative'),
        sa.CheckConstraint(
            'pending_seats IS NULL OR pending_seats >= 0',
            name='ck_subscription_pending_seats_non_negative',
        ),
        sa.CheckConstraint(
            '(pending_seats IS NULL) = (pending_effective_at IS NULL)',
            name='ck_subscription_pending_pair',
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_subscription_id'),
    )

    # At most one live subscription per organization
    op.create_index(
        'uq_subscription_live_org',
        'subscription',
        ['organization_id'],
        unique=True,
        postgresql_where=sa.text(LIVE_STATUS_CLAUSE),
    )
    op.create_index('idx_subscription_org', 'subscription', ['organization_id'], unique=False)
    op.create_index(
        'idx_subscription_pending_effective_at',
        'subscription',
        ['pending_effective_at'],
        unique=False,
    )

    op.create_table(
        'billing_event',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('external_event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('organization_id', sa.UUID(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('outcome', sa.String(length=20), nullable=True),
        sa.Column('error_detail', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('modified_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'provider', 'external_event_id', name='uq_billing_event_provider_event'
        ),
    )
    op.create_index('idx_billing_events_org', 'billing_event', ['organization_id'], unique=False)
    op.create_index('idx_billing_events_type', 'billing_event', ['event_type'], unique=False)
    op.create_index(
        'idx_billing_events_unprocessed', 'billing_event', ['processed_at'], unique=False
    )


def downgrade():
    op.drop_index('idx_billing_events_unprocessed', table_name='billing_event')
    op.drop_index('idx_billing_events_type', table_name='billing_event')
    op.drop_index('idx_billing_events_org', table_name='billing_event')
    op.drop_table('billing_event')

    op.drop_index('idx_subscription_pending_effective_at', table_name='subscription')
    op.drop_index('idx_subscription_org', table_name='subscription')
    op.drop_index('uq_subscription_live_org', table_name='subscription')
    op.drop_table('subscription')
