"""initial subscriber sync schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade():
    op.create_table(
        'esp_connections',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('esp_type', sa.String(50), nullable=False),
        sa.Column('auth_method', sa.String(20), nullable=False),
        sa.Column('encrypted_api_key', sa.Text(), nullable=True),
        sa.Column('encrypted_access_token', sa.Text(), nullable=True),
        sa.Column('encrypted_refresh_token', sa.Text(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('publication_id', sa.String(255), nullable=True),
        sa.Column('publication_ids', JSONType, nullable=True),
        sa.Column('list_names', JSONType, nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('sync_status', sa.String(20), nullable=False),
        sa.Column('last_validated_at', sa.DateTime(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_esp_connections_user_id'), 'esp_connections', ['user_id'], unique=False)
    op.create_index(op.f('ix_esp_connections_token_expires_at'), 'esp_connections', ['token_expires_at'], unique=False)
    op.create_index(op.f('ix_esp_connections_status'), 'esp_connections', ['status'], unique=False)
    op.create_index('idx_esp_connections_user_status', 'esp_connections', ['user_id', 'status'], unique=False)

    op.create_table(
        'subscribers',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('esp_connection_id', sa.String(36), nullable=False),
        sa.Column('external_id', sa.String(255), nullable=False),
        sa.Column('encrypted_email', sa.Text(), nullable=False),
        sa.Column('masked_email', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('first_name', sa.String(255), nullable=True),
        sa.Column('last_name', sa.String(255), nullable=True),
        sa.Column('subscribed_at', sa.DateTime(), nullable=True),
        sa.Column('unsubscribed_at', sa.DateTime(), nullable=True),
        sa.Column('publication_id', sa.String(255), nullable=True),
        sa.Column('metadata', JSONType, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['esp_connection_id'], ['esp_connections.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id', 'esp_connection_id', name='uq_subscribers_external_connection')
    )
    op.create_index(op.f('ix_subscribers_esp_connection_id'), 'subscribers', ['esp_connection_id'], unique=False)
    op.create_index(op.f('ix_subscribers_status'), 'subscribers', ['status'], unique=False)
    op.create_index('idx_subscribers_connection_publication', 'subscribers', ['esp_connection_id', 'publication_id'], unique=False)

    op.create_table(
        'sync_history',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('esp_connection_id', sa.String(36), nullable=False),
        sa.Column('publication_id', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('subscriber_count', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['esp_connection_id'], ['esp_connections.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_sync_history_esp_connection_id'), 'sync_history', ['esp_connection_id'], unique=False)
    op.create_index('idx_sync_history_connection_started', 'sync_history', ['esp_connection_id', 'started_at'], unique=False)
    op.create_index('idx_sync_history_connection_status', 'sync_history', ['esp_connection_id', 'status'], unique=False)

    op.create_table(
        'billing_subscriptions',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('stripe_customer_id', sa.String(255), nullable=False),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('stripe_price_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_item_id', sa.String(255), nullable=True),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('current_period_start', sa.DateTime(), nullable=True),
        sa.Column('current_period_end', sa.DateTime(), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('canceled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_billing_subscriptions_user_id'), 'billing_subscriptions', ['user_id'], unique=True)
    op.create_index(op.f('ix_billing_subscriptions_stripe_customer_id'), 'billing_subscriptions', ['stripe_customer_id'], unique=False)
    op.create_index(op.f('ix_billing_subscriptions_stripe_subscription_id'), 'billing_subscriptions', ['stripe_subscription_id'], unique=True)
    op.create_index(op.f('ix_billing_subscriptions_status'), 'billing_subscriptions', ['status'], unique=False)

    op.create_table(
        'billing_usage',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('billing_period_start', sa.DateTime(), nullable=False),
        sa.Column('billing_period_end', sa.DateTime(), nullable=False),
        sa.Column('max_subscriber_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('calculated_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('stripe_invoice_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'billing_period_start', name='uq_billing_usage_user_period')
    )
    op.create_index(op.f('ix_billing_usage_user_id'), 'billing_usage', ['user_id'], unique=False)
    op.create_index(op.f('ix_billing_usage_stripe_invoice_id'), 'billing_usage', ['stripe_invoice_id'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_billing_usage_stripe_invoice_id'), table_name='billing_usage')
    op.drop_index(op.f('ix_billing_usage_user_id'), table_name='billing_usage')
    op.drop_table('billing_usage')

    op.drop_index(op.f('ix_billing_subscriptions_status'), table_name='billing_subscriptions')
    op.drop_index(op.f('ix_billing_subscriptions_stripe_subscription_id'), table_name='billing_subscriptions')
    op.drop_index(op.f('ix_billing_subscriptions_stripe_customer_id'), table_name='billing_subscriptions')
    op.drop_index(op.f('ix_billing_subscriptions_user_id'), table_name='billing_subscriptions')
    op.drop_table('billing_subscriptions')

    op.drop_index('idx_sync_history_connection_status', table_name='sync_history')
    op.drop_index('idx_sync_history_connection_started', table_name='sync_history')
    op.drop_index(op.f('ix_sync_history_esp_connection_id'), table_name='sync_history')
    op.drop_table('sync_history')

    op.drop_index('idx_subscribers_connection_publication', table_name='subscribers')
    op.drop_index(op.f('ix_subscribers_status'), table_name='subscribers')
    op.drop_index(op.f('ix_subscribers_esp_connection_id'), table_name='subscribers')
    op.drop_table('subscribers')

    op.drop_index('idx_esp_connections_user_status', table_name='esp_connections')
    op.drop_index(op.f('ix_esp_connections_status'), table_name='esp_connections')
    op.drop_index(op.f('ix_esp_connections_token_expires_at'), table_name='esp_connections')
    op.drop_index(op.f('ix_esp_connections_user_id'), table_name='esp_connections')
    op.drop_table('esp_connections')
