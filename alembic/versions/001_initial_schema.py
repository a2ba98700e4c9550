"""Initial schema - accounts, listing links, sync history and restock config

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'marketplace_accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('ml_user_id', sa.BigInteger(), nullable=False),
        sa.Column('nickname', sa.String(), nullable=True),
        sa.Column('site_id', sa.String(), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_marketplace_accounts_id', 'marketplace_accounts', ['id'])
    op.create_index('ix_marketplace_accounts_tenant_id', 'marketplace_accounts', ['tenant_id'])
    op.create_index('ix_marketplace_accounts_ml_user_id', 'marketplace_accounts', ['ml_user_id'])
    op.create_index('ix_marketplace_accounts_is_active', 'marketplace_accounts', ['is_active'])

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('sku', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('cost_cents', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
    )
    op.create_index('ix_products_id', 'products', ['id'])
    op.create_index('ix_products_tenant_id', 'products', ['tenant_id'])
    op.create_index('ix_products_sku', 'products', ['sku'])

    op.create_table(
        'stock_levels',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('warehouse_id', sa.String(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('product_id', 'warehouse_id', name='uq_stock_levels_product_warehouse'),
    )
    op.create_index('ix_stock_levels_product_id', 'stock_levels', ['product_id'])

    op.create_table(
        'listing_links',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('marketplace_accounts.id'), nullable=False),
        sa.Column('item_id', sa.String(), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=True),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=True),
        sa.Column('original_price_cents', sa.Integer(), nullable=True),
        sa.Column('available_quantity', sa.Integer(), nullable=True),
        sa.Column('sold_quantity', sa.Integer(), nullable=True),
        sa.Column('sold_last_90d', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('remote_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipping_mode', sa.String(), nullable=True),
        sa.Column('logistic_type', sa.String(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sync_status', sa.String(), nullable=True),
        sa.Column('sync_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('account_id', 'item_id', name='uq_listing_links_account_item'),
    )
    op.create_index('ix_listing_links_id', 'listing_links', ['id'])
    op.create_index('ix_listing_links_account_id', 'listing_links', ['account_id'])
    op.create_index('ix_listing_links_item_id', 'listing_links', ['item_id'])
    op.create_index('ix_listing_links_product_id', 'listing_links', ['product_id'])
    op.create_index('ix_listing_links_status', 'listing_links', ['status'])
    op.create_index('ix_listing_links_last_synced_at', 'listing_links', ['last_synced_at'])
    op.create_index('ix_listing_links_sync_status', 'listing_links', ['sync_status'])

    op.create_table(
        'sync_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('marketplace_accounts.id'), nullable=False),
        sa.Column('strategy', sa.String(), nullable=False),
        sa.Column('processed', sa.Integer(), nullable=True),
        sa.Column('updated', sa.Integer(), nullable=True),
        sa.Column('created', sa.Integer(), nullable=True),
        sa.Column('errored', sa.Integer(), nullable=True),
        sa.Column('errors', sa.JSON(), nullable=True),
        sa.Column('skipped', sa.JSON(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('fatal_error', sa.Text(), nullable=True),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_sync_history_id', 'sync_history', ['id'])
    op.create_index('ix_sync_history_account_id', 'sync_history', ['account_id'])
    op.create_index('ix_sync_history_strategy', 'sync_history', ['strategy'])
    op.create_index('ix_sync_history_started_at', 'sync_history', ['started_at'])

    op.create_table(
        'replenishment_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=True),
        sa.Column('avg_delivery_days', sa.Integer(), nullable=True),
        sa.Column('full_release_days', sa.Integer(), nullable=True),
        sa.Column('safety_stock', sa.Integer(), nullable=True),
        sa.Column('min_coverage_days', sa.Integer(), nullable=True),
        sa.Column('low_stock_floor', sa.Integer(), nullable=True),
        sa.Column('divergence_ratio', sa.Float(), nullable=True),
        sa.Column('critical_band', sa.Float(), nullable=True),
        sa.Column('attention_band', sa.Float(), nullable=True),
    )
    op.create_index('ix_replenishment_configs_tenant_id', 'replenishment_configs', ['tenant_id'])
    op.create_index('ix_replenishment_configs_product_id', 'replenishment_configs', ['product_id'])

    op.create_table(
        'dismissed_alerts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('marketplace_accounts.id'), nullable=False),
        sa.Column('alert_id', sa.String(), nullable=False),
        sa.Column('dismissed_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('account_id', 'alert_id', name='uq_dismissed_alerts_account_alert'),
    )
    op.create_index('ix_dismissed_alerts_account_id', 'dismissed_alerts', ['account_id'])


def downgrade() -> None:
    op.drop_table('dismissed_alerts')
    op.drop_table('replenishment_configs')
    op.drop_table('sync_history')
    op.drop_table('listing_links')
    op.drop_table('stock_levels')
    op.drop_table('products')
    op.drop_table('marketplace_accounts')
