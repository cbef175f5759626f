"""storefront schema

Revision ID: 3c1d9e7a2b40
Revises:
Create Date: 2026-10-12 09:14:03.512207

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c1d9e7a2b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'tenants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('slug', sa.String(length=80), nullable=False),
        sa.Column('business_type', sa.String(length=24), nullable=False, server_default='restaurant'),
        sa.Column('address', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('delivery_radius_km', sa.Float(), nullable=False, server_default='5'),
        sa.Column('minimum_order', sa.Numeric(12, 2), nullable=False, server_default='20'),
        sa.Column('delivery_fee', sa.Numeric(12, 2), nullable=False, server_default='3'),
        sa.Column('operating_hours_json', sa.Text(), nullable=True),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
        sa.Column('business_license', sa.String(length=120), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('payment_account_id', sa.String(length=120), nullable=True),
        sa.Column('payment_details_submitted', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('delivery_radius_km > 0', name='ck_tenants_delivery_radius_positive'),
    )
    op.create_index('ix_tenants_slug', 'tenants', ['slug'], unique=True)
    op.create_index('ix_tenants_business_type', 'tenants', ['business_type'])
    op.create_index('ix_tenants_payment_account_id', 'tenants', ['payment_account_id'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_tenant_id', 'users', ['tenant_id'])

    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('slug', sa.String(length=140), nullable=False),
        sa.Column('business_type', sa.String(length=24), nullable=False, server_default='all'),
        sa.Column('parent_id', sa.Integer(), sa.ForeignKey('categories.id'), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('tenant_id', 'slug', name='uq_categories_tenant_slug'),
    )
    op.create_index('ix_categories_tenant_id', 'categories', ['tenant_id'])
    op.create_index('ix_categories_slug', 'categories', ['slug'])
    op.create_index('ix_categories_parent_id', 'categories', ['parent_id'])

    op.create_table(
        'items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('categories.id'), nullable=True),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('business_type', sa.String(length=24), nullable=False, server_default='food'),
        sa.Column('unit', sa.String(length=16), nullable=False, server_default='piece'),
        sa.Column('inventory', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('track_inventory', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('low_stock_threshold', sa.Integer(), nullable=True),
        sa.Column('prescription_required', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('is_perishable', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('preparation_minutes', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('is_archived', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('is_private', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('inventory >= 0', name='ck_items_inventory_non_negative'),
        sa.CheckConstraint('price > 0', name='ck_items_price_positive'),
    )
    op.create_index('ix_items_tenant_id', 'items', ['tenant_id'])
    op.create_index('ix_items_category_id', 'items', ['category_id'])
    op.create_index('ix_items_business_type', 'items', ['business_type'])
    op.create_index('ix_items_is_archived', 'items', ['is_archived'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('number', sa.String(length=40), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False, server_default='pending'),
        sa.Column('order_type', sa.String(length=16), nullable=False, server_default='delivery'),
        sa.Column('street', sa.String(length=255), nullable=True),
        sa.Column('city', sa.String(length=120), nullable=True),
        sa.Column('postal_code', sa.String(length=32), nullable=True),
        sa.Column('country', sa.String(length=80), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('address_instructions', sa.String(length=500), nullable=True),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('delivery_fee', sa.Numeric(12, 2), nullable=False),
        sa.Column('total', sa.Numeric(12, 2), nullable=False),
        sa.Column('distance_km', sa.Float(), nullable=True),
        sa.Column('estimated_delivery_at', sa.DateTime(), nullable=True),
        sa.Column('special_instructions', sa.Text(), nullable=True),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='card'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='unpaid'),
        sa.Column('payment_session_id', sa.String(length=255), nullable=True),
        sa.Column('payment_account_id', sa.String(length=120), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_orders_number', 'orders', ['number'], unique=True)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_tenant_id', 'orders', ['tenant_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_session_id', 'orders', ['payment_session_id'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])

    op.create_table(
        'order_lines',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('item_id', sa.Integer(), sa.ForeignKey('items.id'), nullable=False),
        sa.Column('item_name', sa.String(length=160), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('special_instructions', sa.String(length=500), nullable=True),
        sa.CheckConstraint('quantity > 0', name='ck_order_lines_quantity_positive'),
    )
    op.create_index('ix_order_lines_order_id', 'order_lines', ['order_id'])
    op.create_index('ix_order_lines_item_id', 'order_lines', ['item_id'])

    op.create_table(
        'order_transitions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('from_status', sa.String(length=24), nullable=False),
        sa.Column('to_status', sa.String(length=24), nullable=False),
        sa.Column('actor_type', sa.String(length=32), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('reason', sa.String(length=240), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_order_transitions_order_id', 'order_transitions', ['order_id'])

    op.create_table(
        'reviews',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('item_id', sa.Integer(), sa.ForeignKey('items.id'), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('rating >= 1 AND rating <= 5', name='ck_reviews_rating_range'),
    )
    op.create_index('ix_reviews_user_id', 'reviews', ['user_id'])
    op.create_index('ix_reviews_item_id', 'reviews', ['item_id'])

    op.create_table(
        'inventory_adjustments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('item_id', sa.Integer(), sa.ForeignKey('items.id'), nullable=False),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('previous_quantity', sa.Integer(), nullable=True),
        sa.Column('new_quantity', sa.Integer(), nullable=True),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=24), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_inventory_adjustments_item_id', 'inventory_adjustments', ['item_id'])
    op.create_index('ix_inventory_adjustments_tenant_id', 'inventory_adjustments', ['tenant_id'])
    op.create_index('ix_inventory_adjustments_order_id', 'inventory_adjustments', ['order_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('channel', sa.String(length=32), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('title', sa.String(length=160), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False),
        sa.Column('provider', sa.String(length=64), nullable=True),
        sa.Column('provider_ref', sa.String(length=120), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('meta', sa.Text(), nullable=True),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_order_id', 'notifications', ['order_id'])

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('event_id', sa.String(length=128), nullable=False, unique=True),
        sa.Column('event_type', sa.String(length=80), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('request_id', sa.String(length=64), nullable=True),
        sa.Column('payload_hash', sa.String(length=64), nullable=True),
        sa.Column('payload_json', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'idempotency_keys',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('scope', sa.String(length=160), nullable=False, server_default=''),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('request_hash', sa.String(length=64), nullable=False),
        sa.Column('response_json', sa.Text(), nullable=True),
        sa.Column('status_code', sa.Integer(), nullable=False, server_default='200'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('scope', 'key', name='uq_idempotency_scope_key'),
    )
    op.create_index('ix_idempotency_keys_key', 'idempotency_keys', ['key'])


def downgrade():
    for table in (
        'idempotency_keys',
        'webhook_events',
        'notifications',
        'inventory_adjustments',
        'reviews',
        'order_transitions',
        'order_lines',
        'orders',
        'items',
        'categories',
        'users',
        'tenants',
    ):
        op.drop_table(table)
