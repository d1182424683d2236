"""
Alembic migration: Create lifecycle tables.

Creates users, catalog tables (products, service listings), orders with
their line items, service bookings with the partial unique index that keeps
one active booking per slot, support tickets and the refund outbox.

Revision ID: 001
Revises:
Create Date: 2025-05-12 09:14:03.518204
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')

ACTIVE_SLOT_PREDICATE = sa.text(
    "status IN ('confirmed', 'in_progress', 'pending_confirmation')"
)


def _enum(name: str, *values: str) -> sa.Enum:
    """String enum stored as VARCHAR with a CHECK constraint."""
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True, length=32)


def _id_column() -> sa.Column:
    return sa.Column('id', sa.Uuid(), primary_key=True, nullable=False)


def _timestamp_columns() -> list:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def _lifecycle_columns() -> list:
    return [
        sa.Column(
            'last_activity_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column('version', sa.Integer(), nullable=False),
    ]


def upgrade() -> None:
    """
    Upgrade database schema with the lifecycle tables.

    Order matters: catalog and order tables reference users, bookings
    reference listings, tickets reference orders and listings.
    """
    op.create_table(
        'users',
        _id_column(),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('full_name', sa.String(255), nullable=False, server_default=''),
        sa.Column(
            'role',
            _enum('user_role', 'admin', 'customer_service_rep', 'service_provider', 'farmer'),
            nullable=False,
        ),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamp_columns(),
    )
    op.create_index('ix_users_role_active', 'users', ['role', 'is_active'])

    op.create_table(
        'products',
        _id_column(),
        sa.Column(
            'seller_id',
            sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column(
            'status',
            _enum('product_status', 'available', 'sold_out', 'reserved', 'discontinued'),
            nullable=False,
        ),
        sa.Column('price_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('price_unit', sa.String(20), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('quantity_available', sa.Integer(), nullable=False),
        *_timestamp_columns(),
        sa.CheckConstraint('quantity_available >= 0', name='ck_products_stock_non_negative'),
        sa.CheckConstraint('price_amount >= 0', name='ck_products_price_non_negative'),
    )
    op.create_index('ix_products_seller_id', 'products', ['seller_id'])
    op.create_index('ix_products_seller_status', 'products', ['seller_id', 'status'])

    op.create_table(
        'service_listings',
        _id_column(),
        sa.Column(
            'provider_id',
            sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('service_type', sa.String(50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column(
            'pricing_type',
            _enum('pricing_type', 'fixed', 'hourly', 'daily', 'per_acre', 'per_unit'),
            nullable=False,
        ),
        sa.Column('price_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamp_columns(),
        sa.CheckConstraint('price_amount >= 0', name='ck_service_listings_price_non_negative'),
    )
    op.create_index('ix_service_listings_provider_id', 'service_listings', ['provider_id'])

    op.create_table(
        'orders',
        _id_column(),
        sa.Column('order_number', sa.String(50), nullable=False, unique=True),
        sa.Column(
            'buyer_id',
            sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column(
            'seller_id',
            sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column(
            'status',
            _enum(
                'order_status',
                'pending',
                'confirmed',
                'processing',
                'ready_for_pickup',
                'shipped',
                'delivered',
                'cancelled',
                'refunded',
            ),
            nullable=False,
        ),
        sa.Column(
            'payment_status',
            _enum('order_payment_status', 'pending', 'paid', 'partial', 'refunded', 'failed'),
            nullable=False,
        ),
        sa.Column(
            'payment_method',
            _enum(
                'order_payment_method',
                'cash_on_delivery',
                'bank_transfer',
                'mobile_payment',
                'credit_card',
            ),
            nullable=False,
        ),
        sa.Column(
            'delivery_method',
            _enum('delivery_method', 'pickup', 'local_delivery', 'shipping'),
            nullable=False,
        ),
        sa.Column('shipping_address', JSON_TYPE, nullable=True),
        sa.Column('buyer_notes', sa.Text(), nullable=True),
        sa.Column('seller_notes', sa.Text(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('cancellation_reason', sa.String(500), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('tracking_updates', JSON_TYPE, nullable=False),
        *_timestamp_columns(),
        *_lifecycle_columns(),
        sa.CheckConstraint('total_amount >= 0', name='ck_orders_total_non_negative'),
    )
    op.create_index('ix_orders_buyer_id', 'orders', ['buyer_id'])
    op.create_index('ix_orders_seller_id', 'orders', ['seller_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_buyer_status', 'orders', ['buyer_id', 'status'])
    op.create_index('ix_orders_seller_status', 'orders', ['seller_id', 'status'])

    op.create_table(
        'order_items',
        _id_column(),
        sa.Column(
            'order_id',
            sa.Uuid(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'product_id',
            sa.Uuid(),
            sa.ForeignKey('products.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('seller_id', sa.Uuid(), nullable=False),
        sa.Column('product_name', sa.String(200), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('unit', sa.String(20), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        *_timestamp_columns(),
        sa.CheckConstraint('quantity >= 1', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('unit_price >= 0', name='ck_order_items_price_non_negative'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    op.create_table(
        'service_bookings',
        _id_column(),
        sa.Column('booking_number', sa.String(50), nullable=False, unique=True),
        sa.Column(
            'customer_id',
            sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column(
            'provider_id',
            sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column(
            'service_listing_id',
            sa.Uuid(),
            sa.ForeignKey('service_listings.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('service_title', sa.String(200), nullable=False),
        sa.Column('service_type', sa.String(50), nullable=False),
        sa.Column('booking_date', sa.Date(), nullable=False),
        sa.Column('booking_time', sa.String(5), nullable=False),
        sa.Column('field_size', sa.Numeric(10, 2), nullable=False),
        sa.Column(
            'pricing_type',
            _enum('pricing_type', 'fixed', 'hourly', 'daily', 'per_acre', 'per_unit'),
            nullable=False,
        ),
        sa.Column('base_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('final_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column(
            'payment_status',
            _enum('booking_payment_status', 'pending', 'paid', 'partial', 'refunded', 'failed'),
            nullable=False,
        ),
        sa.Column(
            'payment_method',
            _enum(
                'booking_payment_method',
                'cash',
                'bank_transfer',
                'mobile_payment',
                'credit_card',
                'demo_card',
            ),
            nullable=False,
        ),
        sa.Column('transaction_id', sa.String(64), nullable=False, unique=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('card_last4', sa.String(4), nullable=True),
        sa.Column(
            'status',
            _enum(
                'booking_status',
                'pending_confirmation',
                'confirmed',
                'in_progress',
                'completed',
                'cancelled',
                'refunded',
            ),
            nullable=False,
        ),
        sa.Column('customer_notes', sa.Text(), nullable=True),
        sa.Column('provider_notes', sa.Text(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.String(500), nullable=True),
        sa.Column('cancelled_by', sa.Uuid(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refund_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column(
            'refund_status',
            _enum('refund_status', 'none', 'pending', 'processed', 'failed'),
            nullable=False,
        ),
        sa.Column('timeline', JSON_TYPE, nullable=False),
        *_timestamp_columns(),
        *_lifecycle_columns(),
        sa.CheckConstraint('field_size > 0', name='ck_service_bookings_field_size_positive'),
        sa.CheckConstraint('final_amount >= 0', name='ck_service_bookings_amount_non_negative'),
    )
    op.create_index('ix_service_bookings_customer_id', 'service_bookings', ['customer_id'])
    op.create_index('ix_service_bookings_provider_id', 'service_bookings', ['provider_id'])
    op.create_index('ix_service_bookings_status', 'service_bookings', ['status'])
    op.create_index(
        'ix_service_bookings_listing_date',
        'service_bookings',
        ['service_listing_id', 'booking_date'],
    )
    # At most one active booking per (listing, date, time)
    op.create_index(
        'uq_service_bookings_active_slot',
        'service_bookings',
        ['service_listing_id', 'booking_date', 'booking_time'],
        unique=True,
        postgresql_where=ACTIVE_SLOT_PREDICATE,
        sqlite_where=ACTIVE_SLOT_PREDICATE,
    )

    op.create_table(
        'tickets',
        _id_column(),
        sa.Column('ticket_number', sa.String(50), nullable=False, unique=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column(
            'issue_type',
            _enum(
                'issue_type',
                'technical_issue',
                'payment_problem',
                'order_inquiry',
                'service_complaint',
                'account_issue',
                'product_question',
                'billing_inquiry',
                'feature_request',
                'other',
            ),
            nullable=False,
        ),
        sa.Column(
            'priority',
            _enum('ticket_priority', 'low', 'medium', 'high', 'urgent'),
            nullable=False,
        ),
        sa.Column(
            'status',
            _enum(
                'ticket_status',
                'open',
                'assigned',
                'in_progress',
                'waiting_customer',
                'resolved',
                'closed',
            ),
            nullable=False,
        ),
        sa.Column(
            'submitted_by',
            sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column(
            'assigned_to',
            sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column(
            'related_order_id',
            sa.Uuid(),
            sa.ForeignKey('orders.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column(
            'related_listing_id',
            sa.Uuid(),
            sa.ForeignKey('service_listings.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('tags', JSON_TYPE, nullable=False),
        sa.Column('comments', JSON_TYPE, nullable=False),
        sa.Column('history', JSON_TYPE, nullable=False),
        sa.Column('resolution', sa.Text(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('satisfaction_rating', sa.Integer(), nullable=True),
        sa.Column('satisfaction_feedback', sa.Text(), nullable=True),
        sa.Column('satisfaction_submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('escalated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('escalation_reason', sa.String(500), nullable=True),
        *_timestamp_columns(),
        *_lifecycle_columns(),
        sa.CheckConstraint(
            'satisfaction_rating IS NULL OR satisfaction_rating BETWEEN 1 AND 5',
            name='ck_tickets_satisfaction_rating_range',
        ),
    )
    op.create_index('ix_tickets_priority', 'tickets', ['priority'])
    op.create_index('ix_tickets_status', 'tickets', ['status'])
    op.create_index('ix_tickets_submitted_by', 'tickets', ['submitted_by'])
    op.create_index('ix_tickets_assigned_to', 'tickets', ['assigned_to'])
    op.create_index('ix_tickets_assignee_status', 'tickets', ['assigned_to', 'status'])

    op.create_table(
        'refund_requests',
        _id_column(),
        sa.Column(
            'entity_kind',
            _enum('entity_kind', 'order', 'service_booking', 'ticket'),
            nullable=False,
        ),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('transaction_reference', sa.String(64), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column(
            'status',
            _enum('refund_request_status', 'none', 'pending', 'processed', 'failed'),
            nullable=False,
        ),
        sa.Column('reason', sa.String(500), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamp_columns(),
        sa.UniqueConstraint('entity_kind', 'entity_id', name='uq_refund_requests_entity'),
    )
    op.create_index('ix_refund_requests_status', 'refund_requests', ['status'])


def downgrade() -> None:
    """Drop the lifecycle tables in reverse dependency order."""
    op.drop_index('ix_refund_requests_status', table_name='refund_requests')
    op.drop_table('refund_requests')

    for index_name in (
        'ix_tickets_assignee_status',
        'ix_tickets_assigned_to',
        'ix_tickets_submitted_by',
        'ix_tickets_status',
        'ix_tickets_priority',
    ):
        op.drop_index(index_name, table_name='tickets')
    op.drop_table('tickets')

    for index_name in (
        'uq_service_bookings_active_slot',
        'ix_service_bookings_listing_date',
        'ix_service_bookings_status',
        'ix_service_bookings_provider_id',
        'ix_service_bookings_customer_id',
    ):
        op.drop_index(index_name, table_name='service_bookings')
    op.drop_table('service_bookings')

    op.drop_index('ix_order_items_product_id', table_name='order_items')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')

    for index_name in (
        'ix_orders_seller_status',
        'ix_orders_buyer_status',
        'ix_orders_status',
        'ix_orders_seller_id',
        'ix_orders_buyer_id',
    ):
        op.drop_index(index_name, table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_service_listings_provider_id', table_name='service_listings')
    op.drop_table('service_listings')

    op.drop_index('ix_products_seller_status', table_name='products')
    op.drop_index('ix_products_seller_id', table_name='products')
    op.drop_table('products')

    op.drop_index('ix_users_role_active', table_name='users')
    op.drop_table('users')
