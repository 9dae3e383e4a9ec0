"""create fulfillment scheduler tables

Revision ID: create_fulfillment_tables
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = 'create_fulfillment_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'sectors',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('city_name', sa.String(100), nullable=False),
        sa.Column('pincodes', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sectors_city_name', 'sectors', ['city_name'])
    op.create_index('ix_sectors_is_active', 'sectors', ['is_active'])

    op.create_table(
        'vendors',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('business_name', sa.String(255), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'delivery_slots',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('sector_id', sa.Integer(), sa.ForeignKey('sectors.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('cutoff_time', sa.Time(), nullable=False),
        sa.Column('pickup_delay_minutes', sa.Integer(), nullable=False),
        sa.Column('max_orders', sa.Integer(), nullable=False),
        sa.Column('base_max_orders', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('day_of_week', sa.JSON(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('start_time < end_time', name='ck_delivery_slots_window'),
        sa.CheckConstraint('cutoff_time <= start_time', name='ck_delivery_slots_cutoff'),
        sa.CheckConstraint('max_orders BETWEEN 1 AND 300', name='ck_delivery_slots_max_orders'),
    )
    op.create_index('ix_delivery_slots_sector_id', 'delivery_slots', ['sector_id'])
    op.create_index('ix_delivery_slots_sector_active', 'delivery_slots', ['sector_id', 'is_active'])

    op.create_table(
        'slot_capacity',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('slot_id', sa.Integer(), sa.ForeignKey('delivery_slots.id', ondelete='CASCADE'), nullable=False),
        sa.Column('service_date', sa.Date(), nullable=False),
        sa.Column('committed_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slot_id', 'service_date', name='uq_slot_capacity_slot_date'),
        sa.CheckConstraint('committed_orders >= 0', name='ck_slot_capacity_non_negative'),
    )
    op.create_index('ix_slot_capacity_service_date', 'slot_capacity', ['service_date'])

    op.create_table(
        'couriers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('profile_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('vehicle_type', sa.String(50), nullable=False, server_default='bike'),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('coverage_pincodes', sa.JSON(), nullable=False),
        sa.Column('max_daily_assignments', sa.Integer(), nullable=True),
        sa.Column('rating', sa.DECIMAL(3, 2), nullable=False, server_default='0'),
        sa.Column('total_deliveries', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('successful_deliveries', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('profile_id'),
    )
    op.create_index('ix_couriers_active_verified', 'couriers', ['is_active', 'is_verified'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_number', sa.String(50), nullable=True),
        sa.Column('customer_id', sa.BigInteger(), nullable=True),
        sa.Column('sector_id', sa.Integer(), sa.ForeignKey('sectors.id'), nullable=False),
        sa.Column('slot_id', sa.Integer(), sa.ForeignKey('delivery_slots.id'), nullable=False),
        sa.Column('delivery_date', sa.Date(), nullable=False),
        sa.Column('delivery_pincode', sa.String(20), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('total_amount', sa.DECIMAL(10, 2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(50), nullable=False, server_default='placed'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_slot_date', 'orders', ['slot_id', 'delivery_date'])
    op.create_index('ix_orders_delivery_date', 'orders', ['delivery_date'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('vendor_id', sa.Integer(), sa.ForeignKey('vendors.id'), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price', sa.DECIMAL(10, 2), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_vendor_id', 'order_items', ['vendor_id'])

    op.create_table(
        'delivery_assignments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('courier_id', sa.Integer(), sa.ForeignKey('couriers.id'), nullable=False),
        sa.Column('sector_id', sa.Integer(), sa.ForeignKey('sectors.id'), nullable=False),
        sa.Column('slot_id', sa.Integer(), sa.ForeignKey('delivery_slots.id'), nullable=False),
        sa.Column('assigned_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='assigned'),
        sa.Column('max_orders', sa.Integer(), nullable=False),
        sa.Column('current_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('source', sa.String(20), nullable=False, server_default='manual'),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('courier_id', 'sector_id', 'slot_id', 'assigned_date', name='uq_assignment_key'),
    )
    op.create_index('ix_delivery_assignments_date', 'delivery_assignments', ['assigned_date'])
    op.create_index('ix_delivery_assignments_slot_date', 'delivery_assignments', ['slot_id', 'assigned_date'])
    op.create_index('ix_delivery_assignments_courier_date', 'delivery_assignments', ['courier_id', 'assigned_date'])

    op.create_table(
        'order_pickups',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('vendor_id', sa.Integer(), sa.ForeignKey('vendors.id'), nullable=False),
        sa.Column(
            'assignment_id', sa.Integer(),
            sa.ForeignKey('delivery_assignments.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('courier_id', sa.Integer(), sa.ForeignKey('couriers.id'), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('en_route_at', sa.DateTime(), nullable=True),
        sa.Column('picked_up_at', sa.DateTime(), nullable=True),
        sa.Column('failed_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'vendor_id', name='uq_order_pickups_order_vendor'),
    )
    op.create_index('ix_order_pickups_vendor_id', 'order_pickups', ['vendor_id'])
    op.create_index('ix_order_pickups_assignment_id', 'order_pickups', ['assignment_id'])

    op.create_table(
        'order_deliveries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'assignment_id', sa.Integer(),
            sa.ForeignKey('delivery_assignments.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('courier_id', sa.Integer(), sa.ForeignKey('couriers.id'), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('out_for_delivery_at', sa.DateTime(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('failed_at', sa.DateTime(), nullable=True),
        sa.Column('returned_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id'),
    )
    op.create_index('ix_order_deliveries_assignment_id', 'order_deliveries', ['assignment_id'])
    op.create_index('ix_order_deliveries_courier_id', 'order_deliveries', ['courier_id'])


def downgrade() -> None:
    for table in (
        'order_deliveries',
        'order_pickups',
        'delivery_assignments',
        'order_items',
        'orders',
        'couriers',
        'slot_capacity',
        'delivery_slots',
        'vendors',
        'sectors',
    ):
        op.drop_table(table)
