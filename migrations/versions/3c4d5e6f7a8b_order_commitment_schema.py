"""order commitment schema

Revision ID: 3c4d5e6f7a8b
Revises:
Create Date: 2026-10-19 09:12:40.118204

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c4d5e6f7a8b'
down_revision = None
branch_labels = None
depends_on = None


def _create_index_once(insp, name, table, columns, unique=False):
    try:
        existing = {i['name'] for i in insp.get_indexes(table)}
    except Exception:
        existing = set()
    if name not in existing:
        op.create_index(name, table, columns, unique=unique)


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    tables = set(insp.get_table_names())

    if 'users' not in tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=120), nullable=False, server_default=''),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('phone', sa.String(length=32), nullable=True),
            sa.Column('role', sa.String(length=32), nullable=False, server_default='buyer'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
    _create_index_once(insp, 'ix_users_email', 'users', ['email'], unique=True)

    if 'orders' not in tables:
        op.create_table(
            'orders',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('buyer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('seller_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('items_json', sa.Text(), nullable=False),
            sa.Column('delivery_method', sa.String(length=16), nullable=False, server_default='home'),
            sa.Column('delivery_price', sa.Float(), nullable=False, server_default='0'),
            sa.Column('total_amount', sa.Float(), nullable=False, server_default='0'),
            sa.Column('currency', sa.String(length=8), nullable=False, server_default='ZAR'),
            sa.Column('payment_reference', sa.String(length=120), nullable=True),
            sa.Column('status', sa.String(length=48), nullable=False, server_default='pending_commit'),
            sa.Column('delivery_status', sa.String(length=32), nullable=False, server_default='pending'),
            sa.Column('status_reason', sa.String(length=400), nullable=True),
            sa.Column('settlement', sa.String(length=16), nullable=False, server_default='none'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('expires_at', sa.DateTime(), nullable=True),
            sa.Column('paid_at', sa.DateTime(), nullable=True),
            sa.Column('committed_at', sa.DateTime(), nullable=True),
            sa.Column('declined_at', sa.DateTime(), nullable=True),
            sa.Column('cancelled_at', sa.DateTime(), nullable=True),
            sa.Column('expired_at', sa.DateTime(), nullable=True),
            sa.Column('collected_at', sa.DateTime(), nullable=True),
            sa.Column('delivered_at', sa.DateTime(), nullable=True),
            sa.Column('reminder_sent_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.Column('locker_id', sa.String(length=64), nullable=True),
            sa.Column('tracking_number', sa.String(length=120), nullable=True),
            sa.Column('courier_reference', sa.String(length=120), nullable=True),
            sa.Column('qr_code_url', sa.String(length=1024), nullable=True),
            sa.Column('waybill_url', sa.String(length=1024), nullable=True),
            sa.Column('estimated_payment_date', sa.DateTime(), nullable=True),
            sa.Column('pickup_slot', sa.String(length=64), nullable=True),
            sa.Column('reschedule_fee', sa.Float(), nullable=True),
            sa.Column('reschedule_payment_reference', sa.String(length=120), nullable=True),
            sa.Column('rescheduled_at', sa.DateTime(), nullable=True),
        )
    for col in ('buyer_id', 'seller_id', 'payment_reference', 'status', 'delivery_status', 'expires_at', 'tracking_number'):
        _create_index_once(insp, f'ix_orders_{col}', 'orders', [col])

    if 'order_events' not in tables:
        op.create_table(
            'order_events',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
            sa.Column('field', sa.String(length=24), nullable=False, server_default='status'),
            sa.Column('from_status', sa.String(length=48), nullable=False, server_default=''),
            sa.Column('to_status', sa.String(length=48), nullable=False),
            sa.Column('actor_type', sa.String(length=32), nullable=False, server_default='system'),
            sa.Column('actor_id', sa.Integer(), nullable=True),
            sa.Column('reason', sa.String(length=400), nullable=True),
            sa.Column('metadata_json', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
    _create_index_once(insp, 'ix_order_events_order_id', 'order_events', ['order_id'])

    if 'notifications' not in tables:
        op.create_table(
            'notifications',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('kind', sa.String(length=48), nullable=False, server_default='general'),
            sa.Column('title', sa.String(length=160), nullable=True),
            sa.Column('message', sa.Text(), nullable=False),
            sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('read_at', sa.DateTime(), nullable=True),
            sa.Column('meta', sa.Text(), nullable=True),
        )
    _create_index_once(insp, 'ix_notifications_user_id', 'notifications', ['user_id'])
    _create_index_once(insp, 'ix_notifications_order_id', 'notifications', ['order_id'])

    if 'refunds' not in tables:
        op.create_table(
            'refunds',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
            sa.Column('buyer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('amount', sa.Float(), nullable=False, server_default='0'),
            sa.Column('currency', sa.String(length=8), nullable=False, server_default='ZAR'),
            sa.Column('transaction_reference', sa.String(length=120), nullable=False),
            sa.Column('provider', sa.String(length=32), nullable=False, server_default='paystack'),
            sa.Column('provider_ref', sa.String(length=120), nullable=True),
            sa.Column('status', sa.String(length=24), nullable=False, server_default='pending'),
            sa.Column('reason', sa.String(length=400), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
    _create_index_once(insp, 'ix_refunds_order_id', 'refunds', ['order_id'], unique=True)

    if 'seller_payouts' not in tables:
        op.create_table(
            'seller_payouts',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
            sa.Column('seller_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('gross_amount', sa.Float(), nullable=False, server_default='0'),
            sa.Column('platform_fee', sa.Float(), nullable=False, server_default='0'),
            sa.Column('net_amount', sa.Float(), nullable=False, server_default='0'),
            sa.Column('currency', sa.String(length=8), nullable=False, server_default='ZAR'),
            sa.Column('transfer_reference', sa.String(length=120), nullable=False, unique=True),
            sa.Column('transfer_code', sa.String(length=120), nullable=True),
            sa.Column('status', sa.String(length=24), nullable=False, server_default='pending'),
            sa.Column('triggered_by', sa.String(length=32), nullable=False, server_default='system'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
    _create_index_once(insp, 'ix_seller_payouts_order_id', 'seller_payouts', ['order_id'], unique=True)
    _create_index_once(insp, 'ix_seller_payouts_seller_id', 'seller_payouts', ['seller_id'])

    if 'banking_subaccounts' not in tables:
        op.create_table(
            'banking_subaccounts',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('seller_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('business_name', sa.String(length=160), nullable=False, server_default=''),
            sa.Column('bank_code', sa.String(length=16), nullable=False),
            sa.Column('bank_name', sa.String(length=120), nullable=True),
            sa.Column('account_number_masked', sa.String(length=32), nullable=False),
            sa.Column('subaccount_code', sa.String(length=64), nullable=True),
            sa.Column('recipient_code', sa.String(length=64), nullable=True),
            sa.Column('status', sa.String(length=24), nullable=False, server_default='active'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
        )
    _create_index_once(insp, 'ix_banking_subaccounts_seller_id', 'banking_subaccounts', ['seller_id'], unique=True)
    _create_index_once(insp, 'ix_banking_subaccounts_subaccount_code', 'banking_subaccounts', ['subaccount_code'])

    if 'job_runs' not in tables:
        op.create_table(
            'job_runs',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('job_name', sa.String(length=64), nullable=False),
            sa.Column('ran_at', sa.DateTime(), nullable=False),
            sa.Column('ok', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('duration_ms', sa.Integer(), nullable=True),
            sa.Column('processed', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('failed', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('summary_json', sa.Text(), nullable=True),
            sa.Column('error', sa.Text(), nullable=True),
        )
    _create_index_once(insp, 'ix_job_runs_job_name', 'job_runs', ['job_name'])
    _create_index_once(insp, 'ix_job_runs_ran_at', 'job_runs', ['ran_at'])


def downgrade():
    for table in (
        'job_runs',
        'banking_subaccounts',
        'seller_payouts',
        'refunds',
        'notifications',
        'order_events',
        'orders',
        'users',
    ):
        op.drop_table(table)
