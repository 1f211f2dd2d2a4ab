"""Initial migration

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Price alerts table
    op.create_table(
        'price_alerts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('watched_item_id', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('customer_id', sa.String(length=64), nullable=False),
        sa.Column('target_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('current_price_snapshot', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency_id', sa.String(length=16), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('notify_on_any_drop', sa.Boolean(), nullable=False),
        sa.Column('include_shipping', sa.Boolean(), nullable=False),
        sa.Column('consider_variants', sa.Boolean(), nullable=False),
        sa.Column('triggered_count', sa.Integer(), nullable=False),
        sa.Column('last_triggered_at', sa.DateTime(), nullable=True),
        sa.Column('last_checked_at', sa.DateTime(), nullable=True),
        sa.Column('lowest_price_seen', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('watched_item_id', name='uq_price_alert_watched_item'),
        sa.CheckConstraint('target_price > 0', name='ck_price_alert_target_positive'),
    )
    op.create_index('ix_price_alerts_active_id', 'price_alerts', ['active', 'id'])

    # Raw observations table
    op.create_table(
        'price_observations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency_id', sa.String(length=16), nullable=True),
        sa.Column('source', sa.String(length=32), nullable=False),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_price_observations_product_recorded',
        'price_observations',
        ['product_id', 'recorded_at'],
    )

    # Daily summaries table
    op.create_table(
        'price_daily_summaries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('open', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('close', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('min', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('max', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('avg', sa.Numeric(precision=12, scale=4), nullable=False),
        sa.Column('sample_count', sa.Integer(), nullable=False),
        sa.Column('currency_id', sa.String(length=16), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'date', name='uq_price_daily_summary_product_date'),
    )


def downgrade() -> None:
    op.drop_table('price_daily_summaries')
    op.drop_index('ix_price_observations_product_recorded', table_name='price_observations')
    op.drop_table('price_observations')
    op.drop_index('ix_price_alerts_active_id', table_name='price_alerts')
    op.drop_table('price_alerts')
