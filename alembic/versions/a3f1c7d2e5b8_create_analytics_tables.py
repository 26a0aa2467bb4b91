"""Create shops, analytics cache and customer profile tables

analytics_cache holds one JSON payload per (shop, metric_key);
customer_profiles holds the latest CLV score and segment per customer.

Revision ID: a3f1c7d2e5b8
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = 'a3f1c7d2e5b8'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'shops',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('domain', sa.String(), nullable=False, unique=True, index=True),
        sa.Column('access_token', sa.String(), nullable=False),
        sa.Column('iana_timezone', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('installed_at', sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        'analytics_cache',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('shop', sa.String(), nullable=False, index=True),
        sa.Column('metric_key', sa.String(), nullable=False),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, index=True),
        sa.UniqueConstraint('shop', 'metric_key', name='uq_analytics_cache_shop_metric'),
    )
    op.create_index('ix_analytics_cache_shop_expires', 'analytics_cache', ['shop', 'expires_at'])

    op.create_table(
        'customer_profiles',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('shop', sa.String(), nullable=False, index=True),
        sa.Column('customer_id', sa.String(), nullable=False, index=True),
        sa.Column('clv_score', sa.Integer(), server_default='0'),
        sa.Column('total_orders', sa.Integer(), server_default='0'),
        sa.Column('total_spent', sa.Float(), server_default='0'),
        sa.Column('last_order_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('segment', sa.String(), nullable=True, index=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint('shop', 'customer_id', name='uq_customer_profiles_shop_customer'),
    )


def downgrade() -> None:
    op.drop_table('customer_profiles')
    op.drop_index('ix_analytics_cache_shop_expires', table_name='analytics_cache')
    op.drop_table('analytics_cache')
    op.drop_table('shops')
