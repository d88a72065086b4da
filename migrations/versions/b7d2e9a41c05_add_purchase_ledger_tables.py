"""Add purchase ledger, entitlement and metrics tables

Revision ID: b7d2e9a41c05
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b7d2e9a41c05'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('user_entitlements',
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('pro', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('cosmetics', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('user_id')
    )
    op.create_table('rc_user_map',
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('rc_app_user_id', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('user_id')
    )
    op.create_table('user_wallet_balances',
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('streakshield_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('xp_booster_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('streakshield_count >= 0', name='ck_wallet_streakshield_non_negative'),
        sa.PrimaryKeyConstraint('user_id')
    )
    op.create_table('audit_purchases',
        sa.Column('tx_id', sa.String(length=255), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=255), nullable=False),
        sa.Column('platform', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=True),
        sa.Column('purchased_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('tx_id')
    )
    op.create_index('ix_audit_purchases_user_id', 'audit_purchases', ['user_id'])
    op.create_table('purchase_claims',
        sa.Column('tx_id', sa.String(length=255), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=255), nullable=False),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('tx_id')
    )
    op.create_index('ix_purchase_claims_user_sku_claimed', 'purchase_claims',
                    ['user_id', 'sku', 'claimed_at'])
    op.create_table('function_metrics',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('function_name', sa.String(length=100), nullable=False),
        sa.Column('request_id', sa.String(length=255), nullable=False),
        sa.Column('status_code', sa.Integer(), nullable=False),
        sa.Column('duration_ms', sa.Integer(), nullable=False),
        sa.Column('error_code', sa.String(length=100), nullable=True),
        sa.Column('slo_tag', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )


def downgrade():
    op.drop_table('function_metrics')
    op.drop_index('ix_purchase_claims_user_sku_claimed', table_name='purchase_claims')
    op.drop_table('purchase_claims')
    op.drop_index('ix_audit_purchases_user_id', table_name='audit_purchases')
    op.drop_table('audit_purchases')
    op.drop_table('user_wallet_balances')
    op.drop_table('rc_user_map')
    op.drop_table('user_entitlements')
