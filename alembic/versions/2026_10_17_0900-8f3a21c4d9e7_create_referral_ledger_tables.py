"""create_referral_ledger_tables

Revision ID: 8f3a21c4d9e7
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8f3a21c4d9e7'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'referral_links',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('referrer_id', sa.String(length=64), nullable=False, comment='User who owns the link'),
        sa.Column('code', sa.String(length=64), nullable=False, comment='Public referral code'),
        sa.Column('clicks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conversions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_used_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('referrer_id'),
        sa.UniqueConstraint('code'),
    )

    op.create_table(
        'referral_attributions',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('referred_user_id', sa.String(length=64), nullable=False,
                  comment='User who signed up through a referral link'),
        sa.Column('referrer_id', sa.String(length=64), nullable=False, comment='Owner of the referral link'),
        sa.Column('referral_code', sa.String(length=64), nullable=False),
        sa.Column('referred_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('referred_user_id'),
    )
    op.create_index(op.f('ix_referral_attributions_referrer_id'), 'referral_attributions', ['referrer_id'])
    op.create_index(op.f('ix_referral_attributions_referred_at'), 'referral_attributions', ['referred_at'])

    op.create_table(
        'commission_settings',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('referrer_id', sa.String(length=64), nullable=False),
        sa.Column('referrer_class', sa.String(length=20), nullable=False, comment='normal/subscribed'),
        sa.Column('initial_rate', sa.Numeric(5, 2), nullable=False,
                  comment="Percent applied to a referred user's first transaction"),
        sa.Column('recurring_rate', sa.Numeric(5, 2), nullable=False,
                  comment='Percent applied to later transactions'),
        sa.Column('payment_model', sa.String(length=20), nullable=False, server_default='recurring',
                  comment='recurring/one-time'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('custom_rates', sa.Boolean(), nullable=False, server_default='false',
                  comment='Set once an administrator overrides a rate'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('referrer_id'),
        sa.CheckConstraint('initial_rate >= 0 AND initial_rate <= 100', name='ck_commission_initial_rate'),
        sa.CheckConstraint('recurring_rate >= 0 AND recurring_rate <= 100', name='ck_commission_recurring_rate'),
    )
    op.create_index(op.f('ix_commission_settings_referrer_class'), 'commission_settings', ['referrer_class'])
    op.create_index(op.f('ix_commission_settings_active'), 'commission_settings', ['active'])

    op.create_table(
        'referral_earnings',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('referrer_id', sa.String(length=64), nullable=False),
        sa.Column('referred_user_id', sa.String(length=64), nullable=False),
        sa.Column('transaction_id', sa.String(length=128), nullable=False),
        sa.Column('transaction_type', sa.String(length=32), nullable=False,
                  comment='subscription/course_purchase/upgrade'),
        sa.Column('earning_type', sa.String(length=16), nullable=False, comment='initial/recurring'),
        sa.Column('gross_amount', sa.Numeric(18, 4), nullable=False),
        sa.Column('commission_rate', sa.Numeric(5, 2), nullable=False),
        sa.Column('earning_amount', sa.Numeric(18, 4), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, comment='pending/approved/paid/cancelled'),
        sa.Column('eligible_at', sa.DateTime(), nullable=False,
                  comment='Earliest moment the earning may be reserved for payout'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id'),
        sa.CheckConstraint('gross_amount >= 0', name='ck_referral_earnings_gross'),
    )
    op.create_index(op.f('ix_referral_earnings_referred_user_id'), 'referral_earnings', ['referred_user_id'])
    op.create_index('ix_referral_earnings_referrer_status', 'referral_earnings', ['referrer_id', 'status'])
    op.create_index('ix_referral_earnings_eligible_status', 'referral_earnings', ['eligible_at', 'status'])
    op.create_index('ix_referral_earnings_pair', 'referral_earnings', ['referrer_id', 'referred_user_id'])
    op.create_index(
        'uq_referral_earnings_initial_pair', 'referral_earnings', ['referrer_id', 'referred_user_id'],
        unique=True,
        postgresql_where=sa.text("earning_type = 'initial'"),
        sqlite_where=sa.text("earning_type = 'initial'"),
    )

    op.create_table(
        'referral_payout_requests',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('referrer_id', sa.String(length=64), nullable=False),
        sa.Column('requested_amount', sa.Numeric(18, 4), nullable=False),
        sa.Column('reserved_amount', sa.Numeric(18, 4), nullable=False,
                  comment='Sum of reserved earnings, >= requested_amount'),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('earning_ids', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False,
                  comment='pending/approved/rejected/paid/cancelled'),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('payment_details', sa.JSON(), nullable=False),
        sa.Column('admin_note', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('processed_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_referral_payout_requests_processed_by'), 'referral_payout_requests', ['processed_by'])
    op.create_index('ix_referral_payout_requests_referrer_status', 'referral_payout_requests',
                    ['referrer_id', 'status'])
    op.create_index('ix_referral_payout_requests_status_created', 'referral_payout_requests',
                    ['status', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_referral_payout_requests_status_created', table_name='referral_payout_requests')
    op.drop_index('ix_referral_payout_requests_referrer_status', table_name='referral_payout_requests')
    op.drop_index(op.f('ix_referral_payout_requests_processed_by'), table_name='referral_payout_requests')
    op.drop_table('referral_payout_requests')

    op.drop_index('uq_referral_earnings_initial_pair', table_name='referral_earnings')
    op.drop_index('ix_referral_earnings_pair', table_name='referral_earnings')
    op.drop_index('ix_referral_earnings_eligible_status', table_name='referral_earnings')
    op.drop_index('ix_referral_earnings_referrer_status', table_name='referral_earnings')
    op.drop_index(op.f('ix_referral_earnings_referred_user_id'), table_name='referral_earnings')
    op.drop_table('referral_earnings')

    op.drop_index(op.f('ix_commission_settings_active'), table_name='commission_settings')
    op.drop_index(op.f('ix_commission_settings_referrer_class'), table_name='commission_settings')
    op.drop_table('commission_settings')

    op.drop_index(op.f('ix_referral_attributions_referred_at'), table_name='referral_attributions')
    op.drop_index(op.f('ix_referral_attributions_referrer_id'), table_name='referral_attributions')
    op.drop_table('referral_attributions')

    op.drop_table('referral_links')
