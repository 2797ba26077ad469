"""Head-office payment requests

Revision ID: 20261020_ho_payments
Revises: 20261019_initial
Create Date: 2026-10-20

Branch payments to head office wait as Pending until approved (which posts
the branch ledger debit) or rejected.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261020_ho_payments'
down_revision = '20261019_initial'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('ho_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('reference', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='Pending'),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('requested_by_actor_id', sa.Integer(), nullable=False),
        sa.Column('reviewed_by_actor_id', sa.Integer(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ledger_entry_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('amount_cents > 0', name='ck_ho_payments_positive_amount'),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['ledger_entry_id'], ['ledger_entries.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('ledger_entry_id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_ho_payments_branch_id', 'ho_payments', ['branch_id'])
    op.create_index('ix_ho_payments_status', 'ho_payments', ['status'])


def downgrade():
    op.drop_table('ho_payments')
