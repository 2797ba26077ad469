"""Initial schema: branches, ledgers, serialized inventory, transfers, distributions

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration creates:
1. Branches and suppliers (ledger owners)
2. Ledger accounts and append-only ledger entries
3. Products, serialized inventory items and reservation counters
4. Investors, capital contributions and finalized distributions
5. Transfers with item snapshots
6. Document number sequences and the audit trail
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. LEDGER OWNERS
    # ==========================================================================
    op.create_table('branches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_branches_code', 'branches', ['code'], unique=True)

    op.create_table('suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('contact_info', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True,
    )

    # ==========================================================================
    # 2. LEDGERS
    # ==========================================================================
    op.create_table('ledger_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner_kind', sa.String(length=16), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('balance_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('last_sequence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('owner_kind', 'owner_id', name='uq_ledger_accounts_owner'),
        sqlite_autoincrement=True,
    )

    op.create_table('ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('owner_kind', sa.String(length=16), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('entry_type', sa.String(length=16), nullable=False),
        sa.Column('debit_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('credit_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('running_balance_cents', sa.BigInteger(), nullable=False),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('reverses_entry_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('debit_cents >= 0 AND credit_cents >= 0', name='ck_ledger_entries_non_negative'),
        sa.CheckConstraint(
            '(debit_cents = 0 AND credit_cents > 0) OR (credit_cents = 0 AND debit_cents > 0)',
            name='ck_ledger_entries_one_side',
        ),
        sa.ForeignKeyConstraint(['account_id'], ['ledger_accounts.id']),
        sa.ForeignKeyConstraint(['reverses_entry_id'], ['ledger_entries.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'sequence', name='uq_ledger_entries_account_seq'),
        sa.UniqueConstraint('reverses_entry_id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_ledger_entries_account_id', 'ledger_entries', ['account_id'])
    op.create_index('ix_ledger_entries_entry_type', 'ledger_entries', ['entry_type'])
    op.create_index('ix_ledger_entries_reference_id', 'ledger_entries', ['reference_id'])
    op.create_index('ix_ledger_entries_created_at', 'ledger_entries', ['created_at'])
    op.create_index('ix_ledger_entries_owner_created', 'ledger_entries', ['owner_kind', 'owner_id', 'created_at'])

    # ==========================================================================
    # 3. INVENTORY
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('landing_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('branch_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('transfer_price_cents', sa.Integer(), nullable=True),
        sa.Column('retail_price_cents', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku'),
        sqlite_autoincrement=True,
    )

    op.create_table('inventory_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('serial_no', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='Available'),
        sa.Column('landing_cost_cents', sa.Integer(), nullable=False),
        sa.Column('branch_cost_cents', sa.Integer(), nullable=False),
        sa.Column('transit_to_branch_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['transit_to_branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('serial_no'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_inventory_items_product_id', 'inventory_items', ['product_id'])
    op.create_index('ix_inventory_items_branch_id', 'inventory_items', ['branch_id'])
    op.create_index('ix_inventory_items_status', 'inventory_items', ['status'])
    op.create_index(
        'ix_inventory_items_product_branch_status', 'inventory_items', ['product_id', 'branch_id', 'status']
    )

    op.create_table('stock_counters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('reserved_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('reserved_count >= 0', name='ck_stock_counters_reserved_non_negative'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'branch_id', name='uq_stock_counters_product_branch'),
        sqlite_autoincrement=True,
    )

    # ==========================================================================
    # 4. INVESTORS AND DISTRIBUTIONS
    # ==========================================================================
    op.create_table('investors',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('contact_info', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )

    op.create_table('investor_capital',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('investor_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('contribution_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('amount_cents > 0', name='ck_investor_capital_positive'),
        sa.ForeignKeyConstraint(['investor_id'], ['investors.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_investor_capital_investor_id', 'investor_capital', ['investor_id'])

    op.create_table('distributions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('period', sa.String(length=7), nullable=False),
        sa.Column('company_profit_cents', sa.BigInteger(), nullable=False),
        sa.Column('total_pool_cents', sa.BigInteger(), nullable=False),
        sa.Column('total_master_share_cents', sa.BigInteger(), nullable=False),
        sa.Column('total_capital_cents', sa.BigInteger(), nullable=False),
        sa.Column('is_finalized', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('finalized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finalized_by_actor_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('period'),
        sqlite_autoincrement=True,
    )

    op.create_table('distribution_details',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('distribution_id', sa.Integer(), nullable=False),
        sa.Column('investor_id', sa.Integer(), nullable=False),
        sa.Column('capital_cents', sa.BigInteger(), nullable=False),
        sa.Column('capital_share_percent', sa.String(length=16), nullable=False),
        sa.Column('distributed_amount_cents', sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(['distribution_id'], ['distributions.id']),
        sa.ForeignKeyConstraint(['investor_id'], ['investors.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('distribution_id', 'investor_id', name='uq_distribution_details_investor'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_distribution_details_distribution_id', 'distribution_details', ['distribution_id'])
    op.create_index('ix_distribution_details_investor_id', 'distribution_details', ['investor_id'])

    # ==========================================================================
    # 5. TRANSFERS
    # ==========================================================================
    op.create_table('transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transfer_no', sa.String(length=32), nullable=False),
        sa.Column('from_branch_id', sa.Integer(), nullable=False),
        sa.Column('to_branch_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='Pending'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('profit_cents', sa.BigInteger(), nullable=True),
        sa.Column('requested_by_actor_id', sa.Integer(), nullable=False),
        sa.Column('approved_by_actor_id', sa.Integer(), nullable=True),
        sa.Column('rejected_by_actor_id', sa.Integer(), nullable=True),
        sa.Column('dispatched_by_actor_id', sa.Integer(), nullable=True),
        sa.Column('completed_by_actor_id', sa.Integer(), nullable=True),
        sa.Column('cancelled_by_actor_id', sa.Integer(), nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('dispatched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('from_branch_id <> to_branch_id', name='ck_transfers_distinct_branches'),
        sa.ForeignKeyConstraint(['from_branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['to_branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transfer_no'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_transfers_from_branch_id', 'transfers', ['from_branch_id'])
    op.create_index('ix_transfers_to_branch_id', 'transfers', ['to_branch_id'])
    op.create_index('ix_transfers_status', 'transfers', ['status'])

    op.create_table('transfer_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transfer_id', sa.Integer(), nullable=False),
        sa.Column('inventory_item_id', sa.Integer(), nullable=False),
        sa.Column('serial_no', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('branch_cost_cents', sa.Integer(), nullable=False),
        sa.Column('transfer_price_cents', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['transfer_id'], ['transfers.id']),
        sa.ForeignKeyConstraint(['inventory_item_id'], ['inventory_items.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transfer_id', 'inventory_item_id', name='uq_transfer_items_transfer_item'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_transfer_items_transfer_id', 'transfer_items', ['transfer_id'])
    op.create_index('ix_transfer_items_inventory_item_id', 'transfer_items', ['inventory_item_id'])

    # ==========================================================================
    # 6. DOCUMENT SEQUENCES AND AUDIT TRAIL
    # ==========================================================================
    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('scope_key', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', 'scope_key', name='uq_doc_sequences_type_scope'),
        sqlite_autoincrement=True,
    )

    op.create_table('audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('transfer_id', sa.Integer(), nullable=True),
        sa.Column('distribution_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['transfer_id'], ['transfers.id']),
        sa.ForeignKeyConstraint(['distribution_id'], ['distributions.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_audit_events_event_type', 'audit_events', ['event_type'])
    op.create_index('ix_audit_events_entity_type', 'audit_events', ['entity_type'])
    op.create_index('ix_audit_events_entity_id', 'audit_events', ['entity_id'])
    op.create_index('ix_audit_events_actor_id', 'audit_events', ['actor_id'])
    op.create_index('ix_audit_events_branch_id', 'audit_events', ['branch_id'])
    op.create_index('ix_audit_events_transfer_id', 'audit_events', ['transfer_id'])
    op.create_index('ix_audit_events_distribution_id', 'audit_events', ['distribution_id'])
    op.create_index('ix_audit_events_occurred_at', 'audit_events', ['occurred_at'])


def downgrade():
    op.drop_table('audit_events')
    op.drop_table('document_sequences')
    op.drop_table('transfer_items')
    op.drop_table('transfers')
    op.drop_table('distribution_details')
    op.drop_table('distributions')
    op.drop_table('investor_capital')
    op.drop_table('investors')
    op.drop_table('stock_counters')
    op.drop_table('inventory_items')
    op.drop_table('products')
    op.drop_table('ledger_entries')
    op.drop_table('ledger_accounts')
    op.drop_table('suppliers')
    op.drop_table('branches')
