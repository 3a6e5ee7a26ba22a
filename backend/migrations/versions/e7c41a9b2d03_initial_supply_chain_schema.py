"""initial supply chain schema

Revision ID: e7c41a9b2d03
Revises:
Create Date: 2026-10-19 00:00:00.000000

This migration creates the complete schema from scratch:
- organizations / shop_distributors: company hierarchy and S2D links
- users / session_tokens: identities resolved to workflow actors
- products / product_variants: company catalog
- orders / order_items / qr_batches / qr_codes: order state machine
- documents / document_sequences / workflow_events: document chain and audit log
- stock_movements / inventory_positions: append-only ledger and its cache
- stock_transfers / stock_transfer_lines / stock_adjustment_reasons
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'e7c41a9b2d03'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(*names, nullable=False):
    return [
        sa.Column(name, sa.DateTime(timezone=True), nullable=nullable,
                  server_default=sa.text('CURRENT_TIMESTAMP'))
        for name in names
    ]


def upgrade():
    """
    Create all tables.

    Every table uses AUTOINCREMENT on SQLite so ids of deleted rows are
    never handed out again (audit events keep pointing at the right entity).
    """

    # ============================================================================
    # organizations: HQ -> MANUFACTURER / DISTRIBUTOR / WAREHOUSE, DISTRIBUTOR -> SHOP
    # ============================================================================
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_code', sa.String(length=32), nullable=False),
        sa.Column('org_name', sa.String(length=255), nullable=False),
        sa.Column('org_type', sa.String(length=16), nullable=False),
        sa.Column('parent_org_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('require_payment_proof', sa.Boolean(), nullable=False, server_default='0'),
        *_timestamps('created_at', 'updated_at'),
        sa.ForeignKeyConstraint(['parent_org_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_organizations_org_code', 'organizations', ['org_code'], unique=True)
    op.create_index('ix_organizations_parent', 'organizations', ['parent_org_id'])
    op.create_index('ix_organizations_type_active', 'organizations', ['org_type', 'is_active'])

    op.create_table(
        'shop_distributors',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_org_id', sa.Integer(), nullable=False),
        sa.Column('distributor_org_id', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps('created_at'),
        sa.ForeignKeyConstraint(['shop_org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['distributor_org_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shop_org_id', 'distributor_org_id', name='uq_shop_distributors_pair'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_shop_distributors_shop_org_id', 'shop_distributors', ['shop_org_id'])
    op.create_index('ix_shop_distributors_distributor_org_id', 'shop_distributors', ['distributor_org_id'])

    # ============================================================================
    # users / session_tokens
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('role_level', sa.Integer(), nullable=False, server_default='40'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps('created_at'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_org_id', 'users', ['org_id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)

    # ============================================================================
    # products / product_variants
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('product_code', sa.String(length=64), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps('created_at'),
        sa.ForeignKeyConstraint(['company_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'product_code', name='uq_products_company_code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_company_id', 'products', ['company_id'])

    op.create_table(
        'product_variants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('variant_name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps('created_at'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'sku', name='uq_product_variants_product_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'])

    # ============================================================================
    # orders: draft -> submitted -> approved -> closed
    # ============================================================================
    # version_id backs SQLAlchemy optimistic locking (version_id_col)
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_no', sa.String(length=64), nullable=False),
        sa.Column('order_type', sa.String(length=8), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('buyer_org_id', sa.Integer(), nullable=False),
        sa.Column('seller_org_id', sa.Integer(), nullable=False),
        sa.Column('parent_order_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('submitted_by', sa.Integer(), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps('updated_at'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['company_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['buyer_org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['seller_org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['parent_order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.ForeignKeyConstraint(['submitted_by'], ['users.id'], ),
        sa.ForeignKeyConstraint(['approved_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'order_no', name='uq_orders_company_order_no'),
        sqlite_autoincrement=True
    )
    for column in ('order_type', 'company_id', 'buyer_org_id', 'seller_org_id', 'parent_order_id', 'status'):
        op.create_index(f'ix_orders_{column}', 'orders', [column])
    op.create_index('ix_orders_company_status', 'orders', ['company_id', 'status'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('qty', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_variant_id', 'order_items', ['variant_id'])

    op.create_table(
        'qr_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('batch_no', sa.String(length=64), nullable=False),
        *_timestamps('created_at'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_qr_batches_order_id', 'qr_batches', ['order_id'])

    op.create_table(
        'qr_codes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.ForeignKeyConstraint(['batch_id'], ['qr_batches.id'], ),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_qr_codes_batch_id', 'qr_codes', ['batch_id'])
    op.create_index('ix_qr_codes_order_id', 'qr_codes', ['order_id'])
    op.create_index('ix_qr_codes_status', 'qr_codes', ['status'])

    # ============================================================================
    # documents: at most one per (order, doc_type)
    # ============================================================================
    op.create_table(
        'documents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('doc_type', sa.String(length=16), nullable=False),
        sa.Column('doc_no', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('issued_by_org_id', sa.Integer(), nullable=False),
        sa.Column('issued_to_org_id', sa.Integer(), nullable=False),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('payment_proof_ref', sa.String(length=512), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('acknowledged_by', sa.Integer(), nullable=True),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['company_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['issued_by_org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['issued_to_org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.ForeignKeyConstraint(['acknowledged_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'doc_type', name='uq_documents_order_type'),
        sa.UniqueConstraint('company_id', 'doc_no', name='uq_documents_company_doc_no'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_documents_order_id', 'documents', ['order_id'])
    op.create_index('ix_documents_company_id', 'documents', ['company_id'])
    op.create_index('ix_documents_status', 'documents', ['status'])
    op.create_index('ix_documents_issued_to_status', 'documents', ['issued_to_org_id', 'status'])

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('sequence_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps('updated_at'),
        sa.ForeignKeyConstraint(['company_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'sequence_type', name='uq_doc_sequences_company_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_document_sequences_company_id', 'document_sequences', ['company_id'])

    # ============================================================================
    # workflow_events: append-only audit log
    # ============================================================================
    # order_id / document_id / transfer_id are plain integers: events outlive
    # deleted orders
    op.create_table(
        'workflow_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('document_id', sa.Integer(), nullable=True),
        sa.Column('transfer_id', sa.Integer(), nullable=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('actor_org_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    for column in ('company_id', 'event_type', 'entity_type', 'entity_id', 'order_id',
                   'document_id', 'transfer_id', 'actor_user_id', 'occurred_at'):
        op.create_index(f'ix_workflow_events_{column}', 'workflow_events', [column])
    op.create_index('ix_workflow_events_company_occurred', 'workflow_events', ['company_id', 'occurred_at'])

    # ============================================================================
    # stock_movements: append-only ledger, dense sequence per (variant, org)
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=True),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('quantity_change', sa.Integer(), nullable=False),
        sa.Column('allocated_change', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_before', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('allocated_before', sa.Integer(), nullable=False),
        sa.Column('allocated_after', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('reference_no', sa.String(length=64), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('negative_override', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('idempotency_key', sa.String(length=128), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['company_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('variant_id', 'organization_id', 'sequence', name='uq_stock_movements_key_sequence'),
        sa.UniqueConstraint('idempotency_key'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_organization_id', 'stock_movements', ['organization_id'])
    op.create_index('ix_stock_movements_company_id', 'stock_movements', ['company_id'])
    op.create_index('ix_stock_movements_created_at', 'stock_movements', ['created_at'])
    op.create_index('ix_stock_movements_key', 'stock_movements', ['variant_id', 'organization_id'])
    op.create_index('ix_stock_movements_reference', 'stock_movements', ['reference_type', 'reference_id'])

    op.create_table(
        'inventory_positions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('quantity_on_hand', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_allocated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_available', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('average_cost_cents', sa.Integer(), nullable=True),
        sa.Column('last_movement_id', sa.Integer(), nullable=True),
        sa.Column('last_sequence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('variant_id', 'organization_id', name='uq_inventory_positions_key'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_positions_variant_id', 'inventory_positions', ['variant_id'])
    op.create_index('ix_inventory_positions_organization_id', 'inventory_positions', ['organization_id'])

    # ============================================================================
    # stock_transfers: pending -> received
    # ============================================================================
    op.create_table(
        'stock_transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transfer_no', sa.String(length=64), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('from_org_id', sa.Integer(), nullable=False),
        sa.Column('to_org_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('received_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['company_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['from_org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['to_org_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.ForeignKeyConstraint(['received_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'transfer_no', name='uq_stock_transfers_company_no'),
        sqlite_autoincrement=True
    )
    for column in ('company_id', 'from_org_id', 'to_org_id', 'status'):
        op.create_index(f'ix_stock_transfers_{column}', 'stock_transfers', [column])

    op.create_table(
        'stock_transfer_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transfer_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['transfer_id'], ['stock_transfers.id'], ),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transfer_id', 'variant_id', name='uq_stock_transfer_lines_variant'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_transfer_lines_transfer_id', 'stock_transfer_lines', ['transfer_id'])

    op.create_table(
        'stock_adjustment_reasons',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reason_code', sa.String(length=32), nullable=False),
        sa.Column('reason_name', sa.String(length=128), nullable=False),
        sa.Column('reason_description', sa.String(length=255), nullable=True),
        sa.Column('requires_approval', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reason_code'),
        sqlite_autoincrement=True
    )


def downgrade():
    """Drop all tables in reverse dependency order."""
    for table in (
        'stock_adjustment_reasons',
        'stock_transfer_lines',
        'stock_transfers',
        'inventory_positions',
        'stock_movements',
        'workflow_events',
        'document_sequences',
        'documents',
        'qr_codes',
        'qr_batches',
        'order_items',
        'orders',
        'product_variants',
        'products',
        'session_tokens',
        'users',
        'shop_distributors',
        'organizations',
    ):
        op.drop_table(table)
