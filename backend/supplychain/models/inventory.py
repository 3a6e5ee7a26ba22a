from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from supplychain.time_utils import to_utc_z


MOVEMENT_ADDITION = "addition"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_TRANSFER_OUT = "transfer_out"
MOVEMENT_TRANSFER_IN = "transfer_in"
MOVEMENT_ALLOCATION = "allocation"
MOVEMENT_DEALLOCATION = "deallocation"
MOVEMENT_ORDER_FULFILLMENT = "order_fulfillment"
MOVEMENT_ORDER_CANCELLED = "order_cancelled"

MOVEMENT_KINDS = (
    MOVEMENT_ADDITION,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_TRANSFER_OUT,
    MOVEMENT_TRANSFER_IN,
    MOVEMENT_ALLOCATION,
    MOVEMENT_DEALLOCATION,
    MOVEMENT_ORDER_FULFILLMENT,
    MOVEMENT_ORDER_CANCELLED,
)

REFERENCE_ORDER = "order"
REFERENCE_TRANSFER = "transfer"
REFERENCE_ADJUSTMENT = "adjustment"

TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_RECEIVED = "received"


class StockMovement(db.Model):
    """
    Immutable ledger row for one inventory-affecting event.

    The ledger is the source of truth:
    - quantity_on_hand(variant, org) == SUM(quantity_change) in ledger order
    - quantity_allocated(variant, org) == SUM(allocated_change) in ledger order
    - *_before / *_after are audit snapshots only

    sequence is strictly increasing per (variant, organization) and defines
    replay order. Rows are never updated or deleted (enforced by listeners).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("variant_id", "organization_id", "sequence", name="uq_stock_movements_key_sequence"),
        db.Index("ix_stock_movements_key", "variant_id", "organization_id"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    movement_type = db.Column(db.String(32), nullable=False, index=True)

    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)
    sequence = db.Column(db.Integer, nullable=False)

    quantity_change = db.Column(db.Integer, nullable=False)
    allocated_change = db.Column(db.Integer, nullable=False, default=0)

    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)
    allocated_before = db.Column(db.Integer, nullable=False)
    allocated_after = db.Column(db.Integer, nullable=False)

    unit_cost_cents = db.Column(db.Integer, nullable=True)

    # Triggering entity; plain references so the ledger outlives deleted orders
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    reference_no = db.Column(db.String(64), nullable=True)

    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    # Set when an audited physical count was allowed to drive availability negative
    negative_override = db.Column(db.Boolean, nullable=False, default=False)

    idempotency_key = db.Column(db.String(128), nullable=True, unique=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} {self.movement_type} variant={self.variant_id} "
            f"org={self.organization_id} qty={self.quantity_change} alloc={self.allocated_change}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "movement_type": self.movement_type,
            "variant_id": self.variant_id,
            "organization_id": self.organization_id,
            "company_id": self.company_id,
            "sequence": self.sequence,
            "quantity_change": self.quantity_change,
            "allocated_change": self.allocated_change,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "allocated_before": self.allocated_before,
            "allocated_after": self.allocated_after,
            "unit_cost_cents": self.unit_cost_cents,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "reference_no": self.reference_no,
            "reason": self.reason,
            "notes": self.notes,
            "negative_override": self.negative_override,
            "idempotency_key": self.idempotency_key,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise ValueError("stock movements are immutable")


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise ValueError("stock movements are append-only")


class InventoryPosition(db.Model):
    """
    Materialized projection of the ledger per (variant, organization).

    A cache, not a second source of truth: recompute_position() rebuilds it
    by replaying StockMovement rows. last_movement_id lets recovery detect a
    ledger write whose projection update never landed.
    """
    __tablename__ = "inventory_positions"
    __table_args__ = (
        db.UniqueConstraint("variant_id", "organization_id", name="uq_inventory_positions_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    quantity_allocated = db.Column(db.Integer, nullable=False, default=0)
    quantity_available = db.Column(db.Integer, nullable=False, default=0)
    average_cost_cents = db.Column(db.Integer, nullable=True)

    last_movement_id = db.Column(db.Integer, nullable=True)
    last_sequence = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "variant_id": self.variant_id,
            "organization_id": self.organization_id,
            "quantity_on_hand": self.quantity_on_hand,
            "quantity_allocated": self.quantity_allocated,
            "quantity_available": self.quantity_available,
            "average_cost_cents": self.average_cost_cents,
            "last_movement_id": self.last_movement_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockTransfer(db.Model):
    """
    Inter-location stock transfer.

    LIFECYCLE:
    1. pending: created; transfer_out movements written at the source
    2. received: destination confirmed; transfer_in movements written there

    Between the two steps the shipped quantity is in neither location's
    on-hand. That in-transit gap is intentional.
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.UniqueConstraint("company_id", "transfer_no", name="uq_stock_transfers_company_no"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_no = db.Column(db.String(64), nullable=False)
    company_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    from_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    to_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=TRANSFER_STATUS_PENDING, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    received_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship("StockTransferLine", back_populates="transfer", order_by="StockTransferLine.id", lazy=True)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def total_items(self) -> int:
        return sum(line.quantity for line in self.lines)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_no": self.transfer_no,
            "company_id": self.company_id,
            "from_org_id": self.from_org_id,
            "to_org_id": self.to_org_id,
            "status": self.status,
            "notes": self.notes,
            "created_by": self.created_by,
            "received_by": self.received_by,
            "created_at": to_utc_z(self.created_at),
            "received_at": to_utc_z(self.received_at),
            "total_items": self.total_items,
            "lines": [line.to_dict() for line in self.lines],
        }


class StockTransferLine(db.Model):
    __tablename__ = "stock_transfer_lines"
    __table_args__ = (
        db.UniqueConstraint("transfer_id", "variant_id", name="uq_stock_transfer_lines_variant"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("stock_transfers.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    transfer = db.relationship("StockTransfer", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_id": self.transfer_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
        }


class AdjustmentReason(db.Model):
    """Catalogue of stock adjustment reasons (damage, count correction, ...)."""
    __tablename__ = "stock_adjustment_reasons"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    reason_code = db.Column(db.String(32), nullable=False, unique=True)
    reason_name = db.Column(db.String(128), nullable=False)
    reason_description = db.Column(db.String(255), nullable=True)
    requires_approval = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reason_code": self.reason_code,
            "reason_name": self.reason_name,
            "reason_description": self.reason_description,
            "requires_approval": self.requires_approval,
            "is_active": self.is_active,
        }
