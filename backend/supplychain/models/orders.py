from __future__ import annotations

from ..extensions import db
from supplychain.time_utils import to_utc_z


ORDER_TYPE_H2M = "H2M"
ORDER_TYPE_D2H = "D2H"
ORDER_TYPE_S2D = "S2D"
ORDER_TYPES = (ORDER_TYPE_H2M, ORDER_TYPE_D2H, ORDER_TYPE_S2D)

ORDER_STATUS_DRAFT = "draft"
ORDER_STATUS_SUBMITTED = "submitted"
ORDER_STATUS_APPROVED = "approved"
ORDER_STATUS_CLOSED = "closed"
ORDER_STATUSES = (
    ORDER_STATUS_DRAFT,
    ORDER_STATUS_SUBMITTED,
    ORDER_STATUS_APPROVED,
    ORDER_STATUS_CLOSED,
)

QR_STATUS_PENDING = "pending"


class Order(db.Model):
    """
    Purchase order between two organizations of one company.

    LIFECYCLE: draft -> submitted -> approved -> closed (terminal)

    - Line items are editable only while draft.
    - Approval creates the PO document in the same transaction.
    - closed is reached only when the document chain completes.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("company_id", "order_no", name="uq_orders_company_order_no"),
        db.Index("ix_orders_company_status", "company_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_no = db.Column(db.String(64), nullable=False)
    order_type = db.Column(db.String(8), nullable=False, index=True)

    company_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    buyer_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    seller_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    parent_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_DRAFT, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    submitted_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy=True,
    )
    documents = db.relationship(
        "Document",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="Document.id",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} no={self.order_no!r} type={self.order_type} status={self.status}>"

    @property
    def total_amount_cents(self) -> int:
        return sum(item.line_total_cents for item in self.items)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_no": self.order_no,
            "order_type": self.order_type,
            "company_id": self.company_id,
            "buyer_org_id": self.buyer_org_id,
            "seller_org_id": self.seller_org_id,
            "parent_order_id": self.parent_order_id,
            "status": self.status,
            "notes": self.notes,
            "created_by": self.created_by,
            "submitted_by": self.submitted_by,
            "approved_by": self.approved_by,
            "created_at": to_utc_z(self.created_at),
            "submitted_at": to_utc_z(self.submitted_at),
            "approved_at": to_utc_z(self.approved_at),
            "closed_at": to_utc_z(self.closed_at),
            "total_amount_cents": self.total_amount_cents,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    qty = db.Column(db.Integer, nullable=False)
    # Authoritative storage in cents
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    order = db.relationship("Order", back_populates="items")

    @property
    def line_total_cents(self) -> int:
        return self.qty * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "variant_id": self.variant_id,
            "qty": self.qty,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class QRBatch(db.Model):
    """QR label batch generated for an order (tracking artifacts)."""
    __tablename__ = "qr_batches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    batch_no = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class QRCode(db.Model):
    """
    Individual QR code. Only status='pending' codes are non-finalized; once a
    code has been printed or scanned it is part of the audit trail and blocks
    deletion of its order.
    """
    __tablename__ = "qr_codes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("qr_batches.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    code = db.Column(db.String(128), nullable=False, unique=True)
    status = db.Column(db.String(16), nullable=False, default=QR_STATUS_PENDING, index=True)
