from __future__ import annotations

import json

from ..extensions import db
from supplychain.time_utils import to_utc_z


DOC_TYPE_PO = "PO"
DOC_TYPE_INVOICE = "INVOICE"
DOC_TYPE_PAYMENT = "PAYMENT"
DOC_TYPE_RECEIPT = "RECEIPT"

# Strict total order PO < INVOICE < PAYMENT < RECEIPT
DOC_TYPES = (DOC_TYPE_PO, DOC_TYPE_INVOICE, DOC_TYPE_PAYMENT, DOC_TYPE_RECEIPT)

DOC_STATUS_PENDING = "pending"
DOC_STATUS_ACKNOWLEDGED = "acknowledged"


class Document(db.Model):
    """
    One step of an order's document chain.

    INVARIANTS:
    - at most one document per (order, doc_type)
    - a document of type T > PO exists only once the T-1 document is acknowledged
    - payload is a snapshot of the order lines taken at creation and never changes
    """
    __tablename__ = "documents"
    __table_args__ = (
        db.UniqueConstraint("order_id", "doc_type", name="uq_documents_order_type"),
        db.UniqueConstraint("company_id", "doc_no", name="uq_documents_company_doc_no"),
        db.Index("ix_documents_issued_to_status", "issued_to_org_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    doc_type = db.Column(db.String(16), nullable=False)
    doc_no = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=DOC_STATUS_PENDING, index=True)

    issued_by_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    issued_to_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)

    payload = db.Column(db.Text, nullable=True)

    # Reference into external file storage; bytes are never inspected here
    payment_proof_ref = db.Column(db.String(512), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    acknowledged_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", back_populates="documents")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Document id={self.id} {self.doc_type} no={self.doc_no!r} status={self.status}>"

    @property
    def payload_data(self) -> dict:
        return json.loads(self.payload) if self.payload else {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "company_id": self.company_id,
            "doc_type": self.doc_type,
            "doc_no": self.doc_no,
            "status": self.status,
            "issued_by_org_id": self.issued_by_org_id,
            "issued_to_org_id": self.issued_to_org_id,
            "payment_proof_ref": self.payment_proof_ref,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": to_utc_z(self.acknowledged_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-company number sequences (orders, documents, transfers).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("company_id", "sequence_type", name="uq_doc_sequences_company_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    sequence_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())


class WorkflowEvent(db.Model):
    """
    Append-only audit trail of workflow transitions.

    Rows are written in the same DB transaction as the transition they
    record and are never updated or deleted.
    """
    __tablename__ = "workflow_events"
    __table_args__ = (
        db.Index("ix_workflow_events_company_occurred", "company_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)   # e.g. order.approved, document.acknowledged
    entity_type = db.Column(db.String(32), nullable=False, index=True)  # order, document, transfer, stock_movement
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    # Plain references: the audit trail outlives deleted orders
    order_id = db.Column(db.Integer, nullable=True, index=True)
    document_id = db.Column(db.Integer, nullable=True, index=True)
    transfer_id = db.Column(db.Integer, nullable=True, index=True)

    actor_user_id = db.Column(db.Integer, nullable=True, index=True)
    actor_org_id = db.Column(db.Integer, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "order_id": self.order_id,
            "document_id": self.document_id,
            "transfer_id": self.transfer_id,
            "actor_user_id": self.actor_user_id,
            "actor_org_id": self.actor_org_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
            "payload": json.loads(self.payload) if self.payload else None,
        }
