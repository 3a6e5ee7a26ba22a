# Overview: Document chain automaton (PO -> INVOICE -> PAYMENT -> RECEIPT) for approved orders.

# backend/supplychain/services/document_service.py

from __future__ import annotations

import json
from typing import Any

from flask import current_app

from ..errors import DuplicateDocument, IllegalTransition, NotFound, PaymentProofRequired, ValidationFailed
from ..events import document_acknowledged, document_created, queue
from ..extensions import db
from ..models import Document, Order, Organization
from ..models.documents import (
    DOC_TYPES,
    DOC_TYPE_PO,
    DOC_TYPE_INVOICE,
    DOC_TYPE_PAYMENT,
    DOC_TYPE_RECEIPT,
    DOC_STATUS_PENDING,
    DOC_STATUS_ACKNOWLEDGED,
)
from ..models.orders import ORDER_STATUS_APPROVED, ORDER_STATUS_CLOSED, ORDER_STATUS_SUBMITTED
from ..permissions import Action
from supplychain.time_utils import utcnow, to_utc_z
from . import order_state
from .access_service import AccessPolicy, acknowledging_org_id, approving_org_id, can_view, require
from .audit_service import append_event
from .concurrency import hold_keys, lock_for_update, order_key, run_with_retry
from .inventory_service import fulfil_order, order_inventory_keys
from .numbering_service import next_number
"""
Document chain invariants

- At most one document per (order, doc_type).
- A document of type T > PO is created only in the same transaction that
  acknowledges its T-1 predecessor; PO is created only by order approval.
- Acknowledgement, successor creation, PAYMENT fulfilment movements and
  order closing commit together or not at all.
- Acknowledging an already acknowledged document is a no-op success.
- Every step is replayable: successor creation returns the existing
  successor, fulfilment rows carry idempotency keys, close() on a closed
  order returns it unchanged. services.recovery_service relies on this.

Close policy (ORDER_CLOSE_POLICY):
- receipt_created      order closes when PAYMENT ack creates the RECEIPT (default)
- receipt_acknowledged order closes when the buyer acknowledges the RECEIPT
"""


NEXT_DOCUMENT = {
    DOC_TYPE_PO: DOC_TYPE_INVOICE,
    DOC_TYPE_INVOICE: DOC_TYPE_PAYMENT,
    DOC_TYPE_PAYMENT: DOC_TYPE_RECEIPT,
    DOC_TYPE_RECEIPT: None,
}

# doc_type -> (issuing party, receiving party)
DOCUMENT_PARTIES = {
    DOC_TYPE_PO: ("buyer", "seller"),
    DOC_TYPE_INVOICE: ("seller", "buyer"),
    DOC_TYPE_PAYMENT: ("buyer", "seller"),
    DOC_TYPE_RECEIPT: ("seller", "buyer"),
}

CLOSE_ON_RECEIPT_CREATED = "receipt_created"
CLOSE_ON_RECEIPT_ACKNOWLEDGED = "receipt_acknowledged"


def payment_proof_gate(doc_type: str, require_payment_proof: bool, proof_ref: str | None) -> None:
    """Raise PaymentProofRequired when an INVOICE needs a proof and none is supplied."""
    if doc_type != DOC_TYPE_INVOICE or not require_payment_proof:
        return
    if proof_ref and proof_ref.strip():
        return
    raise PaymentProofRequired(
        "Payment proof is required before this invoice can be acknowledged",
        doc_type=doc_type,
    )


def _party_org(order: Order, party: str) -> int:
    return order.buyer_org_id if party == "buyer" else order.seller_org_id


def _snapshot_payload(order: Order) -> dict[str, Any]:
    return {
        "order_no": order.order_no,
        "order_type": order.order_type,
        "buyer_org_id": order.buyer_org_id,
        "seller_org_id": order.seller_org_id,
        "lines": [
            {
                "variant_id": item.variant_id,
                "qty": item.qty,
                "unit_price_cents": item.unit_price_cents,
                "line_total_cents": item.line_total_cents,
            }
            for item in order.items
        ],
        "total_amount_cents": order.total_amount_cents,
        "captured_at": to_utc_z(utcnow()),
    }


def find_document(order_id: int, doc_type: str) -> Document | None:
    return db.session.query(Document).filter_by(order_id=order_id, doc_type=doc_type).first()


def _create_document(order: Order, doc_type: str, *, actor_id: int | None) -> Document:
    issuer, receiver = DOCUMENT_PARTIES[doc_type]
    doc = Document(
        order_id=order.id,
        company_id=order.company_id,
        doc_type=doc_type,
        doc_no=next_number(company_id=order.company_id, sequence_type=doc_type),
        status=DOC_STATUS_PENDING,
        issued_by_org_id=_party_org(order, issuer),
        issued_to_org_id=_party_org(order, receiver),
        payload=json.dumps(_snapshot_payload(order), sort_keys=True),
        created_by=actor_id,
        created_at=utcnow(),
    )
    db.session.add(doc)
    db.session.flush()

    append_event(
        event_type="document.created",
        entity_type="document",
        entity_id=doc.id,
        company_id=order.company_id,
        order_id=order.id,
        document_id=doc.id,
        actor_user_id=actor_id,
        occurred_at=doc.created_at,
        payload={"doc_type": doc_type, "doc_no": doc.doc_no},
    )
    queue(
        db.session,
        document_created,
        document_id=doc.id,
        order_id=order.id,
        doc_type=doc_type,
        issued_to_org_id=doc.issued_to_org_id,
    )
    return doc


def create_po(order: Order, *, actor_id: int | None = None) -> Document:
    """
    Create the PO for a freshly approved order (inner step, no commit).

    Raises DuplicateDocument when the order already has one.
    """
    if order.status != ORDER_STATUS_APPROVED:
        raise IllegalTransition(
            "A purchase order is only issued for approved orders",
            order_id=order.id,
            status=order.status,
        )
    if find_document(order.id, DOC_TYPE_PO) is not None:
        raise DuplicateDocument(f"Order {order.order_no} already has a purchase order", order_id=order.id)
    return _create_document(order, DOC_TYPE_PO, actor_id=actor_id)


def create_next_document(document: Document, order: Order, *, actor_id: int | None = None) -> Document | None:
    """Successor of an acknowledged document; returns the existing one if already created."""
    next_type = NEXT_DOCUMENT.get(document.doc_type)
    if next_type is None:
        return None
    if document.status != DOC_STATUS_ACKNOWLEDGED:
        raise IllegalTransition(
            f"{next_type} requires an acknowledged {document.doc_type}",
            document_id=document.id,
        )
    existing = find_document(order.id, next_type)
    if existing is not None:
        return existing
    return _create_document(order, next_type, actor_id=actor_id)


def close_policy() -> str:
    return current_app.config.get("ORDER_CLOSE_POLICY", CLOSE_ON_RECEIPT_CREATED)


def closes_order(doc_type: str, policy: str) -> bool:
    """Whether acknowledging `doc_type` finishes the order under `policy`."""
    if policy == CLOSE_ON_RECEIPT_ACKNOWLEDGED:
        return doc_type == DOC_TYPE_RECEIPT
    return doc_type == DOC_TYPE_PAYMENT


def fulfils_stock(order: Order) -> bool:
    return order.order_type in (current_app.config.get("FULFILLMENT_ORDER_TYPES") or ())


def get_document(document_id: int, *, actor=None) -> Document:
    doc = db.session.query(Document).filter_by(id=document_id).first()
    if doc is None or (actor is not None and not can_view(actor, doc.company_id, AccessPolicy.from_config(current_app.config))):
        raise NotFound(f"Document {document_id} not found", document_id=document_id)
    return doc


def _get_order(order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    order = query.first()
    if order is None:
        raise NotFound(f"Order {order_id} not found", order_id=order_id)
    return order


def _chain_keys(order: Order, doc_type: str) -> list[tuple]:
    keys = [order_key(order.id)]
    if doc_type == DOC_TYPE_PAYMENT and fulfils_stock(order):
        keys.extend(order_inventory_keys(order))
    return keys


def acknowledge(document_id: int, *, actor, proof_ref: str | None = None) -> Document:
    """
    Receiving party confirms a document and the chain advances.

    One transaction covers: the acknowledgement, the successor document,
    fulfilment movements (PAYMENT) and closing the order. If any step
    fails nothing is committed and the document stays pending.

    Raises:
        PermissionDenied, PaymentProofRequired, IllegalTransition,
        InsufficientStock, Contention, NotFound
    """
    def _op():
        doc = get_document(document_id)
        order = _get_order(doc.order_id)

        with hold_keys(*_chain_keys(order, doc.doc_type)):
            doc = lock_for_update(db.session.query(Document).filter_by(id=document_id)).populate_existing().first()
            if doc is None:
                raise NotFound(f"Document {document_id} not found", document_id=document_id)
            order = _get_order(doc.order_id, lock=True)

            require(actor, Action.ACKNOWLEDGE_DOCUMENT, doc, AccessPolicy.from_config(current_app.config))

            if doc.status == DOC_STATUS_ACKNOWLEDGED:
                return doc

            allowed = {ORDER_STATUS_APPROVED}
            if doc.doc_type == DOC_TYPE_RECEIPT:
                allowed.add(ORDER_STATUS_CLOSED)
            if order.status not in allowed:
                raise IllegalTransition(
                    f"Documents of a {order.status} order cannot be acknowledged",
                    order_id=order.id,
                    document_id=doc.id,
                )

            if doc.doc_type == DOC_TYPE_INVOICE:
                receiving_org = db.session.query(Organization).filter_by(id=doc.issued_to_org_id).first()
                effective_proof = proof_ref or doc.payment_proof_ref
                payment_proof_gate(doc.doc_type, bool(receiving_org and receiving_org.require_payment_proof), effective_proof)
                if proof_ref:
                    doc.payment_proof_ref = proof_ref

            now = utcnow()
            doc.status = DOC_STATUS_ACKNOWLEDGED
            doc.acknowledged_by = actor.user_id
            doc.acknowledged_at = now
            db.session.flush()

            append_event(
                event_type="document.acknowledged",
                entity_type="document",
                entity_id=doc.id,
                company_id=doc.company_id,
                order_id=order.id,
                document_id=doc.id,
                actor_user_id=actor.user_id,
                actor_org_id=actor.org_id,
                occurred_at=now,
                payload={"doc_type": doc.doc_type, "doc_no": doc.doc_no},
            )

            if doc.doc_type == DOC_TYPE_PAYMENT and fulfils_stock(order):
                fulfil_order(order, actor_id=actor.user_id)

            create_next_document(doc, order, actor_id=actor.user_id)

            if closes_order(doc.doc_type, close_policy()):
                order_state.close(order, actor_id=actor.user_id, actor_org_id=actor.org_id)

            queue(
                db.session,
                document_acknowledged,
                document_id=doc.id,
                order_id=order.id,
                doc_type=doc.doc_type,
                actor_user_id=actor.user_id,
            )
            db.session.commit()
            return doc

    return run_with_retry(_op)


def attach_payment_proof(document_id: int, *, actor, proof_ref: str) -> Document:
    """Record the storage reference of a payment proof on a pending INVOICE."""
    if not proof_ref or not proof_ref.strip():
        raise ValidationFailed("proof_ref is required")

    def _op():
        doc = get_document(document_id)
        with hold_keys(order_key(doc.order_id)):
            doc = lock_for_update(db.session.query(Document).filter_by(id=document_id)).populate_existing().first()
            require(actor, Action.ATTACH_PAYMENT_PROOF, doc, AccessPolicy.from_config(current_app.config))
            if doc.doc_type != DOC_TYPE_INVOICE:
                raise ValidationFailed("Payment proofs can only be attached to invoices", doc_type=doc.doc_type)
            if doc.status != DOC_STATUS_PENDING:
                raise IllegalTransition("Invoice is already acknowledged", document_id=doc.id)

            doc.payment_proof_ref = proof_ref.strip()
            db.session.flush()
            append_event(
                event_type="document.payment_proof_attached",
                entity_type="document",
                entity_id=doc.id,
                company_id=doc.company_id,
                order_id=doc.order_id,
                document_id=doc.id,
                actor_user_id=actor.user_id,
                actor_org_id=actor.org_id,
                payload={"proof_ref": doc.payment_proof_ref},
            )
            db.session.commit()
            return doc

    return run_with_retry(_op)


def list_documents(order_id: int) -> list[Document]:
    docs = db.session.query(Document).filter_by(order_id=order_id).all()
    rank = {doc_type: i for i, doc_type in enumerate(DOC_TYPES)}
    return sorted(docs, key=lambda d: rank.get(d.doc_type, len(rank)))


def get_document_snapshot(document_id: int, *, actor=None) -> dict[str, Any]:
    """
    Point-in-time read for the PDF renderer.

    Lines come from the payload captured when the document was created, so
    the snapshot never changes once issued.
    """
    doc = get_document(document_id, actor=actor)
    order = _get_order(doc.order_id)
    org_names = {
        row.id: row.org_name
        for row in db.session.query(Organization.id, Organization.org_name)
        .filter(Organization.id.in_({doc.issued_by_org_id, doc.issued_to_org_id}))
        .all()
    }
    payload = doc.payload_data
    return {
        "document": doc.to_dict(),
        "order": {
            "id": order.id,
            "order_no": payload.get("order_no", order.order_no),
            "order_type": payload.get("order_type", order.order_type),
            "buyer_org_id": payload.get("buyer_org_id", order.buyer_org_id),
            "seller_org_id": payload.get("seller_org_id", order.seller_org_id),
        },
        "issued_by": {"id": doc.issued_by_org_id, "name": org_names.get(doc.issued_by_org_id)},
        "issued_to": {"id": doc.issued_to_org_id, "name": org_names.get(doc.issued_to_org_id)},
        "lines": payload.get("lines", []),
        "total_amount_cents": payload.get("total_amount_cents"),
        "captured_at": payload.get("captured_at"),
    }


def workflow_progress(order_id: int) -> dict[str, Any]:
    """
    Completed chain steps for an order, as shown on the order's documents view.

    A step counts as done once its document is acknowledged or its successor exists.
    `awaiting_org_id` names the organization whose action unblocks the order:
    the approver while submitted, otherwise the receiver of the pending document.
    """
    order = _get_order(order_id)
    docs = {doc.doc_type: doc for doc in list_documents(order_id)}
    completed = 0
    next_step = None
    for doc_type in DOC_TYPES:
        doc = docs.get(doc_type)
        successor = NEXT_DOCUMENT[doc_type]
        if doc_type == DOC_TYPE_RECEIPT:
            done = doc is not None
        else:
            done = (doc is not None and doc.status == DOC_STATUS_ACKNOWLEDGED) or successor in docs
        if done:
            completed += 1
        elif next_step is None:
            next_step = doc_type
    total = len(DOC_TYPES)
    if order.status == ORDER_STATUS_SUBMITTED:
        awaiting_org_id = approving_org_id(order)
    elif next_step in docs:
        awaiting_org_id = acknowledging_org_id(order, next_step)
    else:
        awaiting_org_id = None
    return {
        "order_id": order_id,
        "completed_steps": completed,
        "total_steps": total,
        "percent": round(completed * 100 / total),
        "next_step": next_step,
        "awaiting_org_id": awaiting_org_id,
        "documents": {doc_type: (docs[doc_type].status if doc_type in docs else None) for doc_type in DOC_TYPES},
    }
