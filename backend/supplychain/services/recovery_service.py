# Overview: Restart-time scan that completes half-finished workflow steps.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from flask import current_app

from ..errors import WorkflowError
from ..extensions import db
from ..models import Order
from ..models.documents import DOC_STATUS_ACKNOWLEDGED, DOC_TYPE_PAYMENT, DOC_TYPE_PO
from ..models.orders import ORDER_STATUS_APPROVED, ORDER_STATUS_CLOSED
from . import document_service, order_state
from .concurrency import hold_keys, lock_for_update, order_key
from .inventory_service import (
    fulfil_order_line,
    missing_fulfilments,
    order_inventory_keys,
    order_quantities,
    recompute_position,
    verify_positions,
)
"""
Recovery invariants

Every workflow operation commits as one transaction, so a crash normally
leaves nothing half-done. This scan covers what can still be out of line
(crashes between separately committed steps in older data, manual edits,
imports) and repairs it with the same idempotent steps the workflow uses:

1. approved order without a PO            -> create the PO
2. PAYMENT acknowledged, fulfilment rows missing -> write them (idempotency keys)
3. acknowledged document without successor -> create the successor
4. chain finished but order not closed    -> close it
5. position cache disagrees with a ledger replay -> rebuild it from the ledger

Each order is repaired in its own transaction under its order and
inventory keys. Running recover() twice in a row, the second run finds nothing.
"""


@dataclass
class RecoveryReport:
    dry_run: bool = False
    created_purchase_orders: list[int] = field(default_factory=list)
    fulfilled_orders: list[int] = field(default_factory=list)
    created_successors: list[dict[str, Any]] = field(default_factory=list)
    closed_orders: list[int] = field(default_factory=list)
    rebuilt_positions: list[dict[str, Any]] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)

    @property
    def repaired(self) -> int:
        return (
            len(self.created_purchase_orders)
            + len(self.fulfilled_orders)
            + len(self.created_successors)
            + len(self.closed_orders)
            + len(self.rebuilt_positions)
        )

    def merge(self, other: RecoveryReport) -> None:
        self.created_purchase_orders.extend(other.created_purchase_orders)
        self.fulfilled_orders.extend(other.fulfilled_orders)
        self.created_successors.extend(other.created_successors)
        self.closed_orders.extend(other.closed_orders)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "created_purchase_orders": self.created_purchase_orders,
            "fulfilled_orders": self.fulfilled_orders,
            "created_successors": self.created_successors,
            "closed_orders": self.closed_orders,
            "rebuilt_positions": self.rebuilt_positions,
            "failures": self.failures,
            "repaired": self.repaired,
        }


def _repair_order(order: Order, report: RecoveryReport, *, dry_run: bool) -> None:
    docs = {doc.doc_type: doc for doc in document_service.list_documents(order.id)}

    if order.status == ORDER_STATUS_APPROVED and DOC_TYPE_PO not in docs:
        report.created_purchase_orders.append(order.id)
        if not dry_run:
            docs[DOC_TYPE_PO] = document_service.create_po(order, actor_id=order.approved_by)

    payment = docs.get(DOC_TYPE_PAYMENT)
    if payment is not None and payment.status == DOC_STATUS_ACKNOWLEDGED and document_service.fulfils_stock(order):
        missing = missing_fulfilments(order)
        if missing:
            report.fulfilled_orders.append(order.id)
            if not dry_run:
                quantities = order_quantities(order)
                for variant_id in missing:
                    fulfil_order_line(order, variant_id, quantities[variant_id], actor_id=payment.acknowledged_by)

    for doc in list(docs.values()):
        if doc.status != DOC_STATUS_ACKNOWLEDGED:
            continue
        next_type = document_service.NEXT_DOCUMENT.get(doc.doc_type)
        if next_type is None or next_type in docs:
            continue
        report.created_successors.append({"order_id": order.id, "after": doc.doc_type, "doc_type": next_type})
        if not dry_run:
            docs[next_type] = document_service.create_next_document(doc, order, actor_id=doc.acknowledged_by)

    policy = document_service.close_policy()
    finished = any(
        doc.status == DOC_STATUS_ACKNOWLEDGED and document_service.closes_order(doc.doc_type, policy)
        for doc in docs.values()
    )
    if finished and order.status == ORDER_STATUS_APPROVED:
        report.closed_orders.append(order.id)
        if not dry_run:
            order_state.close(order, reason="recovery")


def recover(*, dry_run: bool = False) -> RecoveryReport:
    """Scan open and closed orders plus every inventory position and repair what is inconsistent."""
    report = RecoveryReport(dry_run=dry_run)
    logger = current_app.logger

    order_ids = [
        row.id
        for row in db.session.query(Order.id)
        .filter(Order.status.in_((ORDER_STATUS_APPROVED, ORDER_STATUS_CLOSED)))
        .order_by(Order.id)
        .all()
    ]
    for order_id in order_ids:
        order = db.session.query(Order).filter_by(id=order_id).first()
        if order is None:
            continue
        # Entries reach the report only once the order's transaction has ended cleanly
        staged = RecoveryReport(dry_run=dry_run)
        try:
            with hold_keys(order_key(order.id), *order_inventory_keys(order)):
                order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).populate_existing().first()
                _repair_order(order, staged, dry_run=dry_run)
                if dry_run:
                    db.session.rollback()
                else:
                    db.session.commit()
        except WorkflowError as exc:
            db.session.rollback()
            logger.error("Recovery could not repair order %s: %s", order_id, exc.message)
            report.failures.append({"order_id": order_id, "error": exc.to_dict()})
        else:
            report.merge(staged)

    for mismatch in verify_positions():
        report.rebuilt_positions.append(mismatch)
        if not dry_run:
            recompute_position(mismatch["variant_id"], mismatch["organization_id"], persist=True)

    if report.repaired:
        logger.warning("Recovery %s %d inconsistencies", "found" if dry_run else "repaired", report.repaired)
    else:
        logger.info("Recovery found nothing to repair")
    return report
