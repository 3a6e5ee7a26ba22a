# Overview: Order state machine (draft -> submitted -> approved -> closed) and order deletion.

from __future__ import annotations

from datetime import timedelta
from typing import Any, Iterable, Mapping

from flask import current_app

from ..errors import (
    IllegalTransition,
    InvalidHierarchy,
    NotFound,
    ParentOrderNotApproved,
    ValidationFailed,
)
from ..events import order_approved, order_created, order_deleted, order_submitted, queue
from ..extensions import db
from ..models import Order, OrderItem, ProductVariant, QRBatch, QRCode
from ..models.orders import (
    ORDER_TYPES,
    ORDER_TYPE_H2M,
    ORDER_TYPE_D2H,
    ORDER_TYPE_S2D,
    ORDER_STATUS_DRAFT,
    ORDER_STATUS_SUBMITTED,
    ORDER_STATUS_APPROVED,
    ORDER_STATUS_CLOSED,
    ORDER_STATUSES,
    QR_STATUS_PENDING,
)
from ..permissions import Action
from supplychain.time_utils import utcnow
from . import document_service
from .access_service import AccessPolicy, can_view, require
from .audit_service import append_event
from .concurrency import hold_keys, lock_for_update, order_key, run_with_retry
from .hierarchy_service import company_of, get_organization, pairing_problem
from .inventory_service import order_inventory_keys, release_order_allocations
from .numbering_service import next_number
from .order_state import DELETABLE_STATUSES, ensure_transition


# order type -> order type its parent order must have
PARENT_ORDER_TYPES = {
    ORDER_TYPE_D2H: ORDER_TYPE_H2M,
    ORDER_TYPE_S2D: ORDER_TYPE_D2H,
}


def _policy() -> AccessPolicy:
    return AccessPolicy.from_config(current_app.config)


def _parse_item(raw: Mapping[str, Any]) -> tuple[int, int, int]:
    try:
        variant_id = int(raw["variant_id"])
        qty = int(raw["qty"])
        unit_price_cents = int(raw.get("unit_price_cents") or 0)
    except (KeyError, TypeError, ValueError):
        raise ValidationFailed("Each item needs an integer variant_id and qty")
    if qty <= 0:
        raise ValidationFailed("Item quantity must be positive", variant_id=variant_id)
    if unit_price_cents < 0:
        raise ValidationFailed("Unit price cannot be negative", variant_id=variant_id)
    return variant_id, qty, unit_price_cents


def _require_variant(variant_id: int) -> None:
    variant = db.session.query(ProductVariant).filter_by(id=variant_id).first()
    if variant is None or not variant.is_active:
        raise NotFound(f"Variant {variant_id} not found or inactive", variant_id=variant_id)


def _put_item(order: Order, variant_id: int, qty: int, unit_price_cents: int) -> OrderItem:
    """One line per variant: adding the same variant again raises its quantity."""
    _require_variant(variant_id)
    for item in order.items:
        if item.variant_id == variant_id:
            item.qty += qty
            item.unit_price_cents = unit_price_cents
            return item
    item = OrderItem(variant_id=variant_id, qty=qty, unit_price_cents=unit_price_cents)
    order.items.append(item)
    return item


def get_order(order_id: int, *, actor=None) -> Order:
    """Load an order; with `actor`, orders of other companies read as missing."""
    order = db.session.query(Order).filter_by(id=order_id).first()
    if order is None or (actor is not None and not can_view(actor, order.company_id, _policy())):
        raise NotFound(f"Order {order_id} not found", order_id=order_id)
    return order


def _locked_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).populate_existing().first()
    if order is None:
        raise NotFound(f"Order {order_id} not found", order_id=order_id)
    return order


def create_order(
    *,
    actor,
    order_type: str,
    buyer_org_id: int,
    seller_org_id: int,
    items: Iterable[Mapping[str, Any]] = (),
    parent_order_id: int | None = None,
    notes: str | None = None,
) -> Order:
    """
    Create a draft order.

    The buyer/seller pairing is checked against the hierarchy before
    anything is written, so an S2D order to an unlinked distributor never
    exists even as a draft.
    """
    if order_type not in ORDER_TYPES:
        raise ValidationFailed(f"Unknown order type {order_type!r}", order_type=order_type)
    parsed = [_parse_item(raw) for raw in items or ()]

    def _op():
        buyer = get_organization(buyer_org_id)
        seller = get_organization(seller_org_id)
        if not (buyer.is_active and seller.is_active):
            raise ValidationFailed("Both organizations must be active")
        problem = pairing_problem(order_type, buyer, seller)
        if problem:
            raise InvalidHierarchy(problem, order_type=order_type, buyer_org_id=buyer.id, seller_org_id=seller.id)

        company_id = company_of(buyer.id)
        order = Order(
            order_type=order_type,
            company_id=company_id,
            buyer_org_id=buyer.id,
            seller_org_id=seller.id,
            parent_order_id=parent_order_id,
            status=ORDER_STATUS_DRAFT,
            notes=notes,
            created_by=actor.user_id,
            created_at=utcnow(),
        )
        require(actor, Action.CREATE_ORDER, order, _policy())

        if parent_order_id is not None:
            parent = get_order(parent_order_id)
            if parent.company_id != company_id or PARENT_ORDER_TYPES.get(order_type) != parent.order_type:
                raise ValidationFailed(
                    "Parent order must be an upstream order of the same company",
                    parent_order_id=parent_order_id,
                )

        order.order_no = next_number(company_id=company_id, sequence_type=f"ORDER_{order_type}")
        for variant_id, qty, unit_price_cents in parsed:
            _put_item(order, variant_id, qty, unit_price_cents)
        db.session.add(order)
        db.session.flush()

        append_event(
            event_type="order.created",
            entity_type="order",
            entity_id=order.id,
            company_id=company_id,
            order_id=order.id,
            actor_user_id=actor.user_id,
            actor_org_id=actor.org_id,
            occurred_at=order.created_at,
            payload={"order_type": order_type, "seller_org_id": seller.id},
        )
        queue(db.session, order_created, order_id=order.id, company_id=company_id)
        db.session.commit()
        return order

    return run_with_retry(_op)


def _edit_draft(order_id: int, actor, mutate) -> Order:
    def _op():
        with hold_keys(order_key(order_id)):
            order = _locked_order(order_id)
            require(actor, Action.EDIT_ORDER, order, _policy())
            if order.status != ORDER_STATUS_DRAFT:
                raise IllegalTransition(
                    f"Items of a {order.status} order are frozen",
                    order_id=order.id,
                    status=order.status,
                )
            mutate(order)
            db.session.flush()
            db.session.commit()
            return order

    return run_with_retry(_op)


def add_item(order_id: int, *, actor, variant_id: int, qty: int, unit_price_cents: int = 0) -> Order:
    parsed = _parse_item({"variant_id": variant_id, "qty": qty, "unit_price_cents": unit_price_cents})
    return _edit_draft(order_id, actor, lambda order: _put_item(order, *parsed))


def _find_item(order: Order, item_id: int) -> OrderItem:
    for item in order.items:
        if item.id == item_id:
            return item
    raise NotFound(f"Item {item_id} not found on order {order.order_no}", item_id=item_id)


def update_item(order_id: int, item_id: int, *, actor, qty: int | None = None, unit_price_cents: int | None = None) -> Order:
    def _mutate(order):
        item = _find_item(order, item_id)
        if qty is not None:
            if int(qty) <= 0:
                raise ValidationFailed("Item quantity must be positive", item_id=item_id)
            item.qty = int(qty)
        if unit_price_cents is not None:
            if int(unit_price_cents) < 0:
                raise ValidationFailed("Unit price cannot be negative", item_id=item_id)
            item.unit_price_cents = int(unit_price_cents)

    return _edit_draft(order_id, actor, _mutate)


def remove_item(order_id: int, item_id: int, *, actor) -> Order:
    return _edit_draft(order_id, actor, lambda order: order.items.remove(_find_item(order, item_id)))


def submit(order_id: int, *, actor) -> Order:
    """draft -> submitted. Requires at least one item; freezes the items."""
    def _op():
        with hold_keys(order_key(order_id)):
            order = _locked_order(order_id)
            require(actor, Action.SUBMIT_ORDER, order, _policy())
            ensure_transition(order, ORDER_STATUS_SUBMITTED)
            if not order.items:
                raise ValidationFailed("Cannot submit an order without items", order_id=order.id)

            order.status = ORDER_STATUS_SUBMITTED
            order.submitted_by = actor.user_id
            order.submitted_at = utcnow()
            db.session.flush()

            append_event(
                event_type="order.submitted",
                entity_type="order",
                entity_id=order.id,
                company_id=order.company_id,
                order_id=order.id,
                actor_user_id=actor.user_id,
                actor_org_id=actor.org_id,
                occurred_at=order.submitted_at,
            )
            queue(db.session, order_submitted, order_id=order.id, company_id=order.company_id)
            db.session.commit()
            return order

    return run_with_retry(_op)


def check_parent_order(order: Order, *, now=None) -> None:
    """
    Raise ParentOrderNotApproved unless the upstream order dependency holds.

    - order types listed in REQUIRE_PARENT_ORDER_TYPES must carry a parent
    - a parent must be approved (or closed)
    - with PARENT_ORDER_WINDOW_DAYS set, it must have been approved within that window
    """
    required = order.order_type in (current_app.config.get("REQUIRE_PARENT_ORDER_TYPES") or ())
    if order.parent_order_id is None:
        if required:
            raise ParentOrderNotApproved(
                f"{order.order_type} orders need an approved parent order",
                order_id=order.id,
            )
        return

    parent = db.session.query(Order).filter_by(id=order.parent_order_id).first()
    if parent is None or parent.status not in (ORDER_STATUS_APPROVED, ORDER_STATUS_CLOSED):
        raise ParentOrderNotApproved(
            "Parent order is not approved",
            order_id=order.id,
            parent_order_id=order.parent_order_id,
            parent_status=parent.status if parent else None,
        )

    window_days = current_app.config.get("PARENT_ORDER_WINDOW_DAYS")
    if window_days:
        now = now or utcnow()
        if parent.approved_at is None or now - parent.approved_at > timedelta(days=window_days):
            raise ParentOrderNotApproved(
                f"Parent order was not approved within the last {window_days} days",
                order_id=order.id,
                parent_order_id=parent.id,
            )


def approve(order_id: int, *, actor) -> Order:
    """
    submitted -> approved, issuing the PO in the same transaction.

    A failed approval leaves no trace: no status change and no PO.
    """
    def _op():
        with hold_keys(order_key(order_id)):
            order = _locked_order(order_id)
            ensure_transition(order, ORDER_STATUS_APPROVED)
            require(actor, Action.APPROVE_ORDER, order, _policy())
            check_parent_order(order)

            order.status = ORDER_STATUS_APPROVED
            order.approved_by = actor.user_id
            order.approved_at = utcnow()
            db.session.flush()

            append_event(
                event_type="order.approved",
                entity_type="order",
                entity_id=order.id,
                company_id=order.company_id,
                order_id=order.id,
                actor_user_id=actor.user_id,
                actor_org_id=actor.org_id,
                occurred_at=order.approved_at,
            )
            document_service.create_po(order, actor_id=actor.user_id)
            queue(db.session, order_approved, order_id=order.id, company_id=order.company_id)
            db.session.commit()
            return order

    return run_with_retry(_op)


def delete_order(order_id: int, *, actor) -> None:
    """
    Delete a draft or submitted order with everything hanging off it.

    Blocked once any of the order's QR codes left 'pending'. Outstanding
    stock allocations are handed back with order_cancelled movements. The
    whole cascade is one transaction.
    """
    def _op():
        order = get_order(order_id)
        with hold_keys(order_key(order_id), *order_inventory_keys(order)):
            order = _locked_order(order_id)
            require(actor, Action.DELETE_ORDER, order, _policy())
            if order.status not in DELETABLE_STATUSES:
                raise IllegalTransition(
                    f"Only draft or submitted orders can be deleted (order is {order.status})",
                    order_id=order.id,
                    status=order.status,
                )

            finalized = (
                db.session.query(QRCode.id)
                .filter(QRCode.order_id == order.id, QRCode.status != QR_STATUS_PENDING)
                .count()
            )
            if finalized:
                raise IllegalTransition(
                    "Order has QR codes that are already in use",
                    order_id=order.id,
                    finalized_qr_codes=finalized,
                )

            children = db.session.query(Order.id).filter(Order.parent_order_id == order.id).count()
            if children:
                raise IllegalTransition(
                    "Order is the parent of other orders",
                    order_id=order.id,
                    child_orders=children,
                )

            release_order_allocations(order, actor_id=actor.user_id)

            db.session.query(QRCode).filter(QRCode.order_id == order.id).delete(synchronize_session=False)
            db.session.query(QRBatch).filter(QRBatch.order_id == order.id).delete(synchronize_session=False)

            snapshot = {
                "order_no": order.order_no,
                "status": order.status,
                "items": len(order.items),
                "documents": [doc.doc_type for doc in order.documents],
            }
            company_id = order.company_id
            # Items and documents go with the order (delete-orphan cascade)
            db.session.delete(order)
            db.session.flush()

            append_event(
                event_type="order.deleted",
                entity_type="order",
                entity_id=order_id,
                company_id=company_id,
                order_id=order_id,
                actor_user_id=actor.user_id,
                actor_org_id=actor.org_id,
                payload=snapshot,
            )
            queue(db.session, order_deleted, order_id=order_id, company_id=company_id)
            db.session.commit()

    run_with_retry(_op)


def list_orders(
    *,
    company_id: int | None = None,
    org_id: int | None = None,
    status: str | None = None,
    order_type: str | None = None,
    limit: int = 200,
) -> list[Order]:
    q = db.session.query(Order)
    if company_id is not None:
        q = q.filter(Order.company_id == company_id)
    if org_id is not None:
        q = q.filter((Order.buyer_org_id == org_id) | (Order.seller_org_id == org_id))
    if status is not None:
        if status not in ORDER_STATUSES:
            raise ValidationFailed(f"Unknown order status: {status}", status=status)
        q = q.filter(Order.status == status)
    if order_type is not None:
        q = q.filter(Order.order_type == order_type)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()

