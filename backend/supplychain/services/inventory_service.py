# Overview: Append-only stock ledger and its materialized positions.

# backend/supplychain/services/inventory_service.py

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime
from typing import Any, Iterable

from flask import current_app
from sqlalchemy import func

from ..errors import IllegalTransition, InsufficientStock, NotFound, ValidationFailed
from ..events import queue, stock_movement_recorded
from ..extensions import db
from ..models import (
    AdjustmentReason,
    InventoryPosition,
    Order,
    ProductVariant,
    StockMovement,
)
from ..models.inventory import (
    MOVEMENT_KINDS,
    MOVEMENT_ADDITION,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_TRANSFER_OUT,
    MOVEMENT_TRANSFER_IN,
    MOVEMENT_ALLOCATION,
    MOVEMENT_DEALLOCATION,
    MOVEMENT_ORDER_FULFILLMENT,
    MOVEMENT_ORDER_CANCELLED,
    REFERENCE_ORDER,
    REFERENCE_ADJUSTMENT,
)
from ..models.orders import ORDER_STATUS_APPROVED
from ..permissions import Action
from supplychain.time_utils import utcnow
from .access_service import AccessPolicy, LocationSubject, require
from .concurrency import hold_keys, inventory_key, lock_for_update, order_key, run_with_retry
from .hierarchy_service import company_of
"""
Stock ledger invariants (authoritative)

Ledger model:
- StockMovement rows are the source of truth; rows are never updated or deleted.
- quantity_on_hand(variant, org)  == SUM(quantity_change)  replayed in (sequence, id) order
- quantity_allocated(variant, org) == SUM(allocated_change) replayed in the same order
- quantity_available == quantity_on_hand - quantity_allocated
- InventoryPosition is a cache of that replay, written in the same transaction
  as the movement; recompute_position() must reproduce it exactly.

Movement kinds (signed quantity_change argument -> on-hand delta / allocated delta):
- addition           +q -> (+q, 0)
- adjustment         +q or -q -> (q, 0)
- transfer_out       -q -> (-q, 0)
- transfer_in        +q -> (+q, 0)
- allocation         +q -> (0, +q)
- deallocation       -q -> (0, -q)
- order_cancelled    -q -> (0, -q)
- order_fulfillment  -q -> (-q, -min(q, allocation still held for the referenced order))

Business rules:
- No movement may leave quantity_on_hand or quantity_allocated below zero.
- No movement may leave quantity_available below zero, except an adjustment
  flagged as a physical count that carries an audited reason; such rows are
  stored with negative_override=True.
- Weighted average cost moves only on additions / transfer_in rows that carry
  unit_cost_cents: (qty_before*avg + q*cost) / (qty_before + q), half-up to the cent.
- A repeated idempotency_key returns the row already written for it.

Concurrency:
- Public operations serialize on ("inventory", variant, org) keys, lock the
  position row FOR UPDATE, commit while still holding the keys and retry
  DB-level conflicts (see services.concurrency).
- record_movement() is the lock-free inner step for composed operations
  (transfers, document acknowledgement) that already hold the keys and own
  the transaction.
"""


# kind -> (bucket moved by quantity_change, required sign; 0 = either)
_KIND_RULES = {
    MOVEMENT_ADDITION: ("on_hand", 1),
    MOVEMENT_ADJUSTMENT: ("on_hand", 0),
    MOVEMENT_TRANSFER_OUT: ("on_hand", -1),
    MOVEMENT_TRANSFER_IN: ("on_hand", 1),
    MOVEMENT_ALLOCATION: ("allocated", 1),
    MOVEMENT_DEALLOCATION: ("allocated", -1),
    MOVEMENT_ORDER_CANCELLED: ("allocated", -1),
    MOVEMENT_ORDER_FULFILLMENT: ("both", -1),
}

_COSTED_KINDS = frozenset({MOVEMENT_ADDITION, MOVEMENT_TRANSFER_IN})


def movement_deltas(kind: str, quantity_change: int, *, held_for_order: int = 0) -> tuple[int, int]:
    """
    Translate a signed movement quantity into (on_hand delta, allocated delta).

    held_for_order is the allocation still outstanding for the referenced
    order; only order_fulfillment uses it.
    """
    rule = _KIND_RULES.get(kind)
    if rule is None:
        raise ValidationFailed(f"Unknown movement kind {kind!r}", kind=kind)
    bucket, sign = rule

    if not isinstance(quantity_change, int) or isinstance(quantity_change, bool) or quantity_change == 0:
        raise ValidationFailed("quantity_change must be a non-zero integer", kind=kind)
    if sign and (quantity_change > 0) != (sign > 0):
        expected = "positive" if sign > 0 else "negative"
        raise ValidationFailed(
            f"{kind} movements require a {expected} quantity_change",
            kind=kind,
            quantity_change=quantity_change,
        )

    if bucket == "on_hand":
        return quantity_change, 0
    if bucket == "allocated":
        return 0, quantity_change
    released = min(-quantity_change, max(held_for_order, 0))
    return quantity_change, -released


def next_average_cost(
    on_hand_before: int,
    average_before: int | None,
    quantity_in: int,
    unit_cost_cents: int,
) -> int:
    """Weighted average after receiving `quantity_in` units at `unit_cost_cents`."""
    if average_before is None or on_hand_before <= 0:
        return unit_cost_cents
    total_units = on_hand_before + quantity_in
    total_cost = on_hand_before * average_before + quantity_in * unit_cost_cents
    # nearest-cent rounding (half-up)
    return (total_cost + (total_units // 2)) // total_units


def replay(movements: Iterable[StockMovement]) -> dict[str, Any]:
    """Fold ledger rows (already in ledger order) into position values."""
    on_hand = 0
    allocated = 0
    average = None
    last_id = None
    last_sequence = 0
    for mv in movements:
        if mv.movement_type in _COSTED_KINDS and mv.unit_cost_cents is not None and mv.quantity_change > 0:
            average = next_average_cost(on_hand, average, mv.quantity_change, mv.unit_cost_cents)
        on_hand += mv.quantity_change
        allocated += mv.allocated_change or 0
        last_id = mv.id
        last_sequence = mv.sequence
    return {
        "quantity_on_hand": on_hand,
        "quantity_allocated": allocated,
        "quantity_available": on_hand - allocated,
        "average_cost_cents": average,
        "last_movement_id": last_id,
        "last_sequence": last_sequence,
    }


def _ledger_rows(variant_id: int, org_id: int) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter(
            StockMovement.variant_id == variant_id,
            StockMovement.organization_id == org_id,
        )
        .order_by(StockMovement.sequence.asc(), StockMovement.id.asc())
        .all()
    )


def _latest_sequence(variant_id: int, org_id: int) -> int:
    return int(
        db.session.query(func.coalesce(func.max(StockMovement.sequence), 0))
        .filter(
            StockMovement.variant_id == variant_id,
            StockMovement.organization_id == org_id,
        )
        .scalar()
        or 0
    )


def _apply_values(position: InventoryPosition, values: dict[str, Any]) -> None:
    position.quantity_on_hand = values["quantity_on_hand"]
    position.quantity_allocated = values["quantity_allocated"]
    position.quantity_available = values["quantity_available"]
    position.average_cost_cents = values["average_cost_cents"]
    position.last_movement_id = values["last_movement_id"]
    position.last_sequence = values["last_sequence"]
    position.updated_at = utcnow()


def _locked_position(variant_id: int, org_id: int) -> InventoryPosition:
    """Load (or create) the position row under FOR UPDATE, healing a lagging cache."""
    query = db.session.query(InventoryPosition).filter_by(variant_id=variant_id, organization_id=org_id)
    position = lock_for_update(query).populate_existing().first()
    if position is None:
        position = InventoryPosition(
            variant_id=variant_id,
            organization_id=org_id,
            quantity_on_hand=0,
            quantity_allocated=0,
            quantity_available=0,
            last_sequence=0,
        )
        db.session.add(position)
        db.session.flush()

    latest = _latest_sequence(variant_id, org_id)
    if (position.last_sequence or 0) != latest:
        current_app.logger.warning(
            "Inventory position lagging ledger for variant=%s org=%s (cached seq %s, ledger seq %s); rebuilding",
            variant_id, org_id, position.last_sequence, latest,
        )
        _apply_values(position, replay(_ledger_rows(variant_id, org_id)))
        db.session.flush()
    return position


def _require_variant(variant_id: int) -> ProductVariant:
    variant = db.session.query(ProductVariant).filter_by(id=variant_id).first()
    if variant is None:
        raise NotFound(f"Variant {variant_id} not found", variant_id=variant_id)
    return variant


def outstanding_allocation(variant_id: int, org_id: int, order_id: int) -> int:
    """Allocation still held at (variant, org) on behalf of `order_id`."""
    held = (
        db.session.query(func.coalesce(func.sum(StockMovement.allocated_change), 0))
        .filter(
            StockMovement.variant_id == variant_id,
            StockMovement.organization_id == org_id,
            StockMovement.reference_type == REFERENCE_ORDER,
            StockMovement.reference_id == order_id,
        )
        .scalar()
    )
    return max(int(held or 0), 0)


def find_by_idempotency_key(key: str) -> StockMovement | None:
    return db.session.query(StockMovement).filter_by(idempotency_key=key).first()


def record_movement(
    kind: str,
    variant_id: int,
    org_id: int,
    quantity_change: int,
    *,
    actor_id: int | None = None,
    company_id: int | None = None,
    unit_cost_cents: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    reference_no: str | None = None,
    reason: str | None = None,
    notes: str | None = None,
    physical_count: bool = False,
    idempotency_key: str | None = None,
) -> StockMovement:
    """
    Write one ledger row and move the position with it.

    The caller holds the inventory key and owns the transaction (no commit here).
    """
    if kind not in MOVEMENT_KINDS:
        raise ValidationFailed(f"Unknown movement kind {kind!r}", kind=kind)

    if idempotency_key:
        existing = find_by_idempotency_key(idempotency_key)
        if existing is not None:
            return existing

    if unit_cost_cents is not None and unit_cost_cents < 0:
        raise ValidationFailed("unit_cost_cents cannot be negative")
    if physical_count and kind != MOVEMENT_ADJUSTMENT:
        raise ValidationFailed("Only adjustments can be recorded as physical counts", kind=kind)
    if physical_count and not (reason and reason.strip()):
        raise ValidationFailed("A physical count adjustment requires an audited reason")

    _require_variant(variant_id)
    if company_id is None:
        company_id = company_of(org_id)

    held = 0
    if kind == MOVEMENT_ORDER_FULFILLMENT and reference_type == REFERENCE_ORDER and reference_id is not None:
        held = outstanding_allocation(variant_id, org_id, reference_id)
    on_hand_delta, allocated_delta = movement_deltas(kind, quantity_change, held_for_order=held)

    position = _locked_position(variant_id, org_id)
    on_hand_before = position.quantity_on_hand
    allocated_before = position.quantity_allocated
    on_hand_after = on_hand_before + on_hand_delta
    allocated_after = allocated_before + allocated_delta
    available_after = on_hand_after - allocated_after

    if on_hand_after < 0:
        raise InsufficientStock(
            f"Insufficient stock on hand: {on_hand_before} on hand, change {on_hand_delta}",
            variant_id=variant_id,
            org_id=org_id,
            on_hand=on_hand_before,
            requested=on_hand_delta,
        )
    if allocated_after < 0:
        raise InsufficientStock(
            f"Cannot release {-allocated_delta} units; only {allocated_before} allocated",
            variant_id=variant_id,
            org_id=org_id,
            allocated=allocated_before,
            requested=allocated_delta,
        )
    negative_override = False
    if available_after < 0:
        if kind == MOVEMENT_ADJUSTMENT and physical_count:
            negative_override = True
        else:
            raise InsufficientStock(
                f"Insufficient available stock: {position.quantity_available} available",
                variant_id=variant_id,
                org_id=org_id,
                available=position.quantity_available,
                requested=on_hand_delta - allocated_delta,
            )

    now = utcnow()
    movement = StockMovement(
        movement_type=kind,
        variant_id=variant_id,
        organization_id=org_id,
        company_id=company_id,
        sequence=(position.last_sequence or 0) + 1,
        quantity_change=on_hand_delta,
        allocated_change=allocated_delta,
        quantity_before=on_hand_before,
        quantity_after=on_hand_after,
        allocated_before=allocated_before,
        allocated_after=allocated_after,
        unit_cost_cents=unit_cost_cents,
        reference_type=reference_type,
        reference_id=reference_id,
        reference_no=reference_no,
        reason=reason[:255] if reason else None,
        notes=notes,
        negative_override=negative_override,
        idempotency_key=idempotency_key,
        created_by=actor_id,
        created_at=now,
    )
    db.session.add(movement)
    db.session.flush()

    if kind in _COSTED_KINDS and unit_cost_cents is not None:
        position.average_cost_cents = next_average_cost(
            on_hand_before, position.average_cost_cents, on_hand_delta, unit_cost_cents
        )
    position.quantity_on_hand = on_hand_after
    position.quantity_allocated = allocated_after
    position.quantity_available = available_after
    position.last_movement_id = movement.id
    position.last_sequence = movement.sequence
    position.updated_at = now
    db.session.flush()

    queue(
        db.session,
        stock_movement_recorded,
        movement_id=movement.id,
        movement_type=kind,
        variant_id=variant_id,
        org_id=org_id,
        quantity_available=available_after,
    )
    return movement


def apply_movement(kind: str, variant_id: int, org_id: int, quantity_change: int, *, commit: bool = True, **fields) -> StockMovement:
    """
    Apply one movement atomically.

    With commit=False the caller must already hold the inventory key and
    own the transaction; the call degrades to record_movement().
    """
    if not commit:
        return record_movement(kind, variant_id, org_id, quantity_change, **fields)

    def _op():
        with hold_keys(inventory_key(variant_id, org_id)):
            movement = record_movement(kind, variant_id, org_id, quantity_change, **fields)
            db.session.commit()
            return movement

    return run_with_retry(_op)


def _location_subject(org_id: int) -> LocationSubject:
    return LocationSubject(org_id=org_id, company_id=company_of(org_id))


def _policy() -> AccessPolicy:
    return AccessPolicy.from_config(current_app.config)


def add_stock(
    variant_id: int,
    org_id: int,
    quantity: int,
    *,
    actor,
    unit_cost_cents: int | None = None,
    reference_no: str | None = None,
    notes: str | None = None,
    idempotency_key: str | None = None,
) -> StockMovement:
    """Receive stock into a location (goods received, opening balance, ...)."""
    require(actor, Action.MANAGE_STOCK, _location_subject(org_id), _policy())
    return apply_movement(
        MOVEMENT_ADDITION,
        variant_id,
        org_id,
        quantity,
        actor_id=actor.user_id,
        unit_cost_cents=unit_cost_cents,
        reference_no=reference_no,
        notes=notes,
        idempotency_key=idempotency_key,
    )


def get_adjustment_reason(reason_code: str) -> AdjustmentReason:
    reason = db.session.query(AdjustmentReason).filter_by(reason_code=reason_code).first()
    if reason is None or not reason.is_active:
        raise ValidationFailed(f"Unknown or inactive adjustment reason {reason_code!r}", reason_code=reason_code)
    return reason


def adjust_stock(
    variant_id: int,
    org_id: int,
    quantity_change: int,
    *,
    actor,
    reason_code: str | None = None,
    reason: str | None = None,
    physical_count: bool = False,
    notes: str | None = None,
    idempotency_key: str | None = None,
) -> StockMovement:
    """
    Signed manual adjustment.

    Reasons flagged requires_approval need a power user once |quantity_change|
    exceeds LARGE_ADJUSTMENT_THRESHOLD. A physical count may drive
    availability negative (allocated stock turned out to be missing).
    """
    policy = _policy()
    subject = _location_subject(org_id)
    require(actor, Action.MANAGE_STOCK, subject, policy)

    reason_text = reason
    reason_row = None
    if reason_code:
        reason_row = get_adjustment_reason(reason_code)
        reason_text = reason or reason_row.reason_name
        threshold = current_app.config.get("LARGE_ADJUSTMENT_THRESHOLD", 100)
        if reason_row.requires_approval and abs(quantity_change) > threshold:
            require(actor, Action.LARGE_ADJUSTMENT, subject, policy)

    return apply_movement(
        MOVEMENT_ADJUSTMENT,
        variant_id,
        org_id,
        quantity_change,
        actor_id=actor.user_id,
        company_id=subject.company_id,
        reference_type=REFERENCE_ADJUSTMENT if reason_row else None,
        reference_id=reason_row.id if reason_row else None,
        reference_no=reason_row.reason_code if reason_row else None,
        reason=reason_text,
        physical_count=physical_count,
        notes=notes,
        idempotency_key=idempotency_key,
    )


# =============================================================================
# Order-driven movements
# =============================================================================

def order_quantities(order: Order) -> "OrderedDict[int, int]":
    """Ordered quantity per variant (line items merged)."""
    totals: OrderedDict[int, int] = OrderedDict()
    for item in order.items:
        totals[item.variant_id] = totals.get(item.variant_id, 0) + item.qty
    return totals


def order_inventory_keys(order: Order) -> list[tuple]:
    return [inventory_key(variant_id, order.seller_org_id) for variant_id in order_quantities(order)]


def fulfilment_key(order_id: int, variant_id: int) -> str:
    return f"order:{order_id}:fulfil:{variant_id}"


def fulfil_order_line(order: Order, variant_id: int, quantity: int, *, actor_id: int | None = None) -> StockMovement:
    """Stock leaves the seller for one variant of `order` (exactly once per variant)."""
    return record_movement(
        MOVEMENT_ORDER_FULFILLMENT,
        variant_id,
        order.seller_org_id,
        -quantity,
        actor_id=actor_id,
        company_id=order.company_id,
        reference_type=REFERENCE_ORDER,
        reference_id=order.id,
        reference_no=order.order_no,
        idempotency_key=fulfilment_key(order.id, variant_id),
    )


def fulfil_order(order: Order, *, actor_id: int | None = None) -> list[StockMovement]:
    return [
        fulfil_order_line(order, variant_id, qty, actor_id=actor_id)
        for variant_id, qty in order_quantities(order).items()
    ]


def missing_fulfilments(order: Order) -> list[int]:
    """Variants of `order` whose fulfilment row was never written."""
    return [
        variant_id
        for variant_id in order_quantities(order)
        if find_by_idempotency_key(fulfilment_key(order.id, variant_id)) is None
    ]


def release_order_allocations(order: Order, *, actor_id: int | None = None, kind: str = MOVEMENT_ORDER_CANCELLED) -> list[StockMovement]:
    """Return every unit still allocated to `order` to available stock (inner step)."""
    released = []
    for variant_id in order_quantities(order):
        held = outstanding_allocation(variant_id, order.seller_org_id, order.id)
        if held <= 0:
            continue
        released.append(
            record_movement(
                kind,
                variant_id,
                order.seller_org_id,
                -held,
                actor_id=actor_id,
                company_id=order.company_id,
                reference_type=REFERENCE_ORDER,
                reference_id=order.id,
                reference_no=order.order_no,
            )
        )
    return released


def _load_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).populate_existing().first()
    if order is None:
        raise NotFound(f"Order {order_id} not found", order_id=order_id)
    return order


def _order_keys(order_id: int) -> list[tuple]:
    order = db.session.query(Order).filter_by(id=order_id).first()
    if order is None:
        raise NotFound(f"Order {order_id} not found", order_id=order_id)
    return [order_key(order_id)] + order_inventory_keys(order)


def allocate_for_order(order_id: int, *, actor) -> list[StockMovement]:
    """
    Reserve the seller's stock for an approved order.

    Tops each variant up to the ordered quantity, so calling it again is a no-op.
    """
    def _op():
        with hold_keys(*_order_keys(order_id)):
            order = _load_order(order_id)
            require(actor, Action.ALLOCATE_ORDER, order, _policy())
            if order.status != ORDER_STATUS_APPROVED:
                raise IllegalTransition(
                    f"Stock can only be allocated for approved orders (order is {order.status})",
                    order_id=order.id,
                    status=order.status,
                )
            movements = []
            for variant_id, qty in order_quantities(order).items():
                short = qty - outstanding_allocation(variant_id, order.seller_org_id, order.id)
                if short <= 0:
                    continue
                movements.append(
                    record_movement(
                        MOVEMENT_ALLOCATION,
                        variant_id,
                        order.seller_org_id,
                        short,
                        actor_id=actor.user_id,
                        company_id=order.company_id,
                        reference_type=REFERENCE_ORDER,
                        reference_id=order.id,
                        reference_no=order.order_no,
                    )
                )
            db.session.commit()
            return movements

    return run_with_retry(_op)


def deallocate_for_order(order_id: int, *, actor) -> list[StockMovement]:
    """Give back everything still allocated to an order."""
    def _op():
        with hold_keys(*_order_keys(order_id)):
            order = _load_order(order_id)
            require(actor, Action.ALLOCATE_ORDER, order, _policy())
            movements = release_order_allocations(order, actor_id=actor.user_id, kind=MOVEMENT_DEALLOCATION)
            db.session.commit()
            return movements

    return run_with_retry(_op)


# =============================================================================
# Reads and rebuilds
# =============================================================================

def get_position(variant_id: int, org_id: int) -> dict[str, Any]:
    position = (
        db.session.query(InventoryPosition)
        .filter_by(variant_id=variant_id, organization_id=org_id)
        .populate_existing()
        .first()
    )
    if position is None:
        return {
            "variant_id": variant_id,
            "organization_id": org_id,
            "quantity_on_hand": 0,
            "quantity_allocated": 0,
            "quantity_available": 0,
            "average_cost_cents": None,
            "last_movement_id": None,
            "updated_at": None,
        }
    return position.to_dict()


def list_positions(org_id: int) -> list[InventoryPosition]:
    return (
        db.session.query(InventoryPosition)
        .filter_by(organization_id=org_id)
        .order_by(InventoryPosition.variant_id.asc())
        .all()
    )


def list_movements(
    *,
    variant_id: int | None = None,
    org_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    movement_type: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = 500,
) -> list[StockMovement]:
    q = db.session.query(StockMovement)
    if variant_id is not None:
        q = q.filter(StockMovement.variant_id == variant_id)
    if org_id is not None:
        q = q.filter(StockMovement.organization_id == org_id)
    if reference_type is not None:
        q = q.filter(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        q = q.filter(StockMovement.reference_id == reference_id)
    if movement_type is not None:
        q = q.filter(StockMovement.movement_type == movement_type)
    if since is not None:
        q = q.filter(StockMovement.created_at >= since)
    if until is not None:
        q = q.filter(StockMovement.created_at < until)
    return q.order_by(StockMovement.id.asc()).limit(limit).all()


def recompute_position(variant_id: int, org_id: int, *, persist: bool = False) -> dict[str, Any]:
    """
    Replay the ledger for one key.

    With persist=True the cached position is overwritten with the replayed
    values and committed.
    """
    if not persist:
        return replay(_ledger_rows(variant_id, org_id))

    def _op():
        with hold_keys(inventory_key(variant_id, org_id)):
            values = replay(_ledger_rows(variant_id, org_id))
            query = db.session.query(InventoryPosition).filter_by(variant_id=variant_id, organization_id=org_id)
            position = lock_for_update(query).populate_existing().first()
            if position is None:
                position = InventoryPosition(variant_id=variant_id, organization_id=org_id)
                db.session.add(position)
            _apply_values(position, values)
            db.session.commit()
            return values

    return run_with_retry(_op)


_COMPARED = ("quantity_on_hand", "quantity_allocated", "quantity_available", "average_cost_cents", "last_movement_id")


def verify_positions() -> list[dict[str, Any]]:
    """Every (variant, org) key whose cached position disagrees with a ledger replay."""
    keys = {
        (row.variant_id, row.organization_id)
        for row in db.session.query(StockMovement.variant_id, StockMovement.organization_id).distinct()
    }
    keys |= {
        (row.variant_id, row.organization_id)
        for row in db.session.query(InventoryPosition.variant_id, InventoryPosition.organization_id)
    }

    mismatches = []
    for variant_id, org_id in sorted(keys):
        expected = replay(_ledger_rows(variant_id, org_id))
        position = (
            db.session.query(InventoryPosition)
            .filter_by(variant_id=variant_id, organization_id=org_id)
            .populate_existing()
            .first()
        )
        if position is None:
            if expected["last_movement_id"] is None:
                continue
            cached = None
        else:
            cached = {name: getattr(position, name) for name in _COMPARED}
        if cached is None or any(cached[name] != expected[name] for name in _COMPARED):
            mismatches.append(
                {
                    "variant_id": variant_id,
                    "organization_id": org_id,
                    "cached": cached,
                    "expected": {name: expected[name] for name in _COMPARED},
                }
            )
    return mismatches
