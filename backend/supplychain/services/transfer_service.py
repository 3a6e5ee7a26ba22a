# backend/supplychain/services/transfer_service.py
"""
Inter-location stock transfers.

WHY: Moving stock between two organizations of one company must leave an
auditable pair of ledger rows: transfer_out at the source when the transfer
is created, transfer_in at the destination when it is received. Both rows
reference the same transfer id.

LIFECYCLE:
1. pending: transfer created, transfer_out written at the source
2. received: destination confirmed, transfer_in written at the destination

Until step 2 the shipped quantity is in neither location's on-hand.
That in-transit gap is kept as is.
"""
from __future__ import annotations

from typing import Any, Iterable, Mapping

from flask import current_app

from ..errors import IllegalTransition, InvalidHierarchy, NotFound, ValidationFailed
from ..events import queue, transfer_created, transfer_received
from ..extensions import db
from ..models import InventoryPosition, StockTransfer, StockTransferLine
from ..models.inventory import (
    MOVEMENT_TRANSFER_IN,
    MOVEMENT_TRANSFER_OUT,
    REFERENCE_TRANSFER,
    TRANSFER_STATUS_PENDING,
    TRANSFER_STATUS_RECEIVED,
)
from ..permissions import Action
from supplychain.time_utils import utcnow
from .access_service import AccessPolicy, TransferSubject, require
from .audit_service import append_event
from .concurrency import hold_keys, inventory_key, lock_for_update, run_with_retry, transfer_key
from .hierarchy_service import company_of, get_organization
from .inventory_service import record_movement
from .numbering_service import next_number


def _normalize_lines(lines: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    merged: dict[int, dict[str, Any]] = {}
    for raw in lines or []:
        try:
            variant_id = int(raw["variant_id"])
            quantity = int(raw["quantity"])
            unit_cost = raw.get("unit_cost_cents")
            unit_cost = int(unit_cost) if unit_cost is not None else None
        except (KeyError, TypeError, ValueError):
            raise ValidationFailed("Each line needs an integer variant_id and quantity; unit_cost_cents must be an integer when given")
        if quantity <= 0:
            raise ValidationFailed("Transfer quantities must be positive", variant_id=variant_id)
        # receive_transfer writes this cost on transfer_in, which rejects negatives
        if unit_cost is not None and unit_cost < 0:
            raise ValidationFailed("unit_cost_cents cannot be negative", variant_id=variant_id)
        if variant_id in merged:
            merged[variant_id]["quantity"] += quantity
        else:
            merged[variant_id] = {
                "variant_id": variant_id,
                "quantity": quantity,
                "unit_cost_cents": unit_cost,
            }
    if not merged:
        raise ValidationFailed("A transfer needs at least one line")
    return list(merged.values())


def create_transfer(
    from_org_id: int,
    to_org_id: int,
    lines: Iterable[Mapping[str, Any]],
    *,
    actor,
    notes: str | None = None,
) -> StockTransfer:
    """
    Create a transfer and ship its stock out of the source.

    Args:
        from_org_id: Source organization
        to_org_id: Destination organization (same company)
        lines: [{"variant_id", "quantity", "unit_cost_cents"?}, ...]
        actor: Resolved Actor
        notes: Optional free text

    Returns:
        StockTransfer: the pending transfer

    Raises:
        ValidationFailed, InvalidHierarchy, PermissionDenied, InsufficientStock
    """
    normalized = _normalize_lines(lines)
    if from_org_id == to_org_id:
        raise ValidationFailed("Cannot transfer to the same organization")

    def _op():
        source = get_organization(from_org_id)
        destination = get_organization(to_org_id)
        company_id = company_of(source.id)
        if company_of(destination.id) != company_id:
            raise InvalidHierarchy("Transfers must stay within one company")
        if not (source.is_active and destination.is_active):
            raise ValidationFailed("Both organizations must be active")

        require(
            actor,
            Action.CREATE_TRANSFER,
            TransferSubject(from_org_id=source.id, to_org_id=destination.id, company_id=company_id),
            AccessPolicy.from_config(current_app.config),
        )

        keys = [inventory_key(line["variant_id"], source.id) for line in normalized]
        with hold_keys(*keys):
            transfer = StockTransfer(
                transfer_no=next_number(company_id=company_id, sequence_type="TRANSFER"),
                company_id=company_id,
                from_org_id=source.id,
                to_org_id=destination.id,
                status=TRANSFER_STATUS_PENDING,
                notes=notes,
                created_by=actor.user_id,
                created_at=utcnow(),
            )
            db.session.add(transfer)
            db.session.flush()

            for line in normalized:
                unit_cost = line["unit_cost_cents"]
                if unit_cost is None:
                    # Carry the source's average cost to the destination
                    unit_cost = (
                        db.session.query(InventoryPosition.average_cost_cents)
                        .filter_by(variant_id=line["variant_id"], organization_id=source.id)
                        .scalar()
                    )
                transfer.lines.append(
                    StockTransferLine(
                        variant_id=line["variant_id"],
                        quantity=line["quantity"],
                        unit_cost_cents=unit_cost,
                    )
                )
                record_movement(
                    MOVEMENT_TRANSFER_OUT,
                    line["variant_id"],
                    source.id,
                    -line["quantity"],
                    actor_id=actor.user_id,
                    company_id=company_id,
                    reference_type=REFERENCE_TRANSFER,
                    reference_id=transfer.id,
                    reference_no=transfer.transfer_no,
                    notes=notes,
                    idempotency_key=f"transfer:{transfer.id}:out:{line['variant_id']}",
                )
            db.session.flush()

            append_event(
                event_type="transfer.created",
                entity_type="transfer",
                entity_id=transfer.id,
                company_id=company_id,
                transfer_id=transfer.id,
                actor_user_id=actor.user_id,
                actor_org_id=actor.org_id,
                occurred_at=transfer.created_at,
                note=notes,
                payload={"lines": [{"variant_id": l["variant_id"], "quantity": l["quantity"]} for l in normalized]},
            )
            queue(db.session, transfer_created, transfer_id=transfer.id, to_org_id=destination.id)
            db.session.commit()
            return transfer

    return run_with_retry(_op)


def get_transfer(transfer_id: int) -> StockTransfer:
    transfer = db.session.query(StockTransfer).filter_by(id=transfer_id).first()
    if transfer is None:
        raise NotFound(f"Transfer {transfer_id} not found", transfer_id=transfer_id)
    return transfer


def receive_transfer(transfer_id: int, *, actor) -> StockTransfer:
    """
    Confirm receipt at the destination and write the transfer_in rows.

    Idempotent: receiving an already received transfer returns it unchanged.
    """
    def _op():
        transfer = get_transfer(transfer_id)
        require(
            actor,
            Action.RECEIVE_TRANSFER,
            TransferSubject(from_org_id=transfer.from_org_id, to_org_id=transfer.to_org_id, company_id=transfer.company_id),
            AccessPolicy.from_config(current_app.config),
        )
        keys = [transfer_key(transfer.id)] + [inventory_key(line.variant_id, transfer.to_org_id) for line in transfer.lines]
        with hold_keys(*keys):
            transfer = lock_for_update(db.session.query(StockTransfer).filter_by(id=transfer_id)).populate_existing().first()
            if transfer.status == TRANSFER_STATUS_RECEIVED:
                return transfer
            if transfer.status != TRANSFER_STATUS_PENDING:
                raise IllegalTransition(
                    f"Cannot receive transfer in {transfer.status} status",
                    transfer_id=transfer.id,
                )

            for line in transfer.lines:
                record_movement(
                    MOVEMENT_TRANSFER_IN,
                    line.variant_id,
                    transfer.to_org_id,
                    line.quantity,
                    actor_id=actor.user_id,
                    company_id=transfer.company_id,
                    unit_cost_cents=line.unit_cost_cents,
                    reference_type=REFERENCE_TRANSFER,
                    reference_id=transfer.id,
                    reference_no=transfer.transfer_no,
                    idempotency_key=f"transfer:{transfer.id}:in:{line.variant_id}",
                )

            transfer.status = TRANSFER_STATUS_RECEIVED
            transfer.received_by = actor.user_id
            transfer.received_at = utcnow()
            db.session.flush()

            append_event(
                event_type="transfer.received",
                entity_type="transfer",
                entity_id=transfer.id,
                company_id=transfer.company_id,
                transfer_id=transfer.id,
                actor_user_id=actor.user_id,
                actor_org_id=actor.org_id,
                occurred_at=transfer.received_at,
            )
            queue(db.session, transfer_received, transfer_id=transfer.id, from_org_id=transfer.from_org_id)
            db.session.commit()
            return transfer

    return run_with_retry(_op)


def list_transfers(
    *,
    org_id: int | None = None,
    company_id: int | None = None,
    status: str | None = None,
) -> list[StockTransfer]:
    q = db.session.query(StockTransfer)
    if company_id is not None:
        q = q.filter(StockTransfer.company_id == company_id)
    if org_id is not None:
        q = q.filter((StockTransfer.from_org_id == org_id) | (StockTransfer.to_org_id == org_id))
    if status is not None:
        q = q.filter(StockTransfer.status == status)
    return q.order_by(StockTransfer.created_at.desc(), StockTransfer.id.desc()).all()
