# Overview: Order status transition table shared by the order and document workflows.

from __future__ import annotations

from ..errors import IllegalTransition
from ..events import order_closed, queue
from ..extensions import db
from ..models import Order
from ..models.orders import (
    ORDER_STATUS_DRAFT,
    ORDER_STATUS_SUBMITTED,
    ORDER_STATUS_APPROVED,
    ORDER_STATUS_CLOSED,
)
from supplychain.time_utils import utcnow
from .audit_service import append_event


# from -> allowed to
TRANSITIONS = {
    ORDER_STATUS_DRAFT: frozenset({ORDER_STATUS_SUBMITTED}),
    ORDER_STATUS_SUBMITTED: frozenset({ORDER_STATUS_APPROVED}),
    ORDER_STATUS_APPROVED: frozenset({ORDER_STATUS_CLOSED}),
    ORDER_STATUS_CLOSED: frozenset(),
}

# Deletion is not a transition; it is only allowed from these states
DELETABLE_STATUSES = frozenset({ORDER_STATUS_DRAFT, ORDER_STATUS_SUBMITTED})


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(order: Order, target: str) -> None:
    if not can_transition(order.status, target):
        raise IllegalTransition(
            f"Order {order.order_no} cannot move from {order.status} to {target}",
            order_id=order.id,
            current=order.status,
            target=target,
        )


def close(order: Order, *, actor_id: int | None = None, actor_org_id: int | None = None, reason: str = "receipt") -> Order:
    """
    Close an approved order (inner step, no commit).

    Only the document workflow and recovery call this; there is no
    user-facing close action.
    """
    if order.status == ORDER_STATUS_CLOSED:
        return order
    ensure_transition(order, ORDER_STATUS_CLOSED)
    order.status = ORDER_STATUS_CLOSED
    order.closed_at = utcnow()
    db.session.flush()

    append_event(
        event_type="order.closed",
        entity_type="order",
        entity_id=order.id,
        company_id=order.company_id,
        order_id=order.id,
        actor_user_id=actor_id,
        actor_org_id=actor_org_id,
        occurred_at=order.closed_at,
        payload={"reason": reason},
    )
    queue(db.session, order_closed, order_id=order.id, company_id=order.company_id)
    return order
