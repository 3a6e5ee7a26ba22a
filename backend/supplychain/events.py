"""
Notification signals for the toast/notification collaborator.

Services queue a signal on the current DB session; it is sent only after
that session commits and dropped if it rolls back. Delivery is
fire-and-forget: a failing receiver is logged and never affects the
committed workflow result.
"""
from __future__ import annotations

import logging

from blinker import Namespace
from flask import current_app, has_app_context
from sqlalchemy import event
from sqlalchemy.orm import Session

_signals = Namespace()

order_created = _signals.signal("order-created")
order_submitted = _signals.signal("order-submitted")
order_approved = _signals.signal("order-approved")
order_closed = _signals.signal("order-closed")
order_deleted = _signals.signal("order-deleted")
document_created = _signals.signal("document-created")
document_acknowledged = _signals.signal("document-acknowledged")
stock_movement_recorded = _signals.signal("stock-movement-recorded")
transfer_created = _signals.signal("transfer-created")
transfer_received = _signals.signal("transfer-received")

_PENDING_KEY = "pending_signals"


def queue(session: Session, signal, **payload) -> None:
    """Send `signal` with `payload` once `session` commits."""
    session.info.setdefault(_PENDING_KEY, []).append((signal, payload))


def _deliver(signal, payload: dict) -> None:
    sender = current_app._get_current_object() if has_app_context() else None
    try:
        signal.send(sender, **payload)
    except Exception:
        logger = current_app.logger if has_app_context() else logging.getLogger(__name__)
        logger.exception("Notification receiver failed for %s", signal.name)


@event.listens_for(Session, "after_commit")
def _flush_pending(session):
    pending = session.info.pop(_PENDING_KEY, [])
    for signal, payload in pending:
        _deliver(signal, payload)


@event.listens_for(Session, "after_rollback")
def _drop_pending(session):
    session.info.pop(_PENDING_KEY, None)
