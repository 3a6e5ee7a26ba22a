# backend/supplychain/routes/orders.py
"""
Order lifecycle API routes.

Draft editing, submit, approve (which issues the PO), delete, stock
allocation, and the per-order document chain views.
"""
from flask import Blueprint, request, g

from ..decorators import require_auth
from ..errors import WorkflowError
from ..responses import ok, workflow_error, unexpected_error, required, as_int
from ..services import audit_service, document_service, inventory_service, order_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.route("", methods=["GET"])
@require_auth
def list_orders():
    """
    List orders of the caller's company.

    Query params:
        org_id: orders where this org is buyer or seller
        status: draft | submitted | approved | closed
        order_type: H2M | D2H | S2D
        limit: max rows (default 200)
    """
    try:
        org_id = request.args.get("org_id")
        orders = order_service.list_orders(
            company_id=g.actor.company_id,
            org_id=as_int(org_id, "org_id") if org_id else None,
            status=request.args.get("status"),
            order_type=request.args.get("order_type"),
            limit=as_int(request.args.get("limit", 200), "limit"),
        )
        return ok(orders=[o.to_dict(include_items=False) for o in orders])
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("listing orders")


@orders_bp.route("", methods=["POST"])
@require_auth
def create_order():
    """
    Create a draft order.

    Request body:
    {
        "order_type": "H2M" | "D2H" | "S2D",
        "buyer_org_id": int,
        "seller_org_id": int,
        "items": [{"variant_id": int, "qty": int, "unit_price_cents": int}, ...],
        "parent_order_id": int (optional),
        "notes": str (optional)
    }

    Returns:
        201: draft order
        403: caller may not order for the buyer
        422: invalid pairing for the order type
    """
    data = request.get_json(silent=True) or {}
    try:
        order_type, buyer_org_id, seller_org_id = required(data, "order_type", "buyer_org_id", "seller_org_id")
        parent_order_id = data.get("parent_order_id")
        order = order_service.create_order(
            actor=g.actor,
            order_type=str(order_type).upper(),
            buyer_org_id=as_int(buyer_org_id, "buyer_org_id"),
            seller_org_id=as_int(seller_org_id, "seller_org_id"),
            items=data.get("items") or (),
            parent_order_id=as_int(parent_order_id, "parent_order_id") if parent_order_id is not None else None,
            notes=data.get("notes"),
        )
        return ok(201, order=order.to_dict())
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("creating order")


@orders_bp.route("/<int:order_id>", methods=["GET"])
@require_auth
def get_order(order_id: int):
    try:
        order = order_service.get_order(order_id, actor=g.actor)
        return ok(order=order.to_dict())
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("loading order")


@orders_bp.route("/<int:order_id>", methods=["DELETE"])
@require_auth
def delete_order(order_id: int):
    """
    Delete a draft or submitted order.

    Returns:
        200: deleted
        409: order has QR codes in use, child orders, or is already approved
    """
    try:
        order_service.get_order(order_id, actor=g.actor)
        order_service.delete_order(order_id, actor=g.actor)
        return ok(deleted=True, order_id=order_id)
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("deleting order")


@orders_bp.route("/<int:order_id>/items", methods=["POST"])
@require_auth
def add_item(order_id: int):
    """Request body: {"variant_id": int, "qty": int, "unit_price_cents": int}"""
    data = request.get_json(silent=True) or {}
    try:
        variant_id, qty = required(data, "variant_id", "qty")
        order_service.get_order(order_id, actor=g.actor)
        order = order_service.add_item(
            order_id,
            actor=g.actor,
            variant_id=as_int(variant_id, "variant_id"),
            qty=as_int(qty, "qty"),
            unit_price_cents=as_int(data.get("unit_price_cents", 0), "unit_price_cents"),
        )
        return ok(201, order=order.to_dict())
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("adding order item")


@orders_bp.route("/<int:order_id>/items/<int:item_id>", methods=["PATCH"])
@require_auth
def update_item(order_id: int, item_id: int):
    """Request body: {"qty": int (optional), "unit_price_cents": int (optional)}"""
    data = request.get_json(silent=True) or {}
    try:
        order_service.get_order(order_id, actor=g.actor)
        qty = data.get("qty")
        unit_price_cents = data.get("unit_price_cents")
        order = order_service.update_item(
            order_id,
            item_id,
            actor=g.actor,
            qty=as_int(qty, "qty") if qty is not None else None,
            unit_price_cents=as_int(unit_price_cents, "unit_price_cents") if unit_price_cents is not None else None,
        )
        return ok(order=order.to_dict())
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("updating order item")


@orders_bp.route("/<int:order_id>/items/<int:item_id>", methods=["DELETE"])
@require_auth
def remove_item(order_id: int, item_id: int):
    try:
        order_service.get_order(order_id, actor=g.actor)
        order = order_service.remove_item(order_id, item_id, actor=g.actor)
        return ok(order=order.to_dict())
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("removing order item")


@orders_bp.route("/<int:order_id>/submit", methods=["POST"])
@require_auth
def submit_order(order_id: int):
    try:
        order_service.get_order(order_id, actor=g.actor)
        order = order_service.submit(order_id, actor=g.actor)
        return ok(order=order.to_dict())
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("submitting order")


@orders_bp.route("/<int:order_id>/approve", methods=["POST"])
@require_auth
def approve_order(order_id: int):
    """
    Approve a submitted order. The PO is created in the same transaction.

    Returns:
        200: {"order": {...}, "documents": [PO]}
        409: order not submitted, or parent order not approved
    """
    try:
        order_service.get_order(order_id, actor=g.actor)
        order = order_service.approve(order_id, actor=g.actor)
        docs = document_service.list_documents(order.id)
        return ok(order=order.to_dict(), documents=[d.to_dict() for d in docs])
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("approving order")


@orders_bp.route("/<int:order_id>/allocate", methods=["POST"])
@require_auth
def allocate_order(order_id: int):
    """Reserve the seller's stock for every line of an approved order."""
    try:
        order_service.get_order(order_id, actor=g.actor)
        movements = inventory_service.allocate_for_order(order_id, actor=g.actor)
        return ok(movements=[m.to_dict() for m in movements])
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("allocating order stock")


@orders_bp.route("/<int:order_id>/deallocate", methods=["POST"])
@require_auth
def deallocate_order(order_id: int):
    try:
        order_service.get_order(order_id, actor=g.actor)
        movements = inventory_service.deallocate_for_order(order_id, actor=g.actor)
        return ok(movements=[m.to_dict() for m in movements])
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("releasing order stock")


@orders_bp.route("/<int:order_id>/documents", methods=["GET"])
@require_auth
def order_documents(order_id: int):
    try:
        order_service.get_order(order_id, actor=g.actor)
        docs = document_service.list_documents(order_id)
        return ok(documents=[d.to_dict() for d in docs])
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("listing order documents")


@orders_bp.route("/<int:order_id>/progress", methods=["GET"])
@require_auth
def order_progress(order_id: int):
    try:
        order_service.get_order(order_id, actor=g.actor)
        return ok(progress=document_service.workflow_progress(order_id))
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("computing workflow progress")


@orders_bp.route("/<int:order_id>/events", methods=["GET"])
@require_auth
def order_events(order_id: int):
    """Audit trail of an order, newest first."""
    try:
        order = order_service.get_order(order_id, actor=g.actor)
        events = audit_service.list_events(
            company_id=order.company_id,
            order_id=order.id,
            limit=as_int(request.args.get("limit", 200), "limit"),
        )
        return ok(events=[e.to_dict() for e in events])
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("listing order events")
