# backend/supplychain/routes/transfers.py
"""
Stock transfer API routes.

Creating a transfer ships stock out of the source immediately; receiving
it books the stock in at the destination.
"""
from flask import Blueprint, current_app, request, g

from ..decorators import require_auth
from ..errors import NotFound, WorkflowError
from ..responses import ok, workflow_error, unexpected_error, required, as_int
from ..services import transfer_service
from ..services.access_service import AccessPolicy, can_view


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


def _visible_transfer(transfer_id: int):
    transfer = transfer_service.get_transfer(transfer_id)
    if not can_view(g.actor, transfer.company_id, AccessPolicy.from_config(current_app.config)):
        raise NotFound(f"Transfer {transfer_id} not found", transfer_id=transfer_id)
    return transfer


@transfers_bp.route("", methods=["POST"])
@require_auth
def create_transfer():
    """
    Request body:
    {
        "from_org_id": int,
        "to_org_id": int,
        "lines": [{"variant_id": int, "quantity": int, "unit_cost_cents": int (optional)}],
        "notes": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        from_org_id, to_org_id, lines = required(data, "from_org_id", "to_org_id", "lines")
        transfer = transfer_service.create_transfer(
            as_int(from_org_id, "from_org_id"),
            as_int(to_org_id, "to_org_id"),
            lines,
            actor=g.actor,
            notes=data.get("notes"),
        )
        return ok(201, transfer=transfer.to_dict())
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("creating transfer")


@transfers_bp.route("", methods=["GET"])
@require_auth
def list_transfers():
    """Query params: org_id, status"""
    try:
        org_id = request.args.get("org_id")
        transfers = transfer_service.list_transfers(
            company_id=g.actor.company_id,
            org_id=as_int(org_id, "org_id") if org_id else None,
            status=request.args.get("status"),
        )
        return ok(transfers=[t.to_dict() for t in transfers])
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("listing transfers")


@transfers_bp.route("/<int:transfer_id>", methods=["GET"])
@require_auth
def get_transfer(transfer_id: int):
    try:
        return ok(transfer=_visible_transfer(transfer_id).to_dict())
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("loading transfer")


@transfers_bp.route("/<int:transfer_id>/receive", methods=["POST"])
@require_auth
def receive_transfer(transfer_id: int):
    try:
        _visible_transfer(transfer_id)
        transfer = transfer_service.receive_transfer(transfer_id, actor=g.actor)
        return ok(transfer=transfer.to_dict())
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("receiving transfer")
