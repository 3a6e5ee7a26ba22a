# backend/supplychain/routes/inventory.py
"""
Inventory ledger API routes.

Positions are cached replays of the movement ledger; the ledger itself is
append-only and is only written through the service layer.
"""
from flask import Blueprint, current_app, request, g

from ..decorators import require_auth
from ..errors import NotFound, PermissionDenied, WorkflowError
from ..permissions import RoleLevel
from ..responses import ok, workflow_error, unexpected_error, required, as_int, as_datetime
from ..services import inventory_service
from ..services.access_service import AccessPolicy, can_view
from ..services.hierarchy_service import company_of


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _visible_org(org_id: int) -> int:
    """Organizations of other companies read as missing."""
    if not can_view(g.actor, company_of(org_id), AccessPolicy.from_config(current_app.config)):
        raise NotFound(f"Organization {org_id} not found", org_id=org_id)
    return org_id


@inventory_bp.route("/<int:org_id>/positions", methods=["GET"])
@require_auth
def list_positions(org_id: int):
    try:
        _visible_org(org_id)
        positions = inventory_service.list_positions(org_id)
        return ok(org_id=org_id, positions=[p.to_dict() for p in positions])
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("listing positions")


@inventory_bp.route("/<int:org_id>/positions/<int:variant_id>", methods=["GET"])
@require_auth
def get_position(org_id: int, variant_id: int):
    """Cached position; zeros when the key has no movements yet."""
    try:
        _visible_org(org_id)
        return ok(position=inventory_service.get_position(variant_id, org_id))
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("loading position")


@inventory_bp.route("/<int:org_id>/movements", methods=["GET"])
@require_auth
def list_movements(org_id: int):
    """
    Ledger rows of one location, oldest first.

    Query params:
        variant_id, reference_type, reference_id, movement_type, limit
        since, until: ISO-8601 bounds on created_at (until is exclusive)
    """
    try:
        _visible_org(org_id)
        args = request.args
        movements = inventory_service.list_movements(
            org_id=org_id,
            variant_id=as_int(args["variant_id"], "variant_id") if args.get("variant_id") else None,
            reference_type=args.get("reference_type"),
            reference_id=as_int(args["reference_id"], "reference_id") if args.get("reference_id") else None,
            movement_type=args.get("movement_type"),
            since=as_datetime(args.get("since"), "since"),
            until=as_datetime(args.get("until"), "until"),
            limit=as_int(args.get("limit", 500), "limit"),
        )
        return ok(movements=[m.to_dict() for m in movements])
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("listing movements")


@inventory_bp.route("/<int:org_id>/additions", methods=["POST"])
@require_auth
def add_stock(org_id: int):
    """
    Receive stock into a location.

    Request body:
    {
        "variant_id": int,
        "quantity": int (> 0),
        "unit_cost_cents": int (optional, moves the weighted average cost),
        "reference_no": str (optional),
        "notes": str (optional),
        "idempotency_key": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        variant_id, quantity = required(data, "variant_id", "quantity")
        unit_cost = data.get("unit_cost_cents")
        movement = inventory_service.add_stock(
            as_int(variant_id, "variant_id"),
            org_id,
            as_int(quantity, "quantity"),
            actor=g.actor,
            unit_cost_cents=as_int(unit_cost, "unit_cost_cents") if unit_cost is not None else None,
            reference_no=data.get("reference_no"),
            notes=data.get("notes"),
            idempotency_key=data.get("idempotency_key"),
        )
        return ok(
            201,
            movement=movement.to_dict(),
            position=inventory_service.get_position(movement.variant_id, org_id),
        )
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("adding stock")


@inventory_bp.route("/<int:org_id>/adjustments", methods=["POST"])
@require_auth
def adjust_stock(org_id: int):
    """
    Signed manual adjustment.

    Request body:
    {
        "variant_id": int,
        "quantity_change": int (non-zero),
        "reason_code": str (optional, one of the configured adjustment reasons),
        "reason": str (optional free text),
        "physical_count": bool (optional),
        "notes": str (optional),
        "idempotency_key": str (optional)
    }

    Returns:
        201: movement and new position
        409: insufficient stock
    """
    data = request.get_json(silent=True) or {}
    try:
        variant_id, quantity_change = required(data, "variant_id", "quantity_change")
        movement = inventory_service.adjust_stock(
            as_int(variant_id, "variant_id"),
            org_id,
            as_int(quantity_change, "quantity_change"),
            actor=g.actor,
            reason_code=data.get("reason_code"),
            reason=data.get("reason"),
            physical_count=bool(data.get("physical_count", False)),
            notes=data.get("notes"),
            idempotency_key=data.get("idempotency_key"),
        )
        return ok(
            201,
            movement=movement.to_dict(),
            position=inventory_service.get_position(movement.variant_id, org_id),
        )
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("adjusting stock")


@inventory_bp.route("/verify", methods=["GET"])
@require_auth
def verify_positions():
    """Compare every cached position with a ledger replay. Super admin only."""
    try:
        if g.actor.role_level != current_app.config.get("SUPER_ADMIN_ROLE_LEVEL", RoleLevel.SUPER_ADMIN):
            raise PermissionDenied("Only a super admin can do this", reason="NOT_SUPER_ADMIN")
        mismatches = inventory_service.verify_positions()
        return ok(consistent=not mismatches, mismatches=mismatches)
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("verifying positions")
