# backend/supplychain/routes/organizations.py
"""
Organization hierarchy API routes.
"""
from flask import Blueprint, request, g

from ..decorators import require_auth
from ..errors import WorkflowError
from ..responses import ok, workflow_error, unexpected_error, required, as_int
from ..services import hierarchy_service


organizations_bp = Blueprint("organizations", __name__, url_prefix="/api/organizations")


@organizations_bp.route("", methods=["GET"])
@require_auth
def list_organizations():
    """
    List organizations of the caller's company.

    Query params:
        org_type: optional filter (HQ, MANUFACTURER, DISTRIBUTOR, SHOP, WAREHOUSE)
    """
    try:
        orgs = hierarchy_service.list_organizations(
            company_id=g.actor.company_id,
            org_type=request.args.get("org_type"),
        )
        return ok(organizations=[org.to_dict() for org in orgs])
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("listing organizations")


@organizations_bp.route("", methods=["POST"])
@require_auth
def create_organization():
    """
    Create an organization.

    Request body:
    {
        "org_code": str,
        "org_name": str,
        "org_type": str,
        "parent_org_id": int (required for DISTRIBUTOR and SHOP),
        "require_payment_proof": bool (optional)
    }

    Returns:
        201: created
        403: caller may not manage this company's hierarchy
        422: parent type not permitted
    """
    data = request.get_json(silent=True) or {}
    try:
        org_code, org_name, org_type = required(data, "org_code", "org_name", "org_type")
        parent_org_id = data.get("parent_org_id")
        org = hierarchy_service.create_organization(
            org_code=org_code,
            org_name=org_name,
            org_type=str(org_type).upper(),
            parent_org_id=as_int(parent_org_id, "parent_org_id") if parent_org_id is not None else None,
            require_payment_proof=bool(data.get("require_payment_proof", False)),
            actor=g.actor,
        )
        return ok(201, organization=org.to_dict())
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("creating organization")


@organizations_bp.route("/<int:org_id>/company", methods=["GET"])
@require_auth
def company_of(org_id: int):
    """Root HQ of an organization."""
    try:
        return ok(org_id=org_id, company_id=hierarchy_service.company_of(org_id))
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("resolving company")


@organizations_bp.route("/<int:org_id>/parent", methods=["PUT"])
@require_auth
def assign_parent(org_id: int):
    """
    Re-parent an organization.

    Request body: {"parent_org_id": int | null}
    """
    data = request.get_json(silent=True) or {}
    try:
        parent_org_id = data.get("parent_org_id")
        org = hierarchy_service.assign_parent(
            org_id,
            as_int(parent_org_id, "parent_org_id") if parent_org_id is not None else None,
            actor=g.actor,
        )
        return ok(organization=org.to_dict())
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("assigning parent")


@organizations_bp.route("/<int:org_id>/payment-proof-policy", methods=["PUT"])
@require_auth
def set_payment_proof_policy(org_id: int):
    """Request body: {"require_payment_proof": bool}"""
    data = request.get_json(silent=True) or {}
    try:
        org = hierarchy_service.set_payment_proof_policy(
            org_id,
            bool(required(data, "require_payment_proof")),
            actor=g.actor,
        )
        return ok(organization=org.to_dict())
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("updating payment proof policy")


@organizations_bp.route("/<int:shop_org_id>/distributors", methods=["GET"])
@require_auth
def linked_distributors(shop_org_id: int):
    try:
        ids = sorted(hierarchy_service.linked_distributor_ids(shop_org_id))
        return ok(shop_org_id=shop_org_id, distributor_org_ids=ids)
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("listing linked distributors")


@organizations_bp.route("/<int:shop_org_id>/distributors", methods=["POST"])
@require_auth
def link_distributor(shop_org_id: int):
    """Request body: {"distributor_org_id": int}"""
    data = request.get_json(silent=True) or {}
    try:
        distributor_org_id = as_int(required(data, "distributor_org_id"), "distributor_org_id")
        link = hierarchy_service.link_distributor(shop_org_id, distributor_org_id, actor=g.actor)
        return ok(201, link=link.to_dict())
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("linking distributor")


@organizations_bp.route("/pairing", methods=["GET"])
@require_auth
def order_pairing():
    """
    Whether two organizations may trade under an order type.

    Query params: order_type, buyer_org_id, seller_org_id
    """
    try:
        order_type, buyer_org_id, seller_org_id = required(request.args, "order_type", "buyer_org_id", "seller_org_id")
        allowed = hierarchy_service.valid_order_pairing(
            str(order_type).upper(),
            as_int(buyer_org_id, "buyer_org_id"),
            as_int(seller_org_id, "seller_org_id"),
        )
        return ok(allowed=allowed)
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("checking order pairing")
