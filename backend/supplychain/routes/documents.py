# backend/supplychain/routes/documents.py
"""
Document chain API routes (PO -> INVOICE -> PAYMENT -> RECEIPT).
"""
from flask import Blueprint, request, g

from ..decorators import require_auth
from ..errors import WorkflowError
from ..responses import ok, workflow_error, unexpected_error, required
from ..services import document_service


documents_bp = Blueprint("documents", __name__, url_prefix="/api/documents")


@documents_bp.route("/<int:document_id>", methods=["GET"])
@require_auth
def get_document(document_id: int):
    try:
        doc = document_service.get_document(document_id, actor=g.actor)
        return ok(document=doc.to_dict())
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("loading document")


@documents_bp.route("/<int:document_id>/snapshot", methods=["GET"])
@require_auth
def document_snapshot(document_id: int):
    """Frozen document content as captured at issue time."""
    try:
        return ok(snapshot=document_service.get_document_snapshot(document_id, actor=g.actor))
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("loading document snapshot")


@documents_bp.route("/<int:document_id>/acknowledge", methods=["POST"])
@require_auth
def acknowledge_document(document_id: int):
    """
    Acknowledge a pending document as its receiving party.

    Request body (optional): {"proof_ref": str}

    Returns:
        200: {"document": {...}, "documents": [...]} with any successor created
        403: caller is not the acknowledging party, or role too low
        409: order not approved
        422: payment proof required but missing
    """
    data = request.get_json(silent=True) or {}
    try:
        document_service.get_document(document_id, actor=g.actor)
        doc = document_service.acknowledge(document_id, actor=g.actor, proof_ref=data.get("proof_ref"))
        docs = document_service.list_documents(doc.order_id)
        return ok(document=doc.to_dict(), documents=[d.to_dict() for d in docs])
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("acknowledging document")


@documents_bp.route("/<int:document_id>/payment-proof", methods=["POST"])
@require_auth
def attach_payment_proof(document_id: int):
    """Request body: {"proof_ref": str}"""
    data = request.get_json(silent=True) or {}
    try:
        proof_ref = required(data, "proof_ref")
        document_service.get_document(document_id, actor=g.actor)
        doc = document_service.attach_payment_proof(document_id, actor=g.actor, proof_ref=str(proof_ref))
        return ok(document=doc.to_dict())
    except WorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("attaching payment proof")
