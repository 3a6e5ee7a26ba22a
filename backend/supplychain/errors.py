"""
Workflow error taxonomy.

Every core operation either returns its success value or raises exactly one
of the errors below. Routes turn them into a typed JSON result; callers may
retry only errors flagged ``retriable`` (currently just Contention).
"""
from __future__ import annotations

from typing import Any


class WorkflowError(Exception):
    """Base class for all domain errors raised by the core."""

    code = "WORKFLOW_ERROR"
    http_status = 400
    retriable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "retriable": self.retriable,
            "details": self.details,
        }


class ValidationFailed(WorkflowError):
    """Malformed input at the boundary (bad quantity, unknown type, ...)."""
    code = "VALIDATION_FAILED"
    http_status = 400


class IllegalTransition(WorkflowError):
    code = "ILLEGAL_TRANSITION"
    http_status = 409


class DuplicateDocument(WorkflowError):
    code = "DUPLICATE_DOCUMENT"
    http_status = 409


class PaymentProofRequired(WorkflowError):
    code = "PAYMENT_PROOF_REQUIRED"
    http_status = 422


class InsufficientStock(WorkflowError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409


class InvalidHierarchy(WorkflowError):
    code = "INVALID_HIERARCHY"
    http_status = 422


class OrphanedOrganization(WorkflowError):
    code = "ORPHANED_ORGANIZATION"
    http_status = 422


class ParentOrderNotApproved(WorkflowError):
    code = "PARENT_ORDER_NOT_APPROVED"
    http_status = 409


class PermissionDenied(WorkflowError):
    code = "PERMISSION_DENIED"
    http_status = 403


class Contention(WorkflowError):
    """Lock wait exceeded or a concurrent writer won; safe to retry with backoff."""
    code = "CONTENTION"
    http_status = 409
    retriable = True


class NotFound(WorkflowError):
    code = "NOT_FOUND"
    http_status = 404
