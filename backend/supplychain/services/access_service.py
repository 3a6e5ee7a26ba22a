# Overview: Pure access evaluator consulted by the order and document workflows.

"""
can_act(actor, action, subject, policy) -> Decision

- No side effects and no database access: callers load the subject and the
  policy first and pass them in.
- Rules are dispatched by action through _RULES; each rule returns a
  Decision carrying a ReasonCode so denials are explainable in audit logs
  and error messages.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from ..errors import PermissionDenied
from ..permissions import (
    Action,
    ReasonCode,
    RoleLevel,
    REASON_MESSAGES,
    ACKNOWLEDGING_PARTY,
    APPROVING_PARTY,
    DEFAULT_ACK_ROLE_THRESHOLDS,
)


@dataclass(frozen=True)
class Actor:
    """Identity resolved by the session collaborator; trusted as-is."""
    user_id: int
    org_id: int
    role_level: int
    org_type: str | None = None
    company_id: int | None = None
    is_active: bool = True


@dataclass(frozen=True)
class AccessPolicy:
    super_admin_level: int = RoleLevel.SUPER_ADMIN
    power_user_level: int = RoleLevel.POWER_USER
    submit_role_threshold: int = RoleLevel.MANAGER
    ack_role_thresholds: Mapping[str, int] = field(
        default_factory=lambda: dict(DEFAULT_ACK_ROLE_THRESHOLDS)
    )

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "AccessPolicy":
        thresholds = dict(DEFAULT_ACK_ROLE_THRESHOLDS)
        thresholds.update(config.get("ACK_ROLE_THRESHOLDS") or {})
        return cls(
            super_admin_level=config.get("SUPER_ADMIN_ROLE_LEVEL", RoleLevel.SUPER_ADMIN),
            power_user_level=config.get("POWER_USER_ROLE_LEVEL", RoleLevel.POWER_USER),
            submit_role_threshold=config.get("SUBMIT_ROLE_THRESHOLD", RoleLevel.MANAGER),
            ack_role_thresholds=thresholds,
        )


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed

    @property
    def message(self) -> str:
        return REASON_MESSAGES.get(self.reason, self.reason)


@dataclass(frozen=True)
class LocationSubject:
    """A stock location: the organization holding stock and its company."""
    org_id: int
    company_id: int | None = None


@dataclass(frozen=True)
class TransferSubject:
    from_org_id: int
    to_org_id: int
    company_id: int | None = None


ALLOW = Decision(True, ReasonCode.OK)


def _deny(reason: str) -> Decision:
    return Decision(False, reason)


def _within(actor: Actor, level: int) -> bool:
    return actor.role_level <= level


def _is_company_power_user(actor: Actor, company_id: int | None, policy: AccessPolicy) -> bool:
    return company_id is not None and actor.org_id == company_id and _within(actor, policy.power_user_level)


def _order_party_org(order, party: str) -> int | None:
    if party == "buyer":
        return order.buyer_org_id
    if party == "seller":
        return order.seller_org_id
    if party == "company":
        return order.company_id
    return None


# -- rules ------------------------------------------------------------------

def _rule_create_order(actor, order, policy):
    if actor.org_id != order.buyer_org_id:
        return _deny(ReasonCode.NOT_BUYER_ORG)
    if not _within(actor, RoleLevel.USER):
        return _deny(ReasonCode.ROLE_TOO_LOW)
    return ALLOW


def _rule_submit_order(actor, order, policy):
    if actor.org_id != order.buyer_org_id:
        return _deny(ReasonCode.NOT_BUYER_ORG)
    if actor.user_id == order.created_by:
        return ALLOW
    if _within(actor, policy.submit_role_threshold):
        return ALLOW
    return _deny(ReasonCode.NOT_CREATOR_OR_PRIVILEGED)


def _rule_approve_order(actor, order, policy):
    party = APPROVING_PARTY.get(order.order_type)
    if party is None or actor.org_id != _order_party_org(order, party):
        return _deny(ReasonCode.NOT_APPROVING_ORG)
    if not _within(actor, policy.power_user_level):
        return _deny(ReasonCode.ROLE_TOO_LOW)
    return ALLOW


def _rule_delete_order(actor, order, policy):
    # Org-independent: only the tier matters
    if actor.role_level != policy.super_admin_level:
        return _deny(ReasonCode.NOT_SUPER_ADMIN)
    return ALLOW


def _rule_allocate_order(actor, order, policy):
    if actor.org_id != order.seller_org_id:
        return _deny(ReasonCode.NOT_SELLER_ORG)
    if not _within(actor, RoleLevel.MANAGER):
        return _deny(ReasonCode.ROLE_TOO_LOW)
    return ALLOW


def _rule_acknowledge_document(actor, document, policy):
    if actor.org_id != document.issued_to_org_id:
        return _deny(ReasonCode.NOT_RECEIVING_ORG)
    threshold = policy.ack_role_thresholds.get(document.doc_type, RoleLevel.USER)
    if not _within(actor, threshold):
        return _deny(ReasonCode.ROLE_TOO_LOW)
    return ALLOW


def _rule_attach_payment_proof(actor, document, policy):
    if actor.org_id != document.issued_to_org_id:
        return _deny(ReasonCode.NOT_RECEIVING_ORG)
    if not _within(actor, RoleLevel.USER):
        return _deny(ReasonCode.ROLE_TOO_LOW)
    return ALLOW


def _rule_manage_stock(actor, location, policy):
    if actor.org_id == location.org_id:
        return ALLOW if _within(actor, RoleLevel.MANAGER) else _deny(ReasonCode.ROLE_TOO_LOW)
    if _is_company_power_user(actor, location.company_id, policy):
        return ALLOW
    return _deny(ReasonCode.NOT_LOCATION_ORG)


def _rule_large_adjustment(actor, location, policy):
    decision = _rule_manage_stock(actor, location, policy)
    if not decision:
        return decision
    if not _within(actor, policy.power_user_level):
        return _deny(ReasonCode.ROLE_TOO_LOW)
    return ALLOW


def _rule_create_transfer(actor, transfer, policy):
    if actor.org_id == transfer.from_org_id:
        return ALLOW if _within(actor, RoleLevel.MANAGER) else _deny(ReasonCode.ROLE_TOO_LOW)
    if _is_company_power_user(actor, transfer.company_id, policy):
        return ALLOW
    return _deny(ReasonCode.NOT_LOCATION_ORG)


def _rule_receive_transfer(actor, transfer, policy):
    if actor.org_id != transfer.to_org_id:
        return _deny(ReasonCode.NOT_DESTINATION_ORG)
    if not _within(actor, RoleLevel.USER):
        return _deny(ReasonCode.ROLE_TOO_LOW)
    return ALLOW


def _rule_manage_hierarchy(actor, location, policy):
    if actor.role_level == policy.super_admin_level:
        return ALLOW
    if not _within(actor, RoleLevel.HQ_ADMIN):
        return _deny(ReasonCode.ROLE_TOO_LOW)
    # New companies (no parent) are for super admins only
    if location is None or location.company_id is None or location.company_id != actor.company_id:
        return _deny(ReasonCode.NOT_SAME_COMPANY)
    return ALLOW


_RULES: dict[str, Callable[[Actor, Any, AccessPolicy], Decision]] = {
    Action.CREATE_ORDER: _rule_create_order,
    Action.EDIT_ORDER: _rule_create_order,
    Action.SUBMIT_ORDER: _rule_submit_order,
    Action.APPROVE_ORDER: _rule_approve_order,
    Action.DELETE_ORDER: _rule_delete_order,
    Action.ALLOCATE_ORDER: _rule_allocate_order,
    Action.ACKNOWLEDGE_DOCUMENT: _rule_acknowledge_document,
    Action.ATTACH_PAYMENT_PROOF: _rule_attach_payment_proof,
    Action.MANAGE_STOCK: _rule_manage_stock,
    Action.LARGE_ADJUSTMENT: _rule_large_adjustment,
    Action.CREATE_TRANSFER: _rule_create_transfer,
    Action.RECEIVE_TRANSFER: _rule_receive_transfer,
    Action.MANAGE_HIERARCHY: _rule_manage_hierarchy,
}


def can_act(actor: Actor, action: str, subject: Any, policy: AccessPolicy | None = None) -> Decision:
    """Decide whether `actor` may perform `action` on `subject`."""
    policy = policy or AccessPolicy()
    if not actor.is_active:
        return _deny(ReasonCode.INACTIVE_ACTOR)
    rule = _RULES.get(action)
    if rule is None:
        return _deny(ReasonCode.UNKNOWN_ACTION)
    return rule(actor, subject, policy)


def require(actor: Actor, action: str, subject: Any, policy: AccessPolicy | None = None) -> Decision:
    """Like can_act, but raise PermissionDenied (with the reason code) on denial."""
    decision = can_act(actor, action, subject, policy)
    if not decision:
        raise PermissionDenied(decision.message, action=action, reason=decision.reason)
    return decision


def approving_org_id(order) -> int | None:
    """Organization expected to approve `order` (company HQ or seller)."""
    party = APPROVING_PARTY.get(order.order_type)
    return _order_party_org(order, party) if party else None


def acknowledging_org_id(order, doc_type: str) -> int | None:
    """Organization that must acknowledge `order`'s document of `doc_type`."""
    party = ACKNOWLEDGING_PARTY.get(doc_type)
    return _order_party_org(order, party) if party else None


def can_view(actor: Actor, company_id: int | None, policy: AccessPolicy | None = None) -> bool:
    """Read scoping: actors see their own company's data; super admins see everything."""
    policy = policy or AccessPolicy()
    if actor.role_level == policy.super_admin_level:
        return True
    return company_id is not None and company_id == actor.company_id
