# backend/supplychain/services/hierarchy_service.py
"""
Organization hierarchy resolver.

The hierarchy is a graph of plain parent ids. It is always walked by
explicit lookups with a bounded depth and a visited set, never through
object pointers, so a misconfigured cycle cannot hang a request.

HIERARCHY RULES:
    HQ           -> no parent
    MANUFACTURER -> HQ (optional)
    DISTRIBUTOR  -> HQ (required)
    SHOP         -> DISTRIBUTOR (required)
    WAREHOUSE    -> HQ (optional)

ORDER PAIRINGS (buyer <- seller):
    H2M  HQ          <- MANUFACTURER of the same company
    D2H  DISTRIBUTOR <- HQ that is the distributor's parent
    S2D  SHOP        <- DISTRIBUTOR linked to the shop (parent or explicit link)
"""
from __future__ import annotations

from flask import current_app

from ..errors import InvalidHierarchy, NotFound, OrphanedOrganization, ValidationFailed
from ..extensions import db
from ..models import Organization, ShopDistributor
from ..models.organizations import (
    ORG_TYPES,
    ORG_TYPE_HQ,
    ORG_TYPE_MANUFACTURER,
    ORG_TYPE_DISTRIBUTOR,
    ORG_TYPE_SHOP,
    ORG_TYPE_WAREHOUSE,
)
from ..models.orders import ORDER_TYPE_H2M, ORDER_TYPE_D2H, ORDER_TYPE_S2D
from ..permissions import Action
from .access_service import AccessPolicy, LocationSubject, require
from .concurrency import run_with_retry
from .audit_service import append_event


VALID_PARENTS = {
    ORG_TYPE_HQ: frozenset(),
    ORG_TYPE_MANUFACTURER: frozenset({ORG_TYPE_HQ}),
    ORG_TYPE_DISTRIBUTOR: frozenset({ORG_TYPE_HQ}),
    ORG_TYPE_SHOP: frozenset({ORG_TYPE_DISTRIBUTOR}),
    ORG_TYPE_WAREHOUSE: frozenset({ORG_TYPE_HQ}),
}

PARENT_REQUIRED = frozenset({ORG_TYPE_DISTRIBUTOR, ORG_TYPE_SHOP})

# order type -> (buyer org type, seller org type)
ORDER_PAIRINGS = {
    ORDER_TYPE_H2M: (ORG_TYPE_HQ, ORG_TYPE_MANUFACTURER),
    ORDER_TYPE_D2H: (ORG_TYPE_DISTRIBUTOR, ORG_TYPE_HQ),
    ORDER_TYPE_S2D: (ORG_TYPE_SHOP, ORG_TYPE_DISTRIBUTOR),
}

DEFAULT_MAX_DEPTH = 10


def valid_parents(org_type: str) -> frozenset:
    if org_type not in VALID_PARENTS:
        raise ValidationFailed(f"Unknown organization type {org_type!r}", org_type=org_type)
    return VALID_PARENTS[org_type]


def validate_parent(org_type: str, parent_type: str | None) -> None:
    """Raise InvalidHierarchy unless `parent_type` may parent an `org_type` org."""
    allowed = valid_parents(org_type)
    if parent_type is None:
        if org_type in PARENT_REQUIRED:
            raise InvalidHierarchy(
                f"{org_type} must have a parent organization",
                org_type=org_type,
            )
        return
    if parent_type not in allowed:
        raise InvalidHierarchy(
            f"Invalid parent type: {org_type} cannot report to {parent_type}",
            org_type=org_type,
            parent_type=parent_type,
            allowed=sorted(allowed),
        )


def get_organization(org_id: int) -> Organization:
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if org is None:
        raise NotFound(f"Organization {org_id} not found", org_id=org_id)
    return org


def _parent_row(org_id: int):
    return (
        db.session.query(Organization.id, Organization.org_type, Organization.parent_org_id)
        .filter(Organization.id == org_id)
        .first()
    )


def company_of(org_id: int, *, max_depth: int | None = None) -> int:
    """
    Walk parent ids up to the root HQ and return its id.

    Raises NotFound for an unknown starting org, OrphanedOrganization when
    the chain ends without an HQ, revisits a node, or exceeds max_depth hops.
    """
    if max_depth is None:
        max_depth = current_app.config.get("HIERARCHY_MAX_DEPTH", DEFAULT_MAX_DEPTH)

    row = _parent_row(org_id)
    if row is None:
        raise NotFound(f"Organization {org_id} not found", org_id=org_id)

    seen: set[int] = set()
    hops = 0
    while True:
        if row.org_type == ORG_TYPE_HQ and row.parent_org_id is None:
            return row.id
        if row.parent_org_id is None:
            raise OrphanedOrganization(
                f"Organization {org_id} has no HQ root",
                org_id=org_id,
                stopped_at=row.id,
            )
        seen.add(row.id)
        hops += 1
        if row.parent_org_id in seen or hops > max_depth:
            raise OrphanedOrganization(
                f"Organization {org_id} hierarchy does not reach an HQ within {max_depth} hops",
                org_id=org_id,
                stopped_at=row.id,
            )
        parent = _parent_row(row.parent_org_id)
        if parent is None:
            raise OrphanedOrganization(
                f"Organization {row.id} references missing parent {row.parent_org_id}",
                org_id=org_id,
                stopped_at=row.id,
            )
        row = parent


def same_company(org_a_id: int, org_b_id: int) -> bool:
    try:
        return company_of(org_a_id) == company_of(org_b_id)
    except OrphanedOrganization:
        return False


def linked_distributor_ids(shop_org_id: int) -> set[int]:
    """Distributors a shop may order from: its parent plus active explicit links."""
    shop = get_organization(shop_org_id)
    linked = {
        row.distributor_org_id
        for row in db.session.query(ShopDistributor.distributor_org_id)
        .filter_by(shop_org_id=shop_org_id, is_active=True)
        .all()
    }
    if shop.parent_org_id is not None:
        linked.add(shop.parent_org_id)
    return linked


def pairing_allowed(order_type: str, buyer_type: str, seller_type: str) -> bool:
    """Pure type check for an order type's buyer/seller pairing."""
    expected = ORDER_PAIRINGS.get(order_type)
    return expected is not None and expected == (buyer_type, seller_type)


def pairing_problem(order_type: str, buyer: Organization, seller: Organization) -> str | None:
    """Return why `buyer`/`seller` cannot trade under `order_type`, or None if they can."""
    if order_type not in ORDER_PAIRINGS:
        return f"Unknown order type {order_type!r}"
    if not pairing_allowed(order_type, buyer.org_type, seller.org_type):
        buyer_type, seller_type = ORDER_PAIRINGS[order_type]
        return (
            f"{order_type} orders require a {buyer_type} buyer and a {seller_type} seller, "
            f"got {buyer.org_type} and {seller.org_type}"
        )
    if order_type == ORDER_TYPE_H2M:
        try:
            if company_of(seller.id) != buyer.id:
                return "Manufacturer does not belong to the buyer's company"
        except OrphanedOrganization:
            return "Manufacturer is not attached to any company"
    elif order_type == ORDER_TYPE_D2H:
        if buyer.parent_org_id != seller.id:
            return "Seller must be the distributor's parent HQ"
    elif order_type == ORDER_TYPE_S2D:
        if seller.id not in linked_distributor_ids(buyer.id):
            return "Seller is not one of the shop's linked distributors"
    return None


def valid_order_pairing(order_type: str, buyer_org_id: int, seller_org_id: int) -> bool:
    buyer = get_organization(buyer_org_id)
    seller = get_organization(seller_org_id)
    return pairing_problem(order_type, buyer, seller) is None


def _require_manager(actor, org_id: int | None) -> None:
    if actor is None:
        return
    company_id = None
    if org_id is not None:
        try:
            company_id = company_of(org_id)
        except OrphanedOrganization:
            company_id = None
    require(
        actor,
        Action.MANAGE_HIERARCHY,
        LocationSubject(org_id=org_id, company_id=company_id),
        AccessPolicy.from_config(current_app.config),
    )


def create_organization(
    *,
    org_code: str,
    org_name: str,
    org_type: str,
    parent_org_id: int | None = None,
    require_payment_proof: bool = False,
    actor=None,
) -> Organization:
    """
    Create an organization after validating its place in the hierarchy.

    `actor` is None for trusted callers (CLI bootstrap); otherwise it must
    hold hierarchy management rights in the parent's company.
    """
    def _op():
        if org_type not in ORG_TYPES:
            raise ValidationFailed(f"Unknown organization type {org_type!r}", org_type=org_type)
        parent_type = None
        if parent_org_id is not None:
            parent_type = get_organization(parent_org_id).org_type
        validate_parent(org_type, parent_type)
        _require_manager(actor, parent_org_id)

        org = Organization(
            org_code=org_code,
            org_name=org_name,
            org_type=org_type,
            parent_org_id=parent_org_id,
            require_payment_proof=require_payment_proof,
            is_active=True,
        )
        db.session.add(org)
        db.session.flush()

        company_id = org.id if org_type == ORG_TYPE_HQ else None
        if company_id is None and parent_org_id is not None:
            company_id = company_of(org.id)

        append_event(
            event_type="organization.created",
            entity_type="organization",
            entity_id=org.id,
            company_id=company_id,
            actor_user_id=actor.user_id if actor else None,
            payload={"org_type": org_type, "parent_org_id": parent_org_id},
        )
        db.session.commit()
        return org

    return run_with_retry(_op)


def assign_parent(org_id: int, parent_org_id: int | None, *, actor=None) -> Organization:
    """Re-parent an organization; rejects disallowed types and cycles."""
    def _op():
        org = get_organization(org_id)
        _require_manager(actor, org_id)
        parent_type = None
        if parent_org_id is not None:
            if parent_org_id == org_id:
                raise InvalidHierarchy("An organization cannot be its own parent", org_id=org_id)
            parent = get_organization(parent_org_id)
            parent_type = parent.org_type
            super_admin_level = AccessPolicy.from_config(current_app.config).super_admin_level
            if actor is not None and actor.role_level != super_admin_level and not same_company(org_id, parent.id):
                raise InvalidHierarchy(
                    "New parent belongs to a different company",
                    org_id=org_id,
                    parent_org_id=parent.id,
                )
        validate_parent(org.org_type, parent_type)

        # The new parent must not sit below this org
        cursor = parent_org_id
        hops = 0
        max_depth = current_app.config.get("HIERARCHY_MAX_DEPTH", DEFAULT_MAX_DEPTH)
        while cursor is not None and hops <= max_depth:
            if cursor == org_id:
                raise InvalidHierarchy("Parent assignment would create a cycle", org_id=org_id)
            row = _parent_row(cursor)
            cursor = row.parent_org_id if row else None
            hops += 1

        previous = org.parent_org_id
        org.parent_org_id = parent_org_id
        db.session.flush()

        append_event(
            event_type="organization.reparented",
            entity_type="organization",
            entity_id=org.id,
            actor_user_id=actor.user_id if actor else None,
            payload={"from": previous, "to": parent_org_id},
        )
        db.session.commit()
        return org

    return run_with_retry(_op)


def set_payment_proof_policy(org_id: int, required: bool, *, actor=None) -> Organization:
    def _op():
        org = get_organization(org_id)
        _require_manager(actor, org_id)
        org.require_payment_proof = bool(required)
        append_event(
            event_type="organization.policy_changed",
            entity_type="organization",
            entity_id=org.id,
            actor_user_id=actor.user_id if actor else None,
            payload={"require_payment_proof": bool(required)},
        )
        db.session.commit()
        return org

    return run_with_retry(_op)


def link_distributor(shop_org_id: int, distributor_org_id: int, *, actor=None) -> ShopDistributor:
    """Link an extra distributor to a shop (idempotent)."""
    def _op():
        shop = get_organization(shop_org_id)
        _require_manager(actor, shop_org_id)
        distributor = get_organization(distributor_org_id)
        if shop.org_type != ORG_TYPE_SHOP or distributor.org_type != ORG_TYPE_DISTRIBUTOR:
            raise InvalidHierarchy(
                "Only shops can be linked to distributors",
                shop_type=shop.org_type,
                distributor_type=distributor.org_type,
            )
        if not same_company(shop.id, distributor.id):
            raise InvalidHierarchy("Shop and distributor belong to different companies")

        link = (
            db.session.query(ShopDistributor)
            .filter_by(shop_org_id=shop_org_id, distributor_org_id=distributor_org_id)
            .first()
        )
        if link is None:
            link = ShopDistributor(shop_org_id=shop_org_id, distributor_org_id=distributor_org_id, is_active=True)
            db.session.add(link)
        else:
            link.is_active = True
        db.session.flush()

        append_event(
            event_type="organization.distributor_linked",
            entity_type="organization",
            entity_id=shop.id,
            actor_user_id=actor.user_id if actor else None,
            payload={"distributor_org_id": distributor_org_id},
        )
        db.session.commit()
        return link

    return run_with_retry(_op)


def list_organizations(*, company_id: int | None = None, org_type: str | None = None) -> list[Organization]:
    q = db.session.query(Organization)
    if org_type is not None:
        q = q.filter(Organization.org_type == org_type)
    orgs = q.order_by(Organization.id).all()
    if company_id is None:
        return orgs
    scoped = []
    for org in orgs:
        try:
            if company_of(org.id) == company_id:
                scoped.append(org)
        except OrphanedOrganization:
            continue
    return scoped
