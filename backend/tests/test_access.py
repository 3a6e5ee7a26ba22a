# Overview: Pytest coverage for the table-driven access evaluator.

"""
The evaluator is pure: these tests build actors and subjects in memory
and never touch the database.
"""

from types import SimpleNamespace

import pytest

from supplychain.errors import PermissionDenied
from supplychain.permissions import Action, ReasonCode
from supplychain.services.access_service import (
    AccessPolicy,
    Actor,
    LocationSubject,
    TransferSubject,
    can_act,
    can_view,
    require,
)


HQ, MFR, DIST, SHOP = 1, 2, 3, 4


def actor(org_id, level, user_id=100, company_id=HQ, active=True):
    return Actor(user_id=user_id, org_id=org_id, role_level=level, company_id=company_id, is_active=active)


def order(order_type="H2M", buyer=HQ, seller=MFR, created_by=100):
    return SimpleNamespace(
        order_type=order_type,
        buyer_org_id=buyer,
        seller_org_id=seller,
        company_id=HQ,
        created_by=created_by,
    )


def document(doc_type, issued_to):
    return SimpleNamespace(doc_type=doc_type, issued_to_org_id=issued_to)


class TestApproval:

    def test_hq_power_user_approves_h2m(self):
        assert can_act(actor(HQ, 20), Action.APPROVE_ORDER, order())

    def test_manager_too_low(self):
        decision = can_act(actor(HQ, 30), Action.APPROVE_ORDER, order())
        assert not decision
        assert decision.reason == ReasonCode.ROLE_TOO_LOW

    def test_seller_approves_s2d(self):
        s2d = order("S2D", buyer=SHOP, seller=DIST)
        assert can_act(actor(DIST, 20), Action.APPROVE_ORDER, s2d)
        assert can_act(actor(HQ, 1), Action.APPROVE_ORDER, s2d).reason == ReasonCode.NOT_APPROVING_ORG

    def test_d2h_approved_by_hq(self):
        d2h = order("D2H", buyer=DIST, seller=HQ)
        assert can_act(actor(HQ, 20), Action.APPROVE_ORDER, d2h)
        assert not can_act(actor(DIST, 1), Action.APPROVE_ORDER, d2h)

    def test_threshold_comes_from_policy(self):
        lenient = AccessPolicy(power_user_level=30)
        assert can_act(actor(HQ, 30), Action.APPROVE_ORDER, order(), lenient)


class TestAcknowledgement:

    def test_receiving_org_only(self):
        po = document("PO", issued_to=MFR)
        assert can_act(actor(MFR, 40), Action.ACKNOWLEDGE_DOCUMENT, po)
        decision = can_act(actor(HQ, 1), Action.ACKNOWLEDGE_DOCUMENT, po)
        assert decision.reason == ReasonCode.NOT_RECEIVING_ORG

    def test_invoice_needs_manager(self):
        invoice = document("INVOICE", issued_to=HQ)
        assert can_act(actor(HQ, 30), Action.ACKNOWLEDGE_DOCUMENT, invoice)
        assert can_act(actor(HQ, 40), Action.ACKNOWLEDGE_DOCUMENT, invoice).reason == ReasonCode.ROLE_TOO_LOW

    def test_configured_thresholds(self):
        policy = AccessPolicy.from_config({"ACK_ROLE_THRESHOLDS": {"PO": 20}})
        po = document("PO", issued_to=MFR)
        assert not can_act(actor(MFR, 30), Action.ACKNOWLEDGE_DOCUMENT, po, policy)
        assert policy.ack_role_thresholds["INVOICE"] == 30


class TestDeletionAndSubmission:

    def test_only_super_admin_deletes(self):
        assert can_act(actor(SHOP, 1), Action.DELETE_ORDER, order())
        assert can_act(actor(HQ, 10), Action.DELETE_ORDER, order()).reason == ReasonCode.NOT_SUPER_ADMIN

    def test_creator_may_submit(self):
        assert can_act(actor(HQ, 50, user_id=7), Action.SUBMIT_ORDER, order(created_by=7))

    def test_colleague_needs_manager_role(self):
        o = order(created_by=7)
        assert can_act(actor(HQ, 30, user_id=8), Action.SUBMIT_ORDER, o)
        decision = can_act(actor(HQ, 40, user_id=8), Action.SUBMIT_ORDER, o)
        assert decision.reason == ReasonCode.NOT_CREATOR_OR_PRIVILEGED

    def test_create_order_from_buyer_only(self):
        assert can_act(actor(HQ, 40), Action.CREATE_ORDER, order())
        assert can_act(actor(MFR, 1), Action.CREATE_ORDER, order()).reason == ReasonCode.NOT_BUYER_ORG


class TestStockRules:

    def test_location_manager(self):
        subject = LocationSubject(org_id=DIST, company_id=HQ)
        assert can_act(actor(DIST, 30), Action.MANAGE_STOCK, subject)
        assert not can_act(actor(DIST, 40), Action.MANAGE_STOCK, subject)

    def test_company_power_user_any_location(self):
        subject = LocationSubject(org_id=DIST, company_id=HQ)
        assert can_act(actor(HQ, 20), Action.MANAGE_STOCK, subject)
        assert can_act(actor(SHOP, 20), Action.MANAGE_STOCK, subject).reason == ReasonCode.NOT_LOCATION_ORG

    def test_large_adjustment_needs_power_user(self):
        subject = LocationSubject(org_id=DIST, company_id=HQ)
        assert not can_act(actor(DIST, 30), Action.LARGE_ADJUSTMENT, subject)
        assert can_act(actor(DIST, 20), Action.LARGE_ADJUSTMENT, subject)

    def test_transfer_receipt_by_destination(self):
        transfer = TransferSubject(from_org_id=DIST, to_org_id=SHOP, company_id=HQ)
        assert can_act(actor(SHOP, 40), Action.RECEIVE_TRANSFER, transfer)
        assert can_act(actor(DIST, 1), Action.RECEIVE_TRANSFER, transfer).reason == ReasonCode.NOT_DESTINATION_ORG


class TestGeneral:

    def test_inactive_actor_denied(self):
        decision = can_act(actor(HQ, 1, active=False), Action.DELETE_ORDER, order())
        assert decision.reason == ReasonCode.INACTIVE_ACTOR

    def test_unknown_action(self):
        assert can_act(actor(HQ, 1), "teleport", order()).reason == ReasonCode.UNKNOWN_ACTION

    def test_require_raises_with_reason(self):
        with pytest.raises(PermissionDenied) as exc:
            require(actor(HQ, 40), Action.APPROVE_ORDER, order())
        assert exc.value.details["reason"] == ReasonCode.ROLE_TOO_LOW
        assert exc.value.message == "Your role does not allow this action"

    def test_decision_message(self):
        decision = can_act(actor(MFR, 40), Action.APPROVE_ORDER, order())
        assert decision.message == "Your organization cannot approve this order"

    def test_read_scope(self):
        assert can_view(actor(DIST, 40, company_id=HQ), HQ)
        assert not can_view(actor(DIST, 40, company_id=HQ), 99)
        assert can_view(actor(DIST, 1, company_id=HQ), 99)
