# Overview: Pytest coverage for the order state machine and order deletion.

import pytest

from supplychain.errors import (
    IllegalTransition,
    InvalidHierarchy,
    NotFound,
    ParentOrderNotApproved,
    PermissionDenied,
    ValidationFailed,
)
from supplychain.events import order_approved
from supplychain.models import Document, Order, OrderItem, QRBatch, QRCode, WorkflowEvent
from supplychain.services import document_service, inventory_service, order_service


def _draft(actors, company, variants, qty=3):
    return order_service.create_order(
        actor=actors.hq_user,
        order_type="H2M",
        buyer_org_id=company.hq.id,
        seller_org_id=company.manufacturer.id,
        items=[{"variant_id": variants.a.id, "qty": qty, "unit_price_cents": 1000}],
    )


class TestCreateOrder:

    def test_draft_numbering_and_company(self, company, actors, variants):
        first = _draft(actors, company, variants)
        second = _draft(actors, company, variants)
        assert first.status == "draft"
        assert first.company_id == company.hq.id
        assert (first.order_no, second.order_no) == ("ORD-H2M-0001", "ORD-H2M-0002")

    def test_unlinked_distributor_never_gets_an_order(self, db_session, company, make_actor, variants):
        shop_user = make_actor(company.shop, 40)
        with pytest.raises(InvalidHierarchy):
            order_service.create_order(
                actor=shop_user,
                order_type="S2D",
                buyer_org_id=company.shop.id,
                seller_org_id=company.dist2.id,
                items=[{"variant_id": variants.a.id, "qty": 1}],
            )
        assert db_session.query(Order).count() == 0

    def test_wrong_types_rejected(self, company, actors, variants):
        with pytest.raises(InvalidHierarchy):
            order_service.create_order(
                actor=actors.hq_user,
                order_type="H2M",
                buyer_org_id=company.hq.id,
                seller_org_id=company.dist.id,
            )

    def test_buyer_org_only(self, company, actors, variants):
        with pytest.raises(PermissionDenied):
            order_service.create_order(
                actor=actors.mfr_manager,
                order_type="H2M",
                buyer_org_id=company.hq.id,
                seller_org_id=company.manufacturer.id,
            )

    def test_same_variant_lines_merge(self, company, actors, variants):
        order = order_service.create_order(
            actor=actors.hq_user,
            order_type="H2M",
            buyer_org_id=company.hq.id,
            seller_org_id=company.manufacturer.id,
            items=[
                {"variant_id": variants.a.id, "qty": 2, "unit_price_cents": 100},
                {"variant_id": variants.a.id, "qty": 3, "unit_price_cents": 100},
            ],
        )
        assert [(i.variant_id, i.qty) for i in order.items] == [(variants.a.id, 5)]

    def test_bad_item_rejected(self, company, actors, variants):
        with pytest.raises(ValidationFailed):
            order_service.create_order(
                actor=actors.hq_user,
                order_type="H2M",
                buyer_org_id=company.hq.id,
                seller_org_id=company.manufacturer.id,
                items=[{"variant_id": variants.a.id, "qty": 0}],
            )

    def test_cross_company_read_is_not_found(self, company, other_company, actors, variants, make_actor):
        order = _draft(actors, company, variants)
        outsider = make_actor(other_company.hq, 10)
        with pytest.raises(NotFound):
            order_service.get_order(order.id, actor=outsider)
        assert order_service.get_order(order.id, actor=actors.hq_user).id == order.id


class TestDraftEditing:

    def test_add_update_remove(self, company, actors, variants):
        order = _draft(actors, company, variants)
        order = order_service.add_item(order.id, actor=actors.hq_user, variant_id=variants.b.id, qty=4, unit_price_cents=50)
        order = order_service.add_item(order.id, actor=actors.hq_user, variant_id=variants.b.id, qty=1, unit_price_cents=50)
        item_b = next(i for i in order.items if i.variant_id == variants.b.id)
        assert item_b.qty == 5

        order = order_service.update_item(order.id, item_b.id, actor=actors.hq_user, qty=2)
        assert next(i for i in order.items if i.id == item_b.id).qty == 2

        order = order_service.remove_item(order.id, item_b.id, actor=actors.hq_user)
        assert [i.variant_id for i in order.items] == [variants.a.id]

    def test_items_frozen_after_submit(self, company, actors, variants):
        order = _draft(actors, company, variants)
        order_service.submit(order.id, actor=actors.hq_user)
        with pytest.raises(IllegalTransition):
            order_service.add_item(order.id, actor=actors.hq_user, variant_id=variants.b.id, qty=1)


class TestTransitions:

    def test_submit_requires_items(self, company, actors):
        order = order_service.create_order(
            actor=actors.hq_user,
            order_type="H2M",
            buyer_org_id=company.hq.id,
            seller_org_id=company.manufacturer.id,
        )
        with pytest.raises(ValidationFailed):
            order_service.submit(order.id, actor=actors.hq_user)

    def test_submit_by_colleague_needs_role(self, company, actors, variants, make_actor):
        order = _draft(actors, company, variants)
        colleague = make_actor(company.hq, 40)
        with pytest.raises(PermissionDenied):
            order_service.submit(order.id, actor=colleague)
        assert order_service.submit(order.id, actor=actors.hq_power).status == "submitted"

    def test_approve_creates_po_atomically(self, db_session, company, actors, variants):
        order = _draft(actors, company, variants)
        order_service.submit(order.id, actor=actors.hq_user)
        approved = order_service.approve(order.id, actor=actors.hq_power)

        assert approved.status == "approved"
        assert approved.approved_by == actors.hq_power.user_id
        docs = document_service.list_documents(order.id)
        assert [(d.doc_type, d.status) for d in docs] == [("PO", "pending")]
        po = docs[0]
        assert (po.issued_by_org_id, po.issued_to_org_id) == (company.hq.id, company.manufacturer.id)
        assert po.doc_no == "PO-0001"

    def test_approve_draft_is_illegal_and_side_effect_free(self, db_session, company, actors, variants):
        order = _draft(actors, company, variants)
        with pytest.raises(IllegalTransition):
            order_service.approve(order.id, actor=actors.hq_power)
        assert order_service.get_order(order.id).status == "draft"
        assert db_session.query(Document).filter_by(order_id=order.id).count() == 0

    def test_approve_twice_is_illegal(self, db_session, approved_h2m, actors):
        with pytest.raises(IllegalTransition):
            order_service.approve(approved_h2m.id, actor=actors.hq_power)
        assert db_session.query(Document).filter_by(order_id=approved_h2m.id).count() == 1

    def test_approver_must_be_power_user(self, company, actors, variants):
        order = _draft(actors, company, variants)
        order_service.submit(order.id, actor=actors.hq_user)
        with pytest.raises(PermissionDenied):
            order_service.approve(order.id, actor=actors.hq_user)
        assert order_service.get_order(order.id).status == "submitted"

    def test_approval_signal_sent_after_commit(self, company, actors, variants):
        received = []

        def _on_approved(sender, **payload):
            received.append(payload["order_id"])

        order = _draft(actors, company, variants)
        order_service.submit(order.id, actor=actors.hq_user)
        with order_approved.connected_to(_on_approved):
            with pytest.raises(PermissionDenied):
                order_service.approve(order.id, actor=actors.hq_user)
            assert received == []
            order_service.approve(order.id, actor=actors.hq_power)
        assert received == [order.id]

    def test_transitions_are_audited(self, db_session, approved_h2m):
        types = [
            e.event_type
            for e in db_session.query(WorkflowEvent).filter_by(order_id=approved_h2m.id).order_by(WorkflowEvent.id)
        ]
        assert types == ["order.created", "order.submitted", "order.approved", "document.created"]


class TestParentOrders:

    def _d2h(self, company, actors, variants, parent_id=None):
        order = order_service.create_order(
            actor=actors.dist_user,
            order_type="D2H",
            buyer_org_id=company.dist.id,
            seller_org_id=company.hq.id,
            items=[{"variant_id": variants.a.id, "qty": 1}],
            parent_order_id=parent_id,
        )
        return order_service.submit(order.id, actor=actors.dist_user)

    def test_required_parent(self, app, monkeypatch, company, actors, variants):
        monkeypatch.setitem(app.config, "REQUIRE_PARENT_ORDER_TYPES", ("D2H",))
        order = self._d2h(company, actors, variants)
        with pytest.raises(ParentOrderNotApproved):
            order_service.approve(order.id, actor=actors.hq_power)
        assert order_service.get_order(order.id).status == "submitted"

    def test_parent_must_be_approved(self, company, actors, variants):
        parent = _draft(actors, company, variants)
        order = self._d2h(company, actors, variants, parent_id=parent.id)
        with pytest.raises(ParentOrderNotApproved):
            order_service.approve(order.id, actor=actors.hq_power)

    def test_approved_parent_satisfies(self, approved_h2m, company, actors, variants):
        order = self._d2h(company, actors, variants, parent_id=approved_h2m.id)
        assert order_service.approve(order.id, actor=actors.hq_power).status == "approved"

    def test_parent_type_must_be_upstream(self, company, actors, variants):
        sibling = self._d2h(company, actors, variants)
        with pytest.raises(ValidationFailed):
            self._d2h(company, actors, variants, parent_id=sibling.id)

    def test_s2d_approved_by_seller_distributor(self, company, actors, variants, make_actor):
        shop_user = make_actor(company.shop, 40)
        order = order_service.create_order(
            actor=shop_user,
            order_type="S2D",
            buyer_org_id=company.shop.id,
            seller_org_id=company.dist.id,
            items=[{"variant_id": variants.a.id, "qty": 1}],
        )
        order_service.submit(order.id, actor=shop_user)
        with pytest.raises(PermissionDenied):
            order_service.approve(order.id, actor=actors.hq_power)
        assert order_service.approve(order.id, actor=actors.dist_power).status == "approved"


class TestDeleteOrder:

    def test_super_admin_deletes_with_cascade(self, db_session, company, actors, variants):
        order = _draft(actors, company, variants)
        batch = QRBatch(order_id=order.id, batch_no="B-1")
        db_session.add(batch)
        db_session.flush()
        db_session.add(QRCode(batch_id=batch.id, order_id=order.id, code="QR-1"))
        db_session.commit()

        order_service.delete_order(order.id, actor=actors.super_admin)

        assert db_session.query(Order).filter_by(id=order.id).count() == 0
        assert db_session.query(OrderItem).filter_by(order_id=order.id).count() == 0
        assert db_session.query(QRCode).filter_by(order_id=order.id).count() == 0
        assert db_session.query(QRBatch).filter_by(order_id=order.id).count() == 0
        assert db_session.query(WorkflowEvent).filter_by(event_type="order.deleted", order_id=order.id).count() == 1

    def test_only_super_admin(self, company, actors, variants):
        order = _draft(actors, company, variants)
        with pytest.raises(PermissionDenied):
            order_service.delete_order(order.id, actor=actors.hq_admin)

    def test_approved_orders_cannot_be_deleted(self, approved_h2m, actors):
        with pytest.raises(IllegalTransition):
            order_service.delete_order(approved_h2m.id, actor=actors.super_admin)

    def test_finalized_qr_codes_block_deletion(self, db_session, company, actors, variants):
        order = _draft(actors, company, variants)
        batch = QRBatch(order_id=order.id, batch_no="B-2")
        db_session.add(batch)
        db_session.flush()
        db_session.add_all([
            QRCode(batch_id=batch.id, order_id=order.id, code="QR-2"),
            QRCode(batch_id=batch.id, order_id=order.id, code="QR-3", status="printed"),
        ])
        db_session.commit()

        with pytest.raises(IllegalTransition):
            order_service.delete_order(order.id, actor=actors.super_admin)
        assert db_session.query(Order).filter_by(id=order.id).count() == 1
        assert db_session.query(QRCode).filter_by(order_id=order.id).count() == 2
        assert db_session.query(OrderItem).filter_by(order_id=order.id).count() == 1

    def test_parent_of_other_orders_blocked(self, company, actors, variants):
        parent = _draft(actors, company, variants)
        order_service.create_order(
            actor=actors.dist_user,
            order_type="D2H",
            buyer_org_id=company.dist.id,
            seller_org_id=company.hq.id,
            parent_order_id=parent.id,
        )
        with pytest.raises(IllegalTransition):
            order_service.delete_order(parent.id, actor=actors.super_admin)


class TestAllocation:

    def test_allocate_and_release(self, approved_h2m, company, actors, variants):
        movements = inventory_service.allocate_for_order(approved_h2m.id, actor=actors.mfr_manager)
        assert sorted(m.allocated_change for m in movements) == [5, 10]
        pos = inventory_service.get_position(variants.a.id, company.manufacturer.id)
        assert (pos["quantity_on_hand"], pos["quantity_allocated"], pos["quantity_available"]) == (20, 10, 10)

        assert inventory_service.allocate_for_order(approved_h2m.id, actor=actors.mfr_manager) == []

        released = inventory_service.deallocate_for_order(approved_h2m.id, actor=actors.mfr_manager)
        assert sorted(m.allocated_change for m in released) == [-10, -5]
        assert inventory_service.get_position(variants.a.id, company.manufacturer.id)["quantity_allocated"] == 0

    def test_allocation_needs_approved_order(self, company, actors, variants):
        order = _draft(actors, company, variants)
        with pytest.raises(IllegalTransition):
            inventory_service.allocate_for_order(order.id, actor=actors.mfr_manager)

    def test_allocation_by_seller_only(self, approved_h2m, actors):
        with pytest.raises(PermissionDenied):
            inventory_service.allocate_for_order(approved_h2m.id, actor=actors.hq_power)
