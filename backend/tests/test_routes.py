# Overview: Pytest coverage for the JSON API surface.

"""
API Route Tests

The blueprints are thin: they resolve the caller, scope reads to the
caller's company and translate workflow errors into typed envelopes.
These tests drive one order through the document chain over HTTP and
check the envelope, status codes and read scoping.
"""

from types import SimpleNamespace

import pytest

from supplychain.services import session_service

from conftest import auth_headers


@pytest.fixture
def tokens(actors, other_company, make_actor):
    def _token(actor):
        _, plaintext = session_service.issue_token(actor.user_id)
        return auth_headers(plaintext)

    return SimpleNamespace(
        super_admin=_token(actors.super_admin),
        hq_user=_token(actors.hq_user),
        hq_power=_token(actors.hq_power),
        mfr_manager=_token(actors.mfr_manager),
        wh_manager=_token(actors.wh_manager),
        outsider=_token(make_actor(other_company.hq, 10)),
    )


class TestSystemRoutes:

    def test_health(self, client, db_session):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json()["checks"]["database"]["status"] == "healthy"

    def test_version(self, client):
        data = client.get("/api/version").get_json()
        assert data["order_close_policy"] == "receipt_created"


class TestAuthentication:

    def test_missing_token(self, client, db_session):
        response = client.get("/api/orders")
        assert response.status_code == 401
        assert response.get_json()["error"]["code"] == "UNAUTHENTICATED"

    def test_unknown_token(self, client, db_session):
        response = client.get("/api/orders", headers=auth_headers("not-a-token"))
        assert response.status_code == 401

    def test_revoked_token(self, client, actors):
        _, plaintext = session_service.issue_token(actors.hq_user.user_id)
        session_service.revoke_token(plaintext)
        assert client.get("/api/orders", headers=auth_headers(plaintext)).status_code == 401


class TestOrderFlow:

    def test_order_through_document_chain(self, client, company, variants, stock, tokens):
        """Create, submit, approve and walk every document over HTTP."""
        stock(variants.a, company.manufacturer, 10, unit_cost_cents=400)

        response = client.post("/api/orders", headers=tokens.hq_user, json={
            "order_type": "h2m",
            "buyer_org_id": company.hq.id,
            "seller_org_id": company.manufacturer.id,
            "items": [{"variant_id": variants.a.id, "qty": 4, "unit_price_cents": 900}],
        })
        assert response.status_code == 201
        order = response.get_json()["order"]
        assert order["status"] == "draft"
        assert order["total_amount_cents"] == 3600

        response = client.post(f"/api/orders/{order['id']}/submit", headers=tokens.hq_user)
        assert response.get_json()["order"]["status"] == "submitted"

        response = client.post(f"/api/orders/{order['id']}/approve", headers=tokens.hq_power)
        assert response.status_code == 200
        docs = response.get_json()["documents"]
        assert [d["doc_type"] for d in docs] == ["PO"]

        response = client.post(f"/api/documents/{docs[0]['id']}/acknowledge", headers=tokens.mfr_manager)
        docs = response.get_json()["documents"]
        invoice = next(d for d in docs if d["doc_type"] == "INVOICE")

        response = client.post(f"/api/documents/{invoice['id']}/acknowledge", headers=tokens.hq_power)
        payment = next(d for d in response.get_json()["documents"] if d["doc_type"] == "PAYMENT")

        response = client.post(f"/api/documents/{payment['id']}/acknowledge", headers=tokens.mfr_manager)
        assert response.status_code == 200
        assert [d["doc_type"] for d in response.get_json()["documents"]] == ["PO", "INVOICE", "PAYMENT", "RECEIPT"]

        order = client.get(f"/api/orders/{order['id']}", headers=tokens.hq_user).get_json()["order"]
        assert order["status"] == "closed"

        progress = client.get(f"/api/orders/{order['id']}/progress", headers=tokens.hq_user).get_json()["progress"]
        assert progress["completed_steps"] == 4

        position = client.get(
            f"/api/inventory/{company.manufacturer.id}/positions/{variants.a.id}", headers=tokens.mfr_manager
        ).get_json()["position"]
        assert position["quantity_on_hand"] == 6

    def test_error_envelope(self, client, company, variants, tokens):
        response = client.post("/api/orders", headers=tokens.hq_user, json={
            "order_type": "H2M",
            "buyer_org_id": company.hq.id,
            "seller_org_id": company.dist.id,
        })
        assert response.status_code == 422
        body = response.get_json()
        assert body["ok"] is False
        assert body["error"]["code"] == "INVALID_HIERARCHY"
        assert body["error"]["retriable"] is False

    def test_missing_fields(self, client, company, tokens):
        response = client.post("/api/orders", headers=tokens.hq_user, json={"order_type": "H2M"})
        assert response.status_code == 400
        assert response.get_json()["error"]["details"]["missing"] == ["buyer_org_id", "seller_org_id"]

    def test_permission_denied_status(self, client, approved_h2m, tokens):
        response = client.delete(f"/api/orders/{approved_h2m.id}", headers=tokens.hq_power)
        assert response.status_code == 403
        assert response.get_json()["error"]["details"]["reason"] == "NOT_SUPER_ADMIN"

    def test_illegal_transition_status(self, client, approved_h2m, tokens):
        response = client.post(f"/api/orders/{approved_h2m.id}/submit", headers=tokens.hq_user)
        assert response.status_code == 409
        assert response.get_json()["error"]["code"] == "ILLEGAL_TRANSITION"


class TestReadScoping:

    def test_other_company_order_is_not_found(self, client, approved_h2m, tokens):
        assert client.get(f"/api/orders/{approved_h2m.id}", headers=tokens.outsider).status_code == 404
        assert client.get(f"/api/orders/{approved_h2m.id}", headers=tokens.hq_user).status_code == 200

    def test_order_events(self, client, approved_h2m, tokens):
        assert client.get(f"/api/orders/{approved_h2m.id}/events", headers=tokens.outsider).status_code == 404
        events = client.get(f"/api/orders/{approved_h2m.id}/events", headers=tokens.hq_user).get_json()["events"]
        assert {"order.created", "order.approved", "document.created"} <= {e["event_type"] for e in events}
        assert events[-1]["event_type"] == "order.created"

    def test_order_list_is_company_scoped(self, client, approved_h2m, tokens):
        assert client.get("/api/orders", headers=tokens.outsider).get_json()["orders"] == []
        orders = client.get("/api/orders", headers=tokens.hq_user).get_json()["orders"]
        assert [o["id"] for o in orders] == [approved_h2m.id]

    def test_other_company_inventory_is_not_found(self, client, company, tokens):
        response = client.get(f"/api/inventory/{company.warehouse.id}/positions", headers=tokens.outsider)
        assert response.status_code == 404

    def test_ledger_verification_for_super_admin(self, client, company, tokens):
        assert client.get("/api/inventory/verify", headers=tokens.hq_power).status_code == 403
        response = client.get("/api/inventory/verify", headers=tokens.super_admin)
        assert response.status_code == 200


class TestInventoryRoutes:

    def test_addition_and_adjustment(self, client, company, variants, tokens):
        url = f"/api/inventory/{company.warehouse.id}"
        response = client.post(f"{url}/additions", headers=tokens.wh_manager, json={
            "variant_id": variants.a.id,
            "quantity": 8,
            "unit_cost_cents": 250,
        })
        assert response.status_code == 201
        assert response.get_json()["position"]["quantity_on_hand"] == 8

        response = client.post(f"{url}/adjustments", headers=tokens.wh_manager, json={
            "variant_id": variants.a.id,
            "quantity_change": -20,
        })
        assert response.status_code == 409
        assert response.get_json()["error"]["code"] == "INSUFFICIENT_STOCK"

        movements = client.get(f"{url}/movements", headers=tokens.wh_manager).get_json()["movements"]
        assert [m["movement_type"] for m in movements] == ["addition"]

    def test_movement_date_filter(self, client, company, variants, stock, tokens):
        stock(variants.a, company.warehouse, 3)
        url = f"/api/inventory/{company.warehouse.id}/movements"

        since = client.get(url, headers=tokens.wh_manager, query_string={"since": "2000-01-01T00:00:00Z"})
        assert len(since.get_json()["movements"]) == 1
        until = client.get(url, headers=tokens.wh_manager, query_string={"until": "2000-01-01T00:00:00+02:00"})
        assert until.get_json()["movements"] == []

        response = client.get(url, headers=tokens.wh_manager, query_string={"since": "yesterday"})
        assert response.status_code == 400
        assert response.get_json()["error"]["details"]["field"] == "since"

    def test_transfer_over_http(self, client, company, variants, stock, tokens, make_actor):
        stock(variants.a, company.warehouse, 10)
        response = client.post("/api/transfers", headers=tokens.wh_manager, json={
            "from_org_id": company.warehouse.id,
            "to_org_id": company.dist.id,
            "lines": [{"variant_id": variants.a.id, "quantity": 4}],
        })
        assert response.status_code == 201
        transfer = response.get_json()["transfer"]
        assert transfer["status"] == "pending"

        dist_token = auth_headers(session_service.issue_token(make_actor(company.dist, 40).user_id)[1])
        response = client.post(f"/api/transfers/{transfer['id']}/receive", headers=dist_token)
        assert response.status_code == 200
        assert response.get_json()["transfer"]["status"] == "received"
