"""
Pytest fixtures for supply-chain backend tests.

Provides test database setup, a two-company organization hierarchy,
actors at the usual role tiers, a small catalog, and the test client.
"""

from types import SimpleNamespace

import pytest
from supplychain import create_app
from supplychain.extensions import db
from supplychain.models import Product, ProductVariant, User
from supplychain.services import hierarchy_service, inventory_service, order_service, session_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'RETRY_BACKOFF_BASE': 0,
    'LOCK_TIMEOUT_SECONDS': 2.0,
    'ORDER_CLOSE_POLICY': 'receipt_created',
    'REQUIRE_PARENT_ORDER_TYPES': (),
    'PARENT_ORDER_WINDOW_DAYS': None,
    'FULFILLMENT_ORDER_TYPES': ('H2M', 'D2H', 'S2D'),
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.expunge_all()


def _org(code, name, org_type, parent=None, **kwargs):
    return hierarchy_service.create_organization(
        org_code=code,
        org_name=name,
        org_type=org_type,
        parent_org_id=parent.id if parent is not None else None,
        **kwargs,
    )


@pytest.fixture(scope='function')
def company(db_session):
    """
    Company A:

        HQ
        +-- MANUFACTURER
        +-- WAREHOUSE
        +-- DISTRIBUTOR (dist)  -- SHOP
        +-- DISTRIBUTOR (dist2)
    """
    hq = _org("A-HQ", "Acme HQ", "HQ")
    manufacturer = _org("A-MFR", "Acme Manufacturing", "MANUFACTURER", hq)
    warehouse = _org("A-WH", "Acme Warehouse", "WAREHOUSE", hq)
    dist = _org("A-D1", "Acme Distribution North", "DISTRIBUTOR", hq)
    dist2 = _org("A-D2", "Acme Distribution South", "DISTRIBUTOR", hq)
    shop = _org("A-S1", "Corner Shop", "SHOP", dist)
    return SimpleNamespace(
        hq=hq,
        manufacturer=manufacturer,
        warehouse=warehouse,
        dist=dist,
        dist2=dist2,
        shop=shop,
    )


@pytest.fixture(scope='function')
def other_company(db_session):
    """Company B: an unrelated tenant."""
    hq = _org("B-HQ", "Beta HQ", "HQ")
    manufacturer = _org("B-MFR", "Beta Manufacturing", "MANUFACTURER", hq)
    dist = _org("B-D1", "Beta Distribution", "DISTRIBUTOR", hq)
    return SimpleNamespace(hq=hq, manufacturer=manufacturer, dist=dist)


@pytest.fixture(scope='function')
def make_actor(db_session):
    """Factory: create a user in `org` at `role_level` and return its Actor."""
    counter = {"n": 0}

    def _make(org, role_level, email=None):
        counter["n"] += 1
        user = User(
            org_id=org.id,
            email=email or f"user{counter['n']}@{org.org_code.lower()}.test",
            full_name=f"User {counter['n']}",
            role_level=role_level,
        )
        db_session.add(user)
        db_session.commit()
        return session_service.actor_for_user(user)

    return _make


@pytest.fixture(scope='function')
def actors(company, make_actor):
    """Actors of company A at the tiers the workflow cares about."""
    return SimpleNamespace(
        super_admin=make_actor(company.hq, 1),
        hq_admin=make_actor(company.hq, 10),
        hq_power=make_actor(company.hq, 20),
        hq_user=make_actor(company.hq, 40),
        mfr_manager=make_actor(company.manufacturer, 30),
        mfr_guest=make_actor(company.manufacturer, 50),
        dist_power=make_actor(company.dist, 20),
        dist_manager=make_actor(company.dist, 30),
        dist_user=make_actor(company.dist, 40),
        shop_manager=make_actor(company.shop, 30),
        wh_manager=make_actor(company.warehouse, 30),
    )


@pytest.fixture(scope='function')
def variants(db_session, company):
    """Two variants of one product owned by company A."""
    product = Product(company_id=company.hq.id, product_code="TEE", product_name="T-Shirt")
    db_session.add(product)
    db_session.flush()
    a = ProductVariant(product_id=product.id, sku="TEE-M", variant_name="T-Shirt M")
    b = ProductVariant(product_id=product.id, sku="TEE-L", variant_name="T-Shirt L")
    db_session.add_all([a, b])
    db_session.commit()
    return SimpleNamespace(a=a, b=b, product=product)


@pytest.fixture(scope='function')
def stock(actors):
    """Factory: receive `qty` units of a variant at an org."""
    def _stock(variant, org, qty, unit_cost_cents=None):
        return inventory_service.add_stock(
            variant.id,
            org.id,
            qty,
            actor=actors.super_admin,
            unit_cost_cents=unit_cost_cents,
        )

    return _stock


@pytest.fixture(scope='function')
def approved_h2m(company, actors, variants, stock):
    """Approved H2M order: HQ buys 10 x A and 5 x B from the manufacturer (stocked 20 / 10)."""
    stock(variants.a, company.manufacturer, 20, unit_cost_cents=500)
    stock(variants.b, company.manufacturer, 10, unit_cost_cents=700)
    order = order_service.create_order(
        actor=actors.hq_user,
        order_type="H2M",
        buyer_org_id=company.hq.id,
        seller_org_id=company.manufacturer.id,
        items=[
            {"variant_id": variants.a.id, "qty": 10, "unit_price_cents": 1200},
            {"variant_id": variants.b.id, "qty": 5, "unit_price_cents": 1500},
        ],
    )
    order_service.submit(order.id, actor=actors.hq_user)
    return order_service.approve(order.id, actor=actors.hq_power)


def position(variant, org):
    return inventory_service.get_position(variant.id, org.id)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
