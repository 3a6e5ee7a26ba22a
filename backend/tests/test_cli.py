# Overview: Pytest coverage for the maintenance CLI.

from supplychain.models import AdjustmentReason, InventoryPosition, Organization
from supplychain.cli import DEFAULT_ADJUSTMENT_REASONS


def test_init_db_seeds_reasons_once(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["system", "init-db"])
    assert "PASS" in result.output
    assert db_session.query(AdjustmentReason).count() == len(DEFAULT_ADJUSTMENT_REASONS)

    runner.invoke(args=["system", "init-db"])
    assert db_session.query(AdjustmentReason).count() == len(DEFAULT_ADJUSTMENT_REASONS)


def test_create_org_reports_hierarchy_errors(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["orgs", "create", "--code", "HQ1", "--name", "Root", "--type", "HQ"])
    assert "PASS" in result.output
    hq = db_session.query(Organization).filter_by(org_code="HQ1").one()

    result = runner.invoke(args=[
        "orgs", "create", "--code", "S1", "--name", "Shop", "--type", "SHOP", "--parent-id", str(hq.id),
    ])
    assert "FAIL INVALID_HIERARCHY" in result.output
    assert db_session.query(Organization).filter_by(org_code="S1").count() == 0


def test_ledger_verify_rebuilds(app, db_session, company, variants, stock):
    stock(variants.a, company.warehouse, 4)
    db_session.query(InventoryPosition).update({"quantity_on_hand": 40, "quantity_available": 40})
    db_session.commit()

    runner = app.test_cli_runner()
    result = runner.invoke(args=["ledger", "verify", "--rebuild"])
    assert "1 mismatched position(s), rebuilt" in result.output

    result = runner.invoke(args=["ledger", "verify"])
    assert "PASS All positions match the ledger" in result.output


def test_recover_dry_run(app, db_session, approved_h2m):
    result = app.test_cli_runner().invoke(args=["workflow", "recover", "--dry-run"])
    assert result.exit_code == 0
    assert "Purchase orders created: 0" in result.output
