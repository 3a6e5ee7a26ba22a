# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/supplychain/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables and seed the default stock adjustment reasons (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization hierarchy:
# - python -m flask orgs create --code "ACME-HQ" --name "Acme HQ" --type HQ
#   Create an organization (add --parent-id for everything below HQ).
# - python -m flask orgs list [--company-id 1]
#   List organizations with their type, parent and company.
# - python -m flask orgs link-distributor --shop-id 5 --distributor-id 3
#   Link a shop to a distributor it may order from (S2D).
#
# Catalog:
# - python -m flask catalog create-variant --company-id 1 --product-code TEE --product-name "T-Shirt" --sku TEE-M --name "T-Shirt M"
#   Create a product variant (the product is created on first use).
#
# Users and tokens:
# - python -m flask users create --org-id 1 --email admin@acme.local --role-level 1
#   Create a dashboard user.
# - python -m flask users issue-token --email admin@acme.local
#   Print a new bearer token for API calls.
#
# Ledger:
# - python -m flask ledger verify [--rebuild]
#   Compare cached positions with a ledger replay; --rebuild rewrites mismatches.
#
# Workflow:
# - python -m flask workflow recover [--dry-run]
#   Finish document chains and fulfilments left incomplete by an interrupted process.

import click
from flask.cli import with_appcontext

from .errors import WorkflowError
from .extensions import db
from .models import AdjustmentReason, Organization, Product, ProductVariant, User
from .services import hierarchy_service, inventory_service, recovery_service, session_service


DEFAULT_ADJUSTMENT_REASONS = [
    # (code, name, description, requires_approval)
    ("COUNT", "Physical count correction", "Stock take found a different quantity", False),
    ("DAMAGE", "Damaged goods", "Stock written off as damaged", False),
    ("EXPIRED", "Expired goods", "Stock past its shelf life", False),
    ("RETURN", "Customer return", "Returned goods put back into stock", False),
    ("THEFT", "Theft or loss", "Stock missing without explanation", True),
    ("WRITE_OFF", "Write-off", "Large manual write-off", True),
]


def seed_adjustment_reasons() -> int:
    """Insert missing default reasons. Returns the number created."""
    created = 0
    for code, name, description, requires_approval in DEFAULT_ADJUSTMENT_REASONS:
        if db.session.query(AdjustmentReason).filter_by(reason_code=code).first():
            continue
        db.session.add(AdjustmentReason(
            reason_code=code,
            reason_name=name,
            reason_description=description,
            requires_approval=requires_approval,
        ))
        created += 1
    db.session.commit()
    return created


# =============================================================================
# SYSTEM COMMANDS
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables and seed reference data."""
    db.create_all()
    created = seed_adjustment_reasons()
    click.echo(f"PASS Tables ready, {created} adjustment reason(s) created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        return
    db.drop_all()
    db.create_all()
    created = seed_adjustment_reasons()
    click.echo(f"PASS Database reset, {created} adjustment reason(s) created")


# =============================================================================
# ORGANIZATION HIERARCHY COMMANDS
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization hierarchy commands."""


@orgs_group.command('create')
@click.option('--code', required=True, help='Organization code (unique)')
@click.option('--name', required=True, help='Organization name')
@click.option('--type', 'org_type', required=True,
              type=click.Choice(['HQ', 'MANUFACTURER', 'DISTRIBUTOR', 'SHOP', 'WAREHOUSE'], case_sensitive=False))
@click.option('--parent-id', type=int, default=None, help='Parent organization id')
@click.option('--require-payment-proof', is_flag=True, help='Invoices to this org need a payment proof')
@with_appcontext
def create_org_cli(code, name, org_type, parent_id, require_payment_proof):
    """Create an organization."""
    try:
        org = hierarchy_service.create_organization(
            org_code=code,
            org_name=name,
            org_type=org_type.upper(),
            parent_org_id=parent_id,
            require_payment_proof=require_payment_proof,
        )
    except WorkflowError as e:
        click.echo(f"FAIL {e.code}: {e.message}")
        return
    click.echo(f"PASS Created {org.org_type} {org.org_name} (ID: {org.id}, Code: {org.org_code})")


@orgs_group.command('list')
@click.option('--company-id', type=int, default=None, help='Only this company')
@with_appcontext
def list_orgs(company_id):
    """List organizations."""
    orgs = hierarchy_service.list_organizations(company_id=company_id)
    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Code':<16} {'Name':<30} {'Type':<13} {'Parent':<8} {'Company'}")
    click.echo("="*90)
    for org in orgs:
        try:
            company = hierarchy_service.company_of(org.id)
        except WorkflowError:
            company = "orphan"
        click.echo(
            f"{org.id:<5} {org.org_code:<16} {org.org_name[:30]:<30} {org.org_type:<13} "
            f"{org.parent_org_id or '-':<8} {company}"
        )
    click.echo("="*90 + "\n")


@orgs_group.command('link-distributor')
@click.option('--shop-id', type=int, required=True)
@click.option('--distributor-id', type=int, required=True)
@with_appcontext
def link_distributor_cli(shop_id, distributor_id):
    """Allow a shop to order from a distributor."""
    try:
        hierarchy_service.link_distributor(shop_id, distributor_id)
    except WorkflowError as e:
        click.echo(f"FAIL {e.code}: {e.message}")
        return
    click.echo(f"PASS Shop {shop_id} linked to distributor {distributor_id}")


# =============================================================================
# CATALOG COMMANDS
# =============================================================================

@click.group('catalog')
def catalog_group():
    """Product catalog commands."""


@catalog_group.command('create-variant')
@click.option('--company-id', type=int, required=True, help='HQ organization id')
@click.option('--product-code', required=True)
@click.option('--product-name', default=None, help='Used when the product does not exist yet')
@click.option('--sku', required=True)
@click.option('--name', 'variant_name', required=True)
@with_appcontext
def create_variant(company_id, product_code, product_name, sku, variant_name):
    """Create a product variant, creating its product on first use."""
    company = db.session.query(Organization).filter_by(id=company_id, org_type="HQ").first()
    if company is None:
        click.echo(f"FAIL Company {company_id} not found")
        return

    product = db.session.query(Product).filter_by(company_id=company_id, product_code=product_code).first()
    if product is None:
        product = Product(company_id=company_id, product_code=product_code, product_name=product_name or product_code)
        db.session.add(product)
        db.session.flush()

    if db.session.query(ProductVariant).filter_by(product_id=product.id, sku=sku).first():
        click.echo(f"FAIL Variant '{sku}' already exists")
        return
    variant = ProductVariant(product_id=product.id, sku=sku, variant_name=variant_name)
    db.session.add(variant)
    db.session.commit()
    click.echo(f"PASS Created variant {variant.sku} (ID: {variant.id}) of {product.product_code}")


# =============================================================================
# USER COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--org-id', type=int, required=True)
@click.option('--email', prompt=True)
@click.option('--full-name', default=None)
@click.option('--role-level', type=int, default=40, show_default=True, help='1 = super admin ... 50 = guest')
@with_appcontext
def create_user_cli(org_id, email, full_name, role_level):
    """Create a dashboard user."""
    if db.session.query(Organization).filter_by(id=org_id).first() is None:
        click.echo(f"FAIL Organization {org_id} not found")
        return
    if db.session.query(User).filter_by(email=email).first():
        click.echo(f"FAIL User '{email}' already exists")
        return
    user = User(org_id=org_id, email=email, full_name=full_name, role_level=role_level)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user {user.email} (ID: {user.id}, level {user.role_level})")


@users_group.command('issue-token')
@click.option('--email', required=True)
@with_appcontext
def issue_token_cli(email):
    """Print a new bearer token for a user."""
    user = db.session.query(User).filter_by(email=email).first()
    if user is None:
        click.echo(f"FAIL User '{email}' not found")
        return
    try:
        session, token = session_service.issue_token(user.id)
    except WorkflowError as e:
        click.echo(f"FAIL {e.code}: {e.message}")
        return
    click.echo(f"PASS Token (expires {session.expires_at.isoformat()}):")
    click.echo(token)


# =============================================================================
# LEDGER COMMANDS
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Stock ledger maintenance commands."""


@ledger_group.command('verify')
@click.option('--rebuild', is_flag=True, help='Rewrite mismatched positions from the ledger')
@with_appcontext
def verify_ledger(rebuild):
    """Compare cached positions with a ledger replay."""
    mismatches = inventory_service.verify_positions()
    if not mismatches:
        click.echo("PASS All positions match the ledger")
        return

    for row in mismatches:
        click.echo(
            f"FAIL variant {row['variant_id']} @ org {row['organization_id']}: "
            f"cached={row['cached']} expected={row['expected']}"
        )
        if rebuild:
            inventory_service.recompute_position(row['variant_id'], row['organization_id'], persist=True)
            click.echo("     rebuilt")
    click.echo(f"\n{len(mismatches)} mismatched position(s)" + (", rebuilt" if rebuild else ""))


# =============================================================================
# WORKFLOW COMMANDS
# =============================================================================

@click.group('workflow')
def workflow_group():
    """Document workflow maintenance commands."""


@workflow_group.command('recover')
@click.option('--dry-run', is_flag=True, help='Report what would be repaired without committing')
@with_appcontext
def recover_workflow(dry_run):
    """Complete document chains left behind by an interrupted process."""
    report = recovery_service.recover(dry_run=dry_run)
    summary = report.to_dict()
    prefix = "DRY RUN " if dry_run else ""
    click.echo(f"{prefix}Purchase orders created: {len(summary['created_purchase_orders'])}")
    click.echo(f"{prefix}Orders fulfilled:        {len(summary['fulfilled_orders'])}")
    click.echo(f"{prefix}Successor documents:     {len(summary['created_successors'])}")
    click.echo(f"{prefix}Orders closed:           {len(summary['closed_orders'])}")
    click.echo(f"{prefix}Positions rebuilt:       {len(summary['rebuilt_positions'])}")
    for failure in summary['failures']:
        click.echo(f"FAIL order {failure['order_id']}: {failure['error']['code']} {failure['error']['message']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(workflow_group)
