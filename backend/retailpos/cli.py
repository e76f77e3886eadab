# Overview: Flask CLI command groups for bootstrap and stock ledger inspection.

# backend/retailpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP=retailpos (PowerShell: $env:FLASK_APP="retailpos").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system init [--org "Org Name"] [--prefix S1]
#   Bootstrap a default organization, store, admin user and cash payment method.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock ledger:
# - python -m flask stock verify [--org-id 1] [--product-id 7]
#   Replay each product's movement chain and report any mismatch with current_stock.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Organization, PaymentMethod, Product, Store, User
from .models.auth import ROLE_ADMIN
from .services.ledger_service import StockLedger
from .services.repository import Repository


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Organization', help='Organization name')
@click.option('--org-code', default='DEFAULT', help='Organization code')
@click.option('--prefix', default='S1', help='Sale number prefix of the default store')
@with_appcontext
def init_system(org_name, org_code, prefix):
    """
    Initialize a usable system: organization, store, admin user, cash tender.

    Safe to run repeatedly; existing rows are reused.
    """
    click.echo("START Initializing system...")
    db.create_all()

    org = db.session.query(Organization).filter_by(code=org_code).first()
    if not org:
        org = Organization(name=org_name, code=org_code, is_active=True)
        db.session.add(org)
        db.session.commit()
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    store = db.session.query(Store).filter_by(org_id=org.id, is_deleted=False).first()
    if not store:
        store = Store(org_id=org.id, name="Main Store", sale_number_prefix=prefix)
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created store: {store.name} (ID: {store.id}, prefix: {prefix})")
    else:
        click.echo(f"PASS Using existing store: {store.name} (ID: {store.id})")

    admin = db.session.query(User).filter_by(org_id=org.id, username="admin").first()
    if not admin:
        admin = User(org_id=org.id, store_id=store.id, username="admin", role=ROLE_ADMIN)
        db.session.add(admin)
        db.session.commit()
        click.echo(f"PASS Created admin user (ID: {admin.id})")
    else:
        click.echo(f"PASS Using existing admin user (ID: {admin.id})")

    cash = db.session.query(PaymentMethod).filter_by(org_id=org.id, type="CASH", is_deleted=False).first()
    if not cash:
        cash = PaymentMethod(org_id=org.id, name="Cash", type="CASH")
        db.session.add(cash)
        db.session.commit()
        click.echo(f"PASS Created payment method: {cash.name} (ID: {cash.id})")

    click.echo("\nDONE System initialized")
    click.echo(f"Send X-User-Id: {admin.id} to act as the admin user.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('stock')
def stock_group():
    """Stock ledger inspection commands."""


@stock_group.command('verify')
@click.option('--org-id', type=int, default=None, help='Only products of this organization')
@click.option('--product-id', type=int, default=None, help='Only this product')
@with_appcontext
def verify_stock(org_id, product_id):
    """Replay every product's movement chain and compare to current_stock."""
    ledger = StockLedger(Repository(db.session))

    query = db.session.query(Product.id)
    if org_id is not None:
        query = query.filter(Product.org_id == org_id)
    if product_id is not None:
        query = query.filter(Product.id == product_id)

    checked = 0
    failures = 0
    for (pid,) in query.order_by(Product.id).all():
        report = ledger.replay(pid)
        checked += 1
        if report["consistent"]:
            continue
        failures += 1
        click.echo(
            f"FAIL product {pid}: current_stock={report['current_stock']} "
            f"replayed={report['replayed_stock']} broken_links={len(report['broken_links'])}"
        )
        for link in report["broken_links"]:
            click.echo(f"     movement {link['movement_id']}: {link}")

    if failures:
        click.echo(f"\nFAIL {failures} of {checked} products are inconsistent")
        raise SystemExit(1)
    click.echo(f"PASS {checked} products consistent with their ledger")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
