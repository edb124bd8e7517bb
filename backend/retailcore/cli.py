# Overview: Flask CLI command groups for bootstrap, alert scans and ledger checks.

# backend/retailcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to retailcore (PowerShell: $env:FLASK_APP="retailcore").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system seed-demo
#   Create a demo user, client, supplier, payment method and a few stocked products.
#
# Alerts:
# - python -m flask alerts scan
#   Re-evaluate every active product and raise missing alerts.
#
# Ledger:
# - python -m flask ledger verify --product-id 1
#   Replay a product's movements and compare with the stored quantity.
# - python -m flask ledger verify
#   Same, for every product.

import click
from flask.cli import with_appcontext

from .exceptions import NotFoundError
from .extensions import db
from .models import Product, User, Client, Supplier, PaymentMethod
from .services import alert_service, catalog_service, ledger_service


DEMO_PRODUCTS = [
    # sku, name, price_cents, min_stock, opening stock
    ("SKU-1001", "Arroz 5kg", 2350, 5, 40),
    ("SKU-1002", "Aceite 1L", 1190, 5, 12),
    ("SKU-1003", "Azucar 1kg", 450, 8, 6),
    ("SKU-1004", "Leche evaporada", 390, 10, 3),
]


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Seed a small demo dataset. Safe to run twice; existing rows are kept.

    Opening stock is booked as INBOUND movements so the ledger explains it.
    """
    user = db.session.query(User).filter_by(username="admin").first()
    if not user:
        user = User(username="admin", full_name="Store Administrator", is_admin=True)
        db.session.add(user)
    if not db.session.query(Client).filter_by(document_number="00000000").first():
        db.session.add(Client(name="Walk-in customer", document_number="00000000"))
    if not db.session.query(Supplier).filter_by(tax_id="20100000001").first():
        db.session.add(Supplier(name="Distribuidora Central", tax_id="20100000001"))
    if not db.session.query(PaymentMethod).filter_by(name="CASH").first():
        db.session.add(PaymentMethod(name="CASH"))
    db.session.commit()
    click.echo(f"PASS Demo user: {user.username} (ID: {user.id})")

    for sku, name, price_cents, min_stock, opening in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(sku=sku).first():
            click.echo(f"WARN  Product {sku} already exists, skipping...")
            continue
        product = catalog_service.create_product(sku=sku, name=name, price_cents=price_cents, min_stock=min_stock)
        ledger_service.register_inbound(product.id, opening, user.id, "Opening stock")
        click.echo(f"PASS Created {sku} {name} with {opening} units")


@click.group('alerts')
def alerts_group():
    """Stock alert commands."""


@alerts_group.command('scan')
@with_appcontext
def scan_alerts():
    """Re-evaluate every active product against its minimum."""
    created = alert_service.scan_all_products()
    for alert in created:
        click.echo(f"ALERT {alert.urgency:<8} {alert.kind:<12} product={alert.product_id} {alert.message}")
    click.echo(f"DONE {len(created)} new alert(s)")


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection commands."""


@ledger_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Only verify this product')
@with_appcontext
def verify_ledger(product_id):
    """Replay movement history and report products whose chain is broken."""
    if product_id is not None:
        product_ids = [product_id]
    else:
        product_ids = [row.id for row in db.session.query(Product.id).order_by(Product.id).all()]

    broken = 0
    for pid in product_ids:
        try:
            report = ledger_service.verify_chain(pid)
        except NotFoundError as e:
            raise click.ClickException(str(e))
        if report["consistent"]:
            click.echo(
                f"PASS product={pid} movements={report['movement_count']} on_hand={report['quantity_on_hand']}"
            )
        else:
            broken += 1
            click.echo(
                f"FAIL product={pid} replayed={report['replayed_quantity']} "
                f"on_hand={report['quantity_on_hand']} first_break={report['first_break_movement_id']}"
            )

    if broken:
        raise click.ClickException(f"{broken} product(s) with an inconsistent ledger")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(alerts_group)
    app.cli.add_command(ledger_group)
