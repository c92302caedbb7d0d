# Overview: Flask CLI command group for database bootstrap, exports and maintenance.

# backend/shopledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask shop <command> [options]
#
# - python -m flask shop init-db
#   Create all tables (idempotent).
# - python -m flask shop reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask shop export items items.csv
#   Write records in their sheet column layout (items, sales, ledger, customers, suppliers).
# - python -m flask shop expire-quotations
#   Mark open quotations past valid_until as EXPIRED.
# - python -m flask shop stock-report [--status "Low Stock"]
#   Print stock status per item and the inventory valuation.

import csv

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, Item, LedgerEntry, SaleLine, Supplier
from .services import inventory_service, quotation_service

EXPORTS = {
    "items": lambda: db.session.query(Item).order_by(Item.id),
    "sales": lambda: db.session.query(SaleLine).order_by(SaleLine.sale_id, SaleLine.id),
    "ledger": lambda: db.session.query(LedgerEntry).order_by(LedgerEntry.occurred_at, LedgerEntry.id),
    "customers": lambda: db.session.query(Customer).order_by(Customer.id),
    "suppliers": lambda: db.session.query(Supplier).order_by(Supplier.id),
}


@click.group('shop')
def shop_group():
    """Shop ledger bootstrap, export and maintenance commands."""


@shop_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@shop_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@shop_group.command('export')
@click.argument('kind', type=click.Choice(sorted(EXPORTS)))
@click.argument('path', type=click.Path(dir_okay=False, writable=True))
@with_appcontext
def export_rows(kind, path):
    """Export records as CSV using their sheet column layout."""
    rows = [record.to_row() for record in EXPORTS[kind]()]
    with open(path, "w", newline="", encoding="utf-8") as fh:
        if rows:
            writer = csv.DictWriter(fh, fieldnames=list(rows[0].keys()))
            writer.writeheader()
            writer.writerows(rows)
    click.echo(f"PASS Exported {len(rows)} {kind} rows to {path}")


@shop_group.command('expire-quotations')
@with_appcontext
def expire_quotations():
    """Mark open quotations past their validity date as EXPIRED."""
    count = quotation_service.expire_quotations(actor="cli")
    click.echo(f"PASS Expired {count} quotations.")


@shop_group.command('stock-report')
@click.option('--status', default=None, help='Only items in this stock status')
@with_appcontext
def stock_report(status):
    """Print stock status per item and the total valuation."""
    rows = inventory_service.list_stock_status(status=status)
    if not rows:
        click.echo("No items found.")
    for row in rows:
        click.echo(f"{row['item_code']:<10} {row['name'][:30]:<30} {row['current_qty']:>6}  {row['status']}")

    valuation = inventory_service.inventory_valuation()
    click.echo(
        f"\nItems: {valuation['item_count']}  Valuation: {valuation['total_value_cents'] / 100:,.2f}"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(shop_group)
