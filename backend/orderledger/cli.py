# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/orderledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to orderledger (PowerShell: $env:FLASK_APP="orderledger").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list
#   List all organizations.
# - python -m flask orgs create --name "Acme Corp" --code "ACME"
#   Create a new organization (tenant).
#
# Stock ledger:
# - python -m flask stock verify --org-id 1
#   Compare every product's on-hand counter with its movement ledger.
#   Exits with status 1 when any product diverges.
#
# Orders:
# - python -m flask orders next-number --org-id 1
#   Preview the next order number for an organization (reserves nothing).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Organization
from .services import numbering_service, stock_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@click.group('stock')
def stock_group():
    """Stock ledger inspection commands."""


@click.group('orders')
def orders_group():
    """Order inspection commands."""


@system_group.command('reset-db')
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


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.id).all()
    if not orgs:
        click.echo("No organizations found")
        return
    for org in orgs:
        status = "active" if org.is_active else "inactive"
        click.echo(f"{org.id}\t{org.code or '-'}\t{org.name}\t{status}")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', default=None, help='Short unique code')
@with_appcontext
def create_org_cli(name, code):
    """Create a new organization (tenant)."""
    if code and db.session.query(Organization).filter_by(code=code).first():
        click.echo(f"Organization with code {code!r} already exists")
        raise SystemExit(1)
    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.commit()
    click.echo(f"Created organization {org.id}: {org.name}")


@stock_group.command('verify')
@click.option('--org-id', type=int, required=True, help='Organization to check')
@with_appcontext
def verify_stock_cli(org_id):
    """Compare on-hand counters with the movement ledger."""
    problems = stock_service.verify_all_stock(org_id)
    if not problems:
        click.echo("Stock ledger consistent")
        return
    for p in problems:
        click.echo(f"product {p['product_id']} ({p['sku']}): counter={p['counter']} ledger={p['ledger']}")
    raise SystemExit(1)


@orders_group.command('next-number')
@click.option('--org-id', type=int, required=True, help='Organization')
@with_appcontext
def next_number_cli(org_id):
    """Preview the next order number."""
    click.echo(str(numbering_service.peek_next_order_number(org_id)))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(orders_group)
