# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/stallstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Sites and stalls:
# - python -m flask sites create --name "Riverside Market" --location "North Gate"
# - python -m flask sites list
# - python -m flask stalls create --site-id 1 --name "Front Counter" --type "Retail Counter"
#
# Inspection:
# - python -m flask items list --site-id 1 [--stall-id 2 | --masters]
# - python -m flask movements tail --site-id 1 --limit 20

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import StockError
from .models import STALL_TYPES
from .services import site_service, stock_service, movement_service
from .time_utils import to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, movement history included!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('sites')
def sites_group():
    """Site management commands."""


@sites_group.command('create')
@click.option('--name', required=True, help='Site name')
@click.option('--location', help='Address or description')
@with_appcontext
def create_site_cli(name, location):
    """
    Create a new site.

    Example:
        flask sites create --name "Riverside Market" --location "North Gate"
    """
    try:
        site = site_service.create_site(name=name, location=location)
    except StockError as e:
        click.echo(f"FAIL Error: {e}")
        return

    click.echo(f"PASS Created site: {site.name}")
    click.echo(f"   Site ID: {site.id}")


@sites_group.command('list')
@with_appcontext
def list_sites_cli():
    """List all sites with their stall counts."""
    sites = site_service.list_sites()

    if not sites:
        click.echo("No sites found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Location':<25} {'Stalls'}")
    click.echo("="*70)
    for site in sites:
        click.echo(f"{site.id:<5} {site.name:<30} {(site.location or '-'):<25} {len(site.stalls)}")
    click.echo("="*70 + "\n")


@click.group('stalls')
def stalls_group():
    """Stall management commands."""


@stalls_group.command('create')
@click.option('--site-id', type=int, required=True, help='Site ID')
@click.option('--name', required=True, help='Stall name')
@click.option('--type', 'stall_type', type=click.Choice(STALL_TYPES), default='Other', help='Stall type')
@with_appcontext
def create_stall_cli(site_id, name, stall_type):
    """
    Create a stall inside a site.

    Example:
        flask stalls create --site-id 1 --name "Front Counter" --type "Retail Counter"
    """
    try:
        stall = site_service.create_stall(site_id=site_id, name=name, stall_type=stall_type)
    except StockError as e:
        click.echo(f"FAIL Error: {e}")
        return

    click.echo(f"PASS Created stall: {stall.name} ({stall.stall_type})")
    click.echo(f"   Site ID: {stall.site_id}")
    click.echo(f"   Stall ID: {stall.id}")


@click.group('items')
def items_group():
    """Stock record inspection commands."""


@items_group.command('list')
@click.option('--site-id', type=int, required=True, help='Site ID')
@click.option('--stall-id', type=int, help='Only records at this stall')
@click.option('--masters', 'masters_only', is_flag=True, help='Only master records')
@click.option('--low-stock', 'low_stock_only', is_flag=True, help='Only records at or below threshold')
@with_appcontext
def list_items_cli(site_id, stall_id, masters_only, low_stock_only):
    """
    List stock records.

    Example:
        flask items list --site-id 1
        flask items list --site-id 1 --stall-id 2
        flask items list --site-id 1 --masters --low-stock
    """
    items = stock_service.list_items(
        site_id=site_id,
        stall_id=stall_id,
        masters_only=masters_only,
        low_stock_only=low_stock_only,
    )

    if not items:
        click.echo("No stock items found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<6} {'Name':<28} {'Scope':<12} {'Master':<8} {'Qty':>8} {'Unit':<8} {'Low'}")
    click.echo("="*90)
    for item in items:
        scope = "master" if item.is_master else f"stall {item.stall_id}"
        master = str(item.original_master_item_id) if item.original_master_item_id else "-"
        low = "LOW" if item.is_low_stock else ""
        click.echo(f"{item.id:<6} {item.name:<28} {scope:<12} {master:<8} {item.quantity:>8} {item.unit:<8} {low}")
    click.echo("="*90 + "\n")


@click.group('movements')
def movements_group():
    """Movement history commands."""


@movements_group.command('tail')
@click.option('--site-id', type=int, required=True, help='Site ID')
@click.option('--limit', type=int, default=20, help='Max movements to show')
@with_appcontext
def tail_movements_cli(site_id, limit):
    """
    Show the most recent movements of a site, newest first.

    Example:
        flask movements tail --site-id 1 --limit 50
    """
    movements = movement_service.list_movements(site_id=site_id, limit=limit)

    if not movements:
        click.echo("No movements found.")
        return

    for m in movements:
        click.echo(
            f"{to_utc_z(m.occurred_at)} {m.movement_type:<26} item={m.stock_item_id:<5} "
            f"{m.quantity_before:>6} -> {m.quantity_after:<6} ({m.quantity_change:+d}) "
            f"by {m.user_name or m.user_id} [{m.correlation_id}]"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sites_group)
    app.cli.add_command(stalls_group)
    app.cli.add_command(items_group)
    app.cli.add_command(movements_group)
