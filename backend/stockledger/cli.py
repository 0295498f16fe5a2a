# Overview: Flask CLI command groups for bootstrap, inspection, and forecasting.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to stockledger (PowerShell: $env:FLASK_APP="stockledger").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock inspection:
# - python -m flask stock lots [--product-id 1] [--kind OUTLET --location-id 2] [--all]
#   List lots in FIFO order.
#
# Demand forecasting:
# - python -m flask demand generate --strategy enhanced [--kind OUTLET --location-id 2] [--days 30]
#   Run a forecast and store pending demands.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import Location
from .services import forecast_service, stock_service


def _location_option(kind, location_id):
    if kind is None and location_id is None:
        return None
    try:
        return Location.parse(kind, location_id)
    except LedgerError as e:
        raise click.BadParameter(e.message)


@click.group('system')
def system_group():
    """System bootstrap and maintenance commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation prompt')
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


@click.group('stock')
def stock_group():
    """Stock lot inspection commands."""


@stock_group.command('lots')
@click.option('--product-id', type=int, default=None, help='Filter by product')
@click.option('--kind', type=click.Choice(['WAREHOUSE', 'OUTLET'], case_sensitive=False), default=None)
@click.option('--location-id', type=int, default=None)
@click.option('--all', 'include_empty', is_flag=True, help='Include lots at zero')
@with_appcontext
def list_lots(product_id, kind, location_id, include_empty):
    """List lots in FIFO order."""
    location = _location_option(kind, location_id)
    lots = stock_service.list_lots(product_id=product_id, location=location, include_empty=include_empty)

    if not lots:
        click.echo("No stock lots found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<6} {'Product':<8} {'Location':<16} {'Batch':<16} {'Qty':>6}  {'Received'}")
    click.echo("="*90)
    for lot in lots:
        click.echo(
            f"{lot.id:<6} {lot.product_id:<8} {str(lot.location):<16} "
            f"{lot.batch_number or '-':<16} {lot.quantity:>6}  {lot.received_at:%Y-%m-%d %H:%M}"
        )
    click.echo("="*90)
    click.echo(f"Total: {len(lots)} lot(s)\n")


@click.group('demand')
def demand_group():
    """Demand forecasting commands."""


@demand_group.command('generate')
@click.option('--strategy', type=click.Choice(['simple', 'enhanced']), default='simple', show_default=True)
@click.option('--kind', type=click.Choice(['WAREHOUSE', 'OUTLET'], case_sensitive=False), default=None)
@click.option('--location-id', type=int, default=None)
@click.option('--days', type=int, default=None, help='Analysis window (default from config)')
@click.option('--min-sales-threshold', type=int, default=None)
@with_appcontext
def generate_demand(strategy, kind, location_id, days, min_sales_threshold):
    """Run a forecast and store pending demands."""
    location = _location_option(kind, location_id)
    try:
        run = forecast_service.generate_demand(
            strategy,
            location=location,
            days=days,
            min_sales_threshold=min_sales_threshold,
        )
    except LedgerError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS {run.generated_count} demand(s) generated from {run.analysis['products_analyzed']} product(s).")
    for demand in run.demands:
        click.echo(f"  {demand.demand_number}  product {demand.product_id}  qty {demand.quantity}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(demand_group)
