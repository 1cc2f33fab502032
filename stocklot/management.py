"""
Management commands for stock maintenance and local setup
"""
from datetime import timedelta

import click
from flask.cli import with_appcontext

from .exceptions import StockEngineError
from .extensions import db
from .models import Product, Warehouse
from .services.stock_engine import AdjustmentKind, StockMutationService, StockReporter
from .utils.timezone_utils import TimezoneUtils


def _parse_as_of(raw):
    if not raw:
        return None
    try:
        return TimezoneUtils.parse_iso(raw)
    except ValueError as exc:
        raise click.BadParameter(f"expected an ISO-8601 timestamp, got {raw!r}") from exc


@click.command('recompute-utilization')
@click.option('--warehouse-id', type=int, default=None, help='Only recompute this warehouse')
@with_appcontext
def recompute_utilization_command(warehouse_id):
    """Rebuild warehouse utilization counters from ACTIVE batches"""
    service = StockMutationService()
    try:
        if warehouse_id is not None:
            snapshots = [service.recompute_utilization(warehouse_id)]
        else:
            snapshots = service.recompute_all_utilization()
    except StockEngineError as exc:
        raise click.ClickException(exc.message) from exc

    for snapshot in snapshots:
        marker = '⚠️ ' if snapshot.drift else '✅'
        click.echo(
            f"{marker} warehouse {snapshot.warehouse_id}: {snapshot.current_utilization}/{snapshot.capacity} "
            f"(drift {snapshot.drift:+d})"
        )
    click.echo(f"Recomputed {len(snapshots)} warehouses.")


@click.command('expiry-sweep')
@click.option('--as-of', 'as_of', default=None, help='ISO timestamp to sweep as of (default: now)')
@with_appcontext
def expiry_sweep_command(as_of):
    """Mark ACTIVE batches past their expiry day as EXPIRED"""
    service = StockMutationService()
    try:
        results = service.sweep_expired(_parse_as_of(as_of))
    except StockEngineError as exc:
        raise click.ClickException(exc.message) from exc

    for result in results:
        for batch_id, quantity, unit_cost in result.as_tuples():
            click.echo(f"  expired batch {batch_id}: {quantity} units @ {unit_cost}")
    click.echo(f"✅ Expired {len(results)} batches.")


@click.command('expiring-report')
@click.option('--days', type=int, default=None, help='Window in days (default: STOCK_EXPIRING_SOON_DAYS)')
@click.option('--warehouse-id', type=int, default=None)
@with_appcontext
def expiring_report_command(days, warehouse_id):
    """List ACTIVE batches expiring soon"""
    rows = StockReporter().expiring_batches(days, warehouse_id=warehouse_id)
    if not rows:
        click.echo("ℹ️  No batches expiring in the window.")
        return
    for row in rows:
        click.echo(
            f"{row['batch_number']}  product {row['product_id']}  warehouse {row['warehouse_id']}  "
            f"qty {row['quantity_remaining']}  expires in {row['days_until_expiry']} days"
        )


@click.command('seed-demo')
@with_appcontext
def seed_demo_command():
    """Seed demo warehouses, products and batches for local development"""
    if Product.query.filter_by(sku='DEMO-MILK').first():
        click.echo("ℹ️  Demo data already present.")
        return

    main = Warehouse(code='MAIN', name='Main Warehouse', location='Dock 1', capacity=1000)
    overflow = Warehouse(code='OVERFLOW', name='Overflow Storage', location='Dock 2', capacity=250)
    milk = Product(sku='DEMO-MILK', name='Whole Milk 1L', shelf_life_days=14, min_stock_level=40)
    rice = Product(sku='DEMO-RICE', name='Rice 5kg', shelf_life_days=540, min_stock_level=10)
    db.session.add_all([main, overflow, milk, rice])
    db.session.commit()

    service = StockMutationService()
    receipts = [
        (milk, main, 60, '1.10'),
        (milk, main, 40, '1.15'),
        (rice, main, 30, '7.40'),
        (rice, overflow, 20, '7.25'),
    ]
    for product, warehouse, quantity, unit_cost in receipts:
        service.adjust_stock(
            AdjustmentKind.INCREASE,
            product.id,
            warehouse.id,
            quantity,
            'demo seed',
            unit_cost,
        )
    # One batch already close to expiry so alerts and sweeps have something to show
    service.adjust_stock(
        AdjustmentKind.INCREASE,
        milk.id,
        overflow.id,
        12,
        'demo seed',
        '1.05',
        expiry_date=TimezoneUtils.utc_now() + timedelta(days=3),
    )
    click.echo("✅ Seeded 2 warehouses, 2 products and 5 batches.")


def register_commands(app):
    """Register CLI commands"""
    app.cli.add_command(recompute_utilization_command)
    app.cli.add_command(expiry_sweep_command)
    app.cli.add_command(expiring_report_command)
    app.cli.add_command(seed_demo_command)
