# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/poscore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use "flask db upgrade" for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog add-item --sku COF-001 --name "Coffee" --price-cents 350 --tax-rate-bps 1000 --stock 40
#   Create a sellable item, optionally with opening stock.
#
# Inventory inspection/repair:
# - python -m flask inventory show 1
#   Stock position and the latest movements for an item.
# - python -m flask inventory count 1 --quantity 12 --notes "Cycle count"
#   Record a physical count (one adjustment movement for the difference).
# - python -m flask inventory low-stock
#   List active items at or below their low-stock threshold.
#
# Held carts:
# - python -m flask cart expire-held --hours 24
#   Drop held carts older than the cutoff and release their stock holds.
#
# Cash drawers:
# - python -m flask drawer sessions --status open --limit 20
#   List recent drawer sessions with expected/counted/difference.
#
# Offline sync queue:
# - python -m flask sync pending --limit 50
#   List pending outbound sync entries.
# - python -m flask sync stats
#   Pending/failed counts and the last completed push.
# - python -m flask sync requeue --max-attempts 5
#   Move failed entries back to pending.

import click
from flask.cli import with_appcontext

from .extensions import db
from .money import format_cents
from .services import catalog_service, checkout_service, drawer_service, inventory_service, sync_service
from .validation import ConflictError, NotFoundError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables. Existing tables and data are left alone."""
    db.create_all()
    click.echo("PASS Tables created.")


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


@click.group('catalog')
def catalog_group():
    """Catalog bootstrap commands."""


@catalog_group.command('add-item')
@click.option('--sku', required=True, help='Unique SKU')
@click.option('--name', required=True, help='Display name')
@click.option('--price-cents', type=int, required=True, help='Unit price in cents')
@click.option('--tax-rate-bps', type=int, default=0, show_default=True, help='Tax rate in basis points (1000 = 10%)')
@click.option('--cost-cents', type=int, help='Unit cost in cents')
@click.option('--untracked', is_flag=True, help='Do not track stock for this item (services)')
@click.option('--stock', type=int, default=0, show_default=True, help='Opening stock')
@with_appcontext
def add_item_cli(sku, name, price_cents, tax_rate_bps, cost_cents, untracked, stock):
    """
    Create a sellable item.

    Example:
        flask catalog add-item --sku COF-001 --name "Coffee" --price-cents 350 --stock 40
    """
    try:
        item = catalog_service.create_sellable_item(
            sku=sku,
            name=name,
            price_cents=price_cents,
            tax_rate_bps=tax_rate_bps,
            cost_cents=cost_cents,
            tracks_inventory=not untracked,
        )
        if stock and not untracked:
            inventory_service.adjust_stock(item.id, stock, notes="Opening stock")
    except (ValidationError, ConflictError, NotFoundError) as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Created item {item.id}: {item.sku} {item.name} @ {format_cents(item.price_cents)}")
    if stock and not untracked:
        click.echo(f"     Opening stock: {stock}")


@click.group('inventory')
def inventory_group():
    """Inventory inspection and repair commands."""


@inventory_group.command('show')
@click.argument('item_id', type=int)
@click.option('--limit', type=int, default=10, help='Movements to show')
@with_appcontext
def show_inventory(item_id, limit):
    """Show the stock position and latest movements for an item."""
    try:
        status = inventory_service.get_stock_status(item_id)
    except NotFoundError as e:
        raise click.ClickException(str(e))

    click.echo(f"\nItem {item_id} ({status['sku']})")
    click.echo(f"  On hand:    {status['on_hand_quantity']}")
    click.echo(f"  Reserved:   {status['reserved_quantity']}")
    click.echo(f"  Available:  {status['available_quantity']}")
    click.echo(f"  Threshold:  {status['low_stock_threshold']}" + ("  (LOW)" if status['is_low_stock'] else ""))

    movements = inventory_service.list_movements(item_id, limit=limit)
    if not movements:
        click.echo("\nNo movements recorded.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<6} {'Type':<12} {'Delta':>7} {'After':>7}  {'Reference':<16} {'When':<20}")
    click.echo("=" * 90)
    for m in movements:
        reference = f"{m.reference_type}:{m.reference_id}" if m.reference_type else "-"
        when = m.created_at.strftime('%Y-%m-%d %H:%M:%S') if m.created_at else ""
        click.echo(f"{m.id:<6} {m.movement_type:<12} {m.quantity_delta:>7} {m.quantity_after:>7}  {reference:<16} {when:<20}")
    click.echo("=" * 90 + "\n")


@inventory_group.command('count')
@click.argument('item_id', type=int)
@click.option('--quantity', type=int, required=True, help='Counted quantity')
@click.option('--notes', help='Count notes')
@with_appcontext
def count_inventory(item_id, quantity, notes):
    """Record a physical stock count."""
    try:
        before = inventory_service.get_record(item_id)
        previous = before.on_hand_quantity if before else 0
        record = inventory_service.count_stock(item_id, quantity, notes=notes)
    except (ValidationError, ConflictError, NotFoundError) as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Item {item_id}: {previous} -> {record.on_hand_quantity}")


@inventory_group.command('low-stock')
@with_appcontext
def low_stock_cli():
    """List items at or below their low-stock threshold."""
    records = inventory_service.list_low_stock()
    if not records:
        click.echo("No items are low on stock.")
        return

    click.echo(f"\n{'Item':<6} {'On hand':>8} {'Reserved':>9} {'Threshold':>10}")
    for record in records:
        click.echo(
            f"{record.item_id:<6} {record.on_hand_quantity:>8} {record.reserved_quantity:>9} {record.low_stock_threshold:>10}"
        )
    click.echo(f"\nTotal: {len(records)}")


@click.group('cart')
def cart_group():
    """Held cart maintenance."""


@cart_group.command('expire-held')
@click.option('--hours', type=int, default=None, help='Max age in hours (default: HELD_ORDER_TTL_HOURS)')
@with_appcontext
def expire_held_cli(hours):
    """Release the stock holds of abandoned held carts."""
    try:
        result = checkout_service.expire_held_orders(max_age_hours=hours)
    except ValidationError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Expired {result['expired']} held cart(s); released {result['units_released']} unit(s).")


@click.group('drawer')
def drawer_group():
    """Cash drawer inspection commands."""


@drawer_group.command('sessions')
@click.option('--cashier-id', type=int, help='Filter by cashier ID')
@click.option('--status', type=click.Choice(['open', 'closed']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(cashier_id, status, limit):
    """
    List drawer sessions.

    Example:
        flask drawer sessions
        flask drawer sessions --cashier-id 3
        flask drawer sessions --status open
    """
    sessions = drawer_service.list_sessions(cashier_id=cashier_id, status=status, limit=limit)
    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "=" * 100)
    click.echo(f"{'ID':<5} {'Cashier':<8} {'Status':<8} {'Opened':<20} {'Opening':>12} {'Expected':>12} {'Difference':>12}")
    click.echo("=" * 100)
    for session in sessions:
        opened = session.opened_at.strftime('%Y-%m-%d %H:%M') if session.opened_at else ""
        if session.status == drawer_service.SESSION_OPEN:
            expected = drawer_service.compute_expected_balance(session)
        else:
            expected = session.expected_balance_cents
        difference = format_cents(session.difference_cents) if session.difference_cents is not None else "-"
        click.echo(
            f"{session.id:<5} {session.cashier_id:<8} {session.status:<8} {opened:<20} "
            f"{format_cents(session.opening_balance_cents):>12} {format_cents(expected):>12} {difference:>12}"
        )
    click.echo("=" * 100 + "\n")


@click.group('sync')
def sync_group():
    """Outbound sync queue commands."""


@sync_group.command('pending')
@click.option('--limit', type=int, default=50, help='Max entries to show')
@with_appcontext
def pending_cli(limit):
    entries = sync_service.pending_entries(limit)
    if not entries:
        click.echo("Sync queue is empty.")
        return
    for entry in entries:
        click.echo(f"{entry.id:<6} {entry.aggregate_type}:{entry.aggregate_id:<8} {entry.action:<8} attempts={entry.attempts}")
    click.echo(f"\nTotal: {len(entries)}")


@sync_group.command('stats')
@with_appcontext
def stats_cli():
    stats = sync_service.sync_stats()
    click.echo(f"Pending:        {stats['pending']}")
    click.echo(f"Failed:         {stats['failed']}")
    click.echo(f"Last completed: {stats['last_completed_at'] or 'never'}")


@sync_group.command('requeue')
@click.option('--max-attempts', type=int, default=5, show_default=True, help='Skip entries that failed this many times')
@with_appcontext
def requeue_cli(max_attempts):
    count = sync_service.requeue_failed(max_attempts=max_attempts)
    click.echo(f"PASS Requeued {count} entr{'y' if count == 1 else 'ies'}.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(cart_group)
    app.cli.add_command(drawer_group)
    app.cli.add_command(sync_group)
