# Overview: Flask CLI command groups for bootstrap, inspection, and stocktake.

# backend/grocer/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and one user per role (cashier/manager/admin).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List users with role, active flag, and whether a PIN is set.
# - python -m flask users create --username maria --role manager --pin 4821
#   Create a user (prompts if options are omitted).
# - python -m flask users set-pin maria
#   Replace a user's PIN (prompts, hidden input).
#
# Stock:
# - python -m flask stock show [--sku APL-1]
#   Ledger-derived stock per product.
# - python -m flask stocktake apply counts.csv --user manager [--dry-run]
#   Reconcile a count file of "sku,counted_qty[,note]" rows.
#
# Register inspection:
# - python -m flask registers sessions --status OPEN --limit 20
#   List recent register sessions with optional filters.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import Product, User
from .permissions import ROLE_LEVELS
from .services import auth_service, inventory_service, register_service, stocktake_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create tables and default users.

    Creates:
    - Users: cashier (PIN 1111), manager (PIN 2222), admin (PIN 3333)

    SECURITY: Change PINs immediately in production!
    """
    click.echo("START Initializing grocer ledger...")
    db.create_all()
    created = auth_service.create_default_users()
    for user in created:
        click.echo(f"PASS Created user: {user.username} ({user.role})")
    if not created:
        click.echo("PASS Default users already present")
    click.echo("DONE")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the append-only ledgers!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--role', type=click.Choice(sorted(ROLE_LEVELS)), prompt=True, help='Role')
@click.option('--pin', prompt=True, hide_input=True, confirmation_prompt=True, help='4-8 digit PIN')
@click.option('--display-name', default=None, help='Display name')
@with_appcontext
def create_user_cli(username, role, pin, display_name):
    """Create a staff user with a PIN."""
    try:
        user = auth_service.create_user(username, role, pin=pin, display_name=display_name)
    except LedgerError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


@users_group.command('set-pin')
@click.argument('username')
@click.option('--pin', prompt=True, hide_input=True, confirmation_prompt=True, help='4-8 digit PIN')
@with_appcontext
def set_pin_cli(username, pin):
    """Replace a user's PIN."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        raise click.ClickException(f"User {username!r} not found")
    try:
        auth_service.set_pin(user.id, pin)
    except LedgerError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS PIN updated for {username}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<10} {'Active':<8} {'PIN'}")
    click.echo("="*70)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        pin_str = "set" if user.pin_hash else "-"
        click.echo(f"{user.id:<5} {user.username:<20} {user.role:<10} {active_str:<8} {pin_str}")
    click.echo("="*70 + "\n")


@click.group('stock')
def stock_group():
    """Stock inspection commands."""


@stock_group.command('show')
@click.option('--sku', default=None, help='Limit to one SKU')
@with_appcontext
def show_stock(sku):
    """Ledger-derived stock per product."""
    query = db.session.query(Product).order_by(Product.sku)
    if sku:
        query = query.filter_by(sku=sku)
    products = query.all()
    if not products:
        click.echo("No products found.")
        return

    stock = inventory_service.get_current_stock([p.id for p in products])
    click.echo(f"{'SKU':<20} {'Unit':<5} {'On hand':>12}  Name")
    for product in products:
        click.echo(f"{product.sku:<20} {product.unit:<5} {str(stock[product.id]):>12}  {product.name}")


@click.group('stocktake')
def stocktake_group():
    """Stocktake reconciliation commands."""


@stocktake_group.command('apply')
@click.argument('count_file', type=click.File('r', encoding='utf-8'))
@click.option('--user', 'username', required=True, help='Username performing the stocktake (manager or above)')
@click.option('--terminal', default=None, help='Terminal recorded on the movements')
@click.option('--dry-run', is_flag=True, help='Show differences without writing')
@with_appcontext
def apply_stocktake(count_file, username, terminal, dry_run):
    """Reconcile a count file of sku,counted_qty[,note] rows."""
    user = db.session.query(User).filter_by(username=username, is_active=True).first()
    if not user:
        raise click.ClickException(f"User {username!r} not found")
    ctx = auth_service.context_for_user(user.id, request_id="cli-stocktake")

    try:
        rows = stocktake_service.parse_count_csv(count_file.read())
        if dry_run:
            for diff in stocktake_service.calculate_differences(rows):
                click.echo(f"{diff.sku:<20} {str(diff.current):>12} -> {str(diff.counted):>12}  delta {diff.delta}")
            return
        result = stocktake_service.reconcile_stocktake(rows, ctx=ctx, terminal=terminal)
    except LedgerError as e:
        raise click.ClickException(f"{e.code}: {e.message} {e.details or ''}".strip())

    for diff in result["adjusted"]:
        click.echo(f"ADJUST {diff['sku']:<20} {diff['current']} -> {diff['counted']} ({diff['delta']})")
    click.echo(f"PASS {len(result['adjusted'])} adjusted, {len(result['unchanged'])} unchanged")


@click.group('registers')
def registers_group():
    """Register session inspection commands."""


@registers_group.command('sessions')
@click.option('--status', type=click.Choice(['OPEN', 'CLOSED']), default=None)
@click.option('--cashier-id', type=int, default=None)
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_sessions(status, cashier_id, limit):
    """List recent register sessions."""
    sessions = register_service.list_sessions(status=status, cashier_id=cashier_id, limit=limit)
    if not sessions:
        click.echo("No sessions found.")
        return
    click.echo(f"{'ID':<6} {'Date':<11} {'Terminal':<10} {'Cashier':<8} {'Status':<7} {'Net':>10}  Invoice")
    for s in sessions:
        click.echo(
            f"{s.id:<6} {s.business_date.isoformat():<11} {s.terminal:<10} {s.cashier_id:<8} "
            f"{s.status:<7} {s.net_cents:>10}  {s.invoice_id or '-'}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(stocktake_group)
    app.cli.add_command(registers_group)
