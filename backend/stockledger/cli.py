# Overview: Flask CLI command groups for bootstrap, inspection, and stock-takes.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default admin/manager/sales users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with role, discount ceiling and active status.
# - python -m flask users create --username ama --role Sales [--max-discount-bps 500]
#   Create an acting user.
#
# Products / stock:
# - python -m flask products availability 1 2 3
#   Show on hand / reserved / available for the given product ids.
# - python -m flask products adjust 1 25 --reason "Quarterly count"
#   Stock-take: set on hand to a counted value.
# - python -m flask products events 1 --limit 20
#   Show the most recent inventory events of a product.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.users import ROLES, ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES
from .services import audit_service, stock_service
from .services.availability_service import compute_bulk_availability
from .services.errors import InvoiceError


DEFAULT_USERS = [
    ("admin", "Administrator", ROLE_ADMIN),
    ("manager", "Store Manager", ROLE_MANAGER),
    ("sales", "Sales Associate", ROLE_SALES),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the ledger: tables plus one user per role.

    Safe to run repeatedly; existing users are left untouched.
    """
    click.echo("START Initializing stock ledger...")
    db.create_all()

    for username, full_name, role in DEFAULT_USERS:
        existing = db.session.query(User).filter_by(username=username).first()
        if existing:
            click.echo(f"SKIP User exists: {username} ({existing.role})")
            continue
        db.session.add(User(username=username, full_name=full_name, role=role, is_active=True))
        db.session.commit()
        click.echo(f"PASS Created user: {username} ({role})")

    click.echo("PASS Initialization complete.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles and discount ceilings."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<10} {'Ceiling':<12} {'Active'}")
    click.echo("="*80)

    for user in users:
        ceiling = user.discount_ceiling_bps
        ceiling_str = "unlimited" if ceiling is None else f"{ceiling / 100:.2f}%"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.role:<10} {ceiling_str:<12} {active_str}")

    click.echo("="*80 + "\n")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--full-name', default=None, help='Display name')
@click.option('--role', type=click.Choice(ROLES), default=ROLE_SALES, show_default=True)
@click.option('--max-discount-bps', type=int, default=None, help='Override the role discount ceiling')
@with_appcontext
def create_user(username, full_name, role, max_discount_bps):
    """Create an acting user."""
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL Username already exists: {username}")
        raise SystemExit(1)
    if max_discount_bps is not None and not (0 <= max_discount_bps <= 10000):
        click.echo("FAIL --max-discount-bps must be between 0 and 10000")
        raise SystemExit(1)

    user = User(username=username, full_name=full_name, role=role, max_discount_bps=max_discount_bps)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


@click.group('products')
def products_group():
    """Product availability and stock-take commands."""


@products_group.command('availability')
@click.argument('product_ids', nargs=-1, type=int, required=True)
@with_appcontext
def show_availability(product_ids):
    """Show on hand / reserved / available for products."""
    result = compute_bulk_availability(product_ids)

    click.echo(f"{'ID':<6} {'On hand':>8} {'Reserved':>9} {'Available':>10}")
    for pid in product_ids:
        row = result.get(pid)
        if row is None:
            click.echo(f"{pid:<6} not found")
            continue
        click.echo(f"{pid:<6} {row.on_hand:>8} {row.reserved:>9} {row.available:>10}")


@products_group.command('adjust')
@click.argument('product_id', type=int)
@click.argument('quantity', type=int)
@click.option('--reason', required=True, help='Why the count changed')
@click.option('--user', 'username', default=None, help='Username to attribute the adjustment to')
@with_appcontext
def adjust(product_id, quantity, reason, username):
    """Set quantity on hand to a counted value."""
    actor = None
    if username:
        actor = db.session.query(User).filter_by(username=username).first()
        if not actor:
            click.echo(f"FAIL Unknown user: {username}")
            raise SystemExit(1)

    try:
        product = stock_service.adjust_stock(product_id, quantity, reason, actor=actor)
    except InvoiceError as e:
        click.echo(f"FAIL {e.code}: {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS {product.sku} on hand is now {product.quantity_on_hand}")


@products_group.command('events')
@click.argument('product_id', type=int)
@click.option('--limit', default=20, show_default=True)
@with_appcontext
def show_events(product_id, limit):
    """Show recent inventory events for a product."""
    events = audit_service.get_product_events(product_id, limit=limit)
    if not events:
        click.echo("No events found.")
        return
    for ev in events:
        click.echo(f"{ev.id:<6} {ev.event_type:<24} {ev.summary}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
