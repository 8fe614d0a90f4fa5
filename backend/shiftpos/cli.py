# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/shiftpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--location "Main Store"]
#   Idempotent bootstrap: creates tables, a default location and the admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User bootstrap:
# - python -m flask users create --username maria --password "Password123" --role SELLER --location-id 1
#   Create a user (prompts if options are omitted).
# - python -m flask users list
#
# Shift inspection:
# - python -m flask shifts list --status OPEN --limit 20
#   List recent shifts with expected cash and variance.
#
# Stock correction:
# - python -m flask stock set --location-id 1 --product-id 3 --quantity 40
#   Overwrite the on-hand quantity for a product at a location.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import ServiceError
from .models import Location, User
from .models.auth import ROLE_ADMIN, ROLES
from .services import inventory_service, shift_service
from .services.auth_service import create_user, PasswordValidationError
from .time_utils import format_cents


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--location', 'location_name', default='Main Store', help='Default location name')
@click.option('--admin-username', default='admin', help='Administrator username')
@click.option('--admin-password', default='Password123', help='Administrator password')
@with_appcontext
def init_system(location_name, admin_username, admin_password):
    """
    Initialize the database with a default location and an administrator.

    Safe to re-run: existing rows are reused.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing ShiftPOS...")
    db.create_all()

    location = db.session.query(Location).filter_by(name=location_name).first()
    if not location:
        location = Location(name=location_name, is_active=True)
        db.session.add(location)
        db.session.commit()
        click.echo(f"PASS Created default location: {location.name} (ID: {location.id})")
    else:
        click.echo(f"PASS Using existing location: {location.name} (ID: {location.id})")

    existing = db.session.query(User).filter_by(username=admin_username).first()
    if existing:
        click.echo(f"WARN  User '{admin_username}' already exists, skipping...")
    else:
        try:
            user = create_user(
                admin_username,
                admin_password,
                role=ROLE_ADMIN,
                location_id=location.id,
            )
            click.echo(f"PASS Created admin user: {user.username} (ID: {user.id})")
        except ServiceError as e:
            click.echo(f"FAIL Failed to create admin user: {e.message}")

    click.echo("\n" + "=" * 60)
    click.echo("DONE ShiftPOS initialized")
    click.echo("=" * 60 + "\n")


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


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES), case_sensitive=False), prompt=True, help='Role')
@click.option('--email', default=None, help='Email address')
@click.option('--location-id', type=int, default=None, help='Home location ID')
@with_appcontext
def create_user_cli(username, password, role, email, location_id):
    """
    Create a new user.

    Password must be 8+ characters with an uppercase letter, a lowercase
    letter and a digit.
    """
    try:
        user = create_user(username, password, role=role, email=email, location_id=location_id)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e.message}")
        return
    except ServiceError as e:
        click.echo(f"FAIL Failed to create user: {e.message}")
        return
    click.echo(f"PASS Created user: {user.username} with role '{user.role}' (ID: {user.id})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<8} {'Location':<10} {'Active'}")
    click.echo("=" * 80)
    for user in users:
        location = str(user.location_id) if user.location_id is not None else "-"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.role:<8} {location:<10} {active_str}")
    click.echo("=" * 80 + "\n")


@click.group('shifts')
def shifts_group():
    """Shift inspection commands."""


@shifts_group.command('list')
@click.option('--seller-id', type=int, help='Filter by seller ID')
@click.option('--location-id', type=int, help='Filter by location ID')
@click.option('--status', type=click.Choice(['OPEN', 'CLOSED']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max shifts to show')
@with_appcontext
def list_shifts_cli(seller_id, location_id, status, limit):
    """
    List shifts, newest first.

    Example:
        flask shifts list
        flask shifts list --status OPEN
    """
    shifts = shift_service.list_shifts(
        seller_id=seller_id,
        location_id=location_id,
        status=status,
        limit=limit,
    )
    if not shifts:
        click.echo("No shifts found.")
        return

    click.echo("\n" + "=" * 110)
    click.echo(f"{'ID':<5} {'Seller':<7} {'Location':<9} {'Status':<8} {'Opened':<20} "
               f"{'Expected':<12} {'Counted':<12} {'Variance'}")
    click.echo("=" * 110)

    for shift in shifts:
        expected = format_cents(shift.expected_cash_cents) if shift.expected_cash_cents is not None else "-"
        counted = format_cents(shift.closing_cash_cents) if shift.closing_cash_cents is not None else "-"
        variance = "-"
        if shift.variance_cents is not None:
            variance = f"{'+' if shift.variance_cents >= 0 else ''}{format_cents(shift.variance_cents)}"
        click.echo(f"{shift.id:<5} {shift.seller_id:<7} {shift.location_id:<9} {shift.status:<8} "
                   f"{str(shift.opened_at)[:19]:<20} {expected:<12} {counted:<12} {variance}")

    click.echo("=" * 110 + "\n")


@click.group('stock')
def stock_group():
    """Stock correction commands."""


@stock_group.command('set')
@click.option('--location-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', type=click.IntRange(min=0), required=True)
@click.option('--threshold', type=click.IntRange(min=0), default=None, help='Low-stock threshold')
@with_appcontext
def set_stock_cli(location_id, product_id, quantity, threshold):
    """Overwrite on-hand quantity (creates the stock row if missing)."""
    try:
        entry = inventory_service.adjust_stock(
            location_id,
            product_id,
            quantity,
            "SET",
            minimum_threshold=threshold,
            note="cli stock set",
        )
    except ServiceError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS Product {product_id} at location {location_id}: {entry.quantity} on hand")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(shifts_group)
    app.cli.add_command(stock_group)
