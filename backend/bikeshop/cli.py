# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/bikeshop/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create all tables (idempotent) and show collection versions.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask users create --username admin --email admin@bikeshop.local --password "Password123!" --role admin
#   Create an approved user (prompts if options are omitted).
# - python -m flask users set-role alice editor
#   Assign a role (approves a pending account).
#
# Permission inspection:
# - python -m flask perms list [--role editor]
#   List permissions, optionally those granted to one role.
#
# Bike maintenance:
# - python -m flask bikes audit-trade-ins
#   List trade-in bikes whose sold bike does not point back at them.
# - python -m flask bikes link-trade-in 42
#   Repair the back-reference for trade-in bike 42.
#
# Backups:
# - python -m flask exports bikes --out inventario.csv
# - python -m flask exports loaners --out prestamos.csv
#   Write the CSV backup (defaults to the dated filename in the current directory).

import click
from flask.cli import with_appcontext

from .errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from .extensions import db
from .models import User
from .permissions import PERMISSION_DEFINITIONS, ROLES, permissions_for_role
from .services import auth_service, collection_service, export_service, inventory_service
from .services.auth_service import PasswordValidationError
from .services.permission_service import AuthContext


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create the schema and report the collection version counters.

    Safe to re-run: existing tables and rows are left alone.
    """
    click.echo("START Initializing bike shop database...")
    db.create_all()
    click.echo("PASS Tables created")

    for name in (collection_service.BIKES, collection_service.LOANER_BIKES):
        version = collection_service.current_version(name)
        click.echo(f"PASS Collection '{name}' at version {version}")

    if db.session.query(User.id).first() is None:
        click.echo("\nNEXT No users yet. The first account registered (or created with 'users create') becomes admin.")


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
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ROLES), default='admin', show_default=True, help='Role')
@with_appcontext
def create_user_cli(username, email, password, role):
    """
    Create an approved user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = auth_service.create_user(
            username=username,
            email=email,
            password=password,
            role=role,
        )
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
        return
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL Failed to create user: {e}")
        return

    click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{user.role}'")
    click.echo("SECURITY Password securely hashed with bcrypt")


@users_group.command('list')
@with_appcontext
def list_users_cli():
    """List all users with their roles."""
    users = auth_service.list_users(actor=AuthContext.system())

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<32} {'Active':<8} {'Role'}")
    click.echo("=" * 90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<32} {active_str:<8} {user.role}")

    click.echo("=" * 90 + "\n")


@users_group.command('set-role')
@click.argument('username')
@click.argument('role', type=click.Choice(ROLES))
@with_appcontext
def set_role_cli(username, role):
    """Assign ROLE to USERNAME."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return

    try:
        auth_service.set_role(user.id, role, actor=AuthContext.system())
    except ConflictError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS {username} is now '{role}'")


@click.group('perms')
def perms_group():
    """Permission inspection commands."""


@perms_group.command('list')
@click.option('--role', type=click.Choice(ROLES), help='Only permissions granted to this role')
@with_appcontext
def list_permissions_cli(role):
    """List permissions (optionally filtered by role)."""
    granted = permissions_for_role(role) if role else None

    for code, name, description in PERMISSION_DEFINITIONS:
        if granted is not None and code not in granted:
            continue
        click.echo(f"{code:<16} {name:<14} {description}")


@click.group('bikes')
def bikes_group():
    """Bike inventory maintenance commands."""


@bikes_group.command('audit-trade-ins')
@with_appcontext
def audit_trade_ins_cli():
    """Report trade-in bikes whose sold bike is missing the back-reference."""
    broken = inventory_service.find_broken_trade_in_links()

    if not broken:
        click.echo("PASS All trade-in links are consistent")
        return

    click.echo(f"WARN {len(broken)} broken trade-in link(s):")
    for row in broken:
        sold_state = "missing" if not row["sold_bike_exists"] else f"points at {row['sold_bike_trade_in_bike_id']}"
        click.echo(
            f"  trade-in {row['trade_in_bike_id']} ({row['ref_number']}) -> sold bike {row['sold_bike_id']} ({sold_state})"
        )
    click.echo("Run 'python -m flask bikes link-trade-in <id>' to repair.")


@bikes_group.command('link-trade-in')
@click.argument('trade_in_bike_id', type=int)
@with_appcontext
def link_trade_in_cli(trade_in_bike_id):
    """Point the sold bike back at trade-in bike TRADE_IN_BIKE_ID."""
    try:
        sold = inventory_service.link_trade_in(trade_in_bike_id, actor=AuthContext.system())
    except (NotFoundError, ConflictError, InvalidTransitionError) as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Bike {sold.id} ({sold.ref_number}) now records trade-in bike {trade_in_bike_id}")


@click.group('exports')
def exports_group():
    """CSV backup commands."""


def _write_export(filename, text, out):
    path = out or filename
    # utf-8-sig so spreadsheet apps pick up accented headers
    with open(path, "w", encoding="utf-8-sig", newline="") as fh:
        fh.write(text)
    click.echo(f"PASS Wrote {path}")


@exports_group.command('bikes')
@click.option('--out', type=click.Path(dir_okay=False, writable=True), help='Output file')
@with_appcontext
def export_bikes_cli(out):
    """Export non-deleted bikes to CSV."""
    filename, text = export_service.export_bikes_csv(actor=AuthContext.system())
    _write_export(filename, text, out)


@exports_group.command('loaners')
@click.option('--out', type=click.Path(dir_okay=False, writable=True), help='Output file')
@with_appcontext
def export_loaners_cli(out):
    """Export loaner bikes to CSV."""
    filename, text = export_service.export_loaners_csv(actor=AuthContext.system())
    _write_export(filename, text, out)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(bikes_group)
    app.cli.add_command(exports_group)
