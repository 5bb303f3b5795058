# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/shopfloor/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates default roles and production stations.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users create --username jdoe --role "Warehouse Staff"
#   Register a locally known user (authentication itself is upstream).
# - python -m flask users list
#
# Production:
# - python -m flask production repair-durations
#   Fix closed processing logs stored with a duration under one second.
#
# Isolation:
# - python -m flask isolation scan
#   Report QuickBooks line ids shared by more than one order.
#
# Print queue:
# - python -m flask print-queue cleanup --days 30
#   Delete printed entries older than the retention window.
#
# QuickBooks:
# - python -m flask qbo status
# - python -m flask qbo refresh
#   Refresh the stored access token if it is close to expiry.

import click
from flask.cli import with_appcontext

from .errors import ServiceError
from .extensions import db
from .models import Role, Station, User, UserRole, DEFAULT_ROLES
from .services import isolation_service, print_queue_service, production_service
from .services.qbo_token_service import get_token_manager


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


def create_default_roles() -> list[Role]:
    created = []
    for name, description in DEFAULT_ROLES.items():
        if db.session.query(Role).filter_by(name=name).first() is None:
            role = Role(name=name, description=description)
            db.session.add(role)
            created.append(role)
    db.session.commit()
    return created


def create_default_stations() -> list[Station]:
    created = []
    for name, stage in production_service.STATION_STAGES.items():
        if db.session.query(Station).filter_by(name=name).first() is None:
            station = Station(
                name=name,
                stage=stage,
                barcode=f"STATION-{stage}",
                is_active=True,
            )
            db.session.add(station)
            created.append(station)
    db.session.commit()
    return created


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize shop-floor bootstrap data: roles and production stations.

    Safe to run repeatedly; existing rows are left untouched.
    """
    click.echo("START Initializing shop floor...")

    created_roles = create_default_roles()
    roles = db.session.query(Role).order_by(Role.id).all()
    click.echo(f"PASS Roles ({len(created_roles)} new): {', '.join(r.name for r in roles)}")

    created_stations = create_default_stations()
    stations = db.session.query(Station).order_by(Station.id).all()
    click.echo(f"PASS Stations ({len(created_stations)} new): {', '.join(s.name for s in stations)}")


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
    """User inspection and bootstrap."""


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--email', default=None)
@click.option('--display-name', default=None)
@click.option('--role', 'role_names', multiple=True, help='Role name; repeat for several roles')
@with_appcontext
def create_user_cli(username, email, display_name, role_names):
    """Register a user id that the upstream auth provider will forward."""
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL User '{username}' already exists")
        return

    roles = []
    for name in role_names:
        role = db.session.query(Role).filter_by(name=name).first()
        if role is None:
            click.echo(f"FAIL Unknown role '{name}'. Run: python -m flask system init")
            return
        roles.append(role)

    user = User(username=username, email=email, display_name=display_name, is_active=True)
    db.session.add(user)
    db.session.flush()
    for role in roles:
        db.session.add(UserRole(user_id=user.id, role_id=role.id))
    db.session.commit()
    click.echo(f"PASS Created user {user.username} (ID: {user.id}) roles: {', '.join(role_names) or '-'}")


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Active':<8} {'Roles'}")
    click.echo("=" * 80)
    for user in users:
        roles = ", ".join(sorted(user.role_names)) or "-"
        click.echo(f"{user.id:<5} {user.username:<20} {str(user.is_active):<8} {roles}")
    click.echo("=" * 80 + "\n")


@click.group('production')
def production_group():
    """Production tracking maintenance."""


@production_group.command('repair-durations')
@with_appcontext
def repair_durations_cli():
    repaired = production_service.repair_durations()
    if not repaired:
        click.echo("PASS No processing logs needed repair.")
        return
    click.echo(f"PASS Repaired {len(repaired)} processing logs: {', '.join(str(i) for i in repaired)}")


@click.group('isolation')
def isolation_group():
    """Order-item isolation diagnostics."""


@isolation_group.command('scan')
@with_appcontext
def isolation_scan():
    findings = isolation_service.detect_cross_order_contamination()
    if not findings:
        click.echo("PASS No QuickBooks line id is shared across orders.")
        return

    click.echo(f"WARN {len(findings)} shared QuickBooks line ids")
    for finding in findings:
        orders = ", ".join(str(n) for n in finding["orderNumbers"])
        click.echo(f"  {finding['quickbooksOrderLineId']}: {finding['orderCount']} orders ({orders})")


@click.group('print-queue')
def print_queue_group():
    """Print queue maintenance."""


@print_queue_group.command('cleanup')
@click.option('--days', 'older_than_days', type=int, default=30, show_default=True)
@with_appcontext
def print_queue_cleanup(older_than_days):
    deleted = print_queue_service.cleanup_printed(older_than_days=older_than_days)
    click.echo(f"Deleted {deleted} printed queue entries older than {older_than_days} days.")


@click.group('qbo')
def qbo_group():
    """QuickBooks connection inspection."""


def _echo_status(status: dict) -> None:
    if not status["connected"]:
        click.echo("WARN QuickBooks is not connected.")
        return
    click.echo(f"PASS Connected to company {status['companyId']} ({status['environment']})")
    click.echo(f"     Access token expires:  {status['accessTokenExpiresAt']}")
    click.echo(f"     Refresh token expires: {status['refreshTokenExpiresAt']}")
    click.echo(f"     Last refreshed:        {status['lastRefreshedAt'] or '-'}")


@qbo_group.command('status')
@with_appcontext
def qbo_status():
    _echo_status(get_token_manager().get_connection_status())


@qbo_group.command('refresh')
@with_appcontext
def qbo_refresh():
    try:
        status = get_token_manager().refresh_if_needed()
    except ServiceError as exc:
        click.echo(f"FAIL {exc.message}")
        raise SystemExit(1)
    _echo_status(status)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(production_group)
    app.cli.add_command(isolation_group)
    app.cli.add_command(print_queue_group)
    app.cli.add_command(qbo_group)
