# Overview: Flask CLI command groups for bootstrap, user administration and maintenance.

# backend/shopconsole/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Apply migrations first: python -m flask db upgrade
#
# System bootstrap:
# - python -m flask system init [--admin-email admin@shop.local] [--password "Password123!"] [--with-demo-seller]
#   Create the default admin (and optionally a demo seller) in one transaction.
#
# User administration:
# - python -m flask users list [--role seller] [--status active]
# - python -m flask users create --email s@shop.local --password "Password123!" --role seller --status active
# - python -m flask users set-status 7 suspended
#   Leaving "active" revokes every session of that user.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions --older-than-days 30
# - python -m flask maintenance cleanup-security-events --retention-days 90

import click
from flask.cli import with_appcontext
from sqlalchemy.exc import SQLAlchemyError

from .errors import ApiError
from .extensions import db
from .models import ROLES, STATUSES, User
from .services import audit_service, auth_service, session_service


DEFAULT_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--admin-email', default='admin@shop.local', show_default=True, help='Admin email')
@click.option('--password', default=DEFAULT_PASSWORD, show_default=True, help='Password for created accounts')
@click.option('--with-demo-seller', is_flag=True, help='Also create an active demo seller')
@with_appcontext
def init_system(admin_email, password, with_demo_seller):
    """
    Bootstrap the default accounts.

    Runs in a single transaction: either every account is created or none
    is. Existing accounts are left alone.

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing shop console...")

    accounts = [(admin_email, "Administrator", "admin")]
    if with_demo_seller:
        accounts.append(("seller@shop.local", "Demo Seller", "seller"))

    created = []
    try:
        for email, full_name, role in accounts:
            if auth_service.find_by_identifier(email):
                click.echo(f"WARN  User '{email}' already exists, skipping...")
                continue
            user = auth_service.create_principal(
                email=email,
                password=password,
                full_name=full_name,
                role=role,
                status="active",
                email_verified=True,
                commit=False,
            )
            created.append(user)
        db.session.commit()
    except (ApiError, SQLAlchemyError) as exc:
        db.session.rollback()
        message = exc.message if isinstance(exc, ApiError) else str(exc)
        click.echo(f"FAIL Initialization rolled back: {message}")
        raise click.exceptions.Exit(1)

    for user in created:
        click.echo(f"PASS Created {user.role}: {user.email} (ID: {user.id})")

    click.echo("DONE Shop console initialized.")
    if created and password == DEFAULT_PASSWORD:
        click.echo("SECURITY Default password in use. Change it immediately in production!")


@click.group('users')
def users_group():
    """User inspection and administration commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--full-name', default='', help='Display name')
@click.option('--phone', 'phone_number', default=None, help='Phone number (login identifier)')
@click.option('--role', type=click.Choice(ROLES), default='user', show_default=True)
@click.option('--status', type=click.Choice(STATUSES), default=None, help='Defaults to pending for sellers, else active')
@with_appcontext
def create_user_cli(email, password, full_name, phone_number, role, status):
    """Create a user."""
    try:
        user = auth_service.create_principal(
            email=email,
            password=password,
            full_name=full_name,
            role=role,
            status=status,
            phone_number=phone_number,
        )
    except ApiError as e:
        click.echo(f"FAIL Failed to create user: {e.message}")
        raise click.exceptions.Exit(1)

    click.echo(f"PASS Created user: {user.email} (ID: {user.id}, role: {user.role}, status: {user.status})")


@users_group.command('list')
@click.option('--role', type=click.Choice(ROLES), default=None)
@click.option('--status', type=click.Choice(STATUSES), default=None)
@with_appcontext
def list_users(role, status):
    """List users."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)
    if status:
        query = query.filter_by(status=status)

    users = query.order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Email':<32} {'Role':<8} {'Status':<10} {'Verified'}")
    click.echo("=" * 80)
    for user in users:
        verified = "Yes" if user.email_verified else "No"
        click.echo(f"{user.id:<5} {user.email:<32} {user.role:<8} {user.status:<10} {verified}")
    click.echo("=" * 80 + "\n")


@users_group.command('set-status')
@click.argument('user_id', type=int)
@click.argument('status', type=click.Choice(STATUSES))
@with_appcontext
def set_status_cli(user_id, status):
    """Change a user's status; leaving active revokes their sessions."""
    try:
        user = auth_service.set_status(user_id, status)
    except ApiError as e:
        click.echo(f"FAIL {e.message}")
        raise click.exceptions.Exit(1)
    click.echo(f"PASS User {user.email} is now {user.status}")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@click.option('--older-than-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(older_than_days):
    """Delete expired or revoked session records older than the cutoff."""
    deleted = session_service.cleanup_expired_sessions(older_than_days=older_than_days)
    click.echo(f"Deleted {deleted} session records older than {older_than_days} days.")


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """
    Cleanup old security events.

    Default retention: 90 days.
    """
    deleted = audit_service.cleanup_security_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
