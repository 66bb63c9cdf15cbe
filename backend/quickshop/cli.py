# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/quickshop/cli.py
# Command reference. Run from backend/ with FLASK_APP=wsgi.py exported:
#   flask <group> <command> [options]
#
# System bootstrap/repair:
# - flask system init
#   Idempotent bootstrap: creates tables and the default admin account.
# - flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - flask users list [--role admin]
#   List users with role and active status.
# - flask users create-admin --email ops@shop.local --password "Password123!"
#   Create an admin account, or promote an existing customer with --promote.
#
# Catalog:
# - flask catalog low-stock [--threshold 10]
#   Products whose stock is below the threshold.
#
# Maintenance:
# - flask maintenance cleanup-sessions --retention-days 30
#   Delete expired/revoked session tokens older than the retention window.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import ROLE_ADMIN, VALID_ROLES
from .services.auth_service import (
    create_user,
    set_role,
    normalize_email,
    PasswordValidationError,
    AccountError,
)
from .services import catalog_service
from .services import session_service


DEFAULT_ADMIN_EMAIL = "admin@quickshop.local"
DEFAULT_ADMIN_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the shop: create tables and the default admin account.

    Safe to run repeatedly. Change the admin password in production!
    """
    click.echo("START Initializing QuickShop...")

    db.create_all()
    click.echo("PASS Tables created")

    existing = db.session.query(User).filter_by(email=DEFAULT_ADMIN_EMAIL).first()
    if existing:
        click.echo(f"WARN  Admin '{DEFAULT_ADMIN_EMAIL}' already exists, skipping...")
    else:
        try:
            create_user(DEFAULT_ADMIN_EMAIL, DEFAULT_ADMIN_PASSWORD, full_name="Administrator", role=ROLE_ADMIN)
            click.echo(f"PASS Created admin: {DEFAULT_ADMIN_EMAIL}")
        except (PasswordValidationError, AccountError) as e:
            click.echo(f"FAIL Failed to create admin: {str(e)}")

    click.echo("\n" + "="*60)
    click.echo("DONE QuickShop Initialized Successfully!")
    click.echo("="*60)
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo(f"   admin -> {DEFAULT_ADMIN_EMAIL} / {DEFAULT_ADMIN_PASSWORD}")
    if not current_app.config.get("MIDTRANS_SERVER_KEY"):
        click.echo("\nWARN  MIDTRANS_SERVER_KEY is not set; checkout and webhooks will fail.")
    click.echo("")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """Drop and recreate every table. Development databases only."""
    if not yes:
        click.confirm("WARN Every order, cart and account will be lost. Continue?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Schema rebuilt. Run 'flask system init' to create the admin account.")


@click.group('users')
def users_group():
    """Account listing and admin provisioning."""


@users_group.command('list')
@click.option('--role', type=click.Choice(VALID_ROLES), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their roles."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)

    users = query.order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Email':<35} {'Name':<25} {'Role':<10} {'Active'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.email:<35} {(user.full_name or '-'):<25} {user.role:<10} {active_str}")

    click.echo("="*90 + "\n")


@users_group.command('create-admin')
@click.option('--email', prompt=True, help='Admin email')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Admin password')
@click.option('--name', 'full_name', default=None, help='Display name')
@click.option('--promote', is_flag=True, help='Promote an existing account instead of creating one')
@with_appcontext
def create_admin(email, password, full_name, promote):
    """Create an admin account (or promote an existing user)."""
    if promote:
        user = db.session.query(User).filter_by(email=normalize_email(email)).first()
        if not user:
            click.echo(f"FAIL No user with email {email}")
            raise SystemExit(1)
        set_role(user.id, ROLE_ADMIN)
        click.echo(f"PASS Promoted {user.email} to admin")
        return

    try:
        user = create_user(email, password, full_name=full_name, role=ROLE_ADMIN)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        raise SystemExit(1)
    except AccountError as e:
        click.echo(f"FAIL {str(e)}")
        raise SystemExit(1)

    click.echo(f"PASS Created admin: {user.email} (ID: {user.id})")


@click.group('catalog')
def catalog_group():
    """Catalog inspection commands."""


@catalog_group.command('low-stock')
@click.option('--threshold', type=int, default=None, help='Defaults to LOW_STOCK_THRESHOLD')
@with_appcontext
def low_stock(threshold):
    """List products whose stock is below the threshold."""
    if threshold is None:
        threshold = current_app.config["LOW_STOCK_THRESHOLD"]

    products = catalog_service.list_low_stock_products(threshold)
    if not products:
        click.echo(f"No products below {threshold} units.")
        return

    click.echo(f"{'ID':<5} {'SKU':<15} {'Name':<40} {'Stock':>6} {'Active'}")
    for p in products:
        click.echo(f"{p.id:<5} {(p.sku or '-'):<15} {p.name[:40]:<40} {p.stock:>6} {'Yes' if p.is_active else 'No'}")


@click.group('maintenance')
def maintenance_group():
    """Housekeeping jobs for cron."""


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(retention_days):
    """Purge dead session tokens past the retention window."""
    deleted = session_service.cleanup_expired_sessions(retention_days=retention_days)
    click.echo(f"Deleted {deleted} sessions older than {retention_days} days.")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(maintenance_group)
