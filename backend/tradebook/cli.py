# Overview: Flask CLI command groups for bootstrap, users, permissions and tax rules.

# backend/tradebook/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, roles, permission grants and default users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --username alice --email alice@tradebook.local --password "Password123!" --role staff
#   Create a user (prompts if options are omitted).
#
# Permissions:
# - python -m flask perms grant staff APPROVE_REQUESTS
# - python -m flask perms revoke staff APPROVE_REQUESTS
#
# Tax rules:
# - python -m flask tax seed [--effective-from 2026-01-01]
#   Insert default VAT_INLAND / VAT_INTL / FCT rates where none exist.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import User
from .permissions import DEFAULT_ROLES
from .services import permission_service, tax_service
from .services.auth_service import PasswordValidationError, create_user
from .services.unit_of_work import ExecutionContext, run_in_tx
from .time_utils import parse_iso_date, utc_today


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize Tradebook: tables, roles, permission grants and default users.

    Creates users admin/manager/staff, all with password "Password123!".

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing Tradebook...")

    db.create_all()

    roles_created, grants_created = permission_service.initialize_roles()
    click.echo(f"PASS Roles created: {roles_created}, permission grants created: {grants_created}")

    default_password = "Password123!"
    for role_name in DEFAULT_ROLES:
        username = role_name
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(
                username=username,
                email=f"{username}@tradebook.local",
                password=default_password,
                role_name=role_name,
            )
            click.echo(f"PASS Created user: {username} with role '{role_name}'")
        except (PasswordValidationError, ValueError) as e:
            click.echo(f"FAIL Failed to create user '{username}': {str(e)}")

    click.echo("DONE Tradebook initialized. Default password: Password123! (CHANGE IN PRODUCTION!)")


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
    """User management commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(DEFAULT_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, email, password, role):
    """Create a new user."""
    try:
        user = create_user(username=username, email=email, password=password, role_name=role)
        click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{role}'")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
    except ValueError as e:
        click.echo(f"FAIL Error: {str(e)}")


@click.group('perms')
def perms_group():
    """Permission management commands."""


@perms_group.command('grant')
@click.argument('role_name')
@click.argument('permission_code')
@with_appcontext
def grant_permission_cli(role_name, permission_code):
    """Grant a permission to a role."""
    cache = current_app.extensions.get("permission_cache")
    try:
        granted = permission_service.grant_permission(role_name, permission_code, cache)
        if granted:
            click.echo(f"PASS Granted '{permission_code}' to role '{role_name}'")
        else:
            click.echo(f"WARN  Permission '{permission_code}' already granted to '{role_name}'")
    except ValueError as e:
        click.echo(f"FAIL Error: {str(e)}")


@perms_group.command('revoke')
@click.argument('role_name')
@click.argument('permission_code')
@with_appcontext
def revoke_permission_cli(role_name, permission_code):
    """Revoke a permission from a role."""
    cache = current_app.extensions.get("permission_cache")
    try:
        revoked = permission_service.revoke_permission(role_name, permission_code, cache)
        if revoked:
            click.echo(f"PASS Revoked '{permission_code}' from role '{role_name}'")
        else:
            click.echo(f"WARN  Permission '{permission_code}' was not granted to '{role_name}'")
    except ValueError as e:
        click.echo(f"FAIL Error: {str(e)}")


@click.group('tax')
def tax_group():
    """Tax rule commands."""


@tax_group.command('seed')
@click.option('--effective-from', default=None, help='YYYY-MM-DD (defaults to today)')
@with_appcontext
def seed_tax_rules(effective_from):
    """Insert default tax rates for any tax type that has none."""
    try:
        start = parse_iso_date(effective_from) or utc_today()
    except ValueError:
        click.echo(f"FAIL Invalid date: {effective_from}")
        return

    try:
        created = run_in_tx(ExecutionContext(), lambda tx: tax_service.seed_default_rules(tx, start))
    except LedgerError as e:
        click.echo(f"FAIL Error: {str(e)}")
        return
    click.echo(f"PASS Created {created} tax rule(s) effective from {start.isoformat()}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(tax_group)
