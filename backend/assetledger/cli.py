# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/assetledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Ledger bootstrap/repair:
# - python -m flask ledger init-db
#   Create all tables (idempotent) and seed the sequence counters from the ledger.
# - python -m flask ledger reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask ledger resync-sequences
#   Raise the transaction_id / entry_no counters to the ledger maximum.
# - python -m flask ledger audit [--fix --username admin]
#   Print the discrepancy report; --fix rewrites drifted registry statuses.
# - python -m flask ledger import-csv inventory.csv --username admin
#   Bulk Stock_In from a CSV export, attributed to the given user.
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users and their active status.
# - python -m flask users create --username admin --email admin@example.com --password "Password123!"
#   Create a user (prompts if options are omitted).

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .services import discrepancy_service, import_service, sequence_service
from .services.auth_service import PasswordValidationError, create_user


# =============================================================================
# LEDGER COMMANDS
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Ledger bootstrap, audit, and repair commands."""


@ledger_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables and seed sequence counters. Safe to run repeatedly."""
    db.create_all()
    click.echo("PASS Tables created")
    for name in sequence_service.SEQUENCE_NAMES:
        row = sequence_service.resync_counter(name)
        click.echo(f"PASS Sequence {row['name']}: {row['current']}")


@ledger_group.command('reset-db')
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
    click.echo("BUILD Creating tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


@ledger_group.command('resync-sequences')
@with_appcontext
def resync_sequences():
    """Raise sequence counters to the highest value present in the ledger."""
    for name in sequence_service.SEQUENCE_NAMES:
        row = sequence_service.resync_counter(name)
        click.echo(
            f"{row['name']:<16} previous={row['previous']} current={row['current']} "
            f"ledger_max={row['ledger_max']}"
        )


@ledger_group.command('audit')
@click.option('--fix', is_flag=True, help='Rewrite registry statuses that drifted from the ledger')
@click.option('--username', help='User the repair is attributed to (required with --fix)')
@with_appcontext
def audit(fix, username):
    """Print the discrepancy report as JSON."""
    report = discrepancy_service.analyze()
    click.echo(json.dumps(report, indent=2, default=str))

    if report["clean"]:
        click.echo("PASS Ledger and registry agree")
        return

    if fix:
        user = db.session.query(User).filter_by(username=username).first() if username else None
        if not user:
            click.echo("FAIL --fix needs --username of an existing user")
            return
        changes = discrepancy_service.reconcile(user_id=user.id)
        click.echo(f"FIX Reconciled {len(changes)} asset(s)")
        for change in changes:
            click.echo(f"    {change['serial_number']}: {change['status']['from']} -> {change['status']['to']}")


@ledger_group.command('import-csv')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--username', required=True, help='User the imported entries are attributed to')
@with_appcontext
def import_csv(path, username):
    """Bulk Stock_In from a CSV file."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return

    with open(path, encoding="utf-8-sig", newline="") as fh:
        text = fh.read()

    result = import_service.import_inventory_csv(user_id=user.id, text=text)
    click.echo(f"PASS Imported {result['imported']} item(s)")
    for skipped in result["skipped"]:
        click.echo(f"SKIP row {skipped['row']} ({skipped['serial_number'] or '-'}): {skipped['reason']}")


# =============================================================================
# USER COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection/bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<32} {'Active'}")
    click.echo("="*70)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<32} {active_str}")
    click.echo("="*70 + "\n")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_user_cli(username, email, password):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(username=username, email=email, password=password)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        return
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created user: {user.username} (ID: {user.id})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
    app.cli.add_command(users_group)
