# Overview: Flask CLI command groups for setup, diagnostics and inspection.

# backend/fintrack/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Set SUPABASE_URL and SUPABASE_ANON_KEY for the hosted project.
# - Use: python -m flask <group> <command> [options]
#
# System setup/diagnostics:
# - python -m flask system seed [--year 2025]
#   Seed empty reference tables (payment centers, payment types, statuses,
#   programs), the default admin profile and the year's default budgets.
# - python -m flask system check-connection [--tables]
#   Verify the API key and project status; optionally probe every table.
#
# Auth:
# - python -m flask auth hash-password
#   Produce a bcrypt hash for BREAK_GLASS_PASSWORD_HASH (prompts twice).
#
# Data inspection:
# - python -m flask data summary
#   Load every collection and print record counts.

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .records import ALL_COLLECTIONS
from .services import diagnostics_service, seed_service
from .services.auth_service import PasswordValidationError, hash_password
from .workspace import get_workspace


@click.group('system')
def system_group():
    """Hosted project setup and diagnostics."""


@system_group.command('seed')
@click.option('--year', type=int, default=None, help='Budget year (default: current year)')
@with_appcontext
def seed_command(year):
    """
    Seed the hosted tables for first use.

    Only empty tables are seeded; running it again changes nothing.
    """
    workspace = get_workspace()
    click.echo(f"START Seeding {workspace.remote.url} ...")
    result = seed_service.setup_database(
        workspace.remote,
        workspace.storage,
        admin_email=current_app.config["ADMIN_EMAIL"],
        year=year,
    )

    for table, count in result.seeded.items():
        click.echo(f"PASS {table}: {count} rows inserted")
    for table in result.skipped:
        click.echo(f"SKIP {table}: already populated")
    for table, message in result.errors.items():
        click.echo(f"FAIL {table}: {message}", err=True)

    if not result.success:
        raise click.ClickException("Setup finished with errors")
    click.echo("DONE Database setup completed successfully")


@system_group.command('check-connection')
@click.option('--tables', is_flag=True, help='Probe every collection table')
@click.option('--json', 'as_json', is_flag=True, help='Print the raw result as JSON')
@with_appcontext
def check_connection_command(tables, as_json):
    """Verify the API key and that the project is online."""
    workspace = get_workspace()
    result = diagnostics_service.run_connection_check(
        workspace.remote, workspace.storage, include_tables=tables
    )

    if as_json:
        click.echo(json.dumps(result, indent=2))
    else:
        click.echo(f"URL      {result['url']}")
        click.echo(f"API key  {'PASS' if result['apiKey']['valid'] else 'FAIL'} {result['apiKey']['message']}")
        click.echo(f"Project  {'PASS' if result['project']['online'] else 'FAIL'} {result['project']['message']}")
        for table, status in result.get("tables", {}).items():
            detail = "" if status["accessible"] else f" {status['message']}"
            click.echo(f"  {'PASS' if status['accessible'] else 'FAIL'} {table}{detail}")

    if not result["success"]:
        raise click.ClickException("Connection check failed")


@click.group('auth')
def auth_group():
    """Authentication helpers."""


@auth_group.command('hash-password')
@click.password_option('--password', help='Password to hash (prompted when omitted)')
def hash_password_command(password):
    """Print a bcrypt hash suitable for BREAK_GLASS_PASSWORD_HASH."""
    try:
        click.echo(hash_password(password))
    except PasswordValidationError as e:
        raise click.ClickException(str(e))


@click.group('data')
def data_group():
    """Cached data inspection."""


@data_group.command('summary')
@with_appcontext
def summary_command():
    """Load every collection and print record counts."""
    workspace = get_workspace()
    workspace.session.restore_from_durable_storage()
    workspace.session.initialize()
    workspace.cache.initialize_data()

    identity = workspace.session.current_identity()
    click.echo(f"Signed in as: {identity.display_name if identity else '(nobody)'}")
    counts = workspace.cache.counts()
    width = max(len(name) for name in ALL_COLLECTIONS)
    for collection in ALL_COLLECTIONS:
        click.echo(f"{collection.ljust(width)}  {counts[collection]}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(auth_group)
    app.cli.add_command(data_group)
