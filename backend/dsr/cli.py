# Overview: Flask CLI command groups for bootstrap and daily stock operations.

# backend/dsr/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent). Use `flask db upgrade` for migrations.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Daily stock:
# - python -m flask dsr reconcile --date 2026-10-18
#   Recompute and save one business date (same routine as the manual save).
# - python -m flask dsr cutoff [--now 2026-10-18T19:56:00Z]
#   One cutoff poll; safe to run every minute from cron.
# - python -m flask dsr rebuild --start 2026-10-01 --end 2026-10-18
#   Walk the range forward re-seeding carried-forward openings.
# - python -m flask dsr scheduler
#   Run the cutoff poller in the foreground.

import time

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .services import reconciliation_service, scheduler_service
from .services.reconciliation_service import PersistenceFailure, ReconciliationError
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    click.echo("BUILD  Creating missing tables...")
    db.create_all()
    click.echo("PASS Database ready.")


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

    click.echo("PASS Database reset complete.")


@click.group('dsr')
def dsr_group():
    """Daily stock reconciliation commands."""


def _echo_result(result):
    flag = " PARTIAL" if result.is_partial else ""
    ledger = f" [{result.holder}]" if result.holder else ""
    click.echo(
        f"PASS {result.business_date.isoformat()}{ledger}: {len(result.records)} products, "
        f"{result.records_written} written{flag} (run {result.run.id})"
    )
    for warning in result.warnings:
        click.echo(f"  WARN {warning.code}: {warning.message}")
    for rec in result.records:
        for warning in rec.warnings or []:
            click.echo(f"  WARN {rec.product_key} {warning.get('code')}: {warning.get('message')}")


@dsr_group.command('reconcile')
@click.option('--date', 'day', required=True, help='Business date (YYYY-MM-DD)')
@click.option('--holder', default='', help='Holder ledger to reconcile (default: warehouse)')
@with_appcontext
def reconcile(day, holder):
    """Recompute and save one business date."""
    click.echo(f"START Reconciling {day}...")
    try:
        result = reconciliation_service.reconcile_day(
            day, holder=holder, trigger=reconciliation_service.TRIGGER_MANUAL,
        )
    except ReconciliationError as exc:
        raise click.BadParameter(str(exc), param_hint='--date')
    except PersistenceFailure as exc:
        raise click.ClickException(f"save failed, please retry ({exc})")
    _echo_result(result)


@dsr_group.command('cutoff')
@click.option('--now', 'now_value', default=None, help='Override current time (ISO-8601, naive = UTC)')
@with_appcontext
def cutoff(now_value):
    """Run one cutoff poll."""
    try:
        now = parse_iso_datetime(now_value) if now_value else None
    except ValueError:
        raise click.BadParameter("must be an ISO-8601 datetime", param_hint='--now')

    try:
        result = scheduler_service.tick(now)
    except (ReconciliationError, PersistenceFailure) as exc:
        raise click.ClickException(f"cutoff failed: {exc}")

    if result is None:
        click.echo("SKIP Cutoff not due or already done.")
        return
    _echo_result(result)


@dsr_group.command('rebuild')
@click.option('--start', 'start', required=True, help='First business date (YYYY-MM-DD)')
@click.option('--end', 'end', required=True, help='Last business date (YYYY-MM-DD)')
@click.option('--holder', default='', help='Holder ledger to rebuild (default: warehouse)')
@with_appcontext
def rebuild(start, end, holder):
    """Recompute a date range in order, re-seeding carried-forward openings."""
    click.echo(f"START Rebuilding {start} .. {end}...")
    try:
        results = reconciliation_service.rebuild_range(start, end, holder=holder)
    except ReconciliationError as exc:
        raise click.BadParameter(str(exc))
    except PersistenceFailure as exc:
        raise click.ClickException(f"rebuild stopped: {exc}")
    for result in results:
        _echo_result(result)
    click.echo(f"PASS Rebuilt {len(results)} day(s).")


@dsr_group.command('scheduler')
@with_appcontext
def run_scheduler():
    """Run the cutoff poller in the foreground (Ctrl+C to stop)."""
    app = current_app._get_current_object()
    poller = app.extensions.get("dsr_scheduler")
    if poller is None:
        poller = scheduler_service.CutoffScheduler(app)
        poller.start()
    click.echo(
        f"START Cutoff poller every {poller.poll_seconds}s "
        f"({app.config.get('DSR_CUTOFF_TIME')} {app.config.get('DSR_TIMEZONE')})"
    )
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        poller.shutdown()
        click.echo("PASS Poller stopped.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(dsr_group)
