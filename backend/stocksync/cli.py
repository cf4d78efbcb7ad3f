# Overview: Flask CLI command groups for bootstrap, sync operations and data maintenance.

# backend/stocksync/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create the local store table (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate the local store (deletes all local data and the sync queue).
# - python -m flask system check-ledger
#   Report products whose current_stock disagrees with their movements.
#
# Sync:
# - python -m flask sync status
#   Show connectivity, pending queue entries and the last error.
# - python -m flask sync drain
#   Replay queued remote writes in order.
# - python -m flask sync refresh
#   Replace local collections with the remote contents (skipped while writes are queued).
# - python -m flask sync watch --interval 30
#   Probe the remote periodically and drain whenever it is reachable.
# - python -m flask sync reset-auth
#   Clear an authorization block after fixing REMOTE_LEDGER_KEY.
#
# Data:
# - python -m flask data backup --out backup.json
# - python -m flask data restore backup.json --yes
# - python -m flask data import products products.csv [--no-reconcile-stock]
# - python -m flask data import sales sales.xlsx
# - python -m flask data import stock movements.json

import json
import time

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .services.coordinator import get_coordinator
from .services.errors import RemoteAuthorizationError, RemoteError, StockSyncError
from .services.import_service import IMPORT_KINDS, parse_upload


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create the local store schema if missing."""
    db.create_all()
    click.echo("PASS Local store ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop the local store and recreate it.

    Queued remote writes are lost as well.
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL LOCAL DATA and the sync queue. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    get_coordinator().reload()
    click.echo("PASS Local store reset complete.")


@system_group.command('check-ledger')
@with_appcontext
def check_ledger():
    """Verify current_stock == sum(in) - sum(out) for every product."""
    mismatches = get_coordinator().verify_ledger()
    if not mismatches:
        click.echo("PASS Ledger consistent.")
        return
    for m in mismatches:
        click.echo(
            f"FAIL {m['code']}: current_stock={m['current_stock']} "
            f"ledger={m['ledger_balance']} (difference {m['difference']:+d})"
        )
    raise SystemExit(1)


@click.group('sync')
def sync_group():
    """Remote synchronization commands."""


def _echo_status(status: dict) -> None:
    click.echo(f"Status:  {status['status']}")
    click.echo(f"Message: {status['message']}")
    click.echo(f"Pending: {status['pending']}")
    if status.get("last_error"):
        click.echo(f"Last error: {status['last_error']}")
    if status.get("last_sync_at"):
        click.echo(f"Last sync:  {status['last_sync_at']}")


@sync_group.command('status')
@click.option('--entries', is_flag=True, help='List queued entries')
@with_appcontext
def sync_status(entries):
    coordinator = get_coordinator()
    _echo_status(coordinator.status())
    if entries:
        for e in coordinator.pending_entries():
            target = f"{e.get('table')}/{e.get('id')}" if e.get('id') else e.get('table')
            click.echo(f"  {e.get('type'):<6} {target} attempts={e.get('attempts', 0)} {e.get('last_error') or ''}")


@sync_group.command('drain')
@with_appcontext
def sync_drain():
    """Replay queued writes."""
    result = get_coordinator().drain()
    click.echo(
        f"Attempted {result.attempted}, succeeded {result.succeeded}, "
        f"remaining {result.remaining}, refreshed {'yes' if result.refreshed else 'no'} -> {result.status}"
    )


@sync_group.command('refresh')
@with_appcontext
def sync_refresh():
    """Pull every collection from the remote."""
    try:
        refreshed = get_coordinator().refresh()
    except RemoteAuthorizationError as e:
        raise click.ClickException(f"Access denied for: {', '.join(e.collections)}")
    except RemoteError as e:
        raise click.ClickException(f"Refresh failed: {e.message}")
    if refreshed:
        click.echo("PASS Local data refreshed from remote.")
    else:
        click.echo("SKIP Refresh skipped (offline, blocked, or writes still queued).")


@sync_group.command('watch')
@click.option('--interval', type=float, default=None, help='Seconds between probes (default SYNC_INTERVAL_SECONDS)')
@click.option('--iterations', type=int, default=0, help='Stop after N probes (0 = run until interrupted)')
@with_appcontext
def sync_watch(interval, iterations):
    """Probe connectivity periodically and drain whenever the remote is reachable."""
    coordinator = get_coordinator()
    interval = interval or float(current_app.config.get("SYNC_INTERVAL_SECONDS", 30.0))
    count = 0
    try:
        while True:
            reachable = coordinator.probe()
            if reachable and coordinator.queue.entries():
                result = coordinator.drain()
                click.echo(f"drain: {result.succeeded}/{result.attempted} ok, {result.remaining} remaining ({result.status})")
            else:
                click.echo(f"{coordinator.status()['status']}: {len(coordinator.queue)} pending")
            count += 1
            if iterations and count >= iterations:
                break
            time.sleep(interval)
    except KeyboardInterrupt:
        click.echo("Stopped.")


@sync_group.command('reset-auth')
@with_appcontext
def sync_reset_auth():
    _echo_status(get_coordinator().reset_auth())


@click.group('data')
def data_group():
    """Backup, restore and import commands."""


@data_group.command('backup')
@click.option('--out', 'out_path', type=click.Path(dir_okay=False, writable=True), required=True)
@with_appcontext
def data_backup(out_path):
    snapshot = get_coordinator().build_backup()
    with open(out_path, "w", encoding="utf-8") as fh:
        json.dump(snapshot, fh, ensure_ascii=False, indent=2)
    click.echo(f"PASS Backup written to {out_path} ({len(snapshot['products'])} products)")


@data_group.command('restore')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def data_restore(path, yes):
    """Replace ALL data with the contents of a backup file."""
    if not yes:
        click.confirm("WARN This replaces all local and remote data. Continue?", abort=True)
    with open(path, "r", encoding="utf-8") as fh:
        try:
            snapshot = json.load(fh)
        except ValueError as e:
            raise click.ClickException(f"Invalid backup file: {e}")
    try:
        result = get_coordinator().restore_from_backup(snapshot)
    except StockSyncError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Restored {len(result.value.products)} products, {len(result.value.sales)} sales.")


@data_group.command('import')
@click.argument('kind', type=click.Choice(IMPORT_KINDS))
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--reconcile-stock/--no-reconcile-stock', default=None,
              help='Products only: record stock changes as movements (default from config)')
@with_appcontext
def data_import(kind, path, reconcile_stock):
    try:
        with open(path, "rb") as fh:
            rows = parse_upload(path, fh)
        summary = get_coordinator().import_rows(kind, rows, reconcile_stock=reconcile_stock)
    except StockSyncError as e:
        raise click.ClickException(e.message)

    click.echo(f"{summary['message']} (created {summary['created']}, updated {summary['updated']})")
    for err in summary["errors"]:
        ref = f" [{err['reference']}]" if err.get("reference") else ""
        click.echo(f"  row {err['row_number']}{ref}: {err['error']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sync_group)
    app.cli.add_command(data_group)
