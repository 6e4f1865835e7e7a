# Overview: Flask CLI command groups for facilities, register sessions, and ledger reconciliation.

# backend/cashledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Facilities:
# - python -m flask facilities list
#   List facilities with their open register, if any.
# - python -m flask facilities create --name "Downtown Courts" --code "DT"
#   Create a facility.
#
# Register sessions:
# - python -m flask sessions list --facility-id 1 --status OPEN --limit 20
#   List recent register sessions with optional filters.
# - python -m flask sessions open --facility-id 1 --opening-cash-cents 10000
#   Open a register session.
# - python -m flask sessions close 5 --counted-cash-cents 15200
#   Close a session and print the variance.
# - python -m flask sessions recompute 5
#   Rebuild one session's totals from its movements.
#
# Ledger repair:
# - python -m flask ledger reconcile --facility-id 1 --dry-run
#   Preview the movements a reconciliation would recover. Writes nothing.
# - python -m flask ledger reconcile --all --yes
#   Recover missing movements for every facility and recompute all totals.
#   IRREVERSIBLE: recovered movements cannot be removed afterwards.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Facility
from .services import register_service, aggregation_service, reconciliation_service
from .services.concurrency import single_flight
from .validation import ConflictError, InvalidStateError, NotFoundError, ValidationError


def _money(cents) -> str:
    if cents is None:
        return "-"
    return f"{cents / 100:,.2f}"


# =============================================================================
# FACILITIES
# =============================================================================

@click.group('facilities')
def facilities_group():
    """Facility registry."""


@facilities_group.command('list')
@with_appcontext
def list_facilities_cli():
    facilities = db.session.query(Facility).order_by(Facility.id).all()

    if not facilities:
        click.echo("No facilities found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<12} {'Active':<8} {'Open session'}")
    click.echo("="*70)

    for facility in facilities:
        current = register_service.get_current_session(facility.id)
        active_str = "Yes" if facility.is_active else "No"
        current_str = str(current.id) if current else "-"
        click.echo(f"{facility.id:<5} {facility.name:<30} {facility.code or '-':<12} {active_str:<8} {current_str}")

    click.echo("="*70 + "\n")


@facilities_group.command('create')
@click.option('--name', required=True, help='Facility name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_facility_cli(name, code):
    existing = db.session.query(Facility).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Facility with code '{code}' already exists")
        return

    facility = Facility(name=name, code=code)
    db.session.add(facility)
    db.session.commit()

    click.echo(f"PASS Created facility: {facility.name} (ID: {facility.id}, Code: {facility.code})")


# =============================================================================
# REGISTER SESSIONS
# =============================================================================

@click.group('sessions')
def sessions_group():
    """Register session management."""


@sessions_group.command('list')
@click.option('--facility-id', type=int, help='Filter by facility ID')
@click.option('--status', type=click.Choice(['OPEN', 'CLOSED']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(facility_id, status, limit):
    """
    List register sessions.

    Example:
        flask sessions list
        flask sessions list --facility-id 1
        flask sessions list --status OPEN
    """
    sessions, total = register_service.list_sessions(facility_id=facility_id, status=status, limit=limit)

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<5} {'Facility':<9} {'Status':<8} {'Opened':<22} {'Closed':<22} {'Expected':>12} {'Variance':>12}")
    click.echo("="*110)

    for session in sessions:
        opened = session.opened_at.strftime("%Y-%m-%d %H:%M:%S")
        closed = session.closed_at.strftime("%Y-%m-%d %H:%M:%S") if session.closed_at else "-"
        click.echo(
            f"{session.id:<5} {session.facility_id:<9} {session.status:<8} {opened:<22} {closed:<22} "
            f"{_money(session.expected_cash_cents):>12} {_money(session.variance_cents):>12}"
        )

    click.echo("="*110)
    click.echo(f"Showing {len(sessions)} of {total}\n")


@sessions_group.command('open')
@click.option('--facility-id', type=int, required=True, help='Facility ID')
@click.option('--opening-cash-cents', type=int, default=0, help='Opening float in cents')
@click.option('--operator-id', type=int, help='Operator opening the register')
@click.option('--notes', help='Opening notes')
@with_appcontext
def open_session_cli(facility_id, opening_cash_cents, operator_id, notes):
    try:
        session = register_service.open_session(facility_id, operator_id, opening_cash_cents, notes)
    except (NotFoundError, ConflictError, ValidationError) as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Opened session {session.id} for facility {facility_id} "
               f"(opening cash {_money(session.opening_cash_cents)})")


@sessions_group.command('close')
@click.argument('session_id', type=int)
@click.option('--counted-cash-cents', type=int, required=True, help='Cash counted in the drawer, in cents')
@click.option('--notes', help='Closing notes')
@with_appcontext
def close_session_cli(session_id, counted_cash_cents, notes):
    try:
        session = register_service.close_session(session_id, counted_cash_cents, notes)
    except (NotFoundError, InvalidStateError, ValidationError) as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Closed session {session.id}")
    click.echo(f"   Expected: {_money(session.expected_cash_cents)}")
    click.echo(f"   Counted:  {_money(session.counted_cash_cents)}")
    click.echo(f"   Variance: {_money(session.variance_cents)}")


@sessions_group.command('recompute')
@click.argument('session_id', type=int)
@with_appcontext
def recompute_session_cli(session_id):
    try:
        totals = aggregation_service.recompute_session_totals(session_id)
    except NotFoundError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Recomputed session {session_id}: {totals.total_movements} movements, "
               f"sales {_money(totals.total_sales_cents)}, expected cash {_money(totals.expected_cash_cents)}")


# =============================================================================
# LEDGER REPAIR
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Cash ledger repair."""


@ledger_group.command('reconcile')
@click.option('--facility-id', type=int, help='Facility to reconcile')
@click.option('--all', 'all_facilities', is_flag=True, help='Reconcile every facility')
@click.option('--dry-run', is_flag=True, help='Report what would change, write nothing')
@click.option('--touched-only', is_flag=True, help='Recompute only sessions that receive recovered movements')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reconcile_cli(facility_id, all_facilities, dry_run, touched_only, yes):
    """
    Recover cash movements missing for recorded payments and rebuild totals.

    IRREVERSIBLE unless --dry-run: recovered movements become permanent
    ledger entries.
    """
    if (facility_id is None) == (not all_facilities):
        raise click.UsageError("Pass exactly one of --facility-id or --all")

    if facility_id is not None:
        try:
            register_service.get_facility(facility_id)
        except NotFoundError as e:
            raise click.ClickException(str(e))

    scope = "all facilities" if all_facilities else f"facility {facility_id}"
    if not dry_run and not yes:
        click.confirm(
            f"WARN This will permanently add recovered movements for {scope} and cannot be undone. Continue?",
            abort=True,
        )

    try:
        with single_flight(reconciliation_service.scope_key(facility_id)):
            report = reconciliation_service.reconcile(
                facility_id,
                touched_only=touched_only,
                dry_run=dry_run,
            )
    except ConflictError as e:
        raise click.ClickException(str(e))

    prefix = "DRY RUN" if dry_run else "PASS"
    click.echo(f"{prefix} Reconciled {scope}")
    click.echo(f"   Movements created:    {report.movements_created}")
    click.echo(f"   Skipped (no register): {report.skipped_no_register}")
    click.echo(f"   Skipped (bad amount):  {report.skipped_invalid_amount}")
    click.echo(f"   Sessions recomputed:  {report.sessions_recomputed}")

    for skipped in report.skipped + report.invalid:
        detail = skipped.to_dict()
        click.echo(
            f"   WARN {detail['source']} payment {detail['payment_id']}: "
            f"{_money(detail['amount_cents'])} {detail['payment_method']} at {detail['occurred_at']} "
            f"({detail['reason']})"
        )

    if dry_run:
        click.echo("   Nothing was written.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(facilities_group)
    app.cli.add_command(sessions_group)
    app.cli.add_command(ledger_group)
