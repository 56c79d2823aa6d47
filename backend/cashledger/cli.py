# Overview: Flask CLI command groups for bootstrap, reference data, periods, ledger entries and reports.

# backend/cashledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to cashledger (PowerShell: $env:FLASK_APP="cashledger").
# - Use: python -m flask <group> <command> [options]
#
# Bootstrap:
# - python -m flask ledger init-db
#   Create all tables (idempotent).
#
# Reference data:
# - python -m flask currencies create --code IDR --name "Rupiah" --symbol Rp --precision 2
# - python -m flask currencies list
# - python -m flask branches create --code B01 --name "Head Office"
# - python -m flask branches list
# - python -m flask branches opening --branch B01 --currency IDR --amount 1000000 --date 2025-01-01
#   Record the opening balance of a branch/currency pair.
#
# Accounting periods:
# - python -m flask periods create --name "2025-01" --start 2025-01-01 --end 2025-01-31
# - python -m flask periods close 1
# - python -m flask periods list
#
# Ledger entries:
# - python -m flask ledger record --branch B01 --currency IDR --date 2025-01-05 --type in --amount 50000
# - python -m flask ledger approve 12 --actor-id 1
# - python -m flask ledger scan IDRB0125011001 --actor-id 1
# - python -m flask ledger pending
#
# Reports:
# - python -m flask reports balance-summary --from 2025-01-01 --to 2025-01-31
# - python -m flask reports daily --currency IDR --date 2025-01-05 [--branch B01]

import click
from flask.cli import with_appcontext

from .exceptions import LedgerError
from .extensions import db
from .logging_config import LogContext
from .permissions import APPROVE_TRANSACTION, Actor
from .services import (
    approval_service,
    audit_service,
    ledger_service,
    opening_balance_service,
    period_service,
    reference_data_service,
    reporting_service,
)


def _cli_actor(actor_id):
    return Actor(id=actor_id, name="cli", permissions=frozenset({APPROVE_TRANSACTION}))


def _fail(exc: LedgerError):
    click.echo(f"FAIL [{exc.code}] {exc.message}")


@click.group('ledger')
def ledger_group():
    """Ledger bootstrap and entry commands."""


@ledger_group.command('init-db')
@with_appcontext
def init_db():
    """Create all ledger tables."""
    db.create_all()
    click.echo("PASS Ledger tables created")


@ledger_group.command('record')
@click.option('--branch', 'branch_code', required=True, help='Branch code')
@click.option('--currency', 'currency_code', required=True, help='Currency code')
@click.option('--date', 'transaction_date', required=True, help='Transaction date (YYYY-MM-DD)')
@click.option('--type', 'tx_type', type=click.Choice(['in', 'out']), required=True)
@click.option('--amount', required=True, help='Amount')
@click.option('--description', default=None)
@click.option('--actor-name', default=None, help='Depositor / requester name')
@click.option('--actor-id', type=int, default=None, help='Creator user ID')
@with_appcontext
def record_transaction(branch_code, currency_code, transaction_date, tx_type, amount, description, actor_name, actor_id):
    """Record a pending deposit or withdrawal."""
    try:
        branch = reference_data_service.get_branch_by_code(branch_code)
        currency = reference_data_service.get_currency_by_code(currency_code)
        outcome = ledger_service.create_transaction(
            branch.id,
            currency.id,
            transaction_date,
            tx_type,
            amount,
            description,
            actor_name,
            actor=_cli_actor(actor_id),
        )
    except LedgerError as exc:
        _fail(exc)
        return

    audit_service.record_events(outcome.events)
    tx = outcome.entity
    click.echo(f"PASS Recorded {tx.full_reference} (ID: {tx.id}, {tx.type} {tx.amount}, {tx.status})")


@ledger_group.command('approve')
@click.argument('transaction_id', type=int)
@click.option('--actor-id', type=int, required=True, help='Approver user ID')
@with_appcontext
def approve_transaction(transaction_id, actor_id):
    """Approve a pending transaction (a transfer leg approves its pair)."""
    try:
        with LogContext.bind(actor_id=actor_id):
            outcome = approval_service.approve_transaction(transaction_id, actor=_cli_actor(actor_id))
    except LedgerError as exc:
        _fail(exc)
        return

    audit_service.record_events(outcome.events)
    click.echo(f"PASS Approved {outcome.entity.full_reference} ({len(outcome.events)} event(s))")


@ledger_group.command('reject')
@click.argument('transaction_id', type=int)
@click.option('--actor-id', type=int, required=True, help='Approver user ID')
@with_appcontext
def reject_transaction(transaction_id, actor_id):
    """Reject a pending transaction (a transfer leg rejects its pair)."""
    try:
        with LogContext.bind(actor_id=actor_id):
            outcome = approval_service.reject_transaction(transaction_id, actor=_cli_actor(actor_id))
    except LedgerError as exc:
        _fail(exc)
        return

    audit_service.record_events(outcome.events)
    click.echo(f"PASS Rejected {outcome.entity.full_reference}")


@ledger_group.command('scan')
@click.argument('code')
@click.option('--actor-id', type=int, required=True, help='Approver user ID')
@with_appcontext
def scan_approve(code, actor_id):
    """Approve the transaction whose full reference matches the scanned code."""
    try:
        with LogContext.bind(actor_id=actor_id):
            outcome = approval_service.scan_and_approve(code, actor=_cli_actor(actor_id))
    except LedgerError as exc:
        _fail(exc)
        return

    audit_service.record_events(outcome.events)
    click.echo(f"PASS Approved {outcome.entity.full_reference}")


@ledger_group.command('pending')
@with_appcontext
def list_pending():
    """List transactions awaiting approval."""
    rows = approval_service.pending_queue()
    if not rows:
        click.echo("No pending transactions.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'Reference':<22} {'Date':<12} {'Type':<5} {'Amount':>16}  {'Actor'}")
    click.echo("="*80)
    for tx in rows:
        click.echo(
            f"{tx.id:<6} {tx.full_reference:<22} {tx.transaction_date.isoformat():<12} "
            f"{tx.type:<5} {str(tx.amount):>16}  {tx.actor_name or '-'}"
        )
    click.echo("="*80 + "\n")


@click.group('currencies')
def currencies_group():
    """Currency reference data."""


@currencies_group.command('create')
@click.option('--code', required=True, help='ISO-like code, max 3 characters')
@click.option('--name', required=True, help='Currency name')
@click.option('--symbol', default=None)
@click.option('--precision', type=int, default=None, help='Decimal places (defaults to LEDGER_DEFAULT_PRECISION)')
@with_appcontext
def create_currency(code, name, symbol, precision):
    """Create a currency."""
    try:
        currency = reference_data_service.create_currency(code, name, symbol=symbol, precision=precision)
    except LedgerError as exc:
        _fail(exc)
        return
    click.echo(f"PASS Created currency: {currency.code} (ID: {currency.id}, precision {currency.precision})")


@currencies_group.command('list')
@with_appcontext
def list_currencies():
    """List currencies."""
    currencies = reference_data_service.list_currencies()
    if not currencies:
        click.echo("No currencies found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Code':<6} {'Name':<30} {'Prec':<5} {'Active'}")
    click.echo("="*60)
    for currency in currencies:
        active_str = "Yes" if currency.is_active else "No"
        click.echo(f"{currency.id:<5} {currency.code:<6} {currency.name:<30} {currency.precision:<5} {active_str}")
    click.echo("="*60 + "\n")


@click.group('branches')
def branches_group():
    """Branch reference data and opening balances."""


@branches_group.command('create')
@click.option('--code', required=True, help='Branch code, max 10 characters')
@click.option('--name', required=True, help='Branch name')
@with_appcontext
def create_branch(code, name):
    """Create a branch."""
    try:
        branch = reference_data_service.create_branch(code, name)
    except LedgerError as exc:
        _fail(exc)
        return
    click.echo(f"PASS Created branch: {branch.code} (ID: {branch.id}, Name: {branch.name})")


@branches_group.command('list')
@with_appcontext
def list_branches():
    """List branches."""
    branches = reference_data_service.list_branches()
    if not branches:
        click.echo("No branches found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Code':<11} {'Name':<30} {'Active'}")
    click.echo("="*60)
    for branch in branches:
        active_str = "Yes" if branch.is_active else "No"
        click.echo(f"{branch.id:<5} {branch.code:<11} {branch.name:<30} {active_str}")
    click.echo("="*60 + "\n")


@branches_group.command('opening')
@click.option('--branch', 'branch_code', required=True, help='Branch code')
@click.option('--currency', 'currency_code', required=True, help='Currency code')
@click.option('--amount', required=True, help='Opening balance (>= 0)')
@click.option('--date', 'opening_date', required=True, help='Opening date (YYYY-MM-DD)')
@click.option('--actor-id', type=int, default=None)
@with_appcontext
def set_opening_balance(branch_code, currency_code, amount, opening_date, actor_id):
    """Create or update the opening balance of a branch/currency pair."""
    try:
        branch = reference_data_service.get_branch_by_code(branch_code)
        currency = reference_data_service.get_currency_by_code(currency_code)
        existing = opening_balance_service.get_opening_balance(branch.id, currency.id)
        if existing is None:
            outcome = opening_balance_service.create_opening_balance(
                branch.id, currency.id, amount, opening_date, actor=_cli_actor(actor_id)
            )
        else:
            outcome = opening_balance_service.update_opening_balance(
                existing.id, amount, opening_date, actor=_cli_actor(actor_id)
            )
    except LedgerError as exc:
        _fail(exc)
        return

    audit_service.record_events(outcome.events)
    record = outcome.entity
    click.echo(f"PASS Opening balance {branch.code}/{currency.code}: {record.opening_balance} on {record.opening_date}")


@click.group('periods')
def periods_group():
    """Accounting period management."""


@periods_group.command('create')
@click.option('--name', required=True)
@click.option('--start', 'start_date', required=True, help='YYYY-MM-DD')
@click.option('--end', 'end_date', required=True, help='YYYY-MM-DD')
@click.option('--status', type=click.Choice(['open', 'closed']), default='open')
@with_appcontext
def create_period(name, start_date, end_date, status):
    """Create an accounting period."""
    try:
        period = period_service.create_period(name, start_date, end_date, status)
    except LedgerError as exc:
        _fail(exc)
        return
    click.echo(f"PASS Created period: {period.name} (ID: {period.id}, {period.start_date} .. {period.end_date}, {period.status})")


@periods_group.command('close')
@click.argument('period_id', type=int)
@with_appcontext
def close_period(period_id):
    """Close an accounting period."""
    try:
        period = period_service.close_period(period_id)
    except LedgerError as exc:
        _fail(exc)
        return
    click.echo(f"PASS Closed period: {period.name}")


@periods_group.command('list')
@with_appcontext
def list_periods():
    """List accounting periods, newest first."""
    periods = period_service.list_periods()
    if not periods:
        click.echo("No periods found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Name':<20} {'Start':<12} {'End':<12} {'Status'}")
    click.echo("="*60)
    for period in periods:
        click.echo(
            f"{period.id:<5} {period.name:<20} {period.start_date.isoformat():<12} "
            f"{period.end_date.isoformat():<12} {period.status}"
        )
    click.echo("="*60 + "\n")


@click.group('reports')
def reports_group():
    """Balance reports."""


@reports_group.command('balance-summary')
@click.option('--from', 'date_from', required=True, help='Period start (YYYY-MM-DD)')
@click.option('--to', 'date_to', required=True, help='Period end (YYYY-MM-DD)')
@with_appcontext
def balance_summary(date_from, date_to):
    """Begin / period / ending balance for every branch x currency."""
    try:
        rows = reporting_service.balance_summary(date_from, date_to)
    except LedgerError as exc:
        _fail(exc)
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'Branch':<11} {'Cur':<5} {'Begin':>22} {'Period':>22} {'Ending':>22}")
    click.echo("="*90)
    for row in rows:
        click.echo(
            f"{row.branch_code:<11} {row.currency_code:<5} "
            f"{str(row.begin):>22} {str(row.period):>22} {str(row.ending):>22}"
        )
    click.echo("="*90 + "\n")


@reports_group.command('daily')
@click.option('--currency', 'currency_code', required=True, help='Currency code')
@click.option('--date', 'report_date', required=True, help='Report date (YYYY-MM-DD)')
@click.option('--to', 'date_to', default=None, help='Optional end date for a ranged report')
@click.option('--branch', 'branch_code', default=None, help='Branch code (all branches when omitted)')
@with_appcontext
def daily_report(currency_code, report_date, date_to, branch_code):
    """Approved rows of the day with running balance."""
    try:
        currency = reference_data_service.get_currency_by_code(currency_code)
        branch_id = reference_data_service.get_branch_by_code(branch_code).id if branch_code else None
        report = reporting_service.daily_report(currency.id, report_date, date_to, branch_id)
    except LedgerError as exc:
        _fail(exc)
        return

    scope = report.branch_code or "All"
    click.echo(f"\nDaily report {report.currency_code} / {scope} : {report.date_from} .. {report.date_to}")
    click.echo("="*100)
    click.echo(f"{'Begin balance':<60} {str(report.begin_balance):>38}")
    click.echo("-"*100)
    for line in report.lines:
        click.echo(
            f"{line.full_reference:<22} {line.branch_code:<11} {(line.actor_name or '-')[:20]:<20} "
            f"{line.type:<4} {str(line.amount):>18} {str(line.running_balance):>20}"
        )
    click.echo("-"*100)
    click.echo(f"{'Ending balance':<60} {str(report.ending_balance):>38}")
    click.echo("="*100 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
    app.cli.add_command(currencies_group)
    app.cli.add_command(branches_group)
    app.cli.add_command(periods_group)
    app.cli.add_command(reports_group)
