# Overview: Flask CLI command groups for bootstrap, registry setup, and month-end distribution.

# backend/retailcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the investor-pool account.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Branches and suppliers:
# - python -m flask branches create --name "Downtown" --code "DT"
# - python -m flask branches list
# - python -m flask suppliers create --name "Acme Wholesale"
# - python -m flask suppliers list
#
# Investors:
# - python -m flask investors create --name "A. Investor"
# - python -m flask investors add-capital 1 100000.00 [--date 2025-01-15]
# - python -m flask investors list
#
# Month-end distribution:
# - python -m flask distributions preview 2025-06
# - python -m flask distributions finalize 2025-06 --actor-id 1

import click
from flask.cli import with_appcontext

from .errors import CoreError
from .extensions import db
from .money import format_cents
from .services import branch_service, distribution_service, investor_service, ledger_service
from .time_utils import parse_iso_datetime


def _fail(exc: CoreError):
    db.session.rollback()
    raise click.ClickException(f"{exc.code}: {exc.message}")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the database and the investor-pool account.

    Safe to run repeatedly.
    """
    click.echo("START Initializing...")
    db.create_all()

    pool = branch_service.ensure_pool_branch()
    db.session.commit()
    click.echo(f"PASS Investor pool account: {pool.name} (ID: {pool.id}, Code: {pool.code})")
    click.echo("DONE Initialized")


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
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset. Run 'flask system init' to create the investor-pool account.")


@click.group('branches')
def branches_group():
    """Branch management."""


@branches_group.command('create')
@click.option('--name', required=True)
@click.option('--code', required=True)
@click.option('--address', default=None)
@with_appcontext
def create_branch_cmd(name, code, address):
    try:
        branch = branch_service.create_branch(name=name, code=code, address=address)
        db.session.commit()
    except CoreError as e:
        _fail(e)
    click.echo(f"PASS Created branch {branch.name} (ID: {branch.id}, Code: {branch.code})")


@branches_group.command('list')
@with_appcontext
def list_branches_cmd():
    balances = {a.owner_id: a.balance_cents for a in ledger_service.list_balances(ledger_service.OWNER_BRANCH)}
    branches = branch_service.list_branches()
    if not branches:
        click.echo("No branches found.")
        return
    for branch in branches:
        status = "active" if branch.is_active else "inactive"
        balance = format_cents(balances.get(branch.id, 0))
        click.echo(f"{branch.id:>4}  {branch.code:<10} {branch.name:<30} {status:<8} balance={balance}")


@click.group('suppliers')
def suppliers_group():
    """Supplier management."""


@suppliers_group.command('create')
@click.option('--name', required=True)
@click.option('--contact', 'contact_info', default=None)
@with_appcontext
def create_supplier_cmd(name, contact_info):
    try:
        supplier = branch_service.create_supplier(name=name, contact_info=contact_info)
        db.session.commit()
    except CoreError as e:
        _fail(e)
    click.echo(f"PASS Created supplier {supplier.name} (ID: {supplier.id})")


@suppliers_group.command('list')
@with_appcontext
def list_suppliers_cmd():
    owed = {a.owner_id: a.balance_cents for a in ledger_service.list_supplier_balances()}
    for supplier in branch_service.list_suppliers():
        click.echo(f"{supplier.id:>4}  {supplier.name:<30} owed={format_cents(owed.get(supplier.id, 0))}")


@click.group('investors')
def investors_group():
    """Investor and capital registry."""


@investors_group.command('create')
@click.option('--name', required=True)
@click.option('--contact', 'contact_info', default=None)
@with_appcontext
def create_investor_cmd(name, contact_info):
    try:
        investor = investor_service.create_investor(name, contact_info)
        db.session.commit()
    except CoreError as e:
        _fail(e)
    click.echo(f"PASS Created investor {investor.name} (ID: {investor.id})")


@investors_group.command('add-capital')
@click.argument('investor_id', type=int)
@click.argument('amount')
@click.option('--date', 'contribution_date', default=None, help='ISO-8601 contribution date (default: now)')
@click.option('--notes', default=None)
@with_appcontext
def add_capital_cmd(investor_id, amount, contribution_date, notes):
    try:
        contribution = investor_service.add_capital(
            investor_id,
            amount,
            contribution_date=parse_iso_datetime(contribution_date),
            notes=notes,
        )
        db.session.commit()
    except CoreError as e:
        _fail(e)
    click.echo(
        f"PASS Recorded {format_cents(contribution.amount_cents)} for investor {investor_id} "
        f"on {contribution.contribution_date.date().isoformat()}"
    )


@investors_group.command('list')
@with_appcontext
def list_investors_cmd():
    for investor, total_cents in investor_service.list_investors():
        status = "active" if investor.is_active else "inactive"
        click.echo(f"{investor.id:>4}  {investor.name:<30} {status:<8} capital={format_cents(total_cents)}")


@click.group('distributions')
def distributions_group():
    """Month-end profit distribution."""


def _echo_breakdown(lines):
    for line in lines:
        click.echo(
            f"  investor {line['investor_id']:>4}  {line['investor_name']:<30} "
            f"capital={line['capital']:>14}  share={line['capital_share_percent']:>9}%  "
            f"amount={line['distributed_amount']:>12}"
        )


@distributions_group.command('preview')
@click.argument('period')
@with_appcontext
def preview_cmd(period):
    try:
        preview = distribution_service.preview_distribution(period).to_dict()
    except CoreError as e:
        _fail(e)
    click.echo(f"Period {preview['period']}")
    click.echo(f"  company profit: {preview['company_profit']}")
    click.echo(f"  investor pool:  {preview['total_pool']}")
    click.echo(f"  master share:   {preview['total_master_share']}")
    click.echo(f"  total capital:  {preview['total_capital']}")
    _echo_breakdown(preview["breakdown"])


@distributions_group.command('finalize')
@click.argument('period')
@click.option('--actor-id', type=int, required=True)
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def finalize_cmd(period, actor_id, yes):
    """Finalize a period. This cannot be undone."""
    if not yes:
        click.confirm(f"WARN Finalizing {period} is permanent. Continue?", abort=True)
    try:
        distribution = distribution_service.finalize_distribution(period, actor_id)
        db.session.commit()
    except CoreError as e:
        _fail(e)
    click.echo(
        f"PASS Finalized {distribution.period}: pool={format_cents(distribution.total_pool_cents)} "
        f"master={format_cents(distribution.total_master_share_cents)} "
        f"investors={len(distribution.details)}"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(branches_group)
    app.cli.add_command(suppliers_group)
    app.cli.add_command(investors_group)
    app.cli.add_command(distributions_group)
