# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-scopes --branch "Downtown" --warehouse "Main Warehouse"
#   Create branches/warehouses (idempotent by name) and show their invoice codes.
#
# Ledger inspection:
# - python -m flask ledger trial-balance --scope-type WAREHOUSE --scope-id 1
#   Print the trial balance for a scope.
# - python -m flask ledger verify-chain --scope-type WAREHOUSE --scope-id 1 [--customer-key tel:5550100]
#   Check every customer's running balance chain (or just one).
#
# Invoices:
# - python -m flask invoices stats --scope-type BRANCH --scope-id 2
#   Count, first/last invoice and the next number for a scope.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, CustomerBalance, Sale, Warehouse
from .services import balance_service, invoice_service, ledger_service
from .services.scope_service import SCOPE_BRANCH, SCOPE_WAREHOUSE, Scope, ScopeNotFound, resolve_scope_code
from .time_utils import to_utc_z


def _money(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}{abs(cents) // 100}.{abs(cents) % 100:02d}"


def _scope_options(func):
    func = click.option('--scope-id', type=int, required=True, help='Branch or warehouse ID')(func)
    func = click.option('--scope-type', type=click.Choice([SCOPE_BRANCH, SCOPE_WAREHOUSE], case_sensitive=False),
                        required=True, help='BRANCH or WAREHOUSE')(func)
    return func


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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


@system_group.command('seed-scopes')
@click.option('--branch', 'branches', multiple=True, help='Branch name (repeatable)')
@click.option('--warehouse', 'warehouses', multiple=True, help='Warehouse name (repeatable)')
@with_appcontext
def seed_scopes(branches, warehouses):
    """Create branches and warehouses by name and resolve their invoice codes."""
    if not branches and not warehouses:
        branches = ("Main Branch",)
        warehouses = ("Main Warehouse",)

    for kind, model, names in ((SCOPE_BRANCH, Branch, branches), (SCOPE_WAREHOUSE, Warehouse, warehouses)):
        for name in names:
            record = db.session.query(model).filter_by(name=name).first()
            if not record:
                record = model(name=name, is_active=True)
                db.session.add(record)
                db.session.flush()
            code = resolve_scope_code(db.session, Scope(kind, record.id))
            db.session.commit()
            click.echo(f"PASS {kind.title()} {record.name} (ID: {record.id}, Code: {code})")


@click.group('ledger')
def ledger_group():
    """Ledger inspection commands."""


@ledger_group.command('trial-balance')
@_scope_options
@with_appcontext
def trial_balance_cli(scope_type, scope_id):
    """Print the trial balance for one branch or warehouse."""
    scope = Scope(scope_type.upper(), scope_id)
    report = ledger_service.get_trial_balance(db.session, scope)

    if not report["accounts"]:
        click.echo(f"No accounts found for {scope}.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Account':<30} {'Kind':<12} {'Debit':>14} {'Credit':>14}")
    click.echo("="*80)

    for row in report["accounts"]:
        click.echo(
            f"{row['id']:<5} {row['name']:<30} {row['kind']:<12} "
            f"{_money(row['debit_balance_cents']):>14} {_money(row['credit_balance_cents']):>14}"
        )

    click.echo("="*80)
    click.echo(
        f"{'':<5} {'TOTAL':<30} {'':<12} "
        f"{_money(report['total_debits_cents']):>14} {_money(report['total_credits_cents']):>14}"
    )
    status = "PASS Balanced" if report["is_balanced"] else "FAIL NOT balanced"
    click.echo(f"{status}\n")


@ledger_group.command('verify-chain')
@_scope_options
@click.option('--customer-key', help='Only check this customer')
@with_appcontext
def verify_chain_cli(scope_type, scope_id, customer_key):
    """Verify running balance chains and compare balance rows to the chain end."""
    scope = Scope(scope_type.upper(), scope_id)

    if customer_key:
        keys = [customer_key]
    else:
        rows = (
            db.session.query(Sale.customer_key)
            .filter(Sale.customer_key.isnot(None), Sale.scope_type == scope.kind, Sale.scope_id == scope.id)
            .distinct()
            .all()
        )
        keys = sorted(key for (key,) in rows)

    failures = 0
    for key in keys:
        breaks = balance_service.verify_balance_chain(db.session, key, scope)
        statement = balance_service.customer_statement(db.session, key, scope)
        chain_end = statement[-1]["running_balance_cents"] if statement else 0
        row = db.session.query(CustomerBalance).filter_by(customer_key=key, **scope.filter_kwargs()).first()
        stored = row.balance_cents if row else 0

        if breaks or stored != chain_end:
            failures += 1
            click.echo(f"FAIL {key}: {len(breaks)} break(s), balance row {_money(stored)} vs chain {_money(chain_end)}")
            for item in breaks:
                click.echo(
                    f"   {item['type']} {item['reference']}: expected {_money(item['expected_cents'])}, "
                    f"stored {_money(item['stored_cents'])}"
                )
        else:
            click.echo(f"PASS {key}: {len(statement)} line(s), balance {_money(stored)}")

    if failures:
        raise click.ClickException(f"{failures} customer chain(s) failed verification")


@click.group('invoices')
def invoices_group():
    """Invoice numbering commands."""


@invoices_group.command('stats')
@_scope_options
@with_appcontext
def invoice_stats_cli(scope_type, scope_id):
    """Show invoice statistics for a scope."""
    try:
        stats = invoice_service.invoice_stats(db.session, Scope(scope_type.upper(), scope_id))
    except ScopeNotFound as e:
        raise click.ClickException(str(e))

    click.echo(f"Code:           {stats['code']}")
    click.echo(f"Total invoices: {stats['total_invoices']}")
    click.echo(f"First invoice:  {stats['first_invoice'] or '-'} ({to_utc_z(stats['first_date']) or '-'})")
    click.echo(f"Last invoice:   {stats['last_invoice'] or '-'} ({to_utc_z(stats['last_date']) or '-'})")
    click.echo(f"Next invoice:   {stats['next_invoice_number']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(invoices_group)
