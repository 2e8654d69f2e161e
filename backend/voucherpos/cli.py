# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/voucherpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--demo]
#   Idempotent bootstrap: creates the default commission group (and, with
#   --demo, a demo retailer, terminal, voucher type, rate and stock).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory inspection:
# - python -m flask vouchers availability [--voucher-type-id 1]
#   Available units per voucher type and denomination.
#
# Retailer inspection:
# - python -m flask retailers list
#   List retailers with balance, credit and commission figures.

import click
from decimal import Decimal
from flask.cli import with_appcontext

from .extensions import db
from .models import (
    CommissionGroup,
    CommissionGroupRate,
    Retailer,
    Terminal,
    VoucherInventory,
    VoucherType,
)
from .services import inventory_service, retailer_service
from .services.ledger_service import format_cents


DEFAULT_GROUP_NAME = "Standard"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--demo', is_flag=True, help='Also create a demo retailer, terminal and voucher stock')
@with_appcontext
def init_system(demo):
    """Initialize the settlement backend (safe to run repeatedly)."""
    click.echo("START Initializing voucher settlement system...")

    group = db.session.query(CommissionGroup).filter_by(name=DEFAULT_GROUP_NAME).first()
    if not group:
        group = CommissionGroup(name=DEFAULT_GROUP_NAME, description="Default retailer commission group")
        db.session.add(group)
        db.session.commit()
        click.echo(f"PASS Created commission group: {group.name} (ID: {group.id})")
    else:
        click.echo(f"PASS Using existing commission group: {group.name} (ID: {group.id})")

    if not demo:
        click.echo("DONE System initialized.")
        return

    voucher_type = db.session.query(VoucherType).filter_by(name="MTN Airtime").first()
    if not voucher_type:
        voucher_type = VoucherType(name="MTN Airtime", supplier_commission_pct=Decimal("5.000"))
        db.session.add(voucher_type)
        db.session.flush()
        db.session.add(CommissionGroupRate(
            commission_group_id=group.id,
            voucher_type_id=voucher_type.id,
            retailer_pct=Decimal("0.50"),
            agent_pct=Decimal("0.10"),
        ))

    retailer = db.session.query(Retailer).filter_by(name="Demo Retailer").first()
    if not retailer:
        retailer = Retailer(
            name="Demo Retailer",
            commission_group_id=group.id,
            balance_cents=100_000,
            credit_limit_cents=50_000,
        )
        db.session.add(retailer)
        db.session.flush()
        db.session.add(Terminal(retailer_id=retailer.id, name="Demo Terminal 1"))

    if not db.session.query(VoucherInventory).filter_by(voucher_type_id=voucher_type.id).count():
        for idx in range(10):
            db.session.add(VoucherInventory(
                voucher_type_id=voucher_type.id,
                denomination_cents=1000,
                pin=f"DEMO{idx:08d}",
                serial_number=f"SN-DEMO-{idx:04d}",
            ))

    db.session.commit()
    click.echo(f"PASS Demo data ready: retailer {retailer.id}, voucher type {voucher_type.id}")
    click.echo("DONE System initialized.")


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


@click.group('vouchers')
def vouchers_group():
    """Voucher inventory commands."""


@vouchers_group.command('availability')
@click.option('--voucher-type-id', type=int, help='Filter by voucher type ID')
@with_appcontext
def availability(voucher_type_id):
    """Available units per voucher type and denomination."""
    rows = inventory_service.availability_by_denomination(voucher_type_id)

    if not rows:
        click.echo("No available vouchers.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'Type ID':<8} {'Voucher type':<30} {'Value':>12} {'Available':>10}")
    click.echo("="*70)
    for row in rows:
        click.echo(
            f"{row['voucher_type_id']:<8} {row['voucher_type_name']:<30} "
            f"{format_cents(row['denomination_cents']):>12} {row['available']:>10}"
        )
    click.echo("="*70 + "\n")


@click.group('retailers')
def retailers_group():
    """Retailer inspection commands."""


@retailers_group.command('list')
@with_appcontext
def list_retailers():
    """List all retailers with balances."""
    retailers = retailer_service.list_retailers()

    if not retailers:
        click.echo("No retailers found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<30} {'Balance':>12} {'Credit used':>12} {'Limit':>12} {'Commission':>12}")
    click.echo("="*90)
    for r in retailers:
        click.echo(
            f"{r.id:<5} {r.name:<30} {format_cents(r.balance_cents):>12} "
            f"{format_cents(r.credit_used_cents):>12} {format_cents(r.credit_limit_cents):>12} "
            f"{format_cents(r.commission_balance_cents):>12}"
        )
    click.echo("="*90 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(vouchers_group)
    app.cli.add_command(retailers_group)
