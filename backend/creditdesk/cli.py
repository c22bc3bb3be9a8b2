# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/creditdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Idempotent demo data: customers, products, a completed order, return reasons.
#
# Credit inspection/repair:
# - python -m flask credit customers [--all]
#   List customers with limit, balance and utilization.
# - python -m flask credit check-balances [--fix]
#   Compare stored balances with a replay of confirmed/invoiced transactions.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, Order, OrderLine, Product, ReturnReason
from .services import ledger_service


DEMO_CUSTOMERS = [
    # code, type, company, first, last, limit_cents
    ("C001", "RETAIL", None, "Jonas", "Jonaitis", 100_000),
    ("B001", "BUSINESS", "UAB Elektra", "Rasa", "Petraitienė", 500_000),
    ("K001", "CONTRACTOR", None, "Tomas", "Kazlauskas", 250_000),
]

DEMO_PRODUCTS = [
    # code, name, price_cents
    ("CABLE-3X2.5", "Installation cable 3x2.5 mm², 100 m", 8_950),
    ("SOCKET-2P", "Double socket, white", 650),
    ("SWITCH-1G", "Single gang switch", 420),
    ("BREAKER-16A", "Circuit breaker B16", 1_275),
    ("LED-10W", "LED bulb E27 10W", 299),
]

DEMO_REASONS = [
    # code, name, allows_restock, requires_inspection
    ("DEFECTIVE", "Product defective", True, True),
    ("WRONG_ITEM", "Wrong item delivered", True, False),
    ("NOT_NEEDED", "No longer needed", True, False),
    ("DAMAGED_IN_TRANSIT", "Damaged in transit", False, True),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' to add demo data.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create demo customers, products, return reasons and one completed order (idempotent)."""
    created = 0

    for code, ctype, company, first, last, limit_cents in DEMO_CUSTOMERS:
        if db.session.query(Customer).filter_by(code=code).first():
            continue
        db.session.add(Customer(
            code=code,
            customer_type=ctype,
            company_name=company,
            first_name=first,
            last_name=last,
            credit_limit_cents=limit_cents,
            current_balance_cents=0,
        ))
        created += 1

    for code, name, price in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(code=code).first():
            continue
        db.session.add(Product(code=code, name=name, base_price_cents=price))
        created += 1

    for code, name, allows_restock, requires_inspection in DEMO_REASONS:
        if db.session.query(ReturnReason).filter_by(code=code).first():
            continue
        db.session.add(ReturnReason(
            code=code,
            name=name,
            allows_restock=allows_restock,
            requires_inspection=requires_inspection,
        ))
        created += 1

    db.session.flush()

    if not db.session.query(Order).filter_by(order_number="ORD-000001").first():
        customer = db.session.query(Customer).filter_by(code="B001").one()
        order = Order(order_number="ORD-000001", customer_id=customer.id, status="COMPLETED")
        for code, qty in (("CABLE-3X2.5", 5), ("SOCKET-2P", 40), ("BREAKER-16A", 12)):
            product = db.session.query(Product).filter_by(code=code).one()
            order.lines.append(OrderLine(
                product_id=product.id,
                quantity=qty,
                unit_price_cents=product.base_price_cents,
            ))
        db.session.add(order)
        created += 1

    db.session.commit()
    click.echo(f"PASS Demo data ready ({created} records created).")


@click.group('credit')
def credit_group():
    """Customer credit inspection and repair commands."""


@credit_group.command('customers')
@click.option('--all', 'include_inactive', is_flag=True, help='Include deactivated customers')
@with_appcontext
def list_customers(include_inactive):
    """List customers with their credit position."""
    query = db.session.query(Customer)
    if not include_inactive:
        query = query.filter(Customer.is_active.is_(True))
    customers = query.order_by(Customer.code).all()

    if not customers:
        click.echo("No customers found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'Code':<10} {'Name':<30} {'Limit':>12} {'Balance':>12} {'Used %':>8} {'Level':<12}")
    click.echo("="*100)

    for customer in customers:
        summary = ledger_service.credit_summary(customer)
        used = summary["utilization_percent"]
        used_str = f"{used:.1f}" if used is not None else "-"
        click.echo(
            f"{customer.code:<10} {customer.display_name[:30]:<30} "
            f"{customer.credit_limit_cents / 100:>12.2f} {customer.current_balance_cents / 100:>12.2f} "
            f"{used_str:>8} {summary['utilization_level']:<12}"
        )

    click.echo("="*100 + "\n")


@credit_group.command('check-balances')
@click.option('--fix', is_flag=True, help='Reset drifting balances to the replayed value')
@with_appcontext
def check_balances(fix):
    """Replay confirmed/invoiced transactions and report balance drift."""
    drift = ledger_service.find_balance_drift()
    if not drift:
        click.echo("PASS All customer balances match their transactions.")
        return

    for row in drift:
        click.echo(
            f"DRIFT {row['customer_code']}: stored {row['stored_balance_cents']} "
            f"replayed {row['replayed_balance_cents']} (diff {row['drift_cents']})"
        )

    if fix:
        ledger_service.repair_balance_drift(actor="cli")
        click.echo(f"FIXED {len(drift)} customer balance(s).")
    else:
        raise click.ClickException(f"{len(drift)} customer balance(s) drifted. Re-run with --fix to repair.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(credit_group)
