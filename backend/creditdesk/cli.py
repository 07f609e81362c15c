# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/creditdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Businesses:
# - python -m flask businesses list
#   List all businesses with member counts.
# - python -m flask businesses create --name "Duka Kuu" --owner user-123 [--threshold 5000000]
#   Create a business; prints the business and system authorization codes.
#
# Approval roles:
# - python -m flask roles seed --business-id 1
#   Create the default approval roles (idempotent).
# - python -m flask roles list --business-id 1
#   List approval roles with thresholds and bound users.
# - python -m flask roles auto-assign --business-id 1
#   Bind members whose membership role matches a default approval role.
#
# Ledger:
# - python -m flask ledger verify [--business-id 1]
#   Recompute balances from ledger entries and report mismatches.

import click
from flask.cli import with_appcontext

from .errors import CreditDeskError
from .extensions import db
from .models import Business, BusinessMember
from .services import approval_service, ledger_service, membership_service


@click.group('system')
def system_group():
    """System maintenance commands."""


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


# =============================================================================
# BUSINESSES
# =============================================================================

@click.group('businesses')
def businesses_group():
    """Business (tenant) management commands."""


@businesses_group.command('list')
@with_appcontext
def list_businesses():
    """List all businesses."""
    businesses = db.session.query(Business).order_by(Business.id).all()

    if not businesses:
        click.echo("No businesses found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<8} {'Active':<8} {'Members'}")
    click.echo("="*80)

    for business in businesses:
        member_count = db.session.query(BusinessMember).filter_by(business_id=business.id).count()
        active_str = "Yes" if business.is_active else "No"

        click.echo(f"{business.id:<5} {business.name:<30} {business.business_code:<8} {active_str:<8} {member_count}")

    click.echo("="*80 + "\n")


@businesses_group.command('create')
@click.option('--name', required=True, help='Business name')
@click.option('--owner', 'owner_user_id', required=True, help='User id of the owner')
@click.option('--currency', default='TZS', show_default=True)
@click.option('--threshold', 'threshold_cents', type=int, default=None,
              help='Credit approval threshold in cents (omit to disable the gate)')
@with_appcontext
def create_business_cli(name, owner_user_id, currency, threshold_cents):
    """Create a business and print its authorization codes."""
    try:
        business = membership_service.create_business(
            name,
            owner_user_id,
            currency=currency,
            credit_approval_threshold_cents=threshold_cents,
        )
    except CreditDeskError as exc:
        click.echo(f"FAIL {exc}")
        return

    click.echo(f"PASS Created business: {business.name} (ID: {business.id})")
    click.echo(f"  Business code: {business.business_code}")
    click.echo(f"  System code:   {business.system_code}")


# =============================================================================
# APPROVAL ROLES
# =============================================================================

@click.group('roles')
def roles_group():
    """Approval role commands."""


@roles_group.command('seed')
@click.option('--business-id', type=int, required=True)
@with_appcontext
def seed_roles(business_id):
    """Create the default approval roles for a business."""
    try:
        created = approval_service.seed_default_approval_roles(business_id)
    except CreditDeskError as exc:
        click.echo(f"FAIL {exc}")
        return

    if not created:
        click.echo("SKIP Business already has approval roles")
        return
    for role in created:
        click.echo(f"PASS Created role: {role.name}")


@roles_group.command('list')
@click.option('--business-id', type=int, required=True)
@with_appcontext
def list_roles(business_id):
    """List approval roles with thresholds (in cents) and bound users."""
    roles = approval_service.list_roles(business_id)

    if not roles:
        click.echo("No approval roles found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Name':<20} {'Active':<8} {'Flags':<8} {'Max':>14} {'Secondary':>14}  {'Users'}")
    click.echo("="*100)

    for role in roles:
        flags = "".join([
            "O" if role.can_approve_orders else "-",
            "C" if role.can_approve_credit else "-",
            "T" if role.can_approve_transfers else "-",
        ])
        secondary = role.secondary_approval_amount_cents if role.requires_secondary_approval else "-"
        users = ", ".join(b.user_id for b in approval_service.list_bindings(business_id, role_id=role.id)) or "none"
        active_str = "Yes" if role.is_active else "No"

        click.echo(
            f"{role.id:<5} {role.name:<20} {active_str:<8} {flags:<8} "
            f"{role.max_approval_amount_cents:>14} {secondary:>14}  {users}"
        )

    click.echo("="*100 + "\n")


@roles_group.command('auto-assign')
@click.option('--business-id', type=int, required=True)
@with_appcontext
def auto_assign(business_id):
    """Bind unbound members to the default role matching their membership role."""
    created = approval_service.auto_assign_default_users(business_id)
    for binding in created:
        click.echo(f"PASS Bound {binding.user_id} -> {binding.role.name}")
    click.echo(f"{len(created)} binding(s) created.")


# =============================================================================
# LEDGER
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Customer credit ledger commands."""


@ledger_group.command('verify')
@click.option('--business-id', type=int, default=None, help='Limit to one business')
@with_appcontext
def verify_ledger(business_id):
    """
    Recompute every customer's balance from its ledger entries.

    Exits with status 1 when any stored balance disagrees.
    """
    mismatches = ledger_service.find_inconsistent_balances(business_id)

    if not mismatches:
        click.echo("PASS All customer balances match their ledgers")
        return

    for check in mismatches:
        click.echo(
            f"FAIL customer {check.customer_id}: stored {check.stored_cents}, "
            f"ledger {check.computed_cents}"
        )
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(businesses_group)
    app.cli.add_command(roles_group)
    app.cli.add_command(ledger_group)
