# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/orderflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to orderflow (PowerShell: $env:FLASK_APP="orderflow").
# - Use: python -m flask <group> <command> [options]
#
# Accounts (tenants):
# - python -m flask accounts create --name "Acme Corp"
#   Create a new account.
# - python -m flask accounts list
#   List all accounts with order counts.
#
# Orders:
# - python -m flask orders show ORD-20260118-A1B2C3D4
#   Show an order with its lines, invoices and fulfillment.
#
# Events (audit trail):
# - python -m flask events list --account-id 1 [--type order.status.changed] [--limit 20]
#     [--since 2026-01-01T00:00Z] [--until 2026-02-01T00:00Z]
#   List the most recent account events, optionally within a UTC window.

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Account, Order
from .money import format_money
from .time_utils import parse_iso_datetime
from .validation import ValidationError


@click.group('accounts')
def accounts_group():
    """Account (tenant) management commands."""


@accounts_group.command('list')
@with_appcontext
def list_accounts():
    """List all accounts."""
    accounts = db.session.query(Account).order_by(Account.id).all()

    if not accounts:
        click.echo("No accounts found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Name':<40} {'Orders'}")
    click.echo("="*60)
    for account in accounts:
        click.echo(f"{account.id:<5} {account.name:<40} {len(account.orders)}")
    click.echo("="*60)
    click.echo(f"Total: {len(accounts)} accounts\n")


@accounts_group.command('create')
@click.option('--name', required=True, help='Account name')
@with_appcontext
def create_account_cli(name):
    """Create a new account (tenant)."""
    try:
        account = Account(name=name)
    except ValidationError as e:
        click.echo(f"FAIL {e}")
        return

    db.session.add(account)
    db.session.commit()
    click.echo(f"PASS Created account: {account.name} (ID: {account.id})")


@click.group('orders')
def orders_group():
    """Order inspection commands."""


@orders_group.command('show')
@click.argument('reference')
@with_appcontext
def show_order(reference):
    """Show an order by reference."""
    order = db.session.query(Order).filter_by(reference=reference).first()
    if not order:
        click.echo(f"FAIL Order {reference} not found")
        return

    click.echo(f"\nOrder {order.reference} ({order.status})")
    click.echo(f"Account:  {order.account.name} (ID: {order.account_id})")
    click.echo(f"Customer: {order.customer.display_name}")
    click.echo(f"Total:    {format_money(order.total_amount)}")

    click.echo("\nLines:")
    if not order.lines:
        click.echo("  (none)")
    for line in order.lines:
        click.echo(
            f"  {line.name:<30} {line.quantity:>4} x {format_money(line.unit_price):>10}"
            f" = {format_money(line.total_price):>10}"
        )

    click.echo("\nInvoices:")
    if not order.invoices:
        click.echo("  (none)")
    for invoice in order.invoices:
        due = invoice.due_at.isoformat() if invoice.due_at else "-"
        click.echo(
            f"  {invoice.number:<26} {invoice.kind:<7} {invoice.status:<6}"
            f" {format_money(invoice.total_amount):>10}  due {due}"
        )

    if order.fulfillment is not None:
        f = order.fulfillment
        click.echo(
            f"\nFulfillment: {f.status} via {f.fulfillment_service.name}"
            f" (tracking: {f.tracking_number or '-'})"
        )
    click.echo("")


@click.group('events')
def events_group():
    """Audit event inspection commands."""


@events_group.command('list')
@click.option('--account-id', type=int, required=True, help='Account ID')
@click.option('--type', 'event_type', help='Filter by event type (e.g. order.status.changed)')
@click.option('--limit', type=int, default=20, show_default=True, help='Maximum events to show')
@click.option('--since', help='Only events at or after this ISO-8601 time (UTC if no offset)')
@click.option('--until', help='Only events before this ISO-8601 time (UTC if no offset)')
@with_appcontext
def list_events(account_id, event_type, limit, since, until):
    """List recent events for an account, newest first."""
    try:
        since_dt = parse_iso_datetime(since)
        until_dt = parse_iso_datetime(until)
    except ValueError as exc:
        click.echo(f"FAIL Invalid time window: {exc}")
        return

    account = db.session.get(Account, account_id)
    if not account:
        click.echo(f"FAIL Account ID {account_id} not found")
        return

    events = current_app.extensions["orderflow"]["event_store"].query(
        account_id, event_type=event_type, since=since_dt, until=until_dt, limit=limit
    )
    if not events:
        click.echo("No events found.")
        return

    for ev in events:
        payload = json.dumps(ev.payload or {}, sort_keys=True)
        click.echo(f"{ev.created_at:%Y-%m-%d %H:%M:%S}  {ev.resource.name:<20} {ev.event_type:<32} {payload}")
    click.echo(f"\nShown: {len(events)} events")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(accounts_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(events_group)
