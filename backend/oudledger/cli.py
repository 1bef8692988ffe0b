# Overview: Flask CLI command groups for bootstrap, gift card operations, and conversion data.

# backend/oudledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent). Use `flask db upgrade` where migrations are managed.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Gift cards:
# - python -m flask giftcards issue --amount-cents 10000 --user-id 1 [--currency AED --customer-id 7 --expires-at 2028-01-01T00:00:00Z]
#   Issue a card and print its code.
# - python -m flask giftcards expire
#   Expiry sweep. Schedule it (cron, e.g. hourly); safe to run repeatedly and alongside redemptions.
# - python -m flask giftcards balance PO-1A2B-3C4D-5E6F
#   Print the redeemable balance of a card.
# - python -m flask giftcards report --start 2026-01-01 --end 2026-12-31
#   Print the gift card activity report as JSON.
#
# Conversion reference data:
# - python -m flask materials seed
#   Insert the reference materials that are missing (idempotent).
# - python -m flask materials list [--all]
#   List materials with density and temperature coefficient.
#
# Ad-hoc conversion:
# - python -m flask convert 3 tola ml --material-id 1 --temperature 30
#   Convert a value and print the formula.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import conversion_service, gift_card_service, reporting_service
from .services.conversion_engine import ConversionError
from .services.gift_card_service import GiftCardError
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema is up to date.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask materials seed' to load reference materials.")


@click.group('giftcards')
def giftcards_group():
    """Gift card issuance, expiry and inspection."""


@giftcards_group.command('issue')
@click.option('--amount-cents', type=int, required=True, help='Face value in minor units')
@click.option('--user-id', type=int, required=True, help='Staff user issuing the card')
@click.option('--currency', default=None, help='ISO currency (default from config)')
@click.option('--customer-id', type=int, default=None, help='Owning customer')
@click.option('--expires-at', default=None, help='ISO-8601 expiry (default: validity years from now)')
@click.option('--template', default=None, help='Greeting template key')
@with_appcontext
def issue_gift_card_cli(amount_cents, user_id, currency, customer_id, expires_at, template):
    """Issue a gift card."""
    try:
        expires = parse_iso_datetime(expires_at) if expires_at else None
    except ValueError:
        raise click.BadParameter("must be an ISO-8601 datetime", param_hint="--expires-at")

    try:
        card = gift_card_service.issue_gift_card(
            amount_cents=amount_cents,
            purchased_by_id=user_id,
            currency=currency,
            customer_id=customer_id,
            expires_at=expires,
            template=template,
        )
    except GiftCardError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Issued gift card {card.code}")
    click.echo(f"     Amount: {card.amount_cents / 100:.2f} {card.currency}")
    click.echo(f"     Expires: {card.expires_at.isoformat()}")


@giftcards_group.command('expire')
@with_appcontext
def expire_gift_cards_cli():
    """
    Expire every ACTIVE card past its expiry date.

    Idempotent: a second run right after the first expires nothing.
    """
    expired = gift_card_service.expire_old_gift_cards()
    click.echo(f"Expired {expired} gift card(s).")


@giftcards_group.command('balance')
@click.argument('code')
@with_appcontext
def gift_card_balance_cli(code):
    """Print the redeemable balance of a card."""
    try:
        balance = gift_card_service.check_balance(code)
    except GiftCardError as e:
        raise click.ClickException(str(e))

    click.echo(f"{balance['code']}: {balance['balance_cents'] / 100:.2f} {balance['currency']} ({balance['status']})")


@giftcards_group.command('report')
@click.option('--start', required=True, help='ISO-8601 start of period')
@click.option('--end', required=True, help='ISO-8601 end of period')
@with_appcontext
def gift_card_report_cli(start, end):
    """Print the gift card activity report as JSON."""
    try:
        report = reporting_service.gift_card_report(start=start, end=end)
    except reporting_service.ReportError as e:
        raise click.ClickException(str(e))

    click.echo(json.dumps(report, indent=2))


@click.group('materials')
def materials_group():
    """Conversion reference materials."""


@materials_group.command('seed')
@with_appcontext
def seed_materials_cli():
    """Insert the reference materials that are missing."""
    created = conversion_service.seed_default_materials()
    click.echo(f"PASS Seeded {created} material(s).")


@materials_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive materials')
@with_appcontext
def list_materials_cli(include_inactive):
    """List materials."""
    materials = conversion_service.list_materials(include_inactive=include_inactive)
    if not materials:
        click.echo("No materials. Run 'python -m flask materials seed'.")
        return

    for m in materials:
        coefficient = m.temperature_coefficient if m.temperature_coefficient is not None else "-"
        click.echo(f"  {m.id:<4} {m.name:<24} {m.category:<12} {m.density:<8} {coefficient}")


@click.command('convert')
@click.argument('value', type=float)
@click.argument('from_unit')
@click.argument('to_unit')
@click.option('--material-id', default=None, help='Material whose density applies')
@click.option('--density', 'custom_density', type=float, default=None, help='Custom density in g/ml')
@click.option('--temperature', type=float, default=None, help='Temperature in °C (enables adjustment)')
@with_appcontext
def convert_cli(value, from_unit, to_unit, material_id, custom_density, temperature):
    """Convert VALUE from FROM_UNIT to TO_UNIT."""
    engine = conversion_service.build_engine(with_history=False)
    try:
        result = engine.convert(
            value,
            from_unit,
            to_unit,
            material_id=material_id,
            custom_density=custom_density,
            temperature=temperature,
            use_temperature_adjustment=temperature is not None,
        )
    except ConversionError as e:
        raise click.ClickException(str(e))

    click.echo(f"{result.converted_value:.4f} {result.to_unit}")
    click.echo(f"  Method:   {result.method} ({result.accuracy})")
    click.echo(f"  Formula:  {result.formula}")
    for warning in result.warnings:
        click.echo(f"  WARN {warning}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(giftcards_group)
    app.cli.add_command(materials_group)
    app.cli.add_command(convert_cli)
