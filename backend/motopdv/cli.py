# Overview: Flask CLI command groups for bootstrap and maintenance.

# backend/motopdv/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: python -m flask --app motopdv <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask --app motopdv system init
#   Create all tables (idempotent). Workshop setup is then done through POST /api/settings/setup.
# - python -m flask --app motopdv system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask --app motopdv system seed-demo [--force]
#   Insert demo products, services and employees (requires DEMO_SEED_ENABLED or --force).
#
# Settings:
# - python -m flask --app motopdv settings set-pin
#   Reset the manager PIN (prompts twice) and clear the PIN lockout.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Employee, Product, Service
from .services import pin_service, settings_service
from .services.pin_service import PinValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables. Safe to run more than once."""
    click.echo("START Initializing MotoPDV database...")
    db.create_all()
    click.echo("PASS Tables ready")

    if settings_service.is_configured():
        settings = settings_service.get_settings()
        click.echo(f"PASS Workshop configured: {settings.workshop_name}")
    else:
        click.echo("WARN Workshop not configured yet. Complete setup via POST /api/settings/setup")


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


DEMO_PRODUCTS = [
    # name, sku, quantity, min_stock, cost_cents, sell_cents
    ("Óleo Motul 5100 10W40 1L", "OLEO-5100", 24, 6, 3290, 5490),
    ("Pastilha de Freio Dianteira CG 160", "PAST-CG160", 10, 4, 1850, 3990),
    ("Kit Relação Titan 150", "REL-TITAN150", 3, 2, 9800, 16990),
    ("Vela de Ignição NGK CR7HSA", "VELA-CR7HSA", 30, 10, 1190, 2490),
    ("Câmara de Ar Aro 18", "CAM-ARO18", 2, 5, 2100, 3890),
]

DEMO_SERVICES = [
    # name, base_price_cents, commission_type, commission_value
    ("Troca de Óleo", 3000, "FIXED", 1000),
    ("Revisão Completa", 18000, "PERCENT", 10),
    ("Troca de Relação", 6000, "PERCENT", 15),
]

DEMO_EMPLOYEES = [
    # name, default_commission_percent
    ("Carlos Mecânico", 10),
    ("João Auxiliar", 5),
]


@system_group.command('seed-demo')
@click.option('--force', is_flag=True, help='Seed even when DEMO_SEED_ENABLED is off')
@with_appcontext
def seed_demo(force):
    """Insert demo catalog rows; existing SKUs and names are skipped."""
    if not (force or current_app.config.get("DEMO_SEED_ENABLED")):
        raise click.ClickException("Demo seeding disabled. Set DEMO_SEED_ENABLED or pass --force.")

    created = 0
    for name, sku, quantity, min_stock, cost, sell in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(sku=sku).first():
            continue
        db.session.add(Product(
            name=name, sku=sku, quantity=quantity, min_stock=min_stock,
            price_cost_cents=cost, price_sell_cents=sell,
        ))
        created += 1

    for name, base_price, commission_type, commission_value in DEMO_SERVICES:
        if db.session.query(Service).filter_by(name=name).first():
            continue
        db.session.add(Service(
            name=name, base_price_cents=base_price,
            commission_type=commission_type, commission_value=commission_value,
        ))
        created += 1

    for name, percent in DEMO_EMPLOYEES:
        if db.session.query(Employee).filter_by(name=name).first():
            continue
        db.session.add(Employee(name=name, default_commission_percent=percent))
        created += 1

    db.session.commit()
    click.echo(f"PASS Seeded {created} demo row(s)")


@click.group('settings')
def settings_group():
    """Workshop settings commands."""


@settings_group.command('set-pin')
@click.option('--pin', prompt=True, hide_input=True, confirmation_prompt=True, help='New 4-digit manager PIN')
@with_appcontext
def set_pin(pin):
    """Reset the manager PIN without the current one (local recovery)."""
    settings = settings_service.get_settings()
    if settings is None:
        raise click.ClickException("Workshop not configured. Complete setup first.")

    try:
        pin = pin_service.validate_pin_format(pin)
    except PinValidationError as e:
        raise click.ClickException(str(e))

    settings.pin_hash = pin_service.hash_pin(pin)
    # A success entry resets the failure count used by the lockout
    pin_service.log_security_event(
        "PIN_VERIFIED",
        success=True,
        action="CLI_SET_PIN",
        reason="Manager PIN reset from the command line",
    )
    db.session.commit()
    click.echo("PASS Manager PIN updated; PIN lockout cleared")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(settings_group)
