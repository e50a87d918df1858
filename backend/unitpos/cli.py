# Overview: Flask CLI command groups for reservation maintenance and database reset.

# backend/unitpos/cli.py
# Usage, from backend/ with FLASK_APP=wsgi.py exported:
#   flask <group> <command> [options]
#
# Reservation maintenance (safe to schedule from cron):
# - flask reservations sweep [--stale-hours 6]
#   Release expired holds, then holds untouched for longer than --stale-hours.
# - flask reservations cleanup --active cart-1 --active cart-2
#   Full cleanup: expired + stale + every key not listed with --active.
# - flask reservations probe
#   Print whether stock_units carries reservation_expires_at.
#
# System:
# - flask system reset-db [--yes]
#   Local databases only. Rebuilds the schema from the models and
#   re-probes reservation expiry support.

import click
from flask.cli import with_appcontext
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .models import StockUnit
from .services import reservation_service
from .services.capabilities import get_expiry_support


@click.group('reservations')
def reservations_group():
    """Reservation hold maintenance commands."""


@reservations_group.command('sweep')
@click.option('--stale-hours', type=float, default=None, help='Age after which a hold is stale (default: STALE_RESERVATION_HOURS)')
@with_appcontext
def sweep(stale_hours):
    """Release expired and stale reservation holds."""
    expired = reservation_service.sweep_expired()
    stale = reservation_service.sweep_stale(stale_hours)
    click.echo(f"PASS Released {expired} expired and {stale} stale units")


@reservations_group.command('cleanup')
@click.option('--active', 'active_keys', multiple=True, help='Reservation key still in use (repeatable)')
@click.option('--stale-hours', type=float, default=None, help='Age after which a hold is stale')
@with_appcontext
def cleanup(active_keys, stale_hours):
    """
    Run every cleanup step and report per-step results.

    Without --active the abandoned-cart step is skipped.
    """
    report = reservation_service.perform_cleanup(
        list(active_keys) if active_keys else None,
        stale_hours=stale_hours,
    )
    click.echo(f"Expired:   {report['expired']}")
    click.echo(f"Stale:     {report['stale']}")
    click.echo(f"Abandoned: {report['abandoned']}")
    for error in report["errors"]:
        click.echo(f"FAIL {error}")
    if report["errors"]:
        raise SystemExit(1)


@reservations_group.command('probe')
@with_appcontext
def probe():
    """Report reservation expiry support for the configured database."""
    supported = get_expiry_support().is_supported()
    if supported:
        click.echo("PASS reservation_expires_at present: holds expire automatically")
    else:
        click.echo("WARN reservation_expires_at missing: holds only clear via release or stale sweep")


@click.group('system')
def system_group():
    """Schema maintenance for local databases."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Do not ask before wiping stock units, pairs and bills')
@with_appcontext
def reset_db(yes):
    """Rebuild every table from the models. All units, pairs and bills are lost."""
    if not yes:
        try:
            units = db.session.query(func.count(StockUnit.id)).scalar()
        except SQLAlchemyError:
            db.session.rollback()
            units = 0
        click.confirm(f"WARN {units} stock units and all bills will be deleted. Continue?", abort=True)

    db.session.remove()
    db.drop_all()
    db.create_all()

    support = get_expiry_support()
    support.reset()
    mode = "expiring holds" if support.is_supported() else "untimed holds"
    click.echo(f"PASS Schema rebuilt ({mode})")


def register_commands(app):
    """Attach the reservations and system groups to app.cli."""
    app.cli.add_command(reservations_group)
    app.cli.add_command(system_group)
