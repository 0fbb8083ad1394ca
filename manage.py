"""Management script for the billing database and scheduled jobs"""

import asyncio
import json

import click
from dotenv import load_dotenv
from flask.cli import FlaskGroup

load_dotenv()

from securyflex_billing import create_app, get_engine  # noqa: E402
from securyflex_billing.extensions import db  # noqa: E402


def _create_app():
    return create_app()


cli = FlaskGroup(create_app=_create_app)


def _echo_result(payload):
    click.echo(json.dumps(payload, indent=2, default=str))


@cli.command("init-db")
def init_db():
    """Create all billing tables"""
    db.create_all()
    click.echo("✅ Database initialized successfully!")


@cli.command("process-due")
def process_due():
    """Bill every subscription whose payment date has arrived"""
    result = asyncio.run(get_engine().batch.process_due())
    _echo_result(result.to_dict())


@cli.command("dispatch-retries")
def dispatch_retries():
    """Run payment retries that have come due"""
    result = asyncio.run(get_engine().dispatch_due_retries())
    _echo_result(result.to_dict())


@cli.command("dunning-sweep")
def dunning_sweep():
    """Send dunning notices and cancel subscriptions past the grace period"""
    result = asyncio.run(get_engine().process_dunning_sweep())
    _echo_result(result.to_dict())


@cli.command("expire-trials")
def expire_trials():
    """Expire trials that ended without a payment method"""
    expired = get_engine().lifecycle.expire_trials()
    click.echo(f"✅ Expired {len(expired)} trial(s)")


@cli.command("trial-reminders")
def trial_reminders():
    """Remind users whose trial is about to end"""
    reminded = get_engine().lifecycle.send_trial_reminders()
    click.echo(f"✅ Sent {len(reminded)} trial reminder(s)")


@cli.command("compliance-report")
@click.option("--period", required=True, help="Calendar month as YYYY-MM")
def compliance_report(period):
    """Strong customer authentication statistics for one month"""
    try:
        report = get_engine().compliance.generate(period)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--period")
    _echo_result(report.to_dict())


if __name__ == "__main__":
    cli()
