"""Flask CLI commands: scheduled housekeeping and first-time admin setup.

    flask --app wsgi housekeeping run-all
    flask --app wsgi housekeeping overdue-inspections
    flask --app wsgi seed-admin --email admin@example.com
"""
import json
import logging

import click
from flask import Flask

from .constants import Role, SubscriptionPlan, SubscriptionStatus
from .extensions import db
from .models import User
from .security.auth import validate_password
from .services import housekeeping

logger = logging.getLogger(__name__)


def _echo_result(task, result):
    click.echo(f"{task}: {json.dumps(result, default=str)}")


@click.group("housekeeping")
def housekeeping_group():
    """Run scheduled maintenance tasks once."""


def _make_task_command(name, func):
    summary = (func.__doc__ or name).strip().splitlines()[0]

    @housekeeping_group.command(name, help=summary)
    def command():
        _echo_result(name, func())

    return command


for _name, _func in housekeeping.TASKS.items():
    _make_task_command(_name, _func)


@housekeeping_group.command("run-all")
def run_all_command():
    """Run every housekeeping task in sequence."""
    results = housekeeping.run_all()
    for task, result in results.items():
        _echo_result(task, result)


@click.command("seed-admin")
@click.option("--email", required=True, help="Administrator email address")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--first-name", default="Platform")
@click.option("--last-name", default="Admin")
def seed_admin(email, password, first_name, last_name):
    """Create the platform administrator, or reset its password if it exists."""
    ok, message = validate_password(password)
    if not ok:
        raise click.BadParameter(message, param_hint="--password")

    email = email.strip().lower()
    user = User.query.filter_by(email=email).first()
    if user is None:
        user = User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            role=Role.ADMIN,
            subscription_plan=SubscriptionPlan.ENTERPRISE,
            subscription_status=SubscriptionStatus.ACTIVE,
        )
        db.session.add(user)
    user.role = Role.ADMIN
    user.is_active = True
    user.set_password(password)
    db.session.commit()
    logger.info("Administrator %s upserted", user.email)
    click.echo(f"Admin upserted: {user.id} {user.email}")


def register_commands(app: Flask) -> None:
    app.cli.add_command(housekeeping_group)
    app.cli.add_command(seed_admin)
