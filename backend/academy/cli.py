# Overview: Flask CLI command groups for bootstrap and subscription maintenance.

# backend/academy/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system create-admin --name "Head Coach" --email admin@academy.local --password "Password123"
#   Create an admin account (prompts if options are omitted).
# - python -m flask system approve-user --email coach@academy.local
#   Approve a pending coach account so it can log in.
#
# Subscription maintenance (schedule these from cron):
# - python -m flask subscriptions expire
#   Rewrite overdue active subscriptions to expired and notify students.
# - python -m flask subscriptions remind [--days 7]
#   Send "expiring soon" reminders (once per subscription).
#
# Catalog inspection:
# - python -m flask plans list [--all]
#   List plans with price, duration and session allotment.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import ROLE_ADMIN
from .services import auth_service, catalog_service, notification_service, subscription_service
from .services.auth_service import create_user, PasswordValidationError
from .validation import ValidationError, ConflictError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables. Existing tables and data are left untouched."""
    click.echo("BUILD  Creating tables...")
    db.create_all()
    click.echo("PASS Database ready.")


@system_group.command('create-admin')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_admin(name, email, password):
    """
    Create an administrator account.

    Password must be at least 8 characters with a letter and a digit.
    """
    try:
        user = create_user(name=name, email=email, password=password, role=ROLE_ADMIN)
        click.echo(f"PASS Created admin: {user.email} (ID: {user.id})")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL Failed to create admin: {str(e)}")


@system_group.command('approve-user')
@click.option('--email', required=True, help='Email of the pending account')
@with_appcontext
def approve_user(email):
    """Approve a pending account (coaches register unapproved)."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        click.echo(f"FAIL No user with email {email}")
        return
    if user.approved:
        click.echo(f"SKIP {user.email} is already approved")
        return
    auth_service.approve_user(user.id)
    click.echo(f"PASS Approved {user.role}: {user.email} (ID: {user.id})")


@click.group('subscriptions')
def subscriptions_group():
    """Subscription lifecycle maintenance."""


@subscriptions_group.command('expire')
@with_appcontext
def expire_subscriptions():
    """Expire active subscriptions whose end date has passed."""
    expired_ids = subscription_service.expire_overdue_subscriptions()
    click.echo(f"PASS Expired {len(expired_ids)} subscription(s)")
    for subscription_id in expired_ids:
        click.echo(f"     - subscription {subscription_id}")


@subscriptions_group.command('remind')
@click.option('--days', type=int, default=None, help='Window in days (defaults to EXPIRING_SOON_DAYS)')
@with_appcontext
def remind_expiring(days):
    """Notify students whose subscription ends soon."""
    sent = notification_service.notify_expiring_subscriptions(within_days=days)
    click.echo(f"PASS Sent {sent} expiry reminder(s)")


@click.group('plans')
def plans_group():
    """Plan catalog inspection."""


@plans_group.command('list')
@click.option('--all', 'include_archived', is_flag=True, help='Include archived plans')
@with_appcontext
def list_plans(include_archived):
    """List plans with price and entitlement."""
    plans = catalog_service.list_plans(active_only=not include_archived)

    if not plans:
        click.echo("No plans found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<30} {'Price':>12} {'Duration':<12} {'Sessions':<10} {'Active'}")
    click.echo("="*90)

    for plan in plans:
        price = f"{plan.price_cents / 100:,.2f} {plan.currency}"
        duration = f"{plan.duration_value} {plan.duration_unit}"
        sessions = "unlimited" if plan.max_sessions is None else str(plan.max_sessions)
        active_str = "Yes" if plan.is_active else "No"
        click.echo(f"{plan.id:<5} {plan.name:<30} {price:>12} {duration:<12} {sessions:<10} {active_str}")

    click.echo("="*90 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(subscriptions_group)
    app.cli.add_command(plans_group)
