"""Management commands for the database and organization maintenance"""

import click
from flask.cli import FlaskGroup
from flask_migrate import upgrade

from fleetorg import create_app
from fleetorg.domain.plans import PlanTier
from fleetorg.extensions import create_tables, db
from fleetorg.logging_config import configure_logging_for_non_flask
from fleetorg.models import Organization
from fleetorg.services import plan_lifecycle

configure_logging_for_non_flask()

cli = FlaskGroup(create_app=create_app)


@cli.command("init-db")
def init_db():
    """Create all tables"""
    from flask import current_app

    create_tables(current_app)
    click.echo("Database initialized successfully")


@cli.command("migrate-db")
def migrate_db():
    """Apply any pending database migrations"""
    click.echo("Applying database migrations...")
    upgrade()
    click.echo("Database migrations applied successfully")


@cli.command("sync-plan-limits")
def sync_plan_limits():
    """Rewrite every organization's limits from the plan catalog"""
    fixed = 0
    for org in Organization.query.all():
        before = (org.max_vehicles, org.max_members)
        org.apply_plan(PlanTier.parse(org.subscription_plan))
        if (org.max_vehicles, org.max_members) != before:
            fixed += 1
    db.session.commit()
    click.echo(f"Synced plan limits ({fixed} organization(s) corrected)")


@cli.command("apply-pending-downgrades")
def apply_pending_downgrades():
    """Switch organizations whose scheduled downgrade is due to the lower tier"""
    results = plan_lifecycle.apply_due_downgrades()
    for result in results:
        click.echo(f"{result.previous_tier.value} -> {result.new_tier.value}")
    click.echo(f"Applied {len(results)} pending downgrade(s)")


if __name__ == "__main__":
    cli()
