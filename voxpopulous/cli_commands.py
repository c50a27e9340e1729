"""
Flask CLI commands for platform operators.

Commands:
- flask init-db: Create the database schema
- flask create-superadmin: Create a super admin account
- flask seed-catalog: Create or update features, plans and addons
- flask set-billing-status: Force the billing status of a tenant
"""

import click
import re
from voxpopulous.database import Base, get_engine, get_session
from voxpopulous.exceptions import VoxError
from voxpopulous.models import BillingStatus
from voxpopulous.services import account_service
from voxpopulous.services.catalog_seed import seed_catalog
from voxpopulous.services.hierarchy_service import get_tenant_by_slug
from voxpopulous.services.lifecycle_service import set_billing_status


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table that does not exist yet."""
        import voxpopulous.models  # noqa: F401 - registers the mappers
        Base.metadata.create_all(bind=get_engine())
        click.echo(click.style('Schéma créé.', fg='green'))

    @app.cli.command('create-superadmin')
    @click.option('--email', prompt=True, help='Super admin email address')
    @click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Super admin password')
    @click.option('--name', default='Super Admin', help='Display name')
    def create_superadmin(email, password, name):
        """Create a super admin for the platform back-office."""
        if not re.match(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$', email):
            raise click.BadParameter('Email invalide. Format attendu : user@example.com', param_hint='--email')
        if len(password) < 8:
            raise click.BadParameter('Le mot de passe doit contenir au moins 8 caractères.', param_hint='--password')

        session = get_session()
        try:
            superadmin = account_service.create_superadmin(session, email, password, name)
            session.commit()
        except VoxError as e:
            session.rollback()
            raise click.ClickException(e.message)

        click.echo(click.style('Super administrateur créé.', fg='green', bold=True))
        click.echo(f'   Email: {superadmin.email}')
        click.echo(f'   ID: {superadmin.id}')

    @app.cli.command('seed-catalog')
    def seed_catalog_command():
        """Create or update the reference catalog."""
        session = get_session()
        counts = seed_catalog(session)
        session.commit()
        click.echo(click.style(
            f"Catalogue : {counts['features']} fonctionnalités, {counts['plans']} forfaits, "
            f"{counts['addons']} options, {counts['tiers']} paliers",
            fg='green'
        ))

    @app.cli.command('set-billing-status')
    @click.argument('slug')
    @click.argument('status', type=click.Choice([s.value for s in BillingStatus], case_sensitive=False))
    def set_billing_status_command(slug, status):
        """Force the billing status of a billing-owner tenant."""
        session = get_session()
        try:
            tenant = get_tenant_by_slug(session, slug, include_archived=True)
            set_billing_status(session, tenant, BillingStatus(status.upper()))
            session.commit()
        except VoxError as e:
            session.rollback()
            raise click.ClickException(e.message)

        click.echo(click.style(f'{tenant.slug}: {tenant.billing_status.value}', fg='green'))
