"""Flask CLI commands for operators (``flask --app wsgi <command>``)."""
import secrets

import click

from shelfpass import db
from shelfpass.models import User


def register_commands(app):

    @app.cli.command('expire-subscriptions')
    def expire_subscriptions_command():
        """Run one expiry sweep now."""
        from shelfpass.utils.scheduler import get_scheduler
        expired = get_scheduler(app).run_once()
        if expired is None:
            raise click.ClickException('Expiry sweep failed, see logs')
        click.echo(f'Expired {expired} subscriptions')

    @app.cli.command('grant-subscription')
    @click.argument('email')
    @click.argument('plan', type=click.Choice(['basic', 'premium']))
    def grant_subscription_command(email, plan):
        """Grant PLAN to the user with EMAIL for one period."""
        from shelfpass.services import EntitlementService
        user = User.query.filter_by(email=email.strip().lower()).first()
        if user is None:
            raise click.ClickException(f'No user with email {email}')
        user = EntitlementService().grant(user.id, plan)
        click.echo(f'Granted {plan} to {user.email} until {user.subscription_end:%Y-%m-%d %H:%M}')

    @app.cli.command('create-user')
    @click.argument('email')
    @click.option('--name', default='', help='Display name')
    @click.option('--admin', 'is_admin', is_flag=True, help='Give the user the admin flag')
    def create_user_command(email, name, is_admin):
        """Create a user with a temporary password."""
        email = email.strip().lower()
        if User.query.filter_by(email=email).first():
            raise click.ClickException(f'User {email} already exists')

        temp_password = secrets.token_urlsafe(9)
        user = User(email=email, name=name, is_admin=is_admin)
        user.set_password(temp_password)
        db.session.add(user)
        db.session.commit()
        click.echo(f'Created user {user.email} (id {user.id})')
        click.echo(f'Temporary password: {temp_password}')
