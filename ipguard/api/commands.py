from __future__ import annotations

import click
from flask import Flask
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from ipguard.auth import AuthError, AuthService
from ipguard.config import Settings
from ipguard.models import AccountStatus, EmailTemplate, User
from ipguard.services import TrustStore
from ipguard.services.notifications import FALLBACK_BODY, LOGIN_CODE_TEMPLATE

LOGIN_CODE_SUBJECT = "New login location detected"


def register_commands(app: Flask, session_factory: sessionmaker, settings: Settings) -> None:
    @app.cli.command("create-user")
    @click.argument("email")
    @click.password_option()
    @click.option("--role", type=click.Choice(["admin", "viewer"]), default="viewer")
    @click.option("--first-name", default="")
    @click.option("--last-name", default="")
    @click.option("--status", type=click.Choice([s.value for s in AccountStatus]), default=AccountStatus.ACTIVE.value)
    def create_user(email: str, password: str, role: str, first_name: str, last_name: str, status: str) -> None:
        """Create an account that can sign in."""
        with session_factory() as db:
            service = AuthService(db, settings.jwt_secret, session_ttl_seconds=settings.token_ttl_seconds)
            try:
                user = service.register_user(
                    email,
                    password,
                    role=role,
                    first_name=first_name,
                    last_name=last_name,
                    status=AccountStatus(status),
                )
            except AuthError as exc:
                raise click.ClickException(exc.code) from exc
            click.echo(f"Created user {user.id} <{user.email}> role={user.role}")

    @app.cli.command("issue-token")
    @click.argument("email")
    def issue_token(email: str) -> None:
        """Print a bearer token for an existing account."""
        with session_factory() as db:
            service = AuthService(db, settings.jwt_secret, session_ttl_seconds=settings.token_ttl_seconds)
            user = db.scalars(select(User).where(User.email == service.normalize_email(email))).first()
            if user is None:
                raise click.ClickException("user_not_found")
            click.echo(service.issue_token_for_user(user))

    @app.cli.command("seed-templates")
    @click.option("--force", is_flag=True, help="Overwrite an existing template.")
    def seed_templates(force: bool) -> None:
        """Create the new-location login email template."""
        with session_factory() as db:
            template = db.scalars(select(EmailTemplate).where(EmailTemplate.name == LOGIN_CODE_TEMPLATE)).first()
            if template is not None and not force:
                click.echo(f"Template {LOGIN_CODE_TEMPLATE!r} already exists")
                return
            if template is None:
                template = EmailTemplate(name=LOGIN_CODE_TEMPLATE)
                db.add(template)
            template.subject = LOGIN_CODE_SUBJECT
            template.body_html = FALLBACK_BODY
            template.is_active = True
            db.commit()
            click.echo(f"Saved template {LOGIN_CODE_TEMPLATE!r}")

    @app.cli.command("clear-ip-addresses")
    @click.confirmation_option(prompt="Delete every trust record for every account?")
    def clear_ip_addresses() -> None:
        """Delete all trust records."""
        with session_factory() as db:
            deleted = TrustStore(db).clear_all()
        click.echo(f"Deleted {deleted} IP address records")
