"""Login code emails: template lookup, rendering and SMTP delivery."""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Mapping, Protocol

from jinja2 import Environment, TemplateError
from sqlalchemy import select
from sqlalchemy.orm import Session

from ipguard.config import MailSettings
from ipguard.models import EmailTemplate, User
from ipguard.services.geolocation import GeolocationResult

LOGIN_CODE_TEMPLATE = "New Location Login"
FALLBACK_SUBJECT = "Login Verification Code"
FALLBACK_BODY = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Login Verification Code</h2>
  <p>Hello {{ firstName }} {{ lastName }},</p>
  <p>We detected a login attempt from a new location. Use the following verification code to complete your login:</p>
  <div style="background-color: #f4f4f4; padding: 20px; text-align: center; margin: 20px 0; border-radius: 5px;">
    <h1 style="font-size: 32px; letter-spacing: 5px; margin: 0; color: #333;">{{ verificationCode }}</h1>
  </div>
  <p><strong>Location:</strong> {{ city }}, {{ region }}, {{ country }}</p>
  <p><strong>IP Address:</strong> {{ ipAddress }}</p>
  <p>This code will expire in {{ expiresInMinutes }} minutes.</p>
</div>
"""

logger = logging.getLogger("ipguard.notifications")

_environment = Environment(autoescape=True)


@dataclass(eq=False)
class NotificationError(Exception):
    code: str
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str


class MailTransport(Protocol):
    def send(self, message: EmailMessage) -> None:
        ...


class TemplateStore(Protocol):
    def render(self, name: str, variables: Mapping[str, Any]) -> RenderedEmail | None:
        ...


def render_string(source: str, variables: Mapping[str, Any]) -> str:
    return _environment.from_string(source).render(**variables)


class SmtpMailTransport:
    def __init__(self, settings: MailSettings, timeout_seconds: float = 10.0) -> None:
        self.settings = settings
        self.timeout_seconds = timeout_seconds

    def send(self, message: EmailMessage) -> None:
        settings = self.settings
        if settings.encryption == "ssl":
            client = smtplib.SMTP_SSL(
                settings.host, settings.port, timeout=self.timeout_seconds, context=ssl.create_default_context()
            )
        else:
            client = smtplib.SMTP(settings.host, settings.port, timeout=self.timeout_seconds)
        with client as smtp:
            if settings.encryption == "tls":
                smtp.starttls(context=ssl.create_default_context())
            if settings.username and settings.password:
                smtp.login(settings.username, settings.password)
            smtp.send_message(message)


class DatabaseTemplateStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def render(self, name: str, variables: Mapping[str, Any]) -> RenderedEmail | None:
        template = self.session.scalars(select(EmailTemplate).where(EmailTemplate.name == name)).first()
        if template is None or not template.is_active:
            return None
        try:
            return RenderedEmail(
                subject=render_string(template.subject, variables),
                html=render_string(template.body_html, variables),
            )
        except TemplateError as exc:
            logger.error("Template %r failed to render: %s", name, exc)
            return None


class NotificationDispatcher:
    def __init__(
        self,
        mail_settings: MailSettings | None,
        template_store: TemplateStore,
        transport: MailTransport | None = None,
        code_ttl_minutes: int = 10,
    ) -> None:
        self.mail_settings = mail_settings
        self.template_store = template_store
        self._transport = transport
        self.code_ttl_minutes = code_ttl_minutes

    def ensure_configured(self) -> MailSettings:
        settings = self.mail_settings
        if settings is None:
            raise NotificationError("smtp_not_configured", "SMTP settings not configured. Please contact your administrator.")
        if not settings.is_complete:
            raise NotificationError("smtp_incomplete", "SMTP settings are incomplete. Please contact your administrator.")
        return settings

    def send_login_code(
        self,
        user: User,
        code: str,
        address: str,
        geolocation: GeolocationResult | None,
    ) -> EmailMessage:
        settings = self.ensure_configured()
        variables = self._variables(user, code, address, geolocation)
        rendered = self.template_store.render(LOGIN_CODE_TEMPLATE, variables)
        if rendered is None:
            logger.info("Template %r unavailable, using inline login code message", LOGIN_CODE_TEMPLATE)
            rendered = RenderedEmail(subject=FALLBACK_SUBJECT, html=render_string(FALLBACK_BODY, variables))

        message = EmailMessage()
        try:
            message["Subject"] = rendered.subject
            message["From"] = formataddr((settings.from_name, settings.from_email or ""))
            message["To"] = user.email
        except ValueError as exc:
            logger.error("Invalid login code email headers for user_id=%s: %s", user.id, exc)
            raise NotificationError("send_failed", f"Failed to build verification email: {exc}") from exc
        message.set_content(f"Your login verification code is {code}.")
        message.add_alternative(rendered.html, subtype="html")

        transport = self._transport or SmtpMailTransport(settings)
        try:
            transport.send(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send login code email to user_id=%s: %s", user.id, exc)
            raise NotificationError("send_failed", f"Failed to send verification email: {exc}") from exc
        logger.info("Sent login code email to user_id=%s for %s", user.id, address)
        return message

    def _variables(
        self,
        user: User,
        code: str,
        address: str,
        geolocation: GeolocationResult | None,
    ) -> dict[str, Any]:
        geo = geolocation or GeolocationResult()
        return {
            "firstName": user.first_name or "",
            "lastName": user.last_name or "",
            "email": user.email,
            "verificationCode": code,
            "city": geo.city or "Unknown",
            "region": geo.region or "Unknown",
            "country": geo.country or "Unknown",
            "ipAddress": address,
            "expiresInMinutes": self.code_ttl_minutes,
        }
