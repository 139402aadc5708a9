"""Environment-backed application settings with strict validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

logger = logging.getLogger(__name__)

REQUIRED_ENV_VARS = (
    "DATABASE_URL",
    "JWT_SECRET",
)

SMTP_ENCRYPTIONS = ("ssl", "tls", "none")


def _read_env_var(name: str, env: Mapping[str, str | None]) -> str:
    value = env.get(name)
    if value is None or str(value).strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return str(value)


def _read_optional(name: str, env: Mapping[str, str | None], default: str | None = None) -> str | None:
    value = env.get(name)
    if value is None or str(value).strip() == "":
        return default
    return str(value).strip()


def _read_number(name: str, env: Mapping[str, str | None], default: float, cast=float):
    raw = _read_optional(name, env)
    if raw is None:
        return cast(default)
    try:
        value = cast(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid numeric value for {name}: {raw}") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be positive")
    return value


@dataclass(frozen=True)
class MailSettings:
    host: str
    port: int
    username: str | None
    password: str | None
    from_email: str | None
    from_name: str
    encryption: str = "tls"

    @property
    def is_complete(self) -> bool:
        return bool(self.host and self.port and self.password and self.from_email)


@dataclass(frozen=True)
class Settings:
    database_url: str
    jwt_secret: str
    app_env: str
    geolocation_base_url: str
    geolocation_timeout_seconds: float
    verification_code_ttl_minutes: int
    token_ttl_seconds: int
    mail: MailSettings | None


def load_mail_settings(env: Mapping[str, str | None]) -> MailSettings | None:
    host = _read_optional("SMTP_HOST", env)
    if host is None:
        return None
    encryption = (_read_optional("SMTP_ENCRYPTION", env, "tls") or "tls").lower()
    if encryption not in SMTP_ENCRYPTIONS:
        raise RuntimeError(f"SMTP_ENCRYPTION must be one of: {', '.join(SMTP_ENCRYPTIONS)}")
    return MailSettings(
        host=host,
        port=int(_read_number("SMTP_PORT", env, 587, cast=int)),
        username=_read_optional("SMTP_USERNAME", env),
        password=_read_optional("SMTP_PASSWORD", env),
        from_email=_read_optional("SMTP_FROM_EMAIL", env),
        from_name=_read_optional("SMTP_FROM_NAME", env, "Account Security") or "Account Security",
        encryption=encryption,
    )


def load_settings(env: Mapping[str, str | None] | None = None) -> Settings:
    """Load and validate environment variables into a Settings object."""
    source_env = os.environ if env is None else env

    missing = [key for key in REQUIRED_ENV_VARS if not str(source_env.get(key) or "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    app_env = str(source_env.get("APP_ENV", "development")).strip() or "development"

    settings = Settings(
        database_url=_read_env_var("DATABASE_URL", source_env),
        jwt_secret=_read_env_var("JWT_SECRET", source_env),
        app_env=app_env,
        geolocation_base_url=_read_optional("GEOLOCATION_BASE_URL", source_env, "http://ip-api.com/json") or "",
        geolocation_timeout_seconds=_read_number("GEOLOCATION_TIMEOUT_SECONDS", source_env, 3.0),
        verification_code_ttl_minutes=_read_number("VERIFICATION_CODE_TTL_MINUTES", source_env, 10, cast=int),
        token_ttl_seconds=_read_number("TOKEN_TTL_SECONDS", source_env, 3600, cast=int),
        mail=load_mail_settings(source_env),
    )

    logger.info(
        "Loaded application settings for env=%s mail_configured=%s",
        settings.app_env,
        settings.mail is not None and settings.mail.is_complete,
    )
    return settings
