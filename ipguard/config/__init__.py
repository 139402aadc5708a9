"""Configuration loading and settings management."""

from .settings import REQUIRED_ENV_VARS, MailSettings, Settings, load_mail_settings, load_settings

__all__ = ["REQUIRED_ENV_VARS", "MailSettings", "Settings", "load_mail_settings", "load_settings"]
