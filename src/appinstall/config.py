"""Application settings loaded from the environment.

Values come from environment variables, optionally seeded from a ``.env``
file. Secrets are held as ``SecretStr`` so they never show up in reprs.
"""

from __future__ import annotations

import os
from datetime import timedelta

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr

from appinstall.auth.services.exchange import DEFAULT_TOKEN_ENDPOINT

DEFAULT_INSTALLER_URL = "https://www.wix.com/installer/install"


class AppSettings(BaseModel):
    """Identity of the application and token lifecycle tuning."""

    client_id: str = Field(min_length=1)
    client_secret: SecretStr
    token_endpoint: str = DEFAULT_TOKEN_ENDPOINT
    installer_url: str = DEFAULT_INSTALLER_URL
    safety_buffer_seconds: int = Field(default=300, ge=0)
    default_token_lifetime_seconds: int = Field(default=4 * 60 * 60, gt=0)
    http_timeout: float = Field(default=30.0, gt=0)
    pending_install_ttl_seconds: int = Field(default=600, gt=0)
    encryption_key: SecretStr | None = None

    @property
    def safety_buffer(self) -> timedelta:
        return timedelta(seconds=self.safety_buffer_seconds)

    @property
    def pending_install_ttl(self) -> timedelta:
        return timedelta(seconds=self.pending_install_ttl_seconds)


_ENV_FIELDS = {
    "APP_CLIENT_ID": "client_id",
    "APP_CLIENT_SECRET": "client_secret",
    "APP_TOKEN_ENDPOINT": "token_endpoint",
    "APP_INSTALLER_URL": "installer_url",
    "APP_TOKEN_SAFETY_BUFFER": "safety_buffer_seconds",
    "APP_DEFAULT_TOKEN_LIFETIME": "default_token_lifetime_seconds",
    "APP_HTTP_TIMEOUT": "http_timeout",
    "APP_PENDING_INSTALL_TTL": "pending_install_ttl_seconds",
    "APP_ENCRYPTION_KEY": "encryption_key",
}


def load_settings(env_file: str | None = None) -> AppSettings:
    """Build settings from the environment.

    Args:
        env_file: Optional path to a .env file; the default lookup is used
            when omitted. Existing environment variables take precedence.

    Raises:
        ValueError: If required settings are missing or invalid
    """
    load_dotenv(env_file)

    values = {
        field: os.environ[name]
        for name, field in _ENV_FIELDS.items()
        if os.environ.get(name)
    }
    missing = [
        name
        for name in ("APP_CLIENT_ID", "APP_CLIENT_SECRET")
        if _ENV_FIELDS[name] not in values
    ]
    if missing:
        raise ValueError(f"Missing required settings: {', '.join(missing)}")

    return AppSettings.model_validate(values)
