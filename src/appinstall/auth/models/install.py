"""Installation flow models.

Contains the pending-install record kept between redirecting a site owner
to the installer and receiving the installation callback.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import urlencode

from appinstall.auth.models.tokens import utcnow


@dataclass(frozen=True)
class InstallRequest:
    """Parameters of the installer redirect."""

    installer_url: str
    app_id: str
    redirect_url: str
    state: str

    def build_installer_url(self) -> str:
        """Build the complete installer URL."""
        params = {
            "appId": self.app_id,
            "redirectUrl": self.redirect_url,
            "state": self.state,
        }
        return f"{self.installer_url}?{urlencode(params)}"


@dataclass(frozen=True)
class PendingInstall:
    """Short-lived record keyed by the correlation state."""

    state: str
    redirect_url: str
    created_at: datetime
    expires_at: datetime
    tenant_hint: str | None = None

    @classmethod
    def create(
        cls,
        state: str,
        redirect_url: str,
        ttl: timedelta,
        tenant_hint: str | None = None,
        now: datetime | None = None,
    ) -> PendingInstall:
        now = now or utcnow()
        return cls(
            state=state,
            redirect_url=redirect_url,
            created_at=now,
            expires_at=now + ttl,
            tenant_hint=tenant_hint,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at


@dataclass(frozen=True)
class InstallRedirect:
    """Where to send the site owner, plus the state to expect back."""

    url: str
    state: str
