"""Connection model: one installation of the app on one remote site.

The token fields follow a small usability state machine:

    NO_TOKEN -> FRESH -> STALE -> FRESH (refresh) ... -> EXPIRED

EXPIRED is terminal until the installation flow runs again.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from appinstall.auth.models.tokens import TokenGrant, utcnow

DEFAULT_SAFETY_BUFFER = timedelta(minutes=5)


class ConnectionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"


class TokenUsability(str, Enum):
    """Usability of a connection's cached token at a point in time."""

    NO_TOKEN = "no_token"
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"


class Connection(BaseModel):
    """A single installation, keyed by its permanent instance id.

    The instance id is a long-lived credential; stores are expected to keep
    it and the access token encrypted at rest.
    """

    model_config = ConfigDict(validate_assignment=True)

    instance_id: str = Field(min_length=1)
    tenant_id: str | None = None
    access_token: str | None = None
    expires_at: datetime | None = None
    status: ConnectionStatus = ConnectionStatus.ACTIVE

    @field_validator("expires_at")
    @classmethod
    def validate_timezone(cls, v: datetime | None) -> datetime | None:
        """Expiry timestamps must be timezone-aware."""
        if v is not None and v.tzinfo is None:
            raise ValueError("expires_at must be timezone-aware")
        return v

    @model_validator(mode="after")
    def validate_token_pair(self) -> Connection:
        """access_token is set if and only if expires_at is set."""
        if (self.access_token is None) != (self.expires_at is None):
            raise ValueError("access_token and expires_at must be set together")
        return self

    @property
    def is_expired(self) -> bool:
        return self.status is ConnectionStatus.EXPIRED

    def has_token(self) -> bool:
        return self.access_token is not None and self.expires_at is not None

    def is_fresh(
        self,
        now: datetime | None = None,
        buffer: timedelta = DEFAULT_SAFETY_BUFFER,
    ) -> bool:
        """Check if the cached token can be used without a refresh.

        Args:
            now: Reference time, defaults to the current UTC time
            buffer: Treat the token as stale this long before expiry
        """
        if self.is_expired or not self.has_token():
            return False
        now = now or utcnow()
        return now < self.expires_at - buffer

    def usability(
        self,
        now: datetime | None = None,
        buffer: timedelta = DEFAULT_SAFETY_BUFFER,
    ) -> TokenUsability:
        if self.is_expired:
            return TokenUsability.EXPIRED
        if not self.has_token():
            return TokenUsability.NO_TOKEN
        if self.is_fresh(now, buffer):
            return TokenUsability.FRESH
        return TokenUsability.STALE

    def with_grant(self, grant: TokenGrant) -> Connection:
        """Return a copy carrying the new token and expiry together."""
        return self.model_copy(
            update={
                "access_token": grant.access_token,
                "expires_at": grant.expires_at,
            }
        )

    def as_expired(self) -> Connection:
        """Return a copy in the terminal expired status."""
        return self.model_copy(update={"status": ConnectionStatus.EXPIRED})
