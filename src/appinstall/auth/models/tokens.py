"""Client-credentials token models for app identity tokens.

Contains the exchange request sent to the token endpoint, the parsed
response, and the grant that is persisted on a connection.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel

# Standard app-token lifetime, used when the endpoint omits expires_in
DEFAULT_TOKEN_LIFETIME_SECONDS = 4 * 60 * 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ClientCredentialsRequest:
    """Client credentials grant keyed by an installation's instance id.

    Immutable request parameters for obtaining an app identity token.
    """

    token_endpoint: str
    client_id: str
    client_secret: str
    instance_id: str

    grant_type: str = "client_credentials"

    def to_json_body(self) -> dict[str, str]:
        """Build the JSON request body.

        Field names and values are fixed by the token endpoint.

        Returns:
            Dictionary suitable for the httpx json parameter
        """
        return {
            "grant_type": self.grant_type,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "instance_id": self.instance_id,
        }


class TokenResponse(BaseModel):
    """Successful token endpoint response."""

    access_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None  # Seconds until expiry

    def is_success(self) -> bool:
        return bool(self.access_token)

    def to_grant(
        self,
        now: datetime | None = None,
        default_lifetime: int = DEFAULT_TOKEN_LIFETIME_SECONDS,
    ) -> TokenGrant:
        """Convert to a grant with an absolute expiry.

        Args:
            now: Reference time, defaults to the current UTC time
            default_lifetime: Lifetime in seconds when expires_in is absent

        Raises:
            ValueError: If the response carries no access token
        """
        if not self.is_success():
            raise ValueError("Cannot build a grant without an access_token")

        now = now or utcnow()
        lifetime = self.expires_in if self.expires_in is not None else default_lifetime
        return TokenGrant(
            access_token=self.access_token,
            expires_at=now + timedelta(seconds=lifetime),
        )


@dataclass(frozen=True)
class TokenGrant:
    """An access token together with its absolute expiry."""

    access_token: str
    expires_at: datetime
