"""Storage interfaces consumed by the token lifecycle.

Concrete persistence is owned by the application; these protocols describe
what the lifecycle manager and installation service need from it.
"""

from __future__ import annotations

from typing import Protocol

from appinstall.auth.models.connection import Connection
from appinstall.auth.models.install import PendingInstall


class ConnectionStore(Protocol):
    """Read/write access to connections, keyed by instance id.

    Implementations must keep instance ids and access tokens encrypted at
    rest, and must not let a token save resurrect a connection that has been
    marked expired.
    """

    async def get(self, instance_id: str) -> Connection | None:
        ...

    async def save(self, connection: Connection) -> bool:
        """Persist the connection; False if newer state was kept instead."""
        ...

    async def mark_expired(self, instance_id: str) -> bool:
        """Expire a stored connection; False if the instance is unknown."""
        ...

    async def reactivate(self, instance_id: str, tenant_id: str | None) -> Connection:
        """Create the connection, or return an expired one to active.

        Called only after a fresh installation callback. Clears any cached
        token.
        """
        ...


class PendingInstallStore(Protocol):
    """Short-TTL storage for installs awaiting their callback."""

    async def put(self, pending: PendingInstall) -> None:
        ...

    async def consume(self, state: str) -> PendingInstall | None:
        """Remove and return the pending install, or None if unknown/expired."""
        ...
