"""In-memory connection store.

Reference implementation of ``ConnectionStore`` for tests, development and
single-process deployments. Secrets are sealed with a ``SecretBox`` when an
encryption key is configured and rows are keyed by a blind index of the
instance id.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime

from appinstall.auth.models.connection import Connection, ConnectionStatus
from appinstall.auth.services.security import SecretBox, mask_identifier
from appinstall.config import AppSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Row:
    instance_id: str  # sealed
    tenant_id: str | None
    access_token: str | None  # sealed
    expires_at: datetime | None
    status: ConnectionStatus


class InMemoryConnectionStore:
    """Connection store backed by a dict and guarded by an asyncio lock.

    Writes follow a monotonic acceptance rule:
    - ``mark_expired`` always wins
    - ``save`` never moves an expired row back to active
    - ``save`` never replaces a token with one that expires earlier
    """

    def __init__(self, secret_box: SecretBox | None = None):
        self._box = secret_box or SecretBox()
        self._rows: dict[str, _Row] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: AppSettings) -> InMemoryConnectionStore:
        """Build a store that encrypts rows when an encryption key is configured."""
        key = settings.encryption_key
        return cls(SecretBox(key.get_secret_value() if key else None))

    async def get(self, instance_id: str) -> Connection | None:
        async with self._lock:
            row = self._rows.get(self._box.blind_index(instance_id))
        return self._to_connection(row) if row else None

    async def save(self, connection: Connection) -> bool:
        key = self._box.blind_index(connection.instance_id)
        async with self._lock:
            current = self._rows.get(key)
            if current is not None and not self._accepts(current, connection):
                logger.debug(
                    f"Ignoring stale save for {mask_identifier(connection.instance_id)}"
                )
                return False
            self._rows[key] = self._to_row(connection)
        return True

    async def mark_expired(self, instance_id: str) -> bool:
        key = self._box.blind_index(instance_id)
        async with self._lock:
            current = self._rows.get(key)
            if current is None:
                logger.debug(
                    f"Cannot expire unknown connection {mask_identifier(instance_id)}"
                )
                return False
            self._rows[key] = replace(current, status=ConnectionStatus.EXPIRED)
        logger.info(f"Marked connection {mask_identifier(instance_id)} expired")
        return True

    async def reactivate(self, instance_id: str, tenant_id: str | None) -> Connection:
        connection = Connection(instance_id=instance_id, tenant_id=tenant_id)
        async with self._lock:
            self._rows[self._box.blind_index(instance_id)] = self._to_row(connection)
        return connection

    def __len__(self) -> int:
        return len(self._rows)

    @staticmethod
    def _accepts(current: _Row, incoming: Connection) -> bool:
        if current.status is ConnectionStatus.EXPIRED:
            return False
        if current.expires_at is not None and incoming.expires_at is not None:
            return incoming.expires_at >= current.expires_at
        return True

    def _to_row(self, connection: Connection) -> _Row:
        return _Row(
            instance_id=self._box.seal(connection.instance_id),
            tenant_id=connection.tenant_id,
            access_token=(
                self._box.seal(connection.access_token)
                if connection.access_token is not None
                else None
            ),
            expires_at=connection.expires_at,
            status=connection.status,
        )

    def _to_connection(self, row: _Row) -> Connection:
        return Connection(
            instance_id=self._box.open(row.instance_id),
            tenant_id=row.tenant_id,
            access_token=(
                self._box.open(row.access_token) if row.access_token is not None else None
            ),
            expires_at=row.expires_at,
            status=row.status,
        )
