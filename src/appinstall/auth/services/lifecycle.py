"""Access token lifecycle for app installations.

Decides whether a connection's cached token is usable, refreshes it through
the token exchange when it is not, and marks the connection expired when the
exchange reports the installation itself as invalid.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

from appinstall.auth.models.connection import DEFAULT_SAFETY_BUFFER, Connection
from appinstall.auth.models.errors import (
    ErrorKind,
    TokenLifecycleError,
    not_found,
    reauthorization_required,
    token_exchange_failed,
)
from appinstall.auth.models.tokens import (
    DEFAULT_TOKEN_LIFETIME_SECONDS,
    TokenGrant,
    TokenResponse,
    utcnow,
)
from appinstall.auth.services.exchange import TokenExchangeClient
from appinstall.auth.services.security import mask_identifier
from appinstall.auth.stores.base import ConnectionStore
from appinstall.config import AppSettings

logger = logging.getLogger(__name__)


class TokenExchanger(Protocol):
    async def exchange(
        self, instance_id: str, client_id: str, client_secret: str
    ) -> TokenResponse:
        ...


class TokenLifecycleManager:
    """Returns usable access tokens for connections, refreshing lazily.

    Each call makes at most one token exchange and at most one store write.
    There is no background refresh and no retry loop; retry policy belongs
    to the caller.

    Concurrent calls for the same instance are safe but may each refresh.
    Wrap the manager in ``SingleFlightTokenProvider`` to collapse them.
    """

    def __init__(
        self,
        store: ConnectionStore,
        exchange_client: TokenExchanger,
        client_id: str,
        client_secret: str,
        safety_buffer: timedelta = DEFAULT_SAFETY_BUFFER,
        default_token_lifetime: int = DEFAULT_TOKEN_LIFETIME_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the lifecycle manager.

        Args:
            store: Connection persistence
            exchange_client: Performs the client credentials exchange
            client_id: Application id
            client_secret: Application secret
            safety_buffer: Refresh tokens this long before they expire
            default_token_lifetime: Seconds assumed when the exchange omits
                expires_in
            clock: Returns the current timezone-aware time
        """
        self._store = store
        self._exchange_client = exchange_client
        self._client_id = client_id
        self._client_secret = client_secret
        self.safety_buffer = safety_buffer
        self.default_token_lifetime = default_token_lifetime
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        store: ConnectionStore,
        exchange_client: TokenExchanger | None = None,
    ) -> TokenLifecycleManager:
        exchange_client = exchange_client or TokenExchangeClient(
            token_endpoint=settings.token_endpoint, timeout=settings.http_timeout
        )
        return cls(
            store=store,
            exchange_client=exchange_client,
            client_id=settings.client_id,
            client_secret=settings.client_secret.get_secret_value(),
            safety_buffer=settings.safety_buffer,
            default_token_lifetime=settings.default_token_lifetime_seconds,
        )

    async def get_valid_access_token(self, connection: Connection) -> str:
        """Return a currently usable access token for the connection.

        Args:
            connection: Connection to obtain a token for

        Returns:
            The cached token if it is outside the safety buffer, otherwise a
            freshly exchanged one

        Raises:
            ValueError: If the connection has no instance id
            TokenLifecycleError: REAUTHORIZATION_REQUIRED if the installation
                is no longer valid, TOKEN_EXCHANGE_FAILED on any other
                exchange failure
        """
        if not connection.instance_id:
            raise ValueError("Connection must have an instance_id")

        if connection.is_expired:
            raise reauthorization_required(connection.instance_id)

        if connection.is_fresh(self._clock(), self.safety_buffer):
            return connection.access_token

        logger.debug(
            f"Refreshing token for {mask_identifier(connection.instance_id)}: "
            f"{connection.usability(self._clock(), self.safety_buffer).value}"
        )

        # Let the exchange and its write finish even if this caller is cancelled,
        # so other consumers of the same connection see the new token.
        refresh = asyncio.ensure_future(self._refresh(connection))
        refresh.add_done_callback(_log_orphaned_failure)
        return await asyncio.shield(refresh)

    async def get_valid_access_token_for(self, instance_id: str) -> str:
        """Load the connection from the store and return a usable token.

        Raises:
            TokenLifecycleError: NOT_FOUND if no connection is stored, or any
                error of ``get_valid_access_token``
        """
        connection = await self._store.get(instance_id)
        if connection is None:
            raise not_found(instance_id)
        return await self.get_valid_access_token(connection)

    async def exchange_for_token(self, instance_id: str) -> TokenGrant:
        """Exchange the instance id for a new token and absolute expiry.

        Raises:
            TokenLifecycleError: REAUTHORIZATION_REQUIRED or
                TOKEN_EXCHANGE_FAILED
        """
        try:
            response = await self._exchange_client.exchange(
                instance_id, self._client_id, self._client_secret
            )
            return response.to_grant(self._clock(), self.default_token_lifetime)
        except TokenLifecycleError as e:
            if e.instance_id is None:
                e.instance_id = instance_id
            raise
        except Exception as e:
            raise token_exchange_failed(
                f"Token exchange failed: {e}", instance_id
            ) from e

    async def _refresh(self, connection: Connection) -> str:
        instance_id = connection.instance_id
        try:
            grant = await self.exchange_for_token(instance_id)
        except TokenLifecycleError as e:
            if e.kind is ErrorKind.REAUTHORIZATION_REQUIRED:
                logger.warning(
                    f"Installation {mask_identifier(instance_id)} is no longer "
                    f"valid, marking connection expired"
                )
                # Connections the store has not seen yet are recorded as expired.
                if await self._store.mark_expired(instance_id) is False:
                    await self._store.save(connection.as_expired())
            raise

        accepted = await self._store.save(connection.with_grant(grant))
        if accepted is False:
            logger.debug(
                f"Store kept newer state for {mask_identifier(instance_id)}, "
                f"refreshed token was not persisted"
            )
            return grant.access_token

        logger.info(
            f"Refreshed token for {mask_identifier(instance_id)}, "
            f"expires at {grant.expires_at.isoformat()}"
        )
        return grant.access_token


def _log_orphaned_failure(task: asyncio.Future) -> None:
    # Retrieve the exception so a refresh whose caller went away is not
    # reported as never retrieved.
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Token refresh finished with error: {error!r}")
