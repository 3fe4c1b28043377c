"""Request collapsing in front of the token lifecycle manager."""

from __future__ import annotations

import asyncio
import logging

from appinstall.auth.models.connection import Connection
from appinstall.auth.services.lifecycle import TokenLifecycleManager
from appinstall.auth.services.security import mask_identifier

logger = logging.getLogger(__name__)


class SingleFlightTokenProvider:
    """Shares one in-flight token lookup per instance id.

    Callers that ask for the same instance while a lookup is running await
    that lookup instead of starting their own exchange. Results and errors
    are delivered to every waiter. Lookups for different instances run
    independently.
    """

    def __init__(self, manager: TokenLifecycleManager):
        self._manager = manager
        self._in_flight: dict[str, asyncio.Future[str]] = {}

    async def get_valid_access_token(self, connection: Connection) -> str:
        return await self._collapse(
            connection.instance_id,
            lambda: self._manager.get_valid_access_token(connection),
        )

    async def get_valid_access_token_for(self, instance_id: str) -> str:
        return await self._collapse(
            instance_id,
            lambda: self._manager.get_valid_access_token_for(instance_id),
        )

    def in_flight(self, instance_id: str) -> bool:
        return instance_id in self._in_flight

    async def _collapse(self, instance_id: str, start) -> str:
        future = self._in_flight.get(instance_id)
        if future is None:
            future = asyncio.ensure_future(start())
            self._in_flight[instance_id] = future
            future.add_done_callback(lambda f: self._release(instance_id, f))
        else:
            logger.debug(f"Joining in-flight lookup for {mask_identifier(instance_id)}")

        # A cancelled waiter must not cancel the shared lookup.
        return await asyncio.shield(future)

    def _release(self, instance_id: str, future: asyncio.Future[str]) -> None:
        if self._in_flight.get(instance_id) is future:
            del self._in_flight[instance_id]
        # Waiters may all have been cancelled; consume the error here too.
        if not future.cancelled():
            future.exception()
