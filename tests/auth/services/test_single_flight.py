"""Tests for collapsing concurrent token lookups per instance."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from appinstall.auth.models.connection import Connection
from appinstall.auth.models.errors import (
    ErrorKind,
    TokenLifecycleError,
    token_exchange_failed,
)
from appinstall.auth.models.tokens import TokenResponse
from appinstall.auth.services.coordination import SingleFlightTokenProvider
from appinstall.auth.services.lifecycle import TokenLifecycleManager
from appinstall.auth.stores.memory import InMemoryConnectionStore


class TestSingleFlight:
    def setup_method(self):
        # Arrange
        self.release = asyncio.Event()
        self.calls = 0

        async def slow_exchange(instance_id, client_id, client_secret):
            self.calls += 1
            await self.release.wait()
            return TokenResponse(access_token=f"tok-{instance_id}", expires_in=3600)

        self.exchange_client = AsyncMock()
        self.exchange_client.exchange.side_effect = slow_exchange
        self.store = InMemoryConnectionStore()
        self.manager = TokenLifecycleManager(
            store=self.store,
            exchange_client=self.exchange_client,
            client_id="app-123",
            client_secret="secret-456",
        )
        self.provider = SingleFlightTokenProvider(self.manager)

    async def test_concurrent_callers_share_one_exchange(self):
        """Test concurrent callers for one instance share a single exchange."""
        # Arrange
        connection = Connection(instance_id="abc")

        # Act
        tasks = [
            asyncio.create_task(self.provider.get_valid_access_token(connection))
            for _ in range(5)
        ]
        await asyncio.sleep(0)
        assert self.provider.in_flight("abc")
        self.release.set()
        tokens = await asyncio.gather(*tasks)

        # Assert
        assert tokens == ["tok-abc"] * 5
        assert self.calls == 1
        assert not self.provider.in_flight("abc")

    async def test_different_instances_exchange_independently(self):
        """Test different instances are not collapsed together."""
        # Arrange
        await self.store.save(Connection(instance_id="abc"))
        await self.store.save(Connection(instance_id="def"))

        # Act
        tasks = [
            asyncio.create_task(self.provider.get_valid_access_token_for("abc")),
            asyncio.create_task(self.provider.get_valid_access_token_for("def")),
        ]
        await asyncio.sleep(0)
        self.release.set()
        tokens = await asyncio.gather(*tasks)

        # Assert
        assert tokens == ["tok-abc", "tok-def"]
        assert self.calls == 2

    async def test_errors_reach_every_waiter(self):
        """Test a failed refresh raises in every waiting caller."""
        # Arrange
        async def failing_exchange(*args):
            await self.release.wait()
            raise token_exchange_failed("Token endpoint returned 503", status_code=503)

        self.exchange_client.exchange.side_effect = failing_exchange
        connection = Connection(instance_id="abc")

        # Act
        tasks = [
            asyncio.create_task(self.provider.get_valid_access_token(connection))
            for _ in range(3)
        ]
        await asyncio.sleep(0)
        self.release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        # Assert
        assert all(isinstance(r, TokenLifecycleError) for r in results)
        assert all(r.kind is ErrorKind.TOKEN_EXCHANGE_FAILED for r in results)
        assert not self.provider.in_flight("abc")

    async def test_cancelled_waiter_does_not_cancel_shared_lookup(self):
        """Test cancelling one waiter leaves the shared refresh running."""
        # Arrange
        connection = Connection(instance_id="abc")
        first = asyncio.create_task(self.provider.get_valid_access_token(connection))
        second = asyncio.create_task(self.provider.get_valid_access_token(connection))
        await asyncio.sleep(0)

        # Act
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        self.release.set()
        token = await second

        # Assert
        assert token == "tok-abc"
        assert self.calls == 1

    async def test_later_calls_after_completion_use_cached_token(self):
        """Test calls after completion reuse the cached token."""
        # Arrange
        await self.store.save(Connection(instance_id="abc"))
        self.release.set()

        # Act
        first = await self.provider.get_valid_access_token_for("abc")
        second = await self.provider.get_valid_access_token_for("abc")

        # Assert
        assert first == second == "tok-abc"
        assert self.calls == 1
