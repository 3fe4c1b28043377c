"""Tests for the in-memory connection store.

Covers basic persistence, the monotonic acceptance rule for concurrent
refreshes, and encryption of stored secrets.
"""

import base64
from datetime import datetime, timedelta, timezone

import pytest

from appinstall.auth.models.connection import Connection, ConnectionStatus
from appinstall.auth.services.security import SecretBox
from appinstall.auth.stores.memory import InMemoryConnectionStore

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
KEY = base64.b64encode(bytes(range(32))).decode("ascii")


def with_token(token: str, expires_at: datetime) -> Connection:
    return Connection(
        instance_id="abc", tenant_id="site-1", access_token=token, expires_at=expires_at
    )


class TestPersistence:
    def setup_method(self):
        # Arrange
        self.store = InMemoryConnectionStore()

    async def test_get_unknown_returns_none(self):
        """Test an unknown instance id yields None."""
        assert await self.store.get("missing") is None

    async def test_save_then_get_round_trips(self):
        """Test a saved connection is returned unchanged."""
        # Arrange
        connection = with_token("tok1", NOW)

        # Act
        await self.store.save(connection)

        # Assert
        assert await self.store.get("abc") == connection

    async def test_mark_expired_keeps_token_fields(self):
        """Test expiring a row keeps its last token."""
        # Arrange
        await self.store.save(with_token("tok1", NOW))

        # Act
        await self.store.mark_expired("abc")

        # Assert
        stored = await self.store.get("abc")
        assert stored.status is ConnectionStatus.EXPIRED
        assert stored.access_token == "tok1"

    async def test_mark_expired_unknown_is_noop(self):
        """Test expiring an unknown instance reports it was not found."""
        # Act
        found = await self.store.mark_expired("missing")

        # Assert
        assert found is False
        assert len(self.store) == 0


class TestMonotonicAcceptance:
    """Test that racing writes never resurrect or roll back state."""

    def setup_method(self):
        # Arrange
        self.store = InMemoryConnectionStore()

    async def test_newer_expiry_replaces_token(self):
        """Test a later expiry replaces the stored token."""
        # Arrange
        await self.store.save(with_token("tok1", NOW))

        # Act
        accepted = await self.store.save(with_token("tok2", NOW + timedelta(hours=4)))

        # Assert
        assert accepted is True
        assert (await self.store.get("abc")).access_token == "tok2"

    async def test_older_expiry_is_ignored(self):
        """Test an earlier expiry does not roll the token back."""
        # Arrange
        await self.store.save(with_token("tok2", NOW + timedelta(hours=4)))

        # Act
        accepted = await self.store.save(with_token("tok1", NOW + timedelta(hours=3)))

        # Assert
        assert accepted is False
        assert (await self.store.get("abc")).access_token == "tok2"

    async def test_in_flight_success_does_not_resurrect_expired_connection(self):
        """Test a token save cannot bring an expired row back."""
        # Arrange
        await self.store.save(with_token("tok1", NOW))
        await self.store.mark_expired("abc")

        # Act
        accepted = await self.store.save(with_token("tok2", NOW + timedelta(hours=4)))

        # Assert
        assert accepted is False
        stored = await self.store.get("abc")
        assert stored.status is ConnectionStatus.EXPIRED
        assert stored.access_token == "tok1"

    async def test_reactivate_clears_expired_state(self):
        """Test reactivation returns the row to active without a token."""
        # Arrange
        await self.store.save(with_token("tok1", NOW))
        await self.store.mark_expired("abc")

        # Act
        connection = await self.store.reactivate("abc", "site-2")

        # Assert
        stored = await self.store.get("abc")
        assert stored == connection
        assert stored.status is ConnectionStatus.ACTIVE
        assert stored.access_token is None
        assert stored.expires_at is None
        assert stored.tenant_id == "site-2"


class TestEncryptionAtRest:
    def setup_method(self):
        # Arrange
        self.store = InMemoryConnectionStore(SecretBox(KEY))

    async def test_round_trip_with_encryption(self):
        """Test sealed rows open back to the original connection."""
        # Arrange
        connection = with_token("tok1", NOW)

        # Act
        await self.store.save(connection)

        # Assert
        assert await self.store.get("abc") == connection

    async def test_secrets_are_not_stored_in_clear(self):
        """Test instance ids and tokens are sealed at rest."""
        # Act
        await self.store.save(with_token("tok1", NOW))

        # Assert
        (key, row), = self.store._rows.items()
        assert key != "abc"
        assert row.instance_id != "abc"
        assert row.access_token != "tok1"

    async def test_rows_are_unreadable_with_another_key(self):
        """Test rows sealed under one key cannot be read with another."""
        # Arrange
        await self.store.save(with_token("tok1", NOW))
        other = InMemoryConnectionStore(SecretBox(bytes(32)))
        other._rows = self.store._rows

        # Act & Assert
        assert await other.get("abc") is None
        (_, row), = self.store._rows.items()
        with pytest.raises(ValueError):
            SecretBox(bytes(32)).open(row.access_token)
