"""httpx authentication that attaches app identity tokens to requests."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Generator
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


class TokenProvider(Protocol):
    async def get_valid_access_token_for(self, instance_id: str) -> str:
        ...


class AppTokenAuth(httpx.Auth):
    """Authorizes downstream API calls on behalf of one installation.

    Usage:
        auth = AppTokenAuth(provider, instance_id)
        async with httpx.AsyncClient(auth=auth) as client:
            await client.get("https://www.wixapis.com/...")

    The token is looked up per request, so refreshes happen lazily as the
    cached token approaches expiry. Lifecycle errors propagate to the caller
    of the request.
    """

    def __init__(
        self,
        provider: TokenProvider,
        instance_id: str,
        scheme: str | None = None,
    ):
        """Initialize the auth flow.

        Args:
            provider: Lifecycle manager or single-flight provider
            instance_id: Installation to act for
            scheme: Optional scheme prefix such as "Bearer"; the platform
                accepts the raw token when omitted
        """
        self._provider = provider
        self.instance_id = instance_id
        self.scheme = scheme

    def sync_auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("AppTokenAuth requires an httpx.AsyncClient")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self._provider.get_valid_access_token_for(self.instance_id)
        request.headers["Authorization"] = (
            f"{self.scheme} {token}" if self.scheme else token
        )
        response = yield request

        if response.status_code == 401:
            logger.warning(f"Downstream API rejected token with 401: {request.url}")
