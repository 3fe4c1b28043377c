"""App identity token exchange service.

Obtains access tokens for an installation with the client credentials
grant, keyed by the installation's instance id.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from appinstall.auth.models.errors import (
    reauthorization_required,
    token_exchange_failed,
)
from appinstall.auth.models.tokens import ClientCredentialsRequest, TokenResponse
from appinstall.auth.services.security import mask_identifier

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_ENDPOINT = "https://www.wixapis.com/oauth2/token"

# Statuses the token endpoint uses for an unknown or disconnected instance
INVALID_INSTANCE_STATUSES = frozenset({400, 401})


class TokenExchangeClient:
    """Performs the server-to-server token exchange.

    Sends a JSON POST to a fixed token endpoint and classifies the outcome:
    - 2xx with an access_token: success
    - 400/401: the instance itself is invalid (re-authorization required)
    - anything else, including network errors and malformed bodies:
      a transient exchange failure

    The exchange is stateless; concurrent calls for the same instance are
    safe.
    """

    def __init__(
        self,
        token_endpoint: str = DEFAULT_TOKEN_ENDPOINT,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the exchange client.

        Args:
            token_endpoint: Token endpoint URL
            timeout: HTTP request timeout in seconds
            http_client: Optional shared client, closed by the caller
        """
        self.token_endpoint = token_endpoint
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def exchange(
        self, instance_id: str, client_id: str, client_secret: str
    ) -> TokenResponse:
        """Exchange an instance id for an app identity token.

        Args:
            instance_id: Installation to obtain a token for
            client_id: Application id
            client_secret: Application secret

        Returns:
            TokenResponse: Successful response carrying an access_token

        Raises:
            TokenLifecycleError: REAUTHORIZATION_REQUIRED on 400/401,
                TOKEN_EXCHANGE_FAILED on any other failure
        """
        request = ClientCredentialsRequest(
            token_endpoint=self.token_endpoint,
            client_id=client_id,
            client_secret=client_secret,
            instance_id=instance_id,
        )

        logger.debug(
            f"Token request: grant_type={request.grant_type}, "
            f"client_id={client_id}, instance={mask_identifier(instance_id)}"
        )

        try:
            response = await self._http_client.post(
                request.token_endpoint,
                json=request.to_json_body(),
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise token_exchange_failed(
                f"HTTP error during token exchange: {e}", instance_id
            ) from e

        return self._parse_token_response(response, instance_id)

    def _parse_token_response(
        self, response: httpx.Response, instance_id: str
    ) -> TokenResponse:
        """Parse and classify a token endpoint response.

        Raises:
            TokenLifecycleError: When the response is not a usable success
        """
        status = response.status_code

        if status in INVALID_INSTANCE_STATUSES:
            logger.warning(
                f"Token endpoint rejected instance {mask_identifier(instance_id)} "
                f"with {status}"
            )
            raise reauthorization_required(instance_id, status_code=status)

        if not 200 <= status < 300:
            logger.warning(f"Token exchange failed with {status}")
            raise token_exchange_failed(
                f"Token endpoint returned {status}", instance_id, status_code=status
            )

        try:
            token_response = TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise token_exchange_failed(
                f"Invalid token response format: {e}", instance_id, status_code=status
            ) from e

        if not token_response.is_success():
            raise token_exchange_failed(
                "Token response missing required access_token",
                instance_id,
                status_code=status,
            )

        logger.info(f"Token exchange successful for {mask_identifier(instance_id)}")
        return token_response

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> TokenExchangeClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
