"""
OAuth Provider Client
Handles HTTP communication with the identity provider for the client credentials flow
"""

import logging
from datetime import datetime, timedelta

import aiohttp

from sigbridge.errors import AuthenticationError, TokenEndpointUnreachableError

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


class OAuthProviderClient:
    """
    Client for the OAuth 2.0 client credentials exchange

    Features:
    - Client credentials flow (service-to-service)
    - Timeout handling
    - Fail-fast: a rejected or unreachable exchange raises immediately, no retries
    """

    def __init__(self, timeout: int = 30):
        """
        Initialize OAuth provider client

        Args:
            timeout: Request timeout in seconds (default: 30)
        """
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        logger.debug(f"OAuthProviderClient initialized (timeout={timeout}s)")

    async def get_client_credentials_token(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        scopes: str = "",
        tenant_id: str | None = None,
    ) -> dict:
        """
        Get token using client credentials flow

        Args:
            token_url: Identity provider's token endpoint
            client_id: Application (client) ID
            client_secret: Client secret
            scopes: Space or comma-separated list of scopes
            tenant_id: Tenant the token is requested for (error context only)

        Returns:
            Parsed token data: access_token, token_type, scope, expires_at

        Raises:
            AuthenticationError: The provider rejected the exchange
            TokenEndpointUnreachableError: Timeout or connection failure
        """
        payload = {
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
        }

        if scopes:
            # Normalize scopes to space-separated (OAuth 2.0 standard)
            payload["scope"] = scopes.replace(",", " ")

        logger.info(f"Requesting client credentials token at {token_url}")

        return await self._make_token_request(token_url, payload, tenant_id)

    async def _make_token_request(
        self,
        token_url: str,
        payload: dict,
        tenant_id: str | None,
    ) -> dict:
        """
        Make a single token request

        Args:
            token_url: Token endpoint URL
            payload: Form-encoded request payload
            tenant_id: Tenant identifier for error context

        Returns:
            Parsed token data
        """
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    token_url,
                    data=payload,
                    headers={"Content-Type": "application/x-www-form-urlencoded"}
                ) as response:
                    try:
                        response_data = await response.json(content_type=None)
                    except ValueError:
                        response_data = {}
                    if not isinstance(response_data, dict):
                        response_data = {}

                    if 200 <= response.status < 300:
                        if not response_data.get("access_token"):
                            raise AuthenticationError(
                                "Token response did not contain an access token",
                                tenant_id=tenant_id,
                            )
                        logger.info(f"Token request successful (status={response.status})")
                        return self._parse_token_response(response_data)

                    error_msg = (
                        response_data.get("error_description")
                        or response_data.get("error")
                        or f"HTTP {response.status}"
                    )
                    logger.error(f"Token request failed (status={response.status}): {error_msg}")
                    raise AuthenticationError(
                        f"Identity provider rejected the credential exchange: {error_msg}",
                        tenant_id=tenant_id,
                    )

        except aiohttp.ClientError as e:
            logger.warning(f"Network error during token request: {str(e)}")
            raise TokenEndpointUnreachableError(
                f"Token endpoint unreachable: {str(e)}",
                tenant_id=tenant_id,
            ) from e

        except TimeoutError as e:
            logger.warning("Token request timed out")
            raise TokenEndpointUnreachableError(
                "Token request timed out",
                tenant_id=tenant_id,
            ) from e

    def _parse_token_response(self, response_data: dict) -> dict:
        """
        Parse token response and calculate expiration

        Args:
            response_data: Response JSON from the identity provider

        Returns:
            Parsed token data with expires_at datetime
        """
        result = {
            "access_token": response_data.get("access_token"),
            "token_type": response_data.get("token_type", "Bearer"),
            "scope": response_data.get("scope", ""),
        }

        # Calculate expires_at from expires_in (seconds)
        expires_in = response_data.get("expires_in")
        if expires_in:
            result["expires_at"] = datetime.utcnow() + timedelta(seconds=int(expires_in))
        else:
            logger.warning("Token response missing expires_in, defaulting to 1 hour")
            result["expires_at"] = datetime.utcnow() + timedelta(seconds=DEFAULT_EXPIRES_IN)

        logger.debug(f"Parsed token response: expires_at={result['expires_at']}")

        return result
