"""
Token Manager

One long-lived manager owns every cached bearer token, keyed by
(tenant_id, scope). Connectors never hold tokens themselves: they get a
TenantTokenProvider view bound to exactly one tenant's credential.

Tokens are refreshed lazily on the next request once they enter the safety
margin. Concurrent misses for the same key share a single exchange.
"""

import asyncio
import logging
from datetime import datetime

from sigbridge.config import Settings, get_settings
from sigbridge.errors import AuthenticationError
from sigbridge.models.enums import TokenScope
from sigbridge.models.models import AccessToken, TenantCredential
from sigbridge.services.oauth_provider import OAuthProviderClient

logger = logging.getLogger(__name__)

CacheKey = tuple[str, TokenScope]


class TokenManager:
    """
    Per-tenant, per-scope bearer token cache.

    The manager performs no audit writes; callers log the outcome of the
    operation that used the token.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        oauth_client: OAuthProviderClient | None = None,
    ):
        self.settings = settings or get_settings()
        self.oauth_client = oauth_client or OAuthProviderClient(
            timeout=self.settings.http_timeout_seconds
        )
        self._tokens: dict[CacheKey, AccessToken] = {}
        self._locks: dict[CacheKey, asyncio.Lock] = {}

    def provider_scope(self, scope: TokenScope) -> str:
        """Map a logical scope to the scope string sent to the identity provider."""
        if scope == TokenScope.DIRECTORY:
            return self.settings.directory_scope
        return self.settings.mail_management_scope

    async def get_token(self, credential: TenantCredential, scope: TokenScope) -> AccessToken:
        """
        Get a usable token for a tenant and scope.

        A cached token is reused only while it is outside the safety margin and
        was issued to the same client id and secret; otherwise a new exchange runs.

        Args:
            credential: Tenant credential to authenticate with
            scope: Logical scope

        Returns:
            AccessToken

        Raises:
            AuthenticationError: The provider rejected the exchange
            TokenEndpointUnreachableError: The token endpoint could not be reached
        """
        key = (credential.tenant_id, scope)

        cached = self._usable_cached(key, credential)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another caller may have refreshed while we waited
            cached = self._usable_cached(key, credential)
            if cached is not None:
                return cached

            logger.info(f"Acquiring {scope.value} token for tenant {credential.tenant_id}")
            token_data = await self.oauth_client.get_client_credentials_token(
                token_url=self.settings.token_url(credential.tenant_id),
                client_id=credential.client_id,
                client_secret=credential.client_secret,
                scopes=self.provider_scope(scope),
                tenant_id=credential.tenant_id,
            )

            token = AccessToken(
                value=token_data["access_token"],
                scope=self.provider_scope(scope),
                expires_at=token_data["expires_at"],
                tenant_id=credential.tenant_id,
                client_id=credential.client_id,
                credential_fingerprint=credential.fingerprint,
            )

            if not token.is_usable(self.settings.token_safety_margin_seconds):
                # expires_in shorter than the safety margin; the token would never be reused
                logger.warning(
                    f"Token for tenant {credential.tenant_id} expires within the safety margin"
                )

            self._tokens[key] = token
            return token

    def invalidate(self, tenant_id: str, scope: TokenScope | None = None) -> int:
        """
        Drop cached tokens for a tenant (all scopes unless one is given).

        Returns:
            Number of tokens dropped
        """
        keys = [
            key for key in self._tokens
            if key[0] == tenant_id and (scope is None or key[1] == scope)
        ]
        for key in keys:
            del self._tokens[key]
        if keys:
            logger.info(f"Invalidated {len(keys)} cached token(s) for tenant {tenant_id}")
        return len(keys)

    def clear(self) -> None:
        """Drop every cached token."""
        self._tokens.clear()

    def cached_token(self, tenant_id: str, scope: TokenScope) -> AccessToken | None:
        """Peek at the cache without refreshing."""
        return self._tokens.get((tenant_id, scope))

    def for_tenant(self, credential: TenantCredential) -> "TenantTokenProvider":
        """Return a view of this manager bound to one tenant's credential."""
        return TenantTokenProvider(self, credential)

    def _usable_cached(self, key: CacheKey, credential: TenantCredential) -> AccessToken | None:
        token = self._tokens.get(key)
        if token is None:
            return None
        if token.credential_fingerprint != credential.fingerprint:
            return None
        if not token.is_usable(self.settings.token_safety_margin_seconds, now=datetime.utcnow()):
            return None
        return token


class TenantTokenProvider:
    """
    A TokenManager view that can only ever return tokens for one tenant.
    """

    def __init__(self, manager: TokenManager, credential: TenantCredential):
        self._manager = manager
        self._credential = credential

    @property
    def tenant_id(self) -> str:
        return self._credential.tenant_id

    async def get_token(self, scope: TokenScope) -> AccessToken:
        token = await self._manager.get_token(self._credential, scope)
        if token.tenant_id != self._credential.tenant_id:
            raise AuthenticationError(
                "Token was issued to a different tenant",
                tenant_id=self._credential.tenant_id,
            )
        return token


_token_manager: TokenManager | None = None


def get_token_manager() -> TokenManager:
    """Get the process-wide TokenManager."""
    global _token_manager
    if _token_manager is None:
        _token_manager = TokenManager()
    return _token_manager


def reset_token_manager() -> None:
    """Drop the process-wide TokenManager (for testing)."""
    global _token_manager
    _token_manager = None
