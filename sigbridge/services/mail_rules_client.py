"""
Mail Rules Client
REST client for the directory / mail management API

Paths come from settings, not constants: whether the transport rule surface
can be driven at all is only discovered from the responses at call time.
"""

import logging
from typing import Any

import aiohttp

from sigbridge.config import Settings, get_settings
from sigbridge.errors import (
    AuthenticationError,
    AuthorizationError,
    NetworkError,
    RemoteAPIError,
    UnsupportedOperationError,
)
from sigbridge.models.models import AccessToken, RemoteTransportRule, RuleSpec

logger = logging.getLogger(__name__)

UNSUPPORTED_STATUS_CODES = {405, 501}


class MailRulesClient:
    """
    Client for organization metadata and transport rule resources

    Every call takes the bearer token explicitly; the client holds no
    credential state and can be shared.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.timeout = aiohttp.ClientTimeout(total=self.settings.http_timeout_seconds)
        self.base_url = self.settings.graph_base_url.rstrip("/")

    @property
    def rules_url(self) -> str:
        return f"{self.base_url}{self.settings.transport_rules_path}"

    @property
    def organization_url(self) -> str:
        return f"{self.base_url}{self.settings.organization_path}"

    async def get_organization(self, token: AccessToken) -> dict:
        """Read organization metadata (first entry of the collection)."""
        data = await self._request("GET", self.organization_url, token, operation="read_organization")
        if isinstance(data, dict) and "value" in data:
            data = data["value"]
        if isinstance(data, list):
            data = data[0] if data else {}
        if not isinstance(data, dict):
            raise RemoteAPIError("read_organization returned an unexpected response body")
        return data

    async def list_rules(self, token: AccessToken) -> list[RemoteTransportRule]:
        """
        List every transport rule in the tenant.

        Follows @odata.nextLink until the last page so a name lookup sees the
        whole collection.
        """
        rules = []
        url = self.rules_url
        seen = set()
        while url:
            seen.add(url)
            data = await self._request("GET", url, token, operation="list_transport_rules", collection=True)
            if not isinstance(data, dict):
                raise RemoteAPIError("list_transport_rules returned an unexpected response body")

            page = data.get("value", [])
            if not isinstance(page, list):
                raise RemoteAPIError("list_transport_rules returned an unexpected response body")
            rules.extend(RemoteTransportRule.model_validate(item) for item in page)

            url = data.get("@odata.nextLink")
            if url in seen:
                raise RemoteAPIError("list_transport_rules returned a paging link that repeats")
        return rules

    async def find_rules_by_name(self, token: AccessToken, name: str) -> list[RemoteTransportRule]:
        """All remote rules whose name equals name exactly (case-sensitive)."""
        return [rule for rule in await self.list_rules(token) if rule.name == name]

    async def create_rule(self, token: AccessToken, spec: RuleSpec) -> str:
        """
        Create a transport rule.

        Returns:
            The remote identifier assigned to the new rule
        """
        data = await self._request(
            "POST",
            self.rules_url,
            token,
            operation="create_transport_rule",
            json=spec.to_remote_body(),
            collection=True,
        )
        rule_id = data.get("id") if isinstance(data, dict) else None
        if not rule_id:
            raise RemoteAPIError("Create response did not include a rule id")
        return str(rule_id)

    async def update_rule(self, token: AccessToken, rule_id: str, spec: RuleSpec) -> str:
        """
        Replace an existing rule with the full desired body.

        Returns:
            The (unchanged) remote identifier
        """
        await self._request(
            "PUT",
            f"{self.rules_url}/{rule_id}",
            token,
            operation="update_transport_rule",
            json=spec.to_remote_body(),
        )
        return rule_id

    async def delete_rule(self, token: AccessToken, rule_id: str) -> None:
        """Delete a transport rule by remote identifier."""
        await self._request(
            "DELETE",
            f"{self.rules_url}/{rule_id}",
            token,
            operation="delete_transport_rule",
        )

    async def _request(
        self,
        method: str,
        url: str,
        token: AccessToken,
        operation: str,
        json: dict | None = None,
        collection: bool = False,
    ) -> Any:
        """
        Make one authenticated request and classify the outcome.

        Args:
            method: HTTP method
            url: Absolute URL
            token: Bearer token
            operation: Operation name for errors and logs
            json: Optional JSON body
            collection: True when url is the rule collection (404 means unsupported)

        Returns:
            Decoded JSON body ({} for empty responses)
        """
        headers = {
            **token.authorization_header,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, url, headers=headers, json=json) as response:
                    if response.status == 204:
                        return {}

                    try:
                        data = await response.json(content_type=None)
                    except ValueError:
                        data = {}

                    if 200 <= response.status < 300:
                        logger.debug(f"{operation} succeeded (status={response.status})")
                        return data if data is not None else {}

                    self._raise_for_error(response.status, data, operation, collection)

        except aiohttp.ClientError as e:
            logger.warning(f"Network error during {operation}: {str(e)}")
            raise NetworkError(f"Network error during {operation}: {str(e)}") from e

        except TimeoutError as e:
            logger.warning(f"{operation} timed out")
            raise NetworkError(f"{operation} timed out", error_code="TIMEOUT") from e

    def _raise_for_error(self, status: int, data: Any, operation: str, collection: bool) -> None:
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            error_code = error.get("code") or ""
            error_msg = error.get("message") or f"HTTP {status}"
        else:
            error_code = error if isinstance(error, str) else ""
            error_msg = f"HTTP {status}"

        logger.warning(f"{operation} failed (status={status}, code={error_code or '-'}): {error_msg}")

        if (
            status in UNSUPPORTED_STATUS_CODES
            or (status == 404 and collection)
            or error_code in self.settings.unsupported_error_codes
        ):
            raise UnsupportedOperationError(
                f"{operation} is not supported by the remote API: {error_msg}",
                operation=operation,
            )

        if status == 401:
            raise AuthenticationError(f"Access token was rejected: {error_msg}")

        if status == 403:
            raise AuthorizationError(
                f"Insufficient permissions for {operation}: {error_msg}",
                resource_type="transport_rule" if "transport_rule" in operation else "organization",
            )

        raise RemoteAPIError(f"{operation} failed: {error_msg}", status_code=status)
