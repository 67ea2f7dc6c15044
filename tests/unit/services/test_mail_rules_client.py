"""
Unit tests for MailRulesClient
Tests request construction and remote error classification with mocked HTTP
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from sigbridge.errors import (
    AuthenticationError,
    AuthorizationError,
    NetworkError,
    RemoteAPIError,
    UnsupportedOperationError,
)
from sigbridge.models.enums import MessageType
from sigbridge.models.models import AccessToken
from sigbridge.services.mail_rules_client import MailRulesClient
from tests.helpers.data import make_spec


@pytest.fixture
def client(test_settings):
    return MailRulesClient(settings=test_settings)


@pytest.fixture
def token():
    return AccessToken(
        value="bearer-value",
        scope="https://outlook.office365.com/.default",
        expires_at=datetime.utcnow() + timedelta(hours=1),
        tenant_id="tenant-1",
        client_id="client-1",
    )


def _mock_session(status: int, body=None, request_side_effect=None):
    """Build a mocked aiohttp session whose request() returns one response."""
    mock_response = MagicMock()
    mock_response.status = status
    mock_response.json = AsyncMock(return_value=body)

    mock_request_context = MagicMock()
    mock_request_context.__aenter__ = AsyncMock(return_value=mock_response)
    mock_request_context.__aexit__ = AsyncMock(return_value=None)

    mock_session = MagicMock()
    if request_side_effect is not None:
        mock_session.request = MagicMock(side_effect=request_side_effect)
    else:
        mock_session.request = MagicMock(return_value=mock_request_context)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)
    return mock_session


def _mock_paged_session(*bodies):
    """Build a mocked aiohttp session whose request() returns one 200 response per body, in order."""
    contexts = []
    for body in bodies:
        mock_response = MagicMock()
        mock_response.status = 200
        mock_response.json = AsyncMock(return_value=body)

        mock_request_context = MagicMock()
        mock_request_context.__aenter__ = AsyncMock(return_value=mock_response)
        mock_request_context.__aexit__ = AsyncMock(return_value=None)
        contexts.append(mock_request_context)

    mock_session = MagicMock()
    mock_session.request = MagicMock(side_effect=contexts)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)
    return mock_session


class TestSuccessfulCalls:
    """Test request construction and response parsing"""

    @pytest.mark.asyncio
    async def test_list_rules(self, client, token):
        body = {"value": [
            {"id": "r1", "name": "Signature", "state": "Enabled", "priority": 0},
            {"id": "r2", "name": "Other"},
        ]}

        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session = _mock_session(200, body)
            mock_session_class.return_value = mock_session

            rules = await client.list_rules(token)

        assert [rule.id for rule in rules] == ["r1", "r2"]
        method, url = mock_session.request.call_args[0]
        assert method == "GET"
        assert url == client.rules_url
        headers = mock_session.request.call_args[1]["headers"]
        assert headers["Authorization"] == "Bearer bearer-value"

    @pytest.mark.asyncio
    async def test_find_rules_by_name_is_exact(self, client, token):
        body = {"value": [
            {"id": "r1", "name": "Signature"},
            {"id": "r2", "name": "signature"},
            {"id": "r3", "name": "Signature"},
        ]}

        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_session(200, body)

            matches = await client.find_rules_by_name(token, "Signature")

        assert [rule.id for rule in matches] == ["r1", "r3"]

    @pytest.mark.asyncio
    async def test_create_rule_posts_full_body(self, client, token):
        spec = make_spec(html='<p>"Quoted"</p>')

        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session = _mock_session(201, {"id": "new-rule"})
            mock_session_class.return_value = mock_session

            rule_id = await client.create_rule(token, spec)

        assert rule_id == "new-rule"
        method, url = mock_session.request.call_args[0]
        assert method == "POST"
        assert url == client.rules_url
        sent = mock_session.request.call_args[1]["json"]
        assert sent["name"] == spec.name
        assert sent["applyHtmlDisclaimerText"] == '<p>"Quoted"</p>'

    @pytest.mark.asyncio
    async def test_create_rule_sends_conditions(self, client, token):
        spec = make_spec(
            sender_domains=("contoso.com",),
            recipient_domains=("fabrikam.com",),
            subject_words=("Invoice", "Quote"),
            message_type=MessageType.AUTO_FORWARD,
        )

        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session = _mock_session(201, {"id": "new-rule"})
            mock_session_class.return_value = mock_session

            await client.create_rule(token, spec)

        sent = mock_session.request.call_args[1]["json"]
        assert sent["senderDomainIs"] == ["contoso.com"]
        assert sent["recipientDomainIs"] == ["fabrikam.com"]
        assert sent["subjectContainsWords"] == ["Invoice", "Quote"]
        assert sent["messageTypeMatches"] == "AutoForward"
        assert "fromAddressContainsWords" not in sent

    @pytest.mark.asyncio
    async def test_create_without_id_is_an_error(self, client, token):
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_session(201, {})

            with pytest.raises(RemoteAPIError):
                await client.create_rule(token, make_spec())

    @pytest.mark.asyncio
    async def test_update_rule_puts_to_rule_url(self, client, token):
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session = _mock_session(204)
            mock_session_class.return_value = mock_session

            rule_id = await client.update_rule(token, "r1", make_spec())

        assert rule_id == "r1"
        method, url = mock_session.request.call_args[0]
        assert method == "PUT"
        assert url == f"{client.rules_url}/r1"

    @pytest.mark.asyncio
    async def test_delete_rule(self, client, token):
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session = _mock_session(204)
            mock_session_class.return_value = mock_session

            await client.delete_rule(token, "r1")

        method, url = mock_session.request.call_args[0]
        assert method == "DELETE"
        assert url == f"{client.rules_url}/r1"

    @pytest.mark.asyncio
    async def test_get_organization_returns_first_entry(self, client, token):
        body = {"value": [{"id": "org-1", "displayName": "Contoso"}]}

        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_session(200, body)

            organization = await client.get_organization(token)

        assert organization["displayName"] == "Contoso"


class TestErrorClassification:
    """Test mapping of remote failures to connector errors"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [405, 501])
    async def test_method_not_supported(self, client, token, status):
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_session(status, {})

            with pytest.raises(UnsupportedOperationError) as exc_info:
                await client.create_rule(token, make_spec())

        assert exc_info.value.operation == "create_transport_rule"

    @pytest.mark.asyncio
    async def test_missing_collection_is_unsupported(self, client, token):
        """A 404 on the rule collection means the surface does not exist"""
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_session(
                404, {"error": {"code": "ResourceNotFound", "message": "Resource not found"}}
            )

            with pytest.raises(UnsupportedOperationError):
                await client.list_rules(token)

    @pytest.mark.asyncio
    async def test_missing_single_rule_is_not_unsupported(self, client, token):
        """A 404 on one rule is an ordinary remote error"""
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_session(
                404, {"error": {"code": "ResourceNotFound", "message": "Rule not found"}}
            )

            with pytest.raises(RemoteAPIError) as exc_info:
                await client.delete_rule(token, "missing")

        assert not isinstance(exc_info.value, UnsupportedOperationError)
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_unsupported_error_code(self, client, token):
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_session(
                400, {"error": {"code": "BadRequest_UnsupportedResource", "message": "nope"}}
            )

            with pytest.raises(UnsupportedOperationError):
                await client.update_rule(token, "r1", make_spec())

    @pytest.mark.asyncio
    async def test_unauthorized(self, client, token):
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_session(
                401, {"error": {"code": "InvalidAuthenticationToken", "message": "Token expired"}}
            )

            with pytest.raises(AuthenticationError):
                await client.list_rules(token)

    @pytest.mark.asyncio
    async def test_forbidden(self, client, token):
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_session(
                403, {"error": {"code": "Authorization_RequestDenied", "message": "Insufficient privileges"}}
            )

            with pytest.raises(AuthorizationError) as exc_info:
                await client.get_organization(token)

        assert exc_info.value.resource_type == "organization"

    @pytest.mark.asyncio
    async def test_server_error(self, client, token):
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_session(500, {})

            with pytest.raises(RemoteAPIError) as exc_info:
                await client.list_rules(token)

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_connection_error(self, client, token):
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_session(
                200, request_side_effect=aiohttp.ClientConnectionError("refused")
            )

            with pytest.raises(NetworkError):
                await client.list_rules(token)

    @pytest.mark.asyncio
    async def test_timeout(self, client, token):
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_session(200, request_side_effect=TimeoutError())

            with pytest.raises(NetworkError) as exc_info:
                await client.create_rule(token, make_spec())

        assert exc_info.value.error_code == "TIMEOUT"


class TestPaging:
    """Test that the whole rule collection is read"""

    @pytest.mark.asyncio
    async def test_list_rules_follows_next_link(self, client, token):
        next_link = f"{client.rules_url}?$skiptoken=page2"
        page_one = {"value": [{"id": "r1", "name": "Other"}], "@odata.nextLink": next_link}
        page_two = {"value": [{"id": "r2", "name": "Contoso Signature"}]}

        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session = _mock_paged_session(page_one, page_two)
            mock_session_class.return_value = mock_session

            rules = await client.list_rules(token)

        assert [rule.id for rule in rules] == ["r1", "r2"]
        urls = [call[0][1] for call in mock_session.request.call_args_list]
        assert urls == [client.rules_url, next_link]

    @pytest.mark.asyncio
    async def test_find_sees_rules_on_later_pages(self, client, token):
        next_link = f"{client.rules_url}?$skiptoken=page2"
        page_one = {"value": [{"id": "r1", "name": "Contoso Signature"}], "@odata.nextLink": next_link}
        page_two = {"value": [{"id": "r2", "name": "Contoso Signature"}]}

        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_paged_session(page_one, page_two)

            matches = await client.find_rules_by_name(token, "Contoso Signature")

        assert [rule.id for rule in matches] == ["r1", "r2"]

    @pytest.mark.asyncio
    async def test_repeating_next_link_is_an_error(self, client, token):
        page = {"value": [], "@odata.nextLink": f"{client.rules_url}?$skiptoken=loop"}

        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_paged_session(page, page)

            with pytest.raises(RemoteAPIError):
                await client.list_rules(token)


class TestUnexpectedBodies:
    """Test response bodies that are not JSON objects"""

    @pytest.mark.asyncio
    async def test_bare_array_rule_listing(self, client, token):
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_session(200, [{"id": "r1", "name": "Signature"}])

            with pytest.raises(RemoteAPIError):
                await client.list_rules(token)

    @pytest.mark.asyncio
    async def test_bare_array_organization(self, client, token):
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_session(200, [{"id": "org-1", "displayName": "Contoso"}])

            organization = await client.get_organization(token)

        assert organization["id"] == "org-1"

    @pytest.mark.asyncio
    async def test_scalar_organization(self, client, token):
        with patch('aiohttp.ClientSession') as mock_session_class:
            mock_session_class.return_value = _mock_session(200, ["not-an-object"])

            with pytest.raises(RemoteAPIError):
                await client.get_organization(token)
