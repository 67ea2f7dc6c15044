"""
Unit tests for ConnectorFactory
Tests connector construction from stored credentials and credential updates
"""

from uuid import uuid4

import pytest

from sigbridge.errors import ConnectorNotConfiguredError, ValidationError
from sigbridge.models.enums import TokenScope
from sigbridge.models.models import TenantCredentialUpdate
from sigbridge.models.orm import AzureSettings
from sigbridge.services.connector_factory import validate_tenant_settings
from tests.helpers.data import make_credential

TENANT_ID = "6f0c2a9e-1f7b-4c1e-9a56-3b1f2c4d5e6f"
CLIENT_ID = "0a1b2c3d-4e5f-6a7b-8c9d-0e1f2a3b4c5d"


def _update(**overrides) -> TenantCredentialUpdate:
    values = {
        "tenant_id": TENANT_ID,
        "client_id": CLIENT_ID,
        "client_secret": "super~secret~value~1234",
        "connection_enabled": True,
    }
    values.update(overrides)
    return TenantCredentialUpdate(**values)


class TestValidateTenantSettings:

    def test_valid_guids(self):
        assert validate_tenant_settings(TENANT_ID, CLIENT_ID, "secret") == []

    def test_domain_tenant_id(self):
        assert validate_tenant_settings("contoso.onmicrosoft.com", CLIENT_ID, "secret") == []

    def test_malformed_values(self):
        errors = validate_tenant_settings("not a tenant", "not-a-guid", "secret")

        assert "Tenant ID must be a GUID or a domain name" in errors
        assert "Client ID must be a GUID" in errors

    def test_missing_values(self):
        errors = validate_tenant_settings("", " ", "  ")

        assert errors == [
            "Tenant ID is required",
            "Client ID is required",
            "Client secret must not be empty",
        ]

    def test_presence_only(self):
        assert validate_tenant_settings("t1", "c1", "bad", check_format=False) == []

    def test_omitted_secret_is_not_checked(self):
        assert validate_tenant_settings(TENANT_ID, CLIENT_ID, None) == []


class TestCreate:

    @pytest.mark.asyncio
    async def test_missing_credential(self, connector_factory, org_id):
        with pytest.raises(ConnectorNotConfiguredError) as exc_info:
            await connector_factory.create(org_id)

        assert exc_info.value.org_id == str(org_id)

    @pytest.mark.asyncio
    async def test_create_from_stored_credential(self, connector_factory, org_id):
        await connector_factory.update_settings(org_id, _update())

        connector = await connector_factory.create(org_id)

        assert connector.tenant_id == TENANT_ID
        assert connector.organization_id == org_id

    @pytest.mark.asyncio
    async def test_disabled_connection(self, connector_factory, org_id):
        await connector_factory.update_settings(org_id, _update(connection_enabled=False))

        with pytest.raises(ConnectorNotConfiguredError):
            await connector_factory.create(org_id)

    @pytest.mark.asyncio
    async def test_undecryptable_secret(self, connector_factory, org_id, session_factory):
        async with session_factory() as session:
            session.add(AzureSettings(
                organization_id=org_id,
                tenant_id=TENANT_ID,
                client_id=CLIENT_ID,
                encrypted_client_secret="bm90LWEtZmVybmV0LXRva2Vu",
                is_connected=True,
            ))
            await session.commit()

        with pytest.raises(ConnectorNotConfiguredError):
            await connector_factory.create(org_id)

    @pytest.mark.asyncio
    async def test_credentials_of_other_organizations_are_invisible(self, connector_factory, org_id):
        await connector_factory.update_settings(org_id, _update())

        with pytest.raises(ConnectorNotConfiguredError):
            await connector_factory.create(uuid4())

    def test_build_rejects_missing_values(self, connector_factory, org_id):
        with pytest.raises(ValidationError):
            connector_factory.build(make_credential(client_id=""), org_id)

    @pytest.mark.asyncio
    async def test_connectors_share_token_cache_but_not_tenants(self, connector_factory, org_id, fake_oauth):
        a = connector_factory.build(make_credential(), org_id)
        b = connector_factory.build(make_credential(), org_id)

        token_a = await a.tokens.get_token(TokenScope.MAIL_MANAGEMENT)
        token_b = await b.tokens.get_token(TokenScope.MAIL_MANAGEMENT)
        again = await connector_factory.build(
            make_credential(tenant_id=a.tenant_id, client_id=token_a.client_id), org_id
        ).tokens.get_token(TokenScope.MAIL_MANAGEMENT)

        assert token_a.tenant_id == a.tenant_id
        assert token_b.tenant_id == b.tenant_id
        assert again is token_a
        assert len(fake_oauth.calls) == 2


class TestSettings:

    @pytest.mark.asyncio
    async def test_get_settings_masks_secret(self, connector_factory, org_id):
        await connector_factory.update_settings(org_id, _update())

        public = await connector_factory.get_settings(org_id)

        assert public.tenant_id == TENANT_ID
        assert public.client_secret_masked == "********1234"
        assert "super" not in public.model_dump_json()

    @pytest.mark.asyncio
    async def test_get_settings_when_unconfigured(self, connector_factory, org_id):
        assert await connector_factory.get_settings(org_id) is None

    @pytest.mark.asyncio
    async def test_update_rejects_malformed_values(self, connector_factory, org_id):
        with pytest.raises(ValidationError) as exc_info:
            await connector_factory.update_settings(org_id, _update(client_id="c1"))

        assert "Client ID must be a GUID" in exc_info.value.errors
        assert await connector_factory.get_settings(org_id) is None

    @pytest.mark.asyncio
    async def test_first_update_requires_secret(self, connector_factory, org_id):
        with pytest.raises(ValidationError):
            await connector_factory.update_settings(org_id, _update(client_secret=None))

    @pytest.mark.asyncio
    async def test_omitted_secret_keeps_stored_one(self, connector_factory, org_id):
        await connector_factory.update_settings(org_id, _update())
        await connector_factory.update_settings(org_id, _update(client_secret=None, connection_enabled=False))

        public = await connector_factory.get_settings(org_id)

        assert public.client_secret_masked == "********1234"
        assert public.connection_enabled is False

    @pytest.mark.asyncio
    async def test_update_invalidates_cached_tokens(self, connector_factory, token_manager, org_id):
        await connector_factory.update_settings(org_id, _update())
        connector = await connector_factory.create(org_id)
        await connector.tokens.get_token(TokenScope.MAIL_MANAGEMENT)

        await connector_factory.update_settings(org_id, _update(client_secret="rotated~secret~5678"))

        assert token_manager.cached_token(TENANT_ID, TokenScope.MAIL_MANAGEMENT) is None

    @pytest.mark.asyncio
    async def test_tenant_change_invalidates_previous_tenant(self, connector_factory, token_manager, org_id):
        await connector_factory.update_settings(org_id, _update())
        connector = await connector_factory.create(org_id)
        await connector.tokens.get_token(TokenScope.DIRECTORY)

        await connector_factory.update_settings(org_id, _update(tenant_id="contoso.onmicrosoft.com"))

        assert token_manager.cached_token(TENANT_ID, TokenScope.DIRECTORY) is None


class TestLogScoping:

    @pytest.mark.asyncio
    async def test_logs_are_scoped_to_organization(self, connector_factory, credential, org_id):
        """Two organizations pointing at the same tenant only see their own entries"""
        own = connector_factory.build(credential, org_id)
        other = connector_factory.build(credential, uuid4())

        await own.test_connection()
        await other.test_connection()
        await other.test_connection()

        own_logs = await own.list_logs()
        other_logs = await other.list_logs()

        assert len(own_logs) == 1
        assert own_logs[0].organization_id == org_id
        assert len(other_logs) == 2
        assert all(entry.organization_id == other.organization_id for entry in other_logs)
