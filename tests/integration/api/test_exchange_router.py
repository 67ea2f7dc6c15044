"""
Integration tests for the Exchange API router

Drives the FastAPI app over ASGI with the connector factory and database
session dependencies pointed at the per-test SQLite database and fakes.
"""

from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from sigbridge.core.database import get_db
from sigbridge.main import create_app
from sigbridge.routers.exchange import get_connector_factory

pytestmark = pytest.mark.integration

TENANT_ID = "6f0c2a9e-1f7b-4c1e-9a56-3b1f2c4d5e6f"
CLIENT_ID = "0a1b2c3d-4e5f-6a7b-8c9d-0e1f2a3b4c5d"
SETTINGS_BODY = {
    "tenant_id": TENANT_ID,
    "client_id": CLIENT_ID,
    "client_secret": "router~secret~value~4321",
    "connection_enabled": True,
}
RULE_BODY = {
    "name": "Contoso Signature",
    "description": "Company-wide disclaimer",
    "disclaimer_html": "<p>Contoso Ltd &mdash; \"Confidential\"</p>",
}


@pytest_asyncio.fixture
async def client(connector_factory, session_factory):
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_connector_factory] = lambda: connector_factory
    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


@pytest.fixture
def base_url(org_id) -> str:
    return f"/api/organizations/{org_id}/exchange"


@pytest_asyncio.fixture
async def configured(client, base_url):
    response = await client.put(f"{base_url}/settings", json=SETTINGS_BODY)
    assert response.status_code == 200
    return base_url


class TestSettingsEndpoints:

    @pytest.mark.asyncio
    async def test_settings_round_trip_masks_secret(self, client, configured):
        response = await client.get(f"{configured}/settings")

        assert response.status_code == 200
        data = response.json()
        assert data["tenant_id"] == TENANT_ID
        assert data["client_secret_masked"] == "********4321"
        assert "router~secret" not in response.text

    @pytest.mark.asyncio
    async def test_unconfigured_settings(self, client, base_url):
        response = await client.get(f"{base_url}/settings")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_malformed_settings_are_rejected(self, client, base_url):
        response = await client.put(f"{base_url}/settings", json={**SETTINGS_BODY, "client_id": "c1"})

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "VALIDATION_ERROR"


class TestConnectionEndpoint:

    @pytest.mark.asyncio
    async def test_connection_test(self, client, configured):
        response = await client.post(f"{configured}/test")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["details"]["organizationName"] == "Contoso"

    @pytest.mark.asyncio
    async def test_not_configured(self, client, base_url):
        response = await client.post(f"{base_url}/test")

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "CONNECTOR_NOT_CONFIGURED"


class TestRuleEndpoints:

    @pytest.mark.asyncio
    async def test_deploy_rule(self, client, configured, fake_remote):
        response = await client.post(f"{configured}/rules", json=RULE_BODY)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["deploymentStatus"] == "deployed"
        assert data["ruleId"] in fake_remote.tenant_rules(TENANT_ID)

    @pytest.mark.asyncio
    async def test_invalid_rule_name(self, client, configured, fake_remote):
        response = await client.post(f"{configured}/rules", json={**RULE_BODY, "name": "x" * 65})

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "VALIDATION_ERROR"
        assert fake_remote.calls == []

    @pytest.mark.asyncio
    async def test_remote_failure_is_a_result_not_an_error(self, client, configured, fake_remote):
        fake_remote.network_down = True

        response = await client.post(f"{configured}/rules", json=RULE_BODY)

        assert response.status_code == 200
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_list_and_delete(self, client, configured):
        await client.post(f"{configured}/rules", json=RULE_BODY)

        listed = await client.get(f"{configured}/rules")
        deleted = await client.delete(f"{configured}/rules/Contoso Signature")

        assert listed.status_code == 200
        assert listed.json()["source"] == "remote"
        assert [rule["name"] for rule in listed.json()["remote_rules"]] == ["Contoso Signature"]
        assert deleted.status_code == 200
        assert deleted.json()["deploymentStatus"] == "deleted"

    @pytest.mark.asyncio
    async def test_listing_network_failure(self, client, configured, fake_remote):
        fake_remote.network_down = True

        response = await client.get(f"{configured}/rules")

        assert response.status_code == 504


class TestScriptDownload:

    @pytest.mark.asyncio
    async def test_download_generated_script(self, client, configured, fake_remote):
        fake_remote.unsupported = {"create"}
        deployed = await client.post(f"{configured}/rules", json=RULE_BODY)
        script_id = deployed.json()["scriptId"]

        response = await client.get(f"{configured}/scripts/{script_id}")

        assert "manual execution" in deployed.json()["message"].lower()
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["content-disposition"] == 'attachment; filename="Contoso_Signature.ps1"'
        assert "New-TransportRule" in response.text

    @pytest.mark.asyncio
    async def test_unknown_script(self, client, configured):
        response = await client.get(f"{configured}/scripts/{uuid4()}")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_scripts_of_other_organizations_are_hidden(self, client, configured, fake_remote):
        fake_remote.unsupported = {"create"}
        deployed = await client.post(f"{configured}/rules", json=RULE_BODY)

        response = await client.get(
            f"/api/organizations/{uuid4()}/exchange/scripts/{deployed.json()['scriptId']}"
        )

        assert response.status_code == 404


class TestLogEndpoint:

    @pytest.mark.asyncio
    async def test_logs_newest_first(self, client, configured):
        await client.post(f"{configured}/test")
        await client.post(f"{configured}/rules", json=RULE_BODY)

        response = await client.get(f"{configured}/logs")

        assert response.status_code == 200
        operations = [entry["operation"] for entry in response.json()]
        assert operations == ["deploy_transport_rule", "test_connection"]

    @pytest.mark.asyncio
    async def test_logs_limit(self, client, configured):
        await client.post(f"{configured}/test")
        await client.post(f"{configured}/test")

        response = await client.get(f"{configured}/logs", params={"limit": 1})

        assert len(response.json()) == 1

    @pytest.mark.asyncio
    async def test_limit_must_be_positive(self, client, configured):
        response = await client.get(f"{configured}/logs", params={"limit": 0})

        assert response.status_code == 422


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_detailed_health(self, client):
        response = await client.get("/health/detailed")

        assert response.status_code == 200
        assert response.json()["components"]["database"]["status"] == "healthy"
