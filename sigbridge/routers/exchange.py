"""
Exchange Router

Transport rule deployment for one organization's Exchange Online tenant:
connection test, deploy / delete / list rules, audit log, generated script
download and tenant credential settings.
"""

import logging
import re
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response

from sigbridge.config import get_settings
from sigbridge.core.database import DbSession
from sigbridge.errors import (
    AuthenticationError,
    AuthorizationError,
    ConnectorError,
    ConnectorNotConfiguredError,
    NetworkError,
    RemoteStateError,
    ValidationError,
    error_to_dict,
)
from sigbridge.models.models import (
    DeploymentLogEntry,
    DeploymentResult,
    ProbeResult,
    RuleListResult,
    RuleSpec,
    TenantCredentialPublic,
    TenantCredentialUpdate,
)
from sigbridge.repositories.scripts import PowerShellScriptRepository
from sigbridge.services.connector_factory import ConnectorFactory, ExchangeConnector

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/organizations/{org_id}/exchange", tags=["Exchange"])

_factory: ConnectorFactory | None = None


def get_connector_factory() -> ConnectorFactory:
    """Dependency returning the process-wide ConnectorFactory."""
    global _factory
    if _factory is None:
        _factory = ConnectorFactory()
    return _factory


Factory = Annotated[ConnectorFactory, Depends(get_connector_factory)]


def _http_error(error: ConnectorError) -> HTTPException:
    """Map a connector error to an HTTP error response."""
    if isinstance(error, ValidationError):
        status_code = 422
    elif isinstance(error, ConnectorNotConfiguredError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, NetworkError):
        status_code = status.HTTP_504_GATEWAY_TIMEOUT
    elif isinstance(error, AuthenticationError):
        status_code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(error, AuthorizationError):
        status_code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, RemoteStateError):
        status_code = status.HTTP_409_CONFLICT
    else:
        status_code = status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=status_code, detail=error_to_dict(error))


async def _connector(factory: ConnectorFactory, org_id: UUID) -> ExchangeConnector:
    try:
        return await factory.create(org_id)
    except ConnectorError as e:
        raise _http_error(e) from e


# =============================================================================
# Connection
# =============================================================================


@router.post(
    "/test",
    response_model=ProbeResult,
    summary="Test connection",
    description="Authenticate against the tenant and read organization metadata",
)
async def test_connection(org_id: UUID, factory: Factory) -> ProbeResult:
    """Test the organization's Exchange Online connection."""
    connector = await _connector(factory, org_id)
    return await connector.test_connection()


# =============================================================================
# Transport rules
# =============================================================================


@router.post(
    "/rules",
    response_model=DeploymentResult,
    summary="Deploy transport rule",
    description="Create or update a disclaimer transport rule, or generate a script when the API cannot",
)
async def deploy_rule(org_id: UUID, spec: RuleSpec, factory: Factory) -> DeploymentResult:
    """
    Deploy a transport rule.

    The response shape is the same for live deployment and script fallback;
    the message says when manual execution is required.
    """
    connector = await _connector(factory, org_id)
    try:
        return await connector.deploy(spec)
    except ValidationError as e:
        raise _http_error(e) from e


@router.get(
    "/rules",
    response_model=RuleListResult,
    summary="List transport rules",
)
async def list_rules(org_id: UUID, factory: Factory) -> RuleListResult:
    """List rules from the tenant, or the locally tracked records when listing is unsupported."""
    connector = await _connector(factory, org_id)
    try:
        return await connector.list_rules()
    except ConnectorError as e:
        raise _http_error(e) from e


@router.delete(
    "/rules/{rule_name}",
    response_model=DeploymentResult,
    summary="Delete transport rule",
)
async def delete_rule(org_id: UUID, rule_name: str, factory: Factory) -> DeploymentResult:
    """Delete a transport rule by name."""
    connector = await _connector(factory, org_id)
    try:
        return await connector.delete(rule_name)
    except ValidationError as e:
        raise _http_error(e) from e


# =============================================================================
# Audit log
# =============================================================================


@router.get(
    "/logs",
    response_model=list[DeploymentLogEntry],
    summary="List deployment logs",
    description="Newest first",
)
async def list_logs(
    org_id: UUID,
    factory: Factory,
    limit: int = Query(default=50, ge=1),
) -> list[DeploymentLogEntry]:
    """List the tenant's audit entries."""
    connector = await _connector(factory, org_id)
    return await connector.list_logs(min(limit, get_settings().audit_log_max_limit))


# =============================================================================
# Generated scripts
# =============================================================================


@router.get(
    "/scripts/{script_id}",
    summary="Download PowerShell script",
    response_class=Response,
)
async def download_script(org_id: UUID, script_id: UUID, db: DbSession) -> Response:
    """Download a generated script as a .ps1 attachment."""
    script = await PowerShellScriptRepository(db, org_id).get_script(script_id)
    if not script:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Script not found",
        )

    filename = re.sub(r"[^a-zA-Z0-9]", "_", script.rule_name) or "transport_rule"
    return Response(
        content=script.script_content,
        media_type="text/plain",
        headers={"Content-Disposition": f'attachment; filename="{filename}.ps1"'},
    )


# =============================================================================
# Tenant credentials
# =============================================================================


@router.get(
    "/settings",
    response_model=TenantCredentialPublic,
    summary="Get tenant credentials",
    description="The client secret is only returned masked",
)
async def get_tenant_settings(org_id: UUID, factory: Factory) -> TenantCredentialPublic:
    """Get the organization's tenant credentials."""
    settings = await factory.get_settings(org_id)
    if settings is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant credentials not configured",
        )
    return settings


@router.put(
    "/settings",
    response_model=TenantCredentialPublic,
    summary="Update tenant credentials",
    description="Omit client_secret to keep the stored secret",
)
async def update_tenant_settings(
    org_id: UUID,
    request: TenantCredentialUpdate,
    factory: Factory,
) -> TenantCredentialPublic:
    """Create or update the organization's tenant credentials."""
    try:
        return await factory.update_settings(org_id, request)
    except ValidationError as e:
        raise _http_error(e) from e
