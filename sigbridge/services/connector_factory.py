"""
Connector Factory

Builds an ExchangeConnector bound to exactly one organization's tenant
credential. The TokenManager, REST client and audit log are shared; the
token view, probe, reconciler and script generator a connector gets can
only act for its own tenant.
"""

import logging
import re
from uuid import UUID

from cryptography.fernet import InvalidToken
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sigbridge.config import Settings, get_settings
from sigbridge.core.database import get_session_factory
from sigbridge.errors import ConnectorNotConfiguredError, ValidationError
from sigbridge.models.models import (
    DeploymentLogEntry,
    DeploymentResult,
    ProbeResult,
    RuleListResult,
    RuleSpec,
    TenantCredential,
    TenantCredentialPublic,
    TenantCredentialUpdate,
)
from sigbridge.repositories.credentials import TenantCredentialRepository
from sigbridge.services.audit_log import DeploymentAuditLog, get_audit_log
from sigbridge.services.connection_probe import ConnectionProbe
from sigbridge.services.fallback_script import FallbackScriptGenerator
from sigbridge.services.mail_rules_client import MailRulesClient
from sigbridge.services.rule_reconciler import RuleReconciler
from sigbridge.services.token_manager import TenantTokenProvider, TokenManager, get_token_manager

logger = logging.getLogger(__name__)

GUID_PATTERN = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
DOMAIN_PATTERN = re.compile(
    r"^(?=.{4,253}$)([A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?\.)+[A-Za-z]{2,63}$"
)


def validate_tenant_settings(
    tenant_id: str,
    client_id: str,
    client_secret: str | None,
    check_format: bool = True,
) -> list[str]:
    """
    Problems with tenant credential values (empty list when valid).

    The tenant id is a directory GUID or a verified domain
    (e.g. contoso.onmicrosoft.com); the client id is an application GUID.
    A secret of None is not checked (kept from the stored credential).
    With check_format=False only presence is checked.
    """
    errors = []
    tenant_id = (tenant_id or "").strip()
    client_id = (client_id or "").strip()

    if not tenant_id:
        errors.append("Tenant ID is required")
    elif check_format and not (GUID_PATTERN.match(tenant_id) or DOMAIN_PATTERN.match(tenant_id)):
        errors.append("Tenant ID must be a GUID or a domain name")

    if not client_id:
        errors.append("Client ID is required")
    elif check_format and not GUID_PATTERN.match(client_id):
        errors.append("Client ID must be a GUID")

    if client_secret is not None and not client_secret.strip():
        errors.append("Client secret must not be empty")

    return errors


class ExchangeConnector:
    """
    Everything needed to manage transport rules for one tenant.
    """

    def __init__(
        self,
        organization_id: UUID,
        tokens: TenantTokenProvider,
        probe: ConnectionProbe,
        reconciler: RuleReconciler,
        generator: FallbackScriptGenerator,
        audit_log: DeploymentAuditLog,
    ):
        self.organization_id = organization_id
        self.tokens = tokens
        self.probe = probe
        self.reconciler = reconciler
        self.generator = generator
        self.audit_log = audit_log

    @property
    def tenant_id(self) -> str:
        return self.tokens.tenant_id

    async def test_connection(self) -> ProbeResult:
        return await self.probe.test()

    async def deploy(self, spec: RuleSpec) -> DeploymentResult:
        return await self.reconciler.deploy(spec)

    async def delete(self, rule_name: str) -> DeploymentResult:
        return await self.reconciler.delete(rule_name)

    async def list_rules(self) -> RuleListResult:
        return await self.reconciler.list_rules()

    async def list_logs(self, limit: int = 50) -> list[DeploymentLogEntry]:
        return await self.audit_log.list(self.tenant_id, limit, organization_id=self.organization_id)


class ConnectorFactory:
    """
    Creates tenant-bound connectors from stored credentials.
    """

    def __init__(
        self,
        token_manager: TokenManager | None = None,
        client: MailRulesClient | None = None,
        audit_log: DeploymentAuditLog | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.token_manager = token_manager or get_token_manager()
        self.client = client or MailRulesClient(self.settings)
        self.audit_log = audit_log or get_audit_log()
        self._session_factory = session_factory

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def create(self, organization_id: UUID) -> ExchangeConnector:
        """
        Load, validate and bind an organization's credential.

        Raises:
            ConnectorNotConfiguredError: No credential, connection disabled, or unreadable secret
            ValidationError: A stored credential value is missing
        """
        async with self._sessions()() as session:
            repo = TenantCredentialRepository(session, organization_id)
            try:
                credential = await repo.get_credential()
            except InvalidToken:
                logger.error(f"Stored client secret for organization {organization_id} could not be decrypted")
                raise ConnectorNotConfiguredError(
                    "Stored client secret could not be decrypted; re-enter the tenant credentials",
                    org_id=str(organization_id),
                ) from None

        if credential is None:
            raise ConnectorNotConfiguredError(
                "Exchange Online is not configured for this organization",
                org_id=str(organization_id),
            )

        return self.build(credential, organization_id)

    def build(self, credential: TenantCredential, organization_id: UUID) -> ExchangeConnector:
        """
        Compose a connector from an in-memory credential.

        Raises:
            ConnectorNotConfiguredError: The connection is disabled
            ValidationError: A credential value is missing
        """
        if not credential.connection_enabled:
            raise ConnectorNotConfiguredError(
                "Exchange Online connection is disabled for this organization",
                org_id=str(organization_id),
            )

        errors = validate_tenant_settings(
            credential.tenant_id, credential.client_id, credential.client_secret, check_format=False
        )
        if errors:
            raise ValidationError("Invalid tenant credentials: " + "; ".join(errors), errors=errors)

        tokens = self.token_manager.for_tenant(credential)
        generator = FallbackScriptGenerator(
            organization_id=organization_id,
            tenant_id=credential.tenant_id,
            session_factory=self._session_factory,
            audit_log=self.audit_log,
        )
        probe = ConnectionProbe(
            tokens=tokens,
            client=self.client,
            audit_log=self.audit_log,
            organization_id=organization_id,
        )
        reconciler = RuleReconciler(
            organization_id=organization_id,
            tokens=tokens,
            client=self.client,
            generator=generator,
            audit_log=self.audit_log,
            session_factory=self._session_factory,
            settings=self.settings,
        )

        logger.debug(f"Built connector for organization {organization_id} (tenant {credential.tenant_id})")
        return ExchangeConnector(
            organization_id=organization_id,
            tokens=tokens,
            probe=probe,
            reconciler=reconciler,
            generator=generator,
            audit_log=self.audit_log,
        )

    async def get_settings(self, organization_id: UUID) -> TenantCredentialPublic | None:
        """Stored credential with the secret masked."""
        async with self._sessions()() as session:
            return await TenantCredentialRepository(session, organization_id).get_public()

    async def update_settings(
        self,
        organization_id: UUID,
        update: TenantCredentialUpdate,
    ) -> TenantCredentialPublic:
        """
        Validate and store an organization's credential, then drop cached tokens.

        Raises:
            ValidationError: Malformed values, or no secret when none is stored yet
        """
        errors = validate_tenant_settings(update.tenant_id, update.client_id, update.client_secret)
        if errors:
            raise ValidationError("Invalid tenant credentials: " + "; ".join(errors), errors=errors)

        async with self._sessions()() as session:
            repo = TenantCredentialRepository(session, organization_id)
            previous = await repo.get_settings()
            previous_tenant = previous.tenant_id if previous is not None else None
            try:
                public = await repo.save_credential(update)
            except ValueError as e:
                raise ValidationError(str(e)) from e
            await session.commit()

        self.token_manager.invalidate(update.tenant_id.strip())
        if previous_tenant and previous_tenant != update.tenant_id.strip():
            self.token_manager.invalidate(previous_tenant)

        logger.info(f"Updated tenant credentials for organization {organization_id}")
        return public
