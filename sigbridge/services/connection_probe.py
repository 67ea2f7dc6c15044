"""
Connection Probe
Tests a tenant connection with one authenticated read of organization metadata
"""

import logging
from datetime import datetime
from uuid import UUID

from sigbridge.errors import (
    AuthenticationError,
    AuthorizationError,
    ConnectorError,
    NetworkError,
    RemoteAPIError,
)
from sigbridge.models.enums import LogStatus, TokenScope
from sigbridge.models.models import ProbeResult
from sigbridge.services.audit_log import DeploymentAuditLog, elapsed_ms
from sigbridge.services.mail_rules_client import MailRulesClient
from sigbridge.services.token_manager import TenantTokenProvider

logger = logging.getLogger(__name__)


class ConnectionProbe:
    """
    Service for testing a tenant connection

    Never mutates remote state. Failure messages tell authentication,
    authorization and network problems apart, since each needs a different fix.
    """

    def __init__(
        self,
        tokens: TenantTokenProvider,
        client: MailRulesClient,
        audit_log: DeploymentAuditLog,
        organization_id: UUID | None = None,
    ):
        self.tokens = tokens
        self.client = client
        self.audit_log = audit_log
        self.organization_id = organization_id

    async def test(self) -> ProbeResult:
        """
        Test the connection

        Returns:
            ProbeResult; details carry organization name, id and verified domains on success
        """
        start_time = datetime.utcnow()
        tenant_id = self.tokens.tenant_id
        logger.info(f"Testing connection for tenant {tenant_id}")

        try:
            token = await self.tokens.get_token(TokenScope.DIRECTORY)
            organization = await self.client.get_organization(token)
            if not isinstance(organization, dict):
                raise RemoteAPIError("Organization metadata was not an object")
            domains = organization.get("verifiedDomains")
            result = ProbeResult(
                success=True,
                message="Successfully connected to Exchange Online",
                details={
                    "organizationName": organization.get("displayName"),
                    "organizationId": organization.get("id"),
                    "domains": [
                        d["name"] for d in (domains if isinstance(domains, list) else [])
                        if isinstance(d, dict) and d.get("name")
                    ],
                },
            )

        except NetworkError as e:
            result = ProbeResult(
                success=False,
                message=f"Connection test failed: Network error - {e.message}",
                details={"error": e.error_code, "category": "network"},
            )

        except AuthenticationError as e:
            result = ProbeResult(
                success=False,
                message=f"Connection test failed: Authentication failed - {e.message}",
                details={"error": e.error_code, "category": "authentication"},
            )

        except AuthorizationError as e:
            result = ProbeResult(
                success=False,
                message=f"Connection test failed: Insufficient permissions - {e.message}",
                details={"error": e.error_code, "category": "authorization"},
            )

        except ConnectorError as e:
            result = ProbeResult(
                success=False,
                message=f"Connection test failed: {e.message}",
                details={"error": e.error_code, "category": "remote"},
            )

        if result.success:
            logger.info(f"Connection test successful for tenant {tenant_id}")
        else:
            logger.warning(f"{result.message} (tenant {tenant_id})")

        await self.audit_log.log(
            tenant_id=tenant_id,
            organization_id=self.organization_id,
            operation="test_connection",
            status=LogStatus.SUCCESS if result.success else LogStatus.ERROR,
            message=result.message,
            details=result.details,
            execution_time_ms=elapsed_ms(start_time),
        )
        return result
