# Data access layer - PostgreSQL repositories
from sigbridge.repositories.base import BaseRepository
from sigbridge.repositories.credentials import TenantCredentialRepository
from sigbridge.repositories.deployment_logs import DeploymentLogRepository
from sigbridge.repositories.org_scoped import OrgScopedRepository
from sigbridge.repositories.scripts import PowerShellScriptRepository
from sigbridge.repositories.transport_rules import TransportRuleRepository

__all__ = [
    "BaseRepository",
    "DeploymentLogRepository",
    "OrgScopedRepository",
    "PowerShellScriptRepository",
    "TenantCredentialRepository",
    "TransportRuleRepository",
]
