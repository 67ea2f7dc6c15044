"""
SigBridge Models

ORM models (database tables):
    from sigbridge.models import TransportRule, DeploymentLog
    from sigbridge.models.orm import TransportRule, DeploymentLog

Value objects and API schemas:
    from sigbridge.models import RuleSpec, DeploymentResult
    from sigbridge.models.models import RuleSpec, DeploymentResult
"""

# ORM models (database tables)
from sigbridge.models.orm import (
    Base,
    Organization,
    AzureSettings,
    TransportRule,
    PowerShellScript,
    DeploymentLog,
)

# Value objects and API schemas
from sigbridge.models.models import (
    DISCLAIMER_MAX_LENGTH,
    RULE_NAME_MAX_LENGTH,
    AccessToken,
    DeploymentLogEntry,
    DeploymentResult,
    ProbeResult,
    RemoteTransportRule,
    RuleListResult,
    RuleSpec,
    ScriptGenerationResult,
    TenantCredential,
    TenantCredentialPublic,
    TenantCredentialUpdate,
    TransportRulePublic,
)

# Enums
from sigbridge.models.enums import (
    DeploymentPhase,
    DeploymentStatus,
    DisclaimerLocation,
    FallbackAction,
    LogStatus,
    RuleScope,
    ScriptOperation,
    ScriptStatus,
    TokenScope,
)

__all__ = [
    # ORM
    "Base",
    "Organization",
    "AzureSettings",
    "TransportRule",
    "PowerShellScript",
    "DeploymentLog",
    # Value objects / schemas
    "DISCLAIMER_MAX_LENGTH",
    "RULE_NAME_MAX_LENGTH",
    "AccessToken",
    "DeploymentLogEntry",
    "DeploymentResult",
    "ProbeResult",
    "RemoteTransportRule",
    "RuleListResult",
    "RuleSpec",
    "ScriptGenerationResult",
    "TenantCredential",
    "TenantCredentialPublic",
    "TenantCredentialUpdate",
    "TransportRulePublic",
    # Enums
    "DeploymentPhase",
    "DeploymentStatus",
    "DisclaimerLocation",
    "FallbackAction",
    "LogStatus",
    "RuleScope",
    "ScriptOperation",
    "ScriptStatus",
    "TokenScope",
]
