# Connector services
from sigbridge.services.audit_log import DeploymentAuditLog, get_audit_log
from sigbridge.services.connection_probe import ConnectionProbe
from sigbridge.services.connector_factory import ConnectorFactory, ExchangeConnector
from sigbridge.services.fallback_script import FallbackScriptGenerator
from sigbridge.services.mail_rules_client import MailRulesClient
from sigbridge.services.oauth_provider import OAuthProviderClient
from sigbridge.services.rule_reconciler import RuleReconciler
from sigbridge.services.token_manager import TenantTokenProvider, TokenManager, get_token_manager

__all__ = [
    "ConnectionProbe",
    "ConnectorFactory",
    "DeploymentAuditLog",
    "ExchangeConnector",
    "FallbackScriptGenerator",
    "MailRulesClient",
    "OAuthProviderClient",
    "RuleReconciler",
    "TenantTokenProvider",
    "TokenManager",
    "get_audit_log",
    "get_token_manager",
]
