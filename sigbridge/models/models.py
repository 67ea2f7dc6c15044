"""
Value objects and Pydantic schemas for SigBridge

- RuleSpec: immutable desired state of one transport rule
- AccessToken / TenantCredential: in-memory credential material (never serialized)
- DeploymentResult / ProbeResult: stable result shapes returned to callers
- *Public / *Update: API request/response schemas

Usage with ORM models:
    record = await repo.get_by_name(org_id, "Signature")
    return TransportRulePublic.model_validate(record)
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from sigbridge.models.enums import (
    DeploymentPhase,
    DeploymentStatus,
    DisclaimerLocation,
    FallbackAction,
    LogStatus,
    MessageType,
    RuleScope,
)

RULE_NAME_MAX_LENGTH = 64
DISCLAIMER_MAX_LENGTH = 5000


# =============================================================================
# Credentials and tokens
# =============================================================================


@dataclass(frozen=True)
class TenantCredential:
    """Client-credentials material for one tenant. The secret never appears in repr()."""
    tenant_id: str
    client_id: str
    client_secret: str = field(repr=False)
    connection_enabled: bool = True
    organization_id: UUID | None = None

    @property
    def fingerprint(self) -> str:
        """SHA-256 over client id and secret; binds cached tokens to this exact credential."""
        material = f"{self.client_id}\0{self.client_secret}"
        return hashlib.sha256(material.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class AccessToken:
    """Bearer token issued to one tenant for one scope."""
    value: str = field(repr=False)
    scope: str
    expires_at: datetime
    tenant_id: str
    client_id: str
    credential_fingerprint: str = field(default="", repr=False)

    def is_usable(self, safety_margin_seconds: int, now: datetime | None = None) -> bool:
        """A token is used only while now < expires_at - safety margin."""
        now = now or datetime.utcnow()
        return now < self.expires_at - timedelta(seconds=safety_margin_seconds)

    @property
    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.value}"}


# =============================================================================
# Transport rule request
# =============================================================================


class RuleSpec(BaseModel):
    """
    Desired state of a disclaimer transport rule.

    Immutable: reconciliation never mutates a spec in place. Length limits are
    checked by validate_rule_spec() so callers get a ValidationError with every
    problem listed rather than a schema error.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    from_scope: RuleScope = RuleScope.IN_ORGANIZATION
    sent_to_scope: RuleScope = RuleScope.NOT_IN_ORGANIZATION
    disclaimer_html: str
    location: DisclaimerLocation = DisclaimerLocation.APPEND
    fallback_action: FallbackAction = FallbackAction.WRAP
    priority: int = Field(default=0, ge=0)
    enabled: bool = True
    from_addresses: tuple[str, ...] = ()
    sender_domains: tuple[str, ...] = ()
    recipient_domains: tuple[str, ...] = ()
    subject_words: tuple[str, ...] = ()
    message_type: MessageType | None = None

    def to_remote_body(self) -> dict:
        """Full rule body sent to the management API (create and full-replace update)."""
        body = {
            "name": self.name,
            "description": self.description,
            "fromScope": self.from_scope.value,
            "sentToScope": self.sent_to_scope.value,
            "applyHtmlDisclaimerText": self.disclaimer_html,
            "applyHtmlDisclaimerLocation": self.location.value,
            "applyHtmlDisclaimerFallbackAction": self.fallback_action.value,
            "priority": self.priority,
            "state": "Enabled" if self.enabled else "Disabled",
        }
        if self.from_addresses:
            body["fromAddressContainsWords"] = list(self.from_addresses)
        if self.sender_domains:
            body["senderDomainIs"] = list(self.sender_domains)
        if self.recipient_domains:
            body["recipientDomainIs"] = list(self.recipient_domains)
        if self.subject_words:
            body["subjectContainsWords"] = list(self.subject_words)
        if self.message_type is not None:
            body["messageTypeMatches"] = self.message_type.value
        return body

    @property
    def content_hash(self) -> str:
        canonical = json.dumps(self.to_remote_body(), sort_keys=True, ensure_ascii=False)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# =============================================================================
# Remote state
# =============================================================================


class RemoteTransportRule(BaseModel):
    """A transport rule as reported by the remote management surface."""
    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    state: str | None = None
    priority: int | None = None


# =============================================================================
# Results
# =============================================================================


class DeploymentResult(BaseModel):
    """
    Stable result shape for deploy / delete, whether the rule went live or a
    script was generated. The message tells the two apart.
    """
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    rule_id: str | None = Field(default=None, serialization_alias="ruleId")
    errors: list[str] | None = None
    deployment_status: DeploymentStatus | None = Field(default=None, serialization_alias="deploymentStatus")
    script_id: UUID | None = Field(default=None, serialization_alias="scriptId")
    phase: DeploymentPhase | None = None


class ProbeResult(BaseModel):
    """Outcome of a connection test."""
    success: bool
    message: str
    details: dict | None = None


class ScriptGenerationResult(BaseModel):
    """Rendered administrative script and the record status it implies."""
    script_text: str
    record_status: DeploymentStatus
    script_id: UUID | None = None


# =============================================================================
# Audit log
# =============================================================================


class DeploymentLogEntry(BaseModel):
    """One append-only audit entry."""
    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    organization_id: UUID | None = None
    operation: str
    status: LogStatus
    message: str
    details: dict | None = None
    execution_time_ms: int = 0
    timestamp: datetime | None = None

    @field_serializer("timestamp")
    def serialize_dt(self, dt: datetime | None) -> str | None:
        return dt.isoformat() if dt else None


# =============================================================================
# API schemas
# =============================================================================


class TenantCredentialUpdate(BaseModel):
    """Input for updating tenant credentials. Omit client_secret to keep the stored one."""
    tenant_id: str = Field(max_length=255)
    client_id: str = Field(max_length=255)
    client_secret: str | None = Field(default=None, max_length=1024)
    connection_enabled: bool = Field(default=True)


class TenantCredentialPublic(BaseModel):
    """Tenant credential output; the secret is only ever shown masked."""
    tenant_id: str
    client_id: str
    client_secret_masked: str | None
    connection_enabled: bool
    updated_at: datetime | None = None

    @field_serializer("updated_at")
    def serialize_dt(self, dt: datetime | None) -> str | None:
        return dt.isoformat() if dt else None


class TransportRulePublic(BaseModel):
    """Locally tracked transport rule output."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None = None
    remote_rule_id: str | None = None
    deployment_status: DeploymentStatus
    priority: int
    is_enabled: bool
    last_deployed_at: datetime | None = None

    @field_serializer("last_deployed_at")
    def serialize_dt(self, dt: datetime | None) -> str | None:
        return dt.isoformat() if dt else None


class RuleListResult(BaseModel):
    """Rules known for a tenant: live when the API allows listing, otherwise local records."""
    source: str
    remote_rules: list[RemoteTransportRule] = Field(default_factory=list)
    local_rules: list[TransportRulePublic] = Field(default_factory=list)
