"""
SQLAlchemy ORM Models for SigBridge

Pure database models using SQLAlchemy 2.0 declarative style.
These models define the database schema used by the connector.

For value objects and API schemas, see models.py
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from sigbridge.models.enums import DeploymentStatus, ScriptStatus

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


# =============================================================================
# Organization
# =============================================================================


class Organization(Base):
    """Organization database table (managed by the admin UI, read here)."""
    __tablename__ = "organizations"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255))
    domain: Mapped[str | None] = mapped_column(String(255), default=None)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, server_default=func.now(),
        onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("ix_organizations_domain", "domain"),
    )


# =============================================================================
# Tenant credentials
# =============================================================================


class AzureSettings(Base):
    """Identity directory credentials of one organization's tenant."""
    __tablename__ = "azure_settings"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(ForeignKey("organizations.id"))
    tenant_id: Mapped[str] = mapped_column(String(255))
    client_id: Mapped[str] = mapped_column(String(255))
    encrypted_client_secret: Mapped[str] = mapped_column(Text)
    is_connected: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, server_default=func.now(),
        onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("ix_azure_settings_organization_id", "organization_id", unique=True),
    )


# =============================================================================
# Transport rules (deployment records)
# =============================================================================


class TransportRule(Base):
    """
    Local system of record for a deployed (or pending) transport rule.

    (organization_id, name) is the idempotency key; version is bumped on every
    write and used for optimistic compare-and-set updates.
    """
    __tablename__ = "transport_rules"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(ForeignKey("organizations.id"))
    tenant_id: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(String(64))
    description: Mapped[str | None] = mapped_column(Text, default=None)
    remote_rule_id: Mapped[str | None] = mapped_column(String(255), default=None)
    from_scope: Mapped[str] = mapped_column(String(50))
    sent_to_scope: Mapped[str] = mapped_column(String(50))
    from_addresses: Mapped[list] = mapped_column(JSONType, default=list)
    sender_domains: Mapped[list] = mapped_column(JSONType, default=list)
    recipient_domains: Mapped[list] = mapped_column(JSONType, default=list)
    subject_words: Mapped[list] = mapped_column(JSONType, default=list)
    message_type: Mapped[str | None] = mapped_column(String(50), default=None)
    html_content: Mapped[str] = mapped_column(Text)
    location: Mapped[str] = mapped_column(String(20))
    fallback_action: Mapped[str] = mapped_column(String(20))
    priority: Mapped[int] = mapped_column(Integer, default=0)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    content_hash: Mapped[str] = mapped_column(String(64))
    deployment_status: Mapped[str] = mapped_column(
        String(50), default=DeploymentStatus.DEPLOYED.value
    )
    version: Mapped[int] = mapped_column(Integer, default=1)
    last_deployed_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, server_default=func.now(),
        onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("ix_transport_rules_org_name", "organization_id", "name", unique=True),
        Index("ix_transport_rules_remote_id", "remote_rule_id"),
    )


# =============================================================================
# Generated scripts
# =============================================================================


class PowerShellScript(Base):
    """Administrator-executable script generated when the API path is unavailable."""
    __tablename__ = "powershell_scripts"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(ForeignKey("organizations.id"))
    rule_name: Mapped[str] = mapped_column(String(64))
    operation: Mapped[str] = mapped_column(String(20))
    script_content: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        String(50), default=ScriptStatus.PENDING_EXECUTION.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_powershell_scripts_org_rule", "organization_id", "rule_name"),
    )


# =============================================================================
# Deployment log (append-only)
# =============================================================================


class DeploymentLog(Base):
    """Append-only audit trail of connector operations."""
    __tablename__ = "deployment_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[UUID | None] = mapped_column(default=None)
    tenant_id: Mapped[str] = mapped_column(String(255))
    operation: Mapped[str] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(String(20))
    message: Mapped[str] = mapped_column(Text)
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    execution_time_ms: Mapped[int] = mapped_column(Integer, default=0)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_deployment_logs_tenant_time", "tenant_id", "timestamp"),
    )
