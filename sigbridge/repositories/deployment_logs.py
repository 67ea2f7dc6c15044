"""
Deployment Logs Repository

Append-only store for connector audit entries. Rows are inserted and read,
never updated or deleted.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sigbridge.models.orm import DeploymentLog


class DeploymentLogRepository:
    """
    Repository for deployment log entries.

    Logs are stored in the deployment_logs table with:
    - id: autoincrement primary key (tie-breaker for equal timestamps)
    - tenant_id: Tenant the operation ran against
    - organization_id: Owning organization (nullable)
    - operation: deploy_transport_rule, delete_transport_rule, test_connection, ...
    - status: success, error, warning
    - message: Human-readable outcome
    - details: JSONB metadata (failure phase, remote ids, error codes)
    - execution_time_ms: Wall-clock duration of the operation
    - timestamp: When the entry was written (non-decreasing per tenant)
    """

    def __init__(self, session: AsyncSession):
        """Initialize with database session."""
        self.session = session

    async def create_log(
        self,
        tenant_id: str,
        operation: str,
        status: str,
        message: str,
        organization_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        execution_time_ms: int = 0,
        timestamp: datetime | None = None,
    ) -> DeploymentLog:
        """
        Append a deployment log entry.

        Args:
            tenant_id: Tenant identifier
            operation: Operation name
            status: success, error or warning
            message: Human-readable outcome
            organization_id: Owning organization, if known
            details: Optional structured data stored as JSONB
            execution_time_ms: Operation duration
            timestamp: Optional timestamp (defaults to now)

        Returns:
            Created log entry
        """
        log = DeploymentLog(
            tenant_id=tenant_id,
            organization_id=organization_id,
            operation=operation,
            status=status.lower(),
            message=message,
            details=details,
            execution_time_ms=execution_time_ms,
            timestamp=timestamp or datetime.utcnow(),
        )
        self.session.add(log)
        await self.session.flush()
        await self.session.refresh(log)
        return log

    async def list_logs(
        self,
        tenant_id: str,
        limit: int = 50,
        max_limit: int = 1000,
        organization_id: UUID | None = None,
    ) -> list[DeploymentLog]:
        """
        List a tenant's entries, newest first.

        Args:
            tenant_id: Tenant identifier
            limit: Maximum number of results
            max_limit: Hard cap applied to limit
            organization_id: Only entries written for this organization

        Returns:
            Log entries ordered by timestamp desc, then insertion order desc
        """
        limit = max(0, min(limit, max_limit))

        query = select(DeploymentLog).where(DeploymentLog.tenant_id == tenant_id)
        if organization_id is not None:
            query = query.where(DeploymentLog.organization_id == organization_id)

        result = await self.session.execute(
            query.order_by(DeploymentLog.timestamp.desc(), DeploymentLog.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def count_logs(self, tenant_id: str) -> int:
        """Count a tenant's entries."""
        result = await self.session.execute(
            select(func.count()).select_from(DeploymentLog).where(DeploymentLog.tenant_id == tenant_id)
        )
        return result.scalar_one()

    async def latest_timestamp(self, tenant_id: str) -> datetime | None:
        """Timestamp of the tenant's most recent entry."""
        result = await self.session.execute(
            select(func.max(DeploymentLog.timestamp)).where(DeploymentLog.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()
