"""
Deployment Audit Log

Append-only record of every connector operation. Each entry is written in its
own session and committed immediately, so an audit write never joins (or
rolls back) the caller's transaction, and a failed audit write never reaches
the caller: it is reported on the process logger instead.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sigbridge.config import get_settings
from sigbridge.core.database import get_session_factory
from sigbridge.models.enums import LogStatus
from sigbridge.models.models import DeploymentLogEntry
from sigbridge.repositories.deployment_logs import DeploymentLogRepository

logger = logging.getLogger(__name__)


def elapsed_ms(start_time: datetime) -> int:
    """Milliseconds elapsed since start_time (a datetime.utcnow() value)."""
    return max(0, int((datetime.utcnow() - start_time).total_seconds() * 1000))


class DeploymentAuditLog:
    """
    Audit log shared by every tenant's connector.

    Timestamps are non-decreasing per tenant: an entry is never stamped earlier
    than the tenant's previous entry, even if the clock steps backwards.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        max_limit: int | None = None,
    ):
        self._session_factory = session_factory
        self.max_limit = max_limit or get_settings().audit_log_max_limit
        self._last_timestamps: dict[str, datetime] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            return get_session_factory()
        return self._session_factory

    async def record(self, entry: DeploymentLogEntry) -> bool:
        """
        Append an entry. Never raises.

        Returns:
            True if the entry was written
        """
        lock = self._locks.setdefault(entry.tenant_id, asyncio.Lock())
        try:
            async with lock:
                async with self._sessions()() as session:
                    repo = DeploymentLogRepository(session)
                    timestamp = await self._next_timestamp(repo, entry.tenant_id, entry.timestamp)
                    await repo.create_log(
                        tenant_id=entry.tenant_id,
                        organization_id=entry.organization_id,
                        operation=entry.operation,
                        status=entry.status.value,
                        message=entry.message,
                        details=entry.details,
                        execution_time_ms=entry.execution_time_ms,
                        timestamp=timestamp,
                    )
                    await session.commit()
                    self._last_timestamps[entry.tenant_id] = timestamp
            return True
        except Exception as e:
            logger.error(
                f"Failed to write audit entry for tenant {entry.tenant_id} "
                f"(operation={entry.operation}, status={entry.status.value}): {str(e)}",
                exc_info=True,
            )
            return False

    async def log(
        self,
        tenant_id: str,
        operation: str,
        status: LogStatus,
        message: str,
        organization_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        execution_time_ms: int = 0,
    ) -> bool:
        """Build an entry from plain values and record it."""
        return await self.record(
            DeploymentLogEntry(
                tenant_id=tenant_id,
                organization_id=organization_id,
                operation=operation,
                status=status,
                message=message,
                details=details,
                execution_time_ms=execution_time_ms,
            )
        )

    async def _next_timestamp(
        self,
        repo: DeploymentLogRepository,
        tenant_id: str,
        requested: datetime | None,
    ) -> datetime:
        last = self._last_timestamps.get(tenant_id)
        if last is None:
            last = await repo.latest_timestamp(tenant_id)
        timestamp = requested or datetime.utcnow()
        if last is not None and timestamp < last:
            return last
        return timestamp

    async def list(
        self,
        tenant_id: str,
        limit: int = 50,
        organization_id: UUID | None = None,
    ) -> list[DeploymentLogEntry]:
        """
        List a tenant's entries, newest first.

        Args:
            tenant_id: Tenant identifier
            limit: Maximum number of entries (capped by audit_log_max_limit)
            organization_id: Only entries written for this organization
        """
        async with self._sessions()() as session:
            repo = DeploymentLogRepository(session)
            logs = await repo.list_logs(
                tenant_id, limit=limit, max_limit=self.max_limit, organization_id=organization_id
            )
            return [DeploymentLogEntry.model_validate(log) for log in logs]


_audit_log: DeploymentAuditLog | None = None


def get_audit_log() -> DeploymentAuditLog:
    """Get the process-wide audit log."""
    global _audit_log
    if _audit_log is None:
        _audit_log = DeploymentAuditLog()
    return _audit_log


def reset_audit_log() -> None:
    """Drop the process-wide audit log (for testing)."""
    global _audit_log
    _audit_log = None
