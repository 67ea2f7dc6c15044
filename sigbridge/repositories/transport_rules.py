"""
Transport Rule Repository

Local deployment records, keyed by (organization_id, name). The remote rule
id is only known after creation, so the name (not the remote id) is the
idempotency key.

Writes use an optimistic version check. A writer that loses the race re-reads
the row and applies its values on top (last writer wins). The repository
expects a session dedicated to the write: on a unique-key conflict it rolls
the session back before retrying.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from sigbridge.errors import RemoteStateError
from sigbridge.models.enums import DeploymentStatus
from sigbridge.models.models import RuleSpec
from sigbridge.models.orm import TransportRule
from sigbridge.repositories.org_scoped import OrgScopedRepository

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 5


class TransportRuleRepository(OrgScopedRepository[TransportRule]):
    """
    Repository for TransportRule deployment records.
    """

    model = TransportRule

    async def get_by_name(self, name: str) -> TransportRule | None:
        """
        Get the record for a rule name (exact, case-sensitive match).

        Always reloads from the database so a retry sees concurrent writes.
        """
        result = await self.session.execute(
            self.filter_strict(select(TransportRule).where(TransportRule.name == name))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_remote_id(self, remote_rule_id: str) -> TransportRule | None:
        """Get the record that tracks a given remote rule id."""
        result = await self.session.execute(
            self.filter_strict(
                select(TransportRule).where(TransportRule.remote_rule_id == remote_rule_id)
            )
        )
        return result.scalar_one_or_none()

    async def list_rules(self, include_deleted: bool = False) -> list[TransportRule]:
        """List this organization's records ordered by name."""
        query = self.filter_strict(select(TransportRule))
        if not include_deleted:
            query = query.where(TransportRule.deployment_status != DeploymentStatus.DELETED.value)
        query = query.order_by(TransportRule.name)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def upsert_record(
        self,
        tenant_id: str,
        spec: RuleSpec,
        status: DeploymentStatus,
        remote_rule_id: str | None = None,
        deployed_at: datetime | None = None,
    ) -> TransportRule:
        """
        Insert or update the record for spec.name.

        Args:
            tenant_id: Tenant the rule was deployed to
            spec: Rule that was deployed (or scripted)
            status: New deployment status
            remote_rule_id: Remote identifier; None keeps the stored one
            deployed_at: Deployment time (defaults to now)

        Returns:
            The written record

        Raises:
            RemoteStateError: If the write kept losing races
        """
        deployed_at = deployed_at or datetime.utcnow()
        values = self._values_from_spec(spec)
        values.update(
            tenant_id=tenant_id,
            deployment_status=status.value,
            last_deployed_at=deployed_at,
        )

        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            existing = await self.get_by_name(spec.name)

            if existing is None:
                record = TransportRule(
                    organization_id=self.org_id,
                    remote_rule_id=remote_rule_id,
                    version=1,
                    **values,
                )
                self.session.add(record)
                try:
                    await self.session.flush()
                except IntegrityError:
                    # A concurrent writer inserted the same name first
                    logger.info(
                        f"Concurrent insert for transport rule '{spec.name}', retrying as update "
                        f"(attempt {attempt}/{MAX_WRITE_ATTEMPTS})"
                    )
                    await self.session.rollback()
                    continue
                return record

            written = await self._compare_and_set(
                existing,
                {**values, "remote_rule_id": remote_rule_id or existing.remote_rule_id},
            )
            if written is not None:
                return written

            logger.info(
                f"Version conflict on transport rule '{spec.name}', retrying "
                f"(attempt {attempt}/{MAX_WRITE_ATTEMPTS})"
            )

        raise RemoteStateError(
            f"Could not record deployment of '{spec.name}' after {MAX_WRITE_ATTEMPTS} attempts",
            rule_name=spec.name,
        )

    async def set_status(
        self,
        name: str,
        status: DeploymentStatus,
        remote_rule_id: str | None = None,
    ) -> TransportRule | None:
        """
        Change only the deployment status of an existing record.

        Returns:
            Updated record, or None if no record exists for the name
        """
        for _ in range(MAX_WRITE_ATTEMPTS):
            existing = await self.get_by_name(name)
            if existing is None:
                return None

            values: dict[str, Any] = {"deployment_status": status.value}
            if remote_rule_id is not None:
                values["remote_rule_id"] = remote_rule_id

            written = await self._compare_and_set(existing, values)
            if written is not None:
                return written

        raise RemoteStateError(
            f"Could not update status of '{name}' after {MAX_WRITE_ATTEMPTS} attempts",
            rule_name=name,
        )

    async def _compare_and_set(
        self,
        existing: TransportRule,
        values: dict[str, Any],
    ) -> TransportRule | None:
        """Write values if the row is still at existing.version; None when another writer got there first."""
        result = await self.session.execute(
            update(TransportRule)
            .where(
                TransportRule.id == existing.id,
                TransportRule.version == existing.version,
            )
            .values(**values, version=existing.version + 1, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None

        await self.session.refresh(existing)
        return existing

    @staticmethod
    def _values_from_spec(spec: RuleSpec) -> dict[str, Any]:
        return {
            "name": spec.name,
            "description": spec.description,
            "from_scope": spec.from_scope.value,
            "sent_to_scope": spec.sent_to_scope.value,
            "from_addresses": list(spec.from_addresses),
            "sender_domains": list(spec.sender_domains),
            "recipient_domains": list(spec.recipient_domains),
            "subject_words": list(spec.subject_words),
            "message_type": spec.message_type.value if spec.message_type else None,
            "html_content": spec.disclaimer_html,
            "location": spec.location.value,
            "fallback_action": spec.fallback_action.value,
            "priority": spec.priority,
            "is_enabled": spec.enabled,
            "content_hash": spec.content_hash,
        }

    @staticmethod
    def to_spec(record: TransportRule) -> RuleSpec:
        """Rebuild the last deployed RuleSpec from a record."""
        return RuleSpec(
            name=record.name,
            description=record.description or "",
            from_scope=record.from_scope,
            sent_to_scope=record.sent_to_scope,
            disclaimer_html=record.html_content,
            location=record.location,
            fallback_action=record.fallback_action,
            priority=record.priority,
            enabled=record.is_enabled,
            from_addresses=tuple(record.from_addresses or ()),
            sender_domains=tuple(record.sender_domains or ()),
            recipient_domains=tuple(record.recipient_domains or ()),
            subject_words=tuple(record.subject_words or ()),
            message_type=record.message_type,
        )
