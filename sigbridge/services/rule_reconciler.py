"""
Rule Reconciler

Reconciles a desired transport rule (RuleSpec) against the tenant's remote
rules: look up by exact name, then full-replace update or create. The rule
name, not the remote id, is the idempotency key.

When the remote surface reports that rule mutation is unsupported, the
reconciler hands the same request to the FallbackScriptGenerator and returns
its outcome in the same result shape. A capability flag skips the live API
entirely (script-only deployments).

Every deploy / delete / list_rules call writes exactly one audit entry. In
the fallback path that entry is written by the generator.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sigbridge.config import Settings, get_settings
from sigbridge.core.database import get_session_factory
from sigbridge.errors import (
    ConnectorError,
    NetworkError,
    RemoteStateError,
    UnsupportedOperationError,
    ValidationError,
)
from sigbridge.models.enums import (
    DeploymentPhase,
    DeploymentStatus,
    LogStatus,
    ScriptOperation,
    TokenScope,
)
from sigbridge.models.models import (
    DISCLAIMER_MAX_LENGTH,
    RULE_NAME_MAX_LENGTH,
    DeploymentResult,
    RuleListResult,
    RuleSpec,
    TransportRulePublic,
)
from sigbridge.models.orm import TransportRule
from sigbridge.repositories.transport_rules import TransportRuleRepository
from sigbridge.services.audit_log import DeploymentAuditLog, elapsed_ms
from sigbridge.services.fallback_script import FallbackScriptGenerator
from sigbridge.services.mail_rules_client import MailRulesClient
from sigbridge.services.token_manager import TenantTokenProvider

logger = logging.getLogger(__name__)

MANUAL_EXECUTION_MESSAGE = (
    "PowerShell script generated. Manual execution required: download the script "
    "and run it in Exchange Online PowerShell."
)
MANUAL_DELETION_MESSAGE = (
    "Deletion script generated. Manual execution required: download the script "
    "and run it in Exchange Online PowerShell."
)


def validate_rule_name(name: str) -> list[str]:
    """Problems with a rule name (empty list when valid)."""
    errors = []
    if not name or not name.strip():
        errors.append("Rule name is required")
    elif len(name) > RULE_NAME_MAX_LENGTH:
        errors.append(f"Rule name must be at most {RULE_NAME_MAX_LENGTH} characters (got {len(name)})")
    if name and any(ord(ch) < 32 or ord(ch) == 127 for ch in name):
        errors.append("Rule name must not contain control characters")
    return errors


def validate_rule_spec(spec: RuleSpec) -> None:
    """
    Check a RuleSpec before any network call.

    Raises:
        ValidationError: With every problem found listed in errors
    """
    errors = validate_rule_name(spec.name)
    if not spec.disclaimer_html or not spec.disclaimer_html.strip():
        errors.append("Disclaimer HTML is required")
    elif len(spec.disclaimer_html) > DISCLAIMER_MAX_LENGTH:
        errors.append(
            f"Disclaimer HTML must be at most {DISCLAIMER_MAX_LENGTH} characters "
            f"(got {len(spec.disclaimer_html)})"
        )
    conditions = {
        "From address words": spec.from_addresses,
        "Sender domains": spec.sender_domains,
        "Recipient domains": spec.recipient_domains,
        "Subject words": spec.subject_words,
    }
    for label, values in conditions.items():
        if any(not value or not value.strip() for value in values):
            errors.append(f"{label} must not contain empty entries")
        elif any(ord(ch) < 32 or ord(ch) == 127 for value in values for ch in value):
            errors.append(f"{label} must not contain control characters")
    if errors:
        raise ValidationError("; ".join(errors), errors=errors)


@dataclass
class DeploymentAttempt:
    """Progress of one reconciler call through the deployment state machine."""
    operation: str
    rule_name: str
    start_time: datetime = field(default_factory=datetime.utcnow)
    phase: DeploymentPhase = DeploymentPhase.PENDING
    failed_phase: DeploymentPhase | None = None
    action: str | None = None
    remote_rule_id: str | None = None

    def fail(self) -> None:
        if self.failed_phase is None:
            self.failed_phase = self.phase
        self.phase = DeploymentPhase.FAILED

    def details(self, **extra: Any) -> dict[str, Any]:
        details: dict[str, Any] = {"rule_name": self.rule_name, "phase": self.phase.value}
        if self.failed_phase is not None:
            details["failed_phase"] = self.failed_phase.value
        if self.action:
            details["action"] = self.action
        if self.remote_rule_id:
            details["remote_rule_id"] = self.remote_rule_id
        details.update(extra)
        return details


class RuleReconciler:
    """
    Deploys, deletes and lists transport rules for one tenant.
    """

    def __init__(
        self,
        organization_id: UUID,
        tokens: TenantTokenProvider,
        client: MailRulesClient,
        generator: FallbackScriptGenerator,
        audit_log: DeploymentAuditLog,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        settings: Settings | None = None,
        remote_api_enabled: bool | None = None,
    ):
        self.organization_id = organization_id
        self.tokens = tokens
        self.client = client
        self.generator = generator
        self.audit_log = audit_log
        self._session_factory = session_factory
        self.settings = settings or get_settings()
        self.remote_api_enabled = (
            self.settings.remote_rule_api_enabled if remote_api_enabled is None else remote_api_enabled
        )

    @property
    def tenant_id(self) -> str:
        return self.tokens.tenant_id

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    # ==========================================================================
    # Deploy
    # ==========================================================================

    async def deploy(self, spec: RuleSpec) -> DeploymentResult:
        """
        Create or update a transport rule.

        Returns:
            DeploymentResult; success is also True when a script was generated
            (the message then says manual execution is required)

        Raises:
            ValidationError: The rule failed local validation (no network call was made)
        """
        attempt = DeploymentAttempt(operation="deploy_transport_rule", rule_name=spec.name)
        await self._validate(attempt, lambda: validate_rule_spec(spec))

        if not self.remote_api_enabled:
            logger.info(f"Remote rule API disabled, generating script for '{spec.name}'")
            return await self._fallback_deploy(spec, attempt, reason="Remote rule API disabled")

        try:
            async with asyncio.timeout(self.settings.deployment_timeout_seconds):
                rule_id = await self._deploy_live(spec, attempt)

        except UnsupportedOperationError as e:
            attempt.phase = DeploymentPhase.UNSUPPORTED
            logger.info(f"Rule API unsupported for tenant {self.tenant_id} ({e.operation}), falling back to script")
            return await self._fallback_deploy(spec, attempt, reason=e.message, unsupported_operation=e.operation)

        except TimeoutError:
            error = NetworkError(
                f"Deployment of {spec.name} timed out after {self.settings.deployment_timeout_seconds}s",
                error_code="TIMEOUT",
            )
            return await self._failed(attempt, error)

        except ConnectorError as e:
            return await self._failed(attempt, e)

        except asyncio.CancelledError:
            attempt.fail()
            await self._audit(attempt, LogStatus.ERROR, f"Deployment of {spec.name} was cancelled")
            raise

        except Exception as e:
            attempt.fail()
            logger.error(f"Unexpected error deploying '{spec.name}': {str(e)}", exc_info=True)
            await self._audit(attempt, LogStatus.ERROR, f"Unexpected error deploying {spec.name}: {str(e)}")
            raise

        message = f"Transport rule {spec.name} {'updated' if attempt.action == 'update' else 'created'} successfully"
        await self._audit(attempt, LogStatus.SUCCESS, message, content_hash=spec.content_hash)
        return DeploymentResult(
            success=True,
            message=message,
            rule_id=rule_id,
            deployment_status=DeploymentStatus.DEPLOYED,
            phase=attempt.phase,
        )

    async def _deploy_live(self, spec: RuleSpec, attempt: DeploymentAttempt) -> str:
        attempt.phase = DeploymentPhase.AUTHENTICATING
        token = await self.tokens.get_token(TokenScope.MAIL_MANAGEMENT)

        attempt.phase = DeploymentPhase.RECONCILING
        existing = self._single_match(spec.name, await self.client.find_rules_by_name(token, spec.name))

        if existing is not None:
            attempt.action = "update"
            rule_id = await self.client.update_rule(token, existing.id, spec)
        else:
            attempt.action = "create"
            rule_id = await self.client.create_rule(token, spec)
        attempt.remote_rule_id = rule_id

        async with self._sessions()() as session:
            rules = TransportRuleRepository(session, self.organization_id)
            await rules.upsert_record(self.tenant_id, spec, DeploymentStatus.DEPLOYED, remote_rule_id=rule_id)
            await session.commit()

        attempt.phase = DeploymentPhase.DEPLOYED
        return rule_id

    async def _fallback_deploy(self, spec: RuleSpec, attempt: DeploymentAttempt, **details: Any) -> DeploymentResult:
        record = await self._fallback_record(attempt, spec.name)
        operation = ScriptOperation.UPDATE if record is not None else ScriptOperation.CREATE
        result = await self.generator.generate(
            spec,
            operation,
            audit_operation=attempt.operation,
            details={k: v for k, v in attempt.details(**details).items() if k != "phase"},
            start_time=attempt.start_time,
        )
        return DeploymentResult(
            success=True,
            message=MANUAL_EXECUTION_MESSAGE,
            deployment_status=result.record_status,
            script_id=result.script_id,
            phase=DeploymentPhase.SCRIPT_GENERATED,
        )

    # ==========================================================================
    # Delete
    # ==========================================================================

    async def delete(self, rule_name: str) -> DeploymentResult:
        """
        Delete a transport rule by name.

        A rule that does not exist remotely is not an error; the local record
        (if any) is still marked deleted.

        Raises:
            ValidationError: The rule name is invalid
        """
        attempt = DeploymentAttempt(operation="delete_transport_rule", rule_name=rule_name)
        await self._validate(attempt, lambda: self._raise_for_name(rule_name))

        if not self.remote_api_enabled:
            return await self._fallback_delete(rule_name, attempt, reason="Remote rule API disabled")

        try:
            async with asyncio.timeout(self.settings.deployment_timeout_seconds):
                message = await self._delete_live(rule_name, attempt)

        except UnsupportedOperationError as e:
            attempt.phase = DeploymentPhase.UNSUPPORTED
            return await self._fallback_delete(rule_name, attempt, reason=e.message, unsupported_operation=e.operation)

        except TimeoutError:
            error = NetworkError(
                f"Deletion of {rule_name} timed out after {self.settings.deployment_timeout_seconds}s",
                error_code="TIMEOUT",
            )
            return await self._failed(attempt, error)

        except ConnectorError as e:
            return await self._failed(attempt, e)

        except asyncio.CancelledError:
            attempt.fail()
            await self._audit(attempt, LogStatus.ERROR, f"Deletion of {rule_name} was cancelled")
            raise

        except Exception as e:
            attempt.fail()
            logger.error(f"Unexpected error deleting '{rule_name}': {str(e)}", exc_info=True)
            await self._audit(attempt, LogStatus.ERROR, f"Unexpected error deleting {rule_name}: {str(e)}")
            raise

        await self._audit(attempt, LogStatus.SUCCESS, message)
        return DeploymentResult(
            success=True,
            message=message,
            rule_id=attempt.remote_rule_id,
            deployment_status=DeploymentStatus.DELETED,
            phase=attempt.phase,
        )

    async def _delete_live(self, rule_name: str, attempt: DeploymentAttempt) -> str:
        attempt.phase = DeploymentPhase.AUTHENTICATING
        token = await self.tokens.get_token(TokenScope.MAIL_MANAGEMENT)

        attempt.phase = DeploymentPhase.RECONCILING
        existing = self._single_match(rule_name, await self.client.find_rules_by_name(token, rule_name))

        if existing is not None:
            attempt.action = "delete"
            attempt.remote_rule_id = existing.id
            await self.client.delete_rule(token, existing.id)
            message = f"Transport rule {rule_name} deleted successfully"
        else:
            attempt.action = "none"
            message = f"Transport rule {rule_name} does not exist remotely, nothing to delete"

        async with self._sessions()() as session:
            rules = TransportRuleRepository(session, self.organization_id)
            await rules.set_status(rule_name, DeploymentStatus.DELETED)
            await session.commit()

        attempt.phase = DeploymentPhase.DEPLOYED
        return message

    async def _fallback_delete(self, rule_name: str, attempt: DeploymentAttempt, **details: Any) -> DeploymentResult:
        record = await self._fallback_record(attempt, rule_name)
        spec = (
            TransportRuleRepository.to_spec(record)
            if record is not None
            else RuleSpec(name=rule_name, disclaimer_html="")
        )

        result = await self.generator.generate(
            spec,
            ScriptOperation.DELETE,
            audit_operation=attempt.operation,
            details={k: v for k, v in attempt.details(**details).items() if k != "phase"},
            start_time=attempt.start_time,
        )
        return DeploymentResult(
            success=True,
            message=MANUAL_DELETION_MESSAGE,
            deployment_status=result.record_status,
            script_id=result.script_id,
            phase=DeploymentPhase.SCRIPT_GENERATED,
        )

    # ==========================================================================
    # List
    # ==========================================================================

    async def list_rules(self) -> RuleListResult:
        """
        List transport rules: live from the remote API when it can be read,
        otherwise the locally tracked records.

        Raises:
            ConnectorError: Authentication, authorization or network failure
        """
        attempt = DeploymentAttempt(operation="list_transport_rules", rule_name="*")
        local_rules = await self._local_rules()

        if not self.remote_api_enabled:
            await self._audit(attempt, LogStatus.SUCCESS, f"Listed {len(local_rules)} locally tracked rule(s)", source="local")
            return RuleListResult(source="local", local_rules=local_rules)

        try:
            async with asyncio.timeout(self.settings.http_timeout_seconds * 2):
                attempt.phase = DeploymentPhase.AUTHENTICATING
                token = await self.tokens.get_token(TokenScope.MAIL_MANAGEMENT)
                attempt.phase = DeploymentPhase.RECONCILING
                remote_rules = await self.client.list_rules(token)

        except UnsupportedOperationError as e:
            await self._audit(
                attempt,
                LogStatus.WARNING,
                f"Remote rule listing unsupported; listed {len(local_rules)} locally tracked rule(s)",
                source="local",
                reason=e.message,
            )
            return RuleListResult(source="local", local_rules=local_rules)

        except TimeoutError as e:
            attempt.fail()
            error = NetworkError("Listing transport rules timed out", error_code="TIMEOUT")
            await self._audit(attempt, LogStatus.ERROR, error.message, error=error.error_code)
            raise error from e

        except ConnectorError as e:
            attempt.fail()
            await self._audit(attempt, LogStatus.ERROR, f"Failed to list transport rules: {e.message}", error=e.error_code)
            raise

        await self._audit(attempt, LogStatus.SUCCESS, f"Listed {len(remote_rules)} remote rule(s)", source="remote")
        return RuleListResult(source="remote", remote_rules=remote_rules, local_rules=local_rules)

    async def _local_rules(self) -> list[TransportRulePublic]:
        async with self._sessions()() as session:
            records = await TransportRuleRepository(session, self.organization_id).list_rules()
            return [TransportRulePublic.model_validate(record) for record in records]

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @staticmethod
    def _single_match(rule_name: str, matches: list) -> Any:
        if len(matches) > 1:
            ids = ", ".join(rule.id for rule in matches)
            raise RemoteStateError(
                f"{len(matches)} remote transport rules are named '{rule_name}' ({ids}). "
                f"Rename or remove the duplicates in the Exchange admin center, then retry.",
                rule_name=rule_name,
            )
        return matches[0] if matches else None

    @staticmethod
    def _raise_for_name(rule_name: str) -> None:
        errors = validate_rule_name(rule_name)
        if errors:
            raise ValidationError("; ".join(errors), errors=errors)

    async def _validate(self, attempt: DeploymentAttempt, check) -> None:
        try:
            check()
        except ValidationError as e:
            attempt.fail()
            await self._audit(attempt, LogStatus.WARNING, f"Validation failed: {e.message}", stage="validation", errors=e.errors)
            raise

    async def _fallback_record(self, attempt: DeploymentAttempt, rule_name: str) -> TransportRule | None:
        """Local record a fallback script is based on. A failed read is audited before it propagates."""
        try:
            async with self._sessions()() as session:
                return await TransportRuleRepository(session, self.organization_id).get_by_name(rule_name)
        except asyncio.CancelledError:
            attempt.fail()
            await self._audit(attempt, LogStatus.ERROR, f"{attempt.operation} of {rule_name} was cancelled")
            raise
        except Exception as e:
            attempt.fail()
            logger.error(f"Failed to read local record for '{rule_name}': {str(e)}", exc_info=True)
            await self._audit(
                attempt, LogStatus.ERROR, f"Failed to read local record for {rule_name}: {str(e)}"
            )
            raise

    async def _failed(self, attempt: DeploymentAttempt, error: ConnectorError) -> DeploymentResult:
        attempt.fail()
        logger.warning(
            f"{attempt.operation} failed for '{attempt.rule_name}' in phase "
            f"{attempt.failed_phase.value if attempt.failed_phase else '-'}: {error.message}"
        )
        await self._audit(attempt, LogStatus.ERROR, error.message, error=error.error_code)
        return DeploymentResult(
            success=False,
            message=error.message,
            errors=[error.message],
            rule_id=attempt.remote_rule_id,
            phase=DeploymentPhase.FAILED,
        )

    async def _audit(self, attempt: DeploymentAttempt, status: LogStatus, message: str, **details: Any) -> None:
        await self.audit_log.log(
            tenant_id=self.tenant_id,
            organization_id=self.organization_id,
            operation=attempt.operation,
            status=status,
            message=message,
            details=attempt.details(**details),
            execution_time_ms=elapsed_ms(attempt.start_time),
        )
