"""
Fallback Script Generator

Renders an Exchange Online PowerShell script that performs the mutation the
management API refused, stores it for download, and moves the local
deployment record to pending_manual_execution / pending_deletion.

The disclaimer is bound once to a variable as a single-quoted literal.
Inside single quotes PowerShell expands nothing ($ and " are inert); the only
special characters are the single quotes themselves (ASCII and the
typographic variants), each escaped by doubling. The literal can therefore be
read back byte-for-byte with extract_disclaimer().
"""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sigbridge.core.database import get_session_factory
from sigbridge.models.enums import DeploymentPhase, DeploymentStatus, LogStatus, ScriptOperation
from sigbridge.models.models import RuleSpec, ScriptGenerationResult
from sigbridge.repositories.scripts import PowerShellScriptRepository
from sigbridge.repositories.transport_rules import TransportRuleRepository
from sigbridge.services.audit_log import DeploymentAuditLog, elapsed_ms, get_audit_log

logger = logging.getLogger(__name__)

# ASCII apostrophe plus the typographic single quotes PowerShell also treats as quote characters
SINGLE_QUOTES = ("'", "\u2018", "\u2019", "\u201a", "\u201b")

DISCLAIMER_VARIABLE = "$DisclaimerHtml"


def escape_powershell_literal(value: str) -> str:
    """Wrap value in a PowerShell single-quoted string, doubling every quote character."""
    escaped = "".join(ch + ch if ch in SINGLE_QUOTES else ch for ch in value)
    return f"'{escaped}'"


def parse_powershell_literal(text: str, start: int = 0) -> tuple[str, int]:
    """
    Read a single-quoted literal beginning at text[start].

    Returns:
        (decoded value, index just past the closing quote)

    Raises:
        ValueError: If text[start] is not a quote or the literal is unterminated
    """
    if start >= len(text) or text[start] not in SINGLE_QUOTES:
        raise ValueError("Expected a single-quoted literal")

    chars: list[str] = []
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch in SINGLE_QUOTES:
            if i + 1 < len(text) and text[i + 1] in SINGLE_QUOTES:
                chars.append(ch)
                i += 2
                continue
            return "".join(chars), i + 1
        chars.append(ch)
        i += 1

    raise ValueError("Unterminated single-quoted literal")


def extract_disclaimer(script_text: str) -> str:
    """
    Recover the disclaimer HTML embedded in a generated script.

    Raises:
        ValueError: If the script has no disclaimer assignment
    """
    marker = f"\n{DISCLAIMER_VARIABLE} = "
    position = script_text.find(marker)
    if position < 0:
        raise ValueError("Script does not contain a disclaimer literal")
    value, _ = parse_powershell_literal(script_text, position + len(marker))
    return value


def _comment_safe(value: str) -> str:
    return " ".join(value.splitlines())


def _bool_literal(value: bool) -> str:
    return "$true" if value else "$false"


class FallbackScriptGenerator:
    """
    Script fallback for one organization / tenant.

    Every generate() call writes exactly one audit entry, including when
    persisting the script fails.
    """

    def __init__(
        self,
        organization_id: UUID,
        tenant_id: str,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        audit_log: DeploymentAuditLog | None = None,
    ):
        self.organization_id = organization_id
        self.tenant_id = tenant_id
        self._session_factory = session_factory
        self.audit_log = audit_log or get_audit_log()

    # ==========================================================================
    # Rendering
    # ==========================================================================

    def render(self, spec: RuleSpec, operation: ScriptOperation, generated_at: datetime | None = None) -> str:
        """Render the script text for an operation."""
        generated_at = generated_at or datetime.utcnow()
        if operation == ScriptOperation.DELETE:
            return self._render_delete(spec, generated_at)
        return self._render_upsert(spec, operation, generated_at)

    def _header(self, title: str, spec: RuleSpec, operation: ScriptOperation, generated_at: datetime) -> list[str]:
        return [
            f"# {title}",
            f"# Generated on: {generated_at.isoformat()}Z",
            f"# Rule Name: {_comment_safe(spec.name)}",
            f"# Operation: {operation.value}",
            "",
            "# Connect to Exchange Online (if not already connected)",
            "# Connect-ExchangeOnline",
            "",
            "$ErrorActionPreference = 'Stop'",
            f"$RuleName = {escape_powershell_literal(spec.name)}",
        ]

    def _footer(self) -> list[str]:
        return [
            "",
            "# Disconnect from Exchange Online",
            "# Disconnect-ExchangeOnline -Confirm:$false",
            "",
        ]

    def _render_upsert(self, spec: RuleSpec, operation: ScriptOperation, generated_at: datetime) -> str:
        rule_params = [
            f"    Description                       = {escape_powershell_literal(spec.description)}",
            f"    FromScope                         = '{spec.from_scope.value}'",
            f"    SentToScope                       = '{spec.sent_to_scope.value}'",
            f"    ApplyHtmlDisclaimerLocation       = '{spec.location.value}'",
            f"    ApplyHtmlDisclaimerText           = {DISCLAIMER_VARIABLE}",
            f"    ApplyHtmlDisclaimerFallbackAction = '{spec.fallback_action.value}'",
            f"    Priority                          = {spec.priority}",
        ]
        list_conditions = (
            ("FromAddressContainsWords", spec.from_addresses),
            ("SenderDomainIs", spec.sender_domains),
            ("RecipientDomainIs", spec.recipient_domains),
            ("SubjectContainsWords", spec.subject_words),
        )
        for parameter, values in list_conditions:
            if values:
                items = ", ".join(escape_powershell_literal(value) for value in values)
                rule_params.append(f"    {parameter:<33} = @({items})")
        if spec.message_type is not None:
            rule_params.append(f"    {'MessageTypeMatches':<33} = '{spec.message_type.value}'")

        lines = self._header("Exchange Online Transport Rule Script", spec, operation, generated_at)
        lines += [
            f"{DISCLAIMER_VARIABLE} = {escape_powershell_literal(spec.disclaimer_html)}",
            f"$RuleEnabled = {_bool_literal(spec.enabled)}",
            "",
            "$RuleParams = @{",
            *rule_params,
            "}",
            "",
            "try {",
            "    # Check if rule already exists",
            "    $existingRule = Get-TransportRule -Identity $RuleName -ErrorAction SilentlyContinue",
            "",
            "    if ($existingRule) {",
            '        Write-Host "Updating existing transport rule: $RuleName" -ForegroundColor Cyan',
            "        Set-TransportRule -Identity $RuleName @RuleParams",
            "        if ($RuleEnabled) {",
            "            Enable-TransportRule -Identity $RuleName",
            "        }",
            "        else {",
            "            Disable-TransportRule -Identity $RuleName -Confirm:$false",
            "        }",
            '        Write-Host "Transport rule updated successfully!" -ForegroundColor Green',
            "    }",
            "    else {",
            '        Write-Host "Creating new transport rule: $RuleName" -ForegroundColor Cyan',
            "        New-TransportRule -Name $RuleName -Enabled $RuleEnabled @RuleParams",
            '        Write-Host "Transport rule created successfully!" -ForegroundColor Green',
            "    }",
            "}",
            "catch {",
            '    Write-Host "Error: $_" -ForegroundColor Red',
            "    exit 1",
            "}",
        ]
        lines += self._footer()
        return "\n".join(lines)

    def _render_delete(self, spec: RuleSpec, generated_at: datetime) -> str:
        lines = self._header("Delete Transport Rule Script", spec, ScriptOperation.DELETE, generated_at)
        lines += [
            "",
            "try {",
            "    $existingRule = Get-TransportRule -Identity $RuleName -ErrorAction SilentlyContinue",
            "",
            "    if ($existingRule) {",
            "        Remove-TransportRule -Identity $RuleName -Confirm:$false",
            '        Write-Host "Transport rule $RuleName deleted successfully!" -ForegroundColor Green',
            "    }",
            "    else {",
            '        Write-Host "Transport rule $RuleName does not exist, nothing to delete" -ForegroundColor Yellow',
            "    }",
            "}",
            "catch {",
            '    Write-Host "Error deleting rule: $_" -ForegroundColor Red',
            "    exit 1",
            "}",
        ]
        lines += self._footer()
        return "\n".join(lines)

    # ==========================================================================
    # Generation
    # ==========================================================================

    async def generate(
        self,
        spec: RuleSpec,
        operation: ScriptOperation,
        audit_operation: str = "generate_powershell_script",
        details: dict[str, Any] | None = None,
        start_time: datetime | None = None,
    ) -> ScriptGenerationResult:
        """
        Render, persist and audit a script.

        Args:
            spec: Rule the script applies (or removes)
            operation: create, update or delete
            audit_operation: Operation name written to the audit entry
            details: Extra audit details (e.g. why the API path was abandoned)
            start_time: When the enclosing operation started (for timing)

        Returns:
            ScriptGenerationResult with the script text, record status and script id
        """
        start_time = start_time or datetime.utcnow()
        record_status = (
            DeploymentStatus.PENDING_DELETION
            if operation == ScriptOperation.DELETE
            else DeploymentStatus.PENDING_MANUAL_EXECUTION
        )
        audit_details: dict[str, Any] = {
            "rule_name": spec.name,
            "script_operation": operation.value,
            **(details or {}),
        }

        try:
            script_text = self.render(spec, operation)
            script_id = await self._persist(spec, operation, script_text, record_status)
        except Exception as e:
            logger.error(f"Failed to generate {operation.value} script for '{spec.name}': {str(e)}", exc_info=True)
            await self.audit_log.log(
                tenant_id=self.tenant_id,
                organization_id=self.organization_id,
                operation=audit_operation,
                status=LogStatus.ERROR,
                message=f"Failed to generate PowerShell script for {spec.name}: {str(e)}",
                details={**audit_details, "phase": DeploymentPhase.FAILED.value},
                execution_time_ms=elapsed_ms(start_time),
            )
            raise

        logger.info(f"Generated {operation.value} script {script_id} for '{spec.name}' (tenant {self.tenant_id})")
        await self.audit_log.log(
            tenant_id=self.tenant_id,
            organization_id=self.organization_id,
            operation=audit_operation,
            status=LogStatus.SUCCESS,
            message=f"PowerShell script generated for {spec.name}. Manual execution required.",
            details={
                **audit_details,
                "phase": DeploymentPhase.SCRIPT_GENERATED.value,
                "script_id": str(script_id),
                "record_status": record_status.value,
            },
            execution_time_ms=elapsed_ms(start_time),
        )

        return ScriptGenerationResult(
            script_text=script_text,
            record_status=record_status,
            script_id=script_id,
        )

    async def _persist(
        self,
        spec: RuleSpec,
        operation: ScriptOperation,
        script_text: str,
        record_status: DeploymentStatus,
    ) -> UUID:
        session_factory = self._session_factory or get_session_factory()
        async with session_factory() as session:
            # Record first: a unique-key retry rolls back everything pending in the session
            rules = TransportRuleRepository(session, self.organization_id)
            if operation == ScriptOperation.DELETE:
                updated = await rules.set_status(spec.name, record_status)
                if updated is None:
                    await rules.upsert_record(self.tenant_id, spec, record_status)
            else:
                await rules.upsert_record(self.tenant_id, spec, record_status)

            scripts = PowerShellScriptRepository(session, self.organization_id)
            script = await scripts.create_script(spec.name, operation, script_text)
            await session.commit()
            return script.id
