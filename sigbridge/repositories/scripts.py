"""
PowerShell Script Repository

Generated administrative scripts are stored so operators can download them
after the deployment call has returned.
"""

from uuid import UUID

from sqlalchemy import select

from sigbridge.models.enums import ScriptOperation
from sigbridge.models.orm import PowerShellScript
from sigbridge.repositories.org_scoped import OrgScopedRepository


class PowerShellScriptRepository(OrgScopedRepository[PowerShellScript]):
    """
    Repository for generated PowerShell scripts.
    """

    model = PowerShellScript

    async def create_script(
        self,
        rule_name: str,
        operation: ScriptOperation,
        script_content: str,
    ) -> PowerShellScript:
        """Persist a generated script with status pending_execution."""
        script = PowerShellScript(
            organization_id=self.org_id,
            rule_name=rule_name,
            operation=operation.value,
            script_content=script_content,
        )
        return await self.create(script)

    async def get_script(self, script_id: UUID) -> PowerShellScript | None:
        """Get a script by id, scoped to this organization."""
        return await self.get_by_id(script_id)

    async def latest_for_rule(self, rule_name: str) -> PowerShellScript | None:
        """Most recently generated script for a rule."""
        result = await self.session.execute(
            self.filter_strict(select(PowerShellScript))
            .where(PowerShellScript.rule_name == rule_name)
            .order_by(PowerShellScript.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
