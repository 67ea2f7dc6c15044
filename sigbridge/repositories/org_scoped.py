"""
Organization-Scoped Repository

Base repository for tables owned by exactly one organization. Every query
goes through filter_strict() so one tenant's connector can never read or
write another tenant's rows.
"""

from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from sigbridge.models.orm import Base
from sigbridge.repositories.base import BaseRepository

ModelT = TypeVar("ModelT", bound=Base)


def _org_filter(model: Any, org_id: UUID) -> Any:
    """Filter by organization_id - bypasses type checking for generic model."""
    return model.organization_id == org_id


class OrgScopedRepository(BaseRepository[ModelT], Generic[ModelT]):
    """
    Repository with strict organization scoping.

    Example usage:
        class TransportRuleRepository(OrgScopedRepository[TransportRule]):
            model = TransportRule

            async def list_rules(self) -> list[TransportRule]:
                query = self.filter_strict(select(self.model))
                result = await self.session.execute(query)
                return list(result.scalars().all())
    """

    def __init__(self, session: AsyncSession, org_id: UUID):
        """
        Initialize repository with database session and organization scope.

        Args:
            session: SQLAlchemy async session
            org_id: Organization UUID every query is restricted to
        """
        super().__init__(session)
        self.org_id = org_id

    def filter_strict(self, query: Select[tuple[ModelT]]) -> Select[tuple[ModelT]]:
        """
        Apply strict organization filtering.

        The resulting query: WHERE organization_id = :org_id

        Args:
            query: SQLAlchemy select query

        Returns:
            Query with org filter applied
        """
        return query.where(_org_filter(self.model, self.org_id))

    async def get_by_id(self, id: UUID) -> ModelT | None:
        """Get an entity by ID, only if it belongs to this organization."""
        result = await self.session.execute(
            self.filter_strict(select(self.model).where(self.model.id == id))
        )
        return result.scalar_one_or_none()
