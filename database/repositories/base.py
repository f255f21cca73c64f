"""
Base repository with common CRUD operations.

Provides a generic base class for all repositories to reduce code duplication.
Repositories only flush; the calling service owns the transaction and decides
when to commit or roll back.
"""
from typing import TypeVar, Generic, Optional, List, Type, Any, Sequence
from abc import ABC

from sqlalchemy import select, func, Select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from database.base import Base

# Type variable for model classes
ModelType = TypeVar("ModelType", bound=Base)

# Dialects with native INSERT ... ON CONFLICT DO NOTHING
_INSERT_BUILDERS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class BaseRepository(ABC, Generic[ModelType]):
    """
    Abstract base repository with common CRUD operations.

    Provides:
    - get_by_id: Get single entity by ID
    - insert_ignoring_conflict: store-enforced "create once" insert
    - paginate: limit/offset a select and count the total

    Usage:
        class EarningRepository(BaseRepository[Earning]):
            model_class = Earning

            async def get_by_transaction_id(self, transaction_id: str):
                ...
    """

    model_class: Type[ModelType]

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def get_by_id(self, entity_id: int) -> Optional[ModelType]:
        """
        Get entity by its primary key ID.

        Args:
            entity_id: Primary key ID

        Returns:
            Entity or None if not found
        """
        result = await self.session.execute(
            select(self.model_class).where(self.model_class.id == entity_id)
        )
        return result.scalar_one_or_none()

    async def insert_ignoring_conflict(
        self,
        values: dict[str, Any],
        conflict_columns: Sequence[str],
        model: Optional[Type[Base]] = None,
    ) -> Optional[int]:
        """
        INSERT ... ON CONFLICT (conflict_columns) DO NOTHING.

        The unique constraint decides which of several concurrent writers
        wins, without an application-level lock.

        Args:
            values: Column values for the new row
            conflict_columns: Columns of the unique constraint to ignore
                (empty: ignore a conflict on any unique constraint)
            model: Table to insert into (defaults to the repository model)

        Returns:
            ID of the inserted row, or None if a conflicting row already existed
        """
        dialect = self.session.get_bind().dialect.name
        builder = _INSERT_BUILDERS.get(dialect)
        if builder is None:
            raise NotImplementedError(f"ON CONFLICT inserts are not supported on '{dialect}'")

        model = model or self.model_class
        stmt = (
            builder(model)
            .values(**values)
            .on_conflict_do_nothing(index_elements=list(conflict_columns) or None)
            .returning(model.id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def paginate(
        self,
        query: Select,
        page: int,
        limit: int,
    ) -> tuple[List[Any], int]:
        """
        Apply limit/offset to ``query`` and count all matching rows.

        Args:
            query: Select statement (already filtered and ordered)
            page: 1-based page number
            limit: Page size

        Returns:
            (rows for the page, total row count)
        """
        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        total = (await self.session.execute(count_query)).scalar() or 0

        result = await self.session.execute(
            query.offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    async def refresh(self, entity: ModelType) -> ModelType:
        """
        Refresh entity from database.

        Args:
            entity: Entity to refresh

        Returns:
            Refreshed entity
        """
        await self.session.refresh(entity)
        return entity
