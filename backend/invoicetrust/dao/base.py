"""
Base Data Access Object (DAO) class.

WHY: The DAO pattern separates database operations from business logic,
making the codebase more testable and keeping tenant scoping in one place.

Single-record lookups use populate_existing: services mix ORM writes with
conditional UPDATE statements, and a lookup must not return a copy that
one of those statements has made stale.
"""

from typing import Generic, TypeVar, Type, Optional, List, Any, Sequence
from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from invoicetrust.models.base import Base

# Type variable for model class
ModelType = TypeVar("ModelType", bound=Base)


class BaseDAO(Generic[ModelType]):
    """
    Base Data Access Object providing CRUD operations for all models.

    Type Parameters:
        ModelType: The SQLAlchemy model class this DAO manages
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """
        Initialize DAO with model class and database session.

        Args:
            model: The SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    def _filtered(self, **filters: Any):
        query = select(self.model)
        for field, value in filters.items():
            if hasattr(self.model, field):
                query = query.where(getattr(self.model, field) == value)
        return query

    async def create(self, **kwargs: Any) -> ModelType:
        """
        Create a new record.

        Args:
            **kwargs: Field values for the new record

        Returns:
            The created model instance with database-generated fields populated

        Raises:
            IntegrityError: If unique constraints are violated
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        await self.session.flush()  # Flush to get auto-generated fields
        await self.session.refresh(instance)
        return instance

    async def get_by_id(self, id: int) -> Optional[ModelType]:
        """
        Retrieve a single record by primary key.

        Args:
            id: Primary key value

        Returns:
            The model instance if found, None otherwise
        """
        result = await self.session.execute(
            select(self.model)
            .where(self.model.id == id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update(self, id: int, **kwargs: Any) -> Optional[ModelType]:
        """
        Update an existing record.

        Args:
            id: Primary key of the record to update
            **kwargs: Fields to update

        Returns:
            Updated model instance if found, None otherwise
        """
        result = await self.session.execute(
            update(self.model).where(self.model.id == id).values(**kwargs).returning(self.model)
        )
        instance = result.scalar_one_or_none()
        if instance:
            await self.session.refresh(instance)
        return instance

    async def delete(self, id: int) -> bool:
        """
        Delete a record by primary key.

        Returns:
            True if a record was deleted, False if not found
        """
        result = await self.session.execute(delete(self.model).where(self.model.id == id))
        return result.rowcount > 0

    async def count(self, **filters: Any) -> int:
        """
        Count records matching filters.

        Args:
            **filters: Field name to value filters

        Returns:
            Number of records matching the filters
        """
        query = select(func.count()).select_from(self._filtered(**filters).subquery())
        result = await self.session.execute(query)
        return result.scalar_one()

    async def get_by_tenant(
        self,
        tenant_id: int,
        skip: int = 0,
        limit: int = 100,
        order_by: Sequence[Any] = (),
        **filters: Any,
    ) -> List[ModelType]:
        """
        Retrieve a page of records for a specific tenant.

        WHY: Tenant-scoped queries are the only way tenant-facing code reads
        data, so scoping is enforced at the DAO level.

        Args:
            tenant_id: Owning tenant
            skip: Number of records to skip
            limit: Maximum number of records to return
            order_by: Ordering clauses
            **filters: Extra field equality filters (e.g., status=...)

        Raises:
            AttributeError: If the model doesn't have a tenant_id field
        """
        if not hasattr(self.model, "tenant_id"):
            raise AttributeError(
                f"{self.model.__name__} is not a multi-tenant model (no tenant_id field)"
            )

        query = self._filtered(tenant_id=tenant_id, **filters).order_by(*order_by)
        result = await self.session.execute(query.offset(skip).limit(limit))
        return list(result.scalars().all())

    async def get_by_id_and_tenant(self, id: int, tenant_id: int) -> Optional[ModelType]:
        """
        Retrieve a record by ID, ensuring it belongs to the specified tenant.

        WHY: A record owned by another tenant is reported exactly like a
        missing one, so ids of other tenants stay invisible.

        Returns:
            The model instance if found and owned by tenant, None otherwise

        Raises:
            AttributeError: If the model doesn't have a tenant_id field
        """
        if not hasattr(self.model, "tenant_id"):
            raise AttributeError(
                f"{self.model.__name__} is not a multi-tenant model (no tenant_id field)"
            )

        result = await self.session.execute(
            select(self.model)
            .where(
                self.model.id == id,
                self.model.tenant_id == tenant_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
