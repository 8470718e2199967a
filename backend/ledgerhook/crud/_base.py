"""Base CRUD class for the billing tables."""

from typing import Any, Generic, Type, TypeVar, Union

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerhook.db.unit_of_work import UnitOfWork
from ledgerhook.models._base import Base

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)


class CRUDBase(Generic[ModelType, CreateSchemaType, UpdateSchemaType]):
    """CRUD base class for the billing tables.

    The billing processor acts as the system, so rows are not scoped to a user or an
    organization. Rows are looked up by their natural keys (subscription id, grant key,
    Stripe event id) in the table-specific subclasses.

    Writes commit on their own unless a ``UnitOfWork`` is passed, in which case they only
    flush and the unit of work decides.
    """

    def __init__(self, model: Type[ModelType]):
        """CRUD object for ``model``."""
        self.model = model

    async def get_all(self, db: AsyncSession) -> list[ModelType]:
        """Get every row of the table, oldest first.

        Args:
        ----
            db (AsyncSession): The database session.

        Returns:
        -------
            list[ModelType]: All rows ordered by creation time.

        """
        result = await db.execute(select(self.model).order_by(self.model.created_at))
        return list(result.scalars().all())

    async def create(
        self,
        db: AsyncSession,
        *,
        obj_in: Union[CreateSchemaType, dict[str, Any]],
        uow: UnitOfWork = None,
    ) -> ModelType:
        """Insert a new row.

        Args:
        ----
            db (AsyncSession): The database session.
            obj_in (CreateSchemaType | dict): Column values of the new row.
            uow (UnitOfWork, optional): Unit of work for transaction control.
                If not provided, commits.

        Returns:
        -------
            ModelType: The inserted row.

        Raises:
        ------
            IntegrityError: When a unique key is already taken. With a unit of work this
                surfaces at flush, so the caller can resolve the conflict before commit.

        """
        values = obj_in if isinstance(obj_in, dict) else obj_in.model_dump()
        db_obj = self.model(**values)
        db.add(db_obj)
        await self._write(db, uow)
        return db_obj

    async def update(
        self,
        db: AsyncSession,
        *,
        db_obj: ModelType,
        obj_in: Union[UpdateSchemaType, dict[str, Any]],
        uow: UnitOfWork = None,
    ) -> ModelType:
        """Apply column values to a loaded row.

        Only fields that were explicitly set on a schema are applied; keys that are not
        columns of the model are skipped.

        Args:
        ----
            db (AsyncSession): The database session.
            db_obj (ModelType): The row to update.
            obj_in (UpdateSchemaType | dict): The new values.
            uow (UnitOfWork, optional): Unit of work for transaction control.

        Returns:
        -------
            ModelType: The updated row.

        """
        values = obj_in if isinstance(obj_in, dict) else obj_in.model_dump(exclude_unset=True)
        columns = self.model.__table__.columns.keys()
        for key, value in values.items():
            if key in columns:
                setattr(db_obj, key, value)
        db.add(db_obj)
        await self._write(db, uow)
        return db_obj

    @staticmethod
    async def _write(db: AsyncSession, uow: UnitOfWork = None) -> None:
        if uow is None:
            await db.commit()
        else:
            await db.flush()
