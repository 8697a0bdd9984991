"""
Persistence gateway for promotion batches.

Every write goes through an explicit transaction opened from the injected session
factory, because batch processing runs detached from any request session.
Driver IntegrityErrors are translated into tagged PersistenceError subclasses.
"""

import re
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.core.enums import PromotionStatus
from app.core.exceptions import (
    CapacityExceeded,
    ForeignKeyViolation,
    PersistenceError,
    RecordNotFound,
    UniqueViolation,
)
from app.core.models import PromotionBatch, PromotionRecord, SchoolClass, Student

T = TypeVar("T")

# students_class_id_fkey (PostgreSQL constraint names)
_FK_NAME_RE = re.compile(r'"?\w+?_(\w+_id)_fkey"?')
# Key (class_id)=(...) (PostgreSQL detail) / UNIQUE constraint failed: students.roll_number (SQLite)
_KEY_DETAIL_RE = re.compile(r"key \((\w+)\)=")
_SQLITE_UNIQUE_RE = re.compile(r"unique constraint failed: \w+\.(\w+)")


def translate_integrity_error(exc: IntegrityError) -> PersistenceError:
    """Map a driver IntegrityError onto ForeignKeyViolation / UniqueViolation."""
    text = str(exc.orig if exc.orig is not None else exc)
    lowered = text.lower()
    if "foreign key" in lowered:
        match = _FK_NAME_RE.search(text) or _KEY_DETAIL_RE.search(lowered)
        return ForeignKeyViolation(match.group(1) if match else None, detail=text)
    if "unique" in lowered or "duplicate key" in lowered:
        match = _KEY_DETAIL_RE.search(lowered) or _SQLITE_UNIQUE_RE.search(lowered)
        return UniqueViolation(match.group(1) if match else None, detail=text)
    return ForeignKeyViolation(None, detail=text) if "constraint" in lowered else PersistenceError(text)


class PromotionRepository:
    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Session with an open transaction; commits on exit, rolls back on error."""
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except IntegrityError as e:
                raise translate_integrity_error(e) from e

    async def run_transaction(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async with self.transaction() as db:
            return await fn(db)

    # ----- Reads -----

    async def find_batch_with_records(self, batch_id: UUID) -> Optional[PromotionBatch]:
        """Batch with records, their student (and student class) and from/to classes eagerly loaded."""
        stmt = (
            select(PromotionBatch)
            .where(PromotionBatch.id == batch_id)
            .options(
                selectinload(PromotionBatch.records)
                .selectinload(PromotionRecord.student)
                .selectinload(Student.school_class),
                selectinload(PromotionBatch.records).selectinload(PromotionRecord.from_class),
                selectinload(PromotionBatch.records).selectinload(PromotionRecord.to_class),
            )
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def find_batch(self, batch_id: UUID) -> Optional[PromotionBatch]:
        async with self._session_factory() as session:
            return await session.get(PromotionBatch, batch_id)

    async def list_batches(
        self,
        status: Optional[PromotionStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[PromotionBatch]:
        stmt = select(PromotionBatch).order_by(PromotionBatch.created_at.desc())
        if status is not None:
            stmt = stmt.where(PromotionBatch.status == status.value)
        stmt = stmt.limit(limit).offset(offset)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def find_stuck_batches(self, created_before: datetime) -> List[PromotionBatch]:
        stmt = select(PromotionBatch).where(
            PromotionBatch.status.in_([PromotionStatus.PENDING.value, PromotionStatus.IN_PROGRESS.value]),
            PromotionBatch.created_at < created_before,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # ----- Writes -----

    async def update_batch(self, batch_id: UUID, **fields) -> None:
        async with self.transaction() as db:
            await self._update_one(db, PromotionBatch, "promotion batch", batch_id, fields)

    async def update_record(self, db: AsyncSession, record_id: UUID, **fields) -> None:
        await self._update_one(db, PromotionRecord, "promotion record", record_id, fields)

    async def update_student(self, db: AsyncSession, student_id: UUID, **fields) -> None:
        await self._update_one(db, Student, "student", student_id, fields)

    async def update_class_enrollment(self, db: AsyncSession, class_id: UUID, delta: int) -> None:
        """Adjust current_enrollment by delta. Increments past capacity raise CapacityExceeded."""
        row = (
            await db.execute(
                select(SchoolClass.current_enrollment, SchoolClass.capacity).where(SchoolClass.id == class_id)
            )
        ).one_or_none()
        if row is None:
            raise RecordNotFound("class", class_id)
        current, capacity = row
        if delta > 0 and capacity is not None and current + delta > capacity:
            raise CapacityExceeded(class_id, capacity)
        await db.execute(
            update(SchoolClass)
            .where(SchoolClass.id == class_id)
            .values(current_enrollment=SchoolClass.current_enrollment + delta)
        )

    async def _update_one(self, db: AsyncSession, model, entity: str, entity_id: UUID, fields: dict) -> None:
        values = {k: (v.value if isinstance(v, Enum) else v) for k, v in fields.items()}
        try:
            result = await db.execute(update(model).where(model.id == entity_id).values(**values))
        except IntegrityError as e:
            raise translate_integrity_error(e) from e
        if result.rowcount == 0:
            raise RecordNotFound(entity, entity_id)
