import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from datetime import datetime, timedelta
from typing import AsyncGenerator, List, Optional, Sequence, Tuple

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.api.v1.promotions.audit_service import AuditRecorder
from app.api.v1.promotions.dependencies import get_promotion_queue
from app.api.v1.promotions.job_registry import PromotionJobRegistry
from app.api.v1.promotions.queue_service import PromotionQueueService
from app.api.v1.promotions.repository import PromotionRepository
from app.api.v1.promotions.task_launcher import AsyncioTaskLauncher
from app.core.enums import PromotionStatus
from app.core.models import PromotionBatch, PromotionRecord, SchoolClass, Student
from app.db.session import Base
from app.main import app


@pytest.fixture()
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh SQLite database file per test with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture()
def repository(session_factory) -> PromotionRepository:
    return PromotionRepository(session_factory)


@pytest.fixture()
def audit(session_factory) -> AuditRecorder:
    return AuditRecorder(session_factory)


@pytest.fixture()
def registry() -> PromotionJobRegistry:
    return PromotionJobRegistry(retention_hours=24)


@pytest.fixture()
def launcher() -> AsyncioTaskLauncher:
    return AsyncioTaskLauncher()


@pytest.fixture()
def queue(repository, audit, registry, launcher) -> PromotionQueueService:
    return PromotionQueueService(
        repository,
        audit,
        registry,
        launcher,
        throttle_seconds=0,
        duplicate_start="overwrite",
    )


class Seeder:
    """Inserts classes, students and batches for a test."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self.session_factory = session_factory

    async def _add(self, obj):
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
            await session.refresh(obj)
        return obj

    async def school_class(
        self,
        name: str,
        grade: Optional[int] = None,
        enrollment: int = 0,
        capacity: Optional[int] = None,
    ) -> SchoolClass:
        return await self._add(
            SchoolClass(name=name, grade=grade, current_enrollment=enrollment, capacity=capacity)
        )

    async def student(self, full_name: str, school_class: SchoolClass) -> Student:
        return await self._add(Student(full_name=full_name, class_id=school_class.id))

    async def batch(
        self,
        records: Sequence[Tuple],
        status: PromotionStatus = PromotionStatus.PENDING,
        created_at: Optional[datetime] = None,
    ) -> PromotionBatch:
        """records: (student_id, from_class_id, to_class_id, PromotionType) tuples, kept in this order."""
        base = datetime.utcnow()
        batch = PromotionBatch(
            from_academic_year="2025-2026",
            to_academic_year="2026-2027",
            status=status.value,
            total_students=len(records),
            created_at=created_at or base,
        )
        batch.records = [
            PromotionRecord(
                student_id=student_id,
                from_class_id=from_class_id,
                to_class_id=to_class_id,
                promotion_type=promotion_type.value,
                status=PromotionStatus.PENDING.value,
                created_at=base + timedelta(milliseconds=i),
            )
            for i, (student_id, from_class_id, to_class_id, promotion_type) in enumerate(records)
        ]
        return await self._add(batch)

    async def get(self, model, obj_id):
        async with self.session_factory() as session:
            return await session.get(model, obj_id)

    async def records(self, batch_id) -> List[PromotionRecord]:
        batch = await PromotionRepository(self.session_factory).find_batch_with_records(batch_id)
        return list(batch.records)


@pytest.fixture()
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture()
async def client(queue: PromotionQueueService) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app, using the test queue service."""
    app.dependency_overrides[get_promotion_queue] = lambda: queue
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


