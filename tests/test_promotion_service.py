import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from app.api.v1.promotions import service
from app.api.v1.promotions.job_registry import PromotionJob
from app.core.enums import AcademicStatus, JobStatus, PromotionStatus, PromotionType
from app.core.exceptions import PromotionBatchNotFound, RecordNotFound, ServiceError
from app.core.models import AuditLog, PromotionBatch, SchoolClass, Student

USER_ID = uuid.uuid4()


async def run_batch(queue, batch_id) -> None:
    await (await queue.start_promotion_job(batch_id, USER_ID))


@pytest.mark.asyncio
async def test_progress_uses_live_job(queue, seed) -> None:
    school_class = await seed.school_class("7th", grade=7)
    student = await seed.student("Asha Rao", school_class)
    batch = await seed.batch([(student.id, school_class.id, None, PromotionType.RETAINED)])
    await run_batch(queue, batch.id)

    progress = await service.get_promotion_progress(queue, batch.id)

    assert progress.status == "COMPLETED"
    assert progress.processed_students == 1
    assert progress.retained_students == 1
    assert progress.progress == 100


@pytest.mark.asyncio
async def test_progress_falls_back_to_stored_batch(queue, seed) -> None:
    school_class = await seed.school_class("7th", grade=7)
    student = await seed.student("Asha Rao", school_class)
    batch = await seed.batch([(student.id, school_class.id, None, PromotionType.RETAINED)])
    await run_batch(queue, batch.id)

    # Simulates a restart: the registry forgot the job.
    queue.registry.store.delete(batch.id)
    progress = await service.get_promotion_progress(queue, batch.id)

    assert progress.status == PromotionStatus.COMPLETED.value
    assert progress.total_students == 1
    assert progress.processed_students == 1
    assert progress.failed_students == 0
    assert progress.progress == 100
    assert progress.errors == []


@pytest.mark.asyncio
async def test_progress_unknown_batch(queue) -> None:
    with pytest.raises(PromotionBatchNotFound):
        await service.get_promotion_progress(queue, uuid.uuid4())


@pytest.mark.asyncio
async def test_get_and_list_batches(queue, seed) -> None:
    school_class = await seed.school_class("7th", grade=7)
    student = await seed.student("Asha Rao", school_class)
    first = await seed.batch(
        [(student.id, school_class.id, None, PromotionType.RETAINED)],
        created_at=datetime.utcnow() - timedelta(days=1),
    )
    second = await seed.batch([], status=PromotionStatus.COMPLETED)

    fetched = await service.get_promotion_batch(queue, first.id)
    assert fetched.id == first.id
    assert fetched.status == PromotionStatus.PENDING
    assert fetched.total_students == 1

    listed = await service.list_promotion_batches(queue)
    assert [b.id for b in listed] == [second.id, first.id]

    completed = await service.list_promotion_batches(queue, PromotionStatus.COMPLETED)
    assert [b.id for b in completed] == [second.id]

    with pytest.raises(PromotionBatchNotFound):
        await service.get_promotion_batch(queue, uuid.uuid4())


@pytest.mark.asyncio
async def test_revert_restores_students_and_enrollment(queue, seed) -> None:
    grade_11 = await seed.school_class("11th", grade=11, enrollment=30)
    grade_12 = await seed.school_class("12th", grade=12, enrollment=20)
    promoted = await seed.student("Ben Iyer", grade_11)
    graduated = await seed.student("Cara Das", grade_12)
    batch = await seed.batch(
        [
            (promoted.id, grade_11.id, grade_12.id, PromotionType.PROMOTED),
            (graduated.id, grade_12.id, None, PromotionType.GRADUATED),
        ]
    )
    await run_batch(queue, batch.id)
    assert (await seed.get(SchoolClass, grade_11.id)).current_enrollment == 29

    result = await service.revert_promotion_batch(queue, batch.id, USER_ID)

    assert result.success is True
    assert result.reverted_count == 2
    assert result.failed_revert_count == 0
    assert result.message == "Successfully reverted 2 student promotions"

    assert (await seed.get(SchoolClass, grade_11.id)).current_enrollment == 30
    assert (await seed.get(SchoolClass, grade_12.id)).current_enrollment == 20
    assert (await seed.get(Student, promoted.id)).class_id == grade_11.id
    assert (await seed.get(Student, graduated.id)).academic_status == AcademicStatus.active.value
    assert all(r.status == PromotionStatus.REVERTED.value for r in await seed.records(batch.id))
    assert (await seed.get(PromotionBatch, batch.id)).status == PromotionStatus.REVERTED.value


@pytest.mark.asyncio
async def test_revert_requires_completed_batch(queue, seed) -> None:
    grade_10 = await seed.school_class("10th", grade=10)
    student = await seed.student("Esha Nair", grade_10)
    batch = await seed.batch([(student.id, grade_10.id, None, PromotionType.GRADUATED)])
    await run_batch(queue, batch.id)

    with pytest.raises(ServiceError) as exc_info:
        await service.revert_promotion_batch(queue, batch.id, USER_ID)
    assert exc_info.value.status_code == 400

    with pytest.raises(PromotionBatchNotFound):
        await service.revert_promotion_batch(queue, uuid.uuid4(), USER_ID)


@pytest.mark.asyncio
async def test_revert_fails_when_batch_cannot_be_marked(queue, seed, session_factory, monkeypatch) -> None:
    grade_5 = await seed.school_class("5th", grade=5, enrollment=30)
    grade_6 = await seed.school_class("6th", grade=6, enrollment=20)
    student = await seed.student("Farah Khan", grade_5)
    batch = await seed.batch([(student.id, grade_5.id, grade_6.id, PromotionType.PROMOTED)])
    await run_batch(queue, batch.id)

    async def missing_batch(batch_id, **fields):
        raise RecordNotFound("promotion batch", batch_id)

    monkeypatch.setattr(queue.repository, "update_batch", missing_batch)

    with pytest.raises(ServiceError) as exc_info:
        await service.revert_promotion_batch(queue, batch.id, USER_ID)
    assert exc_info.value.status_code == 400
    assert exc_info.value.message.startswith("Failed to revert promotion batch")

    async with session_factory() as session:
        rows = (
            await session.execute(select(AuditLog).where(AuditLog.module == "PromotionBatchRevert"))
        ).scalars().all()
    assert [r.status for r in rows] == ["FAIL"]
    assert rows[0].details["batch_id"] == str(batch.id)
    assert rows[0].details["reverted_count"] == 1


@pytest.mark.asyncio
async def test_cleanup_stuck_batches(queue, seed) -> None:
    old = datetime.utcnow() - timedelta(hours=3)
    stuck = await seed.batch([], status=PromotionStatus.IN_PROGRESS, created_at=old)
    live = await seed.batch([], status=PromotionStatus.IN_PROGRESS, created_at=old)
    finished = await seed.batch([], status=PromotionStatus.COMPLETED, created_at=old)
    recent = await seed.batch([], status=PromotionStatus.PENDING)
    queue.registry.register(
        PromotionJob(batch_id=live.id, user_id=USER_ID, total_students=0, status=JobStatus.IN_PROGRESS)
    )

    result = await service.cleanup_stuck_batches(queue, older_than_minutes=60)

    assert result.message == "Cleaned up 1 stuck promotion batches"
    assert [b.id for b in result.cleaned_batches] == [stuck.id]
    assert result.cleaned_batches[0].was_stuck_for_minutes >= 179
    assert (await seed.get(PromotionBatch, stuck.id)).status == PromotionStatus.FAILED.value
    assert (await seed.get(PromotionBatch, live.id)).status == PromotionStatus.IN_PROGRESS.value
    assert (await seed.get(PromotionBatch, finished.id)).status == PromotionStatus.COMPLETED.value
    assert (await seed.get(PromotionBatch, recent.id)).status == PromotionStatus.PENDING.value

    again = await service.cleanup_stuck_batches(queue, older_than_minutes=60)
    assert again.message == "No stuck batches found"
    assert again.cleaned_batches == []
