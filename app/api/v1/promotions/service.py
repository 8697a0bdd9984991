"""Promotion batch reads, progress, revert and stuck-batch cleanup."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import AcademicStatus, AuditStatus, PromotionStatus, PromotionType
from app.core.exceptions import PersistenceError, PromotionBatchNotFound, ServiceError
from app.core.models import PromotionBatch, PromotionRecord

from .job_registry import PromotionJob
from .queue_service import PromotionQueueService
from .schemas import (
    PromotionBatchResponse,
    PromotionProgressResponse,
    PromotionRevertResponse,
    StuckBatchCleanupResponse,
    StuckBatchItem,
)

logger = logging.getLogger(__name__)


def job_to_progress(job: PromotionJob) -> PromotionProgressResponse:
    return PromotionProgressResponse(
        batch_id=job.batch_id,
        status=job.status.value,
        total_students=job.total_students,
        processed_students=job.processed_students,
        promoted_students=job.promoted_students,
        retained_students=job.retained_students,
        graduated_students=job.graduated_students,
        failed_students=job.failed_students,
        progress=job.progress_percent,
        started_at=job.started_at,
        completed_at=job.completed_at,
        errors=list(job.errors),
    )


def _batch_to_progress(batch: PromotionBatch) -> PromotionProgressResponse:
    """Progress view of a batch whose job is no longer in memory."""
    return PromotionProgressResponse(
        batch_id=batch.id,
        status=batch.status,
        total_students=batch.total_students,
        processed_students=batch.total_students,
        promoted_students=batch.promoted_students,
        retained_students=batch.retained_students,
        graduated_students=batch.graduated_students,
        failed_students=0,
        progress=100,
        started_at=batch.started_at,
        completed_at=batch.completed_at,
        errors=[],
    )


async def get_promotion_progress(queue: PromotionQueueService, batch_id: UUID) -> PromotionProgressResponse:
    job = queue.get_job_progress(batch_id)
    if job is not None:
        return job_to_progress(job)

    batch = await queue.repository.find_batch(batch_id)
    if batch is None:
        raise PromotionBatchNotFound(batch_id)
    return _batch_to_progress(batch)


async def get_promotion_batch(queue: PromotionQueueService, batch_id: UUID) -> PromotionBatchResponse:
    batch = await queue.repository.find_batch(batch_id)
    if batch is None:
        raise PromotionBatchNotFound(batch_id)
    return PromotionBatchResponse.model_validate(batch)


async def list_promotion_batches(
    queue: PromotionQueueService,
    status_filter: Optional[PromotionStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[PromotionBatchResponse]:
    batches = await queue.repository.list_batches(status_filter, limit=limit, offset=offset)
    return [PromotionBatchResponse.model_validate(b) for b in batches]


async def revert_promotion_batch(
    queue: PromotionQueueService,
    batch_id: UUID,
    user_id: UUID,
) -> PromotionRevertResponse:
    """
    Undo every COMPLETED record of a COMPLETED batch, one transaction per record.
    Records that fail to revert are reported and left as they are.
    """
    repository = queue.repository
    batch = await repository.find_batch_with_records(batch_id)
    if batch is None:
        raise PromotionBatchNotFound(batch_id)
    if batch.status != PromotionStatus.COMPLETED:
        raise ServiceError("Can only revert completed promotion batches", status.HTTP_400_BAD_REQUEST)
    job = queue.get_job_progress(batch_id)
    if job is not None and not job.is_terminal:
        raise ServiceError("Promotion batch is still being processed", status.HTTP_409_CONFLICT)

    reverted_count = 0
    errors: List[str] = []

    for record in batch.records:
        if record.status != PromotionStatus.COMPLETED:
            continue
        try:
            await repository.run_transaction(lambda db, r=record: _revert_record(queue, db, r))
        except Exception as e:
            name = record.student.full_name if record.student is not None else str(record.student_id)
            errors.append(f"Failed to revert student {name}: {e}")
            logger.error("Failed to revert promotion record %s: %s", record.id, e)
            continue

        reverted_count += 1
        await queue.audit.log(
            user_id,
            "UPDATE",
            "StudentPromotionRevert",
            AuditStatus.SUCCESS,
            {
                "student_id": record.student_id,
                "promotion_type": record.promotion_type,
                "from_class_id": record.from_class_id,
                "to_class_id": record.to_class_id,
                "batch_id": record.batch_id,
            },
        )

    try:
        await repository.update_batch(batch.id, status=PromotionStatus.REVERTED, completed_at=datetime.utcnow())
    except PersistenceError as e:
        logger.error("Failed to mark promotion batch %s as reverted: %s", batch.id, e)
        await queue.audit.log(
            user_id,
            "UPDATE",
            "PromotionBatchRevert",
            AuditStatus.FAIL,
            {"batch_id": batch.id, "reverted_count": reverted_count, "error": str(e)},
        )
        raise ServiceError(f"Failed to revert promotion batch: {e}", status.HTTP_400_BAD_REQUEST) from e

    await queue.audit.log(
        user_id,
        "UPDATE",
        "PromotionBatchRevert",
        AuditStatus.FAIL if errors else AuditStatus.SUCCESS,
        {
            "batch_id": batch.id,
            "reverted_count": reverted_count,
            "failed_revert_count": len(errors),
            "errors": errors or None,
        },
    )

    message = f"Successfully reverted {reverted_count} student promotions"
    if errors:
        message += f" ({len(errors)} failed to revert)"
    return PromotionRevertResponse(
        success=True,
        message=message,
        reverted_count=reverted_count,
        failed_revert_count=len(errors),
        errors=errors,
    )


async def _revert_record(queue: PromotionQueueService, db: AsyncSession, record: PromotionRecord) -> None:
    repository = queue.repository
    if record.promotion_type == PromotionType.PROMOTED and record.to_class_id:
        await repository.update_student(
            db,
            record.student_id,
            class_id=record.from_class_id,
            academic_status=AcademicStatus.active,
        )
        await repository.update_class_enrollment(db, record.to_class_id, -1)
        await repository.update_class_enrollment(db, record.from_class_id, 1)
    elif record.promotion_type == PromotionType.GRADUATED:
        await repository.update_student(db, record.student_id, academic_status=AcademicStatus.active)
        await repository.update_class_enrollment(db, record.from_class_id, 1)

    await repository.update_record(
        db,
        record.id,
        status=PromotionStatus.REVERTED,
        processed_at=datetime.utcnow(),
    )


async def cleanup_stuck_batches(
    queue: PromotionQueueService,
    older_than_minutes: int,
) -> StuckBatchCleanupResponse:
    """Mark PENDING / IN_PROGRESS batches FAILED when they are old and no live job is working on them."""
    now = datetime.utcnow()
    stuck = await queue.repository.find_stuck_batches(now - timedelta(minutes=older_than_minutes))

    cleaned: List[StuckBatchItem] = []
    for batch in stuck:
        job = queue.get_job_progress(batch.id)
        if job is not None and not job.is_terminal:
            continue
        created_at = batch.created_at.replace(tzinfo=None) if batch.created_at.tzinfo else batch.created_at
        stuck_minutes = round((now - created_at).total_seconds() / 60)
        await queue.repository.update_batch(batch.id, status=PromotionStatus.FAILED, completed_at=now)
        logger.warning("Marked stuck promotion batch %s as failed (stuck for %d minutes)", batch.id, stuck_minutes)
        cleaned.append(
            StuckBatchItem(
                id=batch.id,
                from_academic_year=batch.from_academic_year,
                to_academic_year=batch.to_academic_year,
                created_at=batch.created_at,
                was_stuck_for_minutes=stuck_minutes,
            )
        )

    if not cleaned:
        return StuckBatchCleanupResponse(message="No stuck batches found")
    return StuckBatchCleanupResponse(
        message=f"Cleaned up {len(cleaned)} stuck promotion batches",
        cleaned_batches=cleaned,
    )
