"""
Background processing of promotion batches with live progress.

Each record is applied in its own transaction; a failing record is counted and
classified but never stops the batch. Progress lives in the job registry and is
pushed to the batch subscriber after every record.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import AcademicStatus, AuditStatus, JobStatus, PromotionStatus, PromotionType
from app.core.exceptions import InvalidPromotion, PromotionBatchNotFound, ServiceError
from app.core.models import PromotionBatch, PromotionRecord

from .audit_service import AuditRecorder
from .error_messages import get_detailed_error_message, student_grade
from .job_registry import PromotionJob, PromotionJobRegistry
from .repository import PromotionRepository
from .task_launcher import AsyncioTaskLauncher

logger = logging.getLogger(__name__)

DUPLICATE_START_OVERWRITE = "overwrite"
DUPLICATE_START_REJECT = "reject"


def _student_name(record: PromotionRecord) -> str:
    student = record.student
    if student is not None and student.full_name:
        return student.full_name
    return str(record.student_id)


class PromotionQueueService:
    def __init__(
        self,
        repository: PromotionRepository,
        audit: AuditRecorder,
        registry: Optional[PromotionJobRegistry] = None,
        launcher: Optional[AsyncioTaskLauncher] = None,
        *,
        throttle_every: Optional[int] = None,
        throttle_seconds: Optional[float] = None,
        final_grade: Optional[int] = None,
        duplicate_start: Optional[str] = None,
    ) -> None:
        self.repository = repository
        self.audit = audit
        self.registry = registry or PromotionJobRegistry(retention_hours=settings.promotion_job_retention_hours)
        self.launcher = launcher or AsyncioTaskLauncher()
        self.throttle_every = throttle_every if throttle_every is not None else settings.promotion_throttle_every
        self.throttle_seconds = (
            throttle_seconds if throttle_seconds is not None else settings.promotion_throttle_seconds
        )
        self.final_grade = final_grade if final_grade is not None else settings.promotion_final_grade
        self.duplicate_start = duplicate_start or settings.promotion_duplicate_start
        if self.duplicate_start not in (DUPLICATE_START_OVERWRITE, DUPLICATE_START_REJECT):
            raise ValueError(f"Unknown duplicate start policy: {self.duplicate_start}")

    # ----- Entry points -----

    async def start_promotion_job(self, batch_id: UUID, user_id: UUID) -> asyncio.Task:
        """
        Load the batch, register a fresh job and schedule processing in the background.

        Returns the task handle as soon as it is scheduled; the outcome is only
        observable through get_job_progress, the subscriber, the batch row or the audit log.
        """
        batch = await self.repository.find_batch_with_records(batch_id)
        if batch is None:
            raise PromotionBatchNotFound(batch_id)

        existing = self.registry.get_job_progress(batch.id)
        if existing is not None and not existing.is_terminal:
            if self.duplicate_start == DUPLICATE_START_REJECT:
                raise ServiceError(
                    "A promotion job is already running for this batch",
                    status.HTTP_409_CONFLICT,
                )
            # The earlier loop is not cancelled and keeps writing to the same batch.
            logger.warning(
                "Replacing running promotion job for batch %s (%d/%d processed)",
                batch.id,
                existing.processed_students,
                existing.total_students,
            )

        job = PromotionJob(batch_id=batch.id, user_id=user_id, total_students=len(batch.records))
        self.registry.register(job)

        logger.info("Scheduling promotion batch %s with %d records", batch.id, job.total_students)
        return self.launcher.launch(
            self.process_promotion_batch(batch, job),
            name=f"promotion-batch-{batch.id}",
        )

    def get_job_progress(self, batch_id: UUID) -> Optional[PromotionJob]:
        return self.registry.get_job_progress(batch_id)

    def subscribe_to_progress(self, batch_id: UUID, callback):
        return self.registry.subscribe_to_progress(batch_id, callback)

    def unsubscribe_from_progress(self, batch_id: UUID, callback=None) -> None:
        self.registry.unsubscribe_from_progress(batch_id, callback)

    def cleanup_completed_jobs(self, now: Optional[datetime] = None) -> int:
        return self.registry.cleanup_completed_jobs(now)

    # ----- Processing -----

    async def process_promotion_batch(self, batch: PromotionBatch, job: PromotionJob) -> None:
        try:
            job.status = JobStatus.IN_PROGRESS
            job.started_at = datetime.utcnow()
            self.registry.notify(job)

            await self.repository.update_batch(
                batch.id,
                status=PromotionStatus.IN_PROGRESS,
                started_at=job.started_at,
            )

            for index, record in enumerate(batch.records):
                try:
                    promotion_type = await self.process_individual_promotion(record, job.user_id)
                except Exception as e:
                    reason = get_detailed_error_message(e, record, self.final_grade)
                    job.record_failure(f"{_student_name(record)}: {reason}")
                    logger.error(
                        "Failed to promote student %s in batch %s: %s",
                        record.student_id,
                        batch.id,
                        e,
                        exc_info=not isinstance(e, InvalidPromotion),
                    )
                else:
                    job.record_success(promotion_type)

                self.registry.notify(job)

                # Throttle to keep the database responsive during large batches.
                if index % self.throttle_every == 0:
                    await asyncio.sleep(self.throttle_seconds)

            job.status = JobStatus.COMPLETED
            job.completed_at = datetime.utcnow()

            await self.repository.update_batch(
                batch.id,
                status=PromotionStatus.FAILED if job.failed_students > 0 else PromotionStatus.COMPLETED,
                completed_at=job.completed_at,
                promoted_students=job.promoted_students,
                retained_students=job.retained_students,
                graduated_students=job.graduated_students,
            )

            self.registry.notify(job)

            await self.audit.log(
                job.user_id,
                "UPDATE",
                "PromotionBatch",
                AuditStatus.FAIL if job.failed_students > 0 else AuditStatus.SUCCESS,
                {
                    "batch_id": batch.id,
                    "total_processed": job.processed_students,
                    "promoted": job.promoted_students,
                    "retained": job.retained_students,
                    "graduated": job.graduated_students,
                    "failed": job.failed_students,
                },
            )
            logger.info(
                "Promotion batch %s finished: %d promoted, %d retained, %d graduated, %d failed",
                batch.id,
                job.promoted_students,
                job.retained_students,
                job.graduated_students,
                job.failed_students,
            )
        except Exception as e:
            job.status = JobStatus.FAILED
            job.completed_at = datetime.utcnow()
            job.errors.append(f"Batch processing failed: {e}")
            self.registry.notify(job)

            try:
                await self.repository.update_batch(
                    batch.id,
                    status=PromotionStatus.FAILED,
                    completed_at=job.completed_at,
                )
            except Exception:
                logger.exception("Could not mark promotion batch %s as failed", batch.id)

            logger.exception("Promotion batch %s failed", batch.id)

    async def process_individual_promotion(self, record: PromotionRecord, user_id: UUID) -> PromotionType:
        """Apply one record atomically, then audit it. Any error propagates to the batch loop."""
        try:
            promotion_type = PromotionType(record.promotion_type)
        except ValueError:
            raise InvalidPromotion(f"Unknown promotion type: {record.promotion_type}") from None

        async def _apply(db: AsyncSession) -> None:
            await self.repository.update_record(
                db,
                record.id,
                status=PromotionStatus.IN_PROGRESS,
                processed_at=datetime.utcnow(),
            )

            if promotion_type == PromotionType.PROMOTED:
                if not record.to_class_id:
                    raise InvalidPromotion(f"Promotion record {record.id} has no target class")
                await self.repository.update_student(
                    db,
                    record.student_id,
                    class_id=record.to_class_id,
                    academic_status=AcademicStatus.active,
                )
                await self.repository.update_class_enrollment(db, record.from_class_id, -1)
                await self.repository.update_class_enrollment(db, record.to_class_id, 1)
            elif promotion_type == PromotionType.GRADUATED:
                grade = student_grade(record)
                if grade is not None and grade < self.final_grade:
                    raise InvalidPromotion(f"Student {record.student_id} is in grade {grade}, not {self.final_grade}")
                await self.repository.update_student(
                    db,
                    record.student_id,
                    academic_status=AcademicStatus.graduated,
                )
                await self.repository.update_class_enrollment(db, record.from_class_id, -1)
            # RETAINED: student stays in the same class.

            await self.repository.update_record(db, record.id, status=PromotionStatus.COMPLETED)

        await self.repository.run_transaction(_apply)

        await self.audit.log(
            user_id,
            "UPDATE",
            "StudentPromotion",
            AuditStatus.SUCCESS,
            {
                "student_id": record.student_id,
                "promotion_type": promotion_type,
                "from_class_id": record.from_class_id,
                "to_class_id": record.to_class_id,
                "batch_id": record.batch_id,
            },
        )
        return promotion_type
