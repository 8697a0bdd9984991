"""
In-process registry of live promotion jobs.

A PromotionJob mirrors the progress of one batch run. It is not persisted: jobs are
lost on restart and callers fall back to the stored batch. At most one job and one
progress subscriber exist per batch id; registering again replaces the previous one.
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple
from uuid import UUID

from app.core.enums import JobStatus, PromotionType

logger = logging.getLogger(__name__)

TERMINAL_JOB_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class PromotionJob:
    batch_id: UUID
    user_id: UUID
    total_students: int
    processed_students: int = 0
    promoted_students: int = 0
    retained_students: int = 0
    graduated_students: int = 0
    failed_students: int = 0
    status: JobStatus = JobStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    errors: List[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    @property
    def progress_percent(self) -> int:
        if self.total_students <= 0:
            return 0
        return round(self.processed_students / self.total_students * 100)

    def record_success(self, promotion_type: PromotionType) -> None:
        if promotion_type == PromotionType.PROMOTED:
            self.promoted_students += 1
        elif promotion_type == PromotionType.RETAINED:
            self.retained_students += 1
        elif promotion_type == PromotionType.GRADUATED:
            self.graduated_students += 1
        else:
            raise ValueError(f"Unknown promotion type: {promotion_type}")
        self.processed_students += 1

    def record_failure(self, message: str) -> None:
        self.failed_students += 1
        self.errors.append(message)
        self.processed_students += 1

    def snapshot(self) -> "PromotionJob":
        return copy.deepcopy(self)


ProgressCallback = Callable[[PromotionJob], None]


class JobStore(Protocol):
    """Storage for live jobs keyed by batch id."""

    def get(self, batch_id: UUID) -> Optional[PromotionJob]: ...

    def set(self, batch_id: UUID, job: PromotionJob) -> None: ...

    def delete(self, batch_id: UUID) -> None: ...

    def items(self) -> Iterable[Tuple[UUID, PromotionJob]]: ...


class InMemoryJobStore:
    def __init__(self) -> None:
        self._jobs: Dict[UUID, PromotionJob] = {}

    def get(self, batch_id: UUID) -> Optional[PromotionJob]:
        return self._jobs.get(batch_id)

    def set(self, batch_id: UUID, job: PromotionJob) -> None:
        self._jobs[batch_id] = job

    def delete(self, batch_id: UUID) -> None:
        self._jobs.pop(batch_id, None)

    def items(self) -> Iterable[Tuple[UUID, PromotionJob]]:
        return list(self._jobs.items())

    def __len__(self) -> int:
        return len(self._jobs)


class PromotionJobRegistry:
    def __init__(self, store: Optional[JobStore] = None, retention_hours: int = 24) -> None:
        self.store: JobStore = store if store is not None else InMemoryJobStore()
        self.retention = timedelta(hours=retention_hours)
        self._callbacks: Dict[UUID, ProgressCallback] = {}

    def register(self, job: PromotionJob) -> Optional[PromotionJob]:
        """Store job under its batch id. Returns the job it replaced, if any."""
        previous = self.store.get(job.batch_id)
        self.store.set(job.batch_id, job)
        return previous

    def get_job_progress(self, batch_id: UUID) -> Optional[PromotionJob]:
        return self.store.get(batch_id)

    def subscribe_to_progress(self, batch_id: UUID, callback: ProgressCallback) -> Optional[ProgressCallback]:
        """Take the batch's subscriber slot. Returns the subscriber it displaced, if any."""
        previous = self._callbacks.get(batch_id)
        self._callbacks[batch_id] = callback
        return previous if previous is not callback else None

    def unsubscribe_from_progress(self, batch_id: UUID, callback: Optional[ProgressCallback] = None) -> None:
        """Remove the batch subscriber. With callback given, only if it is still the registered one."""
        if callback is not None and self._callbacks.get(batch_id) is not callback:
            return
        self._callbacks.pop(batch_id, None)

    def has_subscriber(self, batch_id: UUID) -> bool:
        return batch_id in self._callbacks

    def notify(self, job: PromotionJob) -> None:
        """Hand a snapshot of job to the batch subscriber. Runs inline; subscribers must not block."""
        callback = self._callbacks.get(job.batch_id)
        if callback is None:
            return
        try:
            callback(job.snapshot())
        except Exception:
            logger.exception("Progress subscriber for batch %s failed", job.batch_id)

    def cleanup_completed_jobs(self, now: Optional[datetime] = None) -> int:
        """Drop terminal jobs whose completed_at is older than the retention window."""
        cutoff = (now or datetime.utcnow()) - self.retention
        removed = 0
        for batch_id, job in self.store.items():
            if job.is_terminal and job.completed_at is not None and job.completed_at < cutoff:
                self.store.delete(batch_id)
                self._callbacks.pop(batch_id, None)
                removed += 1
        if removed:
            logger.info("Removed %d completed promotion jobs", removed)
        return removed
