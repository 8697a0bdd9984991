import asyncio
from typing import AsyncIterator, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.enums import PromotionStatus
from app.core.exceptions import ServiceError

from . import service
from .dependencies import get_promotion_queue
from .job_registry import PromotionJob
from .queue_service import PromotionQueueService
from .schemas import (
    JobCleanupResponse,
    PromotionBatchResponse,
    PromotionJobStartResponse,
    PromotionProgressResponse,
    PromotionRevertResponse,
    StuckBatchCleanupResponse,
)

router = APIRouter(prefix="/api/v1/promotions", tags=["promotions"])

_FINAL_PROGRESS_STATUSES = {"COMPLETED", "FAILED", "REVERTED"}


@router.get(
    "/batches",
    response_model=List[PromotionBatchResponse],
    dependencies=[Depends(check_permission("promotion", "read"))],
)
async def list_promotion_batches(
    status_filter: Optional[PromotionStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    queue: PromotionQueueService = Depends(get_promotion_queue),
) -> List[PromotionBatchResponse]:
    """List promotion batches, newest first."""
    return await service.list_promotion_batches(queue, status_filter, limit=limit, offset=offset)


@router.get(
    "/batches/{batch_id}",
    response_model=PromotionBatchResponse,
    dependencies=[Depends(check_permission("promotion", "read"))],
)
async def get_promotion_batch(
    batch_id: UUID,
    queue: PromotionQueueService = Depends(get_promotion_queue),
) -> PromotionBatchResponse:
    try:
        return await service.get_promotion_batch(queue, batch_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/batches/{batch_id}/start",
    response_model=PromotionJobStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(check_permission("promotion", "execute"))],
)
async def start_promotion_batch(
    batch_id: UUID,
    queue: PromotionQueueService = Depends(get_promotion_queue),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromotionJobStartResponse:
    """Start processing a batch in the background. Poll /progress or subscribe to /progress/stream."""
    try:
        await queue.start_promotion_job(batch_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    job = queue.get_job_progress(batch_id)
    return PromotionJobStartResponse(batch_id=batch_id, status=job.status, total_students=job.total_students)


@router.get(
    "/batches/{batch_id}/progress",
    response_model=PromotionProgressResponse,
    dependencies=[Depends(check_permission("promotion", "read"))],
)
async def get_promotion_progress(
    batch_id: UUID,
    queue: PromotionQueueService = Depends(get_promotion_queue),
) -> PromotionProgressResponse:
    try:
        return await service.get_promotion_progress(queue, batch_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


def _sse(progress: PromotionProgressResponse) -> str:
    return f"event: progress\ndata: {progress.model_dump_json()}\n\n"


class ProgressStream:
    """Subscriber that buffers job snapshots for one event-stream connection."""

    def __init__(self) -> None:
        self._updates: "asyncio.Queue[Optional[PromotionJob]]" = asyncio.Queue()

    def __call__(self, job: PromotionJob) -> None:
        self._updates.put_nowait(job)

    def close(self) -> None:
        """End the stream after the updates already buffered."""
        self._updates.put_nowait(None)

    async def next_update(self) -> Optional[PromotionJob]:
        return await self._updates.get()


@router.get(
    "/batches/{batch_id}/progress/stream",
    dependencies=[Depends(check_permission("promotion", "read"))],
)
async def stream_promotion_progress(
    batch_id: UUID,
    queue: PromotionQueueService = Depends(get_promotion_queue),
) -> StreamingResponse:
    """
    Server-sent progress events until the job ends.

    Only one stream per batch is served at a time: a newer stream takes the
    subscriber slot and the older one is closed.
    """
    stream = ProgressStream()
    # Subscribe before the first snapshot so no update falls between the two.
    displaced = queue.subscribe_to_progress(batch_id, stream)
    if isinstance(displaced, ProgressStream):
        displaced.close()

    try:
        initial = await service.get_promotion_progress(queue, batch_id)
    except ServiceError as e:
        queue.unsubscribe_from_progress(batch_id, stream)
        raise HTTPException(status_code=e.status_code, detail=e.message)

    # Without a live job nothing will ever notify this stream.
    job = queue.get_job_progress(batch_id)
    finished = job is None or job.is_terminal or initial.status in _FINAL_PROGRESS_STATUSES

    async def events() -> AsyncIterator[str]:
        try:
            yield _sse(initial)
            if finished:
                return
            while True:
                update = await stream.next_update()
                if update is None:
                    return
                yield _sse(service.job_to_progress(update))
                if update.is_terminal:
                    return
        finally:
            queue.unsubscribe_from_progress(batch_id, stream)

    return StreamingResponse(events(), media_type="text/event-stream")


@router.post(
    "/batches/{batch_id}/revert",
    response_model=PromotionRevertResponse,
    dependencies=[Depends(check_permission("promotion", "revert"))],
)
async def revert_promotion_batch(
    batch_id: UUID,
    queue: PromotionQueueService = Depends(get_promotion_queue),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromotionRevertResponse:
    """Undo a completed batch: students go back to their previous class and status."""
    try:
        return await service.revert_promotion_batch(queue, batch_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/batches/cleanup-stuck",
    response_model=StuckBatchCleanupResponse,
    dependencies=[Depends(check_permission("promotion", "manage"))],
)
async def cleanup_stuck_batches(
    older_than_minutes: int = Query(settings.promotion_stuck_batch_minutes, ge=1),
    queue: PromotionQueueService = Depends(get_promotion_queue),
) -> StuckBatchCleanupResponse:
    return await service.cleanup_stuck_batches(queue, older_than_minutes)


@router.post(
    "/jobs/cleanup",
    response_model=JobCleanupResponse,
    dependencies=[Depends(check_permission("promotion", "manage"))],
)
async def cleanup_completed_jobs(
    queue: PromotionQueueService = Depends(get_promotion_queue),
) -> JobCleanupResponse:
    """Drop finished in-memory jobs past the retention window. Meant for a periodic scheduler."""
    return JobCleanupResponse(removed_jobs=queue.cleanup_completed_jobs())
