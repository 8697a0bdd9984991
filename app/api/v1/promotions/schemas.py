from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import JobStatus, PromotionStatus


# ----- Job start -----
class PromotionJobStartResponse(BaseModel):
    batch_id: UUID
    status: JobStatus
    total_students: int
    message: str = "Promotion processing started"


# ----- Progress -----
class PromotionProgressResponse(BaseModel):
    """Live job progress, or the stored batch outcome once the job has left memory."""

    batch_id: UUID
    status: str
    total_students: int
    processed_students: int
    promoted_students: int
    retained_students: int
    graduated_students: int
    failed_students: int
    progress: int = Field(..., ge=0, le=100, description="Percentage of records processed")
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    errors: List[str] = Field(default_factory=list)


# ----- Batch -----
class PromotionBatchResponse(BaseModel):
    id: UUID
    from_academic_year: Optional[str] = None
    to_academic_year: Optional[str] = None
    status: PromotionStatus
    total_students: int
    promoted_students: int
    retained_students: int
    graduated_students: int
    executed_by: Optional[UUID] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# ----- Revert -----
class PromotionRevertResponse(BaseModel):
    success: bool
    message: str
    reverted_count: int
    failed_revert_count: int
    errors: List[str] = Field(default_factory=list)


# ----- Cleanup -----
class StuckBatchItem(BaseModel):
    id: UUID
    from_academic_year: Optional[str] = None
    to_academic_year: Optional[str] = None
    created_at: datetime
    was_stuck_for_minutes: int


class StuckBatchCleanupResponse(BaseModel):
    message: str
    cleaned_batches: List[StuckBatchItem] = Field(default_factory=list)


class JobCleanupResponse(BaseModel):
    removed_jobs: int
