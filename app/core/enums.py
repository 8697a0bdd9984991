from enum import Enum


class PromotionStatus(str, Enum):
    """Persisted status of a promotion batch or record."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REVERTED = "REVERTED"


class PromotionType(str, Enum):
    PROMOTED = "PROMOTED"
    RETAINED = "RETAINED"
    GRADUATED = "GRADUATED"


class JobStatus(str, Enum):
    """Status of the in-memory progress tracker. Kept separate from PromotionStatus."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class AcademicStatus(str, Enum):
    active = "active"
    graduated = "graduated"


class AuditStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAIL = "FAIL"
