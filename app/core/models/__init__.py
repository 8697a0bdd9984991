from app.core.models.class_model import SchoolClass
from app.core.models.student import Student
from app.core.models.promotion_batch import PromotionBatch
from app.core.models.promotion_record import PromotionRecord
from app.core.models.audit_log import AuditLog

__all__ = [
    "SchoolClass",
    "Student",
    "PromotionBatch",
    "PromotionRecord",
    "AuditLog",
]
