"""Human-readable reasons for failed promotion records, shown in job progress."""

from typing import Optional

from app.core.enums import PromotionType
from app.core.exceptions import CapacityExceeded, ForeignKeyViolation, RecordNotFound, UniqueViolation
from app.core.models import PromotionRecord


def student_grade(record: PromotionRecord) -> Optional[int]:
    """Grade of the class the student currently sits in (falls back to the record's from-class)."""
    student = record.student
    school_class = student.school_class if student is not None else None
    if school_class is None:
        school_class = record.from_class
    return school_class.grade if school_class is not None else None


def get_detailed_error_message(error: Exception, record: PromotionRecord, final_grade: int = 12) -> str:
    """Classify a record failure. Checks run in priority order; the first match wins."""
    if isinstance(error, ForeignKeyViolation):
        if error.field and "class_id" in error.field:
            return "Target class not found or invalid"
        return "Database constraint violation"

    if isinstance(error, UniqueViolation):
        return "Student already exists in target class"

    if isinstance(error, RecordNotFound):
        return "Student or class record not found"

    if isinstance(error, CapacityExceeded):
        return "Target class is at full capacity"

    if record.promotion_type == PromotionType.PROMOTED and not record.to_class_id:
        return "No target class available for promotion"

    if record.promotion_type == PromotionType.GRADUATED:
        grade = student_grade(record)
        if grade is not None and grade < final_grade:
            return "Student not in final grade for graduation"

    return str(error) or "Unknown error"
