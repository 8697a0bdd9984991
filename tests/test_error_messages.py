"""Classification of per-record promotion failures."""

import uuid

import pytest
from sqlalchemy.exc import IntegrityError

from app.api.v1.promotions.error_messages import get_detailed_error_message
from app.api.v1.promotions.repository import translate_integrity_error
from app.core.exceptions import (
    CapacityExceeded,
    ForeignKeyViolation,
    InvalidPromotion,
    PersistenceError,
    RecordNotFound,
    UniqueViolation,
)
from app.core.models import PromotionRecord, SchoolClass, Student


def make_record(promotion_type: str = "PROMOTED", to_class: bool = True, grade: int = 12) -> PromotionRecord:
    school_class = SchoolClass(name=f"Grade {grade}", grade=grade)
    return PromotionRecord(
        id=uuid.uuid4(),
        student_id=uuid.uuid4(),
        from_class_id=uuid.uuid4(),
        to_class_id=uuid.uuid4() if to_class else None,
        promotion_type=promotion_type,
        student=Student(full_name="Test Student", school_class=school_class),
    )


@pytest.mark.parametrize(
    "error, expected",
    [
        (ForeignKeyViolation("class_id"), "Target class not found or invalid"),
        (ForeignKeyViolation("student_id"), "Database constraint violation"),
        (ForeignKeyViolation(None), "Database constraint violation"),
        (UniqueViolation("student_id"), "Student already exists in target class"),
        (RecordNotFound("student"), "Student or class record not found"),
        (CapacityExceeded(uuid.uuid4(), 30), "Target class is at full capacity"),
    ],
)
def test_tagged_errors(error, expected) -> None:
    assert get_detailed_error_message(error, make_record()) == expected


def test_tagged_error_wins_over_record_context() -> None:
    record = make_record("PROMOTED", to_class=False)
    assert get_detailed_error_message(CapacityExceeded(), record) == "Target class is at full capacity"


def test_promoted_without_target_class() -> None:
    record = make_record("PROMOTED", to_class=False)
    error = InvalidPromotion("record has no target class")
    assert get_detailed_error_message(error, record) == "No target class available for promotion"


def test_graduation_below_final_grade() -> None:
    record = make_record("GRADUATED", to_class=False, grade=10)
    assert get_detailed_error_message(RuntimeError("boom"), record) == "Student not in final grade for graduation"


def test_final_grade_is_configurable() -> None:
    record = make_record("GRADUATED", to_class=False, grade=10)
    assert get_detailed_error_message(RuntimeError("boom"), record, final_grade=10) == "boom"


def test_message_text_is_not_matched() -> None:
    # Only the error type is classified; a plain message mentioning "capacity" falls through.
    record = make_record("RETAINED", to_class=False)
    assert get_detailed_error_message(RuntimeError("over capacity"), record) == "over capacity"


def test_fallback_for_empty_message() -> None:
    assert get_detailed_error_message(RuntimeError(), make_record("RETAINED")) == "Unknown error"


def _integrity_error(message: str) -> IntegrityError:
    return IntegrityError("UPDATE students SET class_id=?", {}, Exception(message))


def test_translate_postgres_foreign_key() -> None:
    error = translate_integrity_error(
        _integrity_error(
            'insert or update on table "students" violates foreign key constraint "students_class_id_fkey"'
        )
    )
    assert isinstance(error, ForeignKeyViolation)
    assert error.field == "class_id"


def test_translate_sqlite_foreign_key() -> None:
    error = translate_integrity_error(_integrity_error("FOREIGN KEY constraint failed"))
    assert isinstance(error, ForeignKeyViolation)
    assert error.field is None


def test_translate_unique() -> None:
    error = translate_integrity_error(_integrity_error("UNIQUE constraint failed: students.roll_number"))
    assert isinstance(error, UniqueViolation)
    assert error.field == "roll_number"

    pg = translate_integrity_error(
        _integrity_error('duplicate key value violates unique constraint "uq_x"\nDETAIL:  Key (student_id)=(1) already exists.')
    )
    assert isinstance(pg, UniqueViolation)
    assert pg.field == "student_id"


def test_translate_other_integrity_error() -> None:
    error = translate_integrity_error(_integrity_error("NOT NULL failed: students.full_name"))
    assert type(error) is PersistenceError
