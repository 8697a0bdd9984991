from typing import Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class PromotionBatchNotFound(ServiceError):
    def __init__(self, batch_id=None) -> None:
        super().__init__("Promotion batch not found", status.HTTP_404_NOT_FOUND)
        self.batch_id = batch_id


class InvalidPromotion(ServiceError):
    """A promotion record cannot be applied as requested (e.g. PROMOTED without a target class)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


# ----- Persistence gateway errors -----
# Raised by the repository instead of leaking driver messages, so callers can
# branch on the error type.


class PersistenceError(Exception):
    """Base class for tagged persistence failures."""


class ForeignKeyViolation(PersistenceError):
    def __init__(self, field: Optional[str] = None, detail: str = "") -> None:
        super().__init__(detail or f"Foreign key violation on {field or 'unknown field'}")
        self.field = field


class UniqueViolation(PersistenceError):
    def __init__(self, field: Optional[str] = None, detail: str = "") -> None:
        super().__init__(detail or f"Unique violation on {field or 'unknown field'}")
        self.field = field


class RecordNotFound(PersistenceError):
    def __init__(self, entity: str, entity_id=None) -> None:
        super().__init__(f"{entity} {entity_id} does not exist")
        self.entity = entity
        self.entity_id = entity_id


class CapacityExceeded(PersistenceError):
    def __init__(self, class_id=None, capacity: Optional[int] = None) -> None:
        super().__init__(f"Class {class_id} is full (capacity {capacity})")
        self.class_id = class_id
        self.capacity = capacity
