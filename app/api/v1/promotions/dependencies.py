from functools import lru_cache

from app.db.session import AsyncSessionLocal

from .audit_service import AuditRecorder
from .queue_service import PromotionQueueService
from .repository import PromotionRepository


@lru_cache(maxsize=1)
def get_promotion_queue() -> PromotionQueueService:
    """Process-wide promotion queue. Live jobs are held in this instance's registry."""
    return PromotionQueueService(
        repository=PromotionRepository(AsyncSessionLocal),
        audit=AuditRecorder(AsyncSessionLocal),
    )
