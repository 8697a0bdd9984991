"""
Promotion batch: one administrative run promoting, retaining or graduating a cohort.
Created PENDING with its records already computed; the queue service moves it to
IN_PROGRESS and then COMPLETED (every record succeeded) or FAILED.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import PromotionStatus
from app.db.session import Base


class PromotionBatch(Base):
    __tablename__ = "promotion_batches"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    from_academic_year = Column(String(20), nullable=True)
    to_academic_year = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default=PromotionStatus.PENDING.value, index=True)
    total_students = Column(Integer, nullable=False, default=0)
    promoted_students = Column(Integer, nullable=False, default=0)
    retained_students = Column(Integer, nullable=False, default=0)
    graduated_students = Column(Integer, nullable=False, default=0)
    executed_by = Column(UUID(as_uuid=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    records = relationship(
        "PromotionRecord",
        back_populates="batch",
        order_by="PromotionRecord.created_at",
        cascade="all, delete-orphan",
    )
