import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import PromotionStatus
from app.db.session import Base


class PromotionRecord(Base):
    """
    One student's decision within a batch. to_class_id is required for PROMOTED,
    absent for RETAINED and GRADUATED. Status: PENDING -> IN_PROGRESS -> COMPLETED
    (REVERTED after a batch revert); stays PENDING when processing rolls back.
    """

    __tablename__ = "promotion_records"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    batch_id = Column(
        UUID(as_uuid=True),
        ForeignKey("promotion_batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id"), nullable=False)
    from_class_id = Column(UUID(as_uuid=True), ForeignKey("classes.id"), nullable=False)
    to_class_id = Column(UUID(as_uuid=True), ForeignKey("classes.id"), nullable=True)
    promotion_type = Column(String(20), nullable=False)  # PROMOTED | RETAINED | GRADUATED
    status = Column(String(20), nullable=False, default=PromotionStatus.PENDING.value)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    batch = relationship("PromotionBatch", back_populates="records")
    student = relationship("Student", foreign_keys=[student_id])
    from_class = relationship("SchoolClass", foreign_keys=[from_class_id])
    to_class = relationship("SchoolClass", foreign_keys=[to_class_id])
