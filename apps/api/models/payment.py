"""Payment model for cup purchases."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"


class Payment(Base):
    """Purchase record; only the status columns ever change after insert."""

    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    period_key = Column(String(7), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    units = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="RUB")
    status = Column(String, nullable=False, default=PAYMENT_PENDING, index=True)
    method = Column(String, nullable=False)
    external_txn_id = Column(String, nullable=True, unique=True)
    failure_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="payments")
