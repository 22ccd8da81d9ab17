"""AllowancePeriod model: remaining cups per user per calendar month."""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class AllowancePeriod(Base):
    """One row per (user, YYYY-MM); remaining never drops below zero."""

    __tablename__ = "allowance_periods"
    __table_args__ = (
        UniqueConstraint("user_id", "period_key", name="uq_allowance_periods_user_period"),
        CheckConstraint("remaining >= 0", name="ck_allowance_periods_remaining_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    period_key = Column(String(7), nullable=False, index=True)
    remaining = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="allowance_periods")
