"""RedemptionCode model."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class RedemptionCode(Base):
    """Single-use code a user shows at a partner counter."""

    __tablename__ = "redemption_codes"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    code = Column(String(16), nullable=False, unique=True, index=True)
    partner_name = Column(String, nullable=False)
    period_key = Column(String(7), nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="redemption_codes")
