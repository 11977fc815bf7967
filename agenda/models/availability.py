"""Availability model definitions."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Time

from agenda.core.timeutils import utcnow
from agenda.database import Base


class AvailabilityRule(Base):
    """Weekly open hours of a professional for one day of the week."""
    __tablename__ = "availability_rules"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    professional_id = Column(String, nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class AvailabilityBlock(Base):
    """Date range during which a professional takes no appointments."""
    __tablename__ = "availability_blocks"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    professional_id = Column(String, nullable=False, index=True)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    reason = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
