"""Appointment model definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from agenda.core.timeutils import utcnow
from agenda.database import Base


APPOINTMENT_TYPES = ('consultation', 'training', 'nutrition', 'bioimpedance')

STATUS_SCHEDULED = 'scheduled'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'
STATUS_NO_SHOW = 'no_show'
APPOINTMENT_STATUSES = (STATUS_SCHEDULED, STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW)

# Statuses that keep their time window occupied.
BLOCKING_STATUSES = (STATUS_SCHEDULED, STATUS_COMPLETED)

REMINDER_PENDING = 'pending'
REMINDER_SENT = 'sent'
REMINDER_CANCELLED = 'cancelled'


class Appointment(Base):
    """Represents a scheduled appointment."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    professional_id = Column(String, nullable=False, index=True)
    client_id = Column(String, nullable=False)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    scheduled_at = Column(DateTime, nullable=False)
    duration = Column(Integer, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=STATUS_SCHEDULED)
    location = Column(String, nullable=True)
    is_virtual = Column(Boolean, nullable=False, default=False)
    notes = Column(String, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    external_calendar_event_id = Column(String, nullable=True)
    external_calendar_synced = Column(Boolean, nullable=False, default=False)
    external_calendar_sync_error = Column(String, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    reminders = relationship(
        'AppointmentReminder',
        back_populates='appointment',
        order_by='AppointmentReminder.scheduled_for',
    )


class AppointmentReminder(Base):
    """Reminder derived from an appointment start time."""
    __tablename__ = "appointment_reminders"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    tenant_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    scheduled_for = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=REMINDER_PENDING)
    sent_at = Column(DateTime, nullable=True)

    appointment = relationship('Appointment', back_populates='reminders')


class ProfessionalScheduleLock(Base):
    """Per-professional version counter that serialises reservations."""
    __tablename__ = "professional_schedule_locks"
    __table_args__ = (
        UniqueConstraint('tenant_id', 'professional_id', name='uq_schedule_lock_professional'),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False)
    professional_id = Column(String, nullable=False)
    version = Column(Integer, nullable=False, default=0)
    last_reserved_at = Column(DateTime, nullable=True)
