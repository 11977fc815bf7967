import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from agenda.models.appointment import (
    REMINDER_PENDING,
    REMINDER_SENT,
    STATUS_SCHEDULED,
    Appointment,
    AppointmentReminder,
)

logger = logging.getLogger(__name__)

REMINDER_OFFSETS = {
    '24h_before': timedelta(hours=24),
    '1h_before': timedelta(hours=1),
}


class ReminderScheduler:
    """Derives reminders from an appointment start time."""

    def __init__(self, offsets: dict[str, timedelta] | None = None) -> None:
        self.offsets = offsets or REMINDER_OFFSETS

    def build_reminders(self, appointment: Appointment, now: datetime) -> list[AppointmentReminder]:
        reminders = []
        for reminder_type, offset in self.offsets.items():
            scheduled_for = appointment.scheduled_at - offset
            if scheduled_for <= now:
                logger.debug(
                    'Skipping %s reminder for appointment starting at %s: trigger time already passed',
                    reminder_type,
                    appointment.scheduled_at.isoformat(),
                )
                continue
            reminders.append(
                AppointmentReminder(
                    appointment=appointment,
                    tenant_id=appointment.tenant_id,
                    type=reminder_type,
                    scheduled_for=scheduled_for,
                    status=REMINDER_PENDING,
                )
            )
        return sorted(reminders, key=lambda reminder: reminder.scheduled_for)

    def due_reminders(self, db: Session, now: datetime, limit: int = 500) -> list[AppointmentReminder]:
        return db.query(AppointmentReminder).join(Appointment).filter(
            AppointmentReminder.status == REMINDER_PENDING,
            AppointmentReminder.scheduled_for <= now,
            Appointment.status == STATUS_SCHEDULED,
        ).order_by(AppointmentReminder.scheduled_for.asc()).limit(limit).all()

    def mark_sent(self, reminder: AppointmentReminder, now: datetime) -> AppointmentReminder:
        reminder.status = REMINDER_SENT
        reminder.sent_at = now
        return reminder
