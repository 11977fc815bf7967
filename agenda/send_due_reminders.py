"""Deliver reminders whose trigger time has passed.

Usage:
    python -m agenda.send_due_reminders [--limit N]
"""
import argparse
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from agenda.core import config
from agenda.core.timeutils import tenant_timezone, to_local, utcnow
from agenda.database import create_db_engine, create_session_factory, ensure_scheduling_schema
from agenda.services.notifications import LoggingNotificationService, NotificationService
from agenda.services.reminders import ReminderScheduler

logger = logging.getLogger(__name__)

REMINDER_TITLES = {
    '24h_before': "Tomorrow's appointment",
    '1h_before': 'Appointment in one hour',
}


def send_due_reminders(
    session_factory,
    notification_service: NotificationService,
    scheduler: ReminderScheduler | None = None,
    now=None,
    limit: int = 500,
) -> int:
    scheduler = scheduler or ReminderScheduler()
    now = now or utcnow()

    sent = 0
    with session_factory() as db:
        for reminder in scheduler.due_reminders(db, now, limit=limit):
            appointment = reminder.appointment
            local_start = to_local(appointment.scheduled_at, tenant_timezone(appointment.tenant_id))
            try:
                notification_service.create(
                    user_id=appointment.client_id,
                    tenant_id=appointment.tenant_id,
                    type='reminder',
                    title=REMINDER_TITLES.get(reminder.type, 'Appointment reminder'),
                    message=f'{appointment.title} - {local_start.strftime("%Y-%m-%d %H:%M")}',
                    data={'appointment_id': appointment.id, 'reminder_id': reminder.id},
                )
            except Exception:
                # Left pending so the next run retries it.
                logger.exception('Reminder %s for appointment %s failed', reminder.id, appointment.id)
                continue

            scheduler.mark_sent(reminder, now)
            db.commit()
            sent += 1

    logger.info('Sent %s due reminders', sent)
    return sent


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description='Send appointment reminders that are due.')
    parser.add_argument('--limit', type=int, default=500)
    args = parser.parse_args(argv)

    logging.basicConfig(level=config.LOG_LEVEL)

    try:
        engine = create_db_engine()
        ensure_scheduling_schema(engine)
        sent = send_due_reminders(create_session_factory(engine), LoggingNotificationService(), limit=args.limit)
    except (RuntimeError, SQLAlchemyError) as exc:
        print("Reminder delivery failed:", exc, file=sys.stderr)
        sys.exit(1)

    print(f"Sent {sent} reminders")


if __name__ == "__main__":
    main()
