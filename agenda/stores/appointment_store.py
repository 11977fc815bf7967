from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from agenda.models.appointment import (
    BLOCKING_STATUSES,
    REMINDER_CANCELLED,
    REMINDER_PENDING,
    Appointment,
    AppointmentReminder,
    ProfessionalScheduleLock,
)


class ScheduleLockConflict(Exception):
    """Another transaction reserved time for the same professional first."""


@dataclass
class AppointmentFilters:
    professional_id: str | None = None
    client_id: str | None = None
    status: str | None = None
    type: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = 50
    offset: int = 0


class AppointmentStore:
    """Appointments, reminders and schedule locks of one tenant."""

    def __init__(self, db: Session, tenant_id: str) -> None:
        self.db = db
        self.tenant_id = tenant_id

    def _appointments(self):
        return self.db.query(Appointment).filter(Appointment.tenant_id == self.tenant_id)

    def _reminders(self):
        return self.db.query(AppointmentReminder).filter(AppointmentReminder.tenant_id == self.tenant_id)

    def get(self, appointment_id: int) -> Appointment | None:
        return self._appointments().filter(Appointment.id == appointment_id).first()

    def add(self, appointment: Appointment) -> Appointment:
        appointment.tenant_id = self.tenant_id
        self.db.add(appointment)
        return appointment

    def _filtered(self, filters: AppointmentFilters):
        query = self._appointments()
        if filters.professional_id:
            query = query.filter(Appointment.professional_id == filters.professional_id)
        if filters.client_id:
            query = query.filter(Appointment.client_id == filters.client_id)
        if filters.status:
            query = query.filter(Appointment.status == filters.status)
        if filters.type:
            query = query.filter(Appointment.type == filters.type)
        if filters.start_date:
            query = query.filter(Appointment.scheduled_at >= filters.start_date)
        if filters.end_date:
            query = query.filter(Appointment.scheduled_at <= filters.end_date)
        return query

    def search(self, filters: AppointmentFilters) -> tuple[list[Appointment], int]:
        query = self._filtered(filters)
        total = query.count()
        items = query.order_by(Appointment.scheduled_at.asc(), Appointment.id.asc()) \
            .offset(filters.offset).limit(filters.limit).all()
        return items, total

    def count(self, filters: AppointmentFilters, status: str | None = None, since: datetime | None = None) -> int:
        query = self._filtered(filters)
        if status is not None:
            query = query.filter(Appointment.status == status)
        if since is not None:
            query = query.filter(Appointment.scheduled_at >= since)
        return query.count()

    def overlapping(
        self,
        professional_id: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: int | None = None,
    ) -> list[Appointment]:
        query = self._appointments().filter(
            Appointment.professional_id == professional_id,
            Appointment.status.in_(BLOCKING_STATUSES),
            Appointment.scheduled_at < end,
            Appointment.ends_at > start,
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)
        return query.order_by(Appointment.scheduled_at.asc()).all()

    def acquire_schedule_lock(self, professional_id: str) -> ProfessionalScheduleLock:
        """Load the professional's lock row, creating it on first use.

        A new row is flushed immediately so that two first-time bookings
        collide on the unique key instead of both succeeding.
        """
        lock = self.db.query(ProfessionalScheduleLock).filter(
            ProfessionalScheduleLock.tenant_id == self.tenant_id,
            ProfessionalScheduleLock.professional_id == professional_id,
        ).first()
        if lock is None:
            lock = ProfessionalScheduleLock(tenant_id=self.tenant_id, professional_id=professional_id, version=0)
            self.db.add(lock)
            try:
                self.db.flush()
            except IntegrityError as exc:
                raise ScheduleLockConflict(
                    f'Schedule lock of professional {professional_id} was created concurrently.'
                ) from exc
        return lock

    def bump_schedule_lock(self, lock: ProfessionalScheduleLock, now: datetime) -> None:
        """Advance the lock version, failing if someone else advanced it first."""
        result = self.db.execute(
            update(ProfessionalScheduleLock)
            .where(
                ProfessionalScheduleLock.id == lock.id,
                ProfessionalScheduleLock.version == lock.version,
            )
            .values(version=lock.version + 1, last_reserved_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ScheduleLockConflict(
                f'Schedule of professional {lock.professional_id} changed during the reservation.'
            )
        set_committed_value(lock, 'version', lock.version + 1)
        set_committed_value(lock, 'last_reserved_at', now)

    def pending_reminders(self, appointment_id: int) -> list[AppointmentReminder]:
        return self._reminders().filter(
            AppointmentReminder.appointment_id == appointment_id,
            AppointmentReminder.status == REMINDER_PENDING,
        ).order_by(AppointmentReminder.scheduled_for.asc()).all()

    def add_reminders(self, reminders: list[AppointmentReminder]) -> None:
        for reminder in reminders:
            reminder.tenant_id = self.tenant_id
            self.db.add(reminder)

    def cancel_pending_reminders(self, appointment_id: int) -> int:
        reminders = self.pending_reminders(appointment_id)
        for reminder in reminders:
            reminder.status = REMINDER_CANCELLED
        return len(reminders)
