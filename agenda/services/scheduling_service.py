"""
Scheduling service.

Orchestrates the appointment lifecycle on top of the tenant-bound stores:

- every write runs inside one transaction that loads the professional's
  schedule lock, checks availability, writes and bumps the lock version;
  losing the race to another reservation rolls back and retries, and the
  retry sees the other booking as a conflict,
- audit entries, notifications and calendar mirroring are dispatched only
  after the commit and can never fail the operation.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Mapping

import pydantic
import pytz
from sqlalchemy.orm import Session, sessionmaker

from agenda.auth.context import TenantContext
from agenda.core import config
from agenda.core.timeutils import (
    local_combine,
    tenant_timezone,
    to_local,
    to_utc_naive,
    utcnow,
)
from agenda.errors import ConflictError, NotFoundError, ValidationError
from agenda.models.appointment import (
    APPOINTMENT_STATUSES,
    APPOINTMENT_TYPES,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_NO_SHOW,
    STATUS_SCHEDULED,
    Appointment,
    AppointmentReminder,
)
from agenda.schemas.appointment import AppointmentCreate, AppointmentUpdate
from agenda.services.audit import AuditService, LoggingAuditService, appointment_snapshot
from agenda.services.availability_engine import (
    AvailabilityDecision,
    AvailabilityEngine,
    AvailabilitySlot,
)
from agenda.services.calendar_sync import ExternalCalendarSync, build_calendar_event
from agenda.services.dispatch import InlineDispatcher
from agenda.services.notifications import LoggingNotificationService, NotificationService
from agenda.services.reminders import ReminderScheduler
from agenda.stores.appointment_store import AppointmentFilters, AppointmentStore, ScheduleLockConflict

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    STATUS_SCHEDULED: {STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW},
    STATUS_COMPLETED: set(),
    STATUS_CANCELLED: set(),
    STATUS_NO_SHOW: set(),
}

MAX_PAGE_SIZE = 200
CALENDAR_FIELDS = {'scheduled_at', 'duration', 'title', 'description', 'location'}
# Calendar tasks for one appointment run one at a time within this process.
CALENDAR_LOCK_STRIPES = 64


@dataclass
class AppointmentDetail:
    appointment: Appointment
    pending_reminders: list[AppointmentReminder]


def _parse(model_cls: type[pydantic.BaseModel], data: Any) -> Any:
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except pydantic.ValidationError as exc:
        errors = [
            {'field': '.'.join(str(part) for part in error['loc']), 'message': error['msg']}
            for error in exc.errors()
        ]
        first = errors[0] if errors else {'field': None, 'message': 'Invalid input.'}
        raise ValidationError(f"{first['field']}: {first['message']}", errors=errors) from exc


class SchedulingService:

    def __init__(
        self,
        session_factory: sessionmaker,
        audit_service: AuditService | None = None,
        notification_service: NotificationService | None = None,
        calendar_sync: ExternalCalendarSync | None = None,
        dispatcher=None,
        reminder_scheduler: ReminderScheduler | None = None,
        clock: Callable[[], datetime] = utcnow,
        timezone_resolver: Callable[[str], pytz.BaseTzInfo] = tenant_timezone,
        max_attempts: int = config.BOOKING_MAX_ATTEMPTS,
    ) -> None:
        self.session_factory = session_factory
        self.audit_service = audit_service or LoggingAuditService()
        self.notification_service = notification_service or LoggingNotificationService()
        self.calendar_sync = calendar_sync
        self.dispatcher = dispatcher or InlineDispatcher()
        self.reminders = reminder_scheduler or ReminderScheduler()
        self.clock = clock
        self.timezone_resolver = timezone_resolver
        self.max_attempts = max_attempts
        self._calendar_locks = [threading.Lock() for _ in range(CALENDAR_LOCK_STRIPES)]

    def _engine(self, db: Session, tenant_id: str) -> AvailabilityEngine:
        return AvailabilityEngine(db, tenant_id, self.timezone_resolver(tenant_id))

    def _run_atomically(self, tenant_id: str, operation: Callable[[Session], Any]) -> Any:
        """Run ``operation`` in its own transaction, retrying lost lock races."""
        for attempt in range(1, self.max_attempts + 1):
            with self.session_factory() as db:
                try:
                    result = operation(db)
                    db.commit()
                    return result
                except ScheduleLockConflict as exc:
                    db.rollback()
                    logger.warning(
                        'Concurrent schedule change for tenant=%s (attempt %s/%s): %s',
                        tenant_id,
                        attempt,
                        self.max_attempts,
                        exc,
                    )

        raise ConflictError(
            'The schedule changed while saving; please choose the time again.',
            reason='concurrent_update',
        )

    def _conflict(
        self,
        engine: AvailabilityEngine,
        decision: AvailabilityDecision,
        professional_id: str,
        start: datetime,
        duration: int,
        exclude_appointment_id: int | None = None,
    ) -> ConflictError:
        next_slot = engine.next_available_slot(
            professional_id,
            start,
            duration,
            exclude_appointment_id=exclude_appointment_id,
        )
        return ConflictError(
            decision.message,
            reason=decision.reason,
            conflicting_appointment_id=decision.conflicting_appointment_id,
            next_available_start=next_slot.start.isoformat() if next_slot else None,
        )

    def create_appointment(self, context: TenantContext, data: AppointmentCreate | Mapping[str, Any]) -> Appointment:
        payload = _parse(AppointmentCreate, data)
        tz = self.timezone_resolver(context.tenant_id)
        scheduled_at = to_utc_naive(payload.scheduled_at, tz).replace(second=0, microsecond=0)

        def reserve(db: Session) -> Appointment:
            now = self.clock()
            store = AppointmentStore(db, context.tenant_id)
            engine = self._engine(db, context.tenant_id)

            lock = store.acquire_schedule_lock(payload.professional_id)
            local_start = to_local(scheduled_at, tz)
            decision = engine.check(payload.professional_id, local_start, payload.duration)
            if not decision.available:
                raise self._conflict(engine, decision, payload.professional_id, local_start, payload.duration)

            appointment = store.add(
                Appointment(
                    professional_id=payload.professional_id,
                    client_id=payload.client_id,
                    type=payload.type,
                    title=payload.title,
                    description=payload.description,
                    scheduled_at=scheduled_at,
                    duration=payload.duration,
                    ends_at=scheduled_at + timedelta(minutes=payload.duration),
                    status=STATUS_SCHEDULED,
                    location=payload.location,
                    is_virtual=payload.is_virtual,
                    notes=payload.notes,
                    external_calendar_synced=False,
                    created_by=context.user_id,
                )
            )
            store.add_reminders(self.reminders.build_reminders(appointment, now))
            store.bump_schedule_lock(lock, now)
            db.flush()
            return appointment

        appointment = self._run_atomically(context.tenant_id, reserve)
        logger.info(
            'Appointment %s booked: tenant=%s professional=%s start=%s duration=%s',
            appointment.id,
            context.tenant_id,
            appointment.professional_id,
            appointment.scheduled_at.isoformat(),
            appointment.duration,
        )

        self._dispatch_audit(context, 'create', appointment.id, {'after': appointment_snapshot(appointment)})
        self._dispatch_notification(
            context,
            appointment,
            'New appointment',
            f'Appointment booked: {appointment.title} - {to_local(appointment.scheduled_at, tz).strftime("%Y-%m-%d %H:%M")}',
        )
        self._dispatch_calendar_sync(context.tenant_id, appointment.id)
        return appointment

    def update_appointment(
        self,
        context: TenantContext,
        appointment_id: int,
        patch: AppointmentUpdate | Mapping[str, Any],
    ) -> Appointment:
        payload = _parse(AppointmentUpdate, patch)
        changes = payload.model_dump(exclude_unset=True)

        if changes.get('status') == STATUS_CANCELLED:
            extra_fields = set(changes) - {'status', 'cancellation_reason'}
            if extra_fields:
                raise ValidationError(
                    'Cancellation cannot be combined with other changes.',
                    fields=sorted(extra_fields),
                )
            return self.cancel_appointment(context, appointment_id, changes.get('cancellation_reason'))
        if 'cancellation_reason' in changes:
            raise ValidationError(
                'A cancellation reason can only be given when cancelling.',
                field='cancellation_reason',
            )

        tz = self.timezone_resolver(context.tenant_id)
        if changes.get('scheduled_at') is not None:
            changes['scheduled_at'] = to_utc_naive(changes['scheduled_at'], tz).replace(second=0, microsecond=0)
        for required in ('scheduled_at', 'duration', 'title', 'is_virtual', 'status'):
            if required in changes and changes[required] is None:
                raise ValidationError(f'{required} cannot be null.', field=required)

        def apply(db: Session) -> tuple[Appointment, dict[str, Any], set[str]]:
            now = self.clock()
            store = AppointmentStore(db, context.tenant_id)
            appointment = store.get(appointment_id)
            if appointment is None:
                raise NotFoundError('Appointment not found.', appointment_id=appointment_id)

            before = appointment_snapshot(appointment)
            lock = store.acquire_schedule_lock(appointment.professional_id)

            new_status = changes.get('status', appointment.status)
            if new_status != appointment.status and new_status not in ALLOWED_TRANSITIONS[appointment.status]:
                raise ValidationError(
                    f'Cannot change status from {appointment.status} to {new_status}.',
                    field='status',
                )

            new_start = changes.get('scheduled_at', appointment.scheduled_at)
            new_duration = changes.get('duration', appointment.duration)
            time_changed = new_start != appointment.scheduled_at or new_duration != appointment.duration

            if time_changed:
                if appointment.status != STATUS_SCHEDULED or new_status != STATUS_SCHEDULED:
                    raise ValidationError('Only scheduled appointments can be rescheduled.', field='scheduled_at')

                engine = self._engine(db, context.tenant_id)
                local_start = to_local(new_start, tz)
                decision = engine.check(
                    appointment.professional_id,
                    local_start,
                    new_duration,
                    exclude_appointment_id=appointment.id,
                )
                if not decision.available:
                    raise self._conflict(
                        engine,
                        decision,
                        appointment.professional_id,
                        local_start,
                        new_duration,
                        exclude_appointment_id=appointment.id,
                    )

                appointment.scheduled_at = new_start
                appointment.duration = new_duration
                appointment.ends_at = new_start + timedelta(minutes=new_duration)
                store.cancel_pending_reminders(appointment.id)
                store.add_reminders(self.reminders.build_reminders(appointment, now))

            changed_fields = set()
            for field in ('title', 'description', 'location', 'is_virtual', 'notes'):
                if field in changes and changes[field] != getattr(appointment, field):
                    setattr(appointment, field, changes[field])
                    changed_fields.add(field)
            if time_changed:
                changed_fields.update({'scheduled_at', 'duration'})
            if new_status != appointment.status:
                appointment.status = new_status
                changed_fields.add('status')

            if changed_fields:
                store.bump_schedule_lock(lock, now)
            db.flush()
            return appointment, before, changed_fields

        appointment, before, changed_fields = self._run_atomically(context.tenant_id, apply)
        if not changed_fields:
            return appointment

        logger.info(
            'Appointment %s updated: tenant=%s fields=%s',
            appointment.id,
            context.tenant_id,
            ','.join(sorted(changed_fields)),
        )
        self._dispatch_audit(
            context,
            'update',
            appointment.id,
            {'before': before, 'after': appointment_snapshot(appointment)},
        )
        self._dispatch_notification(
            context,
            appointment,
            'Appointment updated',
            f'Appointment updated: {appointment.title}',
        )
        if changed_fields & CALENDAR_FIELDS:
            self._dispatch_calendar_sync(context.tenant_id, appointment.id)
        return appointment

    def cancel_appointment(self, context: TenantContext, appointment_id: int, reason: str | None = None) -> Appointment:
        def cancel(db: Session) -> tuple[Appointment, dict[str, Any] | None]:
            now = self.clock()
            store = AppointmentStore(db, context.tenant_id)
            appointment = store.get(appointment_id)
            if appointment is None:
                raise NotFoundError('Appointment not found.', appointment_id=appointment_id)

            if appointment.status == STATUS_CANCELLED:
                return appointment, None
            if appointment.status != STATUS_SCHEDULED:
                raise ValidationError(
                    f'Cannot cancel an appointment with status {appointment.status}.',
                    field='status',
                )

            lock = store.acquire_schedule_lock(appointment.professional_id)
            before = appointment_snapshot(appointment)
            appointment.status = STATUS_CANCELLED
            appointment.cancellation_reason = reason
            appointment.cancelled_at = now
            cancelled_reminders = store.cancel_pending_reminders(appointment.id)
            store.bump_schedule_lock(lock, now)
            db.flush()
            logger.debug('Cancelled %s pending reminders of appointment %s', cancelled_reminders, appointment.id)
            return appointment, before

        appointment, before = self._run_atomically(context.tenant_id, cancel)
        if before is None:
            return appointment

        logger.info('Appointment %s cancelled: tenant=%s', appointment.id, context.tenant_id)
        self._dispatch_audit(
            context,
            'update',
            appointment.id,
            {'before': before, 'after': appointment_snapshot(appointment)},
        )
        if self.calendar_sync is not None:
            self.dispatcher.submit(
                'calendar-delete',
                self._delete_calendar_event,
                context.tenant_id,
                appointment.id,
            )
        return appointment

    def get_appointment(self, context: TenantContext, appointment_id: int) -> AppointmentDetail:
        with self.session_factory() as db:
            store = AppointmentStore(db, context.tenant_id)
            appointment = store.get(appointment_id)
            if appointment is None:
                raise NotFoundError('Appointment not found.', appointment_id=appointment_id)
            return AppointmentDetail(appointment=appointment, pending_reminders=store.pending_reminders(appointment_id))

    def list_appointments(
        self,
        context: TenantContext,
        filters: AppointmentFilters | None = None,
    ) -> tuple[list[Appointment], int]:
        filters = filters or AppointmentFilters()
        if filters.status and filters.status not in APPOINTMENT_STATUSES:
            raise ValidationError('Invalid status filter.', field='status')
        if filters.type and filters.type not in APPOINTMENT_TYPES:
            raise ValidationError('Invalid type filter.', field='type')
        if not 1 <= filters.limit <= MAX_PAGE_SIZE:
            raise ValidationError(f'Limit must be between 1 and {MAX_PAGE_SIZE}.', field='limit')
        if filters.offset < 0:
            raise ValidationError('Offset cannot be negative.', field='offset')

        tz = self.timezone_resolver(context.tenant_id)
        scoped = AppointmentFilters(
            professional_id=filters.professional_id,
            client_id=filters.client_id,
            status=filters.status,
            type=filters.type,
            start_date=to_utc_naive(filters.start_date, tz) if filters.start_date else None,
            end_date=to_utc_naive(filters.end_date, tz) if filters.end_date else None,
            limit=filters.limit,
            offset=filters.offset,
        )
        with self.session_factory() as db:
            return AppointmentStore(db, context.tenant_id).search(scoped)

    def get_available_slots(
        self,
        context: TenantContext,
        professional_id: str,
        day: date,
        duration: int = 60,
        step: int = config.DEFAULT_SLOT_STEP_MINUTES,
    ) -> list[AvailabilitySlot]:
        with self.session_factory() as db:
            return self._engine(db, context.tenant_id).list_available_slots(professional_id, day, duration, step)

    def get_appointment_stats(
        self,
        context: TenantContext,
        professional_id: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> dict[str, Any]:
        tz = self.timezone_resolver(context.tenant_id)
        now = self.clock()
        local_today = to_local(now, tz).date()
        month_start = to_utc_naive(local_combine(local_today.replace(day=1), datetime.min.time(), tz), tz)
        week_start = now - timedelta(days=7)

        filters = AppointmentFilters(
            professional_id=professional_id,
            start_date=to_utc_naive(start_date, tz) if start_date else None,
            end_date=to_utc_naive(end_date, tz) if end_date else None,
        )
        with self.session_factory() as db:
            store = AppointmentStore(db, context.tenant_id)
            total = store.count(filters)
            completed = store.count(filters, status=STATUS_COMPLETED)
            cancelled = store.count(filters, status=STATUS_CANCELLED)
            no_show = store.count(filters, status=STATUS_NO_SHOW)
            this_month = store.count(filters, since=month_start)
            this_week = store.count(filters, since=week_start)

        def rate(count: int) -> float:
            return round(count / total * 100, 2) if total else 0.0

        return {
            'total': total,
            'completed': completed,
            'cancelled': cancelled,
            'no_show': no_show,
            'this_month': this_month,
            'this_week': this_week,
            'attendance_rate': rate(completed),
            'cancellation_rate': rate(cancelled),
            'no_show_rate': rate(no_show),
        }

    def _dispatch_audit(self, context: TenantContext, action: str, appointment_id: int, changes: dict[str, Any]) -> None:
        self.dispatcher.submit(
            'audit',
            self.audit_service.log_action,
            tenant_id=context.tenant_id,
            user_id=context.user_id,
            action=action,
            entity_type='appointment',
            entity_id=str(appointment_id),
            changes=changes,
        )

    def _dispatch_notification(self, context: TenantContext, appointment: Appointment, title: str, message: str) -> None:
        self.dispatcher.submit(
            'notification',
            self.notification_service.create,
            user_id=appointment.professional_id,
            tenant_id=context.tenant_id,
            type='info',
            title=title,
            message=message,
            data={'appointment_id': appointment.id},
        )

    def _dispatch_calendar_sync(self, tenant_id: str, appointment_id: int) -> None:
        if self.calendar_sync is None:
            return
        self.dispatcher.submit('calendar-sync', self._sync_calendar, tenant_id, appointment_id)

    def _calendar_lock(self, appointment_id: int) -> threading.Lock:
        return self._calendar_locks[appointment_id % CALENDAR_LOCK_STRIPES]

    def _sync_calendar(self, tenant_id: str, appointment_id: int) -> None:
        tz = self.timezone_resolver(tenant_id)
        with self._calendar_lock(appointment_id), self.session_factory() as db:
            appointment = AppointmentStore(db, tenant_id).get(appointment_id)
            if appointment is None or appointment.status == STATUS_CANCELLED:
                return

            event = build_calendar_event(appointment, tz)
            if appointment.external_calendar_event_id:
                result = self.calendar_sync.update_event(
                    appointment.professional_id,
                    tenant_id,
                    appointment.external_calendar_event_id,
                    event,
                )
            else:
                result = self.calendar_sync.create_event(appointment.professional_id, tenant_id, event)

            appointment.external_calendar_synced = result.success
            appointment.external_calendar_sync_error = None if result.success else result.error
            if result.success and result.event_id:
                appointment.external_calendar_event_id = result.event_id
            db.commit()

        if not result.success:
            logger.warning('Calendar sync failed for appointment %s: %s', appointment_id, result.error)

    def _delete_calendar_event(self, tenant_id: str, appointment_id: int) -> None:
        with self._calendar_lock(appointment_id), self.session_factory() as db:
            appointment = AppointmentStore(db, tenant_id).get(appointment_id)
            if appointment is None or not appointment.external_calendar_event_id:
                return

            result = self.calendar_sync.delete_event(
                appointment.professional_id,
                tenant_id,
                appointment.external_calendar_event_id,
            )
            if result.success:
                appointment.external_calendar_event_id = None
                appointment.external_calendar_synced = False
                appointment.external_calendar_sync_error = None
            else:
                appointment.external_calendar_sync_error = result.error
            db.commit()

        if not result.success:
            logger.warning('Calendar event removal failed for appointment %s: %s', appointment_id, result.error)
