"""
Availability engine.

Answers whether a professional can take an appointment at a given time by
composing three sources, in this order:

1. the active weekly ``AvailabilityRule`` for the local day of the week,
2. ``AvailabilityBlock`` date ranges, which override the rules,
3. appointments that still occupy their window (scheduled or completed).

Times handed to the engine may be timezone-aware or naive wall-clock time in
the tenant's zone. The engine only reads; it never writes to the session.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

import pytz
from sqlalchemy.orm import Session

from agenda.core import config
from agenda.core.timeutils import (
    day_of_week,
    local_combine,
    localize,
    tenant_timezone,
    to_local,
    to_utc_naive,
)
from agenda.errors import ValidationError
from agenda.stores.appointment_store import AppointmentStore
from agenda.stores.availability_store import AvailabilityStore

logger = logging.getLogger(__name__)

REASON_NO_RULE = 'no_rule'
REASON_OUTSIDE_HOURS = 'outside_working_hours'
REASON_BLOCKED = 'blocked'
REASON_OVERLAP = 'overlap'

REASON_MESSAGES = {
    REASON_NO_RULE: 'The professional does not work on this day.',
    REASON_OUTSIDE_HOURS: 'The requested time is outside the professional\'s working hours.',
    REASON_BLOCKED: 'The professional is unavailable during this period.',
    REASON_OVERLAP: 'The requested time overlaps another appointment.',
}


@dataclass(frozen=True)
class AvailabilityDecision:
    available: bool
    reason: str | None = None
    conflicting_appointment_id: int | None = None

    @property
    def message(self) -> str:
        return REASON_MESSAGES.get(self.reason, 'The requested time is available.')


@dataclass(frozen=True)
class AvailabilitySlot:
    start: datetime
    end: datetime
    available: bool
    reason: str | None = None


def validate_duration(duration_minutes: int) -> None:
    if not config.MIN_APPOINTMENT_MINUTES <= duration_minutes <= config.MAX_APPOINTMENT_MINUTES:
        raise ValidationError(
            f'Duration must be between {config.MIN_APPOINTMENT_MINUTES} and '
            f'{config.MAX_APPOINTMENT_MINUTES} minutes.',
            field='duration',
        )


class AvailabilityEngine:

    def __init__(self, db: Session, tenant_id: str, timezone: pytz.BaseTzInfo | None = None) -> None:
        self.tenant_id = tenant_id
        self.timezone = timezone or tenant_timezone(tenant_id)
        self.availability = AvailabilityStore(db, tenant_id)
        self.appointments = AppointmentStore(db, tenant_id)

    def check(
        self,
        professional_id: str,
        start: datetime,
        duration_minutes: int,
        exclude_appointment_id: int | None = None,
    ) -> AvailabilityDecision:
        local_start = localize(start, self.timezone)
        local_end = to_local(to_utc_naive(local_start, self.timezone) + timedelta(minutes=duration_minutes), self.timezone)

        rule = self.availability.active_rule_for(professional_id, day_of_week(local_start))
        if rule is None:
            return AvailabilityDecision(False, REASON_NO_RULE)

        # An appointment may not cross midnight nor run past the rule's end.
        if (
            local_end.date() != local_start.date()
            or local_start.time() < rule.start_time
            or local_end.time() > rule.end_time
        ):
            return AvailabilityDecision(False, REASON_OUTSIDE_HOURS)

        start_utc = to_utc_naive(local_start, self.timezone)
        end_utc = start_utc + timedelta(minutes=duration_minutes)

        if self.availability.blocks_overlapping(professional_id, start_utc, end_utc):
            return AvailabilityDecision(False, REASON_BLOCKED)

        conflicts = self.appointments.overlapping(
            professional_id,
            start_utc,
            end_utc,
            exclude_appointment_id=exclude_appointment_id,
        )
        if conflicts:
            return AvailabilityDecision(False, REASON_OVERLAP, conflicting_appointment_id=conflicts[0].id)

        return AvailabilityDecision(True)

    def is_available(
        self,
        professional_id: str,
        start: datetime,
        duration_minutes: int,
        exclude_appointment_id: int | None = None,
    ) -> bool:
        return self.check(professional_id, start, duration_minutes, exclude_appointment_id).available

    def list_available_slots(
        self,
        professional_id: str,
        day: date,
        duration_minutes: int,
        step_minutes: int = config.DEFAULT_SLOT_STEP_MINUTES,
        exclude_appointment_id: int | None = None,
    ) -> list[AvailabilitySlot]:
        validate_duration(duration_minutes)
        if step_minutes <= 0:
            raise ValidationError('Slot step must be a positive number of minutes.', field='step')

        probe = local_combine(day, datetime.min.time(), self.timezone)
        rule = self.availability.active_rule_for(professional_id, day_of_week(probe))
        if rule is None:
            return []

        window_end = to_utc_naive(local_combine(day, rule.end_time, self.timezone), self.timezone)
        current = to_utc_naive(local_combine(day, rule.start_time, self.timezone), self.timezone)
        duration = timedelta(minutes=duration_minutes)
        step = timedelta(minutes=step_minutes)

        slots: list[AvailabilitySlot] = []
        while current + duration <= window_end:
            slot_start = to_local(current, self.timezone)
            decision = self.check(professional_id, slot_start, duration_minutes, exclude_appointment_id)
            slots.append(
                AvailabilitySlot(
                    start=slot_start,
                    end=to_local(current + duration, self.timezone),
                    available=decision.available,
                    reason=decision.reason,
                )
            )
            current += step

        return slots

    def next_available_slot(
        self,
        professional_id: str,
        after: datetime,
        duration_minutes: int,
        step_minutes: int = config.DEFAULT_SLOT_STEP_MINUTES,
        exclude_appointment_id: int | None = None,
    ) -> AvailabilitySlot | None:
        local_after = localize(after, self.timezone)
        for slot in self.list_available_slots(
            professional_id,
            local_after.date(),
            duration_minutes,
            step_minutes,
            exclude_appointment_id,
        ):
            if slot.available and slot.start >= local_after:
                return slot
        return None
