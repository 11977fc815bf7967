from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, field_validator

from agenda.core import config
from agenda.models.appointment import APPOINTMENT_STATUSES, APPOINTMENT_TYPES

MAX_TITLE_LENGTH = 200
MAX_NOTES_LENGTH = 2000


def _normalize_choice(value: str, choices: tuple[str, ...], label: str) -> str:
    normalized = value.strip().lower()
    if normalized not in choices:
        raise ValueError(f'Invalid {label}. Expected one of: {", ".join(choices)}.')
    return normalized


def _validate_duration(value: int) -> int:
    if not config.MIN_APPOINTMENT_MINUTES <= value <= config.MAX_APPOINTMENT_MINUTES:
        raise ValueError(
            f'Duration must be between {config.MIN_APPOINTMENT_MINUTES} and '
            f'{config.MAX_APPOINTMENT_MINUTES} minutes.'
        )
    return value


def _optional_text(value: str | None, max_length: int) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    if len(normalized) > max_length:
        raise ValueError(f'Must be {max_length} characters or fewer.')
    return normalized


class AppointmentCreate(BaseModel):
    model_config = ConfigDict(extra='forbid')

    professional_id: str
    client_id: str
    type: str
    title: str
    description: str | None = None
    scheduled_at: datetime
    duration: int
    location: str | None = None
    is_virtual: bool = False
    notes: str | None = None

    @field_validator('professional_id', 'client_id')
    @classmethod
    def validate_reference(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Reference is required.')
        return normalized

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        return _normalize_choice(value, APPOINTMENT_TYPES, 'appointment type')

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Title is required.')
        if len(normalized) > MAX_TITLE_LENGTH:
            raise ValueError(f'Title must be {MAX_TITLE_LENGTH} characters or fewer.')
        return normalized

    @field_validator('duration')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        return _validate_duration(value)

    @field_validator('description', 'location', 'notes')
    @classmethod
    def validate_optional_text(cls, value: str | None) -> str | None:
        return _optional_text(value, MAX_NOTES_LENGTH)


class AppointmentUpdate(BaseModel):
    model_config = ConfigDict(extra='forbid')

    title: str | None = None
    description: str | None = None
    scheduled_at: datetime | None = None
    duration: int | None = None
    location: str | None = None
    is_virtual: bool | None = None
    status: str | None = None
    notes: str | None = None
    cancellation_reason: str | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            raise ValueError('Title cannot be blank.')
        if len(normalized) > MAX_TITLE_LENGTH:
            raise ValueError(f'Title must be {MAX_TITLE_LENGTH} characters or fewer.')
        return normalized

    @field_validator('duration')
    @classmethod
    def validate_duration(cls, value: int | None) -> int | None:
        if value is None:
            return None
        return _validate_duration(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_choice(value, APPOINTMENT_STATUSES, 'status')

    @field_validator('description', 'location', 'notes', 'cancellation_reason')
    @classmethod
    def validate_optional_text(cls, value: str | None) -> str | None:
        return _optional_text(value, MAX_NOTES_LENGTH)


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _optional_text(value, MAX_NOTES_LENGTH)


class ReminderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    scheduled_for: datetime
    status: str
    sent_at: datetime | None = None

    @field_validator('scheduled_for', 'sent_at')
    @classmethod
    def mark_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: str
    professional_id: str
    client_id: str
    type: str
    title: str
    description: str | None = None
    scheduled_at: datetime
    ends_at: datetime
    duration: int
    status: str
    location: str | None = None
    is_virtual: bool
    notes: str | None = None
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    external_calendar_event_id: str | None = None
    external_calendar_synced: bool

    @field_validator('scheduled_at', 'ends_at', 'cancelled_at')
    @classmethod
    def mark_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class AppointmentDetailResponse(AppointmentResponse):
    pending_reminders: list[ReminderResponse] = []


class AppointmentListResponse(BaseModel):
    items: list[AppointmentResponse]
    total: int
    limit: int
    offset: int


class AppointmentStatsResponse(BaseModel):
    total: int
    completed: int
    cancelled: int
    no_show: int
    this_month: int
    this_week: int
    attendance_rate: float
    cancellation_rate: float
    no_show_rate: float
