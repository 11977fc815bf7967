from datetime import date, datetime, time, timezone

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

MAX_REASON_LENGTH = 300


def _normalize_professional_id(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        raise ValueError('Professional id cannot be blank.')
    return normalized


def _minute_precision(value: time | None) -> time | None:
    if value is None:
        return None
    if value.second or value.microsecond:
        raise ValueError('Times must be given as HH:MM.')
    return value.replace(tzinfo=None)


class CreateAvailabilityRuleRequest(BaseModel):
    professional_id: str | None = None
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool = True

    @field_validator('professional_id')
    @classmethod
    def validate_professional_id(cls, value: str | None) -> str | None:
        return _normalize_professional_id(value)

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError('Day of week must be between 0 (Sunday) and 6 (Saturday).')
        return value

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time(cls, value: time) -> time:
        return _minute_precision(value)

    @model_validator(mode='after')
    def validate_window(self) -> 'CreateAvailabilityRuleRequest':
        if self.start_time >= self.end_time:
            raise ValueError('Rule start time must be before its end time.')
        return self


class UpdateAvailabilityRuleRequest(BaseModel):
    model_config = ConfigDict(extra='forbid')

    day_of_week: int | None = None
    start_time: time | None = None
    end_time: time | None = None
    is_active: bool | None = None

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int | None) -> int | None:
        if value is not None and not 0 <= value <= 6:
            raise ValueError('Day of week must be between 0 (Sunday) and 6 (Saturday).')
        return value

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time(cls, value: time | None) -> time | None:
        return _minute_precision(value)


class AvailabilityRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    professional_id: str
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool


class UpdateAvailabilityBlockRequest(BaseModel):
    """Plain dates block whole local days, both ends inclusive."""

    start_date: datetime | date
    end_date: datetime | date
    reason: str | None = None

    @field_validator('start_date', 'end_date', mode='before')
    @classmethod
    def parse_date_or_datetime(cls, value):
        if isinstance(value, str):
            stripped = value.strip()
            if len(stripped) == 10:
                return date.fromisoformat(stripped)
            return datetime.fromisoformat(stripped.replace('Z', '+00:00'))
        return value

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if len(normalized) > MAX_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')
        return normalized or None


class CreateAvailabilityBlockRequest(UpdateAvailabilityBlockRequest):
    professional_id: str | None = None

    @field_validator('professional_id')
    @classmethod
    def validate_professional_id(cls, value: str | None) -> str | None:
        return _normalize_professional_id(value)


class AvailabilityBlockResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    professional_id: str
    start_at: datetime
    end_at: datetime
    reason: str | None = None

    @field_validator('start_at', 'end_at')
    @classmethod
    def mark_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class AvailableSlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start: datetime
    end: datetime
    available: bool
    reason: str | None = None
