"""
External calendar sync.

Mirrors appointments into the professional's Google Calendar. Every call is
best effort: HTTP failures are retried a bounded number of times and then
reported as an unsuccessful ``CalendarSyncResult`` instead of an exception,
so a calendar outage never affects a booking.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Protocol

import httpx
import pytz

from agenda.core import config
from agenda.core.timeutils import to_local
from agenda.errors import DependencyError
from agenda.models.appointment import Appointment

logger = logging.getLogger(__name__)

TokenProvider = Callable[[str, str], str | None]


@dataclass(frozen=True)
class CalendarSyncResult:
    success: bool
    event_id: str | None = None
    error: str | None = None


class ExternalCalendarSync(Protocol):
    def create_event(self, professional_id: str, tenant_id: str, event: dict[str, Any]) -> CalendarSyncResult:
        ...

    def update_event(
        self,
        professional_id: str,
        tenant_id: str,
        event_id: str,
        event: dict[str, Any],
    ) -> CalendarSyncResult:
        ...

    def delete_event(self, professional_id: str, tenant_id: str, event_id: str) -> CalendarSyncResult:
        ...


def build_calendar_event(appointment: Appointment, tz: pytz.BaseTzInfo) -> dict[str, Any]:
    start = to_local(appointment.scheduled_at, tz)
    end = to_local(appointment.scheduled_at + timedelta(minutes=appointment.duration), tz)
    return {
        'summary': appointment.title,
        'description': appointment.description or '',
        'start': {'dateTime': start.isoformat(), 'timeZone': tz.zone},
        'end': {'dateTime': end.isoformat(), 'timeZone': tz.zone},
        'location': appointment.location or '',
    }


def static_token_provider(token: str) -> TokenProvider:
    def provide(professional_id: str, tenant_id: str) -> str | None:
        del professional_id, tenant_id
        return token or None

    return provide


class GoogleCalendarSync:

    def __init__(
        self,
        token_provider: TokenProvider,
        calendar_id: str = config.GOOGLE_CALENDAR_ID,
        api_url: str = config.GOOGLE_CALENDAR_API_URL,
        timeout_seconds: float = config.CALENDAR_SYNC_TIMEOUT_SECONDS,
        max_retries: int = config.CALENDAR_SYNC_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.token_provider = token_provider
        self.calendar_id = calendar_id
        self.api_url = api_url.rstrip('/')
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.transport = transport

    def _events_url(self, event_id: str | None = None) -> str:
        url = f'{self.api_url}/calendars/{self.calendar_id}/events'
        return f'{url}/{event_id}' if event_id else url

    def _request(
        self,
        method: str,
        url: str,
        professional_id: str,
        tenant_id: str,
        expected_statuses: tuple[int, ...],
        payload: dict[str, Any] | None = None,
    ) -> httpx.Response:
        access_token = self.token_provider(professional_id, tenant_id)
        if not access_token:
            raise DependencyError('No calendar access token for this professional.', professional_id=professional_id)

        last_error = 'unknown error'
        for attempt in range(self.max_retries + 1):
            try:
                with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                    response = client.request(
                        method,
                        url,
                        headers={'Authorization': f'Bearer {access_token}'},
                        json=payload,
                    )
            except httpx.HTTPError as exc:
                last_error = f'{type(exc).__name__}: {exc}'
                logger.warning('Calendar %s %s failed on attempt %s: %s', method, url, attempt + 1, last_error)
                continue

            if response.status_code in expected_statuses:
                return response

            last_error = f'HTTP {response.status_code}: {response.text[:200]}'
            logger.warning('Calendar %s %s returned %s on attempt %s', method, url, response.status_code, attempt + 1)
            if response.status_code < 500:
                break

        raise DependencyError(f'Calendar request failed: {last_error}')

    def create_event(self, professional_id: str, tenant_id: str, event: dict[str, Any]) -> CalendarSyncResult:
        try:
            response = self._request('POST', self._events_url(), professional_id, tenant_id, (200, 201), event)
        except DependencyError as exc:
            return CalendarSyncResult(success=False, error=exc.message)

        event_id = response.json().get('id')
        logger.info('Calendar event created: event_id=%s professional=%s', event_id, professional_id)
        return CalendarSyncResult(success=True, event_id=event_id)

    def update_event(
        self,
        professional_id: str,
        tenant_id: str,
        event_id: str,
        event: dict[str, Any],
    ) -> CalendarSyncResult:
        try:
            self._request('PATCH', self._events_url(event_id), professional_id, tenant_id, (200,), event)
        except DependencyError as exc:
            return CalendarSyncResult(success=False, event_id=event_id, error=exc.message)

        logger.info('Calendar event updated: event_id=%s professional=%s', event_id, professional_id)
        return CalendarSyncResult(success=True, event_id=event_id)

    def delete_event(self, professional_id: str, tenant_id: str, event_id: str) -> CalendarSyncResult:
        try:
            self._request('DELETE', self._events_url(event_id), professional_id, tenant_id, (200, 204, 404, 410))
        except DependencyError as exc:
            return CalendarSyncResult(success=False, event_id=event_id, error=exc.message)

        logger.info('Calendar event deleted: event_id=%s professional=%s', event_id, professional_id)
        return CalendarSyncResult(success=True, event_id=event_id)


def build_calendar_sync() -> ExternalCalendarSync | None:
    if not config.GOOGLE_CALENDAR_ENABLED:
        return None
    return GoogleCalendarSync(static_token_provider(config.GOOGLE_CALENDAR_ACCESS_TOKEN))
