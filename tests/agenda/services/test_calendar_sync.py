import json
from datetime import datetime, timedelta

import httpx
import pytest
import pytz

from agenda.core import config
from agenda.models.appointment import Appointment
from agenda.services.calendar_sync import (
    GoogleCalendarSync,
    build_calendar_event,
    build_calendar_sync,
    static_token_provider,
)

API_URL = 'https://calendar.test/v3'


def _sync(handler, token: str = 'token-123', max_retries: int = 1) -> GoogleCalendarSync:
    return GoogleCalendarSync(
        static_token_provider(token),
        calendar_id='primary',
        api_url=API_URL,
        timeout_seconds=1,
        max_retries=max_retries,
        transport=httpx.MockTransport(handler),
    )


def test_build_calendar_event_uses_tenant_local_times() -> None:
    appointment = Appointment(
        title='Consultation',
        description=None,
        scheduled_at=datetime(2025, 6, 2, 13, 0),
        duration=45,
        ends_at=datetime(2025, 6, 2, 13, 0) + timedelta(minutes=45),
        location='Room 2',
    )

    event = build_calendar_event(appointment, pytz.timezone('America/Sao_Paulo'))

    assert event == {
        'summary': 'Consultation',
        'description': '',
        'start': {'dateTime': '2025-06-02T10:00:00-03:00', 'timeZone': 'America/Sao_Paulo'},
        'end': {'dateTime': '2025-06-02T10:45:00-03:00', 'timeZone': 'America/Sao_Paulo'},
        'location': 'Room 2',
    }


def test_create_event_posts_event_with_bearer_token() -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={'id': 'evt-42'})

    result = _sync(handler).create_event('pro-1', 'clinic-a', {'summary': 'Consultation'})

    assert result.success is True
    assert result.event_id == 'evt-42'
    assert requests[0].method == 'POST'
    assert str(requests[0].url) == f'{API_URL}/calendars/primary/events'
    assert requests[0].headers['Authorization'] == 'Bearer token-123'
    assert json.loads(requests[0].content) == {'summary': 'Consultation'}


def test_create_event_retries_once_after_server_error() -> None:
    responses = iter([httpx.Response(503), httpx.Response(201, json={'id': 'evt-7'})])

    result = _sync(lambda request: next(responses)).create_event('pro-1', 'clinic-a', {})

    assert result.success is True
    assert result.event_id == 'evt-7'


def test_create_event_reports_failure_after_retries_exhausted() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError('connection refused', request=request)

    result = _sync(handler).create_event('pro-1', 'clinic-a', {})

    assert result.success is False
    assert 'ConnectError' in result.error
    assert len(calls) == 2


def test_client_errors_are_not_retried() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(403, text='forbidden')

    result = _sync(handler).update_event('pro-1', 'clinic-a', 'evt-1', {})

    assert result.success is False
    assert result.error.startswith('Calendar request failed: HTTP 403')
    assert len(calls) == 1


def test_update_event_patches_existing_event() -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={'id': 'evt-1'})

    result = _sync(handler).update_event('pro-1', 'clinic-a', 'evt-1', {'summary': 'Moved'})

    assert result.success is True
    assert requests[0].method == 'PATCH'
    assert str(requests[0].url).endswith('/calendars/primary/events/evt-1')


@pytest.mark.parametrize('status_code', [204, 404, 410])
def test_delete_event_treats_missing_event_as_deleted(status_code: int) -> None:
    result = _sync(lambda request: httpx.Response(status_code)).delete_event('pro-1', 'clinic-a', 'evt-1')

    assert result.success is True


def test_missing_access_token_fails_without_calling_api() -> None:
    calls = []

    result = _sync(lambda request: calls.append(request), token='').create_event('pro-1', 'clinic-a', {})

    assert result.success is False
    assert calls == []


def test_build_calendar_sync_is_disabled_by_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'GOOGLE_CALENDAR_ENABLED', False)

    assert build_calendar_sync() is None


def test_build_calendar_sync_uses_configured_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'GOOGLE_CALENDAR_ENABLED', True)
    monkeypatch.setattr(config, 'GOOGLE_CALENDAR_ACCESS_TOKEN', 'configured-token')

    calendar_sync = build_calendar_sync()

    assert isinstance(calendar_sync, GoogleCalendarSync)
    assert calendar_sync.token_provider('pro-1', 'clinic-a') == 'configured-token'
