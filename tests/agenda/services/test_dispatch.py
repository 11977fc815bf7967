import json
import logging
from datetime import datetime, timedelta

import pytest

from agenda.models.appointment import Appointment
from agenda.services.audit import LoggingAuditService, appointment_snapshot
from agenda.services.dispatch import BackgroundDispatcher, InlineDispatcher


def _explode() -> None:
    raise RuntimeError('mail server down')


def test_background_dispatcher_runs_tasks_and_logs_failures(caplog: pytest.LogCaptureFixture) -> None:
    dispatcher = BackgroundDispatcher(max_workers=1)
    results = []

    dispatcher.submit('collect', results.append, 'done').result(timeout=5)
    dispatcher.submit('notification', _explode).result(timeout=5)
    dispatcher.shutdown()

    assert results == ['done']
    assert 'Side effect notification failed' in caplog.text


def test_inline_dispatcher_swallows_task_errors(caplog: pytest.LogCaptureFixture) -> None:
    InlineDispatcher().submit('audit', _explode)

    assert 'Side effect audit failed' in caplog.text


def test_logging_audit_service_writes_json_entries(caplog: pytest.LogCaptureFixture) -> None:
    scheduled_at = datetime(2025, 6, 2, 13, 0)
    appointment = Appointment(
        id=7,
        tenant_id='clinic-a',
        professional_id='pro-1',
        client_id='client-1',
        type='consultation',
        title='Consultation',
        scheduled_at=scheduled_at,
        duration=30,
        ends_at=scheduled_at + timedelta(minutes=30),
        status='scheduled',
        is_virtual=False,
    )

    with caplog.at_level(logging.INFO, logger='agenda.audit'):
        LoggingAuditService().log_action(
            tenant_id='clinic-a',
            user_id='owner-1',
            action='create',
            entity_type='appointment',
            entity_id='7',
            changes={'after': appointment_snapshot(appointment)},
        )

    entry = json.loads(caplog.records[-1].getMessage())
    assert entry['action'] == 'create'
    assert entry['changes']['after']['scheduled_at'] == '2025-06-02T13:00:00'
