from datetime import date, datetime, time
from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from agenda.auth.context import ROLE_OWNER, ROLE_PROFESSIONAL, TenantContext
from agenda.routes.availability_routes import (
    create_block,
    create_rule,
    deactivate_rule,
    list_available_slots,
    list_blocks,
    list_rules,
    remove_block,
    resolve_block_window,
    update_block,
    update_rule,
)
from agenda.routes.common import ensure_database_ready, translate_errors
from agenda.schemas.availability import (
    CreateAvailabilityBlockRequest,
    CreateAvailabilityRuleRequest,
    UpdateAvailabilityBlockRequest,
    UpdateAvailabilityRuleRequest,
)


def test_create_rule_request_rejects_inverted_window() -> None:
    with pytest.raises(ValidationError):
        CreateAvailabilityRuleRequest(day_of_week=1, start_time=time(12, 0), end_time=time(9, 0))


def test_create_rule_request_rejects_seconds() -> None:
    with pytest.raises(ValidationError):
        CreateAvailabilityRuleRequest(day_of_week=1, start_time=time(9, 0, 30), end_time=time(12, 0))


def test_create_block_request_parses_plain_dates() -> None:
    request = CreateAvailabilityBlockRequest(start_date='2025-06-01', end_date='2025-06-05', reason='  Vacation ')

    assert request.start_date == date(2025, 6, 1)
    assert request.end_date == date(2025, 6, 5)
    assert request.reason == 'Vacation'


def test_resolve_block_window_covers_whole_local_days() -> None:
    start_at, end_at = resolve_block_window(date(2025, 6, 1), date(2025, 6, 5), 'clinic-a')

    assert start_at == datetime(2025, 6, 1, 3, 0)
    assert end_at == datetime(2025, 6, 6, 3, 0)


def test_resolve_block_window_rejects_end_before_start() -> None:
    with pytest.raises(HTTPException) as exception_info:
        resolve_block_window(datetime(2025, 6, 5, 10, 0), datetime(2025, 6, 5, 9, 0), 'clinic-a')

    assert exception_info.value.status_code == 400


def test_create_rule_defaults_to_calling_professional(professional, db) -> None:
    rule = create_rule(
        data=CreateAvailabilityRuleRequest(day_of_week=1, start_time=time(9, 0), end_time=time(12, 0)),
        context=professional,
        db=db,
    )

    assert rule.id is not None
    assert rule.professional_id == 'pro-1'
    assert rule.tenant_id == 'clinic-a'


def test_create_rule_rejects_other_professional_schedule(professional, db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_rule(
            data=CreateAvailabilityRuleRequest(
                professional_id='pro-2',
                day_of_week=1,
                start_time=time(9, 0),
                end_time=time(12, 0),
            ),
            context=professional,
            db=db,
        )

    assert exception_info.value.status_code == 403
    assert exception_info.value.detail == 'You can only manage your own schedule.'


def test_create_rule_maps_duplicate_to_conflict(owner, db) -> None:
    data = CreateAvailabilityRuleRequest(professional_id='pro-1', day_of_week=1, start_time=time(9, 0),
                                         end_time=time(12, 0))
    create_rule(data=data, context=owner, db=db)

    with pytest.raises(HTTPException) as exception_info:
        create_rule(data=data, context=owner, db=db)

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['day_of_week'] == 1


def test_update_and_deactivate_rule(owner, db) -> None:
    rule = create_rule(
        data=CreateAvailabilityRuleRequest(professional_id='pro-1', day_of_week=1, start_time=time(9, 0),
                                           end_time=time(12, 0)),
        context=owner,
        db=db,
    )

    updated = update_rule(rule_id=rule.id, data=UpdateAvailabilityRuleRequest(end_time=time(13, 0)), context=owner,
                          db=db)
    assert updated.end_time == time(13, 0)

    deactivated = deactivate_rule(rule_id=rule.id, context=owner, db=db)
    assert deactivated.is_active is False
    assert list_rules(professional_id='pro-1', include_inactive=False, context=owner, db=db) == []


def test_update_rule_returns_not_found_for_other_tenant_rule(owner, db) -> None:
    rule = create_rule(
        data=CreateAvailabilityRuleRequest(professional_id='pro-1', day_of_week=1, start_time=time(9, 0),
                                           end_time=time(12, 0)),
        context=owner,
        db=db,
    )
    other_tenant = TenantContext(user_id='owner-2', tenant_id='clinic-b', role=ROLE_OWNER)

    with pytest.raises(HTTPException) as exception_info:
        update_rule(rule_id=rule.id, data=UpdateAvailabilityRuleRequest(is_active=False), context=other_tenant, db=db)

    assert exception_info.value.status_code == 404


def test_professional_lists_only_own_rules(owner, professional, db) -> None:
    for professional_id in ('pro-1', 'pro-2'):
        create_rule(
            data=CreateAvailabilityRuleRequest(professional_id=professional_id, day_of_week=1,
                                               start_time=time(9, 0), end_time=time(12, 0)),
            context=owner,
            db=db,
        )

    rules = list_rules(professional_id=None, include_inactive=True, context=professional, db=db)

    assert [rule.professional_id for rule in rules] == ['pro-1']
    assert len(list_rules(professional_id=None, include_inactive=True, context=owner, db=db)) == 2


def test_block_lifecycle(owner, professional, db) -> None:
    block = create_block(
        data=CreateAvailabilityBlockRequest(start_date='2025-06-01', end_date='2025-06-05', reason='Vacation'),
        context=professional,
        db=db,
    )

    assert block.start_at == datetime(2025, 6, 1, 3, 0)
    assert [item.id for item in list_blocks(professional_id=None, context=professional, db=db)] == [block.id]

    remove_block(block_id=block.id, context=owner, db=db)
    assert list_blocks(professional_id='pro-1', context=owner, db=db) == []


def test_remove_block_rejects_other_professional(owner, db) -> None:
    block = create_block(
        data=CreateAvailabilityBlockRequest(professional_id='pro-2', start_date='2025-06-01',
                                            end_date='2025-06-01'),
        context=owner,
        db=db,
    )
    intruder = TenantContext(user_id='pro-1', tenant_id='clinic-a', role=ROLE_PROFESSIONAL)

    with pytest.raises(HTTPException) as exception_info:
        remove_block(block_id=block.id, context=intruder, db=db)

    assert exception_info.value.status_code == 403


def test_update_block_replaces_window_and_reason(professional, db) -> None:
    block = create_block(
        data=CreateAvailabilityBlockRequest(start_date='2025-06-01', end_date='2025-06-05', reason='Vacation'),
        context=professional,
        db=db,
    )

    updated = update_block(
        block_id=block.id,
        data=UpdateAvailabilityBlockRequest(start_date='2025-06-02T14:00:00', end_date='2025-06-02T15:00:00',
                                            reason='Dentist'),
        context=professional,
        db=db,
    )

    assert updated.start_at == datetime(2025, 6, 2, 17, 0)
    assert updated.end_at == datetime(2025, 6, 2, 18, 0)
    assert updated.reason == 'Dentist'


def test_update_block_rejects_other_professional_and_unknown_id(owner, db) -> None:
    block = create_block(
        data=CreateAvailabilityBlockRequest(professional_id='pro-2', start_date='2025-06-01',
                                            end_date='2025-06-01'),
        context=owner,
        db=db,
    )
    intruder = TenantContext(user_id='pro-1', tenant_id='clinic-a', role=ROLE_PROFESSIONAL)
    data = UpdateAvailabilityBlockRequest(start_date='2025-06-03', end_date='2025-06-03')

    with pytest.raises(HTTPException) as forbidden:
        update_block(block_id=block.id, data=data, context=intruder, db=db)
    with pytest.raises(HTTPException) as missing:
        update_block(block_id=block.id + 100, data=data, context=owner, db=db)

    assert forbidden.value.status_code == 403
    assert missing.value.status_code == 404

def test_list_available_slots_can_hide_unavailable(service, owner, add_rule) -> None:
    add_rule(1, time(9, 0), time(11, 0))
    service.create_appointment(owner, {
        'professional_id': 'pro-1',
        'client_id': 'client-1',
        'type': 'nutrition',
        'title': 'Nutrition review',
        'scheduled_at': datetime(2025, 6, 2, 9, 0),
        'duration': 60,
    })

    slots = list_available_slots(
        professional_id='pro-1',
        slot_date=date(2025, 6, 2),
        duration=60,
        step=30,
        available_only=True,
        context=owner,
        service=service,
    )

    assert [slot.start.strftime('%H:%M') for slot in slots] == ['10:00']
    assert slots[0].available is True


def test_list_available_slots_maps_invalid_duration_to_bad_request(service, owner) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_available_slots(
            professional_id='pro-1',
            slot_date=date(2025, 6, 2),
            duration=5,
            step=30,
            available_only=False,
            context=owner,
            service=service,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['field'] == 'duration'


def test_translate_errors_maps_database_failures_to_service_unavailable() -> None:
    rolled_back = []
    db = SimpleNamespace(rollback=lambda: rolled_back.append(True))

    with pytest.raises(HTTPException) as exception_info:
        with translate_errors(db):
            raise OperationalError('SELECT 1', {}, Exception('connection refused'))

    assert exception_info.value.status_code == 503
    assert rolled_back == [True]


def test_ensure_database_ready_returns_503_when_schema_setup_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail(engine):
        raise OperationalError('CREATE TABLE', {}, Exception('no database'))

    monkeypatch.setattr('agenda.routes.common.ensure_scheduling_schema', fail)
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(engine=None)))

    with pytest.raises(HTTPException) as exception_info:
        ensure_database_ready(request)

    assert exception_info.value.status_code == 503
