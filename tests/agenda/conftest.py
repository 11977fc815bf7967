from datetime import datetime, time

import pytest

from agenda.auth.context import ROLE_OWNER, ROLE_PROFESSIONAL, TenantContext
from agenda.database import create_db_engine, create_session_factory, ensure_scheduling_schema
from agenda.models.availability import AvailabilityRule
from agenda.services.dispatch import InlineDispatcher
from agenda.services.scheduling_service import SchedulingService

TENANT_ID = 'clinic-a'
PROFESSIONAL_ID = 'pro-1'
# 2025-05-01 12:00 UTC, a month before the appointments used in the tests.
FIXED_NOW = datetime(2025, 5, 1, 12, 0)


class RecordingAuditService:
    def __init__(self) -> None:
        self.entries = []

    def log_action(self, tenant_id, user_id, action, entity_type, entity_id, changes) -> None:
        self.entries.append({
            'tenant_id': tenant_id,
            'user_id': user_id,
            'action': action,
            'entity_type': entity_type,
            'entity_id': entity_id,
            'changes': changes,
        })


class RecordingNotificationService:
    def __init__(self) -> None:
        self.sent = []

    def create(self, user_id, tenant_id, type, title, message, data=None) -> None:
        self.sent.append({
            'user_id': user_id,
            'tenant_id': tenant_id,
            'type': type,
            'title': title,
            'message': message,
            'data': data,
        })


@pytest.fixture
def session_factory(tmp_path):
    engine = create_db_engine(f'sqlite:///{tmp_path / "agenda.db"}')
    ensure_scheduling_schema(engine)
    try:
        yield create_session_factory(engine)
    finally:
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def owner() -> TenantContext:
    return TenantContext(user_id='owner-1', tenant_id=TENANT_ID, role=ROLE_OWNER)


@pytest.fixture
def professional() -> TenantContext:
    return TenantContext(user_id=PROFESSIONAL_ID, tenant_id=TENANT_ID, role=ROLE_PROFESSIONAL)


@pytest.fixture
def audit_service() -> RecordingAuditService:
    return RecordingAuditService()


@pytest.fixture
def notification_service() -> RecordingNotificationService:
    return RecordingNotificationService()


@pytest.fixture
def service(session_factory, audit_service, notification_service) -> SchedulingService:
    return SchedulingService(
        session_factory,
        audit_service=audit_service,
        notification_service=notification_service,
        dispatcher=InlineDispatcher(),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def add_rule(session_factory):
    def _add_rule(day_of_week: int, start: time, end: time, professional_id: str = PROFESSIONAL_ID,
                  tenant_id: str = TENANT_ID, is_active: bool = True) -> int:
        with session_factory() as session:
            rule = AvailabilityRule(
                tenant_id=tenant_id,
                professional_id=professional_id,
                day_of_week=day_of_week,
                start_time=start,
                end_time=end,
                is_active=is_active,
            )
            session.add(rule)
            session.commit()
            return rule.id

    return _add_rule
