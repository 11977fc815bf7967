import json
import logging
from typing import Any, Protocol

from agenda.models.appointment import Appointment

logger = logging.getLogger(__name__)


class AuditService(Protocol):
    def log_action(
        self,
        tenant_id: str,
        user_id: str,
        action: str,
        entity_type: str,
        entity_id: str,
        changes: dict[str, Any],
    ) -> None:
        ...


class LoggingAuditService:
    """Writes audit entries to the ``agenda.audit`` logger as JSON lines."""

    def __init__(self, audit_logger: logging.Logger | None = None) -> None:
        self.audit_logger = audit_logger or logging.getLogger('agenda.audit')

    def log_action(
        self,
        tenant_id: str,
        user_id: str,
        action: str,
        entity_type: str,
        entity_id: str,
        changes: dict[str, Any],
    ) -> None:
        entry = {
            'tenant_id': tenant_id,
            'user_id': user_id,
            'action': action,
            'entity_type': entity_type,
            'entity_id': entity_id,
            'changes': changes,
        }
        self.audit_logger.info(json.dumps(entry, default=str, sort_keys=True))


def appointment_snapshot(appointment: Appointment) -> dict[str, Any]:
    return {
        'id': appointment.id,
        'tenant_id': appointment.tenant_id,
        'professional_id': appointment.professional_id,
        'client_id': appointment.client_id,
        'type': appointment.type,
        'title': appointment.title,
        'description': appointment.description,
        'scheduled_at': appointment.scheduled_at.isoformat() if appointment.scheduled_at else None,
        'duration': appointment.duration,
        'status': appointment.status,
        'location': appointment.location,
        'is_virtual': appointment.is_virtual,
        'notes': appointment.notes,
        'cancellation_reason': appointment.cancellation_reason,
        'cancelled_at': appointment.cancelled_at.isoformat() if appointment.cancelled_at else None,
        'external_calendar_event_id': appointment.external_calendar_event_id,
    }
