import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class NotificationService(Protocol):
    def create(
        self,
        user_id: str,
        tenant_id: str,
        type: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        ...


class LoggingNotificationService:
    """Records notifications in the log; channel fan-out happens elsewhere."""

    def create(
        self,
        user_id: str,
        tenant_id: str,
        type: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        logger.info(
            'Notification queued: tenant=%s user=%s type=%s title=%r message=%r data=%s',
            tenant_id,
            user_id,
            type,
            title,
            message,
            data or {},
        )
