"""Scheduling error taxonomy.

Validation, conflict and not-found errors are part of the scheduling
contract and are translated into HTTP responses by the route layer.
``DependencyError`` is only raised inside collaborator adapters and is
always recovered by the service that called them.
"""

from typing import Any


class SchedulingError(Exception):
    status_code = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {'error': self.message}
        detail.update({key: value for key, value in self.details.items() if value is not None})
        return detail


class ValidationError(SchedulingError):
    status_code = 400


class ConflictError(SchedulingError):
    status_code = 409


class NotFoundError(SchedulingError):
    status_code = 404


class DependencyError(SchedulingError):
    status_code = 502
