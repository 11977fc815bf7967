from contextlib import contextmanager

from fastapi import HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError

from agenda.auth.context import ROLE_CLIENT, ROLE_PROFESSIONAL, TenantContext
from agenda.database import ensure_scheduling_schema
from agenda.errors import SchedulingError
from agenda.services.scheduling_service import SchedulingService

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def ensure_database_ready(request: Request) -> None:
    try:
        ensure_scheduling_schema(request.app.state.engine)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_db(request: Request):
    ensure_database_ready(request)
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_scheduling_service(request: Request) -> SchedulingService:
    ensure_database_ready(request)
    return request.app.state.scheduling_service


def require_professional_access(context: TenantContext, professional_id: str) -> None:
    if not context.can_manage_professional(professional_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You can only manage your own schedule.',
        )


def require_scheduling_role(context: TenantContext) -> None:
    if not (context.is_manager or context.role == ROLE_PROFESSIONAL):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only owners, admins and professionals can manage appointments.',
        )


def require_appointment_access(context: TenantContext, appointment) -> None:
    """Allow managers, the booked professional and, for reads, the booked client."""
    if context.is_manager:
        return
    if context.role == ROLE_PROFESSIONAL and appointment.professional_id == context.user_id:
        return
    if context.role == ROLE_CLIENT and appointment.client_id == context.user_id:
        return

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail='You do not have access to this appointment.',
    )


@contextmanager
def translate_errors(db=None):
    """Map scheduling and database errors raised inside the block to HTTP errors."""
    try:
        yield
    except SchedulingError as exc:
        if db is not None:
            db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail()) from exc
    except SQLAlchemyError as exc:
        if db is not None:
            db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc
