from datetime import datetime

from fastapi import APIRouter, Depends, Query, status

from agenda.auth.context import ROLE_PROFESSIONAL, TenantContext
from agenda.auth.dependencies import get_tenant_context
from agenda.routes.common import (
    get_scheduling_service,
    require_appointment_access,
    require_professional_access,
    require_scheduling_role,
    translate_errors,
)
from agenda.schemas.appointment import (
    AppointmentCreate,
    AppointmentDetailResponse,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatsResponse,
    AppointmentUpdate,
    CancelAppointmentRequest,
    ReminderResponse,
)
from agenda.services.scheduling_service import MAX_PAGE_SIZE, SchedulingService
from agenda.stores.appointment_store import AppointmentFilters

router = APIRouter(tags=['appointments'])


def require_managed_appointment(context: TenantContext, appointment_id: int, service: SchedulingService) -> None:
    require_scheduling_role(context)

    with translate_errors():
        detail = service.get_appointment(context, appointment_id)

    require_appointment_access(context, detail.appointment)


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: AppointmentCreate,
    context: TenantContext = Depends(get_tenant_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    require_scheduling_role(context)
    require_professional_access(context, data.professional_id)

    with translate_errors():
        return service.create_appointment(context, data)


@router.get('', response_model=AppointmentListResponse)
def list_appointments(
    professional_id: str | None = Query(default=None),
    client_id: str | None = Query(default=None),
    appointment_status: str | None = Query(default=None, alias='status'),
    appointment_type: str | None = Query(default=None, alias='type'),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    context: TenantContext = Depends(get_tenant_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    # Non-managers only ever see their own side of the calendar.
    if context.role == ROLE_PROFESSIONAL:
        professional_id = context.user_id
    elif not context.is_manager:
        client_id = context.user_id

    filters = AppointmentFilters(
        professional_id=professional_id,
        client_id=client_id,
        status=appointment_status,
        type=appointment_type,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )

    with translate_errors():
        items, total = service.list_appointments(context, filters)

    return AppointmentListResponse(
        items=[AppointmentResponse.model_validate(item) for item in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get('/stats', response_model=AppointmentStatsResponse)
def get_appointment_stats(
    professional_id: str | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    context: TenantContext = Depends(get_tenant_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    require_scheduling_role(context)
    if not context.is_manager:
        professional_id = context.user_id

    with translate_errors():
        return service.get_appointment_stats(context, professional_id, start_date, end_date)


@router.get('/{appointment_id}', response_model=AppointmentDetailResponse)
def get_appointment(
    appointment_id: int,
    context: TenantContext = Depends(get_tenant_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    with translate_errors():
        detail = service.get_appointment(context, appointment_id)

    require_appointment_access(context, detail.appointment)

    response = AppointmentResponse.model_validate(detail.appointment)
    return AppointmentDetailResponse(
        **response.model_dump(),
        pending_reminders=[ReminderResponse.model_validate(reminder) for reminder in detail.pending_reminders],
    )


@router.patch('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    context: TenantContext = Depends(get_tenant_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    require_managed_appointment(context, appointment_id, service)

    with translate_errors():
        return service.update_appointment(context, appointment_id, data)


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest | None = None,
    context: TenantContext = Depends(get_tenant_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    require_managed_appointment(context, appointment_id, service)

    with translate_errors():
        return service.cancel_appointment(context, appointment_id, data.reason if data else None)
