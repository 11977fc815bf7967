from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from agenda.auth.context import TenantContext
from agenda.auth.dependencies import get_tenant_context
from agenda.core import config
from agenda.core.timeutils import local_combine, tenant_timezone, to_utc_naive
from agenda.routes.common import get_db, get_scheduling_service, require_professional_access, translate_errors
from agenda.schemas.availability import (
    AvailabilityBlockResponse,
    AvailabilityRuleResponse,
    AvailableSlotResponse,
    CreateAvailabilityBlockRequest,
    CreateAvailabilityRuleRequest,
    UpdateAvailabilityBlockRequest,
    UpdateAvailabilityRuleRequest,
)
from agenda.services.scheduling_service import SchedulingService
from agenda.stores.availability_store import AvailabilityStore

router = APIRouter(tags=['availability'])


def resolve_professional_id(context: TenantContext, professional_id: str | None) -> str:
    resolved = professional_id or context.user_id
    require_professional_access(context, resolved)
    return resolved


def resolve_block_window(start: date | datetime, end: date | datetime, tenant_id: str) -> tuple[datetime, datetime]:
    tz = tenant_timezone(tenant_id)

    if isinstance(start, datetime):
        start_at = to_utc_naive(start, tz)
    else:
        start_at = to_utc_naive(local_combine(start, time(0, 0), tz), tz)

    if isinstance(end, datetime):
        end_at = to_utc_naive(end, tz)
    else:
        end_at = to_utc_naive(local_combine(end + timedelta(days=1), time(0, 0), tz), tz)

    if start_at > end_at:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Block end must not be before its start.',
        )

    return start_at, end_at


@router.get('/rules', response_model=list[AvailabilityRuleResponse])
def list_rules(
    professional_id: str | None = Query(default=None),
    include_inactive: bool = Query(default=True),
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    if professional_id is None and not context.is_manager:
        professional_id = context.user_id

    with translate_errors(db):
        return AvailabilityStore(db, context.tenant_id).list_rules(professional_id, include_inactive=include_inactive)


@router.post('/rules', response_model=AvailabilityRuleResponse, status_code=status.HTTP_201_CREATED)
def create_rule(
    data: CreateAvailabilityRuleRequest,
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    professional_id = resolve_professional_id(context, data.professional_id)

    with translate_errors(db):
        rule = AvailabilityStore(db, context.tenant_id).add_rule(
            professional_id,
            data.day_of_week,
            data.start_time,
            data.end_time,
            is_active=data.is_active,
        )
        db.commit()
        db.refresh(rule)
        return rule


@router.patch('/rules/{rule_id}', response_model=AvailabilityRuleResponse)
def update_rule(
    rule_id: int,
    data: UpdateAvailabilityRuleRequest,
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    with translate_errors(db):
        store = AvailabilityStore(db, context.tenant_id)
        rule = store.get_rule(rule_id)
        if not rule:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Availability rule not found.',
            )
        require_professional_access(context, rule.professional_id)

        store.update_rule(rule, **data.model_dump(exclude_unset=True, exclude_none=True))
        db.commit()
        db.refresh(rule)
        return rule


@router.post('/rules/{rule_id}/deactivate', response_model=AvailabilityRuleResponse)
def deactivate_rule(
    rule_id: int,
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    with translate_errors(db):
        store = AvailabilityStore(db, context.tenant_id)
        rule = store.get_rule(rule_id)
        if not rule:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Availability rule not found.',
            )
        require_professional_access(context, rule.professional_id)

        store.deactivate_rule(rule)
        db.commit()
        db.refresh(rule)
        return rule


@router.get('/blocks', response_model=list[AvailabilityBlockResponse])
def list_blocks(
    professional_id: str | None = Query(default=None),
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    if professional_id is None and not context.is_manager:
        professional_id = context.user_id

    with translate_errors(db):
        return AvailabilityStore(db, context.tenant_id).list_blocks(professional_id)


@router.post('/blocks', response_model=AvailabilityBlockResponse, status_code=status.HTTP_201_CREATED)
def create_block(
    data: CreateAvailabilityBlockRequest,
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    professional_id = resolve_professional_id(context, data.professional_id)
    start_at, end_at = resolve_block_window(data.start_date, data.end_date, context.tenant_id)

    with translate_errors(db):
        block = AvailabilityStore(db, context.tenant_id).add_block(professional_id, start_at, end_at, data.reason)
        db.commit()
        db.refresh(block)
        return block


@router.put('/blocks/{block_id}', response_model=AvailabilityBlockResponse)
def update_block(
    block_id: int,
    data: UpdateAvailabilityBlockRequest,
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    start_at, end_at = resolve_block_window(data.start_date, data.end_date, context.tenant_id)

    with translate_errors(db):
        store = AvailabilityStore(db, context.tenant_id)
        block = store.get_block(block_id)
        if not block:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Availability block not found.',
            )
        require_professional_access(context, block.professional_id)

        store.update_block(block, start_at, end_at, data.reason)
        db.commit()
        db.refresh(block)
        return block


@router.delete('/blocks/{block_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_block(
    block_id: int,
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    with translate_errors(db):
        store = AvailabilityStore(db, context.tenant_id)
        block = store.get_block(block_id)
        if not block:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Availability block not found.',
            )
        require_professional_access(context, block.professional_id)

        store.delete_block(block)
        db.commit()


@router.get('/slots', response_model=list[AvailableSlotResponse])
def list_available_slots(
    professional_id: str = Query(...),
    slot_date: date = Query(..., alias='date'),
    duration: int = Query(default=60, ge=config.MIN_APPOINTMENT_MINUTES, le=config.MAX_APPOINTMENT_MINUTES),
    step: int = Query(default=config.DEFAULT_SLOT_STEP_MINUTES, ge=5, le=240),
    available_only: bool = Query(default=False),
    context: TenantContext = Depends(get_tenant_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    with translate_errors():
        slots = service.get_available_slots(context, professional_id, slot_date, duration, step)

    if available_only:
        slots = [slot for slot in slots if slot.available]

    return [AvailableSlotResponse.model_validate(slot) for slot in slots]
