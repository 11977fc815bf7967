import logging
from datetime import datetime, time

from sqlalchemy.orm import Session

from agenda.errors import ConflictError, ValidationError
from agenda.models.availability import AvailabilityBlock, AvailabilityRule

logger = logging.getLogger(__name__)


def validate_rule_window(day_of_week: int, start_time: time, end_time: time) -> None:
    if not 0 <= day_of_week <= 6:
        raise ValidationError('Day of week must be between 0 (Sunday) and 6 (Saturday).', field='day_of_week')
    if start_time >= end_time:
        raise ValidationError('Rule start time must be before its end time.', field='start_time')


class AvailabilityStore:
    """Availability rules and blocks of one tenant.

    Every query starts from the tenant filter applied here, so callers have
    no way to read or change another tenant's rows.
    """

    def __init__(self, db: Session, tenant_id: str) -> None:
        self.db = db
        self.tenant_id = tenant_id

    def _rules(self):
        return self.db.query(AvailabilityRule).filter(AvailabilityRule.tenant_id == self.tenant_id)

    def _blocks(self):
        return self.db.query(AvailabilityBlock).filter(AvailabilityBlock.tenant_id == self.tenant_id)

    def list_rules(self, professional_id: str | None = None, include_inactive: bool = True) -> list[AvailabilityRule]:
        query = self._rules()
        if professional_id is not None:
            query = query.filter(AvailabilityRule.professional_id == professional_id)
        if not include_inactive:
            query = query.filter(AvailabilityRule.is_active.is_(True))
        return query.order_by(AvailabilityRule.day_of_week.asc(), AvailabilityRule.start_time.asc()).all()

    def get_rule(self, rule_id: int) -> AvailabilityRule | None:
        return self._rules().filter(AvailabilityRule.id == rule_id).first()

    def active_rule_for(self, professional_id: str, day_of_week: int) -> AvailabilityRule | None:
        rules = self._rules().filter(
            AvailabilityRule.professional_id == professional_id,
            AvailabilityRule.day_of_week == day_of_week,
            AvailabilityRule.is_active.is_(True),
        ).order_by(AvailabilityRule.updated_at.desc(), AvailabilityRule.id.desc()).all()

        if len(rules) > 1:
            logger.warning(
                'Found %s active availability rules for tenant=%s professional=%s day=%s; using rule %s',
                len(rules),
                self.tenant_id,
                professional_id,
                day_of_week,
                rules[0].id,
            )

        return rules[0] if rules else None

    def _ensure_no_active_duplicate(self, professional_id: str, day_of_week: int, exclude_rule_id: int | None) -> None:
        query = self._rules().filter(
            AvailabilityRule.professional_id == professional_id,
            AvailabilityRule.day_of_week == day_of_week,
            AvailabilityRule.is_active.is_(True),
        )
        if exclude_rule_id is not None:
            query = query.filter(AvailabilityRule.id != exclude_rule_id)
        if query.first() is not None:
            raise ConflictError(
                'An active availability rule already exists for this day of the week.',
                day_of_week=day_of_week,
            )

    def add_rule(
        self,
        professional_id: str,
        day_of_week: int,
        start_time: time,
        end_time: time,
        is_active: bool = True,
    ) -> AvailabilityRule:
        validate_rule_window(day_of_week, start_time, end_time)
        if is_active:
            self._ensure_no_active_duplicate(professional_id, day_of_week, exclude_rule_id=None)

        rule = AvailabilityRule(
            tenant_id=self.tenant_id,
            professional_id=professional_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            is_active=is_active,
        )
        self.db.add(rule)
        return rule

    def update_rule(self, rule: AvailabilityRule, **changes) -> AvailabilityRule:
        day_of_week = changes.get('day_of_week', rule.day_of_week)
        start_time = changes.get('start_time', rule.start_time)
        end_time = changes.get('end_time', rule.end_time)
        is_active = changes.get('is_active', rule.is_active)

        validate_rule_window(day_of_week, start_time, end_time)
        if is_active:
            self._ensure_no_active_duplicate(rule.professional_id, day_of_week, exclude_rule_id=rule.id)

        rule.day_of_week = day_of_week
        rule.start_time = start_time
        rule.end_time = end_time
        rule.is_active = is_active
        return rule

    def deactivate_rule(self, rule: AvailabilityRule) -> AvailabilityRule:
        rule.is_active = False
        return rule

    def list_blocks(self, professional_id: str | None = None) -> list[AvailabilityBlock]:
        query = self._blocks()
        if professional_id is not None:
            query = query.filter(AvailabilityBlock.professional_id == professional_id)
        return query.order_by(AvailabilityBlock.start_at.desc()).all()

    def get_block(self, block_id: int) -> AvailabilityBlock | None:
        return self._blocks().filter(AvailabilityBlock.id == block_id).first()

    def blocks_overlapping(self, professional_id: str, start: datetime, end: datetime) -> list[AvailabilityBlock]:
        return self._blocks().filter(
            AvailabilityBlock.professional_id == professional_id,
            AvailabilityBlock.start_at < end,
            AvailabilityBlock.end_at > start,
        ).order_by(AvailabilityBlock.start_at.asc()).all()

    def add_block(
        self,
        professional_id: str,
        start_at: datetime,
        end_at: datetime,
        reason: str | None = None,
    ) -> AvailabilityBlock:
        if start_at > end_at:
            raise ValidationError('Block start must not be after its end.', field='start_date')

        block = AvailabilityBlock(
            tenant_id=self.tenant_id,
            professional_id=professional_id,
            start_at=start_at,
            end_at=end_at,
            reason=reason,
        )
        self.db.add(block)
        return block

    def update_block(
        self,
        block: AvailabilityBlock,
        start_at: datetime,
        end_at: datetime,
        reason: str | None = None,
    ) -> AvailabilityBlock:
        if start_at > end_at:
            raise ValidationError('Block start must not be after its end.', field='start_date')

        block.start_at = start_at
        block.end_at = end_at
        block.reason = reason
        return block

    def delete_block(self, block: AvailabilityBlock) -> None:
        self.db.delete(block)
