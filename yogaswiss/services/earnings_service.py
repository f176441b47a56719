"""
Instructor earnings per pay period.
"""

import logging
from datetime import date
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.class_schedule import ClassOccurrence, OccurrenceStatus
from ..models.earnings import EarningsStatus, InstructorEarnings
from ..models.organization import OrgMember
from ..models.registration import Registration, RegistrationStatus
from ..utils.clock import day_bounds, utcnow
from ..utils.exceptions import InvalidStateError, ResourceNotFoundError, ValidationError
from ..utils.logging_config import log_business_event

logger = logging.getLogger(__name__)

COUNTED_STATUSES = (RegistrationStatus.CONFIRMED, RegistrationStatus.ATTENDED, RegistrationStatus.NO_SHOW)


class EarningsService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def calculate(
        self,
        org_id: UUID,
        instructor_id: UUID,
        period_start: date,
        period_end: date,
        adjustments_cents: int = 0,
        deductions_cents: int = 0,
    ) -> InstructorEarnings:
        """
        Compute an instructor's pay for a period from the classes taught.

        ``base = classes * rate_per_class`` and ``bonus = students * rate_per_student``
        where students are confirmed, attended and no-show registrations. A
        pending record for the same period is recalculated in place.

        Raises:
            ValidationError: Instructor is not a member of the organization
            InvalidStateError: The period was already approved or paid
        """
        member = await self._member(org_id, instructor_id)
        lower, upper = day_bounds(period_start, period_end)

        occurrences = await self.db.execute(
            select(ClassOccurrence)
            .where(
                ClassOccurrence.org_id == org_id,
                ClassOccurrence.instructor_id == instructor_id,
                ClassOccurrence.status != OccurrenceStatus.CANCELLED,
                ClassOccurrence.start_time >= lower,
                ClassOccurrence.start_time <= upper,
            )
            .order_by(ClassOccurrence.start_time)
        )
        occurrences = list(occurrences.scalars().all())

        students_by_class = {}
        if occurrences:
            counts = await self.db.execute(
                select(Registration.occurrence_id, func.count(Registration.id))
                .where(
                    Registration.occurrence_id.in_([o.id for o in occurrences]),
                    Registration.status.in_(COUNTED_STATUSES),
                )
                .group_by(Registration.occurrence_id)
            )
            students_by_class = dict(counts.all())

        breakdown = []
        for occurrence in occurrences:
            students = students_by_class.get(occurrence.id, 0)
            breakdown.append({
                "occurrence_id": str(occurrence.id),
                "name": occurrence.name,
                "start_time": occurrence.start_time.isoformat(),
                "students": students,
                "amount_cents": member.rate_per_class_cents + students * member.rate_per_student_cents,
            })

        total_classes = len(occurrences)
        total_students = sum(students_by_class.get(o.id, 0) for o in occurrences)
        base = total_classes * member.rate_per_class_cents
        bonus = total_students * member.rate_per_student_cents
        gross = max(0, base + bonus + adjustments_cents - deductions_cents)

        record = await self._find(org_id, instructor_id, period_start, period_end)
        if record is None:
            record = InstructorEarnings(
                org_id=org_id,
                instructor_id=instructor_id,
                period_start=period_start,
                period_end=period_end,
                payment_status=EarningsStatus.PENDING,
            )
            self.db.add(record)
        elif record.payment_status != EarningsStatus.PENDING:
            raise InvalidStateError(
                "instructor_earnings", record.id, record.payment_status.value, [EarningsStatus.PENDING.value]
            )

        record.total_classes = total_classes
        record.total_students = total_students
        record.base_earnings_cents = base
        record.bonus_earnings_cents = bonus
        record.adjustments_cents = adjustments_cents
        record.deductions_cents = deductions_cents
        record.gross_earnings_cents = gross
        record.breakdown = breakdown
        record.calculated_at = utcnow()

        await self.db.flush()
        logger.info(
            f"Earnings for {instructor_id} {period_start}..{period_end}: "
            f"{total_classes} classes, {total_students} students, gross {gross}"
        )
        return record

    async def get_earnings(self, org_id: UUID, earnings_id: UUID) -> InstructorEarnings:
        record = await self.db.get(InstructorEarnings, earnings_id)
        if record is None or record.org_id != org_id:
            raise ResourceNotFoundError("instructor_earnings", earnings_id)
        return record

    async def approve(self, org_id: UUID, earnings_id: UUID, approver_id: UUID) -> InstructorEarnings:
        record = await self.get_earnings(org_id, earnings_id)
        self._require_status(record, EarningsStatus.PENDING)

        record.payment_status = EarningsStatus.APPROVED
        record.approved_by = approver_id
        record.approved_at = utcnow()
        await self.db.flush()

        log_business_event(
            "earnings_approved",
            {"earnings_id": str(record.id), "gross_earnings_cents": record.gross_earnings_cents},
            str(approver_id)
        )
        return record

    async def mark_paid(
        self,
        org_id: UUID,
        earnings_id: UUID,
        payment_method: str,
        payment_reference: Optional[str] = None
    ) -> InstructorEarnings:
        record = await self.get_earnings(org_id, earnings_id)
        self._require_status(record, EarningsStatus.APPROVED)

        record.payment_status = EarningsStatus.PAID
        record.payment_method = payment_method
        record.payment_reference = payment_reference
        record.paid_at = utcnow()
        await self.db.flush()
        return record

    async def list_earnings(
        self,
        org_id: UUID,
        instructor_id: Optional[UUID] = None,
        status: Optional[EarningsStatus] = None
    ) -> List[InstructorEarnings]:
        query = select(InstructorEarnings).where(InstructorEarnings.org_id == org_id)
        if instructor_id:
            query = query.where(InstructorEarnings.instructor_id == instructor_id)
        if status:
            query = query.where(InstructorEarnings.payment_status == status)
        result = await self.db.execute(query.order_by(InstructorEarnings.period_start.desc()))
        return list(result.scalars().all())

    async def _member(self, org_id: UUID, instructor_id: UUID) -> OrgMember:
        result = await self.db.execute(
            select(OrgMember).where(OrgMember.org_id == org_id, OrgMember.user_id == instructor_id)
        )
        member = result.scalar_one_or_none()
        if member is None:
            raise ValidationError(
                "Instructor is not a member of this organization",
                field_errors={"instructor_id": ["not a member"]}
            )
        return member

    async def _find(self, org_id: UUID, instructor_id: UUID, period_start: date, period_end: date):
        result = await self.db.execute(
            select(InstructorEarnings).where(
                InstructorEarnings.org_id == org_id,
                InstructorEarnings.instructor_id == instructor_id,
                InstructorEarnings.period_start == period_start,
                InstructorEarnings.period_end == period_end,
            )
        )
        return result.scalar_one_or_none()

    def _require_status(self, record: InstructorEarnings, status: EarningsStatus) -> None:
        if record.payment_status != status:
            raise InvalidStateError(
                "instructor_earnings", record.id, record.payment_status.value, [status.value]
            )
