"""
Class scheduling: templates, dated occurrences and weekly series.
"""

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.class_schedule import ClassOccurrence, ClassTemplate, OccurrenceStatus, RecurringSeries
from ..models.organization import MemberStatus, Organization, OrgMember
from ..models.location import Location
from ..models.registration import Registration, RegistrationStatus
from ..schemas.classes import (
    ClassTemplateCreate,
    ClassTemplateUpdate,
    OccurrenceCreate,
    OccurrenceUpdate,
    SeriesCreate,
)
from ..utils.clock import as_utc, day_bounds, local_datetime, utcnow
from ..utils.exceptions import InvalidStateError, ResourceNotFoundError, ValidationError
from ..utils.logging_config import log_business_event

logger = logging.getLogger(__name__)


class ClassService:
    """Templates, occurrences and recurring series of one studio."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # Templates

    async def create_template(self, org_id: UUID, data: ClassTemplateCreate) -> ClassTemplate:
        template = ClassTemplate(org_id=org_id, **data.model_dump())
        self.db.add(template)
        await self.db.flush()
        logger.info(f"Created class template {template.id} '{template.name}'")
        return template

    async def get_template(self, org_id: UUID, template_id: UUID) -> ClassTemplate:
        template = await self.db.get(ClassTemplate, template_id)
        if template is None or template.org_id != org_id:
            raise ResourceNotFoundError("class_template", template_id)
        return template

    async def list_templates(self, org_id: UUID, include_inactive: bool = False) -> List[ClassTemplate]:
        query = select(ClassTemplate).where(ClassTemplate.org_id == org_id)
        if not include_inactive:
            query = query.where(ClassTemplate.is_active.is_(True))
        result = await self.db.execute(query.order_by(ClassTemplate.name))
        return list(result.scalars().all())

    async def update_template(self, org_id: UUID, template_id: UUID, data: ClassTemplateUpdate) -> ClassTemplate:
        template = await self.get_template(org_id, template_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(template, field, value)
        await self.db.flush()
        return template

    # Occurrences

    async def schedule_occurrence(
        self,
        org_id: UUID,
        data: OccurrenceCreate,
        series_id: Optional[UUID] = None
    ) -> ClassOccurrence:
        """
        Schedule one class from a template.

        Capacity, price and name default from the template; ``end_time``
        defaults to ``start_time`` plus the template duration.

        Raises:
            ResourceNotFoundError: Unknown template or location
            ValidationError: Instructor is not an active member, or the template is inactive
        """
        template = await self.get_template(org_id, data.template_id)
        if not template.is_active:
            raise ValidationError(f"Template {template.name} is inactive")

        await self._check_instructor(org_id, data.instructor_id)
        await self._check_location(org_id, data.location_id)

        start_time = as_utc(data.start_time)
        end_time = as_utc(data.end_time) or start_time + timedelta(minutes=template.duration_minutes)

        occurrence = ClassOccurrence(
            org_id=org_id,
            template_id=template.id,
            series_id=series_id,
            instructor_id=data.instructor_id,
            location_id=data.location_id,
            name=data.name or template.name,
            category=template.category,
            start_time=start_time,
            end_time=end_time,
            capacity=data.capacity or template.default_capacity,
            price_cents=data.price_cents if data.price_cents is not None else template.price_cents,
            credits_required=template.credits_required,
            status=OccurrenceStatus.SCHEDULED,
            booked_count=0,
            waitlist_count=0,
        )
        self.db.add(occurrence)
        await self.db.flush()
        return occurrence

    async def get_occurrence(self, org_id: UUID, occurrence_id: UUID) -> ClassOccurrence:
        occurrence = await self.db.get(ClassOccurrence, occurrence_id)
        if occurrence is None or occurrence.org_id != org_id:
            raise ResourceNotFoundError("class_occurrence", occurrence_id)
        return occurrence

    async def lock_occurrence(self, org_id: UUID, occurrence_id: UUID) -> ClassOccurrence:
        """Load an occurrence with a row lock held until the transaction ends."""
        result = await self.db.execute(
            select(ClassOccurrence)
            .where(ClassOccurrence.id == occurrence_id, ClassOccurrence.org_id == org_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        occurrence = result.scalar_one_or_none()
        if occurrence is None:
            raise ResourceNotFoundError("class_occurrence", occurrence_id)
        return occurrence

    async def list_occurrences(
        self,
        org_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        status: Optional[OccurrenceStatus] = None,
        instructor_id: Optional[UUID] = None,
        location_id: Optional[UUID] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[ClassOccurrence]:
        query = select(ClassOccurrence).where(ClassOccurrence.org_id == org_id)

        if date_from or date_to:
            lower, upper = day_bounds(date_from or date.min, date_to or date.max)
            if date_from:
                query = query.where(ClassOccurrence.start_time >= lower)
            if date_to:
                query = query.where(ClassOccurrence.start_time <= upper)
        if status:
            query = query.where(ClassOccurrence.status == status)
        if instructor_id:
            query = query.where(ClassOccurrence.instructor_id == instructor_id)
        if location_id:
            query = query.where(ClassOccurrence.location_id == location_id)

        result = await self.db.execute(
            query.order_by(ClassOccurrence.start_time).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    async def update_occurrence(self, org_id: UUID, occurrence_id: UUID, data: OccurrenceUpdate) -> ClassOccurrence:
        """
        Change a scheduled occurrence.

        Raises:
            InvalidStateError: The occurrence is cancelled or completed
            ValidationError: Capacity below the confirmed bookings, or times out of order
        """
        occurrence = await self.lock_occurrence(org_id, occurrence_id)
        self._require_scheduled(occurrence)
        updates = data.model_dump(exclude_unset=True)

        if "capacity" in updates and updates["capacity"] < occurrence.booked_count:
            raise ValidationError(
                "Capacity cannot be lower than the number of confirmed bookings",
                details={"capacity": updates["capacity"], "booked_count": occurrence.booked_count}
            )
        if "instructor_id" in updates:
            await self._check_instructor(org_id, updates["instructor_id"])
        if "location_id" in updates:
            await self._check_location(org_id, updates["location_id"])

        for key in ("start_time", "end_time"):
            if updates.get(key) is not None:
                updates[key] = as_utc(updates[key])

        start_time = updates.get("start_time") or occurrence.start_time
        end_time = updates.get("end_time") or occurrence.end_time
        if "start_time" in updates and "end_time" not in updates:
            # Keep the duration when only the start moves
            end_time = start_time + (occurrence.end_time - occurrence.start_time)
            updates["end_time"] = end_time
        if end_time <= start_time:
            raise ValidationError("end_time must be after start_time")

        for field, value in updates.items():
            setattr(occurrence, field, value)

        await self.db.flush()
        return occurrence

    async def cancel_occurrence(
        self,
        org_id: UUID,
        occurrence_id: UUID,
        reason: str,
        cancelled_by: Optional[UUID] = None
    ) -> ClassOccurrence:
        """
        Cancel a class, cancelling every active registration and returning
        wallet and credit payments to the customers' wallets.
        """
        from .registration_service import RegistrationService

        occurrence = await self.lock_occurrence(org_id, occurrence_id)
        self._require_scheduled(occurrence)

        cancelled = await RegistrationService(self.db).cancel_all_for_occurrence(
            occurrence, reason, initiated_by=cancelled_by
        )

        occurrence.status = OccurrenceStatus.CANCELLED
        occurrence.cancellation_reason = reason
        occurrence.booked_count = 0
        occurrence.waitlist_count = 0
        await self.db.flush()

        log_business_event(
            "class_cancelled",
            {"occurrence_id": str(occurrence.id), "registrations_cancelled": cancelled, "reason": reason},
            str(cancelled_by) if cancelled_by else None
        )
        return occurrence

    async def complete_occurrence(self, org_id: UUID, occurrence_id: UUID) -> ClassOccurrence:
        """Close a class; confirmed registrations never checked in become no-shows."""
        occurrence = await self.lock_occurrence(org_id, occurrence_id)
        self._require_scheduled(occurrence)

        result = await self.db.execute(
            select(Registration).where(
                Registration.occurrence_id == occurrence.id,
                Registration.status == RegistrationStatus.CONFIRMED,
            )
        )
        no_shows = 0
        for registration in result.scalars().all():
            registration.status = RegistrationStatus.NO_SHOW
            no_shows += 1

        occurrence.status = OccurrenceStatus.COMPLETED
        await self.db.flush()

        logger.info(f"Completed class {occurrence.id} ({no_shows} no-shows)")
        return occurrence

    # Series

    async def create_series(self, org_id: UUID, data: SeriesCreate) -> RecurringSeries:
        template = await self.get_template(org_id, data.template_id)
        await self._check_instructor(org_id, data.instructor_id)
        await self._check_location(org_id, data.location_id)

        series = RecurringSeries(
            org_id=org_id,
            template_id=template.id,
            instructor_id=data.instructor_id,
            location_id=data.location_id,
            weekdays=list(data.weekdays),
            start_time_of_day=data.start_time_of_day,
            start_date=data.start_date,
            end_date=data.end_date,
            capacity=data.capacity,
            price_cents=data.price_cents,
            is_active=True,
        )
        self.db.add(series)
        await self.db.flush()
        logger.info(f"Created series {series.id} on weekdays {series.weekdays}")
        return series

    async def get_series(self, org_id: UUID, series_id: UUID) -> RecurringSeries:
        series = await self.db.get(RecurringSeries, series_id)
        if series is None or series.org_id != org_id:
            raise ResourceNotFoundError("recurring_series", series_id)
        return series

    async def generate_series_occurrences(self, series: RecurringSeries, until: date) -> List[ClassOccurrence]:
        """
        Materialize the series up to ``until`` (inclusive).

        Starts that already exist for the series are skipped, so calling this
        repeatedly only fills the gap.

        Returns:
            The newly created occurrences
        """
        if not series.is_active:
            return []

        last_day = min(series.end_date, until) if series.end_date else until
        if last_day < series.start_date:
            return []

        org = await self.db.get(Organization, series.org_id)
        template = await self.get_template(series.org_id, series.template_id)

        existing = await self.db.execute(
            select(ClassOccurrence.start_time).where(ClassOccurrence.series_id == series.id)
        )
        taken = {as_utc(start) for start in existing.scalars().all()}

        created = []
        day = series.start_date
        while day <= last_day:
            if day.weekday() in series.weekdays:
                start_time = local_datetime(day, series.start_time_of_day, org.timezone)
                if start_time not in taken:
                    occurrence = ClassOccurrence(
                        org_id=series.org_id,
                        template_id=template.id,
                        series_id=series.id,
                        instructor_id=series.instructor_id,
                        location_id=series.location_id,
                        name=template.name,
                        category=template.category,
                        start_time=start_time,
                        end_time=start_time + timedelta(minutes=template.duration_minutes),
                        capacity=series.capacity or template.default_capacity,
                        price_cents=series.price_cents if series.price_cents is not None else template.price_cents,
                        credits_required=template.credits_required,
                        status=OccurrenceStatus.SCHEDULED,
                        booked_count=0,
                        waitlist_count=0,
                    )
                    self.db.add(occurrence)
                    created.append(occurrence)
                    taken.add(start_time)
            day += timedelta(days=1)

        await self.db.flush()
        if created:
            logger.info(f"Series {series.id}: generated {len(created)} occurrences until {last_day}")
        return created

    async def generate_all_series(self, until: date) -> int:
        """Extend every active series; returns the number of occurrences created."""
        result = await self.db.execute(
            select(RecurringSeries).where(RecurringSeries.is_active.is_(True))
        )
        total = 0
        for series in result.scalars().all():
            total += len(await self.generate_series_occurrences(series, until))
        return total

    # Checks

    def _require_scheduled(self, occurrence: ClassOccurrence) -> None:
        if occurrence.status != OccurrenceStatus.SCHEDULED:
            raise InvalidStateError(
                "class_occurrence", occurrence.id, occurrence.status.value, [OccurrenceStatus.SCHEDULED.value]
            )

    async def _check_instructor(self, org_id: UUID, instructor_id: Optional[UUID]) -> None:
        if instructor_id is None:
            return
        result = await self.db.execute(
            select(OrgMember.id).where(
                OrgMember.org_id == org_id,
                OrgMember.user_id == instructor_id,
                OrgMember.status == MemberStatus.ACTIVE,
            )
        )
        if result.first() is None:
            raise ValidationError(
                "Instructor must be an active member of the organization",
                field_errors={"instructor_id": ["not an active member"]}
            )

    async def _check_location(self, org_id: UUID, location_id: Optional[UUID]) -> None:
        if location_id is None:
            return
        location = await self.db.get(Location, location_id)
        if location is None or location.org_id != org_id:
            raise ResourceNotFoundError("location", location_id)


def is_in_future(occurrence: ClassOccurrence, now: Optional[datetime] = None) -> bool:
    return as_utc(occurrence.start_time) > (now or utcnow())
