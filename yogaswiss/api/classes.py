"""
Class templates, scheduled occurrences and recurring series.
"""

from datetime import date
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.class_schedule import OccurrenceStatus
from ..models.organization import Permission
from ..schemas.classes import (
    ClassTemplateCreate,
    ClassTemplateResponse,
    ClassTemplateUpdate,
    OccurrenceCancel,
    OccurrenceCreate,
    OccurrenceListResponse,
    OccurrenceResponse,
    OccurrenceUpdate,
    SeriesCreate,
    SeriesGenerate,
    SeriesGenerateResponse,
    SeriesResponse,
)
from ..schemas.registration import RegistrationResponse
from ..services.class_service import ClassService
from ..services.registration_service import RegistrationService
from ..utils.dependencies import OrgContext, require_permission

router = APIRouter(prefix="/classes", tags=["classes"])

can_schedule = require_permission(Permission.SCHEDULE)


@router.get("/templates", response_model=List[ClassTemplateResponse])
async def list_templates(
    include_inactive: bool = False,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    templates = await ClassService(db).list_templates(ctx.org_id, include_inactive=include_inactive)
    return [ClassTemplateResponse.model_validate(t) for t in templates]


@router.post("/templates", response_model=ClassTemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    data: ClassTemplateCreate,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    template = await ClassService(db).create_template(ctx.org_id, data)
    return ClassTemplateResponse.model_validate(template)


@router.patch("/templates/{template_id}", response_model=ClassTemplateResponse)
async def update_template(
    template_id: UUID,
    data: ClassTemplateUpdate,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    template = await ClassService(db).update_template(ctx.org_id, template_id, data)
    return ClassTemplateResponse.model_validate(template)


@router.get("/occurrences", response_model=OccurrenceListResponse)
async def list_occurrences(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    status_filter: Optional[OccurrenceStatus] = Query(None, alias="status"),
    instructor_id: Optional[UUID] = None,
    location_id: Optional[UUID] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """List the schedule ordered by start time."""
    occurrences = await ClassService(db).list_occurrences(
        ctx.org_id,
        date_from=date_from,
        date_to=date_to,
        status=status_filter,
        instructor_id=instructor_id,
        location_id=location_id,
        limit=limit,
        offset=offset,
    )
    return OccurrenceListResponse(
        occurrences=[OccurrenceResponse.model_validate(o) for o in occurrences],
        total=len(occurrences),
    )


@router.post("/occurrences", response_model=OccurrenceResponse, status_code=status.HTTP_201_CREATED)
async def schedule_occurrence(
    data: OccurrenceCreate,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Schedule a single class from a template.

    Raises:
        ValidationError: Instructor is not an active member or location is unknown
    """
    occurrence = await ClassService(db).schedule_occurrence(ctx.org_id, data)
    return OccurrenceResponse.model_validate(occurrence)


@router.get("/occurrences/{occurrence_id}", response_model=OccurrenceResponse)
async def get_occurrence(
    occurrence_id: UUID,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    occurrence = await ClassService(db).get_occurrence(ctx.org_id, occurrence_id)
    return OccurrenceResponse.model_validate(occurrence)


@router.patch("/occurrences/{occurrence_id}", response_model=OccurrenceResponse)
async def update_occurrence(
    occurrence_id: UUID,
    data: OccurrenceUpdate,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    occurrence = await ClassService(db).update_occurrence(ctx.org_id, occurrence_id, data)
    return OccurrenceResponse.model_validate(occurrence)


@router.post("/occurrences/{occurrence_id}/cancel", response_model=OccurrenceResponse)
async def cancel_occurrence(
    occurrence_id: UUID,
    data: Optional[OccurrenceCancel] = None,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """Cancel a class and every active registration in it."""
    occurrence = await ClassService(db).cancel_occurrence(
        ctx.org_id, occurrence_id, (data or OccurrenceCancel()).reason, cancelled_by=ctx.user.id
    )
    return OccurrenceResponse.model_validate(occurrence)


@router.post("/occurrences/{occurrence_id}/complete", response_model=OccurrenceResponse)
async def complete_occurrence(
    occurrence_id: UUID,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    occurrence = await ClassService(db).complete_occurrence(ctx.org_id, occurrence_id)
    return OccurrenceResponse.model_validate(occurrence)


@router.get("/occurrences/{occurrence_id}/waitlist", response_model=List[RegistrationResponse])
async def get_waitlist(
    occurrence_id: UUID,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    waitlist = await RegistrationService(db).get_waitlist(ctx.org_id, occurrence_id)
    return [RegistrationResponse.model_validate(r) for r in waitlist]


@router.post("/series", response_model=SeriesGenerateResponse, status_code=status.HTTP_201_CREATED)
async def create_series(
    data: SeriesCreate,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """Create a weekly series and, with ``generate_until``, its first occurrences."""
    service = ClassService(db)
    series = await service.create_series(ctx.org_id, data)
    created = []
    if data.generate_until:
        created = await service.generate_series_occurrences(series, data.generate_until)
    return SeriesGenerateResponse(
        series=SeriesResponse.model_validate(series),
        created=[OccurrenceResponse.model_validate(o) for o in created],
    )


@router.post("/series/{series_id}/generate", response_model=SeriesGenerateResponse)
async def generate_series(
    series_id: UUID,
    data: SeriesGenerate,
    ctx: OrgContext = Depends(can_schedule),
    db: AsyncSession = Depends(get_db)
) -> Any:
    service = ClassService(db)
    series = await service.get_series(ctx.org_id, series_id)
    created = await service.generate_series_occurrences(series, data.until)
    return SeriesGenerateResponse(
        series=SeriesResponse.model_validate(series),
        created=[OccurrenceResponse.model_validate(o) for o in created],
    )
