"""
Class template, occurrence and recurring series schemas.
"""

from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models.class_schedule import ClassType, OccurrenceStatus


class ClassTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    class_type: ClassType = ClassType.CLASS
    category: Optional[str] = Field(None, max_length=100)
    level: Optional[str] = Field(None, max_length=50)
    duration_minutes: int = Field(60, gt=0, le=24 * 60)
    default_capacity: int = Field(20, gt=0)
    price_cents: int = Field(0, ge=0)
    credits_required: int = Field(1, ge=0)
    vat_rate: Optional[Decimal] = Field(None, ge=0, lt=100)


class ClassTemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    class_type: Optional[ClassType] = None
    category: Optional[str] = Field(None, max_length=100)
    level: Optional[str] = Field(None, max_length=50)
    duration_minutes: Optional[int] = Field(None, gt=0, le=24 * 60)
    default_capacity: Optional[int] = Field(None, gt=0)
    price_cents: Optional[int] = Field(None, ge=0)
    credits_required: Optional[int] = Field(None, ge=0)
    vat_rate: Optional[Decimal] = Field(None, ge=0, lt=100)
    is_active: Optional[bool] = None


class ClassTemplateResponse(BaseModel):
    id: UUID
    org_id: UUID
    name: str
    description: Optional[str] = None
    class_type: ClassType
    category: Optional[str] = None
    level: Optional[str] = None
    duration_minutes: int
    default_capacity: int
    price_cents: int
    credits_required: int
    vat_rate: Optional[float] = None
    is_active: bool

    model_config = {"from_attributes": True}


class OccurrenceCreate(BaseModel):
    """Schedule one dated class from a template."""
    template_id: UUID
    start_time: datetime
    end_time: Optional[datetime] = None
    instructor_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    capacity: Optional[int] = Field(None, gt=0)
    price_cents: Optional[int] = Field(None, ge=0)
    name: Optional[str] = Field(None, max_length=200)

    @field_validator("start_time", "end_time")
    @classmethod
    def require_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            raise ValueError("datetime must include a timezone offset")
        return value

    @model_validator(mode="after")
    def check_order(self):
        if self.end_time is not None and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class OccurrenceUpdate(BaseModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    instructor_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    capacity: Optional[int] = Field(None, gt=0)
    price_cents: Optional[int] = Field(None, ge=0)
    name: Optional[str] = Field(None, max_length=200)


class OccurrenceCancel(BaseModel):
    reason: str = Field("Cancelled by studio", max_length=500)


class OccurrenceResponse(BaseModel):
    id: UUID
    org_id: UUID
    template_id: UUID
    series_id: Optional[UUID] = None
    instructor_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    name: str
    category: Optional[str] = None
    start_time: datetime
    end_time: datetime
    capacity: int
    price_cents: int
    credits_required: int
    status: OccurrenceStatus
    booked_count: int
    waitlist_count: int
    available_spots: int
    cancellation_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class OccurrenceListResponse(BaseModel):
    occurrences: List[OccurrenceResponse]
    total: int


class SeriesCreate(BaseModel):
    """Weekly pattern; weekdays use 0 = Monday ... 6 = Sunday."""
    template_id: UUID
    weekdays: List[int] = Field(..., min_length=1)
    start_time_of_day: time
    start_date: date
    end_date: Optional[date] = None
    instructor_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    capacity: Optional[int] = Field(None, gt=0)
    price_cents: Optional[int] = Field(None, ge=0)
    generate_until: Optional[date] = None

    @field_validator("weekdays")
    @classmethod
    def validate_weekdays(cls, value: List[int]) -> List[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("weekdays must be between 0 (Monday) and 6 (Sunday)")
        return sorted(set(value))

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class SeriesGenerate(BaseModel):
    until: date


class SeriesResponse(BaseModel):
    id: UUID
    org_id: UUID
    template_id: UUID
    instructor_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    weekdays: List[int]
    start_time_of_day: time
    start_date: date
    end_date: Optional[date] = None
    capacity: Optional[int] = None
    price_cents: Optional[int] = None
    is_active: bool

    model_config = {"from_attributes": True}


class SeriesGenerateResponse(BaseModel):
    series: SeriesResponse
    created: List[OccurrenceResponse]
