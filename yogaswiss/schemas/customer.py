"""
Customer and location schemas.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from ..models.location import LocationKind
from .common import ListResponse


class CustomerCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=40)
    street: Optional[str] = Field(None, max_length=70)
    building_number: Optional[str] = Field(None, max_length=16)
    postal_code: Optional[str] = Field(None, max_length=16)
    city: Optional[str] = Field(None, max_length=35)
    country: str = Field("CH", min_length=2, max_length=2)
    marketing_consent: bool = False
    notes: Optional[str] = None


class CustomerUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=40)
    street: Optional[str] = Field(None, max_length=70)
    building_number: Optional[str] = Field(None, max_length=16)
    postal_code: Optional[str] = Field(None, max_length=16)
    city: Optional[str] = Field(None, max_length=35)
    country: Optional[str] = Field(None, min_length=2, max_length=2)
    marketing_consent: Optional[bool] = None
    notes: Optional[str] = None


class CustomerResponse(BaseModel):
    id: UUID
    org_id: UUID
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    street: Optional[str] = None
    building_number: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    country: str
    marketing_consent: bool
    notes: Optional[str] = None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class CustomerListResponse(ListResponse):
    customers: List[CustomerResponse]


class LocationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    kind: LocationKind = LocationKind.STUDIO
    capacity: Optional[int] = Field(None, gt=0)
    street: Optional[str] = Field(None, max_length=70)
    postal_code: Optional[str] = Field(None, max_length=16)
    city: Optional[str] = Field(None, max_length=35)


class LocationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    kind: Optional[LocationKind] = None
    capacity: Optional[int] = Field(None, gt=0)
    street: Optional[str] = Field(None, max_length=70)
    postal_code: Optional[str] = Field(None, max_length=16)
    city: Optional[str] = Field(None, max_length=35)
    is_active: Optional[bool] = None


class LocationResponse(BaseModel):
    id: UUID
    org_id: UUID
    name: str
    kind: LocationKind
    capacity: Optional[int] = None
    street: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    is_active: bool

    model_config = {"from_attributes": True}
