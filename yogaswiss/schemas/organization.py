"""
Organization and membership schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from ..models.organization import MemberStatus, OrgRole

SLUG_PATTERN = r"^[a-z0-9-]{3,63}$"


class OrganizationCreate(BaseModel):
    """Schema for creating a studio organization."""
    slug: str = Field(..., pattern=SLUG_PATTERN, description="Lowercase letters, digits and dashes")
    name: str = Field(..., min_length=1, max_length=200)
    currency: str = Field("CHF", min_length=3, max_length=3)
    vat_rate: Optional[Decimal] = Field(None, ge=0, lt=100)
    timezone: str = "Europe/Zurich"
    cancellation_window_hours: Optional[int] = Field(None, ge=0, le=168)
    iban: Optional[str] = Field(None, max_length=34)
    street: Optional[str] = Field(None, max_length=70)
    building_number: Optional[str] = Field(None, max_length=16)
    postal_code: Optional[str] = Field(None, max_length=16)
    city: Optional[str] = Field(None, max_length=35)
    country: str = Field("CH", min_length=2, max_length=2)
    customer_number: str = Field("", max_length=10, pattern=r"^[0-9]*$")
    settings: Dict[str, Any] = Field(default_factory=dict)


class OrganizationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    vat_rate: Optional[Decimal] = Field(None, ge=0, lt=100)
    timezone: Optional[str] = None
    cancellation_window_hours: Optional[int] = Field(None, ge=0, le=168)
    iban: Optional[str] = Field(None, max_length=34)
    street: Optional[str] = Field(None, max_length=70)
    building_number: Optional[str] = Field(None, max_length=16)
    postal_code: Optional[str] = Field(None, max_length=16)
    city: Optional[str] = Field(None, max_length=35)
    country: Optional[str] = Field(None, min_length=2, max_length=2)
    customer_number: Optional[str] = Field(None, max_length=10, pattern=r"^[0-9]*$")
    settings: Optional[Dict[str, Any]] = None


class OrganizationResponse(BaseModel):
    id: UUID
    slug: str
    name: str
    currency: str
    vat_rate: float
    timezone: str
    cancellation_window_hours: int
    iban: Optional[str] = None
    street: Optional[str] = None
    building_number: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    country: str
    customer_number: str
    settings: Dict[str, Any]
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class MemberCreate(BaseModel):
    """Add an existing user to the organization."""
    email: EmailStr
    role: OrgRole
    display_name: Optional[str] = Field(None, max_length=200)
    rate_per_class_cents: int = Field(0, ge=0)
    rate_per_student_cents: int = Field(0, ge=0)


class MemberUpdate(BaseModel):
    role: Optional[OrgRole] = None
    status: Optional[MemberStatus] = None
    display_name: Optional[str] = Field(None, max_length=200)
    rate_per_class_cents: Optional[int] = Field(None, ge=0)
    rate_per_student_cents: Optional[int] = Field(None, ge=0)


class MemberResponse(BaseModel):
    id: UUID
    org_id: UUID
    user_id: UUID
    role: OrgRole
    status: MemberStatus
    display_name: Optional[str] = None
    rate_per_class_cents: int
    rate_per_student_cents: int
    created_at: datetime

    model_config = {"from_attributes": True}


class MembershipSummary(BaseModel):
    """An organization the caller belongs to, with their role."""
    organization: OrganizationResponse
    role: OrgRole
    permissions: List[str]
