"""
Registration and waitlist schemas.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..models.registration import (
    RegistrationPaymentMethod,
    RegistrationPaymentStatus,
    RegistrationStatus,
)


class RegistrationCreate(BaseModel):
    """Book a customer into a class."""
    occurrence_id: UUID
    customer_id: UUID
    payment_method: RegistrationPaymentMethod = RegistrationPaymentMethod.CREDITS
    notes: Optional[str] = Field(None, max_length=1000)


class RegistrationCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
    by_staff: bool = True


class RegistrationResponse(BaseModel):
    id: UUID
    org_id: UUID
    occurrence_id: UUID
    customer_id: UUID
    status: RegistrationStatus
    waitlist_position: Optional[int] = None
    payment_status: RegistrationPaymentStatus
    payment_method: RegistrationPaymentMethod
    credits_used: int
    amount_paid_cents: int
    idempotency_key: Optional[str] = None
    booked_at: datetime
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    check_in_time: Optional[datetime] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class RegistrationListResponse(BaseModel):
    registrations: List[RegistrationResponse]
    total: int


class PromotionTickResponse(BaseModel):
    promoted: int
