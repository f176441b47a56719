"""
Gift card schemas.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from ..models.gift_card import GiftCardStatus
from .wallet import WalletResponse


class GiftCardCreate(BaseModel):
    amount_cents: int = Field(..., gt=0)
    code: Optional[str] = Field(None, min_length=4, max_length=32, pattern=r"^[A-Za-z0-9-]+$")
    purchaser_customer_id: Optional[UUID] = None
    recipient_name: Optional[str] = Field(None, max_length=200)
    recipient_email: Optional[EmailStr] = None
    message: Optional[str] = Field(None, max_length=500)
    expires_at: Optional[datetime] = None


class GiftCardRedeem(BaseModel):
    amount_cents: int = Field(..., gt=0)


class GiftCardRedeemToWallet(BaseModel):
    customer_id: UUID


class GiftCardResponse(BaseModel):
    id: UUID
    org_id: UUID
    code: str
    initial_amount_cents: int
    current_balance_cents: int
    currency: str
    purchaser_customer_id: Optional[UUID] = None
    recipient_name: Optional[str] = None
    recipient_email: Optional[str] = None
    message: Optional[str] = None
    status: GiftCardStatus
    expires_at: Optional[datetime] = None
    first_use_at: Optional[datetime] = None
    last_use_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class GiftCardListResponse(BaseModel):
    gift_cards: List[GiftCardResponse]
    total: int


class GiftCardWalletResponse(BaseModel):
    gift_card: GiftCardResponse
    wallet: WalletResponse
