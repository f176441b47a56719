"""
Wallet, ledger and package schemas.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from ..models.payment import PaymentMethod
from ..models.wallet import (
    LedgerEntryType,
    LedgerReferenceType,
    PackageStatus,
    WalletStatus,
    WalletType,
)


class WalletCreate(BaseModel):
    customer_id: UUID
    wallet_type: WalletType = WalletType.CUSTOMER


class WalletResponse(BaseModel):
    id: UUID
    org_id: UUID
    customer_id: UUID
    wallet_type: WalletType
    currency: str
    balance_cents: int
    reserved_cents: int
    available_cents: int
    total_credits: int
    used_credits: int
    available_credits: int
    credits_expiry: Optional[datetime] = None
    status: WalletStatus

    model_config = {"from_attributes": True}


class AddFundsRequest(BaseModel):
    amount_cents: int = Field(0, ge=0)
    credits: int = Field(0, ge=0)
    reason: LedgerReferenceType = LedgerReferenceType.ADJUSTMENT
    description: Optional[str] = Field(None, max_length=500)
    credits_expiry: Optional[datetime] = None

    @model_validator(mode="after")
    def require_value(self):
        if self.amount_cents <= 0 and self.credits <= 0:
            raise ValueError("amount_cents or credits must be positive")
        return self


class DebitRequest(BaseModel):
    amount_cents: int = Field(..., gt=0)
    reference_type: LedgerReferenceType = LedgerReferenceType.ORDER
    reference_id: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = Field(None, max_length=500)


class UseCreditsRequest(BaseModel):
    credits: int = Field(..., gt=0)
    reference_id: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = Field(None, max_length=500)


class ReserveRequest(BaseModel):
    amount_cents: int = Field(..., gt=0)
    reference_id: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = Field(None, max_length=500)


class WalletStatusUpdate(BaseModel):
    status: WalletStatus


class TransferRequest(BaseModel):
    source_wallet_id: UUID
    target_wallet_id: UUID
    amount_cents: int = Field(..., gt=0)
    description: Optional[str] = Field(None, max_length=500)


class TransferResponse(BaseModel):
    source: WalletResponse
    target: WalletResponse


class LedgerEntryResponse(BaseModel):
    id: UUID
    wallet_id: UUID
    entry_type: LedgerEntryType
    amount_cents: int
    credits_delta: int
    reserved_delta_cents: int
    balance_after_cents: int
    reserved_after_cents: int
    credits_after: int
    reference_type: Optional[LedgerReferenceType] = None
    reference_id: Optional[str] = None
    description: Optional[str] = None
    initiated_by: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class WalletMutationResponse(BaseModel):
    wallet: WalletResponse
    entry: LedgerEntryResponse


class PackageCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    price_cents: int = Field(..., ge=0)
    credits: int = Field(0, ge=0)
    bonus_cents: int = Field(0, ge=0)
    validity_days: Optional[int] = Field(None, gt=0)


class PackageResponse(BaseModel):
    id: UUID
    org_id: UUID
    name: str
    description: Optional[str] = None
    price_cents: int
    credits: int
    bonus_cents: int
    validity_days: Optional[int] = None
    status: PackageStatus

    model_config = {"from_attributes": True}


class PackagePurchaseRequest(BaseModel):
    customer_id: UUID
    payment_method: PaymentMethod = PaymentMethod.CASH
    gift_card_code: Optional[str] = None


class PackagePurchaseResponse(BaseModel):
    order_id: UUID
    order_number: str
    payment_id: Optional[UUID] = None
    wallet: WalletResponse


class WalletListResponse(BaseModel):
    wallets: List[WalletResponse]
