"""
Schemas for instructor earnings, cash drawers and financial reports.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from ..models.cash_drawer import CashTransactionType, DrawerStatus
from ..models.earnings import EarningsStatus


class EarningsCalculate(BaseModel):
    instructor_id: UUID
    period_start: date
    period_end: date
    adjustments_cents: int = 0
    deductions_cents: int = Field(0, ge=0)

    @model_validator(mode="after")
    def check_period(self):
        if self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self


class EarningsMarkPaid(BaseModel):
    payment_method: str = Field("bank_transfer", max_length=32)
    payment_reference: Optional[str] = Field(None, max_length=128)


class EarningsResponse(BaseModel):
    id: UUID
    org_id: UUID
    instructor_id: UUID
    period_start: date
    period_end: date
    total_classes: int
    total_students: int
    base_earnings_cents: int
    bonus_earnings_cents: int
    adjustments_cents: int
    deductions_cents: int
    gross_earnings_cents: int
    breakdown: List[Dict[str, Any]]
    payment_status: EarningsStatus
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    calculated_at: datetime
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DrawerOpen(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    location_id: Optional[UUID] = None
    opening_float_cents: int = Field(0, ge=0)


class CashTransactionCreate(BaseModel):
    transaction_type: CashTransactionType
    amount_cents: int = Field(..., gt=0)
    description: Optional[str] = Field(None, max_length=500)
    customer_name: Optional[str] = Field(None, max_length=200)
    order_id: Optional[UUID] = None


class DrawerClose(BaseModel):
    counted_cash_cents: int = Field(..., ge=0)


class CashTransactionResponse(BaseModel):
    id: UUID
    drawer_id: UUID
    transaction_type: CashTransactionType
    amount_cents: int
    rounding_adjustment_cents: int
    description: Optional[str] = None
    customer_name: Optional[str] = None
    order_id: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class DrawerResponse(BaseModel):
    id: UUID
    org_id: UUID
    location_id: Optional[UUID] = None
    name: str
    operator_id: Optional[UUID] = None
    status: DrawerStatus
    opening_float_cents: int
    current_balance_cents: int
    total_sales_cents: int
    total_refunds_cents: int
    total_payouts_cents: int
    total_deposits_cents: int
    total_rounding_cents: int
    transaction_count: int
    opened_at: datetime
    closed_at: Optional[datetime] = None
    counted_cash_cents: Optional[int] = None
    variance_cents: Optional[int] = None
    z_report_number: Optional[str] = None

    model_config = {"from_attributes": True}


class CashTransactionResult(BaseModel):
    drawer: DrawerResponse
    transaction: CashTransactionResponse


class ZReport(BaseModel):
    """End-of-day till report."""
    z_report_number: str
    drawer_id: UUID
    drawer_name: str
    opened_at: datetime
    closed_at: datetime
    opening_float_cents: int
    total_sales_cents: int
    total_refunds_cents: int
    total_payouts_cents: int
    total_deposits_cents: int
    total_rounding_cents: int
    transaction_count: int
    expected_cash_cents: int
    counted_cash_cents: int
    variance_cents: int


class PaymentMethodStat(BaseModel):
    method: str
    count: int
    amount_cents: int


class DailyRevenue(BaseModel):
    date: str
    amount_cents: int


class SummaryMetadata(BaseModel):
    orders_available: bool = True
    payments_available: bool = True
    wallets_available: bool = True
    is_fallback: bool = False


class FinancialSummary(BaseModel):
    period_start: date
    period_end: date
    currency: str = "CHF"
    total_revenue_cents: int = 0
    total_payments_cents: int = 0
    total_fees_cents: int = 0
    net_revenue_cents: int = 0
    total_refunds_cents: int = 0
    wallet_liability_cents: int = 0
    credit_liability: int = 0
    order_count: int = 0
    payment_count: int = 0
    average_order_value_cents: int = 0
    payment_methods: List[PaymentMethodStat] = Field(default_factory=list)
    revenue_by_item_type: Dict[str, int] = Field(default_factory=dict)
    daily_revenue: List[DailyRevenue] = Field(default_factory=list)
    metadata: SummaryMetadata = Field(default_factory=SummaryMetadata)


class CategoryCount(BaseModel):
    category: str
    count: int


class BookingAnalytics(BaseModel):
    period_days: int
    total_bookings: int
    confirmed: int
    attended: int
    cancelled: int
    no_shows: int
    waitlisted: int
    attendance_rate: float
    cancellation_rate: float
    daily_bookings: List[Dict[str, Any]]
    by_category: List[CategoryCount]
