"""Business logic services for the YogaSwiss studio backend."""

from .user_service import UserService
from .organization_service import OrganizationService
from .customer_service import CustomerService
from .location_service import LocationService
from .class_service import ClassService
from .registration_service import RegistrationService
from .wallet_service import WalletService
from .order_service import OrderService
from .payment_service import PaymentService
from .refund_service import RefundService
from .gift_card_service import GiftCardService
from .invoice_service import InvoiceService
from .earnings_service import EarningsService
from .cash_drawer_service import CashDrawerService
from .report_service import ReportService

__all__ = [
    "UserService",
    "OrganizationService",
    "CustomerService",
    "LocationService",
    "ClassService",
    "RegistrationService",
    "WalletService",
    "OrderService",
    "PaymentService",
    "RefundService",
    "GiftCardService",
    "InvoiceService",
    "EarningsService",
    "CashDrawerService",
    "ReportService",
]
