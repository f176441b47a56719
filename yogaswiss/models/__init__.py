"""
Database models for the YogaSwiss studio backend.
"""

from .base import Base
from .user import User
from .organization import (
    Organization,
    OrgMember,
    OrgRole,
    MemberStatus,
    Permission,
    ROLE_PERMISSIONS,
)
from .customer import Customer
from .location import Location, LocationKind
from .class_schedule import (
    ClassTemplate,
    ClassType,
    ClassOccurrence,
    OccurrenceStatus,
    RecurringSeries,
)
from .registration import (
    Registration,
    RegistrationStatus,
    RegistrationPaymentStatus,
    RegistrationPaymentMethod,
)
from .wallet import (
    CustomerWallet,
    WalletLedgerEntry,
    WalletPackage,
    WalletType,
    WalletStatus,
    LedgerEntryType,
    LedgerReferenceType,
    PackageStatus,
)
from .order import Order, OrderItem, OrderStatus, OrderChannel, OrderItemType
from .payment import Payment, PaymentMethod, PaymentStatus, Refund, RefundStatus
from .gift_card import GiftCard, GiftCardStatus
from .invoice import Invoice, InvoiceStatus, TaxMode
from .earnings import InstructorEarnings, EarningsStatus
from .cash_drawer import CashDrawer, CashTransaction, CashTransactionType, DrawerStatus

__all__ = [
    "Base",
    "User",
    "Organization",
    "OrgMember",
    "OrgRole",
    "MemberStatus",
    "Permission",
    "ROLE_PERMISSIONS",
    "Customer",
    "Location",
    "LocationKind",
    "ClassTemplate",
    "ClassType",
    "ClassOccurrence",
    "OccurrenceStatus",
    "RecurringSeries",
    "Registration",
    "RegistrationStatus",
    "RegistrationPaymentStatus",
    "RegistrationPaymentMethod",
    "CustomerWallet",
    "WalletLedgerEntry",
    "WalletPackage",
    "WalletType",
    "WalletStatus",
    "LedgerEntryType",
    "LedgerReferenceType",
    "PackageStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderChannel",
    "OrderItemType",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "Refund",
    "RefundStatus",
    "GiftCard",
    "GiftCardStatus",
    "Invoice",
    "InvoiceStatus",
    "TaxMode",
    "InstructorEarnings",
    "EarningsStatus",
    "CashDrawer",
    "CashTransaction",
    "CashTransactionType",
    "DrawerStatus",
]
