"""
Customer wallets, their append-only ledger and purchasable credit packages.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, OrgScoped, UTCDateTime, str_enum


class WalletType(str, enum.Enum):
    CUSTOMER = "customer"
    GIFT = "gift"
    PROMOTION = "promotion"
    CORPORATE = "corporate"


class WalletStatus(str, enum.Enum):
    ACTIVE = "active"
    FROZEN = "frozen"
    CLOSED = "closed"


class LedgerEntryType(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"
    RESERVE = "reserve"
    RELEASE = "release"
    EXPIRY = "expiry"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    ADJUSTMENT = "adjustment"


class LedgerReferenceType(str, enum.Enum):
    ORDER = "order"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    EXPIRY = "expiry"
    PURCHASE = "purchase"
    REDEMPTION = "redemption"
    REGISTRATION = "registration"
    GIFT_CARD = "gift_card"


class PackageStatus(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class CustomerWallet(OrgScoped, Base):
    """Stored value (cents) and class credits held by a customer at one studio."""

    __tablename__ = "customer_wallets"

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    wallet_type: Mapped[WalletType] = mapped_column(
        str_enum(WalletType), default=WalletType.CUSTOMER, nullable=False
    )
    currency: Mapped[str] = mapped_column(String(3), default="CHF", nullable=False)

    balance_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reserved_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    used_credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    credits_expiry: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    status: Mapped[WalletStatus] = mapped_column(
        str_enum(WalletStatus), default=WalletStatus.ACTIVE, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("org_id", "customer_id", "wallet_type", name="uq_customer_wallets_owner"),
        CheckConstraint("balance_cents >= 0", name="ck_customer_wallets_balance_non_negative"),
        CheckConstraint(
            "reserved_cents >= 0 AND reserved_cents <= balance_cents",
            name="ck_customer_wallets_reserved_within_balance"
        ),
        CheckConstraint(
            "used_credits >= 0 AND used_credits <= total_credits",
            name="ck_customer_wallets_credits_consistent"
        ),
    )

    @property
    def available_cents(self) -> int:
        return self.balance_cents - self.reserved_cents

    @property
    def available_credits(self) -> int:
        return self.total_credits - self.used_credits


class WalletLedgerEntry(OrgScoped, Base):
    """One immutable row per wallet mutation, carrying the post-mutation state."""

    __tablename__ = "wallet_ledger_entries"

    wallet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("customer_wallets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    entry_type: Mapped[LedgerEntryType] = mapped_column(str_enum(LedgerEntryType), nullable=False)
    # Signed changes; sum(amount_cents) == balance, sum(credits_delta) == available credits
    amount_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    credits_delta: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reserved_delta_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    balance_after_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    reserved_after_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    credits_after: Mapped[int] = mapped_column(Integer, nullable=False)

    reference_type: Mapped[Optional[LedgerReferenceType]] = mapped_column(
        str_enum(LedgerReferenceType), nullable=True
    )
    reference_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    initiated_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)


class WalletPackage(OrgScoped, Base):
    """A class pass or top-up product sold into wallets."""

    __tablename__ = "wallet_packages"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    bonus_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    validity_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[PackageStatus] = mapped_column(
        str_enum(PackageStatus), default=PackageStatus.ACTIVE, nullable=False
    )

    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_wallet_packages_price_non_negative"),
        CheckConstraint("credits >= 0", name="ck_wallet_packages_credits_non_negative"),
        CheckConstraint("bonus_cents >= 0", name="ck_wallet_packages_bonus_non_negative"),
        CheckConstraint(
            "validity_days IS NULL OR validity_days > 0",
            name="ck_wallet_packages_validity_positive"
        ),
    )
