"""
Customer wallets and their ledger.

Every balance or credit change goes through ``_lock`` (SELECT ... FOR UPDATE)
and ``_append``, so the wallet row and its ledger never disagree:
the sum of ``amount_cents`` over a wallet's entries equals its balance and the
sum of ``credits_delta`` equals its available credits.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..models.customer import Customer
from ..models.organization import Organization
from ..models.wallet import (
    CustomerWallet,
    LedgerEntryType,
    LedgerReferenceType,
    PackageStatus,
    WalletLedgerEntry,
    WalletPackage,
    WalletStatus,
    WalletType,
)
from ..schemas.wallet import PackageCreate
from ..utils.clock import as_utc, utcnow
from ..utils.exceptions import (
    InsufficientCreditsError,
    InsufficientFundsError,
    ResourceNotFoundError,
    ValidationError,
    WalletNotActiveError,
)
from ..utils.logging_config import log_business_event

logger = logging.getLogger(__name__)

WalletMutation = Tuple[CustomerWallet, WalletLedgerEntry]


class WalletService:
    """Stored value and class credits per customer."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def get_or_create_wallet(
        self,
        org_id: UUID,
        customer_id: UUID,
        wallet_type: WalletType = WalletType.CUSTOMER
    ) -> CustomerWallet:
        """Return the customer's wallet of ``wallet_type``, creating an empty one if needed."""
        result = await self.db.execute(
            select(CustomerWallet).where(
                CustomerWallet.org_id == org_id,
                CustomerWallet.customer_id == customer_id,
                CustomerWallet.wallet_type == wallet_type,
            )
        )
        wallet = result.scalar_one_or_none()
        if wallet:
            return wallet

        customer = await self.db.get(Customer, customer_id)
        if customer is None or customer.org_id != org_id:
            raise ResourceNotFoundError("customer", customer_id)

        org = await self.db.get(Organization, org_id)
        wallet = CustomerWallet(
            org_id=org_id,
            customer_id=customer_id,
            wallet_type=wallet_type,
            currency=org.currency if org else self.settings.default_currency,
        )
        self.db.add(wallet)
        await self.db.flush()

        logger.info(f"Created {wallet_type.value} wallet {wallet.id} for customer {customer_id}")
        return wallet

    async def get_wallet(self, org_id: UUID, wallet_id: UUID) -> CustomerWallet:
        wallet = await self.db.get(CustomerWallet, wallet_id)
        if wallet is None or wallet.org_id != org_id:
            raise ResourceNotFoundError("wallet", wallet_id)
        return wallet

    async def find_wallet(self, org_id: UUID, customer_id: UUID) -> Optional[CustomerWallet]:
        result = await self.db.execute(
            select(CustomerWallet).where(
                CustomerWallet.org_id == org_id,
                CustomerWallet.customer_id == customer_id,
                CustomerWallet.wallet_type == WalletType.CUSTOMER,
            )
        )
        return result.scalar_one_or_none()

    async def list_wallets(self, org_id: UUID, customer_id: Optional[UUID] = None) -> List[CustomerWallet]:
        query = select(CustomerWallet).where(CustomerWallet.org_id == org_id)
        if customer_id:
            query = query.where(CustomerWallet.customer_id == customer_id)
        result = await self.db.execute(query.order_by(CustomerWallet.created_at))
        return list(result.scalars().all())

    async def add_funds(
        self,
        org_id: UUID,
        wallet_id: UUID,
        amount_cents: int = 0,
        credits: int = 0,
        reason: LedgerReferenceType = LedgerReferenceType.ADJUSTMENT,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        initiated_by: Optional[UUID] = None,
        credits_expiry: Optional[datetime] = None,
    ) -> WalletMutation:
        """
        Credit money and/or class credits.

        Args:
            amount_cents: Cents to add (>= 0)
            credits: Class credits to add (>= 0)
            reason: What the credit is for; recorded as the entry's reference type
            credits_expiry: Expiry of the added credits. Credits that are still
                valid keep the later of both dates; credits already past their
                expiry are written off first

        Returns:
            Tuple of (wallet, ledger entry)
        """
        if amount_cents < 0 or credits < 0 or (amount_cents == 0 and credits == 0):
            raise ValidationError(
                "Either amount_cents or credits must be positive",
                details={"amount_cents": amount_cents, "credits": credits}
            )

        wallet = await self._lock(org_id, wallet_id)
        if credits:
            self._write_off_expired_credits(wallet, utcnow())
            current = as_utc(wallet.credits_expiry)
            if current is None:
                # Only a wallet without outstanding credits takes a fresh expiry
                if wallet.available_credits == 0:
                    wallet.credits_expiry = as_utc(credits_expiry)
            elif credits_expiry is not None:
                wallet.credits_expiry = max(current, as_utc(credits_expiry))

        wallet.balance_cents += amount_cents
        wallet.total_credits += credits

        entry = self._append(
            wallet,
            LedgerEntryType.CREDIT,
            amount_cents=amount_cents,
            credits_delta=credits,
            reference_type=reason,
            reference_id=reference_id,
            description=description,
            initiated_by=initiated_by,
        )
        await self.db.flush()

        log_business_event(
            "wallet_credited",
            {"wallet_id": str(wallet.id), "amount_cents": amount_cents, "credits": credits, "reason": reason.value},
            str(initiated_by) if initiated_by else None
        )
        return wallet, entry

    async def debit(
        self,
        org_id: UUID,
        wallet_id: UUID,
        amount_cents: int,
        reference_type: LedgerReferenceType = LedgerReferenceType.ORDER,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        initiated_by: Optional[UUID] = None,
    ) -> WalletMutation:
        """
        Take cents out of the available balance.

        Raises:
            InsufficientFundsError: When ``amount_cents`` exceeds balance minus reservations
        """
        if amount_cents <= 0:
            raise ValidationError("Debit amount must be positive", details={"amount_cents": amount_cents})

        wallet = await self._lock(org_id, wallet_id)
        if amount_cents > wallet.available_cents:
            raise InsufficientFundsError(wallet.id, amount_cents, wallet.available_cents)

        wallet.balance_cents -= amount_cents
        entry = self._append(
            wallet,
            LedgerEntryType.DEBIT,
            amount_cents=-amount_cents,
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
            initiated_by=initiated_by,
        )
        await self.db.flush()

        log_business_event(
            "wallet_debited",
            {"wallet_id": str(wallet.id), "amount_cents": amount_cents, "reference_id": reference_id},
            str(initiated_by) if initiated_by else None
        )
        return wallet, entry

    async def use_credits(
        self,
        org_id: UUID,
        wallet_id: UUID,
        credits: int,
        reference_type: LedgerReferenceType = LedgerReferenceType.REGISTRATION,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        initiated_by: Optional[UUID] = None,
    ) -> WalletMutation:
        """
        Consume class credits. Credits past their expiry are not usable.

        Raises:
            InsufficientCreditsError: When fewer usable credits remain than requested
        """
        if credits <= 0:
            raise ValidationError("Credits to use must be positive", details={"credits": credits})

        wallet = await self._lock(org_id, wallet_id)
        usable = self._usable_credits(wallet)
        if credits > usable:
            raise InsufficientCreditsError(wallet.id, credits, usable)

        wallet.used_credits += credits
        entry = self._append(
            wallet,
            LedgerEntryType.DEBIT,
            credits_delta=-credits,
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
            initiated_by=initiated_by,
        )
        await self.db.flush()

        log_business_event(
            "wallet_credits_used",
            {"wallet_id": str(wallet.id), "credits": credits, "reference_id": reference_id},
            str(initiated_by) if initiated_by else None
        )
        return wallet, entry

    async def reserve(
        self,
        org_id: UUID,
        wallet_id: UUID,
        amount_cents: int,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        initiated_by: Optional[UUID] = None,
    ) -> WalletMutation:
        """Hold cents for a pending purchase. The balance itself is unchanged."""
        if amount_cents <= 0:
            raise ValidationError("Reserve amount must be positive", details={"amount_cents": amount_cents})

        wallet = await self._lock(org_id, wallet_id)
        if amount_cents > wallet.available_cents:
            raise InsufficientFundsError(wallet.id, amount_cents, wallet.available_cents)

        wallet.reserved_cents += amount_cents
        entry = self._append(
            wallet,
            LedgerEntryType.RESERVE,
            reserved_delta_cents=amount_cents,
            reference_type=LedgerReferenceType.ORDER,
            reference_id=reference_id,
            description=description,
            initiated_by=initiated_by,
        )
        await self.db.flush()
        return wallet, entry

    async def release(
        self,
        org_id: UUID,
        wallet_id: UUID,
        amount_cents: int,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        initiated_by: Optional[UUID] = None,
    ) -> WalletMutation:
        """Give reserved cents back to the available balance."""
        wallet = await self._lock(org_id, wallet_id)
        self._check_reserved(wallet, amount_cents)

        wallet.reserved_cents -= amount_cents
        entry = self._append(
            wallet,
            LedgerEntryType.RELEASE,
            reserved_delta_cents=-amount_cents,
            reference_type=LedgerReferenceType.ORDER,
            reference_id=reference_id,
            description=description,
            initiated_by=initiated_by,
        )
        await self.db.flush()
        return wallet, entry

    async def capture_reservation(
        self,
        org_id: UUID,
        wallet_id: UUID,
        amount_cents: int,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        initiated_by: Optional[UUID] = None,
    ) -> WalletMutation:
        """Debit cents that were previously reserved."""
        wallet = await self._lock(org_id, wallet_id)
        self._check_reserved(wallet, amount_cents)

        wallet.reserved_cents -= amount_cents
        wallet.balance_cents -= amount_cents
        entry = self._append(
            wallet,
            LedgerEntryType.DEBIT,
            amount_cents=-amount_cents,
            reserved_delta_cents=-amount_cents,
            reference_type=LedgerReferenceType.ORDER,
            reference_id=reference_id,
            description=description,
            initiated_by=initiated_by,
        )
        await self.db.flush()

        log_business_event(
            "wallet_debited",
            {"wallet_id": str(wallet.id), "amount_cents": amount_cents, "reference_id": reference_id, "reserved": True},
            str(initiated_by) if initiated_by else None
        )
        return wallet, entry

    async def refund_to_wallet(
        self,
        org_id: UUID,
        wallet_id: UUID,
        amount_cents: int = 0,
        credits: int = 0,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        initiated_by: Optional[UUID] = None,
    ) -> WalletMutation:
        """Return money or credits, e.g. after a cancelled class."""
        if amount_cents < 0 or credits < 0 or (amount_cents == 0 and credits == 0):
            raise ValidationError("Refund must return cents or credits")

        wallet = await self._lock(org_id, wallet_id)
        if credits:
            self._write_off_expired_credits(wallet, utcnow())
        wallet.balance_cents += amount_cents
        # Returned credits undo earlier usage first
        restored = min(credits, wallet.used_credits)
        wallet.used_credits -= restored
        wallet.total_credits += credits - restored

        entry = self._append(
            wallet,
            LedgerEntryType.CREDIT,
            amount_cents=amount_cents,
            credits_delta=credits,
            reference_type=LedgerReferenceType.REFUND,
            reference_id=reference_id,
            description=description,
            initiated_by=initiated_by,
        )
        await self.db.flush()

        log_business_event(
            "wallet_refunded",
            {"wallet_id": str(wallet.id), "amount_cents": amount_cents, "credits": credits, "reference_id": reference_id},
            str(initiated_by) if initiated_by else None
        )
        return wallet, entry

    async def transfer(
        self,
        org_id: UUID,
        source_id: UUID,
        target_id: UUID,
        amount_cents: int,
        description: Optional[str] = None,
        initiated_by: Optional[UUID] = None,
    ) -> Tuple[CustomerWallet, CustomerWallet]:
        """
        Move cents between two wallets of the same organization.

        Both rows are locked in id order so two opposite transfers cannot deadlock.
        """
        if source_id == target_id:
            raise ValidationError("Cannot transfer to the same wallet")
        if amount_cents <= 0:
            raise ValidationError("Transfer amount must be positive", details={"amount_cents": amount_cents})

        locked = {}
        for wallet_id in sorted((source_id, target_id), key=str):
            locked[wallet_id] = await self._lock(org_id, wallet_id)
        source, target = locked[source_id], locked[target_id]

        if source.currency != target.currency:
            raise ValidationError(
                "Wallets use different currencies",
                details={"source": source.currency, "target": target.currency}
            )
        if amount_cents > source.available_cents:
            raise InsufficientFundsError(source.id, amount_cents, source.available_cents)

        source.balance_cents -= amount_cents
        target.balance_cents += amount_cents
        self._append(
            source,
            LedgerEntryType.TRANSFER_OUT,
            amount_cents=-amount_cents,
            reference_type=LedgerReferenceType.TRANSFER,
            reference_id=str(target.id),
            description=description,
            initiated_by=initiated_by,
        )
        self._append(
            target,
            LedgerEntryType.TRANSFER_IN,
            amount_cents=amount_cents,
            reference_type=LedgerReferenceType.TRANSFER,
            reference_id=str(source.id),
            description=description,
            initiated_by=initiated_by,
        )
        await self.db.flush()

        log_business_event(
            "wallet_transfer",
            {"source": str(source.id), "target": str(target.id), "amount_cents": amount_cents},
            str(initiated_by) if initiated_by else None
        )
        return source, target

    async def expire_credits(self, now: Optional[datetime] = None) -> int:
        """
        Zero the remaining credits of every wallet whose credits have expired.

        Returns:
            Number of wallets touched
        """
        now = now or utcnow()
        result = await self.db.execute(
            select(CustomerWallet.id, CustomerWallet.org_id).where(
                CustomerWallet.credits_expiry.is_not(None),
                CustomerWallet.credits_expiry <= now,
                CustomerWallet.total_credits > CustomerWallet.used_credits,
            )
        )

        expired_wallets = 0
        for wallet_id, org_id in result.all():
            wallet = await self._lock(org_id, wallet_id, require_active=False)
            if self._write_off_expired_credits(wallet, now):
                expired_wallets += 1

        await self.db.flush()
        if expired_wallets:
            logger.info(f"Expired credits in {expired_wallets} wallets")
        return expired_wallets

    async def set_status(
        self,
        org_id: UUID,
        wallet_id: UUID,
        status: WalletStatus,
        initiated_by: Optional[UUID] = None,
    ) -> WalletMutation:
        """
        Freeze, reactivate or close a wallet. The change is recorded as a zero-value
        adjustment entry.

        Raises:
            ValidationError: Closing a wallet that still holds money
            WalletNotActiveError: Changing a closed wallet
        """
        wallet = await self._lock(org_id, wallet_id, require_active=False)

        if wallet.status == WalletStatus.CLOSED:
            raise WalletNotActiveError(wallet.id, wallet.status.value)
        if status == WalletStatus.CLOSED and (wallet.balance_cents or wallet.reserved_cents):
            raise ValidationError(
                "Only empty wallets can be closed",
                details={"balance_cents": wallet.balance_cents, "reserved_cents": wallet.reserved_cents}
            )

        previous = wallet.status
        wallet.status = status
        entry = self._append(
            wallet,
            LedgerEntryType.ADJUSTMENT,
            reference_type=LedgerReferenceType.ADJUSTMENT,
            description=f"status {previous.value} -> {status.value}",
            initiated_by=initiated_by,
        )
        await self.db.flush()
        logger.info(f"Wallet {wallet.id} status {previous.value} -> {status.value}")
        return wallet, entry

    async def get_history(self, org_id: UUID, wallet_id: UUID, limit: int = 50) -> List[WalletLedgerEntry]:
        """Ledger entries, newest first."""
        await self.get_wallet(org_id, wallet_id)
        result = await self.db.execute(
            select(WalletLedgerEntry)
            .where(WalletLedgerEntry.wallet_id == wallet_id)
            .order_by(WalletLedgerEntry.created_at.desc(), WalletLedgerEntry.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # Packages

    async def create_package(self, org_id: UUID, data: PackageCreate) -> WalletPackage:
        if data.credits == 0 and data.bonus_cents == 0:
            raise ValidationError("A package must grant credits or bonus value")

        package = WalletPackage(org_id=org_id, **data.model_dump())
        self.db.add(package)
        await self.db.flush()
        return package

    async def get_package(self, org_id: UUID, package_id: UUID) -> WalletPackage:
        package = await self.db.get(WalletPackage, package_id)
        if package is None or package.org_id != org_id:
            raise ResourceNotFoundError("package", package_id)
        return package

    async def list_packages(self, org_id: UUID, include_archived: bool = False) -> List[WalletPackage]:
        query = select(WalletPackage).where(WalletPackage.org_id == org_id)
        if not include_archived:
            query = query.where(WalletPackage.status == PackageStatus.ACTIVE)
        result = await self.db.execute(query.order_by(WalletPackage.price_cents))
        return list(result.scalars().all())

    async def purchase_package(
        self,
        org: Organization,
        customer_id: UUID,
        package_id: UUID,
        payment_method,
        gift_card_code: Optional[str] = None,
        initiated_by: Optional[UUID] = None,
    ):
        """
        Sell a package: order with one ``pass`` line, captured payment, then the
        credits (and bonus cents) land in the customer's wallet.

        Returns:
            Tuple of (order, payment or None for free packages, wallet)
        """
        from ..models.order import OrderChannel, OrderItemType
        from ..schemas.order import OrderCreate, OrderItemCreate
        from .order_service import OrderService
        from .payment_service import PaymentService, IMMEDIATE_METHODS

        package = await self.get_package(org.id, package_id)
        if package.status != PackageStatus.ACTIVE:
            raise ValidationError(f"Package {package.name} is no longer sold")
        if package.price_cents > 0 and payment_method not in IMMEDIATE_METHODS:
            raise ValidationError(
                "Packages must be paid with a method that settles immediately",
                details={"allowed": sorted(m.value for m in IMMEDIATE_METHODS)}
            )

        order = await OrderService(self.db).create_order(
            org,
            OrderCreate(
                customer_id=customer_id,
                channel=OrderChannel.ADMIN,
                items=[OrderItemCreate(
                    item_type=OrderItemType.PASS,
                    name=package.name,
                    sku=f"PKG-{str(package.id)[:8]}",
                    unit_price_cents=package.price_cents,
                )],
                metadata={"package_id": str(package.id)},
            ),
        )

        payment = None
        if order.total_cents > 0:
            payment, _ = await PaymentService(self.db).process_payment(
                org,
                order.id,
                payment_method,
                order.total_cents,
                gift_card_code=gift_card_code,
                initiated_by=initiated_by,
            )

        wallet = await self.get_or_create_wallet(org.id, customer_id)
        expiry = utcnow() + timedelta(days=package.validity_days) if package.validity_days else None
        wallet, _ = await self.add_funds(
            org.id,
            wallet.id,
            amount_cents=package.bonus_cents,
            credits=package.credits,
            reason=LedgerReferenceType.PURCHASE,
            reference_id=str(order.id),
            description=f"Package {package.name}",
            initiated_by=initiated_by,
            credits_expiry=expiry,
        )
        return order, payment, wallet

    # Internals

    async def _lock(self, org_id: UUID, wallet_id: UUID, require_active: bool = True) -> CustomerWallet:
        result = await self.db.execute(
            select(CustomerWallet)
            .where(CustomerWallet.id == wallet_id, CustomerWallet.org_id == org_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        wallet = result.scalar_one_or_none()
        if wallet is None:
            raise ResourceNotFoundError("wallet", wallet_id)
        if require_active and wallet.status != WalletStatus.ACTIVE:
            raise WalletNotActiveError(wallet.id, wallet.status.value)
        return wallet

    def _append(
        self,
        wallet: CustomerWallet,
        entry_type: LedgerEntryType,
        amount_cents: int = 0,
        credits_delta: int = 0,
        reserved_delta_cents: int = 0,
        reference_type: Optional[LedgerReferenceType] = None,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        initiated_by: Optional[UUID] = None,
    ) -> WalletLedgerEntry:
        entry = WalletLedgerEntry(
            org_id=wallet.org_id,
            wallet_id=wallet.id,
            entry_type=entry_type,
            amount_cents=amount_cents,
            credits_delta=credits_delta,
            reserved_delta_cents=reserved_delta_cents,
            balance_after_cents=wallet.balance_cents,
            reserved_after_cents=wallet.reserved_cents,
            credits_after=wallet.available_credits,
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
            initiated_by=initiated_by,
        )
        self.db.add(entry)
        return entry

    def _write_off_expired_credits(self, wallet: CustomerWallet, now: datetime) -> int:
        """Zero credits past their expiry and clear the expiry; returns the credits written off."""
        expiry = as_utc(wallet.credits_expiry)
        if expiry is None or expiry > now:
            return 0

        wallet.credits_expiry = None
        remaining = wallet.available_credits
        if remaining <= 0:
            return 0

        wallet.total_credits = wallet.used_credits
        self._append(
            wallet,
            LedgerEntryType.EXPIRY,
            credits_delta=-remaining,
            reference_type=LedgerReferenceType.EXPIRY,
            description=f"{remaining} credits expired",
        )
        return remaining

    def _usable_credits(self, wallet: CustomerWallet) -> int:
        expiry = as_utc(wallet.credits_expiry)
        if expiry is not None and expiry <= utcnow():
            return 0
        return wallet.available_credits

    def _check_reserved(self, wallet: CustomerWallet, amount_cents: int) -> None:
        if amount_cents <= 0 or amount_cents > wallet.reserved_cents:
            raise ValidationError(
                "Amount exceeds reserved funds",
                details={"amount_cents": amount_cents, "reserved_cents": wallet.reserved_cents}
            )
