"""
Registration service: booking, cancellation and the waitlist.

All seat accounting happens with the occurrence row locked, so
``booked_count`` and ``waitlist_count`` always match the registrations.
"""

import logging
from datetime import date, timedelta
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.class_schedule import ClassOccurrence, OccurrenceStatus
from ..models.customer import Customer
from ..models.organization import Organization
from ..models.registration import (
    ACTIVE_REGISTRATION_STATUSES,
    Registration,
    RegistrationPaymentMethod,
    RegistrationPaymentStatus,
    RegistrationStatus,
)
from ..models.wallet import LedgerReferenceType
from ..utils.clock import as_utc, day_bounds, utcnow
from ..utils.exceptions import (
    AlreadyRegisteredError,
    CancellationWindowError,
    ClassFullError,
    ClassNotBookableError,
    InsufficientCreditsError,
    InsufficientFundsError,
    InvalidStateError,
    ResourceNotFoundError,
    WalletNotActiveError,
)
from ..utils.logging_config import log_business_event
from .class_service import ClassService, is_in_future
from .wallet_service import WalletService

logger = logging.getLogger(__name__)

WALLET_PAID_METHODS = (RegistrationPaymentMethod.CREDITS, RegistrationPaymentMethod.WALLET)


class RegistrationService:
    """Service class for class registrations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.classes = ClassService(db)
        self.wallets = WalletService(db)

    async def book(
        self,
        org_id: UUID,
        occurrence_id: UUID,
        customer_id: UUID,
        payment_method: RegistrationPaymentMethod = RegistrationPaymentMethod.CREDITS,
        idempotency_key: Optional[str] = None,
        notes: Optional[str] = None,
        booked_by: Optional[UUID] = None,
    ) -> Registration:
        """
        Book a customer into a class, or onto its waitlist when it is full.

        Args:
            org_id: Organization the booking belongs to
            occurrence_id: Class to book
            customer_id: Customer being booked
            payment_method: How a confirmed seat is paid
            idempotency_key: Client key; a repeated key returns the first registration

        Returns:
            The confirmed or waitlisted registration

        Raises:
            ClassNotBookableError: Class is not scheduled or already started
            AlreadyRegisteredError: Customer already holds an active registration
            InsufficientCreditsError: Not enough credits (the booking is rolled back)
            InsufficientFundsError: Not enough wallet balance (the booking is rolled back)
        """
        if idempotency_key:
            existing = await self._find_by_idempotency_key(org_id, idempotency_key)
            if existing:
                logger.info(f"Idempotent replay of registration {existing.id}")
                return existing

        customer = await self.db.get(Customer, customer_id)
        if customer is None or customer.org_id != org_id:
            raise ResourceNotFoundError("customer", customer_id)

        occurrence = await self.classes.lock_occurrence(org_id, occurrence_id)
        if occurrence.status != OccurrenceStatus.SCHEDULED:
            raise ClassNotBookableError(occurrence.id, f"class is {occurrence.status.value}")
        if not is_in_future(occurrence):
            raise ClassNotBookableError(occurrence.id, "class has already started")

        if await self._active_registration(occurrence.id, customer_id):
            raise AlreadyRegisteredError(occurrence.id, customer_id)

        registration = Registration(
            org_id=org_id,
            occurrence_id=occurrence.id,
            customer_id=customer_id,
            payment_method=payment_method,
            payment_status=RegistrationPaymentStatus.PENDING,
            credits_used=0,
            amount_paid_cents=0,
            idempotency_key=idempotency_key,
            booked_at=utcnow(),
            notes=notes,
        )

        if occurrence.is_full:
            occurrence.waitlist_count += 1
            registration.status = RegistrationStatus.WAITLISTED
            registration.waitlist_position = occurrence.waitlist_count
            self.db.add(registration)
            await self.db.flush()
        else:
            occurrence.booked_count += 1
            registration.status = RegistrationStatus.CONFIRMED
            self.db.add(registration)
            await self.db.flush()
            await self._collect_payment(registration, occurrence, booked_by)

        await self.db.flush()
        log_business_event(
            "registration_created",
            {
                "registration_id": str(registration.id),
                "occurrence_id": str(occurrence.id),
                "status": registration.status.value,
                "waitlist_position": registration.waitlist_position,
            },
            str(booked_by) if booked_by else None
        )
        return registration

    async def cancel(
        self,
        org_id: UUID,
        registration_id: UUID,
        reason: Optional[str] = None,
        by_staff: bool = False,
        initiated_by: Optional[UUID] = None,
    ) -> Registration:
        """
        Cancel a confirmed or waitlisted registration.

        A confirmed seat frees capacity, is refunded to the wallet when it was
        paid from it, and the first waitlisted customer moves up.

        Raises:
            InvalidStateError: Registration is not active
            CancellationWindowError: Customer cancels inside the window
        """
        registration = await self.get_registration(org_id, registration_id)
        occurrence = await self.classes.lock_occurrence(org_id, registration.occurrence_id)
        await self.db.refresh(registration)
        self._require_status(registration, ACTIVE_REGISTRATION_STATUSES)

        if registration.status == RegistrationStatus.CONFIRMED:
            if not by_staff:
                org = await self.db.get(Organization, org_id)
                cutoff = as_utc(occurrence.start_time) - timedelta(hours=org.cancellation_window_hours)
                if utcnow() > cutoff:
                    raise CancellationWindowError(registration.id, org.cancellation_window_hours)

            self._mark_cancelled(registration, reason)
            occurrence.booked_count -= 1
            await self._refund_payment(registration, initiated_by)
            await self.db.flush()

            if occurrence.status == OccurrenceStatus.SCHEDULED:
                await self._promote_next(occurrence, initiated_by)
        else:
            position = registration.waitlist_position
            self._mark_cancelled(registration, reason)
            await self._close_waitlist_gap(occurrence, position)

        await self.db.flush()
        log_business_event(
            "registration_cancelled",
            {"registration_id": str(registration.id), "by_staff": by_staff, "reason": reason},
            str(initiated_by) if initiated_by else None
        )
        return registration

    async def promote(
        self,
        org_id: UUID,
        registration_id: UUID,
        initiated_by: Optional[UUID] = None
    ) -> Registration:
        """
        Move a specific waitlisted registration into the class.

        Raises:
            InvalidStateError: Registration is not waitlisted
            ClassFullError: No free seat
        """
        registration = await self.get_registration(org_id, registration_id)
        occurrence = await self.classes.lock_occurrence(org_id, registration.occurrence_id)
        await self.db.refresh(registration)
        self._require_status(registration, (RegistrationStatus.WAITLISTED,))

        if occurrence.status != OccurrenceStatus.SCHEDULED:
            raise ClassNotBookableError(occurrence.id, f"class is {occurrence.status.value}")
        if occurrence.is_full:
            raise ClassFullError(occurrence.id, occurrence.capacity)

        await self._confirm_from_waitlist(registration, occurrence, initiated_by)
        await self.db.flush()
        return registration

    async def check_in(self, org_id: UUID, registration_id: UUID) -> Registration:
        registration = await self.get_registration(org_id, registration_id)
        self._require_status(registration, (RegistrationStatus.CONFIRMED,))

        registration.status = RegistrationStatus.ATTENDED
        registration.check_in_time = utcnow()
        await self.db.flush()
        return registration

    async def mark_no_show(self, org_id: UUID, registration_id: UUID) -> Registration:
        registration = await self.get_registration(org_id, registration_id)
        self._require_status(registration, (RegistrationStatus.CONFIRMED,))

        registration.status = RegistrationStatus.NO_SHOW
        await self.db.flush()
        return registration

    async def get_registration(self, org_id: UUID, registration_id: UUID) -> Registration:
        registration = await self.db.get(Registration, registration_id)
        if registration is None or registration.org_id != org_id:
            raise ResourceNotFoundError("registration", registration_id)
        return registration

    async def list_registrations(
        self,
        org_id: UUID,
        status: Optional[RegistrationStatus] = None,
        customer_id: Optional[UUID] = None,
        occurrence_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[Registration], int]:
        """
        List registrations; the date range applies to the class start time.

        Returns:
            Tuple of (page, total matching)
        """
        query = select(Registration).where(Registration.org_id == org_id)
        if status:
            query = query.where(Registration.status == status)
        if customer_id:
            query = query.where(Registration.customer_id == customer_id)
        if occurrence_id:
            query = query.where(Registration.occurrence_id == occurrence_id)
        if date_from or date_to:
            query = query.join(ClassOccurrence, ClassOccurrence.id == Registration.occurrence_id)
            lower, upper = day_bounds(date_from or date.min, date_to or date.max)
            if date_from:
                query = query.where(ClassOccurrence.start_time >= lower)
            if date_to:
                query = query.where(ClassOccurrence.start_time <= upper)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(Registration.booked_at.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all()), total or 0

    async def get_waitlist(self, org_id: UUID, occurrence_id: UUID) -> List[Registration]:
        await self.classes.get_occurrence(org_id, occurrence_id)
        result = await self.db.execute(
            select(Registration)
            .where(
                Registration.occurrence_id == occurrence_id,
                Registration.status == RegistrationStatus.WAITLISTED,
            )
            .order_by(Registration.waitlist_position)
        )
        return list(result.scalars().all())

    async def promote_waitlists_tick(self) -> int:
        """
        Fill free seats from waitlists across all future scheduled classes.

        Returns:
            Number of registrations promoted
        """
        result = await self.db.execute(
            select(ClassOccurrence.id, ClassOccurrence.org_id).where(
                ClassOccurrence.status == OccurrenceStatus.SCHEDULED,
                ClassOccurrence.start_time > utcnow(),
                ClassOccurrence.waitlist_count > 0,
                ClassOccurrence.booked_count < ClassOccurrence.capacity,
            )
        )

        promoted = 0
        for occurrence_id, org_id in result.all():
            occurrence = await self.classes.lock_occurrence(org_id, occurrence_id)
            while not occurrence.is_full and occurrence.waitlist_count > 0:
                if not await self._promote_next(occurrence):
                    break
                promoted += 1

        await self.db.flush()
        if promoted:
            logger.info(f"Waitlist tick promoted {promoted} registrations")
        return promoted

    async def cancel_all_for_occurrence(
        self,
        occurrence: ClassOccurrence,
        reason: str,
        initiated_by: Optional[UUID] = None
    ) -> int:
        """Cancel every active registration of a class that is being cancelled."""
        result = await self.db.execute(
            select(Registration).where(
                Registration.occurrence_id == occurrence.id,
                Registration.status.in_(ACTIVE_REGISTRATION_STATUSES),
            )
        )
        count = 0
        for registration in result.scalars().all():
            was_confirmed = registration.status == RegistrationStatus.CONFIRMED
            self._mark_cancelled(registration, reason)
            if was_confirmed:
                await self._refund_payment(registration, initiated_by)
            count += 1

        await self.db.flush()
        return count

    # Internals

    async def _find_by_idempotency_key(self, org_id: UUID, key: str) -> Optional[Registration]:
        result = await self.db.execute(
            select(Registration).where(Registration.org_id == org_id, Registration.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def _active_registration(self, occurrence_id: UUID, customer_id: UUID) -> Optional[Registration]:
        result = await self.db.execute(
            select(Registration).where(
                Registration.occurrence_id == occurrence_id,
                Registration.customer_id == customer_id,
                Registration.status.in_(ACTIVE_REGISTRATION_STATUSES),
            )
        )
        return result.scalars().first()

    async def _collect_payment(
        self,
        registration: Registration,
        occurrence: ClassOccurrence,
        initiated_by: Optional[UUID]
    ) -> None:
        """Take credits or wallet money for a confirmed seat. Errors propagate."""
        method = registration.payment_method
        reference_id = str(registration.id)

        if method == RegistrationPaymentMethod.CREDITS:
            if occurrence.credits_required == 0:
                registration.payment_status = RegistrationPaymentStatus.WAIVED
                return
            wallet = await self._wallet_for(registration)
            _, entry = await self.wallets.use_credits(
                registration.org_id,
                wallet.id,
                occurrence.credits_required,
                reference_type=LedgerReferenceType.REGISTRATION,
                reference_id=reference_id,
                description=f"Class {occurrence.name}",
                initiated_by=initiated_by,
            )
            registration.credits_used = occurrence.credits_required
        elif method == RegistrationPaymentMethod.WALLET:
            if occurrence.price_cents == 0:
                registration.payment_status = RegistrationPaymentStatus.WAIVED
                return
            wallet = await self._wallet_for(registration)
            _, entry = await self.wallets.debit(
                registration.org_id,
                wallet.id,
                occurrence.price_cents,
                reference_type=LedgerReferenceType.REGISTRATION,
                reference_id=reference_id,
                description=f"Class {occurrence.name}",
                initiated_by=initiated_by,
            )
            registration.amount_paid_cents = occurrence.price_cents
        else:
            if occurrence.price_cents == 0:
                registration.payment_status = RegistrationPaymentStatus.WAIVED
            return

        registration.wallet_entry_id = entry.id
        registration.payment_status = RegistrationPaymentStatus.PAID

    async def _refund_payment(self, registration: Registration, initiated_by: Optional[UUID]) -> None:
        if registration.payment_status != RegistrationPaymentStatus.PAID:
            return
        if registration.payment_method not in WALLET_PAID_METHODS:
            return

        wallet = await self._wallet_for(registration)
        await self.wallets.refund_to_wallet(
            registration.org_id,
            wallet.id,
            amount_cents=registration.amount_paid_cents,
            credits=registration.credits_used,
            reference_id=str(registration.id),
            description="Registration cancelled",
            initiated_by=initiated_by,
        )
        registration.payment_status = RegistrationPaymentStatus.REFUNDED

    async def _wallet_for(self, registration: Registration):
        return await self.wallets.get_or_create_wallet(registration.org_id, registration.customer_id)

    async def _promote_next(self, occurrence: ClassOccurrence, initiated_by: Optional[UUID] = None) -> bool:
        """Confirm the lowest waitlist position, if any. Caller holds the occurrence lock."""
        if occurrence.is_full:
            return False

        result = await self.db.execute(
            select(Registration)
            .where(
                Registration.occurrence_id == occurrence.id,
                Registration.status == RegistrationStatus.WAITLISTED,
            )
            .order_by(Registration.waitlist_position)
            .limit(1)
        )
        registration = result.scalar_one_or_none()
        if registration is None:
            return False

        await self._confirm_from_waitlist(registration, occurrence, initiated_by)
        return True

    async def _confirm_from_waitlist(
        self,
        registration: Registration,
        occurrence: ClassOccurrence,
        initiated_by: Optional[UUID]
    ) -> None:
        position = registration.waitlist_position
        registration.status = RegistrationStatus.CONFIRMED
        registration.waitlist_position = None
        occurrence.booked_count += 1
        await self._close_waitlist_gap(occurrence, position)

        # The seat is kept even when the wallet cannot pay; staff settle it later
        try:
            await self._collect_payment(registration, occurrence, initiated_by)
        except (InsufficientCreditsError, InsufficientFundsError, WalletNotActiveError) as e:
            logger.warning(f"Promoted registration {registration.id} left unpaid: {e.message}")

        await self.db.flush()
        log_business_event(
            "registration_promoted",
            {"registration_id": str(registration.id), "occurrence_id": str(occurrence.id)},
            str(initiated_by) if initiated_by else None
        )

    async def _close_waitlist_gap(self, occurrence: ClassOccurrence, position: Optional[int]) -> None:
        """Shift everyone behind ``position`` up one place."""
        occurrence.waitlist_count = max(0, occurrence.waitlist_count - 1)
        if position is None:
            return

        result = await self.db.execute(
            select(Registration)
            .where(
                Registration.occurrence_id == occurrence.id,
                Registration.status == RegistrationStatus.WAITLISTED,
                Registration.waitlist_position > position,
            )
            .order_by(Registration.waitlist_position)
        )
        for registration in result.scalars().all():
            registration.waitlist_position -= 1

    def _mark_cancelled(self, registration: Registration, reason: Optional[str]) -> None:
        registration.status = RegistrationStatus.CANCELLED
        registration.waitlist_position = None
        registration.cancelled_at = utcnow()
        registration.cancellation_reason = reason

    def _require_status(self, registration: Registration, allowed) -> None:
        if registration.status not in allowed:
            raise InvalidStateError(
                "registration", registration.id, registration.status.value, [s.value for s in allowed]
            )
