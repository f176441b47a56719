"""Tests for booking, cancellation and the waitlist."""

import pytest

from yogaswiss.models.registration import (
    RegistrationPaymentMethod,
    RegistrationPaymentStatus,
    RegistrationStatus,
)
from yogaswiss.schemas.classes import OccurrenceUpdate
from yogaswiss.schemas.customer import CustomerCreate
from yogaswiss.services.class_service import ClassService
from yogaswiss.services.customer_service import CustomerService
from yogaswiss.services.registration_service import RegistrationService
from yogaswiss.services.wallet_service import WalletService
from yogaswiss.utils.exceptions import (
    AlreadyRegisteredError,
    CancellationWindowError,
    ClassFullError,
    ClassNotBookableError,
    InsufficientCreditsError,
    InvalidStateError,
)

CASH = RegistrationPaymentMethod.CASH


async def give_credits(db, org, customer, credits):
    wallets = WalletService(db)
    wallet = await wallets.get_or_create_wallet(org.id, customer.id)
    wallet, _ = await wallets.add_funds(org.id, wallet.id, credits=credits)
    return wallet


async def more_customers(db, org, count):
    service = CustomerService(db)
    return [
        await service.create_customer(
            org.id, CustomerCreate(first_name=f"Guest{i}", last_name="Test", email=f"guest{i}@kunde.ch")
        )
        for i in range(count)
    ]


async def test_booking_with_credits(db, org, schedule, customer):
    wallet = await give_credits(db, org, customer, 3)
    occurrence = await schedule()

    registration = await RegistrationService(db).book(org.id, occurrence.id, customer.id)

    assert registration.status == RegistrationStatus.CONFIRMED
    assert registration.payment_status == RegistrationPaymentStatus.PAID
    assert registration.credits_used == 1
    assert registration.wallet_entry_id is not None
    assert registration.waitlist_position is None
    assert occurrence.booked_count == 1
    assert (await WalletService(db).get_wallet(org.id, wallet.id)).available_credits == 2


async def test_booking_from_wallet_balance(db, org, schedule, customer):
    wallets = WalletService(db)
    wallet = await wallets.get_or_create_wallet(org.id, customer.id)
    await wallets.add_funds(org.id, wallet.id, amount_cents=3000)
    occurrence = await schedule()
    service = RegistrationService(db)

    registration = await service.book(
        org.id, occurrence.id, customer.id, payment_method=RegistrationPaymentMethod.WALLET
    )
    assert registration.amount_paid_cents == 2500
    assert (await wallets.get_wallet(org.id, wallet.id)).balance_cents == 500

    await service.cancel(org.id, registration.id, reason="cannot make it")
    assert registration.payment_status == RegistrationPaymentStatus.REFUNDED
    assert (await wallets.get_wallet(org.id, wallet.id)).balance_cents == 3000


async def test_free_class_is_waived(db, org, schedule, customer):
    occurrence = await schedule(price_cents=0)

    registration = await RegistrationService(db).book(org.id, occurrence.id, customer.id, payment_method=CASH)

    assert registration.payment_status == RegistrationPaymentStatus.WAIVED


async def test_pay_at_desk_leaves_payment_pending(db, org, schedule, customer):
    occurrence = await schedule()

    registration = await RegistrationService(db).book(org.id, occurrence.id, customer.id, payment_method=CASH)

    assert registration.status == RegistrationStatus.CONFIRMED
    assert registration.payment_status == RegistrationPaymentStatus.PENDING


async def test_insufficient_credits(db, org, schedule, customer):
    occurrence = await schedule()

    with pytest.raises(InsufficientCreditsError):
        await RegistrationService(db).book(org.id, occurrence.id, customer.id)


async def test_past_class_cannot_be_booked(db, org, schedule, customer):
    occurrence = await schedule(days_ahead=-1)

    with pytest.raises(ClassNotBookableError):
        await RegistrationService(db).book(org.id, occurrence.id, customer.id, payment_method=CASH)


async def test_double_booking_is_rejected(db, org, schedule, customer):
    occurrence = await schedule()
    service = RegistrationService(db)
    await service.book(org.id, occurrence.id, customer.id, payment_method=CASH)

    with pytest.raises(AlreadyRegisteredError):
        await service.book(org.id, occurrence.id, customer.id, payment_method=CASH)


async def test_idempotency_key_replays_the_first_booking(db, org, schedule, customer):
    occurrence = await schedule()
    service = RegistrationService(db)

    first = await service.book(org.id, occurrence.id, customer.id, payment_method=CASH, idempotency_key="k-1")
    second = await service.book(org.id, occurrence.id, customer.id, payment_method=CASH, idempotency_key="k-1")

    assert second.id == first.id
    assert occurrence.booked_count == 1


async def test_full_class_fills_the_waitlist_in_order(db, org, schedule):
    occurrence = await schedule(capacity=1)
    first, second, third = await more_customers(db, org, 3)
    service = RegistrationService(db)

    await service.book(org.id, occurrence.id, first.id, payment_method=CASH)
    waiting = [
        await service.book(org.id, occurrence.id, person.id, payment_method=CASH)
        for person in (second, third)
    ]

    assert [r.status for r in waiting] == [RegistrationStatus.WAITLISTED] * 2
    assert [r.waitlist_position for r in waiting] == [1, 2]
    assert (occurrence.booked_count, occurrence.waitlist_count) == (1, 2)
    assert [r.id for r in await service.get_waitlist(org.id, occurrence.id)] == [r.id for r in waiting]


async def test_cancellation_promotes_the_head_of_the_waitlist(db, org, schedule):
    occurrence = await schedule(capacity=1)
    first, second, third = await more_customers(db, org, 3)
    await give_credits(db, org, first, 1)
    service = RegistrationService(db)
    booked = await service.book(org.id, occurrence.id, first.id)
    promoted = await service.book(org.id, occurrence.id, second.id)
    behind = await service.book(org.id, occurrence.id, third.id)

    await service.cancel(org.id, booked.id, reason="sick")

    assert booked.status == RegistrationStatus.CANCELLED
    assert booked.payment_status == RegistrationPaymentStatus.REFUNDED
    assert promoted.status == RegistrationStatus.CONFIRMED
    assert promoted.waitlist_position is None
    # no credits in the wallet: the seat is kept and the payment stays open
    assert promoted.payment_status == RegistrationPaymentStatus.PENDING
    assert behind.waitlist_position == 1
    assert (occurrence.booked_count, occurrence.waitlist_count) == (1, 1)


async def test_leaving_the_waitlist_closes_the_gap(db, org, schedule):
    occurrence = await schedule(capacity=1)
    first, second, third = await more_customers(db, org, 3)
    service = RegistrationService(db)
    await service.book(org.id, occurrence.id, first.id, payment_method=CASH)
    leaving = await service.book(org.id, occurrence.id, second.id, payment_method=CASH)
    staying = await service.book(org.id, occurrence.id, third.id, payment_method=CASH)

    await service.cancel(org.id, leaving.id)

    assert leaving.status == RegistrationStatus.CANCELLED
    assert staying.waitlist_position == 1
    assert (occurrence.booked_count, occurrence.waitlist_count) == (1, 1)


async def test_customers_cannot_cancel_inside_the_window(db, org, schedule, customer):
    # about an hour ahead, inside the two hour window
    occurrence = await schedule(days_ahead=0.04)
    service = RegistrationService(db)
    registration = await service.book(org.id, occurrence.id, customer.id, payment_method=CASH)

    with pytest.raises(CancellationWindowError) as exc_info:
        await service.cancel(org.id, registration.id)
    assert exc_info.value.details["window_hours"] == 2

    registration = await service.cancel(org.id, registration.id, by_staff=True)
    assert registration.status == RegistrationStatus.CANCELLED


async def test_cancelled_registration_cannot_be_cancelled_again(db, org, schedule, customer):
    occurrence = await schedule()
    service = RegistrationService(db)
    registration = await service.book(org.id, occurrence.id, customer.id, payment_method=CASH)
    await service.cancel(org.id, registration.id)

    with pytest.raises(InvalidStateError):
        await service.cancel(org.id, registration.id)


async def test_manual_promotion_needs_a_free_seat(db, org, schedule):
    occurrence = await schedule(capacity=1)
    first, second = await more_customers(db, org, 2)
    service = RegistrationService(db)
    await service.book(org.id, occurrence.id, first.id, payment_method=CASH)
    waiting = await service.book(org.id, occurrence.id, second.id, payment_method=CASH)

    with pytest.raises(ClassFullError):
        await service.promote(org.id, waiting.id)

    await ClassService(db).update_occurrence(org.id, occurrence.id, OccurrenceUpdate(capacity=2))
    promoted = await service.promote(org.id, waiting.id)

    assert promoted.status == RegistrationStatus.CONFIRMED
    assert (occurrence.booked_count, occurrence.waitlist_count) == (2, 0)


async def test_waitlist_tick_fills_new_seats(db, org, schedule):
    occurrence = await schedule(capacity=1)
    people = await more_customers(db, org, 4)
    service = RegistrationService(db)
    for person in people:
        await service.book(org.id, occurrence.id, person.id, payment_method=CASH)
    await ClassService(db).update_occurrence(org.id, occurrence.id, OccurrenceUpdate(capacity=3))

    promoted = await service.promote_waitlists_tick()

    assert promoted == 2
    assert (occurrence.booked_count, occurrence.waitlist_count) == (3, 1)
    waitlist = await service.get_waitlist(org.id, occurrence.id)
    assert [r.waitlist_position for r in waitlist] == [1]
    assert await service.promote_waitlists_tick() == 0


async def test_check_in_and_no_show(db, org, schedule, customer, other_customer):
    occurrence = await schedule()
    service = RegistrationService(db)
    attending = await service.book(org.id, occurrence.id, customer.id, payment_method=CASH)
    missing = await service.book(org.id, occurrence.id, other_customer.id, payment_method=CASH)

    attending = await service.check_in(org.id, attending.id)
    missing = await service.mark_no_show(org.id, missing.id)

    assert attending.status == RegistrationStatus.ATTENDED
    assert attending.check_in_time is not None
    assert missing.status == RegistrationStatus.NO_SHOW
    with pytest.raises(InvalidStateError):
        await service.check_in(org.id, missing.id)


async def test_list_registrations(db, org, schedule, customer, other_customer):
    occurrence = await schedule()
    service = RegistrationService(db)
    await service.book(org.id, occurrence.id, customer.id, payment_method=CASH)
    await service.book(org.id, occurrence.id, other_customer.id, payment_method=CASH)

    everyone, total = await service.list_registrations(org.id, occurrence_id=occurrence.id)
    mine, mine_total = await service.list_registrations(org.id, customer_id=customer.id)
    by_day, _ = await service.list_registrations(
        org.id, date_from=occurrence.start_time.date(), date_to=occurrence.start_time.date()
    )

    assert total == 2 and len(everyone) == 2
    assert mine_total == 1 and mine[0].customer_id == customer.id
    assert len(by_day) == 2
