"""Tests for instructor earnings."""

from datetime import timedelta

import pytest

from yogaswiss.models.earnings import EarningsStatus
from yogaswiss.models.organization import OrgRole
from yogaswiss.models.registration import RegistrationPaymentMethod
from yogaswiss.models.user import User
from yogaswiss.schemas.customer import CustomerCreate
from yogaswiss.schemas.organization import MemberCreate
from yogaswiss.services.class_service import ClassService
from yogaswiss.services.customer_service import CustomerService
from yogaswiss.services.earnings_service import EarningsService
from yogaswiss.services.organization_service import OrganizationService
from yogaswiss.services.registration_service import RegistrationService
from yogaswiss.utils.clock import utcnow
from yogaswiss.utils.exceptions import InvalidStateError, UserNotFoundError, ValidationError

CASH = RegistrationPaymentMethod.CASH


@pytest.fixture
async def instructor(db, org):
    user = User(email="sara@studio-zen.ch", first_name="Sara", last_name="Brunner", password_hash="not-used")
    db.add(user)
    await db.flush()
    await OrganizationService(db).add_member(
        org,
        MemberCreate(
            email="sara@studio-zen.ch",
            role=OrgRole.INSTRUCTOR,
            rate_per_class_cents=5000,
            rate_per_student_cents=300,
        ),
    )
    return user


def period():
    today = utcnow().date()
    return today, today + timedelta(days=10)


async def test_base_and_per_student_pay(db, org, schedule, instructor, customer, other_customer):
    registrations = RegistrationService(db)
    first = await schedule(days_ahead=2, instructor_id=instructor.id)
    second = await schedule(days_ahead=3, instructor_id=instructor.id)
    cancelled = await schedule(days_ahead=4, instructor_id=instructor.id)
    await schedule(days_ahead=4)
    await registrations.book(org.id, first.id, customer.id, payment_method=CASH)
    await registrations.book(org.id, first.id, other_customer.id, payment_method=CASH)
    leaving = await registrations.book(org.id, second.id, customer.id, payment_method=CASH)
    await registrations.book(org.id, second.id, other_customer.id, payment_method=CASH)
    await registrations.cancel(org.id, leaving.id)
    await ClassService(db).cancel_occurrence(org.id, cancelled.id, "instructor ill")

    start, end = period()
    record = await EarningsService(db).calculate(
        org.id, instructor.id, start, end, adjustments_cents=500, deductions_cents=200
    )

    assert record.total_classes == 2
    assert record.total_students == 3
    assert record.base_earnings_cents == 10000
    assert record.bonus_earnings_cents == 900
    assert record.gross_earnings_cents == 11200
    assert [row["students"] for row in record.breakdown] == [2, 1]
    assert [row["amount_cents"] for row in record.breakdown] == [5600, 5300]
    assert record.payment_status == EarningsStatus.PENDING


async def test_recalculation_updates_the_pending_record(db, org, schedule, instructor):
    service = EarningsService(db)
    start, end = period()
    first = await service.calculate(org.id, instructor.id, start, end)
    await schedule(days_ahead=1, instructor_id=instructor.id)

    second = await service.calculate(org.id, instructor.id, start, end)

    assert second.id == first.id
    assert second.total_classes == 1


async def test_approve_then_pay(db, org, owner, instructor):
    service = EarningsService(db)
    start, end = period()
    record = await service.calculate(org.id, instructor.id, start, end)

    with pytest.raises(InvalidStateError):
        await service.mark_paid(org.id, record.id, "bank_transfer")

    record = await service.approve(org.id, record.id, owner.id)
    assert record.approved_by == owner.id

    with pytest.raises(InvalidStateError):
        await service.calculate(org.id, instructor.id, start, end)

    record = await service.mark_paid(org.id, record.id, "bank_transfer", "SALARY-2026-10")
    assert record.payment_status == EarningsStatus.PAID
    assert record.payment_reference == "SALARY-2026-10"

    listed = await service.list_earnings(org.id, instructor_id=instructor.id, status=EarningsStatus.PAID)
    assert [r.id for r in listed] == [record.id]


async def test_non_members_have_no_earnings(db, org):
    outsider = User(email="guest@yogaworld.ch", first_name="Guest", last_name="Teacher", password_hash="not-used")
    db.add(outsider)
    await db.flush()
    start, end = period()

    with pytest.raises(ValidationError):
        await EarningsService(db).calculate(org.id, outsider.id, start, end)


async def test_adding_an_unknown_user_as_member(db, org):
    with pytest.raises(UserNotFoundError):
        await OrganizationService(db).add_member(
            org, MemberCreate(email="nobody@studio-zen.ch", role=OrgRole.INSTRUCTOR)
        )


async def test_checked_in_students_count(db, org, schedule, instructor):
    occurrence = await schedule(days_ahead=2, instructor_id=instructor.id)
    guest = await CustomerService(db).create_customer(
        org.id, CustomerCreate(first_name="Nina", last_name="Frei", email="nina@kunde.ch")
    )
    registrations = RegistrationService(db)
    registration = await registrations.book(org.id, occurrence.id, guest.id, payment_method=CASH)
    await registrations.check_in(org.id, registration.id)

    start, end = period()
    record = await EarningsService(db).calculate(org.id, instructor.id, start, end)

    assert record.total_students == 1
