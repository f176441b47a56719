"""Tests for class templates, occurrences and recurring series."""

import uuid
from datetime import date, datetime, time, timedelta, timezone

import pytest

from yogaswiss.models.class_schedule import OccurrenceStatus
from yogaswiss.models.registration import (
    RegistrationPaymentMethod,
    RegistrationPaymentStatus,
    RegistrationStatus,
)
from yogaswiss.schemas.classes import OccurrenceUpdate, SeriesCreate
from yogaswiss.services.class_service import ClassService
from yogaswiss.services.registration_service import RegistrationService
from yogaswiss.services.wallet_service import WalletService
from yogaswiss.utils.exceptions import InvalidStateError, ResourceNotFoundError, ValidationError


async def test_occurrence_defaults_come_from_the_template(schedule, template):
    occurrence = await schedule()

    assert occurrence.name == "Vinyasa Flow"
    assert occurrence.category == "vinyasa"
    assert occurrence.capacity == 10
    assert occurrence.price_cents == 2500
    assert occurrence.credits_required == 1
    assert occurrence.end_time - occurrence.start_time == timedelta(minutes=60)
    assert occurrence.status == OccurrenceStatus.SCHEDULED
    assert occurrence.available_spots == 10


async def test_occurrence_overrides(schedule):
    occurrence = await schedule(capacity=4, price_cents=0, name="Community Flow")

    assert occurrence.capacity == 4
    assert occurrence.price_cents == 0
    assert occurrence.name == "Community Flow"


async def test_instructor_must_be_an_org_member(schedule):
    with pytest.raises(ValidationError) as exc_info:
        await schedule(instructor_id=uuid.uuid4())

    assert "instructor_id" in exc_info.value.field_errors


async def test_owner_can_teach(schedule, owner):
    occurrence = await schedule(instructor_id=owner.id)

    assert occurrence.instructor_id == owner.id


async def test_unknown_template(db, org):
    with pytest.raises(ResourceNotFoundError):
        await ClassService(db).get_template(org.id, uuid.uuid4())


async def test_capacity_cannot_drop_below_bookings(db, org, schedule, customer, other_customer):
    occurrence = await schedule(capacity=3)
    registrations = RegistrationService(db)
    for person in (customer, other_customer):
        await registrations.book(org.id, occurrence.id, person.id, payment_method=RegistrationPaymentMethod.CASH)

    with pytest.raises(ValidationError):
        await ClassService(db).update_occurrence(org.id, occurrence.id, OccurrenceUpdate(capacity=1))

    occurrence = await ClassService(db).update_occurrence(org.id, occurrence.id, OccurrenceUpdate(capacity=2))
    assert occurrence.is_full


async def test_moving_the_start_keeps_the_duration(db, org, schedule):
    occurrence = await schedule()
    new_start = datetime(2031, 3, 4, 8, 0, tzinfo=timezone.utc)

    occurrence = await ClassService(db).update_occurrence(
        org.id, occurrence.id, OccurrenceUpdate(start_time=new_start)
    )

    assert occurrence.start_time == new_start
    assert occurrence.end_time == new_start + timedelta(minutes=60)


async def test_end_before_start_is_rejected(db, org, schedule):
    occurrence = await schedule()

    with pytest.raises(ValidationError):
        await ClassService(db).update_occurrence(
            org.id, occurrence.id, OccurrenceUpdate(end_time=occurrence.start_time - timedelta(minutes=5))
        )


async def test_cancel_occurrence_returns_credits(db, org, schedule, customer, other_customer):
    wallets = WalletService(db)
    wallet = await wallets.get_or_create_wallet(org.id, customer.id)
    await wallets.add_funds(org.id, wallet.id, credits=2)
    occurrence = await schedule(capacity=1)
    registrations = RegistrationService(db)
    confirmed = await registrations.book(org.id, occurrence.id, customer.id)
    waitlisted = await registrations.book(org.id, occurrence.id, other_customer.id)
    assert (await wallets.get_wallet(org.id, wallet.id)).available_credits == 1

    occurrence = await ClassService(db).cancel_occurrence(org.id, occurrence.id, "Teacher is ill", cancelled_by=None)

    assert occurrence.status == OccurrenceStatus.CANCELLED
    assert occurrence.cancellation_reason == "Teacher is ill"
    assert (occurrence.booked_count, occurrence.waitlist_count) == (0, 0)
    assert confirmed.status == RegistrationStatus.CANCELLED
    assert confirmed.payment_status == RegistrationPaymentStatus.REFUNDED
    assert waitlisted.status == RegistrationStatus.CANCELLED
    assert (await wallets.get_wallet(org.id, wallet.id)).available_credits == 2

    with pytest.raises(InvalidStateError):
        await ClassService(db).cancel_occurrence(org.id, occurrence.id, "again")


async def test_complete_marks_missing_students_as_no_shows(db, org, schedule, customer, other_customer):
    occurrence = await schedule()
    registrations = RegistrationService(db)
    present = await registrations.book(org.id, occurrence.id, customer.id, payment_method=RegistrationPaymentMethod.CASH)
    absent = await registrations.book(
        org.id, occurrence.id, other_customer.id, payment_method=RegistrationPaymentMethod.CASH
    )
    await registrations.check_in(org.id, present.id)

    occurrence = await ClassService(db).complete_occurrence(org.id, occurrence.id)

    assert occurrence.status == OccurrenceStatus.COMPLETED
    assert present.status == RegistrationStatus.ATTENDED
    assert absent.status == RegistrationStatus.NO_SHOW


async def test_list_occurrences_by_date(db, org, schedule):
    soon = await schedule(days_ahead=1)
    await schedule(days_ahead=20)
    day = soon.start_time.date()

    occurrences = await ClassService(db).list_occurrences(org.id, date_from=day, date_to=day)

    assert [o.id for o in occurrences] == [soon.id]


class TestSeries:

    async def test_weekly_generation_uses_studio_local_time(self, db, org, template):
        service = ClassService(db)
        # 2030-01-07 is a Monday; Zurich is UTC+1 in winter
        series = await service.create_series(
            org.id,
            SeriesCreate(
                template_id=template.id,
                weekdays=[2, 0],
                start_time_of_day=time(18, 30),
                start_date=date(2030, 1, 7),
                end_date=date(2030, 1, 20),
            ),
        )

        created = await service.generate_series_occurrences(series, until=date(2030, 1, 31))

        assert series.weekdays == [0, 2]
        assert [o.start_time for o in created] == [
            datetime(2030, 1, 7, 17, 30, tzinfo=timezone.utc),
            datetime(2030, 1, 9, 17, 30, tzinfo=timezone.utc),
            datetime(2030, 1, 14, 17, 30, tzinfo=timezone.utc),
            datetime(2030, 1, 16, 17, 30, tzinfo=timezone.utc),
        ]
        assert all(o.series_id == series.id for o in created)

    async def test_summer_time(self, db, org, template):
        service = ClassService(db)
        series = await service.create_series(
            org.id,
            SeriesCreate(
                template_id=template.id,
                weekdays=[0],
                start_time_of_day=time(18, 30),
                start_date=date(2030, 7, 1),
            ),
        )

        created = await service.generate_series_occurrences(series, until=date(2030, 7, 1))

        assert [o.start_time for o in created] == [datetime(2030, 7, 1, 16, 30, tzinfo=timezone.utc)]

    async def test_generation_only_fills_the_gap(self, db, org, template):
        service = ClassService(db)
        series = await service.create_series(
            org.id,
            SeriesCreate(
                template_id=template.id,
                weekdays=[0, 1, 2, 3, 4, 5, 6],
                start_time_of_day=time(7, 0),
                start_date=date(2030, 3, 1),
                capacity=6,
                price_cents=1800,
            ),
        )

        first = await service.generate_series_occurrences(series, until=date(2030, 3, 3))
        again = await service.generate_series_occurrences(series, until=date(2030, 3, 3))
        more = await service.generate_all_series(until=date(2030, 3, 5))

        assert len(first) == 3
        assert again == []
        assert more == 2
        assert {(o.capacity, o.price_cents) for o in first} == {(6, 1800)}

    async def test_end_date_before_start_is_rejected(self, template):
        with pytest.raises(ValueError):
            SeriesCreate(
                template_id=template.id,
                weekdays=[0],
                start_time_of_day=time(9, 0),
                start_date=date(2030, 3, 10),
                end_date=date(2030, 3, 1),
            )
