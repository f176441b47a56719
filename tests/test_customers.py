"""Tests for customers and locations."""

import pytest

from yogaswiss.schemas.customer import CustomerCreate, CustomerUpdate, LocationCreate, LocationUpdate
from yogaswiss.schemas.organization import OrganizationCreate
from yogaswiss.services.class_service import ClassService
from yogaswiss.services.customer_service import CustomerService
from yogaswiss.services.location_service import LocationService
from yogaswiss.services.organization_service import OrganizationService
from yogaswiss.utils.exceptions import ResourceInUseError, ResourceNotFoundError, ValidationError


class TestCustomers:

    async def test_email_is_unique_within_an_org(self, db, org, customer):
        with pytest.raises(ValidationError) as exc_info:
            await CustomerService(db).create_customer(
                org.id, CustomerCreate(first_name="Lena", last_name="Meier", email="LENA@kunde.ch")
            )

        assert exc_info.value.details["field_errors"] == {"email": ["already exists"]}

    async def test_same_email_in_another_org(self, db, org, owner, customer):
        other, _ = await OrganizationService(db).create_organization(
            owner, OrganizationCreate(slug="flow-bern", name="Flow Bern")
        )

        twin = await CustomerService(db).create_customer(
            other.id, CustomerCreate(first_name="Lena", last_name="Keller", email="lena@kunde.ch")
        )

        assert twin.org_id == other.id
        assert twin.id != customer.id

    async def test_update_cannot_take_anothers_email(self, db, org, customer, other_customer):
        service = CustomerService(db)

        with pytest.raises(ValidationError):
            await service.update_customer(org.id, other_customer.id, CustomerUpdate(email="lena@kunde.ch"))

        updated = await service.update_customer(
            org.id, customer.id, CustomerUpdate(email="Lena@Kunde.ch", phone="+41 79 123 45 67")
        )
        assert updated.email == "lena@kunde.ch"
        assert updated.phone == "+41 79 123 45 67"

    async def test_customer_of_another_org_is_not_found(self, db, org, owner, customer):
        other, _ = await OrganizationService(db).create_organization(
            owner, OrganizationCreate(slug="flow-bern", name="Flow Bern")
        )

        with pytest.raises(ResourceNotFoundError):
            await CustomerService(db).get_customer(other.id, customer.id)

    async def test_search_matches_names_and_email(self, db, org, customer, other_customer):
        service = CustomerService(db)

        by_name, total = await service.list_customers(org.id, search="ROSS")
        assert total == 1
        assert by_name[0].id == other_customer.id

        by_email, _ = await service.list_customers(org.id, search="lena@")
        assert [c.id for c in by_email] == [customer.id]

    async def test_pages_are_ordered_by_last_name(self, db, org, customer, other_customer):
        service = CustomerService(db)
        await service.create_customer(
            org.id, CustomerCreate(first_name="Nina", last_name="Ammann", email="nina@kunde.ch")
        )

        first_page, total = await service.list_customers(org.id, limit=2)
        second_page, _ = await service.list_customers(org.id, limit=2, offset=2)

        assert total == 3
        assert [c.last_name for c in first_page] == ["Ammann", "Keller"]
        assert [c.last_name for c in second_page] == ["Rossi"]

    async def test_deactivated_customers_are_hidden_by_default(self, db, org, customer, other_customer):
        service = CustomerService(db)
        await service.deactivate_customer(org.id, other_customer.id)

        active, total = await service.list_customers(org.id)
        everyone, _ = await service.list_customers(org.id, include_inactive=True)

        assert total == 1
        assert [c.id for c in active] == [customer.id]
        assert len(everyone) == 2


class TestLocations:

    async def test_location_with_upcoming_classes_cannot_be_deleted(self, db, org, schedule):
        service = LocationService(db)
        location = await service.create_location(org.id, LocationCreate(name="Studio Seefeld", capacity=20))
        occurrence = await schedule(location_id=location.id)

        with pytest.raises(ResourceInUseError):
            await service.delete_location(org.id, location.id)

        await ClassService(db).cancel_occurrence(org.id, occurrence.id, reason="studio renovation")
        await service.delete_location(org.id, location.id)

        with pytest.raises(ResourceNotFoundError):
            await service.get_location(org.id, location.id)

    async def test_inactive_locations_are_listed_on_request(self, db, org):
        service = LocationService(db)
        seefeld = await service.create_location(org.id, LocationCreate(name="Studio Seefeld"))
        await service.create_location(org.id, LocationCreate(name="Lakeside Park"))
        await service.update_location(org.id, seefeld.id, LocationUpdate(is_active=False))

        active = await service.list_locations(org.id)
        every = await service.list_locations(org.id, include_inactive=True)

        assert [location.name for location in active] == ["Lakeside Park"]
        assert [location.name for location in every] == ["Lakeside Park", "Studio Seefeld"]
