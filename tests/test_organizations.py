"""Tests for studios, their members and the cached payment method list."""

import pytest

from conftest import STUDIO_IBAN
from yogaswiss.cache import CacheKeyBuilder
from yogaswiss.models.organization import MemberStatus, OrgRole
from yogaswiss.models.user import User
from yogaswiss.schemas.organization import MemberCreate, MemberUpdate, OrganizationCreate, OrganizationUpdate
from yogaswiss.services.organization_service import OrganizationService
from yogaswiss.services.payment_service import PaymentService
from yogaswiss.utils.exceptions import UserNotFoundError, ValidationError


async def make_user(db, email, first_name="Sara", last_name="Brunner"):
    user = User(email=email, first_name=first_name, last_name=last_name, password_hash="not-used")
    db.add(user)
    await db.flush()
    return user


class TestOrganizations:

    async def test_owner_becomes_the_first_member(self, db, org, owner):
        member = await OrganizationService(db).get_membership(org.id, owner.id)

        assert member.role == OrgRole.OWNER
        assert member.status == MemberStatus.ACTIVE
        assert org.iban == STUDIO_IBAN

    async def test_duplicate_slug_is_rejected(self, db, org, owner):
        with pytest.raises(ValidationError) as exc_info:
            await OrganizationService(db).create_organization(
                owner, OrganizationCreate(slug="zen-zurich", name="Another Zen")
            )

        assert exc_info.value.details["field_errors"] == {"slug": ["already taken"]}

    async def test_invalid_iban_is_rejected(self, db, owner):
        with pytest.raises(ValidationError) as exc_info:
            await OrganizationService(db).create_organization(
                owner, OrganizationCreate(slug="flow-bern", name="Flow Bern", iban="CH9300762011623852958")
            )

        assert "iban" in exc_info.value.details["field_errors"]

    async def test_iban_is_stored_compact(self, db, org):
        updated = await OrganizationService(db).update_organization(
            org, OrganizationUpdate(iban="ch93 0076 2011 6238 5295 7")
        )

        assert updated.iban == STUDIO_IBAN

    async def test_update_with_invalid_iban(self, db, org):
        with pytest.raises(ValidationError):
            await OrganizationService(db).update_organization(org, OrganizationUpdate(iban="CH00 1234"))

    async def test_settings_change_refreshes_payment_methods(self, db, org, redis_cache):
        payments = PaymentService(db)
        before = await payments.get_payment_methods(org)
        assert "card" in before["methods"]
        assert CacheKeyBuilder.payment_methods(str(org.id)) in redis_cache.store

        await OrganizationService(db).update_organization(
            org, OrganizationUpdate(settings={"payment_methods": ["cash"]})
        )
        after = await payments.get_payment_methods(org)

        assert after["methods"] == ["cash"]


class TestMembers:

    async def test_add_member(self, db, org):
        await make_user(db, "sara@studio-zen.ch")

        member = await OrganizationService(db).add_member(
            org, MemberCreate(email="Sara@Studio-Zen.ch", role=OrgRole.INSTRUCTOR, rate_per_class_cents=5000)
        )

        assert member.role == OrgRole.INSTRUCTOR
        assert member.display_name == "Sara Brunner"
        assert member.rate_per_class_cents == 5000

    async def test_unknown_user_cannot_be_added(self, db, org):
        with pytest.raises(UserNotFoundError):
            await OrganizationService(db).add_member(
                org, MemberCreate(email="nobody@studio-zen.ch", role=OrgRole.FRONT_DESK)
            )

    async def test_existing_member_cannot_be_added_twice(self, db, org, owner):
        with pytest.raises(ValidationError) as exc_info:
            await OrganizationService(db).add_member(org, MemberCreate(email=owner.email, role=OrgRole.MANAGER))

        assert exc_info.value.details["field_errors"] == {"email": ["already a member"]}

    @pytest.mark.parametrize("update", [
        MemberUpdate(role=OrgRole.MANAGER),
        MemberUpdate(status=MemberStatus.DISABLED),
    ])
    async def test_last_active_owner_stays_owner(self, db, org, owner, update):
        service = OrganizationService(db)
        member = await service.get_membership(org.id, owner.id)

        with pytest.raises(ValidationError, match="at least one active owner"):
            await service.update_member(org.id, member.id, update)

        assert member.role == OrgRole.OWNER
        assert member.status == MemberStatus.ACTIVE

    async def test_owner_can_step_down_once_another_owner_exists(self, db, org, owner):
        service = OrganizationService(db)
        await make_user(db, "marc@studio-zen.ch", first_name="Marc")
        await service.add_member(org, MemberCreate(email="marc@studio-zen.ch", role=OrgRole.OWNER))
        member = await service.get_membership(org.id, owner.id)

        member = await service.update_member(org.id, member.id, MemberUpdate(role=OrgRole.MANAGER))

        assert member.role == OrgRole.MANAGER
        assert [m.role for m in await service.list_members(org.id)].count(OrgRole.OWNER) == 1

    async def test_user_sees_only_active_memberships(self, db, org, owner):
        service = OrganizationService(db)
        other, _ = await service.create_organization(owner, OrganizationCreate(slug="flow-bern", name="Flow Bern"))
        await make_user(db, "marc@studio-zen.ch", first_name="Marc")
        await service.add_member(other, MemberCreate(email="marc@studio-zen.ch", role=OrgRole.OWNER))
        membership = await service.get_membership(other.id, owner.id)
        await service.update_member(other.id, membership.id, MemberUpdate(status=MemberStatus.DISABLED))

        memberships = await service.list_user_organizations(owner.id)

        assert [o.slug for o, _ in memberships] == ["zen-zurich"]
