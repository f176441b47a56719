"""
Organization (tenant) and membership management.
"""

import logging
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import CacheInvalidator
from ..config import get_settings
from ..models.organization import MemberStatus, Organization, OrgMember, OrgRole
from ..models.user import User
from ..schemas.organization import MemberCreate, MemberUpdate, OrganizationCreate, OrganizationUpdate
from ..utils.exceptions import ResourceNotFoundError, UserNotFoundError, ValidationError
from ..utils.logging_config import log_business_event
from ..utils.qr_bill import normalize_iban, validate_iban

logger = logging.getLogger(__name__)


class OrganizationService:
    """Create studios and manage who works in them."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def create_organization(self, owner: User, data: OrganizationCreate) -> Tuple[Organization, OrgMember]:
        """
        Create an organization and make ``owner`` its first member.

        Both rows are written in the caller's transaction, so either both
        exist afterwards or neither does.

        Raises:
            ValidationError: Duplicate slug or invalid IBAN
        """
        if await self.get_by_slug(data.slug):
            raise ValidationError(
                f"Organization slug '{data.slug}' is already taken",
                field_errors={"slug": ["already taken"]}
            )

        values = data.model_dump()
        values["iban"] = self._checked_iban(values.get("iban"))
        if values.get("vat_rate") is None:
            values["vat_rate"] = Decimal(str(self.settings.default_vat_rate))
        if values.get("cancellation_window_hours") is None:
            values["cancellation_window_hours"] = self.settings.cancellation_window_hours

        org = Organization(**values)
        self.db.add(org)
        await self.db.flush()

        member = OrgMember(
            org_id=org.id,
            user_id=owner.id,
            role=OrgRole.OWNER,
            status=MemberStatus.ACTIVE,
            display_name=owner.full_name,
        )
        self.db.add(member)
        await self.db.flush()

        log_business_event("organization_created", {"org_id": str(org.id), "slug": org.slug}, str(owner.id))
        return org, member

    # Name used by the onboarding flow
    create_organization_owner = create_organization

    async def get_organization(self, org_id: UUID) -> Organization:
        org = await self.db.get(Organization, org_id)
        if org is None or not org.is_active:
            raise ResourceNotFoundError("organization", org_id)
        return org

    async def get_by_slug(self, slug: str) -> Optional[Organization]:
        result = await self.db.execute(select(Organization).where(Organization.slug == slug))
        return result.scalar_one_or_none()

    async def update_organization(self, org: Organization, data: OrganizationUpdate) -> Organization:
        updates = data.model_dump(exclude_unset=True)
        if "iban" in updates:
            updates["iban"] = self._checked_iban(updates["iban"])

        for field, value in updates.items():
            setattr(org, field, value)

        await self.db.flush()
        # get_payment_methods caches a snapshot of these settings
        await CacheInvalidator.invalidate_payment_methods(str(org.id))
        logger.info(f"Updated organization {org.id}: {sorted(updates)}")
        return org

    async def list_user_organizations(self, user_id: UUID) -> List[Tuple[Organization, OrgMember]]:
        """Organizations where the user holds an active membership."""
        result = await self.db.execute(
            select(Organization, OrgMember)
            .join(OrgMember, OrgMember.org_id == Organization.id)
            .where(
                OrgMember.user_id == user_id,
                OrgMember.status == MemberStatus.ACTIVE,
                Organization.is_active.is_(True),
            )
            .order_by(Organization.name)
        )
        return [(org, member) for org, member in result.all()]

    async def get_membership(self, org_id: UUID, user_id: UUID) -> Optional[OrgMember]:
        result = await self.db.execute(
            select(OrgMember).where(OrgMember.org_id == org_id, OrgMember.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def add_member(self, org: Organization, data: MemberCreate) -> OrgMember:
        """
        Add an existing user to the organization.

        Raises:
            UserNotFoundError: No account with that email
            ValidationError: The user is already a member
        """
        from .user_service import UserService

        user = await UserService(self.db).get_user_by_email(data.email)
        if user is None:
            raise UserNotFoundError(data.email)

        if await self.get_membership(org.id, user.id):
            raise ValidationError(
                f"{data.email} is already a member of this organization",
                field_errors={"email": ["already a member"]}
            )

        member = OrgMember(
            org_id=org.id,
            user_id=user.id,
            role=data.role,
            status=MemberStatus.ACTIVE,
            display_name=data.display_name or user.full_name,
            rate_per_class_cents=data.rate_per_class_cents,
            rate_per_student_cents=data.rate_per_student_cents,
        )
        self.db.add(member)
        await self.db.flush()

        logger.info(f"Added {user.id} to org {org.id} as {data.role.value}")
        return member

    async def get_member(self, org_id: UUID, member_id: UUID) -> OrgMember:
        member = await self.db.get(OrgMember, member_id)
        if member is None or member.org_id != org_id:
            raise ResourceNotFoundError("member", member_id)
        return member

    async def update_member(self, org_id: UUID, member_id: UUID, data: MemberUpdate) -> OrgMember:
        member = await self.get_member(org_id, member_id)
        updates = data.model_dump(exclude_unset=True)

        # The last active owner cannot demote or disable themselves
        demoting = updates.get("role", member.role) != OrgRole.OWNER
        disabling = updates.get("status", member.status) != MemberStatus.ACTIVE
        if member.role == OrgRole.OWNER and (demoting or disabling):
            owners = await self._count_active_owners(org_id)
            if owners <= 1:
                raise ValidationError("An organization needs at least one active owner")

        for field, value in updates.items():
            setattr(member, field, value)

        await self.db.flush()
        return member

    async def list_members(self, org_id: UUID) -> List[OrgMember]:
        result = await self.db.execute(
            select(OrgMember).where(OrgMember.org_id == org_id).order_by(OrgMember.created_at)
        )
        return list(result.scalars().all())

    async def _count_active_owners(self, org_id: UUID) -> int:
        result = await self.db.execute(
            select(OrgMember.id).where(
                OrgMember.org_id == org_id,
                OrgMember.role == OrgRole.OWNER,
                OrgMember.status == MemberStatus.ACTIVE,
            )
        )
        return len(result.all())

    def _checked_iban(self, iban: Optional[str]) -> Optional[str]:
        if not iban:
            return None
        if not validate_iban(iban):
            raise ValidationError("Invalid IBAN", field_errors={"iban": ["checksum or format invalid"]})
        return normalize_iban(iban)
