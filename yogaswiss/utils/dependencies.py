"""
FastAPI dependencies for authentication, tenancy and permissions.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.organization import OrgMember, Organization, Permission
from ..models.user import User
from ..services.organization_service import OrganizationService
from ..services.payment_providers import StripeClient, TwintSandbox
from ..services.user_service import UserService
from .auth import verify_token
from .exceptions import AuthenticationError, AuthorizationError, ValidationError


# Missing credentials are reported through AuthenticationError, not FastAPI's 403
security = HTTPBearer(auto_error=False)


@dataclass
class OrgContext:
    """The organization a request acts on and the caller's membership in it."""

    org: Organization
    member: OrgMember
    user: User

    @property
    def org_id(self) -> UUID:
        return self.org.id


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Get the current authenticated user from the bearer token.

    Raises:
        AuthenticationError: Missing or invalid token, unknown or inactive user
    """
    if credentials is None:
        raise AuthenticationError("Missing bearer token")

    token_data = verify_token(credentials.credentials)
    if token_data is None or token_data.user_id is None:
        raise AuthenticationError("Could not validate credentials")

    try:
        user_id = UUID(token_data.user_id)
    except ValueError:
        raise AuthenticationError("Could not validate credentials")

    user = await UserService(db).get_user_by_id(user_id)
    if user is None:
        raise AuthenticationError("Could not validate credentials")
    if not user.is_active:
        raise AuthenticationError("Inactive user")

    return user


async def get_org_context(
    x_org_id: Optional[str] = Header(None, alias="X-Org-ID"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> OrgContext:
    """
    Resolve the ``X-Org-ID`` header to the organization and the caller's membership.

    Raises:
        ValidationError: Header missing or not a UUID
        AuthorizationError: Caller is not an active member of the organization
    """
    if not x_org_id:
        raise ValidationError("X-Org-ID header is required", field_errors={"X-Org-ID": ["missing"]})
    try:
        org_id = UUID(x_org_id)
    except ValueError:
        raise ValidationError("X-Org-ID must be a UUID", field_errors={"X-Org-ID": ["not a UUID"]})

    service = OrganizationService(db)
    member = await service.get_membership(org_id, current_user.id)
    if member is None or not member.is_active:
        raise AuthorizationError("You are not a member of this organization")

    org = await service.get_organization(org_id)

    return OrgContext(org=org, member=member, user=current_user)


def require_permission(permission: Permission):
    """
    Dependency factory for routes that need a role permission.

    Returns:
        Dependency yielding the OrgContext when the caller's role grants ``permission``
    """
    async def checker(ctx: OrgContext = Depends(get_org_context)) -> OrgContext:
        if not ctx.member.has_permission(permission):
            raise AuthorizationError(
                f"Your role does not grant '{permission.value}'",
                required_permission=permission.value
            )
        return ctx

    return checker


def get_stripe_client() -> StripeClient:
    return StripeClient()


def get_twint_sandbox() -> TwintSandbox:
    return TwintSandbox()
