#!/usr/bin/env python3
"""
Create a studio together with its owner account.

Usage:
    python miscellaneous/create_studio.py        # Create a studio interactively
    python miscellaneous/create_studio.py list   # List studios and their owners
"""

import asyncio
import os
import sys
from getpass import getpass

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import select

from yogaswiss.database import close_database, get_db_session, init_database
from yogaswiss.models.organization import Organization, OrgMember, OrgRole
from yogaswiss.models.user import User
from yogaswiss.schemas.auth import UserRegistration
from yogaswiss.schemas.organization import OrganizationCreate
from yogaswiss.services.organization_service import OrganizationService
from yogaswiss.services.user_service import UserService
from yogaswiss.utils.exceptions import YogaSwissError


def prompt(label: str) -> str:
    value = input(f"{label}: ").strip()
    if not value:
        raise SystemExit(f"{label} is required")
    return value


async def create_studio():
    """Ask for studio and owner details and create both in one transaction."""
    print("YogaSwiss - studio setup")
    print("=" * 40)

    slug = prompt("Studio slug (e.g. zen-zurich)")
    name = prompt("Studio name")
    email = prompt("Owner email")

    await init_database()
    try:
        async with get_db_session() as db:
            users = UserService(db)
            owner = await users.get_user_by_email(email)
            if owner is None:
                first_name = prompt("Owner first name")
                last_name = prompt("Owner last name")
                password = getpass("Password: ")
                if password != getpass("Confirm password: "):
                    raise SystemExit("Passwords do not match")
                owner = await users.create_user(UserRegistration(
                    email=email, password=password, first_name=first_name, last_name=last_name
                ))
            else:
                print(f"Using existing account {owner.email}")

            org, _ = await OrganizationService(db).create_organization(
                owner, OrganizationCreate(slug=slug, name=name)
            )
            print(f"\nCreated studio '{org.name}'")
            print(f"   Slug:  {org.slug}")
            print(f"   ID:    {org.id}  (send as X-Org-ID)")
            print(f"   Owner: {owner.email}")
    except (YogaSwissError, SchemaValidationError) as e:
        raise SystemExit(f"Could not create studio: {e}")
    finally:
        await close_database()


async def list_studios():
    await init_database(create_tables=False)
    try:
        async with get_db_session() as db:
            result = await db.execute(
                select(Organization, User)
                .join(OrgMember, OrgMember.org_id == Organization.id)
                .join(User, User.id == OrgMember.user_id)
                .where(OrgMember.role == OrgRole.OWNER)
                .order_by(Organization.slug)
            )
            rows = result.all()
            if not rows:
                print("No studios found.")
            for org, owner in rows:
                status = "active" if org.is_active else "inactive"
                print(f"{org.slug:<24} {org.name:<32} {owner.email} ({status})")
    finally:
        await close_database()


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "list":
        asyncio.run(list_studios())
    else:
        asyncio.run(create_studio())
