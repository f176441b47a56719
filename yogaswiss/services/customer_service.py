"""
Customer management.
"""

import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.customer import Customer
from ..schemas.customer import CustomerCreate, CustomerUpdate
from ..utils.exceptions import ResourceNotFoundError, ValidationError

logger = logging.getLogger(__name__)


class CustomerService:
    """CRUD for studio customers, always scoped to one organization."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_customer(self, org_id: UUID, data: CustomerCreate) -> Customer:
        """
        Create a customer.

        Raises:
            ValidationError: When another customer of the org uses the email
        """
        email = data.email.lower()
        await self._ensure_email_free(org_id, email)

        customer = Customer(org_id=org_id, **{**data.model_dump(), "email": email})
        self.db.add(customer)
        await self.db.flush()

        logger.info(f"Created customer {customer.id} in org {org_id}")
        return customer

    async def get_customer(self, org_id: UUID, customer_id: UUID) -> Customer:
        customer = await self.db.get(Customer, customer_id)
        if customer is None or customer.org_id != org_id:
            raise ResourceNotFoundError("customer", customer_id)
        return customer

    async def update_customer(self, org_id: UUID, customer_id: UUID, data: CustomerUpdate) -> Customer:
        customer = await self.get_customer(org_id, customer_id)
        updates = data.model_dump(exclude_unset=True)

        if updates.get("email"):
            updates["email"] = updates["email"].lower()
            if updates["email"] != customer.email:
                await self._ensure_email_free(org_id, updates["email"])

        for field, value in updates.items():
            setattr(customer, field, value)

        await self.db.flush()
        return customer

    async def deactivate_customer(self, org_id: UUID, customer_id: UUID) -> Customer:
        """Customers are never deleted; their bookings and ledger stay intact."""
        customer = await self.get_customer(org_id, customer_id)
        customer.is_active = False
        await self.db.flush()
        logger.info(f"Deactivated customer {customer_id}")
        return customer

    async def list_customers(
        self,
        org_id: UUID,
        search: Optional[str] = None,
        include_inactive: bool = False,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Customer], int]:
        """
        List customers with optional case-insensitive search on name and email.

        Returns:
            Tuple of (page of customers, total matching)
        """
        query = select(Customer).where(Customer.org_id == org_id)
        if not include_inactive:
            query = query.where(Customer.is_active.is_(True))
        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(or_(
                func.lower(Customer.first_name).like(pattern),
                func.lower(Customer.last_name).like(pattern),
                func.lower(Customer.email).like(pattern),
            ))

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(Customer.last_name, Customer.first_name).limit(limit).offset(offset)
        )
        return list(result.scalars().all()), total or 0

    async def _ensure_email_free(self, org_id: UUID, email: str) -> None:
        existing = await self.db.execute(
            select(Customer.id).where(Customer.org_id == org_id, Customer.email == email)
        )
        if existing.first():
            raise ValidationError(
                f"A customer with email {email} already exists",
                field_errors={"email": ["already exists"]}
            )
