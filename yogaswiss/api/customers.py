"""
Customer and location endpoints.
"""

from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.organization import Permission
from ..schemas.customer import (
    CustomerCreate,
    CustomerListResponse,
    CustomerResponse,
    CustomerUpdate,
    LocationCreate,
    LocationResponse,
    LocationUpdate,
)
from ..services.customer_service import CustomerService
from ..services.location_service import LocationService
from ..utils.dependencies import OrgContext, require_permission

router = APIRouter(prefix="/customers", tags=["customers"])
locations_router = APIRouter(prefix="/locations", tags=["locations"])

can_manage_customers = require_permission(Permission.CUSTOMERS)


@router.get("", response_model=CustomerListResponse)
async def list_customers(
    search: Optional[str] = Query(None, max_length=100),
    include_inactive: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: OrgContext = Depends(can_manage_customers),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """List customers, optionally filtered by a name or email search term."""
    customers, total = await CustomerService(db).list_customers(
        ctx.org_id, search=search, include_inactive=include_inactive, limit=limit, offset=offset
    )
    return CustomerListResponse(
        customers=[CustomerResponse.model_validate(c) for c in customers],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    data: CustomerCreate,
    ctx: OrgContext = Depends(can_manage_customers),
    db: AsyncSession = Depends(get_db)
) -> Any:
    customer = await CustomerService(db).create_customer(ctx.org_id, data)
    return CustomerResponse.model_validate(customer)


@router.get("/{customer_id}", response_model=CustomerResponse)
async def get_customer(
    customer_id: UUID,
    ctx: OrgContext = Depends(can_manage_customers),
    db: AsyncSession = Depends(get_db)
) -> Any:
    customer = await CustomerService(db).get_customer(ctx.org_id, customer_id)
    return CustomerResponse.model_validate(customer)


@router.patch("/{customer_id}", response_model=CustomerResponse)
async def update_customer(
    customer_id: UUID,
    data: CustomerUpdate,
    ctx: OrgContext = Depends(can_manage_customers),
    db: AsyncSession = Depends(get_db)
) -> Any:
    customer = await CustomerService(db).update_customer(ctx.org_id, customer_id, data)
    return CustomerResponse.model_validate(customer)


@router.delete("/{customer_id}", response_model=CustomerResponse)
async def deactivate_customer(
    customer_id: UUID,
    ctx: OrgContext = Depends(can_manage_customers),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """Deactivate a customer. Their history is kept."""
    customer = await CustomerService(db).deactivate_customer(ctx.org_id, customer_id)
    return CustomerResponse.model_validate(customer)


@locations_router.get("", response_model=List[LocationResponse])
async def list_locations(
    include_inactive: bool = False,
    ctx: OrgContext = Depends(can_manage_customers),
    db: AsyncSession = Depends(get_db)
) -> Any:
    locations = await LocationService(db).list_locations(ctx.org_id, include_inactive=include_inactive)
    return [LocationResponse.model_validate(loc) for loc in locations]


@locations_router.post("", response_model=LocationResponse, status_code=status.HTTP_201_CREATED)
async def create_location(
    data: LocationCreate,
    ctx: OrgContext = Depends(can_manage_customers),
    db: AsyncSession = Depends(get_db)
) -> Any:
    location = await LocationService(db).create_location(ctx.org_id, data)
    return LocationResponse.model_validate(location)


@locations_router.get("/{location_id}", response_model=LocationResponse)
async def get_location(
    location_id: UUID,
    ctx: OrgContext = Depends(can_manage_customers),
    db: AsyncSession = Depends(get_db)
) -> Any:
    location = await LocationService(db).get_location(ctx.org_id, location_id)
    return LocationResponse.model_validate(location)


@locations_router.patch("/{location_id}", response_model=LocationResponse)
async def update_location(
    location_id: UUID,
    data: LocationUpdate,
    ctx: OrgContext = Depends(can_manage_customers),
    db: AsyncSession = Depends(get_db)
) -> Any:
    location = await LocationService(db).update_location(ctx.org_id, location_id, data)
    return LocationResponse.model_validate(location)


@locations_router.delete("/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_location(
    location_id: UUID,
    ctx: OrgContext = Depends(can_manage_customers),
    db: AsyncSession = Depends(get_db)
) -> None:
    """
    Delete a location.

    Raises:
        ResourceInUseError: Upcoming classes are still scheduled there
    """
    await LocationService(db).delete_location(ctx.org_id, location_id)
