"""
Location management.
"""

import logging
from typing import List
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.class_schedule import ClassOccurrence, OccurrenceStatus
from ..models.location import Location
from ..schemas.customer import LocationCreate, LocationUpdate
from ..utils.clock import utcnow
from ..utils.exceptions import ResourceInUseError, ResourceNotFoundError

logger = logging.getLogger(__name__)


class LocationService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_location(self, org_id: UUID, data: LocationCreate) -> Location:
        location = Location(org_id=org_id, **data.model_dump())
        self.db.add(location)
        await self.db.flush()
        return location

    async def get_location(self, org_id: UUID, location_id: UUID) -> Location:
        location = await self.db.get(Location, location_id)
        if location is None or location.org_id != org_id:
            raise ResourceNotFoundError("location", location_id)
        return location

    async def list_locations(self, org_id: UUID, include_inactive: bool = False) -> List[Location]:
        query = select(Location).where(Location.org_id == org_id)
        if not include_inactive:
            query = query.where(Location.is_active.is_(True))
        result = await self.db.execute(query.order_by(Location.name))
        return list(result.scalars().all())

    async def update_location(self, org_id: UUID, location_id: UUID, data: LocationUpdate) -> Location:
        location = await self.get_location(org_id, location_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(location, field, value)
        await self.db.flush()
        return location

    async def delete_location(self, org_id: UUID, location_id: UUID) -> None:
        """
        Delete a location.

        Raises:
            ResourceInUseError: While scheduled future classes still use it
        """
        location = await self.get_location(org_id, location_id)

        upcoming = await self.db.scalar(
            select(func.count(ClassOccurrence.id)).where(
                ClassOccurrence.location_id == location_id,
                ClassOccurrence.status == OccurrenceStatus.SCHEDULED,
                ClassOccurrence.start_time > utcnow(),
            )
        )
        if upcoming:
            raise ResourceInUseError("location", location_id, f"{upcoming} upcoming classes are scheduled here")

        await self.db.delete(location)
        await self.db.flush()
        logger.info(f"Deleted location {location_id}")
