"""
Tenant Repositories
Location configuration records and the users that belong to them.
"""
from typing import Any, Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from .base import BaseRepository, Session, UpsertResult
from . import filters
from ..models.entities import Location, User


class LocationRepository(BaseRepository[Location]):
    """Locations keyed by locationId alone."""

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "locations", Location)

    async def get(self, location_id: str, session: Session = None) -> Optional[Location]:
        return await self.find_one({"locationId": location_id}, session=session)

    async def upsert_location(
        self,
        location_id: str,
        set_fields: Dict[str, Any],
        set_on_insert: Optional[Dict[str, Any]] = None,
        session: Session = None
    ) -> UpsertResult:
        return await self.upsert({"locationId": location_id}, set_fields, set_on_insert, session=session)

    async def update_location(
        self,
        location_id: str,
        set_fields: Optional[Dict[str, Any]] = None,
        unset: Optional[List[str]] = None,
        session: Session = None
    ) -> bool:
        return await self.update_fields({"locationId": location_id}, set_fields, unset=unset, session=session)


class UserRepository(BaseRepository[User]):
    """Users keyed by (ghlUserId, locationId)."""

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "users", User)

    async def get_by_ghl_id(self, ghl_user_id: str, location_id: str) -> Optional[User]:
        return await self.find_one(filters.user(ghl_user_id, location_id))

    async def find_by_any_id(self, user_id: str) -> Optional[User]:
        """Look a user up by internal id or upstream id, across locations."""
        user = await self.find_by_id(user_id)
        if user is None:
            user = await self.find_one({"ghlUserId": user_id})
        return user

    async def list_for_location(self, location_id: str, limit: int = 1000) -> List[User]:
        return await self.find_many({"locationId": location_id}, limit=limit)
