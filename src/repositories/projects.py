"""
Project Repository
Projects mirror upstream opportunities and carry the append-only timeline.
"""
from typing import Any, Dict, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING

from .base import BaseRepository, Query, Session, as_query
from . import filters
from ..models.entities import Project, TimelineEntry


class ProjectRepository(BaseRepository[Project]):

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "projects", Project)

    async def get_by_opportunity(
        self,
        ghl_opportunity_id: str,
        location_id: str,
        session: Session = None
    ) -> Optional[Project]:
        return await self.find_one(filters.project(ghl_opportunity_id, location_id), session=session)

    async def find_open_for_contact(
        self,
        contact_id: Optional[str],
        location_id: str,
        session: Session = None
    ) -> Optional[Project]:
        """Most recent open project of a contact, if any."""
        if not contact_id:
            return None

        query = filters.open_project_for_contact(contact_id, location_id).to_query()
        cursor = self.collection.find(query, session=session).sort("createdAt", DESCENDING).limit(1)
        docs = await cursor.to_list(length=1)
        return self._to_model(docs[0]) if docs else None

    async def append_timeline(
        self,
        query: Query,
        entry: TimelineEntry,
        set_fields: Optional[Dict[str, Any]] = None,
        unique_on: Optional[Dict[str, Any]] = None,
        session: Session = None
    ) -> bool:
        """
        Push one timeline entry. Entries are only ever appended.

        Args:
            unique_on: Entry fields (dotted paths allowed) identifying the
                entry; when an existing entry matches them the push and
                `set_fields` are skipped, so a replayed webhook adds nothing

        Returns:
            True if the project exists
        """
        if unique_on is None:
            return await self.update_fields(
                query,
                set_fields,
                push={"timeline": entry.to_document()},
                session=session
            )

        base = as_query(query)
        guarded = {**base, "timeline": {"$not": {"$elemMatch": unique_on}}}
        if await self.update_fields(guarded, set_fields, push={"timeline": entry.to_document()}, session=session):
            return True
        return await self.collection.find_one(base, {"_id": 1}, session=session) is not None
