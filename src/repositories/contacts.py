"""
Contact Repositories
Contacts plus the notes and tasks that hang off them.
"""
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from .base import BaseRepository, Session
from . import filters
from ..errors import ReferenceNotFoundError
from ..models.base import utcnow
from ..models.entities import Contact, Note, Task
from ..utils.observability import logger


class ContactRepository(BaseRepository[Contact]):
    """Contacts keyed by (ghlContactId, locationId)."""

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "contacts", Contact)

    async def get_by_ghl_id(
        self,
        ghl_contact_id: str,
        location_id: str,
        session: Session = None
    ) -> Optional[Contact]:
        return await self.find_one(filters.contact(ghl_contact_id, location_id), session=session)

    async def resolve_id(
        self,
        ghl_contact_id: Optional[str],
        location_id: str,
        required: bool = False
    ) -> Optional[str]:
        """
        Map an upstream contact id to the internal document id.

        A miss is logged and returns None unless `required` is set.

        Raises:
            ReferenceNotFoundError: On a miss with `required=True`
        """
        if not ghl_contact_id:
            return None

        contact = await self.get_by_ghl_id(ghl_contact_id, location_id)
        if contact is not None:
            return contact.id

        miss = ReferenceNotFoundError("contact", ghl_contact_id, location_id)
        if required:
            raise miss

        logger.warning(str(miss), extra={"location_id": location_id})
        return None

    async def touch_activity(
        self,
        ghl_contact_id: Optional[str],
        location_id: str,
        activity_type: str,
        session: Session = None
    ) -> bool:
        """Stamp the contact's last activity. Returns False if the contact is unknown."""
        if not ghl_contact_id:
            return False
        return await self.update_fields(
            filters.contact(ghl_contact_id, location_id),
            {"lastActivityDate": utcnow(), "lastActivityType": activity_type},
            session=session
        )


class NoteRepository(BaseRepository[Note]):
    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "notes", Note)


class TaskRepository(BaseRepository[Task]):
    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "tasks", Task)
