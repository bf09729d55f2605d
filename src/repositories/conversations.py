"""
Conversation Repositories
Conversations and the messages inside them.
"""
import datetime as dt
from typing import Any, Dict, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from .base import BaseRepository, Session, UpsertResult, as_object_id
from . import filters
from ..models.base import utcnow
from ..models.entities import Conversation, Message


class ConversationRepository(BaseRepository[Conversation]):

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "conversations", Conversation)

    async def increment_unread(self, conversation_id: str, session: Session = None) -> None:
        await self.collection.update_one(
            {"_id": as_object_id(conversation_id)},
            {"$inc": {"unreadCount": 1}},
            session=session
        )

    async def set_unread_count(self, ghl_conversation_id: str, location_id: str, unread_count: int) -> bool:
        return await self.update_fields(
            filters.conversation(ghl_conversation_id, location_id),
            {"unreadCount": unread_count}
        )


class MessageRepository(BaseRepository[Message]):

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "messages", Message)

    async def insert(self, document: Dict[str, Any], session: Session = None) -> UpsertResult:
        """
        Record a message keyed by (ghlMessageId, locationId).

        Re-deliveries of the same message leave the stored copy untouched and
        report `created=False`.
        """
        key = filters.message(document["ghlMessageId"], document["locationId"])
        on_insert = {k: v for k, v in document.items() if k not in ("ghlMessageId", "locationId")}
        result = await self.collection.update_one(
            key.to_query(),
            {"$setOnInsert": {**on_insert, "createdAt": utcnow()}},
            upsert=True,
            session=session
        )
        if result.upserted_id is not None:
            return UpsertResult(document_id=str(result.upserted_id), created=True)

        existing = await self.collection.find_one(key.to_query(), {"_id": 1}, session=session)
        return UpsertResult(document_id=str(existing["_id"]), created=False)

    async def update_email_status(
        self,
        email_message_id: str,
        event: str,
        occurred_at: Optional[dt.datetime] = None
    ) -> bool:
        """Record a delivery event (delivered, opened, bounced...) on the matching email message."""
        now = utcnow()
        result = await self.collection.update_one(
            {"emailMessageId": email_message_id},
            {"$set": {
                "emailStatus": event,
                "emailStatusUpdatedAt": now,
                f"emailEvents.{event}": occurred_at or now,
            }}
        )
        return result.matched_count > 0

    async def get_by_ghl_id(self, ghl_message_id: str, location_id: str) -> Optional[Message]:
        return await self.find_one(filters.message(ghl_message_id, location_id))
