"""
Append-only Event Stores

Raw event archives and job/audit rows that are written once and never updated:
app_events, product_events, price_events, campaign_events, custom_object_events,
association_events, unhandled_webhooks, email_stats, email_queue, sync_queue,
install_retry_queue.
"""
from typing import Any, Dict
from motor.motor_asyncio import AsyncIOMotorDatabase

from .base import Session
from ..models.base import utcnow


class EventArchive:

    def __init__(self, database: AsyncIOMotorDatabase):
        self.database = database

    async def append(self, collection_name: str, document: Dict[str, Any], session: Session = None) -> str:
        doc = {"createdAt": utcnow(), **document}
        result = await self.database[collection_name].insert_one(doc, session=session)
        return str(result.inserted_id)
