"""
Automation Trigger Queue

Rows in `automation_queue` are picked up by the automation engine, which runs
outside this service. Each row names the trigger and carries the entity
snapshot the rules are evaluated against. A webhook queues at most one
trigger per entity type, so a redelivered webhook does not fire its automations
again.
"""
from typing import Any, Dict

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from src.models.base import utcnow


class AutomationQueue:

    def __init__(self, database: AsyncIOMotorDatabase):
        self.collection = database["automation_queue"]

    async def enqueue(
        self,
        webhook_id: str,
        trigger_type: str,
        entity_type: str,
        location_id: str,
        data: Dict[str, Any],
    ) -> bool:
        """
        Queue one trigger row for `webhook_id`.

        Returns:
            False if this webhook already queued a trigger for `entity_type`
        """
        try:
            result = await self.collection.update_one(
                {"webhookId": webhook_id, "entityType": entity_type},
                {"$setOnInsert": {
                    "trigger": {
                        "type": trigger_type,
                        "entityType": entity_type,
                        "locationId": location_id,
                        "data": {**data, "locationId": location_id},
                    },
                    "status": "pending",
                    "attempts": 0,
                    "createdAt": utcnow(),
                }},
                upsert=True,
            )
        except DuplicateKeyError:
            return False
        return result.upserted_id is not None
