"""
General Processor

Low-priority and unclassified events. Dispatch goes through a registered
handler map that must cover every type the router sends to the general queue;
anything else is stored in `unhandled_webhooks` for inspection.
"""

from functools import partial
from typing import Dict

from loguru import logger

from src.message_queue.router import types_for_queue
from src.models.base import utcnow
from src.models.events import LocationEvent, unwrap_envelope
from src.models.work_item import QueueType, WorkItem
from src.processors.base import BaseProcessor, Handler
from src.processors.context import ProcessorContext

# Archive-only event type -> collection
ARCHIVED_TYPES: Dict[str, str] = {
    "CampaignStatusUpdate": "campaign_events",
    "ObjectSchemaCreate": "custom_object_events",
    "UpdateCustomObject": "custom_object_events",
    "RecordCreate": "custom_object_events",
    "RecordUpdate": "custom_object_events",
    "DeleteRecord": "custom_object_events",
    "AssociationCreated": "association_events",
    "AssociationUpdated": "association_events",
    "AssociationDeleted": "association_events",
    "RelationCreate": "association_events",
    "RelationDelete": "association_events",
}

UNHANDLED_COLLECTION = "unhandled_webhooks"


class GeneralProcessor(BaseProcessor):

    queue_type = QueueType.GENERAL
    batch_size = 100

    def __init__(self, ctx: ProcessorContext, **kwargs):
        super().__init__(ctx, **kwargs)
        self.handlers: Dict[str, Handler] = {
            "LocationCreate": self.location_upsert,
            "LocationUpdate": self.location_upsert,
        }
        for webhook_type, collection in ARCHIVED_TYPES.items():
            self.handlers[webhook_type] = partial(self.archive, collection)

        missing = types_for_queue(QueueType.GENERAL) - set(self.handlers)
        if missing:
            raise ValueError(f"GeneralProcessor has no handler for: {', '.join(sorted(missing))}")

    async def process_item(self, item: WorkItem) -> None:
        handler = self.handlers.get(item.type)
        if handler is None:
            await self.store_unhandled(item)
            return
        await handler(item)

    async def location_upsert(self, item: WorkItem) -> None:
        event = LocationEvent.from_payload(item.payload, item.location_id)
        location_id = event.resolved_location_id
        if not location_id:
            logger.warning(f"{item.type} {item.webhook_id} carries no location id, storing as unhandled")
            await self.store_unhandled(item)
            return

        fields = event.present_fields("id")
        fields.update({"lastWebhookUpdate": utcnow(), "processedBy": "queue", "webhookId": item.webhook_id})
        await self.ctx.repos.locations.upsert_location(
            location_id,
            fields,
            {"createdByWebhook": item.webhook_id},
        )

    async def archive(self, collection: str, item: WorkItem) -> None:
        data, location_id = unwrap_envelope(item.payload)
        await self.ctx.repos.archive.append(collection, {
            "type": item.type,
            "payload": data,
            "locationId": location_id or item.location_id,
            "webhookId": item.webhook_id,
            "processedAt": utcnow(),
            "processedBy": "queue",
        })

    async def store_unhandled(self, item: WorkItem) -> None:
        logger.info(f"No handler for {item.type}, storing {item.webhook_id} for inspection")
        await self.archive(UNHANDLED_COLLECTION, item)
