"""
Contacts Processor

Contacts, plus the notes and tasks attached to them. Every write is an
idempotent upsert or partial update keyed by (upstream id, locationId).
"""

from loguru import logger

from src.models.base import utcnow
from src.models.events import ContactEvent, NoteEvent, TaskEvent
from src.models.work_item import QueueType, WorkItem
from src.processors.base import BaseProcessor
from src.processors.context import ProcessorContext
from src.realtime.notifier import DedupKey
from src.realtime.publisher import location_channel
from src.repositories import filters


class ContactsProcessor(BaseProcessor):

    queue_type = QueueType.CONTACTS
    batch_size = 50

    def __init__(self, ctx: ProcessorContext, **kwargs):
        super().__init__(ctx, **kwargs)
        self.handlers = {
            "ContactCreate": self.contact_create,
            "ContactUpdate": self.contact_update,
            "ContactDelete": self.contact_delete,
            "ContactDndUpdate": self.contact_dnd_update,
            "ContactTagUpdate": self.contact_tag_update,
            "NoteCreate": self.note_create,
            "NoteUpdate": self.note_update,
            "NoteDelete": self.note_delete,
            "TaskCreate": self.task_create,
            "TaskComplete": self.task_complete,
            "TaskDelete": self.task_delete,
        }

    # ============================================
    # CONTACTS
    # ============================================

    async def contact_create(self, item: WorkItem) -> None:
        event = ContactEvent.from_payload(item.payload, item.location_id)
        await self._upsert_contact(event, item, event.present_fields("id"))

    async def contact_update(self, item: WorkItem) -> None:
        """Apply only the fields the payload carries; create the contact if unknown."""
        event = ContactEvent.from_payload(item.payload, item.location_id)
        fields = event.present_fields("id")

        existing = await self.ctx.repos.contacts.get_by_ghl_id(event.id, event.location_id)
        if existing is None:
            logger.info(f"Contact {event.id} not found for update, creating it")
            await self._upsert_contact(event, item, fields)
            return

        if "firstName" in fields or "lastName" in fields:
            fields["fullName"] = event.full_name or "Unknown"

        await self.ctx.repos.contacts.update_fields(
            filters.contact(event.id, event.location_id),
            {**fields, "lastWebhookUpdate": utcnow(), "webhookId": item.webhook_id}
        )
        await self.ctx.notifier.trigger(
            item.webhook_id,
            "contact-updated",
            "contact",
            event.location_id,
            {"contactId": existing.id, "ghlContactId": event.id, "changes": fields},
        )

    async def contact_delete(self, item: WorkItem) -> None:
        event = ContactEvent.from_payload(item.payload, item.location_id)
        matched = await self.ctx.repos.contacts.soft_delete(
            filters.contact(event.id, event.location_id),
            {"deletedByWebhook": item.webhook_id}
        )
        if not matched:
            logger.info(f"Contact {event.id} already absent, nothing to delete")

    async def contact_dnd_update(self, item: WorkItem) -> None:
        event = ContactEvent.from_payload(item.payload, item.location_id)
        await self._update_or_create(event, item, {
            "dnd": bool(event.dnd),
            "dndSettings": event.dnd_settings or {},
        })

    async def contact_tag_update(self, item: WorkItem) -> None:
        event = ContactEvent.from_payload(item.payload, item.location_id)
        await self._update_or_create(event, item, {"tags": event.tags or []})

    async def _update_or_create(self, event: ContactEvent, item: WorkItem, fields: dict) -> None:
        matched = await self.ctx.repos.contacts.update_fields(
            filters.contact(event.id, event.location_id),
            {**fields, "lastWebhookUpdate": utcnow(), "webhookId": item.webhook_id}
        )
        if not matched:
            await self._upsert_contact(event, item, event.present_fields("id"))

    async def _upsert_contact(self, event: ContactEvent, item: WorkItem, fields: dict) -> None:
        key = filters.contact(event.id, event.location_id)
        fields = {
            **fields,
            "fullName": event.full_name or "Unknown",
            "lastWebhookUpdate": utcnow(),
            "processedBy": "queue",
            "webhookId": item.webhook_id,
        }
        result = await self.ctx.repos.contacts.upsert(
            key,
            fields,
            {"createdByWebhook": item.webhook_id, "source": event.source or "webhook"},
        )

        await self.ctx.notifier.publish(
            location_channel(event.location_id),
            "contact-created" if result.created else "contact-updated",
            {
                "contact": {"_id": result.document_id, "ghlContactId": event.id, **fields},
                "timestamp": utcnow(),
            },
            dedup=DedupKey(event.id, "contact-created" if result.created else "contact-updated"),
        )
        await self.ctx.notifier.trigger(
            item.webhook_id,
            "contact-created" if result.created else "contact-updated",
            "contact",
            event.location_id,
            {"contactId": result.document_id, "ghlContactId": event.id, "contact": fields},
        )

    # ============================================
    # NOTES
    # ============================================

    async def note_create(self, item: WorkItem) -> None:
        event = NoteEvent.from_payload(item.payload, item.location_id)
        contact_id = await self.ctx.repos.contacts.resolve_id(event.contact_id, event.location_id)

        await self.ctx.repos.notes.upsert(
            filters.note(event.id, event.location_id),
            {
                "ghlContactId": event.contact_id,
                "contactId": contact_id,
                "body": event.body or "",
                "createdBy": event.user_id or "system",
                "processedBy": "queue",
            },
            {"createdByWebhook": item.webhook_id},
        )
        await self.ctx.repos.contacts.touch_activity(event.contact_id, event.location_id, "note_added")

    async def note_update(self, item: WorkItem) -> None:
        event = NoteEvent.from_payload(item.payload, item.location_id)
        key = filters.note(event.id, event.location_id)

        matched = await self.ctx.repos.notes.update_fields(
            key, {"body": event.body or "", "updatedByWebhook": item.webhook_id}
        )
        if not matched:
            await self.note_create(item)

    async def note_delete(self, item: WorkItem) -> None:
        event = NoteEvent.from_payload(item.payload, item.location_id)
        await self.ctx.repos.notes.soft_delete(
            filters.note(event.id, event.location_id),
            {"deletedByWebhook": item.webhook_id}
        )

    # ============================================
    # TASKS
    # ============================================

    async def task_create(self, item: WorkItem) -> None:
        event = TaskEvent.from_payload(item.payload, item.location_id)
        contact_id = await self.ctx.repos.contacts.resolve_id(event.contact_id, event.location_id)

        await self.ctx.repos.tasks.upsert(
            filters.task(event.id, event.location_id),
            {
                "ghlContactId": event.contact_id,
                "contactId": contact_id,
                "title": event.title or "Task",
                "description": event.body or "",
                "dueDate": event.due_date,
                "assignedTo": event.assigned_to,
                "status": "completed" if event.completed else "pending",
                "processedBy": "queue",
            },
            {"createdByWebhook": item.webhook_id},
        )
        await self.ctx.repos.contacts.touch_activity(event.contact_id, event.location_id, "task_created")

    async def task_complete(self, item: WorkItem) -> None:
        event = TaskEvent.from_payload(item.payload, item.location_id)
        matched = await self.ctx.repos.tasks.update_fields(
            filters.task(event.id, event.location_id),
            {"status": "completed", "completedAt": utcnow(), "completedByWebhook": item.webhook_id}
        )
        if not matched:
            await self.task_create(item)
            await self.ctx.repos.tasks.update_fields(
                filters.task(event.id, event.location_id),
                {"status": "completed", "completedAt": utcnow(), "completedByWebhook": item.webhook_id}
            )

    async def task_delete(self, item: WorkItem) -> None:
        event = TaskEvent.from_payload(item.payload, item.location_id)
        await self.ctx.repos.tasks.soft_delete(
            filters.task(event.id, event.location_id),
            {"deletedByWebhook": item.webhook_id}
        )
