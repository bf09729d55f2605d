"""
Appointments Processor

Appointment writes that touch a project timeline run in one transaction; push
notifications and channel publishes happen afterwards and never undo the write.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from loguru import logger

from src.models.base import utcnow
from src.models.entities import Appointment, TimelineEntry
from src.models.events import AppointmentEvent
from src.models.work_item import QueueType, WorkItem
from src.processors.base import BaseProcessor
from src.processors.context import ProcessorContext
from src.realtime.notifier import DedupKey
from src.realtime.publisher import location_channel, user_channel
from src.repositories import filters
from src.repositories.base import Session, as_object_id


@dataclass
class AppliedAppointment:
    document_id: str
    created: bool


def _format_time(event: AppointmentEvent) -> str:
    return event.start_time.strftime("%b %d, %I:%M %p") if event.start_time else "a new time"


class AppointmentsProcessor(BaseProcessor):

    queue_type = QueueType.APPOINTMENTS
    batch_size = 50

    def __init__(self, ctx: ProcessorContext, **kwargs):
        super().__init__(ctx, **kwargs)
        self.handlers = {
            "AppointmentCreate": self.appointment_create,
            "AppointmentUpdate": self.appointment_update,
            "AppointmentDelete": self.appointment_delete,
        }

    async def appointment_create(self, item: WorkItem) -> None:
        event = AppointmentEvent.from_payload(item.payload, item.location_id)
        applied = await self._apply_create(event, item)
        await self._notify_created(event, applied)

    async def appointment_update(self, item: WorkItem) -> None:
        """Partial update; falls back to create when the appointment is unknown."""
        event = AppointmentEvent.from_payload(item.payload, item.location_id)
        repo = self.ctx.repos.appointments

        previous = await repo.get_by_ghl_id(event.id, event.location_id)
        if previous is None:
            logger.info(f"Appointment {event.id} not found for update, creating it")
            applied = await self._apply_create(event, item)
            await self._notify_created(event, applied)
            return

        changes = event.present_fields("id", "contact_id")
        await repo.update_fields(
            filters.appointment(event.id, event.location_id),
            {**changes, "lastWebhookUpdate": utcnow(), "processedBy": "queue", "webhookId": item.webhook_id}
        )

        await self._notify_updated(event, previous, changes)

    async def appointment_delete(self, item: WorkItem) -> None:
        event = AppointmentEvent.from_payload(item.payload, item.location_id)
        existing = await self.ctx.repos.appointments.get_by_ghl_id(event.id, event.location_id)

        async def apply(session: Session) -> bool:
            matched = await self.ctx.repos.appointments.soft_delete(
                filters.appointment(event.id, event.location_id),
                {
                    "appointmentStatus": "cancelled",
                    "status": "cancelled",
                    "deletedByWebhook": item.webhook_id,
                },
                session=session,
            )
            if matched and existing is not None and existing.contact_id:
                await self._append_to_open_project(
                    existing.contact_id,
                    event.location_id,
                    TimelineEntry(
                        event="appointment_cancelled",
                        description=f"{existing.title or 'Appointment'} cancelled",
                        metadata={"appointmentId": event.id, "webhookId": item.webhook_id},
                    ),
                    session,
                )
            return matched

        if not await self.ctx.transactions.run(apply):
            logger.info(f"Appointment {event.id} already absent, nothing to cancel")
            return

        await self.ctx.notifier.publish(
            location_channel(event.location_id),
            "appointments.changed",
            {"action": "deleted", "appointmentId": existing.id if existing else event.id, "timestamp": utcnow()},
        )

    # ============================================
    # APPLY
    # ============================================

    async def _apply_create(self, event: AppointmentEvent, item: WorkItem) -> AppliedAppointment:
        contact_id = await self.ctx.repos.contacts.resolve_id(event.contact_id, event.location_id)

        fields: Dict[str, Any] = {
            "contactId": contact_id,
            "ghlContactId": event.contact_id,
            "calendarId": event.calendar_id,
            "groupId": event.group_id,
            "appointmentStatus": event.appointment_status,
            "title": event.title or "Appointment",
            "assignedUserId": event.assigned_user_id,
            "users": event.users or [],
            "notes": event.notes or "",
            "source": event.source or "webhook",
            "startTime": event.start_time,
            "endTime": event.end_time,
            "dateAdded": event.date_added or utcnow(),
            "address": event.address or "",
            "timezone": event.timezone or "UTC",
            "lastWebhookUpdate": utcnow(),
            "processedBy": "queue",
            "webhookId": item.webhook_id,
        }

        async def apply(session: Session) -> AppliedAppointment:
            result = await self.ctx.repos.appointments.upsert(
                filters.appointment(event.id, event.location_id),
                fields,
                {"createdByWebhook": item.webhook_id},
                session=session,
            )
            await self._append_to_open_project(
                contact_id,
                event.location_id,
                TimelineEntry(
                    event="appointment_scheduled",
                    description=f"{event.title or 'Appointment'} scheduled",
                    metadata={
                        "appointmentId": event.id,
                        "startTime": event.start_time,
                        "webhookId": item.webhook_id,
                    },
                ),
                session,
            )
            return AppliedAppointment(document_id=result.document_id, created=result.created)

        return await self.ctx.transactions.run(apply)

    async def _append_to_open_project(
        self,
        contact_id: Optional[str],
        location_id: str,
        entry: TimelineEntry,
        session: Session,
    ) -> bool:
        project = await self.ctx.repos.projects.find_open_for_contact(contact_id, location_id, session=session)
        if project is None:
            return False
        return await self.ctx.repos.projects.append_timeline(
            {"_id": as_object_id(project.id)},
            entry,
            unique_on={"event": entry.event, "metadata.appointmentId": entry.metadata["appointmentId"]},
            session=session,
        )

    # ============================================
    # NOTIFY
    # ============================================

    async def _notify_created(self, event: AppointmentEvent, applied: AppliedAppointment) -> None:
        notifier = self.ctx.notifier
        summary = {
            "_id": applied.document_id,
            "ghlAppointmentId": event.id,
            "title": event.title or "Appointment",
            "startTime": event.start_time,
            "endTime": event.end_time,
            "assignedUserId": event.assigned_user_id,
        }

        if event.assigned_user_id:
            await notifier.push(
                event.assigned_user_id,
                "New Appointment",
                f"{event.title or 'Appointment'} on {_format_time(event)}",
                {"type": "appointment", "action": "created", "appointmentId": applied.document_id},
            )
            await notifier.publish(
                user_channel(event.assigned_user_id),
                "appointment.created",
                {"appointment": summary, "timestamp": utcnow()},
            )

        await notifier.publish(
            location_channel(event.location_id),
            "appointments.changed",
            {"action": "created", "appointmentId": applied.document_id, "timestamp": utcnow()},
            dedup=DedupKey(event.id, "appointment-created"),
        )

    async def _notify_updated(
        self,
        event: AppointmentEvent,
        previous: Appointment,
        changes: Dict[str, Any],
    ) -> None:
        notifier = self.ctx.notifier
        title = event.title or previous.title or "Appointment"

        if event.assigned_user_id and event.assigned_user_id != previous.assigned_user_id:
            await notifier.push(
                event.assigned_user_id,
                "Appointment Assigned",
                f"{title} has been assigned to you",
                {"type": "appointment", "action": "assigned", "appointmentId": previous.id},
            )

        rescheduled = event.start_time is not None and event.start_time != previous.start_time
        if rescheduled and previous.assigned_user_id:
            await notifier.push(
                previous.assigned_user_id,
                "Appointment Rescheduled",
                f"{title} moved to {_format_time(event)}",
                {"type": "appointment", "action": "rescheduled", "appointmentId": previous.id},
            )

        await notifier.publish(
            location_channel(event.location_id),
            "appointments.changed",
            {"action": "updated", "appointmentId": previous.id, "changes": changes, "timestamp": utcnow()},
            dedup=DedupKey(event.id, "appointment-updated"),
        )
