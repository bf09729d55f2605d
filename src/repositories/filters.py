"""
Typed Filter Builders

One builder per entity producing a structured predicate, so handlers never
assemble raw query dicts for the (external id, locationId) key.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

# Project statuses considered still "open" for linking new activity
OPEN_PROJECT_STATUSES = ("open", "quoted", "won", "in_progress")


@dataclass(frozen=True)
class EntityFilter:
    key_field: str
    external_id: Optional[str]
    location_id: str
    exclude_deleted: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_query(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {self.key_field: self.external_id, "locationId": self.location_id}
        if self.exclude_deleted:
            query["deleted"] = {"$ne": True}
        query.update(self.extra)
        return query

    def key(self) -> Dict[str, Any]:
        """Fields to stamp onto a document created by upsert."""
        return {self.key_field: self.external_id, "locationId": self.location_id}


def contact(ghl_contact_id: str, location_id: str, exclude_deleted: bool = False) -> EntityFilter:
    return EntityFilter("ghlContactId", ghl_contact_id, location_id, exclude_deleted)


def note(ghl_note_id: str, location_id: str) -> EntityFilter:
    return EntityFilter("ghlNoteId", ghl_note_id, location_id)


def task(ghl_task_id: str, location_id: str) -> EntityFilter:
    return EntityFilter("ghlTaskId", ghl_task_id, location_id)


def appointment(ghl_appointment_id: str, location_id: str) -> EntityFilter:
    return EntityFilter("ghlAppointmentId", ghl_appointment_id, location_id)


def invoice(ghl_invoice_id: str, location_id: str) -> EntityFilter:
    return EntityFilter("ghlInvoiceId", ghl_invoice_id, location_id)


def order(ghl_order_id: str, location_id: str) -> EntityFilter:
    return EntityFilter("ghlOrderId", ghl_order_id, location_id)


def project(ghl_opportunity_id: str, location_id: str) -> EntityFilter:
    return EntityFilter("ghlOpportunityId", ghl_opportunity_id, location_id)


def open_project_for_contact(
    contact_id: str,
    location_id: str,
    statuses: Sequence[str] = OPEN_PROJECT_STATUSES
) -> EntityFilter:
    return EntityFilter(
        "contactId", contact_id, location_id,
        exclude_deleted=True,
        extra={"status": {"$in": list(statuses)}}
    )


def conversation(ghl_conversation_id: str, location_id: str) -> EntityFilter:
    return EntityFilter("ghlConversationId", ghl_conversation_id, location_id)


def message(ghl_message_id: str, location_id: str) -> EntityFilter:
    return EntityFilter("ghlMessageId", ghl_message_id, location_id)


def user(ghl_user_id: str, location_id: str) -> EntityFilter:
    return EntityFilter("ghlUserId", ghl_user_id, location_id)
