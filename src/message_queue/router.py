"""
Webhook Router

Classifies an incoming webhook type into a queue and priority, records its
arrival in analytics and enqueues it. Lower priority numbers are claimed first.
"""

from typing import Dict, Optional, Tuple

from loguru import logger

from src.analytics.recorder import AnalyticsRecorder
from src.message_queue.base import WorkQueue
from src.models.work_item import IncomingWebhook, QueueType, WorkItem

Route = Tuple[QueueType, int]

DEFAULT_ROUTE: Route = (QueueType.GENERAL, 5)

ROUTES: Dict[str, Route] = {
    # Account lifecycle
    "INSTALL": (QueueType.CRITICAL, 1),
    "UNINSTALL": (QueueType.CRITICAL, 1),
    "PLAN_CHANGE": (QueueType.CRITICAL, 1),
    "EXTERNAL_AUTH_CONNECTED": (QueueType.CRITICAL, 1),
    "UserCreate": (QueueType.CRITICAL, 1),

    # Conversations
    "InboundMessage": (QueueType.MESSAGES, 2),
    "OutboundMessage": (QueueType.MESSAGES, 2),
    "ConversationUnreadUpdate": (QueueType.MESSAGES, 2),
    "ConversationProviderOutboundMessage": (QueueType.MESSAGES, 2),
    "LCEmailStats": (QueueType.MESSAGES, 2),

    # Contacts, notes, tasks
    "ContactCreate": (QueueType.CONTACTS, 3),
    "ContactUpdate": (QueueType.CONTACTS, 3),
    "ContactDelete": (QueueType.CONTACTS, 3),
    "ContactDndUpdate": (QueueType.CONTACTS, 3),
    "ContactTagUpdate": (QueueType.CONTACTS, 3),
    "NoteCreate": (QueueType.CONTACTS, 3),
    "NoteUpdate": (QueueType.CONTACTS, 3),
    "NoteDelete": (QueueType.CONTACTS, 3),
    "TaskCreate": (QueueType.CONTACTS, 3),
    "TaskComplete": (QueueType.CONTACTS, 3),
    "TaskDelete": (QueueType.CONTACTS, 3),

    # Appointments
    "AppointmentCreate": (QueueType.APPOINTMENTS, 3),
    "AppointmentUpdate": (QueueType.APPOINTMENTS, 3),
    "AppointmentDelete": (QueueType.APPOINTMENTS, 3),

    # Opportunities
    "OpportunityCreate": (QueueType.PROJECTS, 3),
    "OpportunityUpdate": (QueueType.PROJECTS, 3),
    "OpportunityDelete": (QueueType.PROJECTS, 3),
    "OpportunityStatusUpdate": (QueueType.PROJECTS, 3),
    "OpportunityStageUpdate": (QueueType.PROJECTS, 3),
    "OpportunityMonetaryValueUpdate": (QueueType.PROJECTS, 3),
    "OpportunityAssignedToUpdate": (QueueType.PROJECTS, 3),

    # Invoices, orders, catalog
    "InvoiceCreate": (QueueType.FINANCIAL, 3),
    "InvoiceUpdate": (QueueType.FINANCIAL, 3),
    "InvoiceDelete": (QueueType.FINANCIAL, 3),
    "InvoiceSent": (QueueType.FINANCIAL, 3),
    "InvoiceVoid": (QueueType.FINANCIAL, 3),
    "InvoicePaid": (QueueType.FINANCIAL, 3),
    "InvoicePartiallyPaid": (QueueType.FINANCIAL, 3),
    "OrderCreate": (QueueType.FINANCIAL, 3),
    "OrderStatusUpdate": (QueueType.FINANCIAL, 3),
    "ProductCreate": (QueueType.FINANCIAL, 3),
    "ProductUpdate": (QueueType.FINANCIAL, 3),
    "ProductDelete": (QueueType.FINANCIAL, 3),
    "PriceCreate": (QueueType.FINANCIAL, 3),
    "PriceUpdate": (QueueType.FINANCIAL, 3),
    "PriceDelete": (QueueType.FINANCIAL, 3),

    # Tenant records
    "LocationCreate": (QueueType.GENERAL, 1),
    "LocationUpdate": (QueueType.GENERAL, 1),

    # Archive-only events
    "CampaignStatusUpdate": (QueueType.GENERAL, 5),
    "ObjectSchemaCreate": (QueueType.GENERAL, 5),
    "UpdateCustomObject": (QueueType.GENERAL, 5),
    "RecordCreate": (QueueType.GENERAL, 5),
    "RecordUpdate": (QueueType.GENERAL, 5),
    "DeleteRecord": (QueueType.GENERAL, 5),
    "AssociationCreated": (QueueType.GENERAL, 5),
    "AssociationUpdated": (QueueType.GENERAL, 5),
    "AssociationDeleted": (QueueType.GENERAL, 5),
    "RelationCreate": (QueueType.GENERAL, 5),
    "RelationDelete": (QueueType.GENERAL, 5),
}


def classify(webhook_type: str) -> Route:
    """Queue type and priority for a webhook type; unknown types go to general."""
    return ROUTES.get(webhook_type, DEFAULT_ROUTE)


def types_for_queue(queue_type: QueueType) -> set[str]:
    return {t for t, (qt, _) in ROUTES.items() if qt == queue_type}


class WebhookRouter:
    """
    Ingestion entry point.

    Attributes:
        queue: Work queue items are enqueued on
        analytics: Recorder notified of each arrival
    """

    def __init__(self, queue: WorkQueue, analytics: Optional[AnalyticsRecorder] = None):
        self.queue = queue
        self.analytics = analytics

    async def route(self, webhook: IncomingWebhook) -> WorkItem:
        """
        Classify and enqueue a webhook.

        An explicit priority on the webhook overrides the classified one.

        Raises:
            DuplicateWebhookError: If the webhook id is already queued
        """
        queue_type, priority = classify(webhook.type)
        if webhook.priority is not None:
            priority = webhook.priority

        if webhook.type not in ROUTES:
            logger.info(
                f"Unknown webhook type {webhook.type}, routing to general",
                extra={"webhook_id": webhook.webhook_id}
            )

        item = await self.queue.enqueue(webhook, queue_type, priority)

        if self.analytics is not None:
            try:
                await self.analytics.record_received(
                    webhook.webhook_id,
                    webhook.type,
                    queue_type,
                    webhook.location_id,
                    received_at=item.received_at,
                )
            except Exception as e:
                logger.warning(f"Analytics arrival write failed for {webhook.webhook_id}: {e}")

        return item
