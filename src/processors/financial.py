"""
Financial Processor

Invoices, orders and catalog events. Invoice writes tied to an opportunity
append a timeline entry to the matching project in the same transaction.
"""

from typing import Any, Dict, Optional, Tuple

from loguru import logger

from src.models.base import utcnow
from src.models.entities import Project, TimelineEntry
from src.models.events import CatalogEvent, InvoiceEvent, OrderEvent, unwrap_envelope
from src.models.work_item import QueueType, WorkItem
from src.processors.base import BaseProcessor
from src.processors.context import ProcessorContext
from src.realtime.notifier import DedupKey
from src.realtime.publisher import location_channel, project_channel
from src.repositories import filters
from src.repositories.base import Session, as_object_id

CATALOG_ARCHIVES = {
    "Product": "product_events",
    "Price": "price_events",
}


class FinancialProcessor(BaseProcessor):

    queue_type = QueueType.FINANCIAL
    batch_size = 30

    def __init__(self, ctx: ProcessorContext, **kwargs):
        super().__init__(ctx, **kwargs)
        self.handlers = {
            "InvoiceCreate": self.invoice_create,
            "InvoiceUpdate": self.invoice_update,
            "InvoiceDelete": self.invoice_delete,
            "InvoiceSent": self.invoice_sent,
            "InvoiceVoid": self.invoice_void,
            "InvoicePaid": self.invoice_paid,
            "InvoicePartiallyPaid": self.invoice_partially_paid,
            "OrderCreate": self.order_create,
            "OrderStatusUpdate": self.order_status_update,
        }
        for prefix in CATALOG_ARCHIVES:
            for action in ("Create", "Update", "Delete"):
                self.handlers[f"{prefix}{action}"] = self.catalog_event

    # ============================================
    # INVOICES
    # ============================================

    async def invoice_create(self, item: WorkItem) -> None:
        event = InvoiceEvent.from_payload(item.payload, item.location_id)
        await self._apply_invoice(event, item, self._invoice_fields(event), "invoice_created")

    async def invoice_update(self, item: WorkItem) -> None:
        """Partial update; falls back to create when the invoice is unknown."""
        event = InvoiceEvent.from_payload(item.payload, item.location_id)
        matched = await self.ctx.repos.invoices.update_fields(
            filters.invoice(event.id, event.location_id),
            {**event.present_fields("id"), **self._stamp(item)}
        )
        if not matched:
            logger.info(f"Invoice {event.id} not found for update, creating it")
            await self._apply_invoice(event, item, self._invoice_fields(event), "invoice_created")

    async def invoice_delete(self, item: WorkItem) -> None:
        event = InvoiceEvent.from_payload(item.payload, item.location_id)
        matched = await self.ctx.repos.invoices.soft_delete(
            filters.invoice(event.id, event.location_id),
            {"status": "deleted", "deletedByWebhook": item.webhook_id, "processedBy": "queue"}
        )
        if not matched:
            logger.info(f"Invoice {event.id} already absent, nothing to delete")

    async def invoice_sent(self, item: WorkItem) -> None:
        event = InvoiceEvent.from_payload(item.payload, item.location_id)
        fields = {
            **self._invoice_fields(event),
            "status": "sent",
            "sentAt": event.sent_at or utcnow(),
        }
        await self._apply_invoice(event, item, fields, "invoice_sent")

    async def invoice_void(self, item: WorkItem) -> None:
        event = InvoiceEvent.from_payload(item.payload, item.location_id)
        matched = await self.ctx.repos.invoices.update_fields(
            filters.invoice(event.id, event.location_id),
            {"status": "void", "voidedAt": utcnow(), "voidedByWebhook": item.webhook_id, **self._stamp(item)}
        )
        if not matched:
            logger.info(f"Invoice {event.id} not found to void")

    async def invoice_paid(self, item: WorkItem) -> None:
        """
        Mark an invoice paid, creating it if this is the first event seen for it,
        and record the payment on the linked project's timeline.
        """
        event = InvoiceEvent.from_payload(item.payload, item.location_id)
        paid_amount = event.total if event.total is not None else event.amount_paid

        fields = {
            **self._invoice_fields(event),
            "status": "paid",
            "paidAt": utcnow(),
            "amountPaid": paid_amount or 0,
            "amountDue": 0,
        }
        if event.payment_method:
            fields["paymentMethod"] = event.payment_method

        invoice_id, project = await self._apply_invoice(event, item, fields, "invoice_paid")

        await self.ctx.notifier.publish(
            location_channel(event.location_id),
            "invoices.changed",
            {"action": "paid", "invoiceId": invoice_id, "timestamp": utcnow()},
            dedup=DedupKey(event.id, "invoice-paid"),
        )
        payment_type = "deposit" if project is not None else "payment"
        await self.ctx.notifier.trigger(
            item.webhook_id,
            "payment-received",
            "payment",
            event.location_id,
            {
                "paymentId": invoice_id,
                "ghlInvoiceId": event.id,
                "projectId": project.id if project else None,
                "ghlContactId": event.contact_id,
                "amount": paid_amount,
                "paymentType": payment_type,
                "payment": {"type": payment_type, "amount": paid_amount, "method": event.payment_method or "online"},
            },
        )
        if project is None:
            return

        await self.ctx.notifier.publish(
            project_channel(project.id),
            "invoice:paid",
            {
                "invoice": {"_id": invoice_id, "ghlInvoiceId": event.id, "total": event.total, "amountPaid": paid_amount},
                "timestamp": utcnow(),
            },
        )
        if project.assigned_to:
            await self.ctx.notifier.push(
                project.assigned_to,
                "Payment Received",
                f"{_money(paid_amount)} received for {project.title or 'a project'}",
                {"type": "payment", "invoiceId": invoice_id, "projectId": project.id},
            )

    async def invoice_partially_paid(self, item: WorkItem) -> None:
        event = InvoiceEvent.from_payload(item.payload, item.location_id)

        amount_paid = event.amount_paid or 0
        amount_due = event.amount_due
        if amount_due is None and event.total is not None:
            amount_due = event.total - amount_paid

        payment = {
            "amount": event.last_payment_amount or 0,
            "date": utcnow(),
            "method": event.payment_method or "unknown",
            "reference": event.payment_reference or "",
            "webhookId": item.webhook_id,
        }
        key = filters.invoice(event.id, event.location_id)
        # A payment is recorded once per webhook
        matched = await self.ctx.repos.invoices.update_fields(
            {**key.to_query(), "payments.webhookId": {"$ne": item.webhook_id}},
            {
                "status": "partially_paid",
                "amountPaid": amount_paid,
                "amountDue": amount_due,
                "lastPaymentDate": utcnow(),
                **self._stamp(item),
            },
            push={"payments": payment},
        )
        if not matched and await self.ctx.repos.invoices.get_by_ghl_id(event.id, event.location_id) is None:
            fields = {
                **self._invoice_fields(event),
                "status": "partially_paid",
                "amountPaid": amount_paid,
                "amountDue": amount_due,
                "lastPaymentDate": utcnow(),
                "payments": [payment],
            }
            await self._apply_invoice(event, item, fields, "invoice_partially_paid")

    def _invoice_fields(self, event: InvoiceEvent) -> Dict[str, Any]:
        total = event.total or 0
        return {
            "ghlContactId": event.contact_id,
            "opportunityId": event.opportunity_id,
            "name": event.name,
            "invoiceNumber": event.invoice_number,
            "status": event.status or "draft",
            "currency": event.currency or "USD",
            "total": total,
            "amountPaid": event.amount_paid or 0,
            "amountDue": event.amount_due if event.amount_due is not None else total,
            "items": event.items or [],
            "discount": event.discount,
            "termsNotes": event.terms_notes or "",
            "dueDate": event.due_date,
            "issueDate": event.issue_date or utcnow(),
        }

    @staticmethod
    def _stamp(item: WorkItem) -> Dict[str, Any]:
        return {"lastWebhookUpdate": utcnow(), "processedBy": "queue", "webhookId": item.webhook_id}

    async def _apply_invoice(
        self,
        event: InvoiceEvent,
        item: WorkItem,
        fields: Dict[str, Any],
        timeline_event: str,
    ) -> Tuple[str, Optional[Project]]:
        """
        Upsert the invoice and, when it names an opportunity, link it to that
        project and append `timeline_event` to the project's timeline.

        Returns:
            (invoice document id, linked project or None)
        """
        contact_id = await self.ctx.repos.contacts.resolve_id(event.contact_id, event.location_id)

        async def apply(session: Session) -> Tuple[str, Optional[Project]]:
            project = None
            if event.opportunity_id:
                project = await self.ctx.repos.projects.get_by_opportunity(
                    event.opportunity_id, event.location_id, session=session
                )

            set_fields = {**fields, "contactId": contact_id, **self._stamp(item)}
            if project is not None:
                set_fields["projectId"] = project.id

            result = await self.ctx.repos.invoices.upsert(
                filters.invoice(event.id, event.location_id),
                set_fields,
                {"createdByWebhook": item.webhook_id},
                session=session,
            )

            if project is not None:
                label = event.invoice_number or event.id
                await self.ctx.repos.projects.append_timeline(
                    {"_id": as_object_id(project.id)},
                    TimelineEntry(
                        event=timeline_event,
                        description=f"Invoice {label} - {timeline_event.replace('_', ' ')}",
                        metadata={
                            "invoiceId": event.id,
                            "amount": event.total,
                            "status": fields.get("status"),
                            "webhookId": item.webhook_id,
                        },
                    ),
                    {"lastFinancialUpdate": utcnow()},
                    unique_on={"event": timeline_event, "metadata.invoiceId": event.id},
                    session=session,
                )
            elif event.opportunity_id:
                logger.warning(
                    f"No project for opportunity {event.opportunity_id}, invoice {event.id} left unlinked",
                    extra={"location_id": event.location_id}
                )

            return result.document_id, project

        return await self.ctx.transactions.run(apply)

    # ============================================
    # ORDERS
    # ============================================

    async def order_create(self, item: WorkItem) -> None:
        event = OrderEvent.from_payload(item.payload, item.location_id)
        contact_id = await self.ctx.repos.contacts.resolve_id(event.contact_id, event.location_id)

        await self.ctx.repos.orders.upsert(
            filters.order(event.id, event.location_id),
            {
                "ghlContactId": event.contact_id,
                "contactId": contact_id,
                "orderNumber": event.order_number,
                "status": event.status or "pending",
                "paymentStatus": event.payment_status or "pending",
                "fulfillmentStatus": event.fulfillment_status or "unfulfilled",
                "amount": event.amount or 0,
                "currency": event.currency or "USD",
                "items": event.items or [],
                "source": event.source or {},
                **self._stamp(item),
            },
            {"createdByWebhook": item.webhook_id},
        )

    async def order_status_update(self, item: WorkItem) -> None:
        event = OrderEvent.from_payload(item.payload, item.location_id)

        fields = {
            key: value
            for key, value in event.present_fields().items()
            if key in ("status", "paymentStatus", "fulfillmentStatus") and value is not None
        }
        matched = await self.ctx.repos.orders.update_fields(
            filters.order(event.id, event.location_id),
            {**fields, "statusUpdatedAt": utcnow(), **self._stamp(item)}
        )
        if not matched:
            logger.info(f"Order {event.id} not found for status update, creating it")
            await self.order_create(item)

    # ============================================
    # CATALOG
    # ============================================

    async def catalog_event(self, item: WorkItem) -> None:
        """Products and prices are archived raw."""
        event = CatalogEvent.from_payload(item.payload, item.location_id)
        data, _ = unwrap_envelope(item.payload)
        collection = next(
            name for prefix, name in CATALOG_ARCHIVES.items() if item.type.startswith(prefix)
        )

        await self.ctx.repos.archive.append(collection, {
            "type": item.type,
            "entityId": event.id,
            "payload": data,
            "locationId": event.location_id,
            "webhookId": item.webhook_id,
            "processedAt": utcnow(),
            "processedBy": "queue",
        })


def _money(amount: Optional[float]) -> str:
    return f"${amount or 0:,.2f}"
