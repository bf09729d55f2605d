"""
Messages Processor

Inbound and outbound conversation messages, unread counters and email
delivery stats.

Message handling runs in three steps:
    1. find or create the contact and fetch the email body when the location
       has CRM credentials (outside the transaction, may raise TransientError)
    2. transaction: conversation upsert, message insert, project link
    3. notify: dedup-gated channel publishes and a push to the assigned user
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from loguru import logger

from src.models.base import utcnow
from src.models.entities import Contact
from src.models.events import ConversationUnreadEvent, EmailStatsEvent, MessageEvent, unwrap_envelope
from src.models.work_item import QueueType, WorkItem
from src.processors.base import BaseProcessor
from src.processors.context import ProcessorContext
from src.realtime.publisher import location_channel, user_channel
from src.repositories import filters
from src.repositories.base import Session

SMS, EMAIL, WHATSAPP = 1, 3, 4

CONVERSATION_TYPES: Dict[int, str] = {
    1: "TYPE_PHONE",
    3: "TYPE_EMAIL",
    4: "TYPE_WHATSAPP",
    5: "TYPE_GMB",
    6: "TYPE_FB",
    7: "TYPE_IG",
}

MESSAGE_TYPE_NAMES: Dict[int, str] = {
    1: "SMS",
    3: "Email",
    4: "WhatsApp",
    5: "Google My Business",
    6: "Facebook",
    7: "Instagram",
    24: "Activity - Appointment",
    25: "Activity - Contact",
    26: "Activity - Invoice",
    27: "Activity - Opportunity",
}

PREVIEW_LENGTH = 200


@dataclass
class AppliedMessage:
    message_id: str
    conversation_id: str
    project_id: Optional[str]
    unread_count: int
    document: Dict[str, Any]
    created: bool = True


class MessagesProcessor(BaseProcessor):

    queue_type = QueueType.MESSAGES
    batch_size = 50

    def __init__(self, ctx: ProcessorContext, **kwargs):
        super().__init__(ctx, **kwargs)
        self.handlers = {
            "InboundMessage": self.inbound_message,
            "OutboundMessage": self.outbound_message,
            "ConversationProviderOutboundMessage": self.outbound_message,
            "ConversationUnreadUpdate": self.conversation_unread_update,
            "LCEmailStats": self.email_stats,
        }

    # ============================================
    # MESSAGES
    # ============================================

    async def inbound_message(self, item: WorkItem) -> None:
        event = MessageEvent.from_payload(item.payload, item.location_id)
        contact = await self._find_or_create_contact(event, item)
        document = await self._build_message(event, item, contact, "inbound")
        document["senderId"] = contact.id

        applied = await self.ctx.transactions.run(
            lambda session: self._apply(event, item, contact, document, "inbound", session)
        )

        if applied.created and event.channel_code == SMS and contact.phone:
            await self.ctx.notifier.trigger(
                item.webhook_id,
                "sms-received",
                "message",
                event.location_id,
                {
                    "contactId": contact.id,
                    "messageId": applied.message_id,
                    "message": document.get("body") or "",
                    "phone": contact.phone,
                    "contact": _contact_summary(contact),
                },
            )

        dedup_id = event.message_id or item.webhook_id
        if not await self.ctx.dedup.should_publish(dedup_id, "message:inbound"):
            return

        message = {**applied.document, "_id": applied.message_id, "conversationId": applied.conversation_id}
        conversation = {
            "id": applied.conversation_id,
            "contactObjectId": contact.id,
            "unreadCount": applied.unread_count,
        }

        if contact.assigned_to:
            await self.ctx.notifier.publish(
                user_channel(contact.assigned_to),
                "message-received",
                {"message": message, "contact": _contact_summary(contact), "conversation": conversation, "timestamp": utcnow()},
            )
            await self.ctx.notifier.push(
                contact.assigned_to,
                f"New message from {contact.display_name}",
                _preview(document.get("body") or document.get("subject") or "", 100),
                {
                    "type": "message",
                    "conversationId": applied.conversation_id,
                    "contactId": contact.id,
                    "messageType": document.get("messageType"),
                },
            )

        await self.ctx.notifier.publish(
            location_channel(event.location_id),
            "message-received",
            {"message": message, "contactId": contact.id, "timestamp": utcnow()},
        )

    async def outbound_message(self, item: WorkItem) -> None:
        event = MessageEvent.from_payload(item.payload, item.location_id)
        contact = await self._find_or_create_contact(event, item)
        document = await self._build_message(event, item, contact, "outbound")

        sender = None
        if event.user_id:
            sender = await self.ctx.repos.users.get_by_ghl_id(event.user_id, event.location_id)
        document["senderId"] = sender.id if sender else None
        document["ghlUserId"] = event.user_id

        applied = await self.ctx.transactions.run(
            lambda session: self._apply(event, item, contact, document, "outbound", session)
        )

        dedup_id = event.message_id or item.webhook_id
        if not await self.ctx.dedup.should_publish(dedup_id, "message:outbound"):
            return

        message = {**applied.document, "_id": applied.message_id, "conversationId": applied.conversation_id}
        if event.user_id:
            await self.ctx.notifier.publish(
                user_channel(event.user_id),
                "message-sent",
                {"message": message, "contact": _contact_summary(contact), "timestamp": utcnow()},
            )
        await self.ctx.notifier.publish(
            location_channel(event.location_id),
            "message-sent",
            {"message": message, "contactId": contact.id, "timestamp": utcnow()},
        )

    async def _find_or_create_contact(self, event: MessageEvent, item: WorkItem) -> Contact:
        """
        Resolve the message's contact, creating a minimal record when it is
        unknown. Concurrent creators converge on one document through the
        unique (ghlContactId, locationId) key.
        """
        contacts = self.ctx.repos.contacts
        contact = await contacts.get_by_ghl_id(event.contact_id, event.location_id)
        if contact is not None:
            return contact

        first = event.contact_first_name or ""
        last = event.contact_last_name or ""
        full_name = f"{first} {last}".strip() or "Unknown Contact"

        await contacts.upsert(
            filters.contact(event.contact_id, event.location_id),
            {},
            {
                "firstName": first,
                "lastName": last,
                "fullName": full_name,
                "email": event.contact_email or "",
                "phone": event.contact_phone or "",
                "createdByWebhook": item.webhook_id,
                "needsSync": True,
                "source": "message",
            },
        )
        logger.info(
            f"Created contact {event.contact_id} from message",
            extra={"location_id": event.location_id, "webhook_id": item.webhook_id}
        )
        return await contacts.get_by_ghl_id(event.contact_id, event.location_id)

    async def _build_message(
        self,
        event: MessageEvent,
        item: WorkItem,
        contact: Contact,
        direction: str,
    ) -> Dict[str, Any]:
        channel = event.channel_code
        document: Dict[str, Any] = {
            "ghlMessageId": event.message_id or item.webhook_id,
            "ghlConversationId": event.conversation_id,
            "locationId": event.location_id,
            "contactObjectId": contact.id,
            "ghlContactId": event.contact_id,
            "type": channel,
            "messageType": event.message_type if isinstance(event.message_type, str) else CONVERSATION_TYPES.get(channel, "TYPE_PHONE"),
            "direction": direction,
            "dateAdded": event.date_added or event.timestamp or utcnow(),
            "read": direction == "outbound",
            "processedBy": "queue",
            "webhookId": item.webhook_id,
        }

        if channel == SMS:
            document.update({
                "body": event.body or "",
                "status": event.status or ("received" if direction == "inbound" else "sent"),
                "segments": event.segments or 1,
            })
        elif channel == EMAIL:
            document.update(await self._email_content(event))
        elif channel == WHATSAPP:
            document.update({
                "body": event.body or "",
                "mediaUrl": event.media_url,
                "mediaType": event.media_type,
            })
        else:
            document.update({"body": event.body or "", "meta": event.meta})

        if event.attachments:
            document["attachments"] = event.attachments
        return document

    async def _email_content(self, event: MessageEvent) -> Dict[str, Any]:
        """
        Email fields for the message document.

        Only a reference is delivered for most emails; the body is fetched from
        the CRM API when the location has an access token, otherwise a stub
        flagged `needsContentFetch` is stored.

        Raises:
            TransientError: CRM API timeout
        """
        email_message_id = event.email_message_id
        if not email_message_id:
            return {
                "subject": event.subject or "No subject",
                "body": event.body or "",
                "htmlBody": event.html_body,
            }

        fields: Dict[str, Any] = {
            "emailMessageId": email_message_id,
            "subject": event.subject or "No subject",
            "body": event.body or "",
            "needsContentFetch": True,
        }

        location = await self.ctx.repos.locations.get(event.location_id)
        if location is None or not location.access_token:
            logger.info(
                f"No CRM credentials for {event.location_id}, storing email {email_message_id} as stub",
                extra={"location_id": event.location_id}
            )
            return fields

        content = await self.ctx.crm.fetch_email(email_message_id, location.access_token)
        if content is not None:
            fields.update({
                "subject": content.subject,
                "body": content.body,
                "htmlBody": content.html_body,
                "needsContentFetch": False,
                "emailFetchedAt": utcnow(),
            })
        return fields

    async def _apply(
        self,
        event: MessageEvent,
        item: WorkItem,
        contact: Contact,
        document: Dict[str, Any],
        direction: str,
        session: Session,
    ) -> AppliedMessage:
        channel = event.channel_code
        inbound = direction == "inbound"

        on_insert: Dict[str, Any] = {
            "inbox": True,
            "starred": False,
            "tags": [],
            "followers": [],
            "dateAdded": document["dateAdded"],
            "createdByWebhook": item.webhook_id,
            "unreadCount": 0,
        }

        conversations = self.ctx.repos.conversations
        key = filters.conversation(event.conversation_id, event.location_id)
        result = await conversations.upsert(
            key,
            {
                "contactObjectId": contact.id,
                "ghlContactId": event.contact_id,
                "type": CONVERSATION_TYPES.get(channel, "TYPE_OTHER"),
                "lastMessageDate": utcnow(),
                "lastMessageBody": _preview(document.get("body") or "", PREVIEW_LENGTH),
                "lastMessageType": MESSAGE_TYPE_NAMES.get(channel, f"Type {channel}"),
                "lastMessageDirection": direction,
                "contactName": contact.display_name,
                "contactEmail": contact.email,
                "contactPhone": contact.phone,
            },
            on_insert,
            session=session,
        )

        project = await self.ctx.repos.projects.find_open_for_contact(contact.id, event.location_id, session=session)
        document = {
            **document,
            "conversationId": result.document_id,
            "projectId": project.id if project else None,
        }
        stored = await self.ctx.repos.messages.insert(document, session=session)
        # A redelivered message must not count as unread twice
        if inbound and stored.created:
            await conversations.increment_unread(result.document_id, session=session)

        conversation = await conversations.find_one(key, session=session)
        return AppliedMessage(
            message_id=stored.document_id,
            conversation_id=result.document_id,
            project_id=document["projectId"],
            unread_count=conversation.unread_count if conversation else 0,
            document=document,
            created=stored.created,
        )

    # ============================================
    # CONVERSATIONS & EMAIL STATS
    # ============================================

    async def conversation_unread_update(self, item: WorkItem) -> None:
        event = ConversationUnreadEvent.from_payload(item.payload, item.location_id)
        matched = await self.ctx.repos.conversations.set_unread_count(
            event.conversation_id, event.location_id, event.unread_count
        )
        if not matched:
            logger.info(f"Conversation {event.conversation_id} not found for unread update")

    async def email_stats(self, item: WorkItem) -> None:
        """Archive a delivery event and stamp it on the email message, if known."""
        event = EmailStatsEvent.from_payload(item.payload, item.location_id)
        data, _ = unwrap_envelope(item.payload)
        occurred_at = event.timestamp or utcnow()

        await self.ctx.repos.archive.append("email_stats", {
            "webhookId": item.webhook_id,
            "locationId": event.location_id,
            "emailId": event.id,
            "event": event.event,
            "timestamp": occurred_at,
            "recipient": event.recipient,
            "tags": event.tags,
            "campaigns": event.campaigns,
            "deliveryStatus": event.delivery_status,
            "metadata": data,
            "processedAt": utcnow(),
            "processedBy": "queue",
        })

        await self.ctx.repos.messages.update_email_status(event.id, event.event, occurred_at)


def _preview(text: str, length: int) -> str:
    return text[:length]


def _contact_summary(contact: Contact) -> Dict[str, Any]:
    return {"id": contact.id, "name": contact.display_name, "phone": contact.phone}
