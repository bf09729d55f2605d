"""
Canonical Webhook Events

Upstream delivers the same event either wrapped in a
`{webhookPayload: {...}, locationId}` envelope or as a flattened object, and
renames fields between versions. Every processor handler turns the raw payload
into one of the models below through `from_payload`, so handler code only ever
sees one shape.

Partial updates rely on pydantic's field-set tracking: `present_fields()` dumps
only the fields the payload actually carried, under their camelCase names.
"""
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from src.errors import ValidationError
from src.models.base import UtcDatetime


def unwrap_envelope(payload: Optional[Dict[str, Any]]) -> Tuple[Dict[str, Any], Optional[str]]:
    """
    Split a raw payload into its event data and tenant id.

    Nested form: data is `webhookPayload`, locationId prefers the envelope.
    Flattened form: data is the payload itself.
    """
    payload = payload or {}
    nested = payload.get("webhookPayload")
    if isinstance(nested, dict):
        return nested, payload.get("locationId") or nested.get("locationId")
    return payload, payload.get("locationId")


class WebhookEvent(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore"
    )

    # Key of a sub-object whose fields are lifted over the top level
    nested_key: ClassVar[Optional[str]] = None

    location_id: Optional[str] = None
    timestamp: Optional[UtcDatetime] = None

    @classmethod
    def _normalize(cls, body: Dict[str, Any]) -> Dict[str, Any]:
        return body

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]], location_id: Optional[str] = None):
        """
        Build the canonical event from either payload shape.

        Args:
            payload: Raw webhook payload as stored on the work item
            location_id: Fallback tenant id from the work item

        Raises:
            ValidationError: Required field missing or malformed
        """
        data, envelope_location = unwrap_envelope(payload)
        body = dict(data)

        if cls.nested_key and isinstance(data.get(cls.nested_key), dict):
            body.pop(cls.nested_key)
            body.update(data[cls.nested_key])

        resolved_location = envelope_location or body.get("locationId") or location_id
        if resolved_location:
            body["locationId"] = resolved_location

        try:
            return cls.model_validate(cls._normalize(body))
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or None
            raise ValidationError(
                f"{cls.__name__}: {field} {first['msg']}".strip(),
                field=field
            ) from e

    def present_fields(self, *exclude: str) -> Dict[str, Any]:
        """Fields carried by the payload, camelCased, minus `exclude` (field names)."""
        return self.model_dump(
            by_alias=True,
            exclude_unset=True,
            exclude={"location_id", "timestamp", *exclude}
        )


# ============================================
# CONTACTS
# ============================================

class ContactEvent(WebhookEvent):
    id: str
    location_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company_name: Optional[str] = None
    address1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    website: Optional[str] = None
    timezone: Optional[str] = None
    source: Optional[str] = Field(None, validation_alias=AliasChoices("source", "contactSource"))
    type: Optional[str] = None
    tags: Optional[List[str]] = None
    assigned_to: Optional[str] = None
    dnd: Optional[bool] = None
    dnd_settings: Optional[Dict[str, Any]] = None
    custom_fields: Optional[Any] = None
    date_of_birth: Optional[str] = None
    date_added: Optional[UtcDatetime] = None

    @property
    def full_name(self) -> str:
        combined = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return combined or (self.name or "")


class NoteEvent(WebhookEvent):
    nested_key: ClassVar[Optional[str]] = "note"

    id: str
    location_id: str
    contact_id: Optional[str] = None
    body: Optional[str] = None
    user_id: Optional[str] = Field(None, validation_alias=AliasChoices("userId", "createdBy", "user_id"))
    date_added: Optional[UtcDatetime] = None


class TaskEvent(WebhookEvent):
    nested_key: ClassVar[Optional[str]] = "task"

    id: str
    location_id: str
    contact_id: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = Field(None, validation_alias=AliasChoices("body", "description"))
    assigned_to: Optional[str] = Field(
        None, validation_alias=AliasChoices("assignedTo", "assignedUserId", "assigned_to")
    )
    due_date: Optional[UtcDatetime] = None
    completed: Optional[bool] = None
    date_added: Optional[UtcDatetime] = None


# ============================================
# APPOINTMENTS
# ============================================

class AppointmentEvent(WebhookEvent):
    nested_key: ClassVar[Optional[str]] = "appointment"

    id: str
    location_id: str
    contact_id: Optional[str] = None
    calendar_id: Optional[str] = None
    group_id: Optional[str] = None
    title: Optional[str] = None
    appointment_status: Optional[str] = Field(
        None, validation_alias=AliasChoices("appointmentStatus", "status", "appointment_status")
    )
    assigned_user_id: Optional[str] = None
    users: Optional[List[str]] = None
    notes: Optional[str] = None
    source: Optional[str] = None
    address: Optional[str] = Field(None, validation_alias=AliasChoices("address", "location"))
    timezone: Optional[str] = Field(
        None, validation_alias=AliasChoices("timezone", "selectedTimezone")
    )
    start_time: Optional[UtcDatetime] = None
    end_time: Optional[UtcDatetime] = None
    date_added: Optional[UtcDatetime] = None


# ============================================
# FINANCIAL
# ============================================

class InvoiceEvent(WebhookEvent):
    nested_key: ClassVar[Optional[str]] = "invoice"

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    location_id: str
    contact_id: Optional[str] = None
    opportunity_id: Optional[str] = None
    name: Optional[str] = Field(None, validation_alias=AliasChoices("name", "title"))
    invoice_number: Optional[str] = Field(
        None, validation_alias=AliasChoices("invoiceNumber", "number", "invoice_number")
    )
    status: Optional[str] = None
    currency: Optional[str] = None
    total: Optional[float] = Field(None, validation_alias=AliasChoices("total", "amount"))
    amount_paid: Optional[float] = None
    amount_due: Optional[float] = None
    items: Optional[List[Any]] = Field(None, validation_alias=AliasChoices("items", "lineItems", "invoiceItems"))
    discount: Optional[Any] = None
    terms_notes: Optional[str] = Field(None, validation_alias=AliasChoices("termsNotes", "notes"))
    due_date: Optional[UtcDatetime] = None
    issue_date: Optional[UtcDatetime] = None
    sent_at: Optional[UtcDatetime] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = Field(
        None, validation_alias=AliasChoices("paymentReference", "transactionId", "payment_reference")
    )
    last_payment_amount: Optional[float] = Field(
        None, validation_alias=AliasChoices("lastPaymentAmount", "paymentAmount", "last_payment_amount")
    )


class OrderEvent(WebhookEvent):
    nested_key: ClassVar[Optional[str]] = "order"

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    location_id: str
    contact_id: Optional[str] = None
    order_number: Optional[str] = Field(
        None, validation_alias=AliasChoices("orderNumber", "number", "order_number")
    )
    status: Optional[str] = None
    payment_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    currency: Optional[str] = None
    amount: Optional[float] = Field(None, validation_alias=AliasChoices("amount", "total"))
    items: Optional[List[Any]] = Field(None, validation_alias=AliasChoices("items", "lineItems"))
    source: Optional[Dict[str, Any]] = None


class CatalogEvent(WebhookEvent):
    """Product and price events, archived as-is."""
    id: Optional[str] = Field(None, validation_alias=AliasChoices("id", "_id"))
    location_id: str
    name: Optional[str] = None


# ============================================
# PROJECTS
# ============================================

PROJECT_STATUSES: Dict[str, str] = {
    "open": "open",
    "won": "won",
    "lost": "lost",
    "abandoned": "abandoned",
    "deleted": "deleted",
}

class OpportunityEvent(WebhookEvent):
    id: str
    location_id: str
    contact_id: Optional[str] = None
    name: Optional[str] = Field(None, validation_alias=AliasChoices("name", "title"))
    status: Optional[str] = None
    monetary_value: Optional[float] = Field(
        None, validation_alias=AliasChoices("monetaryValue", "value", "monetary_value")
    )
    pipeline_id: Optional[str] = None
    pipeline_name: Optional[str] = None
    pipeline_stage_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("pipelineStageId", "stageId", "pipeline_stage_id")
    )
    pipeline_stage_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("pipelineStageName", "stageName", "pipeline_stage_name")
    )
    assigned_to: Optional[str] = Field(
        None, validation_alias=AliasChoices("assignedTo", "assignedUserId", "userId", "assigned_to")
    )
    source: Optional[str] = Field(None, validation_alias=AliasChoices("source", "contactSource"))
    tags: Optional[List[str]] = None
    notes: Optional[str] = None
    custom_fields: Optional[Any] = None
    previous_status: Optional[str] = None
    previous_stage_id: Optional[str] = None
    previous_value: Optional[float] = None
    previous_assignee: Optional[str] = None
    date_added: Optional[UtcDatetime] = None

    @property
    def project_status(self) -> str:
        """Upstream status mapped onto project statuses; unknown values read as open."""
        return PROJECT_STATUSES.get((self.status or "").lower(), "open")


# ============================================
# MESSAGES
# ============================================

# messageType string -> numeric channel code
MESSAGE_TYPE_CODES: Dict[str, int] = {
    "SMS": 1,
    "TYPE_SMS": 1,
    "TYPE_PHONE": 1,
    "Email": 3,
    "TYPE_EMAIL": 3,
    "WhatsApp": 4,
    "TYPE_WHATSAPP": 4,
    "GMB": 5,
    "TYPE_GMB": 5,
    "FB": 6,
    "TYPE_FB": 6,
    "IG": 7,
    "TYPE_IG": 7,
}


class MessageEvent(WebhookEvent):
    location_id: str
    contact_id: str
    conversation_id: str
    message_id: Optional[str] = Field(None, validation_alias=AliasChoices("messageId", "id", "message_id"))
    body: Optional[str] = None
    message_type: Optional[Union[str, int]] = None
    type: Optional[int] = None
    status: Optional[str] = None
    subject: Optional[str] = None
    html_body: Optional[str] = Field(None, validation_alias=AliasChoices("htmlBody", "html", "html_body"))
    user_id: Optional[str] = None
    segments: Optional[int] = None
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    attachments: Optional[List[Any]] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    conversation: Optional[Dict[str, Any]] = None
    date_added: Optional[UtcDatetime] = None

    contact_first_name: Optional[str] = None
    contact_last_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None

    @classmethod
    def _normalize(cls, body: Dict[str, Any]) -> Dict[str, Any]:
        message = body.get("message")
        if isinstance(message, dict):
            lifted = {k: v for k, v in message.items() if k != "id"}
            lifted.setdefault("messageId", message.get("id"))
            body = {**{k: v for k, v in body.items() if k != "message"}, **lifted}
        return body

    @property
    def channel_code(self) -> int:
        if self.type:
            return self.type
        if isinstance(self.message_type, int):
            return self.message_type
        return MESSAGE_TYPE_CODES.get(self.message_type or "", 1)

    @property
    def email_message_id(self) -> Optional[str]:
        message_ids = (self.meta.get("email") or {}).get("messageIds") or []
        return message_ids[0] if message_ids else None


class ConversationUnreadEvent(WebhookEvent):
    location_id: str
    conversation_id: str = Field(validation_alias=AliasChoices("conversationId", "id", "conversation_id"))
    unread_count: int = 0


class EmailStatsEvent(WebhookEvent):
    location_id: str
    event: str = Field(validation_alias=AliasChoices("event", "log-level"))
    id: str = Field(validation_alias=AliasChoices("id", "email_message_id", "emailMessageId"))
    recipient: Optional[str] = None
    tags: List[Any] = Field(default_factory=list)
    campaigns: List[Any] = Field(default_factory=list)
    delivery_status: Optional[Dict[str, Any]] = Field(None, validation_alias=AliasChoices("delivery-status", "deliveryStatus"))


# ============================================
# ACCOUNT LIFECYCLE
# ============================================

class InstallEvent(WebhookEvent):
    install_type: Optional[str] = None
    company_id: Optional[str] = None
    user_id: Optional[str] = None
    company_name: Optional[str] = None
    plan_id: Optional[str] = None
    is_whitelabel_company: Optional[bool] = None

    @property
    def is_location_install(self) -> bool:
        return bool(self.location_id) and self.install_type != "Company"


class UninstallEvent(WebhookEvent):
    company_id: Optional[str] = None
    user_id: Optional[str] = None
    reason: Optional[str] = None


class PlanChangeEvent(WebhookEvent):
    company_id: Optional[str] = None
    user_id: Optional[str] = None
    old_plan_id: Optional[str] = Field(None, validation_alias=AliasChoices("oldPlanId", "previousPlanId", "old_plan_id"))
    new_plan_id: Optional[str] = Field(None, validation_alias=AliasChoices("newPlanId", "planId", "new_plan_id"))


class UserEvent(WebhookEvent):
    nested_key: ClassVar[Optional[str]] = "user"

    id: str
    location_id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = Field(None, validation_alias=AliasChoices("role", "type"))
    permissions: Optional[Dict[str, Any]] = None

    @property
    def display_name(self) -> str:
        combined = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return self.name or combined or (self.email or "")


class ExternalAuthEvent(WebhookEvent):
    location_id: str
    company_id: Optional[str] = None
    user_id: Optional[str] = None


class LocationEvent(WebhookEvent):
    id: Optional[str] = None
    company_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = Field(None, validation_alias=AliasChoices("address", "address1"))
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = Field(None, validation_alias=AliasChoices("postalCode", "zip", "postal_code"))
    website: Optional[str] = None
    timezone: Optional[str] = None

    @property
    def resolved_location_id(self) -> Optional[str]:
        return self.id or self.location_id
