"""
Entity Document Models

Persisted CRM mirror documents. Each is keyed by its upstream (external) id plus
locationId; soft deletes set `deleted` and `deletedAt`. Only the fields the
pipeline reads back are modelled; writes go through `$set` documents built from
the canonical events.
"""
import uuid
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel

from src.models.base import MongoBaseModel, PyObjectId, UtcDatetime, utcnow


class TimelineEntry(BaseModel):
    """Append-only project history entry."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    event: str
    description: str
    timestamp: UtcDatetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class SoftDeletable(MongoBaseModel):
    location_id: str
    deleted: bool = False
    deleted_at: Optional[UtcDatetime] = None


class Contact(SoftDeletable):
    ghl_contact_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    assigned_to: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        combined = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return self.full_name or combined or "Unknown"


class Project(SoftDeletable):
    ghl_opportunity_id: Optional[str] = None
    contact_id: Optional[str] = None
    title: Optional[str] = None
    status: str = "open"
    pipeline_stage_id: Optional[str] = None
    monetary_value: Optional[float] = None
    assigned_to: Optional[str] = None
    timeline: List[TimelineEntry] = Field(default_factory=list)


class Note(SoftDeletable):
    ghl_note_id: str
    contact_id: Optional[str] = None
    ghl_contact_id: Optional[str] = None
    body: Optional[str] = None


class Task(SoftDeletable):
    ghl_task_id: str
    contact_id: Optional[str] = None
    ghl_contact_id: Optional[str] = None
    title: Optional[str] = None
    status: str = "pending"
    completed_at: Optional[UtcDatetime] = None


class Appointment(SoftDeletable):
    ghl_appointment_id: str
    contact_id: Optional[str] = None
    ghl_contact_id: Optional[str] = None
    title: Optional[str] = None
    appointment_status: Optional[str] = None
    assigned_user_id: Optional[str] = None
    start_time: Optional[UtcDatetime] = None
    end_time: Optional[UtcDatetime] = None


class Invoice(SoftDeletable):
    ghl_invoice_id: str
    status: Optional[str] = None
    invoice_number: Optional[str] = None
    total: Optional[float] = None
    amount_paid: Optional[float] = None
    amount_due: Optional[float] = None
    project_id: Optional[str] = None


class Order(SoftDeletable):
    ghl_order_id: str
    status: Optional[str] = None
    payment_status: Optional[str] = None
    amount: Optional[float] = None


class Conversation(MongoBaseModel):
    ghl_conversation_id: str
    location_id: str
    contact_object_id: Optional[PyObjectId] = None
    unread_count: int = 0


class Message(MongoBaseModel):
    ghl_message_id: str
    location_id: str
    conversation_id: Optional[PyObjectId] = None
    direction: Optional[str] = None
    body: Optional[str] = None
    subject: Optional[str] = None
    email_message_id: Optional[str] = None
    needs_content_fetch: bool = False
    email_status: Optional[str] = None


class OAuthCredentials(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[UtcDatetime] = None
    needs_reauth: bool = False


class Location(MongoBaseModel):
    """Tenant configuration record."""
    location_id: str
    company_id: Optional[str] = None
    name: Optional[str] = None
    app_installed: bool = False
    has_location_oauth: bool = False
    plan_id: Optional[str] = None
    crm_oauth: Optional[OAuthCredentials] = Field(None, alias="crmOAuth")

    @property
    def access_token(self) -> Optional[str]:
        return self.crm_oauth.access_token if self.crm_oauth else None


class User(MongoBaseModel):
    ghl_user_id: str
    location_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None
    is_active: bool = True
    expo_push_token: Optional[str] = None
