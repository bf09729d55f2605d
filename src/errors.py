"""
Pipeline Error Taxonomy

Every per-item failure raised by a processor derives from WebhookProcessingError.
The processor base decides retry vs. dead-letter purely from the attempt count,
so the classes here carry intent for logs and analytics rather than control flow.
"""
from typing import Optional


class WebhookProcessingError(Exception):
    """Base class for errors raised while applying a webhook."""
    pass


class ValidationError(WebhookProcessingError):
    """
    Required field missing or malformed.

    Retried up to the item's max attempts, then dead-lettered with the
    item preserved for inspection.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class UnsupportedEventError(ValidationError):
    """A processor received an event type it has no handler for."""

    def __init__(self, processor_name: str, event_type: str):
        super().__init__(f"Unsupported {processor_name} webhook type: {event_type}", field="type")
        self.event_type = event_type


class TransientError(WebhookProcessingError):
    """Store contention, lease conflict or upstream timeout. Retried with backoff."""
    pass


class ReferenceNotFoundError(WebhookProcessingError):
    """
    Cross-entity lookup miss.

    Non-fatal: raised by resolvers that callers may opt into, logged, and
    processing continues with a null reference.
    """

    def __init__(self, entity: str, external_id: str, location_id: str):
        super().__init__(f"{entity} {external_id} not found in location {location_id}")
        self.entity = entity
        self.external_id = external_id
        self.location_id = location_id


class NotificationError(WebhookProcessingError):
    """Publish or push failure. Logged only, never fails the item."""
    pass


class DuplicateWebhookError(Exception):
    """A webhook with this id is already queued."""

    def __init__(self, webhook_id: str):
        super().__init__(f"Duplicate webhook {webhook_id}")
        self.webhook_id = webhook_id
