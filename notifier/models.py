"""
Domain models for the event notifier.

Five persisted entities make up the notification schema:
- Event: an immutable record that something happened
- Recipient: a person who may be notified (managed by administrators)
- Preference: per-recipient, per-event-type channel opt-in
- Template: per-event-type, per-channel text pattern
- Delivery: one attempt unit keyed by (event, recipient, channel)

Design decisions:
- Using Pydantic for validation and serialization
- Events are frozen once created; Deliveries are the only mutable state
- A missing Preference row means "not eligible", there is no default-enable
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


# =============================================================================
# Enums
# =============================================================================

class EventType(str, Enum):
    """
    Known business events that can trigger notifications.

    Adding a member here does not notify anyone by itself: recipients only
    receive a new event type once a Preference row exists for it.
    """
    ADMIN_LOGIN = "ADMIN_LOGIN"
    TEMPLATE_CREATED = "TEMPLATE_CREATED"
    TEMPLATE_UPDATED = "TEMPLATE_UPDATED"
    TEMPLATE_DELETED = "TEMPLATE_DELETED"
    TEMPLATE_STATUS_CHANGED = "TEMPLATE_STATUS_CHANGED"
    POSTER_GENERATED = "POSTER_GENERATED"
    POSTER_GENERATION_FAILED = "POSTER_GENERATION_FAILED"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    POSTER_DOWNLOADED = "POSTER_DOWNLOADED"
    POSTER_REVIEW_SUBMITTED = "POSTER_REVIEW_SUBMITTED"


EVENT_DESCRIPTIONS: dict[EventType, str] = {
    EventType.ADMIN_LOGIN: "An administrator signed in to the dashboard",
    EventType.TEMPLATE_CREATED: "A poster template was created",
    EventType.TEMPLATE_UPDATED: "A poster template was edited",
    EventType.TEMPLATE_DELETED: "A poster template was removed",
    EventType.TEMPLATE_STATUS_CHANGED: "A poster template was activated or deactivated",
    EventType.POSTER_GENERATED: "A poster render completed",
    EventType.POSTER_GENERATION_FAILED: "A poster render failed",
    EventType.PAYMENT_SUCCESS: "A customer payment was confirmed",
    EventType.PAYMENT_FAILED: "A customer payment was declined or timed out",
    EventType.POSTER_DOWNLOADED: "A customer downloaded a paid poster",
    EventType.POSTER_REVIEW_SUBMITTED: "A customer submitted a poster request or review",
}


class ActorType(str, Enum):
    """Who caused an event."""
    ADMIN = "admin"
    USER = "user"
    SYSTEM = "system"


class ChannelType(str, Enum):
    """Supported notification channels."""
    EMAIL = "email"
    SMS = "sms"


class DeliveryStatus(str, Enum):
    """
    Delivery lifecycle states.

    pending -> processing (claimed) -> sent | failed
    """
    PENDING = "pending"           # Created at fan-out, waiting for a dispatcher
    PROCESSING = "processing"     # Claimed by exactly one dispatcher
    SENT = "sent"                 # Provider acknowledged
    FAILED = "failed"             # Gave up, reason in provider_response

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.SENT, DeliveryStatus.FAILED)


# =============================================================================
# Core Entities
# =============================================================================

class Actor(BaseModel):
    """The admin, user or system process behind an event."""
    type: ActorType = Field(default=ActorType.SYSTEM)
    identifier: str = Field(default="system", description="Email, phone or 'system'")

    model_config = ConfigDict(frozen=True)


class Event(BaseModel):
    """
    Immutable record that something happened.

    Created only by the Emitter. The metadata map feeds template rendering.
    """
    id: str = Field(default_factory=new_id)
    type: EventType
    actor: Actor = Field(default_factory=Actor)
    summary: str = Field(..., description="Human-readable one-liner")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True)


class Recipient(BaseModel):
    """
    Someone who may receive notifications.

    Contact fields are optional; a channel is only used when its contact
    field is populated.
    """
    id: str = Field(default_factory=new_id)
    name: str
    role: str = Field(default="admin")
    email: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    def contact_for(self, channel: ChannelType) -> Optional[str]:
        """Contact address for a channel, or None if not populated."""
        value = self.email if channel == ChannelType.EMAIL else self.phone
        if value is None or not value.strip():
            return None
        return value.strip()


class Preference(BaseModel):
    """Per-recipient opt-in for one event type."""
    recipient_id: str
    event_type: EventType
    enabled: bool = False
    via_email: bool = False
    via_sms: bool = False

    @property
    def key(self) -> tuple[str, EventType]:
        return (self.recipient_id, self.event_type)


class Template(BaseModel):
    """
    Channel-specific text pattern with {{placeholder}} tokens.

    Subject is only meaningful for email.
    """
    event_type: EventType
    channel: ChannelType
    subject: Optional[str] = None
    body: str
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> tuple[EventType, ChannelType]:
        return (self.event_type, self.channel)


class Delivery(BaseModel):
    """
    One attempted notification for (event, recipient, channel).

    The only mutable entity; status moves forward exactly once after the
    claim and never returns to pending.
    """
    id: str = Field(default_factory=new_id)
    event_id: str
    recipient_id: str
    channel: ChannelType
    status: DeliveryStatus = DeliveryStatus.PENDING
    provider_response: Optional[str] = None
    sent_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Read models
# =============================================================================

class DeliverySummary(BaseModel):
    """Status counts over a set of deliveries."""
    sent: int = 0
    failed: int = 0
    pending: int = 0
    processing: int = 0
    total: int = 0


def summarize_deliveries(deliveries: list[Delivery]) -> DeliverySummary:
    """Count deliveries by status (used by the operational review endpoints)."""
    summary = DeliverySummary(total=len(deliveries))
    for delivery in deliveries:
        field_name = DeliveryStatus(delivery.status).value
        setattr(summary, field_name, getattr(summary, field_name) + 1)
    return summary


class EventWithDeliveries(BaseModel):
    """An event together with its fan-out results."""
    event: Event
    deliveries: list[Delivery] = Field(default_factory=list)
    summary: DeliverySummary = Field(default_factory=DeliverySummary)
