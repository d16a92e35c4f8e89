"""
FastAPI application for the event notifier.

This application provides:
1. Event intake (/events) for producers that cannot import the notifier
2. A dispatch trigger (/dispatch) for cron or an external scheduler
3. Operational review of events and deliveries
4. Data operations for recipients, preferences and templates

Run with:
    uv run uvicorn api.main:app --reload

Then visit http://localhost:8000/docs for interactive API documentation.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from notifier.channels import NotificationChannels
from notifier.config import configure_logging, get_settings
from notifier.data_store import NotificationStore, get_data_store
from notifier.dispatcher import Dispatcher, DispatchSummary, RetryPolicy
from notifier.emitter import Emitter, get_emitter
from notifier.models import (
    Actor,
    ChannelType,
    DeliveryStatus,
    Delivery,
    EventType,
    EventWithDeliveries,
    Preference,
    Recipient,
    Template,
    summarize_deliveries,
)
from notifier.preferences import add_recipient
from notifier.scheduler import DispatchScheduler

logger = logging.getLogger("notifier.api")


# =============================================================================
# Request / response models
# =============================================================================

class EmitRequest(BaseModel):
    """An event reported by a producer."""
    type: EventType
    actor: Actor = Field(default_factory=Actor)
    summary: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class EmitResponse(BaseModel):
    accepted: bool = True


class DispatchResponse(BaseModel):
    claimed: int
    sent: int
    failed: int
    skipped: int


class RecipientRequest(BaseModel):
    name: str
    role: str = "admin"
    email: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = True
    initialize_preferences: bool = Field(
        default=True,
        description="Enable every event type on the channels this recipient has contact details for",
    )


class PreferenceRequest(BaseModel):
    enabled: bool = False
    via_email: bool = False
    via_sms: bool = False


class TemplateRequest(BaseModel):
    subject: Optional[str] = None
    body: str


# =============================================================================
# Dependencies
# =============================================================================

# Module-level instances (replaced in tests via reset_app_state)
_store: Optional[NotificationStore] = None
_emitter: Optional[Emitter] = None
_dispatcher: Optional[Dispatcher] = None


def get_store() -> NotificationStore:
    global _store
    if _store is None:
        _store = get_data_store()
    return _store


def get_app_emitter() -> Emitter:
    global _emitter
    if _emitter is None:
        _emitter = get_emitter()
    return _emitter


def get_dispatcher() -> Dispatcher:
    global _dispatcher
    if _dispatcher is None:
        settings = get_settings()
        _dispatcher = Dispatcher(
            store=get_store(),
            channels=NotificationChannels.from_settings(settings),
            retry_policy=RetryPolicy(
                max_retries=settings.max_retries,
                backoff_seconds=settings.retry_backoff_seconds,
            ),
            batch_size=settings.batch_size,
        )
    return _dispatcher


def reset_app_state(
    store: Optional[NotificationStore] = None,
    emitter: Optional[Emitter] = None,
    dispatcher: Optional[Dispatcher] = None,
) -> None:
    """Reset app state (for testing)."""
    global _store, _emitter, _dispatcher
    _store = store
    _emitter = emitter
    _dispatcher = dispatcher


# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    configure_logging(get_settings().log_level)
    logger.info("Starting event notifier API")
    yield
    scheduler = _emitter.scheduler if _emitter is not None else None
    if isinstance(scheduler, DispatchScheduler):
        logger.info("Waiting for queued dispatch runs")
        scheduler.shutdown(wait=True)
    logger.info("Shutting down")


app = FastAPI(
    title="Event Notifier",
    description="Fan business events out to email and SMS recipients with durable delivery tracking.",
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "event-notifier"}


# =============================================================================
# Events and dispatch
# =============================================================================

@app.post("/events", response_model=EmitResponse, status_code=202, tags=["Events"])
def emit_event(request: EmitRequest, emitter: Emitter = Depends(get_app_emitter)) -> EmitResponse:
    """
    Report a business event.

    Always accepted: fan-out failures are logged and never surface to the
    producer.
    """
    emitter.emit(request.type, actor=request.actor, summary=request.summary, metadata=request.metadata)
    return EmitResponse()


@app.post("/dispatch", response_model=DispatchResponse, tags=["Events"])
def dispatch_pending(dispatcher: Dispatcher = Depends(get_dispatcher)) -> DispatchResponse:
    """Process one batch of pending deliveries (cron hook)."""
    summary: DispatchSummary = dispatcher.dispatch_pending()
    return DispatchResponse(
        claimed=summary.claimed,
        sent=summary.sent,
        failed=summary.failed,
        skipped=summary.skipped,
    )


@app.get("/events", response_model=list[EventWithDeliveries], tags=["Review"])
def list_events(
    limit: int = Query(default=50, ge=1, le=500),
    event_type: Optional[EventType] = None,
    store: NotificationStore = Depends(get_store),
) -> list[EventWithDeliveries]:
    """Recent events, newest first, with their deliveries and a status summary."""
    results = []
    for event in store.list_events(limit=limit, event_type=event_type):
        deliveries = store.list_deliveries(event_id=event.id)
        results.append(EventWithDeliveries(
            event=event,
            deliveries=deliveries,
            summary=summarize_deliveries(deliveries),
        ))
    return results


@app.get("/deliveries", response_model=list[Delivery], tags=["Review"])
def list_deliveries(
    status: Optional[DeliveryStatus] = None,
    event_id: Optional[str] = None,
    store: NotificationStore = Depends(get_store),
) -> list[Delivery]:
    return store.list_deliveries(event_id=event_id, status=status)


# =============================================================================
# Recipients and preferences
# =============================================================================

@app.get("/recipients", response_model=list[Recipient], tags=["Recipients"])
def list_recipients(
    active_only: bool = False,
    store: NotificationStore = Depends(get_store),
) -> list[Recipient]:
    return store.list_recipients(active_only=active_only)


@app.post("/recipients", response_model=Recipient, status_code=201, tags=["Recipients"])
def create_recipient(
    request: RecipientRequest,
    store: NotificationStore = Depends(get_store),
) -> Recipient:
    recipient = Recipient(
        name=request.name,
        role=request.role,
        email=request.email or None,
        phone=request.phone or None,
        is_active=request.is_active,
    )
    return add_recipient(store, recipient, initialize_preferences=request.initialize_preferences)


@app.get("/recipients/{recipient_id}/preferences", response_model=list[Preference], tags=["Recipients"])
def list_recipient_preferences(
    recipient_id: str,
    store: NotificationStore = Depends(get_store),
) -> list[Preference]:
    if store.get_recipient(recipient_id) is None:
        raise HTTPException(status_code=404, detail=f"Recipient not found: {recipient_id}")
    return store.list_preferences(recipient_id=recipient_id)


@app.put(
    "/recipients/{recipient_id}/preferences/{event_type}",
    response_model=Preference,
    tags=["Recipients"],
)
def set_recipient_preference(
    recipient_id: str,
    event_type: EventType,
    request: PreferenceRequest,
    store: NotificationStore = Depends(get_store),
) -> Preference:
    if store.get_recipient(recipient_id) is None:
        raise HTTPException(status_code=404, detail=f"Recipient not found: {recipient_id}")
    preference = Preference(
        recipient_id=recipient_id,
        event_type=event_type,
        enabled=request.enabled,
        via_email=request.via_email,
        via_sms=request.via_sms,
    )
    return store.save_preference(preference)


# =============================================================================
# Templates
# =============================================================================

@app.get("/templates", response_model=list[Template], tags=["Templates"])
def list_templates(store: NotificationStore = Depends(get_store)) -> list[Template]:
    return store.list_templates()


@app.put("/templates/{event_type}/{channel}", response_model=Template, tags=["Templates"])
def save_template(
    event_type: EventType,
    channel: ChannelType,
    request: TemplateRequest,
    store: NotificationStore = Depends(get_store),
) -> Template:
    template = Template(
        event_type=event_type,
        channel=channel,
        subject=request.subject if channel == ChannelType.EMAIL else None,
        body=request.body,
    )
    return store.save_template(template)


@app.delete("/templates/{event_type}/{channel}", status_code=204, tags=["Templates"])
def delete_template(
    event_type: EventType,
    channel: ChannelType,
    store: NotificationStore = Depends(get_store),
) -> None:
    if not store.delete_template(event_type, channel):
        raise HTTPException(status_code=404, detail=f"Template not found: {event_type.value}/{channel.value}")
