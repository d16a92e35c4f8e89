"""
Notification emitter - the single entry point for business code.

Business flows (payments, poster generation, admin auth) call emit() when
something happens. The emitter:
1. Stores the event
2. Finds every active recipient with an enabled preference for its type
3. Writes one pending delivery per eligible channel
4. Hands dispatch to the scheduler and returns

emit() never raises. A broken store, a bad preference row or a failing
scheduler is logged and swallowed here, because a notification problem must
never fail the payment or render that triggered it.
"""

import logging
from typing import Any, Mapping, Optional, Union

from notifier.channels import NotificationChannels
from notifier.config import NotifierSettings, get_settings
from notifier.data_store import NotificationStore, get_data_store
from notifier.dispatcher import Dispatcher, RetryPolicy
from notifier.models import Actor, ActorType, Delivery, Event, EventType
from notifier.preferences import resolve_channels
from notifier.scheduler import DispatchScheduler, Scheduler

logger = logging.getLogger("notifier.emitter")

ActorLike = Union[Actor, Mapping[str, Any], None]


def _coerce_actor(actor: ActorLike) -> Actor:
    if actor is None:
        return Actor(type=ActorType.SYSTEM, identifier="system")
    if isinstance(actor, Actor):
        return actor
    try:
        fields = dict(actor)
        if fields.get("identifier") is not None:
            fields["identifier"] = str(fields["identifier"])
        return Actor(**fields)
    except (TypeError, ValueError) as e:
        logger.warning(f"Invalid actor {actor!r}, recording as system: {e}")
        return Actor(type=ActorType.SYSTEM, identifier=str(actor))


class Emitter:
    """
    Turns one business event into pending deliveries.

    Example:
        emitter = Emitter(store, scheduler)
        emitter.emit(
            EventType.PAYMENT_SUCCESS,
            actor={"type": "user", "identifier": "+254700000001"},
            summary="Payment of KES 50 received",
            metadata={"amount": 50, "reference": "QK7X1"},
        )
    """

    def __init__(self, store: NotificationStore, scheduler: Optional[Scheduler] = None):
        """
        Initialize the emitter.

        Args:
            store: Where events and deliveries are written
            scheduler: Receives the dispatch hand-off; None disables it (rows
                      stay pending for an external dispatcher run)
        """
        self.store = store
        self.scheduler = scheduler

    def emit(
        self,
        type: Union[EventType, str],
        actor: ActorLike = None,
        summary: str = "",
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Record an event and fan it out. Never raises."""
        try:
            self._emit(type, actor, summary, metadata)
        except Exception as e:
            logger.exception(f"emit failed for {type}: {e}")

    def _emit(
        self,
        type: Union[EventType, str],
        actor: ActorLike,
        summary: str,
        metadata: Optional[Mapping[str, Any]],
    ) -> None:
        try:
            event_type = EventType(type)
        except ValueError:
            logger.error(f"Unknown event type {type!r}, event dropped")
            return

        if metadata is not None and not isinstance(metadata, Mapping):
            logger.warning(f"Ignoring non-mapping metadata for {event_type.value}: {metadata!r}")
            metadata = None

        event = Event(
            type=event_type,
            actor=_coerce_actor(actor),
            summary=str(summary) if summary is not None else "",
            metadata={str(key): value for key, value in (metadata or {}).items()},
        )

        logger.info(f"Emitting {event_type.value} by {event.actor.type.value}:{event.actor.identifier}")

        try:
            self.store.insert_event(event)
        except Exception as e:
            logger.error(f"Failed to store event {event_type.value}: {e}")
            return

        deliveries = self._fan_out(event)
        if not deliveries:
            logger.info(f"Event {event.id}: no deliveries to create")
            return

        try:
            self.store.insert_deliveries(deliveries)
        except Exception as e:
            logger.error(f"Event {event.id}: failed to store {len(deliveries)} deliveries: {e}")
            return

        logger.info(f"Event {event.id}: created {len(deliveries)} deliveries")

        if self.scheduler is None:
            return
        try:
            self.scheduler.schedule()
        except Exception as e:
            logger.error(f"Event {event.id}: could not schedule dispatch: {e}")

    def _fan_out(self, event: Event) -> list[Delivery]:
        """One pending delivery per eligible (recipient, channel)."""
        try:
            recipients = self.store.list_recipients(active_only=True)
        except Exception as e:
            logger.error(f"Event {event.id}: could not load recipients: {e}")
            return []

        deliveries = []
        for recipient in recipients:
            try:
                preference = self.store.get_preference(recipient.id, event.type)
            except Exception as e:
                logger.error(f"Event {event.id}: preference lookup failed for {recipient.id}: {e}")
                continue

            channels = resolve_channels(recipient, preference)
            if not channels:
                logger.debug(f"Recipient {recipient.id} not eligible for {event.type.value}")
                continue

            for channel in channels:
                deliveries.append(Delivery(
                    event_id=event.id,
                    recipient_id=recipient.id,
                    channel=channel,
                ))
        return deliveries


# =============================================================================
# Process-wide default wiring
# =============================================================================

_default_emitter: Optional[Emitter] = None


def build_emitter(
    store: Optional[NotificationStore] = None,
    channels: Optional[NotificationChannels] = None,
    settings: Optional[NotifierSettings] = None,
) -> Emitter:
    """Wire store, channels, dispatcher and a background scheduler from settings."""
    settings = settings or get_settings()
    store = store or get_data_store()
    dispatcher = Dispatcher(
        store=store,
        channels=channels or NotificationChannels.from_settings(settings),
        retry_policy=RetryPolicy(
            max_retries=settings.max_retries,
            backoff_seconds=settings.retry_backoff_seconds,
        ),
        batch_size=settings.batch_size,
    )
    scheduler = DispatchScheduler(dispatcher, max_workers=settings.dispatch_workers)
    return Emitter(store, scheduler)


def get_emitter() -> Emitter:
    """Get the default emitter singleton."""
    global _default_emitter
    if _default_emitter is None:
        _default_emitter = build_emitter()
    return _default_emitter


def set_emitter(emitter: Optional[Emitter]) -> None:
    """Replace (or clear) the default emitter (useful for testing)."""
    global _default_emitter
    _default_emitter = emitter


def emit(
    type: Union[EventType, str],
    actor: ActorLike = None,
    summary: str = "",
    metadata: Optional[Mapping[str, Any]] = None,
) -> None:
    """Emit through the default emitter. Never raises."""
    try:
        emitter = get_emitter()
    except Exception as e:
        logger.error(f"Notifier unavailable, event {type} dropped: {e}")
        return
    emitter.emit(type, actor=actor, summary=summary, metadata=metadata)
