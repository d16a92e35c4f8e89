"""
Storage for events, recipients, preferences, templates and deliveries.

This module defines the NotificationStore protocol that the Emitter and
Dispatcher depend on, plus an in-memory implementation seeded from JSON
fixture files. The SQLite implementation lives in sqlite_store.py.

Design decisions:
- Recipients, preferences and templates are loaded lazily from data/*.json
- Events are append-only; deliveries are the only rows that change
- Claiming a delivery is a single compare-and-swap under a lock, so two
  dispatchers can never both act on the same row
- Models are copied on the way in and out so callers cannot mutate state
"""

import json
import threading
from pathlib import Path
from typing import Optional, Protocol

from notifier.models import (
    ChannelType,
    Delivery,
    DeliveryStatus,
    Event,
    EventType,
    Preference,
    Recipient,
    Template,
    utcnow,
)


class NotificationStore(Protocol):
    """Operations the notifier needs from durable storage."""

    # Events
    def insert_event(self, event: Event) -> Event: ...
    def get_event(self, event_id: str) -> Optional[Event]: ...
    def list_events(self, limit: int = 50, event_type: Optional[EventType] = None) -> list[Event]: ...

    # Recipients
    def save_recipient(self, recipient: Recipient) -> Recipient: ...
    def get_recipient(self, recipient_id: str) -> Optional[Recipient]: ...
    def list_recipients(self, active_only: bool = False) -> list[Recipient]: ...

    # Preferences
    def save_preference(self, preference: Preference) -> Preference: ...
    def get_preference(self, recipient_id: str, event_type: EventType) -> Optional[Preference]: ...
    def list_preferences(self, recipient_id: Optional[str] = None) -> list[Preference]: ...

    # Templates
    def save_template(self, template: Template) -> Template: ...
    def get_template(self, event_type: EventType, channel: ChannelType) -> Optional[Template]: ...
    def list_templates(self) -> list[Template]: ...
    def delete_template(self, event_type: EventType, channel: ChannelType) -> bool: ...

    # Deliveries
    def insert_deliveries(self, deliveries: list[Delivery]) -> list[Delivery]: ...
    def get_delivery(self, delivery_id: str) -> Optional[Delivery]: ...
    def list_pending_deliveries(self, limit: int = 50) -> list[Delivery]: ...
    def list_deliveries(
        self, event_id: Optional[str] = None, status: Optional[DeliveryStatus] = None
    ) -> list[Delivery]: ...
    def claim_delivery(self, delivery_id: str) -> Optional[Delivery]: ...
    def complete_delivery(
        self,
        delivery_id: str,
        status: DeliveryStatus,
        provider_response: Optional[str],
    ) -> Optional[Delivery]: ...


class DataStore:
    """
    In-memory NotificationStore seeded from JSON fixtures.

    Used for demos, tests and single-process deployments. Everything written
    after start-up lives in memory only.
    """

    def __init__(self, data_dir: Optional[Path] = None):
        """
        Initialize the data store.

        Args:
            data_dir: Directory containing recipients.json, preferences.json
                     and templates.json. Defaults to ./data at the project root.
        """
        if data_dir is None:
            data_dir = Path(__file__).parent.parent / "data"

        self.data_dir = Path(data_dir)
        self._lock = threading.RLock()

        # Fixture-backed tables - loaded lazily
        self._recipients: Optional[dict[str, Recipient]] = None
        self._preferences: Optional[dict[tuple[str, EventType], Preference]] = None
        self._templates: Optional[dict[tuple[EventType, ChannelType], Template]] = None

        # Runtime tables
        self._events: dict[str, Event] = {}
        self._deliveries: dict[str, Delivery] = {}

    # =========================================================================
    # Data Loading (lazy)
    # =========================================================================

    def _load_json(self, filename: str) -> list[dict]:
        """Load a JSON fixture file."""
        filepath = self.data_dir / filename
        if not filepath.exists():
            return []
        with open(filepath, "r") as f:
            return json.load(f)

    def _ensure_recipients_loaded(self) -> None:
        if self._recipients is None:
            data = self._load_json("recipients.json")
            self._recipients = {r["id"]: Recipient(**r) for r in data}

    def _ensure_preferences_loaded(self) -> None:
        if self._preferences is None:
            data = self._load_json("preferences.json")
            prefs = [Preference(**p) for p in data]
            self._preferences = {p.key: p for p in prefs}

    def _ensure_templates_loaded(self) -> None:
        if self._templates is None:
            data = self._load_json("templates.json")
            templates = [Template(**t) for t in data]
            self._templates = {t.key: t for t in templates}

    # =========================================================================
    # Event Operations
    # =========================================================================

    def insert_event(self, event: Event) -> Event:
        """Append an event. Event ids are unique; re-inserting is an error."""
        with self._lock:
            if event.id in self._events:
                raise ValueError(f"Event already exists: {event.id}")
            self._events[event.id] = event
        return event

    def get_event(self, event_id: str) -> Optional[Event]:
        return self._events.get(event_id)

    def list_events(self, limit: int = 50, event_type: Optional[EventType] = None) -> list[Event]:
        """Most recent events first, optionally filtered by type."""
        with self._lock:
            events = list(self._events.values())
        if event_type is not None:
            events = [e for e in events if e.type == event_type]
        events.sort(key=lambda e: e.created_at, reverse=True)
        return events[:limit]

    # =========================================================================
    # Recipient Operations
    # =========================================================================

    def save_recipient(self, recipient: Recipient) -> Recipient:
        """Create or replace a recipient."""
        with self._lock:
            self._ensure_recipients_loaded()
            self._recipients[recipient.id] = recipient.model_copy()
        return recipient

    def get_recipient(self, recipient_id: str) -> Optional[Recipient]:
        with self._lock:
            self._ensure_recipients_loaded()
            recipient = self._recipients.get(recipient_id)
        return recipient.model_copy() if recipient else None

    def list_recipients(self, active_only: bool = False) -> list[Recipient]:
        with self._lock:
            self._ensure_recipients_loaded()
            recipients = [r.model_copy() for r in self._recipients.values()]
        if active_only:
            recipients = [r for r in recipients if r.is_active]
        return recipients

    # =========================================================================
    # Preference Operations
    # =========================================================================

    def save_preference(self, preference: Preference) -> Preference:
        """Create or replace the preference for (recipient, event type)."""
        with self._lock:
            self._ensure_preferences_loaded()
            self._preferences[preference.key] = preference.model_copy()
        return preference

    def get_preference(self, recipient_id: str, event_type: EventType) -> Optional[Preference]:
        with self._lock:
            self._ensure_preferences_loaded()
            pref = self._preferences.get((recipient_id, EventType(event_type)))
        return pref.model_copy() if pref else None

    def list_preferences(self, recipient_id: Optional[str] = None) -> list[Preference]:
        with self._lock:
            self._ensure_preferences_loaded()
            prefs = [p.model_copy() for p in self._preferences.values()]
        if recipient_id is not None:
            prefs = [p for p in prefs if p.recipient_id == recipient_id]
        return prefs

    # =========================================================================
    # Template Operations
    # =========================================================================

    def save_template(self, template: Template) -> Template:
        """Create or replace the template for (event type, channel)."""
        stored = template.model_copy(update={"updated_at": utcnow()})
        with self._lock:
            self._ensure_templates_loaded()
            self._templates[stored.key] = stored
        return stored

    def get_template(self, event_type: EventType, channel: ChannelType) -> Optional[Template]:
        with self._lock:
            self._ensure_templates_loaded()
            template = self._templates.get((EventType(event_type), ChannelType(channel)))
        return template.model_copy() if template else None

    def list_templates(self) -> list[Template]:
        with self._lock:
            self._ensure_templates_loaded()
            return [t.model_copy() for t in self._templates.values()]

    def delete_template(self, event_type: EventType, channel: ChannelType) -> bool:
        with self._lock:
            self._ensure_templates_loaded()
            return self._templates.pop((EventType(event_type), ChannelType(channel)), None) is not None

    # =========================================================================
    # Delivery Operations
    # =========================================================================

    def insert_deliveries(self, deliveries: list[Delivery]) -> list[Delivery]:
        """
        Insert a batch of pending deliveries.

        All-or-nothing: a duplicate id rejects the whole batch.
        """
        with self._lock:
            for delivery in deliveries:
                if delivery.id in self._deliveries:
                    raise ValueError(f"Delivery already exists: {delivery.id}")
            for delivery in deliveries:
                self._deliveries[delivery.id] = delivery.model_copy()
        return deliveries

    def get_delivery(self, delivery_id: str) -> Optional[Delivery]:
        with self._lock:
            delivery = self._deliveries.get(delivery_id)
        return delivery.model_copy() if delivery else None

    def list_pending_deliveries(self, limit: int = 50) -> list[Delivery]:
        """Oldest pending deliveries first."""
        with self._lock:
            pending = [
                d.model_copy() for d in self._deliveries.values()
                if d.status == DeliveryStatus.PENDING
            ]
        pending.sort(key=lambda d: d.created_at)
        return pending[:limit]

    def list_deliveries(
        self, event_id: Optional[str] = None, status: Optional[DeliveryStatus] = None
    ) -> list[Delivery]:
        with self._lock:
            deliveries = [d.model_copy() for d in self._deliveries.values()]
        if event_id is not None:
            deliveries = [d for d in deliveries if d.event_id == event_id]
        if status is not None:
            deliveries = [d for d in deliveries if d.status == status]
        deliveries.sort(key=lambda d: d.created_at)
        return deliveries

    def claim_delivery(self, delivery_id: str) -> Optional[Delivery]:
        """
        Atomically move a delivery from pending to processing.

        Returns the claimed delivery, or None if it is missing or another
        dispatcher already claimed it.
        """
        with self._lock:
            delivery = self._deliveries.get(delivery_id)
            if delivery is None or delivery.status != DeliveryStatus.PENDING:
                return None
            claimed = delivery.model_copy(
                update={"status": DeliveryStatus.PROCESSING, "claimed_at": utcnow()}
            )
            self._deliveries[delivery_id] = claimed
        return claimed.model_copy()

    def complete_delivery(
        self,
        delivery_id: str,
        status: DeliveryStatus,
        provider_response: Optional[str],
    ) -> Optional[Delivery]:
        """
        Move a claimed delivery to its terminal status.

        Only a delivery in processing can be completed; anything else returns
        None and is left untouched.
        """
        status = DeliveryStatus(status)
        if not status.is_terminal:
            raise ValueError(f"Not a terminal status: {status.value}")

        with self._lock:
            delivery = self._deliveries.get(delivery_id)
            if delivery is None or delivery.status != DeliveryStatus.PROCESSING:
                return None
            completed = delivery.model_copy(update={
                "status": status,
                "provider_response": provider_response,
                "sent_at": utcnow() if status == DeliveryStatus.SENT else None,
            })
            self._deliveries[delivery_id] = completed
        return completed.model_copy()

    # =========================================================================
    # Utility Methods
    # =========================================================================

    def reload(self) -> None:
        """
        Force reload fixture tables from JSON files.

        Events and deliveries are kept.
        """
        with self._lock:
            self._recipients = None
            self._preferences = None
            self._templates = None


def create_store(settings=None) -> NotificationStore:
    """
    Build the store selected by settings.

    A configured database_path gives a durable SQLiteStore; otherwise an
    in-memory DataStore seeded from the fixtures directory.
    """
    from notifier.config import get_settings
    from notifier.sqlite_store import SQLiteStore

    settings = settings or get_settings()
    if settings.database_path is not None:
        return SQLiteStore(settings.database_path)
    return DataStore(data_dir=settings.data_dir)


# Module-level singleton for convenience
# In tests, create a new store instance with test fixtures
_default_store: Optional[NotificationStore] = None


def get_data_store() -> NotificationStore:
    """Get the default store singleton."""
    global _default_store
    if _default_store is None:
        _default_store = create_store()
    return _default_store


def reset_data_store(store: Optional[NotificationStore] = None) -> None:
    """Replace (or clear) the default store (useful for testing)."""
    global _default_store
    _default_store = store
