"""
Event notifier.

Turns business events into per-recipient email and SMS deliveries:
- Emitter: the single emit() entry point used by business code
- Dispatcher: claims pending deliveries, renders and sends them
- TemplateRenderer: fills {{placeholder}} templates from event metadata
- Channels: email webhook and SMS gateway adapters
- Stores: in-memory (JSON fixtures) and SQLite
"""

from notifier.models import (
    Actor,
    ActorType,
    ChannelType,
    Delivery,
    DeliveryStatus,
    Event,
    EventType,
    Preference,
    Recipient,
    Template,
)
from notifier.data_store import DataStore, NotificationStore, create_store
from notifier.sqlite_store import SQLiteStore
from notifier.channels import EmailChannel, SMSChannel, NotificationChannels, ChannelResult
from notifier.templates import TemplateRenderer, RenderedMessage
from notifier.dispatcher import Dispatcher, DispatchSummary, RetryPolicy
from notifier.scheduler import DispatchScheduler, ImmediateScheduler
from notifier.emitter import Emitter, emit

__all__ = [
    "Actor",
    "ActorType",
    "ChannelType",
    "Delivery",
    "DeliveryStatus",
    "Event",
    "EventType",
    "Preference",
    "Recipient",
    "Template",
    "DataStore",
    "NotificationStore",
    "SQLiteStore",
    "create_store",
    "EmailChannel",
    "SMSChannel",
    "NotificationChannels",
    "ChannelResult",
    "TemplateRenderer",
    "RenderedMessage",
    "Dispatcher",
    "DispatchSummary",
    "RetryPolicy",
    "DispatchScheduler",
    "ImmediateScheduler",
    "Emitter",
    "emit",
]
