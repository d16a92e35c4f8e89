"""
Preference resolution and recipient administration.

resolve_channels() is the only rule deciding who gets what: a channel is
eligible when the recipient opted in for it AND has the matching contact
field. A recipient without a Preference row for an event type is simply not
eligible; there is no default-enable, so a brand new event type notifies
nobody until an administrator creates Preference rows for it.

The remaining helpers are the data operations the admin surface performs
on the same store.
"""

import logging
from typing import Optional

from notifier.data_store import NotificationStore
from notifier.models import ChannelType, EventType, Preference, Recipient

logger = logging.getLogger("notifier.preferences")

PREFERENCE_FLAGS = ("enabled", "via_email", "via_sms")


def resolve_channels(recipient: Recipient, preference: Optional[Preference]) -> list[ChannelType]:
    """
    Channels a recipient should be notified on for one event type.

    Returns an empty list if the recipient is inactive, has no preference
    row, or has the type disabled.
    """
    if not recipient.is_active or preference is None or not preference.enabled:
        return []

    channels = []
    if preference.via_email and recipient.contact_for(ChannelType.EMAIL):
        channels.append(ChannelType.EMAIL)
    if preference.via_sms and recipient.contact_for(ChannelType.SMS):
        channels.append(ChannelType.SMS)
    return channels


def add_recipient(
    store: NotificationStore,
    recipient: Recipient,
    initialize_preferences: bool = True,
) -> Recipient:
    """
    Create a recipient, optionally opting them in to every event type.

    Initial preferences enable each event type on the channels the recipient
    has contact details for.
    """
    store.save_recipient(recipient)
    if initialize_preferences:
        for event_type in EventType:
            store.save_preference(Preference(
                recipient_id=recipient.id,
                event_type=event_type,
                enabled=True,
                via_email=bool(recipient.email),
                via_sms=bool(recipient.phone),
            ))
    logger.info(f"Added recipient {recipient.id} ({recipient.name})")
    return recipient


def toggle_preference(
    store: NotificationStore,
    recipient_id: str,
    event_type: EventType,
    flag: str,
) -> Preference:
    """
    Flip one preference flag.

    When no row exists yet, one is created with only that flag set.

    Raises:
        ValueError: If flag is not one of enabled, via_email, via_sms
    """
    if flag not in PREFERENCE_FLAGS:
        raise ValueError(f"Unknown preference flag: {flag}")

    event_type = EventType(event_type)
    existing = store.get_preference(recipient_id, event_type)
    if existing is None:
        updated = Preference(recipient_id=recipient_id, event_type=event_type, **{flag: True})
    else:
        updated = existing.model_copy(update={flag: not getattr(existing, flag)})

    store.save_preference(updated)
    return updated
