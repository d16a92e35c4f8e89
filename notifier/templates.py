"""
Notification template rendering.

Templates are stored per (event type, channel) and use {{placeholder}}
tokens filled from the event metadata.

Design decisions:
- Placeholders are {{ key }} where key is word characters and dots, with
  optional whitespace inside the braces
- Lookup order: exact key, dotted path into nested maps, then a
  case-insensitive match
- Unknown placeholders are left in the output verbatim so a reviewer can see
  what was missing
- A missing template (or an unreadable template store) never blocks a
  delivery: a generic message with the metadata is rendered instead
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from notifier.data_store import NotificationStore
from notifier.errors import RenderError
from notifier.models import ChannelType, EventType

logger = logging.getLogger("notifier.templates")

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")

_MISSING = object()


@dataclass
class RenderedMessage:
    """Rendered subject (email only) and body."""
    subject: Optional[str]
    body: str


def _event_type_value(event_type: Any) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)


def stringify(value: Any) -> str:
    """Coerce a metadata value to the text placed in a message."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def _lookup_path(data: Any, parts: list[str], ignore_case: bool) -> Any:
    current = data
    for part in parts:
        if not isinstance(current, dict):
            return _MISSING
        if part in current:
            current = current[part]
            continue
        if not ignore_case:
            return _MISSING
        lowered = part.lower()
        match = next((k for k in current if isinstance(k, str) and k.lower() == lowered), _MISSING)
        if match is _MISSING:
            return _MISSING
        current = current[match]
    return current


def resolve_placeholder(metadata: dict[str, Any], key: str) -> Any:
    """
    Find the metadata value for a placeholder key.

    Returns the module sentinel _MISSING when nothing matches.
    """
    if key in metadata:
        return metadata[key]

    parts = key.split(".")
    if len(parts) > 1:
        value = _lookup_path(metadata, parts, ignore_case=False)
        if value is not _MISSING:
            return value

    lowered = key.lower()
    for candidate, value in metadata.items():
        if isinstance(candidate, str) and candidate.lower() == lowered:
            return value

    if len(parts) > 1:
        return _lookup_path(metadata, parts, ignore_case=True)
    return _MISSING


def substitute(text: str, metadata: Optional[dict[str, Any]]) -> str:
    """
    Replace every {{placeholder}} in text with its metadata value.

    Example:
        >>> substitute("Hello {{name}}", {"name": "Asha"})
        'Hello Asha'
    """
    if not isinstance(metadata, dict):
        metadata = {}

    def _replace(match: re.Match) -> str:
        value = resolve_placeholder(metadata, match.group(1))
        if value is _MISSING:
            return match.group(0)
        return stringify(value)

    return PLACEHOLDER_PATTERN.sub(_replace, text)


def fallback_message(event_type: Any, channel: ChannelType, metadata: Any) -> RenderedMessage:
    """Generic rendering used when no template is available."""
    type_name = _event_type_value(event_type)
    try:
        details = json.dumps(metadata if metadata is not None else {}, indent=2, default=str)
    except (TypeError, ValueError):
        details = str(metadata)

    return RenderedMessage(
        subject=f"Notification: {type_name}" if ChannelType(channel) == ChannelType.EMAIL else None,
        body=f"Event: {type_name}\n{details}",
    )


class TemplateRenderer:
    """
    Renders stored templates for the dispatcher.

    Example:
        renderer = TemplateRenderer(store)
        message = renderer.render(EventType.PAYMENT_SUCCESS, ChannelType.SMS, {"amount": 50})
    """

    def __init__(self, store: NotificationStore):
        self.store = store

    def _load_template(self, event_type: Any, channel: ChannelType):
        try:
            return self.store.get_template(EventType(event_type), channel)
        except ValueError:
            # Unknown event type: there can be no stored template for it
            return None
        except Exception as e:
            raise RenderError(f"Template store unavailable: {e}") from e

    def render(
        self,
        event_type: EventType,
        channel: ChannelType,
        metadata: Optional[dict[str, Any]] = None,
    ) -> RenderedMessage:
        """
        Render the template for (event_type, channel) with metadata.

        Never raises: a missing template or store failure returns the
        generic fallback message.
        """
        channel = ChannelType(channel)
        metadata = metadata if isinstance(metadata, dict) else {}

        try:
            template = self._load_template(event_type, channel)
        except RenderError as e:
            logger.error(f"{e}, using fallback for {_event_type_value(event_type)}/{channel.value}")
            return fallback_message(event_type, channel, metadata)

        if template is None:
            logger.warning(
                f"Template not found: {_event_type_value(event_type)}/{channel.value}, using fallback"
            )
            return fallback_message(event_type, channel, metadata)

        subject = None
        if channel == ChannelType.EMAIL and template.subject:
            subject = substitute(template.subject, metadata)

        return RenderedMessage(subject=subject, body=substitute(template.body, metadata))
