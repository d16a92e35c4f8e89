"""
Exception taxonomy for the notifier.

Errors are caught at the boundary closest to their origin: the Emitter logs
them, the Dispatcher turns them into a failed Delivery. None of them reach
the code that emitted the event.
"""


class NotifierError(Exception):
    """Base class for notifier errors."""


class ConfigurationError(NotifierError):
    """A transport is missing credentials or an endpoint; no attempt is made."""


class DeliveryLookupError(NotifierError, LookupError):
    """Recipient, event or contact field missing at dispatch time."""


class TransportError(NotifierError):
    """
    A send could not be handed to any transport.

    Provider rejections, timeouts and connection errors are not raised: the
    adapters return them as a failed ChannelResult.
    """


class RenderError(NotifierError):
    """The template store could not be read; rendering falls back."""
