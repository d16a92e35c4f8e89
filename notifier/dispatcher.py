"""
Delivery dispatcher.

Works through pending deliveries: claim, render, send, record the outcome.

Design decisions:
- Every row is claimed with an atomic pending -> processing transition before
  anything is sent, so concurrent dispatchers (two cron ticks, two servers)
  never send the same delivery twice
- Rows are processed one at a time and isolated from each other: whatever
  goes wrong with one row marks that row failed and the batch moves on
- Rendering never fails a row (the renderer falls back to a generic message)
- Single attempt by default; retries are an explicit RetryPolicy and happen
  in-process under the same claim, so a row still changes status only once
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from notifier.channels import (
    ChannelResult,
    EmailPayload,
    EmailRecipient,
    NotificationChannels,
    SMSPayload,
)
from notifier.data_store import NotificationStore
from notifier.errors import DeliveryLookupError, NotifierError, TransportError
from notifier.models import ChannelType, Delivery, DeliveryStatus, Event, Recipient
from notifier.templates import RenderedMessage, TemplateRenderer

logger = logging.getLogger("notifier.dispatcher")

DEFAULT_BATCH_SIZE = 50


@dataclass
class RetryPolicy:
    """
    How often a failed send is retried.

    max_retries=0 means one attempt only. Delays grow exponentially from
    backoff_seconds. Configuration errors are never retried.
    """
    max_retries: int = 0
    backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0

    def delay_for(self, retry_number: int) -> float:
        """Seconds to wait before retry number retry_number (1-based)."""
        return self.backoff_seconds * (self.backoff_multiplier ** (retry_number - 1))


@dataclass
class DispatchSummary:
    """What one dispatch_pending() run did."""
    claimed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    delivery_ids: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"claimed={self.claimed} sent={self.sent} "
            f"failed={self.failed} skipped={self.skipped}"
        )


class Dispatcher:
    """
    Processes pending deliveries in bounded batches.

    Stateless between runs; safe to call dispatch_pending() from a worker
    pool, a cron job and an HTTP trigger at the same time.

    Example:
        dispatcher = Dispatcher(store, NotificationChannels.from_settings())
        summary = dispatcher.dispatch_pending()
    """

    def __init__(
        self,
        store: NotificationStore,
        channels: NotificationChannels,
        renderer: Optional[TemplateRenderer] = None,
        retry_policy: Optional[RetryPolicy] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the dispatcher.

        Args:
            store: Where deliveries, events and recipients live
            channels: Outbound channel adapters
            renderer: Template renderer (defaults to one over the same store)
            retry_policy: Retry behavior (defaults to a single attempt)
            batch_size: Maximum rows handled per run
            sleep: Used between retries (injectable for tests)
        """
        self.store = store
        self.channels = channels
        self.renderer = renderer or TemplateRenderer(store)
        self.retry_policy = retry_policy or RetryPolicy()
        self.batch_size = batch_size
        self._sleep = sleep

    def dispatch_pending(self) -> DispatchSummary:
        """
        Process up to batch_size pending deliveries, oldest first.

        Never raises; a store failure while listing rows is logged and an
        empty summary is returned.
        """
        summary = DispatchSummary()

        try:
            pending = self.store.list_pending_deliveries(limit=self.batch_size)
        except Exception as e:
            logger.error(f"Could not fetch pending deliveries: {e}")
            return summary

        if not pending:
            logger.debug("No pending deliveries")
            return summary

        logger.info(f"Processing {len(pending)} pending deliveries")

        for delivery in pending:
            outcome = self.dispatch_one(delivery.id)
            if outcome is None:
                summary.skipped += 1
                continue
            summary.claimed += 1
            summary.delivery_ids.append(delivery.id)
            if outcome == DeliveryStatus.SENT:
                summary.sent += 1
            else:
                summary.failed += 1

        logger.info(f"Batch complete: {summary}")
        return summary

    def dispatch_one(self, delivery_id: str) -> Optional[DeliveryStatus]:
        """
        Claim and process a single delivery.

        Returns the terminal status, or None if the row could not be claimed
        (already taken by another dispatcher, already terminal, or gone).
        """
        try:
            delivery = self.store.claim_delivery(delivery_id)
        except Exception as e:
            logger.error(f"Claim failed for delivery {delivery_id}: {e}")
            return None

        if delivery is None:
            logger.debug(f"Delivery {delivery_id} already claimed, skipping")
            return None

        logger.info(f"Dispatching delivery {delivery.id} via {delivery.channel.value}")

        try:
            status, provider_response = self._process(delivery)
        except NotifierError as e:
            status, provider_response = DeliveryStatus.FAILED, str(e)
        except Exception as e:
            logger.exception(f"Unexpected error dispatching delivery {delivery.id}")
            status, provider_response = DeliveryStatus.FAILED, str(e) or type(e).__name__

        if status == DeliveryStatus.FAILED:
            logger.error(f"Delivery {delivery.id} failed: {provider_response}")
        else:
            logger.info(f"Delivery {delivery.id} sent")

        try:
            self.store.complete_delivery(delivery.id, status, provider_response)
        except Exception as e:
            logger.error(f"Could not record outcome for delivery {delivery.id}: {e}")

        return status

    # =========================================================================
    # Processing
    # =========================================================================

    def _process(self, delivery: Delivery) -> tuple[DeliveryStatus, str]:
        recipient = self.store.get_recipient(delivery.recipient_id)
        if recipient is None:
            raise DeliveryLookupError("Recipient not found")

        event = self.store.get_event(delivery.event_id)
        if event is None:
            raise DeliveryLookupError("Event not found")

        adapter = self.channels.get(delivery.channel)
        adapter.ensure_configured()

        message = self.renderer.render(event.type, delivery.channel, event.metadata)
        result = self._send(delivery, recipient, event, message)

        if result.success:
            return DeliveryStatus.SENT, result.provider_response()
        return DeliveryStatus.FAILED, result.provider_response()

    def _send(
        self,
        delivery: Delivery,
        recipient: Recipient,
        event: Event,
        message: RenderedMessage,
    ) -> ChannelResult:
        if delivery.channel == ChannelType.EMAIL:
            email = recipient.contact_for(ChannelType.EMAIL)
            if email is None:
                raise DeliveryLookupError("Recipient has no email address")
            payload = EmailPayload(
                event_id=event.id,
                notification_type=event.type.value,
                recipient=EmailRecipient(name=recipient.name, email=email),
                subject=message.subject or f"Notification: {event.type.value}",
                body=message.body,
                metadata=event.metadata,
            )
            return self._attempt(lambda: self.channels.send_email(payload))

        if delivery.channel == ChannelType.SMS:
            phone = recipient.contact_for(ChannelType.SMS)
            if phone is None:
                raise DeliveryLookupError("Recipient has no phone number")
            payload = SMSPayload(phone=phone, message=message.body, event_id=event.id)
            return self._attempt(lambda: self.channels.send_sms(payload))

        raise TransportError(f"Unknown channel: {delivery.channel}")

    def _attempt(self, send: Callable[[], ChannelResult]) -> ChannelResult:
        """Call send, retrying failed results per the retry policy."""
        result = send()
        retries = 0
        while not result.success and retries < self.retry_policy.max_retries:
            retries += 1
            delay = self.retry_policy.delay_for(retries)
            logger.warning(f"Send failed ({result.error}), retry {retries} in {delay:.1f}s")
            self._sleep(delay)
            result = send()
        return result
