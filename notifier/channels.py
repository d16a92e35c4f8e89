"""
Outbound notification channels.

Each channel wraps one transport and turns whatever the provider answers into
a uniform ChannelResult, so the dispatcher never branches on provider shapes:
- Email: a JSON webhook that relays the message to the mail service
- SMS: a bulk SMS gateway with several success/error encodings

Design decisions:
- One outbound request per send, always with a bounded timeout
- Missing credentials raise ConfigurationError before any request is built
- Transport exceptions (timeouts, connection errors) become failed results
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from notifier.config import NotifierSettings, get_settings, redact
from notifier.errors import ConfigurationError
from notifier.models import ChannelType, utcnow

logger = logging.getLogger("notifier.channels")


# =============================================================================
# Payloads and results
# =============================================================================

class EmailRecipient(BaseModel):
    name: str
    email: str


class EmailPayload(BaseModel):
    """Body posted to the email webhook."""
    event_id: str
    notification_type: str
    recipient: EmailRecipient
    subject: str
    body: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class SMSPayload(BaseModel):
    """What the dispatcher hands to the SMS channel."""
    phone: str
    message: str
    event_id: str


@dataclass
class ChannelResult:
    """
    Result of a single send attempt.

    raw keeps the provider's response for the delivery audit trail.
    """
    success: bool
    channel: ChannelType
    recipient: str
    error: Optional[str] = None
    raw: Any = None
    timestamp: datetime = field(default_factory=utcnow)

    def __str__(self) -> str:
        status = "✓" if self.success else "✗"
        suffix = "" if self.success else f" ({self.error})"
        return f"{status} {self.channel.value.upper()} to {self.recipient}{suffix}"

    def provider_response(self) -> str:
        """Text stored on the delivery row."""
        if not self.success:
            return self.error or "Unknown error"
        if isinstance(self.raw, str):
            return self.raw
        return json.dumps(self.raw if self.raw is not None else {}, default=str)


class _Channel:
    """Shared plumbing: HTTP client handling."""

    channel_type: ChannelType

    def __init__(self, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.timeout = timeout
        self._client = client

    def _post(self, url: str, body: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return self._client.post(url, json=body, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(url, json=body)


# =============================================================================
# Email
# =============================================================================

class EmailChannel(_Channel):
    """
    Email via webhook.

    The webhook service owns actual mail delivery; any 2xx answer counts as
    accepted.
    """

    channel_type = ChannelType.EMAIL

    def __init__(
        self,
        webhook_url: Optional[str],
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        super().__init__(timeout=timeout, client=client)
        self.webhook_url = webhook_url

    def ensure_configured(self) -> None:
        if not self.webhook_url:
            raise ConfigurationError("Email webhook URL not configured")

    def send(self, payload: EmailPayload) -> ChannelResult:
        """
        Post one email payload to the webhook.

        Raises:
            ConfigurationError: If no webhook URL is configured
        """
        self.ensure_configured()
        to = payload.recipient.email

        logger.info(f"[EMAIL] event={payload.event_id} to={to} subject={payload.subject!r}")
        logger.debug(f"[EMAIL BODY] {payload.body}")

        try:
            response = self._post(self.webhook_url, payload.model_dump(mode="json"))
        except httpx.HTTPError as e:
            logger.error(f"[EMAIL FAILED] to={to} error={e}")
            return ChannelResult(
                success=False, channel=self.channel_type, recipient=to, error=f"Email webhook error: {e}",
            )

        if not response.is_success:
            logger.error(f"[EMAIL FAILED] to={to} status={response.status_code} body={response.text[:200]}")
            return ChannelResult(
                success=False,
                channel=self.channel_type,
                recipient=to,
                error=f"Email webhook failed: {response.status_code}",
                raw=response.text,
            )

        logger.info(f"[EMAIL SENT] event={payload.event_id} to={to}")
        return ChannelResult(
            success=True,
            channel=self.channel_type,
            recipient=to,
            raw={"status_code": response.status_code, "body": response.text},
        )


# =============================================================================
# SMS
# =============================================================================

_LINE_BREAKS = re.compile(r"\r\n|\r|\n")
_NON_PRINTABLE = re.compile(r"[^\x20-\x7E]")


def sanitize_sms_message(message: str) -> str:
    """
    Make a message safe for SMS gateways.

    Line breaks become spaces, anything outside printable ASCII is dropped,
    and the result is trimmed.
    """
    message = _LINE_BREAKS.sub(" ", message or "")
    return _NON_PRINTABLE.sub("", message).strip()


def normalize_sms_response(status_code: int, data: Any) -> tuple[bool, Optional[str]]:
    """
    Reduce the SMS gateway's response shapes to (success, error).

    Recognized forms:
    - HTTP non-2xx: failure
    - {"error": "..."}: failure
    - {"status": "error", "reason": "..."} or a statusCode field: failure
    - {"success": true}: success
    - {"response-code": 200}: success
    Anything else is a failure with the best description available.
    """
    if not isinstance(data, dict):
        data = {}

    if not 200 <= status_code < 300:
        detail = data.get("reason") or data.get("error") or data.get("message")
        suffix = f" ({detail})" if detail else ""
        return False, f"SMS API failed: {status_code}{suffix}"

    if data.get("error"):
        return False, str(data["error"])

    if data.get("status") == "error" or data.get("statusCode"):
        reason = data.get("reason") or data.get("message") or f"Error {data.get('statusCode')}"
        return False, str(reason)

    if data.get("success") is True:
        return True, None

    response_code = data.get("response-code")
    if response_code is not None and str(response_code) == "200":
        return True, None

    return False, str(data.get("response-description") or "Unknown error from SMS provider")


class SMSChannel(_Channel):
    """
    SMS via the gateway's single-message endpoint.

    SMS are typically limited to 160 characters; longer messages are sent
    anyway but logged since the gateway may split or truncate them.
    """

    channel_type = ChannelType.SMS
    MAX_LENGTH = 160

    def __init__(
        self,
        api_key: Optional[str],
        sender_id: str,
        api_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        super().__init__(timeout=timeout, client=client)
        self.api_key = api_key
        self.sender_id = sender_id
        self.api_url = api_url

    def ensure_configured(self) -> None:
        if not self.api_key:
            raise ConfigurationError("SMS API key not configured")
        if not self.api_url:
            raise ConfigurationError("SMS API URL not configured")

    def send(self, payload: SMSPayload) -> ChannelResult:
        """
        Send one SMS.

        Raises:
            ConfigurationError: If the API key or URL is missing
        """
        self.ensure_configured()

        message = sanitize_sms_message(payload.message)
        if len(message) > self.MAX_LENGTH:
            logger.warning(
                f"[SMS] Message length ({len(message)}) exceeds {self.MAX_LENGTH} chars, "
                "may be split into multiple messages"
            )

        request_body = {
            "api_key": self.api_key,
            "message": message,
            "phone": payload.phone,
            "sender_id": self.sender_id,
        }
        logger.info(f"[SMS] event={payload.event_id} request={redact(request_body)}")

        try:
            response = self._post(self.api_url, request_body)
        except httpx.HTTPError as e:
            logger.error(f"[SMS FAILED] to={payload.phone} error={e}")
            return ChannelResult(
                success=False, channel=self.channel_type, recipient=payload.phone, error=f"SMS API error: {e}",
            )

        try:
            data = response.json()
        except ValueError:
            data = {}

        success, error = normalize_sms_response(response.status_code, data)
        result = ChannelResult(
            success=success,
            channel=self.channel_type,
            recipient=payload.phone,
            error=error,
            raw=data,
        )

        if success:
            logger.info(f"[SMS SENT] event={payload.event_id} to={payload.phone}")
        else:
            logger.error(f"[SMS FAILED] to={payload.phone} status={response.status_code} error={error}")
        return result


# =============================================================================
# Facade
# =============================================================================

class NotificationChannels:
    """
    All configured channels, looked up by ChannelType.

    The dispatcher uses this to pick the adapter for a delivery.
    """

    def __init__(self, email: EmailChannel, sms: SMSChannel):
        self.email = email
        self.sms = sms

    @classmethod
    def from_settings(
        cls,
        settings: Optional[NotifierSettings] = None,
        client: Optional[httpx.Client] = None,
    ) -> "NotificationChannels":
        """Build both channels from settings."""
        settings = settings or get_settings()
        return cls(
            email=EmailChannel(
                webhook_url=settings.email_webhook_url,
                timeout=settings.http_timeout,
                client=client,
            ),
            sms=SMSChannel(
                api_key=settings.sms_api_key,
                sender_id=settings.sms_sender_id,
                api_url=settings.sms_api_url,
                timeout=settings.http_timeout,
                client=client,
            ),
        )

    def get(self, channel: ChannelType) -> _Channel:
        """
        Adapter for a channel.

        Raises:
            ValueError: If channel is not recognized
        """
        channel = ChannelType(channel)
        if channel == ChannelType.EMAIL:
            return self.email
        if channel == ChannelType.SMS:
            return self.sms
        raise ValueError(f"Unknown channel: {channel}")

    def send_email(self, payload: EmailPayload) -> ChannelResult:
        return self.email.send(payload)

    def send_sms(self, payload: SMSPayload) -> ChannelResult:
        return self.sms.send(payload)
