"""
Shared pytest fixtures for the event notifier tests.

These fixtures provide fresh stores, a fake HTTP gateway standing in for the
email webhook and SMS provider, and wired-up channels and dispatchers.
"""

import json
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest

from notifier.channels import NotificationChannels
from notifier.config import NotifierSettings
from notifier.data_store import DataStore
from notifier.dispatcher import Dispatcher
from notifier.sqlite_store import SQLiteStore

EMAIL_WEBHOOK_URL = "https://hooks.example.com/notify"
SMS_API_URL = "https://sms.example.com/v1/sendsms"


class FakeGateway:
    """
    Answers outbound requests the way the real services do.

    Replies can be changed per test; every request is recorded.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.email_reply: tuple[int, Any] = (200, "Accepted")
        self.sms_reply: tuple[int, Any] = (200, {"response-code": 200, "messageid": "msg-1"})
        self.raise_error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        status, body = self.email_reply if request.url.host == "hooks.example.com" else self.sms_reply
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=body)

    def bodies(self, host: str) -> list[dict]:
        """JSON bodies sent to a host."""
        return [json.loads(r.content) for r in self.requests if r.url.host == host]

    @property
    def email_bodies(self) -> list[dict]:
        return self.bodies("hooks.example.com")

    @property
    def sms_bodies(self) -> list[dict]:
        return self.bodies("sms.example.com")


@pytest.fixture
def data_dir() -> Path:
    """Path to the fixture data directory."""
    return Path(__file__).parent.parent / "data"


@pytest.fixture
def data_store(data_dir: Path) -> DataStore:
    """
    Fresh DataStore instance for each test.

    Uses the real JSON fixtures but creates a new instance
    so tests don't interfere with each other.
    """
    return DataStore(data_dir=data_dir)


@pytest.fixture
def empty_store(tmp_path: Path) -> DataStore:
    """DataStore with no recipients, preferences or templates."""
    return DataStore(data_dir=tmp_path)


@pytest.fixture
def sqlite_store(tmp_path: Path):
    store = SQLiteStore(tmp_path / "notifier.db")
    yield store
    store.close()


@pytest.fixture
def settings() -> NotifierSettings:
    return NotifierSettings(
        _env_file=None,
        email_webhook_url=EMAIL_WEBHOOK_URL,
        sms_api_key="test-api-key",
        sms_sender_id="TESTSENDER",
        sms_api_url=SMS_API_URL,
        http_timeout=2.0,
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def http_client(gateway: FakeGateway):
    client = httpx.Client(transport=httpx.MockTransport(gateway.handler))
    yield client
    client.close()


@pytest.fixture
def channels(settings: NotifierSettings, http_client: httpx.Client) -> NotificationChannels:
    """Channels wired to the fake gateway."""
    return NotificationChannels.from_settings(settings, client=http_client)


@pytest.fixture
def dispatcher(data_store: DataStore, channels: NotificationChannels) -> Dispatcher:
    return Dispatcher(store=data_store, channels=channels)


# =============================================================================
# Recipient Fixtures
# =============================================================================

@pytest.fixture
def amina_id() -> str:
    """Amina: email + phone, opted in to payments on both channels."""
    return "rcp-001"


@pytest.fixture
def brian_id() -> str:
    """Brian: email only, but all channel flags on for PAYMENT_SUCCESS."""
    return "rcp-002"


@pytest.fixture
def carol_id() -> str:
    """Carol: phone only; PAYMENT_FAILED preference disabled."""
    return "rcp-003"


@pytest.fixture
def david_id() -> str:
    """David: inactive recipient with preferences."""
    return "rcp-004"


@pytest.fixture
def esther_id() -> str:
    """Esther: active, no PAYMENT_* preference rows at all."""
    return "rcp-005"
