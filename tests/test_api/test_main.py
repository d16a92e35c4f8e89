"""
Tests for the notifier HTTP API.

These tests verify the FastAPI endpoints against the fixture store with
channels wired to the fake gateway.
"""

import pytest
from fastapi.testclient import TestClient

from api.main import app, reset_app_state
from notifier.data_store import DataStore
from notifier.dispatcher import Dispatcher
from notifier.emitter import Emitter
from notifier.models import ChannelType, DeliveryStatus, EventType
from notifier.scheduler import DispatchScheduler


@pytest.fixture
def api_client(data_store: DataStore, dispatcher: Dispatcher):
    """Create a test client with fresh state; events stay pending until /dispatch."""
    reset_app_state(store=data_store, emitter=Emitter(data_store), dispatcher=dispatcher)
    yield TestClient(app)
    reset_app_state()


class TestHealthEndpoint:
    def test_health_check(self, api_client):
        response = api_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "event-notifier"}


class TestEventsEndpoint:
    """Tests for event intake and review."""

    def test_emit_event(self, api_client, data_store: DataStore):
        response = api_client.post("/events", json={
            "type": "PAYMENT_SUCCESS",
            "actor": {"type": "user", "identifier": "+254700000001"},
            "summary": "Payment of KES 50 received",
            "metadata": {"amount": 50},
        })

        assert response.status_code == 202
        assert response.json() == {"accepted": True}
        assert len(data_store.list_deliveries()) == 4

    def test_emit_unknown_type_rejected(self, api_client):
        response = api_client.post("/events", json={"type": "NOPE", "summary": "x"})

        assert response.status_code == 422

    def test_emit_defaults_to_system_actor(self, api_client, data_store: DataStore):
        api_client.post("/events", json={"type": "ADMIN_LOGIN", "summary": "Admin signed in"})

        assert data_store.list_events()[0].actor.identifier == "system"

    def test_list_events_with_summary(self, api_client):
        api_client.post("/events", json={"type": "PAYMENT_FAILED", "summary": "Payment failed"})
        api_client.post("/dispatch")

        response = api_client.get("/events")

        assert response.status_code == 200
        [entry] = response.json()
        assert entry["event"]["type"] == "PAYMENT_FAILED"
        assert len(entry["deliveries"]) == 2
        assert entry["summary"]["sent"] == 2
        assert entry["summary"]["total"] == 2

    def test_list_events_filtered_by_type(self, api_client):
        api_client.post("/events", json={"type": "PAYMENT_FAILED", "summary": "one"})
        api_client.post("/events", json={"type": "ADMIN_LOGIN", "summary": "two"})

        response = api_client.get("/events", params={"event_type": "ADMIN_LOGIN"})

        assert [e["event"]["summary"] for e in response.json()] == ["two"]


class TestDispatchEndpoint:
    def test_dispatch_pending(self, api_client, gateway):
        api_client.post("/events", json={"type": "PAYMENT_SUCCESS", "summary": "Paid"})

        response = api_client.post("/dispatch")

        assert response.status_code == 200
        assert response.json() == {"claimed": 4, "sent": 4, "failed": 0, "skipped": 0}
        assert len(gateway.requests) == 4

    def test_list_deliveries_by_status(self, api_client, gateway):
        gateway.sms_reply = (200, {"status": "error", "reason": "Insufficient balance"})
        api_client.post("/events", json={"type": "PAYMENT_FAILED", "summary": "Payment failed"})
        api_client.post("/dispatch")

        response = api_client.get("/deliveries", params={"status": "failed"})

        [failed] = response.json()
        assert failed["channel"] == "sms"
        assert failed["provider_response"] == "Insufficient balance"


class TestRecipientEndpoints:
    """Tests for recipient and preference administration."""

    def test_list_recipients(self, api_client):
        assert len(api_client.get("/recipients").json()) == 5
        assert len(api_client.get("/recipients", params={"active_only": True}).json()) == 4

    def test_create_recipient_initializes_preferences(self, api_client):
        response = api_client.post("/recipients", json={"name": "Faith Achieng", "phone": "+254700000106"})

        assert response.status_code == 201
        recipient_id = response.json()["id"]
        prefs = api_client.get(f"/recipients/{recipient_id}/preferences").json()
        assert len(prefs) == len(EventType)
        assert all(p["enabled"] and p["via_sms"] and not p["via_email"] for p in prefs)

    def test_create_recipient_without_preferences(self, api_client):
        response = api_client.post("/recipients", json={
            "name": "Faith Achieng", "email": "faith@example.com", "initialize_preferences": False,
        })

        recipient_id = response.json()["id"]
        assert api_client.get(f"/recipients/{recipient_id}/preferences").json() == []

    def test_preferences_for_unknown_recipient(self, api_client):
        assert api_client.get("/recipients/nobody/preferences").status_code == 404

    def test_set_preference(self, api_client, data_store: DataStore, esther_id: str):
        response = api_client.put(
            f"/recipients/{esther_id}/preferences/PAYMENT_FAILED",
            json={"enabled": True, "via_email": True},
        )

        assert response.status_code == 200
        pref = data_store.get_preference(esther_id, EventType.PAYMENT_FAILED)
        assert pref.enabled is True
        assert pref.via_email is True
        assert pref.via_sms is False


class TestTemplateEndpoints:
    def test_list_templates(self, api_client):
        assert len(api_client.get("/templates").json()) == 5

    def test_save_sms_template_drops_subject(self, api_client, data_store: DataStore):
        response = api_client.put(
            "/templates/POSTER_DOWNLOADED/sms",
            json={"subject": "ignored", "body": "Poster {{template_name}} downloaded"},
        )

        assert response.status_code == 200
        assert response.json()["subject"] is None
        template = data_store.get_template(EventType.POSTER_DOWNLOADED, ChannelType.SMS)
        assert template.body == "Poster {{template_name}} downloaded"

    def test_delete_template(self, api_client):
        assert api_client.delete("/templates/ADMIN_LOGIN/email").status_code == 204
        assert api_client.delete("/templates/ADMIN_LOGIN/email").status_code == 404


class TestLifespan:
    def test_shutdown_drains_background_scheduler(self, data_store: DataStore, dispatcher: Dispatcher, gateway):
        scheduler = DispatchScheduler(dispatcher)
        reset_app_state(store=data_store, emitter=Emitter(data_store, scheduler), dispatcher=dispatcher)
        try:
            with TestClient(app) as client:
                client.post("/events", json={"type": "ADMIN_LOGIN", "summary": "Admin signed in"})

            # Queued runs finished before shutdown returned
            [delivery] = data_store.list_deliveries()
            assert delivery.status == DeliveryStatus.SENT
            assert len(gateway.requests) == 1
            with pytest.raises(RuntimeError):
                scheduler.schedule()
        finally:
            reset_app_state()
