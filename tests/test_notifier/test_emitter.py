"""
Tests for the emitter.

These tests verify the fan-out from one event to pending deliveries and that
emit() never raises into the calling business flow.
"""

import pytest

from notifier import emitter as emitter_module
from notifier.data_store import DataStore
from notifier.emitter import Emitter, emit, set_emitter
from notifier.models import ActorType, ChannelType, DeliveryStatus, EventType


class RecordingScheduler:
    """Counts hand-offs instead of dispatching."""

    def __init__(self, error: Exception = None):
        self.calls = 0
        self.error = error

    def schedule(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return None


class BrokenStore(DataStore):
    """Store that fails on the chosen operation."""

    def __init__(self, data_dir, fail_on: str):
        super().__init__(data_dir=data_dir)
        self.fail_on = fail_on

    def _maybe_fail(self, operation: str) -> None:
        if operation == self.fail_on:
            raise ConnectionError(f"{operation} unavailable")

    def insert_event(self, event):
        self._maybe_fail("insert_event")
        return super().insert_event(event)

    def list_recipients(self, active_only: bool = False):
        self._maybe_fail("list_recipients")
        return super().list_recipients(active_only)

    def get_preference(self, recipient_id, event_type):
        if self.fail_on == "get_preference" and recipient_id == "rcp-001":
            raise ConnectionError("get_preference unavailable")
        return super().get_preference(recipient_id, event_type)

    def insert_deliveries(self, deliveries):
        self._maybe_fail("insert_deliveries")
        return super().insert_deliveries(deliveries)


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def emitter(data_store: DataStore, scheduler: RecordingScheduler) -> Emitter:
    return Emitter(data_store, scheduler)


def deliveries_by_recipient(store: DataStore) -> dict[str, list[ChannelType]]:
    result: dict[str, list[ChannelType]] = {}
    for delivery in store.list_deliveries():
        result.setdefault(delivery.recipient_id, []).append(delivery.channel)
    return result


class TestFanOut:
    """Tests for turning an event into deliveries."""

    def test_event_is_stored(self, emitter: Emitter, data_store: DataStore):
        emitter.emit(
            EventType.PAYMENT_SUCCESS,
            actor={"type": "user", "identifier": "+254700000001"},
            summary="Payment of KES 50 received",
            metadata={"amount": 50},
        )

        [event] = data_store.list_events()
        assert event.type == EventType.PAYMENT_SUCCESS
        assert event.actor.type == ActorType.USER
        assert event.actor.identifier == "+254700000001"
        assert event.summary == "Payment of KES 50 received"
        assert event.metadata == {"amount": 50}

    def test_payment_success_fan_out(self, emitter: Emitter, data_store: DataStore):
        """
        Test the fixture fan-out for PAYMENT_SUCCESS.

        Amina gets both channels, Brian only email (no phone), Carol only SMS,
        David is inactive and Esther has no preference row.
        """
        emitter.emit(EventType.PAYMENT_SUCCESS, summary="Payment received")

        assert deliveries_by_recipient(data_store) == {
            "rcp-001": [ChannelType.EMAIL, ChannelType.SMS],
            "rcp-002": [ChannelType.EMAIL],
            "rcp-003": [ChannelType.SMS],
        }

    def test_deliveries_start_pending(self, emitter: Emitter, data_store: DataStore):
        emitter.emit(EventType.PAYMENT_SUCCESS, summary="Payment received")

        [event] = data_store.list_events()
        deliveries = data_store.list_deliveries(event_id=event.id)
        assert len(deliveries) == 4
        assert all(d.status == DeliveryStatus.PENDING for d in deliveries)
        assert all(d.sent_at is None and d.provider_response is None for d in deliveries)

    def test_disabled_preference_gets_nothing(self, emitter: Emitter, data_store: DataStore, carol_id: str):
        emitter.emit(EventType.PAYMENT_FAILED, summary="Payment failed")

        recipients = deliveries_by_recipient(data_store)
        assert carol_id not in recipients
        assert recipients == {"rcp-001": [ChannelType.EMAIL, ChannelType.SMS]}

    @pytest.mark.parametrize("event_type,expected", [
        (EventType.PAYMENT_SUCCESS, 4),
        (EventType.PAYMENT_FAILED, 2),
        (EventType.POSTER_GENERATION_FAILED, 4),
        (EventType.ADMIN_LOGIN, 1),
    ])
    def test_delivery_counts(self, emitter: Emitter, data_store: DataStore, event_type, expected):
        emitter.emit(event_type, summary="test")

        assert len(data_store.list_deliveries()) == expected

    def test_no_preferences_no_deliveries(self, emitter, data_store, scheduler):
        """Test that an event type nobody opted in to still records the event."""
        emitter.emit(EventType.POSTER_DOWNLOADED, summary="Poster downloaded")

        assert len(data_store.list_events()) == 1
        assert data_store.list_deliveries() == []
        assert scheduler.calls == 0

    def test_string_event_type(self, emitter: Emitter, data_store: DataStore):
        emitter.emit("ADMIN_LOGIN", summary="Admin signed in")

        assert data_store.list_events()[0].type == EventType.ADMIN_LOGIN

    def test_default_actor_is_system(self, emitter: Emitter, data_store: DataStore):
        emitter.emit(EventType.ADMIN_LOGIN, summary="Admin signed in")

        actor = data_store.list_events()[0].actor
        assert actor.type == ActorType.SYSTEM
        assert actor.identifier == "system"


class TestEmitNeverRaises:
    """A notification problem must never reach the caller."""

    def test_unknown_event_type_dropped(self, emitter, data_store, scheduler):
        emitter.emit("NOT_A_REAL_EVENT", summary="?")

        assert data_store.list_events() == []
        assert scheduler.calls == 0

    def test_non_mapping_metadata_ignored(self, emitter: Emitter, data_store: DataStore):
        emitter.emit(EventType.ADMIN_LOGIN, summary="Admin signed in", metadata=["not", "a", "dict"])

        assert data_store.list_events()[0].metadata == {}

    def test_invalid_actor_recorded_as_system(self, emitter: Emitter, data_store: DataStore):
        emitter.emit(EventType.ADMIN_LOGIN, actor={"type": "robot"}, summary="Admin signed in")

        [event] = data_store.list_events()
        assert event.actor.type == ActorType.SYSTEM

    def test_non_string_metadata_keys_coerced(self, emitter: Emitter, data_store: DataStore):
        emitter.emit(EventType.PAYMENT_SUCCESS, summary="paid", metadata={1: "x", "amount": 50})

        [event] = data_store.list_events()
        assert event.metadata == {"1": "x", "amount": 50}
        assert len(data_store.list_deliveries(event_id=event.id)) == 4

    @pytest.mark.parametrize("summary,expected", [(None, ""), (42, "42")])
    def test_non_string_summary_coerced(self, emitter: Emitter, data_store: DataStore, summary, expected):
        emitter.emit(EventType.ADMIN_LOGIN, summary=summary)

        [event] = data_store.list_events()
        assert event.summary == expected

    def test_numeric_actor_identifier_keeps_actor_type(self, emitter: Emitter, data_store: DataStore):
        """A phone number passed as an int is still recorded against the user."""
        emitter.emit(
            EventType.PAYMENT_SUCCESS,
            actor={"type": "user", "identifier": 254700000001},
            summary="paid",
        )

        [event] = data_store.list_events()
        assert event.actor.type == ActorType.USER
        assert event.actor.identifier == "254700000001"

    @pytest.mark.parametrize("fail_on", ["insert_event", "list_recipients", "insert_deliveries"])
    def test_store_failures_swallowed(self, data_dir, scheduler, fail_on):
        store = BrokenStore(data_dir, fail_on=fail_on)
        emitter = Emitter(store, scheduler)

        emitter.emit(EventType.PAYMENT_SUCCESS, summary="Payment received")

        assert store.list_deliveries() == []
        assert scheduler.calls == 0

    def test_one_bad_preference_does_not_block_others(self, data_dir, scheduler):
        store = BrokenStore(data_dir, fail_on="get_preference")
        emitter = Emitter(store, scheduler)

        emitter.emit(EventType.PAYMENT_SUCCESS, summary="Payment received")

        recipients = deliveries_by_recipient(store)
        assert "rcp-001" not in recipients
        assert set(recipients) == {"rcp-002", "rcp-003"}
        assert scheduler.calls == 1

    def test_scheduler_failure_swallowed(self, data_store: DataStore):
        emitter = Emitter(data_store, RecordingScheduler(error=RuntimeError("pool closed")))

        emitter.emit(EventType.PAYMENT_SUCCESS, summary="Payment received")

        # Rows stay pending for the next dispatcher run
        assert len(data_store.list_deliveries(status=DeliveryStatus.PENDING)) == 4


class TestScheduling:
    def test_schedules_once_per_event(self, emitter, scheduler):
        emitter.emit(EventType.PAYMENT_SUCCESS, summary="one")
        emitter.emit(EventType.PAYMENT_FAILED, summary="two")

        assert scheduler.calls == 2

    def test_without_scheduler_rows_stay_pending(self, data_store: DataStore):
        Emitter(data_store).emit(EventType.PAYMENT_SUCCESS, summary="Payment received")

        assert len(data_store.list_pending_deliveries()) == 4


class TestModuleEmit:
    """Tests for the process-wide emit() helper."""

    @pytest.fixture(autouse=True)
    def restore_default(self):
        yield
        set_emitter(None)

    def test_uses_default_emitter(self, emitter: Emitter, data_store: DataStore):
        set_emitter(emitter)

        emit(EventType.ADMIN_LOGIN, actor={"type": "admin", "identifier": "ops@example.com"}, summary="Signed in")

        assert data_store.list_events()[0].actor.identifier == "ops@example.com"

    def test_unavailable_notifier_does_not_raise(self, monkeypatch):
        def broken():
            raise RuntimeError("no settings")

        monkeypatch.setattr(emitter_module, "get_emitter", broken)

        emit(EventType.ADMIN_LOGIN, summary="Signed in")
