"""
SQLite-backed NotificationStore.

Durable storage for events and deliveries, plus the administrator-managed
recipients, preferences and templates. Safe to share between threads and
between processes pointing at the same database file.
"""

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

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
    utcnow,
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteStore:
    """
    SQLite-backed store for the notification schema.

    Uses thread-local connections and WAL mode so the emitter (request
    threads) and the dispatcher (worker threads) can use it concurrently.
    The delivery claim is a single conditional UPDATE, which SQLite applies
    atomically across connections.

    Example:
        store = SQLiteStore(Path("/var/lib/notifier/notifier.db"))
        store.save_recipient(Recipient(name="Ops", email="ops@example.com"))
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path) -> None:
        """
        Initialize the store with the given database path.

        Args:
            db_path: Path to the SQLite database file
        """
        self._db_path = Path(db_path)
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection for the current thread."""
        if not hasattr(self._local, "connection") or self._local.connection is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            connection = sqlite3.connect(self._db_path, timeout=30.0)
            connection.execute("PRAGMA journal_mode=WAL")
            connection.row_factory = sqlite3.Row
            self._local.connection = connection
        return self._local.connection

    def _init_db(self) -> None:
        """Initialize database schema."""
        conn = self._get_connection()
        conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)")
        row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
        current_version = row["version"] if row else 0

        if current_version < self.SCHEMA_VERSION:
            self._migrate_schema(current_version)

    def _migrate_schema(self, from_version: int) -> None:
        """Migrate schema from a previous version."""
        conn = self._get_connection()

        if from_version < 1:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    actor_type TEXT NOT NULL,
                    actor_identifier TEXT,
                    summary TEXT NOT NULL,
                    metadata TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_events_type ON events(type, created_at);

                CREATE TABLE IF NOT EXISTS recipients (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    role TEXT NOT NULL,
                    email TEXT,
                    phone TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS preferences (
                    recipient_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    enabled INTEGER NOT NULL DEFAULT 0,
                    via_email INTEGER NOT NULL DEFAULT 0,
                    via_sms INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (recipient_id, event_type)
                );

                CREATE TABLE IF NOT EXISTS templates (
                    event_type TEXT NOT NULL,
                    channel TEXT NOT NULL,
                    subject TEXT,
                    body TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (event_type, channel)
                );

                CREATE TABLE IF NOT EXISTS deliveries (
                    id TEXT PRIMARY KEY,
                    event_id TEXT NOT NULL REFERENCES events(id),
                    recipient_id TEXT NOT NULL,
                    channel TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    provider_response TEXT,
                    sent_at TEXT,
                    claimed_at TEXT,
                    created_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_deliveries_status ON deliveries(status, created_at);
                CREATE INDEX IF NOT EXISTS idx_deliveries_event ON deliveries(event_id);
            """
            )

        conn.execute("DELETE FROM schema_version")
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,))
        conn.commit()

    def close(self) -> None:
        """Close the database connection for the current thread."""
        if hasattr(self._local, "connection") and self._local.connection is not None:
            self._local.connection.close()
            self._local.connection = None

    # =========================================================================
    # Row conversion
    # =========================================================================

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        return Event(
            id=row["id"],
            type=EventType(row["type"]),
            actor=Actor(type=ActorType(row["actor_type"]), identifier=row["actor_identifier"] or ""),
            summary=row["summary"],
            metadata=json.loads(row["metadata"] or "{}"),
            created_at=_parse_ts(row["created_at"]),
        )

    @staticmethod
    def _row_to_recipient(row: sqlite3.Row) -> Recipient:
        return Recipient(
            id=row["id"],
            name=row["name"],
            role=row["role"],
            email=row["email"],
            phone=row["phone"],
            is_active=bool(row["is_active"]),
            created_at=_parse_ts(row["created_at"]),
        )

    @staticmethod
    def _row_to_preference(row: sqlite3.Row) -> Preference:
        return Preference(
            recipient_id=row["recipient_id"],
            event_type=EventType(row["event_type"]),
            enabled=bool(row["enabled"]),
            via_email=bool(row["via_email"]),
            via_sms=bool(row["via_sms"]),
        )

    @staticmethod
    def _row_to_template(row: sqlite3.Row) -> Template:
        return Template(
            event_type=EventType(row["event_type"]),
            channel=ChannelType(row["channel"]),
            subject=row["subject"],
            body=row["body"],
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_delivery(row: sqlite3.Row) -> Delivery:
        return Delivery(
            id=row["id"],
            event_id=row["event_id"],
            recipient_id=row["recipient_id"],
            channel=ChannelType(row["channel"]),
            status=DeliveryStatus(row["status"]),
            provider_response=row["provider_response"],
            sent_at=_parse_ts(row["sent_at"]),
            claimed_at=_parse_ts(row["claimed_at"]),
            created_at=_parse_ts(row["created_at"]),
        )

    # =========================================================================
    # Events
    # =========================================================================

    def insert_event(self, event: Event) -> Event:
        conn = self._get_connection()
        with conn:
            conn.execute(
                """
                INSERT INTO events (id, type, actor_type, actor_identifier, summary, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """
                ,
                (
                    event.id,
                    event.type.value,
                    event.actor.type.value,
                    event.actor.identifier,
                    event.summary,
                    json.dumps(event.metadata, default=str),
                    _ts(event.created_at),
                ),
            )
        return event

    def get_event(self, event_id: str) -> Optional[Event]:
        row = self._get_connection().execute(
            "SELECT * FROM events WHERE id = ?", (event_id,)
        ).fetchone()
        return self._row_to_event(row) if row else None

    def list_events(self, limit: int = 50, event_type: Optional[EventType] = None) -> list[Event]:
        conn = self._get_connection()
        if event_type is not None:
            cursor = conn.execute(
                "SELECT * FROM events WHERE type = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (EventType(event_type).value, limit),
            )
        else:
            cursor = conn.execute(
                "SELECT * FROM events ORDER BY created_at DESC, rowid DESC LIMIT ?", (limit,)
            )
        return [self._row_to_event(row) for row in cursor]

    # =========================================================================
    # Recipients
    # =========================================================================

    def save_recipient(self, recipient: Recipient) -> Recipient:
        conn = self._get_connection()
        with conn:
            conn.execute(
                """
                INSERT INTO recipients (id, name, role, email, phone, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    role = excluded.role,
                    email = excluded.email,
                    phone = excluded.phone,
                    is_active = excluded.is_active
                """
                ,
                (
                    recipient.id,
                    recipient.name,
                    recipient.role,
                    recipient.email,
                    recipient.phone,
                    int(recipient.is_active),
                    _ts(recipient.created_at),
                ),
            )
        return recipient

    def get_recipient(self, recipient_id: str) -> Optional[Recipient]:
        row = self._get_connection().execute(
            "SELECT * FROM recipients WHERE id = ?", (recipient_id,)
        ).fetchone()
        return self._row_to_recipient(row) if row else None

    def list_recipients(self, active_only: bool = False) -> list[Recipient]:
        query = "SELECT * FROM recipients"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY created_at"
        return [self._row_to_recipient(row) for row in self._get_connection().execute(query)]

    # =========================================================================
    # Preferences
    # =========================================================================

    def save_preference(self, preference: Preference) -> Preference:
        conn = self._get_connection()
        with conn:
            conn.execute(
                """
                INSERT INTO preferences (recipient_id, event_type, enabled, via_email, via_sms)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(recipient_id, event_type) DO UPDATE SET
                    enabled = excluded.enabled,
                    via_email = excluded.via_email,
                    via_sms = excluded.via_sms
                """
                ,
                (
                    preference.recipient_id,
                    preference.event_type.value,
                    int(preference.enabled),
                    int(preference.via_email),
                    int(preference.via_sms),
                ),
            )
        return preference

    def get_preference(self, recipient_id: str, event_type: EventType) -> Optional[Preference]:
        row = self._get_connection().execute(
            "SELECT * FROM preferences WHERE recipient_id = ? AND event_type = ?",
            (recipient_id, EventType(event_type).value),
        ).fetchone()
        return self._row_to_preference(row) if row else None

    def list_preferences(self, recipient_id: Optional[str] = None) -> list[Preference]:
        conn = self._get_connection()
        if recipient_id is not None:
            cursor = conn.execute(
                "SELECT * FROM preferences WHERE recipient_id = ? ORDER BY event_type", (recipient_id,)
            )
        else:
            cursor = conn.execute("SELECT * FROM preferences ORDER BY recipient_id, event_type")
        return [self._row_to_preference(row) for row in cursor]

    # =========================================================================
    # Templates
    # =========================================================================

    def save_template(self, template: Template) -> Template:
        stored = template.model_copy(update={"updated_at": utcnow()})
        conn = self._get_connection()
        with conn:
            conn.execute(
                """
                INSERT INTO templates (event_type, channel, subject, body, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(event_type, channel) DO UPDATE SET
                    subject = excluded.subject,
                    body = excluded.body,
                    updated_at = excluded.updated_at
                """
                ,
                (
                    stored.event_type.value,
                    stored.channel.value,
                    stored.subject,
                    stored.body,
                    _ts(stored.updated_at),
                ),
            )
        return stored

    def get_template(self, event_type: EventType, channel: ChannelType) -> Optional[Template]:
        row = self._get_connection().execute(
            "SELECT * FROM templates WHERE event_type = ? AND channel = ?",
            (EventType(event_type).value, ChannelType(channel).value),
        ).fetchone()
        return self._row_to_template(row) if row else None

    def list_templates(self) -> list[Template]:
        cursor = self._get_connection().execute("SELECT * FROM templates ORDER BY event_type, channel")
        return [self._row_to_template(row) for row in cursor]

    def delete_template(self, event_type: EventType, channel: ChannelType) -> bool:
        conn = self._get_connection()
        with conn:
            cursor = conn.execute(
                "DELETE FROM templates WHERE event_type = ? AND channel = ?",
                (EventType(event_type).value, ChannelType(channel).value),
            )
        return cursor.rowcount > 0

    # =========================================================================
    # Deliveries
    # =========================================================================

    def insert_deliveries(self, deliveries: list[Delivery]) -> list[Delivery]:
        """Insert a batch of deliveries in one transaction."""
        conn = self._get_connection()
        with conn:
            conn.executemany(
                """
                INSERT INTO deliveries (
                    id, event_id, recipient_id, channel, status,
                    provider_response, sent_at, claimed_at, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """
                ,
                [
                    (
                        d.id,
                        d.event_id,
                        d.recipient_id,
                        d.channel.value,
                        d.status.value,
                        d.provider_response,
                        _ts(d.sent_at),
                        _ts(d.claimed_at),
                        _ts(d.created_at),
                    )
                    for d in deliveries
                ],
            )
        return deliveries

    def get_delivery(self, delivery_id: str) -> Optional[Delivery]:
        row = self._get_connection().execute(
            "SELECT * FROM deliveries WHERE id = ?", (delivery_id,)
        ).fetchone()
        return self._row_to_delivery(row) if row else None

    def list_pending_deliveries(self, limit: int = 50) -> list[Delivery]:
        cursor = self._get_connection().execute(
            "SELECT * FROM deliveries WHERE status = ? ORDER BY created_at, rowid LIMIT ?",
            (DeliveryStatus.PENDING.value, limit),
        )
        return [self._row_to_delivery(row) for row in cursor]

    def list_deliveries(
        self, event_id: Optional[str] = None, status: Optional[DeliveryStatus] = None
    ) -> list[Delivery]:
        clauses = []
        params: list = []
        if event_id is not None:
            clauses.append("event_id = ?")
            params.append(event_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(DeliveryStatus(status).value)

        query = "SELECT * FROM deliveries"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at, rowid"
        return [self._row_to_delivery(row) for row in self._get_connection().execute(query, params)]

    def claim_delivery(self, delivery_id: str) -> Optional[Delivery]:
        """Flip pending -> processing in one statement; None if someone else won."""
        conn = self._get_connection()
        with conn:
            cursor = conn.execute(
                "UPDATE deliveries SET status = ?, claimed_at = ? WHERE id = ? AND status = ?",
                (
                    DeliveryStatus.PROCESSING.value,
                    _ts(utcnow()),
                    delivery_id,
                    DeliveryStatus.PENDING.value,
                ),
            )
        if cursor.rowcount != 1:
            return None
        return self.get_delivery(delivery_id)

    def complete_delivery(
        self,
        delivery_id: str,
        status: DeliveryStatus,
        provider_response: Optional[str],
    ) -> Optional[Delivery]:
        """Move a processing delivery to sent or failed."""
        status = DeliveryStatus(status)
        if not status.is_terminal:
            raise ValueError(f"Not a terminal status: {status.value}")

        sent_at = _ts(utcnow()) if status == DeliveryStatus.SENT else None
        conn = self._get_connection()
        with conn:
            cursor = conn.execute(
                """
                UPDATE deliveries SET status = ?, provider_response = ?, sent_at = ?
                WHERE id = ? AND status = ?
                """
                ,
                (status.value, provider_response, sent_at, delivery_id, DeliveryStatus.PROCESSING.value),
            )
        if cursor.rowcount != 1:
            return None
        return self.get_delivery(delivery_id)
