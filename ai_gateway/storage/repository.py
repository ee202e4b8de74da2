"""
Repository pattern for data access.

Defines the preference store contract used by the gateway, plus in-memory
and SQLite implementations, and the append-only security event log.
"""

import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from ai_gateway.core.types import ConnectionStatus, ProviderIdentity

from .db import DEFAULT_DB_PATH, get_connection
from .models import SecurityEvent, SecurityEventType, Severity, UserPreferenceRecord


class PreferenceStore(ABC):
    """Read/write contract for user preference records, keyed by user id.

    The two update primitives are atomic read-modify-writes: concurrent
    callers for the same user never lose an update.
    """

    @abstractmethod
    def get(self, user_id: str) -> Optional[UserPreferenceRecord]:
        """Return the user's record, or None if absent."""

    @abstractmethod
    def upsert(self, user_id: str, record: UserPreferenceRecord) -> None:
        """Create or replace the user's configuration.

        Existing usage counters, last_used_at and created_at are kept.
        """

    @abstractmethod
    def increment_usage(self, user_id: str, tokens: int, used_at: datetime) -> bool:
        """Atomically count one successful request.

        Adds 1 to total_requests and ``tokens`` to total_tokens_used, marks
        the connection as connected and clears the last error.

        Returns:
            False if the user has no record
        """

    @abstractmethod
    def update_status(
        self,
        user_id: str,
        status: ConnectionStatus,
        error: Optional[str],
        at: datetime,
        tested: bool = False,
    ) -> bool:
        """Atomically record a connection outcome.

        Args:
            user_id: User whose record is updated
            status: New connection status
            error: Last error message (None clears it)
            at: Time of the outcome
            tested: Whether the outcome came from an explicit connection test,
                in which case last_test_at is also set

        Returns:
            False if the user has no record
        """


class InMemoryPreferenceStore(PreferenceStore):
    """Process-local store guarded by a single lock."""

    def __init__(self):
        self._records: Dict[str, UserPreferenceRecord] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[UserPreferenceRecord]:
        with self._lock:
            return self._records.get(user_id)

    def upsert(self, user_id: str, record: UserPreferenceRecord) -> None:
        with self._lock:
            existing = self._records.get(user_id)
            if existing is not None:
                record = record.with_changes(
                    total_requests=existing.total_requests,
                    total_tokens_used=existing.total_tokens_used,
                    last_used_at=existing.last_used_at,
                    created_at=existing.created_at,
                )
            self._records[user_id] = record.with_changes(user_id=user_id)

    def increment_usage(self, user_id: str, tokens: int, used_at: datetime) -> bool:
        if tokens < 0:
            raise ValueError("tokens must be >= 0")
        with self._lock:
            existing = self._records.get(user_id)
            if existing is None:
                return False
            self._records[user_id] = existing.with_changes(
                total_requests=existing.total_requests + 1,
                total_tokens_used=existing.total_tokens_used + tokens,
                last_used_at=used_at,
                connection_status=ConnectionStatus.CONNECTED,
                last_error=None,
                updated_at=used_at,
            )
            return True

    def update_status(
        self,
        user_id: str,
        status: ConnectionStatus,
        error: Optional[str],
        at: datetime,
        tested: bool = False,
    ) -> bool:
        with self._lock:
            existing = self._records.get(user_id)
            if existing is None:
                return False
            changes = {
                "connection_status": status,
                "last_error": error,
                "updated_at": at,
            }
            if tested:
                changes["last_test_at"] = at
            self._records[user_id] = existing.with_changes(**changes)
            return True


_PREFERENCE_COLUMNS = (
    "user_id, provider, api_key_encrypted, model_name, custom_endpoint, "
    "temperature, max_tokens, provider_settings, total_requests, total_tokens_used, "
    "last_used_at, connection_status, last_error, last_test_at, created_at, updated_at"
)


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_record(row) -> UserPreferenceRecord:
    return UserPreferenceRecord(
        user_id=row[0],
        provider=ProviderIdentity.parse(row[1]),
        api_key_encrypted=row[2],
        model_name=row[3],
        custom_endpoint=row[4],
        temperature=row[5],
        max_tokens=row[6],
        provider_settings=json.loads(row[7]) if row[7] else {},
        total_requests=row[8],
        total_tokens_used=row[9],
        last_used_at=_from_iso(row[10]),
        connection_status=ConnectionStatus(row[11]),
        last_error=row[12],
        last_test_at=_from_iso(row[13]),
        created_at=_from_iso(row[14]),
        updated_at=_from_iso(row[15]),
    )


class SQLitePreferenceStore(PreferenceStore):
    """Preference store backed by the user_ai_preferences table.

    Counter updates are single UPDATE statements, so SQLite's own write lock
    makes them atomic across threads and processes.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file (schema must exist, see
                initialize_schema)
        """
        self.db_path = db_path

    def get(self, user_id: str) -> Optional[UserPreferenceRecord]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {_PREFERENCE_COLUMNS} FROM user_ai_preferences WHERE user_id = ?",
                (user_id,),
            )
            row = cursor.fetchone()
            return _row_to_record(row) if row else None
        finally:
            conn.close()

    def upsert(self, user_id: str, record: UserPreferenceRecord) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(f"""
                INSERT INTO user_ai_preferences ({_PREFERENCE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    provider = excluded.provider,
                    api_key_encrypted = excluded.api_key_encrypted,
                    model_name = excluded.model_name,
                    custom_endpoint = excluded.custom_endpoint,
                    temperature = excluded.temperature,
                    max_tokens = excluded.max_tokens,
                    provider_settings = excluded.provider_settings,
                    connection_status = excluded.connection_status,
                    last_error = excluded.last_error,
                    last_test_at = excluded.last_test_at,
                    updated_at = excluded.updated_at
            """, (
                user_id,
                record.provider.value,
                record.api_key_encrypted,
                record.model_name,
                record.custom_endpoint,
                record.temperature,
                record.max_tokens,
                json.dumps(record.provider_settings or {}),
                record.total_requests,
                record.total_tokens_used,
                _to_iso(record.last_used_at),
                record.connection_status.value,
                record.last_error,
                _to_iso(record.last_test_at),
                _to_iso(record.created_at),
                _to_iso(record.updated_at),
            ))
            conn.commit()
        finally:
            conn.close()

    def increment_usage(self, user_id: str, tokens: int, used_at: datetime) -> bool:
        if tokens < 0:
            raise ValueError("tokens must be >= 0")
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                UPDATE user_ai_preferences
                SET total_requests = total_requests + 1,
                    total_tokens_used = total_tokens_used + ?,
                    last_used_at = ?,
                    connection_status = ?,
                    last_error = NULL,
                    updated_at = ?
                WHERE user_id = ?
            """, (
                tokens,
                used_at.isoformat(),
                ConnectionStatus.CONNECTED.value,
                used_at.isoformat(),
                user_id,
            ))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def update_status(
        self,
        user_id: str,
        status: ConnectionStatus,
        error: Optional[str],
        at: datetime,
        tested: bool = False,
    ) -> bool:
        query = "UPDATE user_ai_preferences SET connection_status = ?, last_error = ?, updated_at = ?"
        params = [status.value, error, at.isoformat()]
        if tested:
            query += ", last_test_at = ?"
            params.append(at.isoformat())
        query += " WHERE user_id = ?"
        params.append(user_id)

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(query, params)
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()


class SecurityEventSink(ABC):
    """Append-only destination for security events."""

    @abstractmethod
    def append(self, event: SecurityEvent) -> None:
        """Persist a single event."""


class InMemorySecurityEventLog(SecurityEventSink):
    """Keeps events in a list; used by tests and short-lived processes."""

    def __init__(self):
        self._events: List[SecurityEvent] = []
        self._lock = threading.Lock()

    def append(self, event: SecurityEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[SecurityEvent]:
        with self._lock:
            return list(self._events)


class SQLiteSecurityEventLog(SecurityEventSink):
    """Append-only security_audit_log table.

    No UPDATE or DELETE operations are ever performed on this table.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def append(self, event: SecurityEvent) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO security_audit_log
                (user_id, event_type, description, severity, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                event.user_id,
                event.event_type.value,
                event.description,
                event.severity.value,
                json.dumps(event.metadata, default=str),
                event.timestamp.isoformat(),
            ))
            conn.commit()
        finally:
            conn.close()

    def fetch_recent(self, user_id: Optional[str] = None, limit: int = 100) -> List[SecurityEvent]:
        """Fetch recent events, newest first, optionally for one user."""
        conn = get_connection(self.db_path)
        try:
            query = (
                "SELECT user_id, event_type, description, severity, metadata, created_at "
                "FROM security_audit_log"
            )
            params: list = []
            if user_id:
                query += " WHERE user_id = ?"
                params.append(user_id)
            query += " ORDER BY id DESC LIMIT ?"
            params.append(limit)

            cursor = conn.execute(query, params)
            return [
                SecurityEvent(
                    user_id=row[0],
                    event_type=SecurityEventType(row[1]),
                    description=row[2],
                    severity=Severity(row[3]),
                    metadata=json.loads(row[4]) if row[4] else {},
                    timestamp=datetime.fromisoformat(row[5]),
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the preference and security audit tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS user_ai_preferences (
                user_id TEXT PRIMARY KEY,
                provider TEXT NOT NULL,
                api_key_encrypted TEXT,
                model_name TEXT,
                custom_endpoint TEXT,
                temperature REAL NOT NULL DEFAULT 0.7,
                max_tokens INTEGER NOT NULL DEFAULT 2000,
                provider_settings TEXT NOT NULL DEFAULT '{}',
                total_requests INTEGER NOT NULL DEFAULT 0,
                total_tokens_used INTEGER NOT NULL DEFAULT 0,
                last_used_at TEXT,
                connection_status TEXT NOT NULL DEFAULT 'untested'
                    CHECK (connection_status IN ('untested', 'connected', 'error', 'quota_exceeded')),
                last_error TEXT,
                last_test_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS security_audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                event_type TEXT NOT NULL,
                description TEXT NOT NULL,
                severity TEXT NOT NULL,
                metadata TEXT,
                created_at TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()
