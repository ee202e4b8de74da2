"""
SQLite connection handling for the preference store.

Connections are opened per operation and closed by the caller.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "ai_gateway.db"
IN_MEMORY = ":memory:"


def get_connection(db_path: str = DEFAULT_DB_PATH, timeout: float = 30.0) -> sqlite3.Connection:
    """Open a connection suited to concurrent writers.

    File databases are switched to WAL journaling so readers never block
    the single writer, and missing parent directories are created.

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait on a locked database before failing
    """
    if db_path != IN_MEMORY:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=timeout)
    conn.execute("PRAGMA foreign_keys = ON")
    if db_path != IN_MEMORY:
        conn.execute("PRAGMA journal_mode = WAL")
    return conn
