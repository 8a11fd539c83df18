"""
SQLite database layer for TuneCast.
Thread-safe via check_same_thread=False + explicit locking.
"""

import sqlite3
import logging
import threading
from pathlib import Path

from tunecast.core.constants import DB_PATH
from tunecast.core.models import UserRecord, load_playlists, dump_playlists

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS users (
    username TEXT PRIMARY KEY NOT NULL,
    credential TEXT NOT NULL,
    folder_name TEXT NOT NULL UNIQUE,
    playlists_json TEXT NOT NULL
);
"""


class Database:
    """SQLite database wrapper for TuneCast user records."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH
        self._ensure_dirs()
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()

    def _ensure_dirs(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _migrate(self):
        with self._lock:
            cur = self.conn.cursor()
            cur.executescript(_CREATE_TABLES)
            cur.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (_SCHEMA_VERSION,),
            )
            self.conn.commit()

    def close(self):
        if self.conn:
            self.conn.close()

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> UserRecord:
        return UserRecord(
            username=row['username'],
            credential=row['credential'],
            folder_name=row['folder_name'],
            playlists=load_playlists(row['playlists_json']),
        )

    # ── User CRUD ─────────────────────────────────────────────────────

    def create_user(self, username: str, credential: str, folder_name: str):
        """Insert a user. Raises sqlite3.IntegrityError on a duplicate name or folder."""
        with self._lock:
            self.conn.execute(
                """INSERT INTO users (username, credential, folder_name, playlists_json)
                   VALUES (?, ?, ?, ?)""",
                (username, credential, folder_name, dump_playlists([])),
            )
            self.conn.commit()

    def get_user(self, username: str) -> UserRecord | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM users WHERE username = ?", (username,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def has_user(self, username: str) -> bool:
        with self._lock:
            row = self.conn.execute(
                "SELECT 1 FROM users WHERE username = ? LIMIT 1", (username,)
            ).fetchone()
        return row is not None

    def folder_name_taken(self, folder_name: str) -> bool:
        with self._lock:
            row = self.conn.execute(
                "SELECT 1 FROM users WHERE folder_name = ? LIMIT 1", (folder_name,)
            ).fetchone()
        return row is not None

    def get_all_usernames(self) -> list[str]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT username FROM users ORDER BY username"
            ).fetchall()
        return [r['username'] for r in rows]

    def get_playlists_json(self, username: str) -> str | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT playlists_json FROM users WHERE username = ?", (username,)
            ).fetchone()
        return row['playlists_json'] if row else None

    def set_playlists_json(self, username: str, playlists_json: str):
        with self._lock:
            self.conn.execute(
                "UPDATE users SET playlists_json = ? WHERE username = ?",
                (playlists_json, username),
            )
            self.conn.commit()
