from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class SQLiteMemoryDB:
    def __init__(self, db_path: str) -> None:
        self._path = Path(db_path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> str:
        return str(self._path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS state_records (
                  namespace TEXT NOT NULL,
                  record_key TEXT NOT NULL,
                  payload_json TEXT NOT NULL,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL,
                  PRIMARY KEY (namespace, record_key)
                );

                CREATE TABLE IF NOT EXISTS feedback_entries (
                  id TEXT PRIMARY KEY,
                  episode_id TEXT NOT NULL,
                  message_id TEXT NOT NULL,
                  rating TEXT NOT NULL,
                  reason TEXT,
                  custom_reason TEXT,
                  message_snippet TEXT NOT NULL,
                  created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_state_records_namespace_updated
                  ON state_records(namespace, updated_at DESC);
                CREATE INDEX IF NOT EXISTS idx_feedback_episode_created
                  ON feedback_entries(episode_id, created_at);
                CREATE INDEX IF NOT EXISTS idx_feedback_message
                  ON feedback_entries(message_id);
                """
            )
