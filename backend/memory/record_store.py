from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from .database import SQLiteMemoryDB
from .time_utils import to_iso, utc_now

logger = logging.getLogger(__name__)


def _json_dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


class RecordStore:
    """Key-value persistence for whole record sets.

    Writes are best-effort: a storage failure is logged and reported through the
    return value, never raised, so callers keep serving from in-memory state.
    """

    def __init__(self, db: SQLiteMemoryDB) -> None:
        self._db = db

    def save(self, *, namespace: str, key: str, payload: dict[str, Any]) -> bool:
        now = to_iso(utc_now())
        try:
            with self._db.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO state_records (namespace, record_key, payload_json, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(namespace, record_key) DO UPDATE SET
                      payload_json = excluded.payload_json,
                      updated_at = excluded.updated_at
                    """,
                    (namespace, key, _json_dumps(payload), now, now),
                )
        except sqlite3.Error as exc:
            logger.warning("Failed to persist %s/%s: %s", namespace, key, exc)
            return False
        return True

    def delete(self, *, namespace: str, key: str) -> bool:
        try:
            with self._db.connection() as conn:
                conn.execute(
                    "DELETE FROM state_records WHERE namespace = ? AND record_key = ?",
                    (namespace, key),
                )
        except sqlite3.Error as exc:
            logger.warning("Failed to delete %s/%s: %s", namespace, key, exc)
            return False
        return True

    def load_all(self, namespace: str) -> dict[str, dict[str, Any]]:
        try:
            with self._db.connection() as conn:
                rows = conn.execute(
                    """
                    SELECT record_key, payload_json
                    FROM state_records
                    WHERE namespace = ?
                    ORDER BY created_at ASC, record_key ASC
                    """,
                    (namespace,),
                ).fetchall()
        except sqlite3.Error as exc:
            logger.warning("Failed to load %s records: %s", namespace, exc)
            return {}
        records: dict[str, dict[str, Any]] = {}
        for row in rows:
            try:
                records[row["record_key"]] = json.loads(row["payload_json"])
            except json.JSONDecodeError:
                logger.warning("Skipping corrupt %s record %s", namespace, row["record_key"])
        return records

    def append_feedback(self, entry: dict[str, Any]) -> bool:
        try:
            with self._db.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO feedback_entries (
                      id, episode_id, message_id, rating, reason, custom_reason, message_snippet, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry["id"],
                        entry["episode_id"],
                        entry["message_id"],
                        entry["rating"],
                        entry.get("reason"),
                        entry.get("custom_reason"),
                        entry["message_snippet"],
                        entry["timestamp"],
                    ),
                )
        except sqlite3.Error as exc:
            logger.warning("Failed to append feedback %s: %s", entry.get("id"), exc)
            return False
        return True

    def load_feedback(self) -> list[dict[str, Any]]:
        try:
            with self._db.connection() as conn:
                rows = conn.execute(
                    """
                    SELECT id, episode_id, message_id, rating, reason, custom_reason, message_snippet, created_at
                    FROM feedback_entries
                    ORDER BY created_at ASC, rowid ASC
                    """
                ).fetchall()
        except sqlite3.Error as exc:
            logger.warning("Failed to load feedback ledger: %s", exc)
            return []
        return [
            {
                "id": row["id"],
                "episode_id": row["episode_id"],
                "message_id": row["message_id"],
                "rating": row["rating"],
                "reason": row["reason"],
                "custom_reason": row["custom_reason"],
                "message_snippet": row["message_snippet"],
                "timestamp": row["created_at"],
            }
            for row in rows
        ]
