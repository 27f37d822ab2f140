from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Collection

from memory.record_store import RecordStore
from memory.time_utils import to_iso, utc_now

from .display import FEEDBACK_REASON_LABELS
from .models import new_id

logger = logging.getLogger(__name__)

RATINGS = ("helpful", "not_helpful")
REASONS = tuple(FEEDBACK_REASON_LABELS)
SNIPPET_LIMIT = 100


class FeedbackError(Exception):
    pass


@dataclass(frozen=True)
class FeedbackEntry:
    id: str
    episode_id: str
    message_id: str
    rating: str
    timestamp: str
    reason: str | None = None
    custom_reason: str | None = None
    message_snippet: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class FeedbackLedger:
    """Append-only record of per-message ratings."""

    def __init__(self, records: RecordStore) -> None:
        self._records = records
        self._entries: list[FeedbackEntry] = []
        self.rated_messages: dict[str, bool] = {}
        for row in records.load_feedback():
            entry = FeedbackEntry(
                id=row["id"],
                episode_id=row["episode_id"],
                message_id=row["message_id"],
                rating=row["rating"],
                timestamp=row["timestamp"],
                reason=row["reason"],
                custom_reason=row["custom_reason"],
                message_snippet=row["message_snippet"] or "",
            )
            self._entries.append(entry)
            self.rated_messages[entry.message_id] = True

    def submit_feedback(
        self,
        *,
        episode_id: str,
        message_id: str,
        rating: str,
        reason: str | None = None,
        custom_reason: str | None = None,
        message_snippet: str | None = None,
    ) -> FeedbackEntry:
        if rating not in RATINGS:
            raise FeedbackError(f"Unknown rating: {rating}")
        if reason is not None and reason not in REASONS:
            raise FeedbackError(f"Unknown feedback reason: {reason}")
        if not episode_id or not message_id:
            raise FeedbackError("episode_id and message_id are required.")

        entry = FeedbackEntry(
            id=new_id("feedback"),
            episode_id=episode_id,
            message_id=message_id,
            rating=rating,
            timestamp=to_iso(utc_now()),
            reason=reason,
            custom_reason=custom_reason,
            message_snippet=(message_snippet or "")[:SNIPPET_LIMIT],
        )
        self._entries.append(entry)
        self.rated_messages[message_id] = True
        self._records.append_feedback(entry.to_dict())
        logger.info(
            "Feedback %s on message %s (episode %s)%s",
            rating,
            message_id,
            episode_id,
            f": {FEEDBACK_REASON_LABELS[reason]}" if reason else "",
        )
        return entry

    def has_rated_message(self, message_id: str) -> bool:
        return self.rated_messages.get(message_id, False)

    def get_rating_for_message(self, message_id: str) -> str | None:
        for entry in reversed(self._entries):
            if entry.message_id == message_id:
                return entry.rating
        return None

    def _scoped(self, episode_ids: Collection[str] | None) -> list[FeedbackEntry]:
        if episode_ids is None:
            return list(self._entries)
        return [entry for entry in self._entries if entry.episode_id in episode_ids]

    def get_feedback_summary(self, *, episode_ids: Collection[str] | None = None) -> dict[str, Any]:
        """Aggregate ratings, optionally limited to the given episodes."""
        entries = self._scoped(episode_ids)
        total = len(entries)
        helpful = sum(1 for entry in entries if entry.rating == "helpful")
        not_helpful = sum(1 for entry in entries if entry.rating == "not_helpful")
        breakdown = {reason: 0 for reason in REASONS}
        for entry in entries:
            if entry.rating == "not_helpful" and entry.reason:
                breakdown[entry.reason] += 1
        return {
            "total_feedback": total,
            "helpful_count": helpful,
            "not_helpful_count": not_helpful,
            "helpful_percentage": int(helpful / total * 100 + 0.5) if total else 0,
            "reason_breakdown": breakdown,
            "recent_feedback": [entry.to_dict() for entry in reversed(entries[-10:])],
        }

    def get_recent_feedback(self, limit: int = 20, *, episode_ids: Collection[str] | None = None) -> list[FeedbackEntry]:
        if limit <= 0:
            return []
        return list(reversed(self._scoped(episode_ids)[-limit:]))

    def get_feedback_for_episode(self, episode_id: str) -> list[FeedbackEntry]:
        return [entry for entry in self._entries if entry.episode_id == episode_id]

    def export_feedback_json(self, *, episode_ids: Collection[str] | None = None) -> str:
        payload = {
            "exported_at": to_iso(utc_now()),
            "summary": self.get_feedback_summary(episode_ids=episode_ids),
            "entries": [entry.to_dict() for entry in self._scoped(episode_ids)],
        }
        return json.dumps(payload, indent=2)
