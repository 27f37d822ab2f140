from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from .time_utils import parse_iso, utc_now


@dataclass
class TemporalResult:
    expired_summary_count: int
    overflow_summary_count: int
    trimmed_event_count: int


class TemporalLifecycleService:
    SUMMARY_WINDOW_DAYS = 30
    MAX_SUMMARIES = 100
    MAX_RECENT_EVENTS = 50

    def apply(self, record: dict[str, Any], now: datetime | None = None) -> TemporalResult:
        now = now or utc_now()
        cutoff = now - timedelta(days=self.SUMMARY_WINDOW_DAYS)

        summaries = record.get("conversation_summaries", [])
        in_window = []
        for summary in summaries:
            created_at = parse_iso(summary.get("created_at"))
            if created_at is not None and created_at < cutoff:
                continue
            in_window.append(summary)
        expired = len(summaries) - len(in_window)
        overflow = max(0, len(in_window) - self.MAX_SUMMARIES)
        record["conversation_summaries"] = in_window[: self.MAX_SUMMARIES]

        events = record.get("recent_events", [])
        trimmed = max(0, len(events) - self.MAX_RECENT_EVENTS)
        record["recent_events"] = events[: self.MAX_RECENT_EVENTS]

        return TemporalResult(
            expired_summary_count=expired,
            overflow_summary_count=overflow,
            trimmed_event_count=trimmed,
        )
