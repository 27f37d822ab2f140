from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime
from typing import Any

from .memory_policy_guard import HealthMemoryError, MemoryCandidateError, MemoryPolicyGuard
from .record_store import RecordStore
from .temporal_lifecycle import TemporalLifecycleService
from .time_utils import to_iso, utc_now

logger = logging.getLogger(__name__)

NAMESPACE = "health_memory"


def _empty_record(member_id: str) -> dict[str, Any]:
    return {
        "member_id": member_id,
        "conditions": [],
        "medications": [],
        "allergies": [],
        "recent_events": [],
        "patterns": [],
        "conversation_summaries": [],
        "candidates": [],
        "updated_at": None,
    }


def normalize_name(value: str) -> str:
    return " ".join((value or "").strip().lower().split())


class HealthMemoryStore:
    def __init__(self, records: RecordStore) -> None:
        self._records = records
        self.guard = MemoryPolicyGuard()
        self.temporal = TemporalLifecycleService()
        self._members: dict[str, dict[str, Any]] = {}
        for member_id, payload in records.load_all(NAMESPACE).items():
            self._members[member_id] = _empty_record(member_id) | payload

    def _record(self, member_id: str) -> dict[str, Any]:
        member_id = self.guard.ensure_member(member_id)
        if member_id not in self._members:
            self._members[member_id] = _empty_record(member_id)
        return self._members[member_id]

    def _commit(self, record: dict[str, Any], now: datetime | None = None) -> None:
        now = now or utc_now()
        self.temporal.apply(record, now)
        record["updated_at"] = to_iso(now)
        self._records.save(namespace=NAMESPACE, key=record["member_id"], payload=record)

    def get_member(self, member_id: str) -> dict[str, Any]:
        member_id = self.guard.ensure_member(member_id)
        record = self._members.get(member_id)
        if record is None:
            return _empty_record(member_id)
        return copy.deepcopy(record)

    def list_items(self, *, member_id: str, kind: str) -> list[dict[str, Any]]:
        kind = self.guard.ensure_kind(kind)
        return copy.deepcopy(self.get_member(member_id)[kind])

    def add_item(
        self,
        *,
        member_id: str,
        kind: str,
        payload: dict[str, Any],
        source: str = "user_reported",
    ) -> dict[str, Any]:
        kind = self.guard.ensure_kind(kind)
        source = self.guard.ensure_source(source)
        check = self.guard.check_fact_payload(kind, payload)
        if not check.accepted:
            raise HealthMemoryError(check.reason)

        record = self._record(member_id)
        name_field = self.guard.name_field(kind)
        name = payload[name_field].strip()
        now = to_iso(utc_now())
        items = record[kind]

        existing = next((item for item in items if normalize_name(item[name_field]) == normalize_name(name)), None)
        if existing is not None:
            items.remove(existing)
            existing.update({k: v for k, v in payload.items() if k not in {"id", name_field}})
            existing["source"] = source
            existing["last_mentioned"] = now
            existing["updated_at"] = now
            items.insert(0, existing)
            self._commit(record)
            return copy.deepcopy(existing)

        item = {
            **payload,
            "id": uuid.uuid4().hex,
            name_field: name,
            "source": source,
            "last_mentioned": now,
            "created_at": now,
            "updated_at": now,
        }
        items.insert(0, item)
        self._commit(record)
        return copy.deepcopy(item)

    def update_item(self, *, member_id: str, kind: str, item_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        kind = self.guard.ensure_kind(kind)
        record = self._record(member_id)
        item = next((row for row in record[kind] if row["id"] == item_id), None)
        if item is None:
            raise HealthMemoryError(f"Unknown {kind} entry: {item_id}")
        if "source" in updates:
            self.guard.ensure_source(updates["source"])
        now = to_iso(utc_now())
        item.update({k: v for k, v in updates.items() if k not in {"id", "created_at"}})
        item["last_mentioned"] = now
        item["updated_at"] = now
        record[kind].remove(item)
        record[kind].insert(0, item)
        self._commit(record)
        return copy.deepcopy(item)

    def remove_item(self, *, member_id: str, kind: str, item_id: str) -> bool:
        kind = self.guard.ensure_kind(kind)
        record = self._record(member_id)
        before = len(record[kind])
        record[kind] = [row for row in record[kind] if row["id"] != item_id]
        if len(record[kind]) == before:
            return False
        self._commit(record)
        return True

    def add_recent_event(
        self,
        *,
        member_id: str,
        description: str,
        event_type: str = "other",
        source: str = "user_reported",
        episode_id: str | None = None,
    ) -> dict[str, Any]:
        source = self.guard.ensure_source(source)
        record = self._record(member_id)
        now = to_iso(utc_now())
        event = {
            "id": uuid.uuid4().hex,
            "description": description.strip(),
            "event_type": event_type,
            "episode_id": episode_id,
            "source": source,
            "last_mentioned": now,
            "created_at": now,
        }
        record["recent_events"].insert(0, event)
        self._commit(record)
        return copy.deepcopy(event)

    def record_symptom_pattern(
        self,
        *,
        member_id: str,
        symptom: str,
        severity: int | None = None,
        episode_id: str | None = None,
        source: str = "conversation_extracted",
    ) -> dict[str, Any]:
        source = self.guard.ensure_source(source)
        record = self._record(member_id)
        now = to_iso(utc_now())
        pattern = next((row for row in record["patterns"] if normalize_name(row["symptom"]) == normalize_name(symptom)), None)
        if pattern is None:
            pattern = {
                "id": uuid.uuid4().hex,
                "symptom": symptom.strip(),
                "occurrences": 0,
                "severities": [],
                "episode_ids": [],
                "first_seen": now,
                "source": source,
            }
        else:
            record["patterns"].remove(pattern)
        pattern["occurrences"] += 1
        if severity is not None:
            pattern["severities"].append(int(severity))
        if episode_id and episode_id not in pattern["episode_ids"]:
            pattern["episode_ids"].append(episode_id)
        severities = pattern["severities"]
        pattern["average_severity"] = round(sum(severities) / len(severities), 1) if severities else None
        pattern["last_seen"] = now
        pattern["last_mentioned"] = now
        record["patterns"].insert(0, pattern)
        self._commit(record)
        return copy.deepcopy(pattern)

    def confirm_symptom_pattern(self, *, member_id: str, symptom: str, source: str = "conversation_extracted") -> dict[str, Any]:
        source = self.guard.ensure_source(source)
        record = self._record(member_id)
        pattern = next((row for row in record["patterns"] if normalize_name(row["symptom"]) == normalize_name(symptom)), None)
        if pattern is None:
            raise HealthMemoryError(f"Unknown symptom pattern: {symptom}")
        now = to_iso(utc_now())
        pattern["confirmed"] = True
        pattern["source"] = source
        pattern["last_mentioned"] = now
        self._commit(record)
        return copy.deepcopy(pattern)

    def add_conversation_summary(
        self,
        *,
        member_id: str,
        episode_id: str,
        summary_text: str,
        urgency_level: str | None = None,
        symptoms: list[str] | None = None,
        created_at: datetime | None = None,
    ) -> dict[str, Any]:
        record = self._record(member_id)
        created = created_at or utc_now()
        summary = {
            "id": uuid.uuid4().hex,
            "episode_id": episode_id,
            "summary_text": summary_text,
            "urgency_level": urgency_level,
            "symptoms": list(symptoms or []),
            "created_at": to_iso(created),
        }
        record["conversation_summaries"].insert(0, summary)
        record["conversation_summaries"].sort(key=lambda row: row["created_at"], reverse=True)
        self._commit(record)
        return copy.deepcopy(summary)

    def get_conversation_summaries(self, *, member_id: str, limit: int | None = None) -> list[dict[str, Any]]:
        record = self._members.get(self.guard.ensure_member(member_id))
        if record is None:
            return []
        self.temporal.apply(record)
        summaries = record["conversation_summaries"]
        if limit is not None:
            summaries = summaries[: max(0, limit)]
        return copy.deepcopy(summaries)

    def add_candidate(
        self,
        *,
        member_id: str,
        candidate_type: str,
        content: str,
        confidence: float,
        source_episode_id: str,
    ) -> dict[str, Any]:
        candidate_type = self.guard.ensure_candidate_type(candidate_type)
        confidence = self.guard.ensure_confidence(confidence)
        record = self._record(member_id)
        candidate = {
            "id": uuid.uuid4().hex,
            "type": candidate_type,
            "content": content.strip(),
            "confidence": confidence,
            "source_episode_id": source_episode_id,
            "processed": False,
            "accepted_by_user": None,
            "promoted": False,
            "created_at": to_iso(utc_now()),
            "processed_at": None,
        }
        record["candidates"].append(candidate)
        self._commit(record)
        return copy.deepcopy(candidate)

    def get_candidates(self, *, member_id: str, pending_only: bool = False) -> list[dict[str, Any]]:
        candidates = self.get_member(member_id)["candidates"]
        if pending_only:
            candidates = [row for row in candidates if not row["processed"]]
        return candidates

    def _candidate(self, record: dict[str, Any], candidate_id: str) -> dict[str, Any]:
        candidate = next((row for row in record["candidates"] if row["id"] == candidate_id), None)
        if candidate is None:
            raise MemoryCandidateError(f"Unknown memory candidate: {candidate_id}")
        return candidate

    def process_candidate(self, *, member_id: str, candidate_id: str, accepted: bool) -> dict[str, Any]:
        record = self._record(member_id)
        candidate = self._candidate(record, candidate_id)
        if candidate["processed"]:
            raise MemoryCandidateError(f"Memory candidate already processed: {candidate_id}")
        candidate["processed"] = True
        candidate["accepted_by_user"] = bool(accepted)
        candidate["processed_at"] = to_iso(utc_now())
        self._commit(record)
        return copy.deepcopy(candidate)

    def mark_candidate_promoted(self, *, member_id: str, candidate_id: str) -> dict[str, Any]:
        record = self._record(member_id)
        candidate = self._candidate(record, candidate_id)
        if not candidate["processed"] or not candidate["accepted_by_user"]:
            raise MemoryCandidateError("Only accepted candidates can be promoted.")
        if candidate["promoted"]:
            raise MemoryCandidateError(f"Memory candidate already promoted: {candidate_id}")
        candidate["promoted"] = True
        self._commit(record)
        return copy.deepcopy(candidate)

    def clear_member(self, member_id: str) -> None:
        member_id = self.guard.ensure_member(member_id)
        self._members.pop(member_id, None)
        self._records.delete(namespace=NAMESPACE, key=member_id)
        logger.info("Cleared health memory for member %s", member_id)

    def get_member_health_context(self, member_id: str) -> dict[str, Any]:
        record = self.get_member(member_id)
        return {
            "member_id": record["member_id"],
            "chronic_conditions": [row["name"] for row in record["conditions"] if not row.get("family_history")],
            "family_history": [row["name"] for row in record["conditions"] if row.get("family_history")],
            "medications": [row["name"] for row in record["medications"]],
            "allergies": [row["substance"] for row in record["allergies"]],
            "recent_events": [row["description"] for row in record["recent_events"][:5]],
            "recurring_symptoms": [row["symptom"] for row in record["patterns"] if row["occurrences"] >= 2],
        }
