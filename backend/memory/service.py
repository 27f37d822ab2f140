from __future__ import annotations

import logging
from typing import Any

from .database import SQLiteMemoryDB
from .health_store import HealthMemoryStore, normalize_name
from .memory_policy_guard import MemoryCandidateError
from .record_store import RecordStore

logger = logging.getLogger(__name__)

CANDIDATE_CONFIDENCE = {
    "condition": 0.8,
    "medication": 0.7,
    "allergy": 0.9,
    "symptom_pattern": 0.6,
    "family_history": 0.7,
}

_PROMOTION_TARGETS = {
    "condition": ("conditions", "name"),
    "family_history": ("conditions", "name"),
    "medication": ("medications", "name"),
    "allergy": ("allergies", "substance"),
}


class MemoryService:
    """Per-member health memory: direct edits, post-session ingestion and candidate review."""

    def __init__(self, db: SQLiteMemoryDB, records: RecordStore | None = None) -> None:
        self.db = db
        self.records = records or RecordStore(db)
        self.health = HealthMemoryStore(self.records)

    def _known(self, member_id: str, kind: str) -> set[str]:
        field_name = self.health.guard.name_field(kind)
        return {
            normalize_name(item[field_name])
            for item in self.health.list_items(member_id=member_id, kind=kind)
            if not item.get("family_history")
        }

    def _pending(self, member_id: str) -> set[tuple[str, str]]:
        return {
            (row["type"], normalize_name(row["content"]))
            for row in self.health.get_candidates(member_id=member_id, pending_only=True)
        }

    def ingest_conversation(
        self,
        *,
        member_id: str,
        episode_id: str,
        summary_text: str,
        urgency_level: str | None,
        primary_symptom: str = "",
        severity: int | None = None,
        symptoms: list[str] | None = None,
        chronic_conditions: list[str] | None = None,
        medications: list[str] | None = None,
        allergies: list[str] | None = None,
        family_history: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Store the episode summary and propose durable facts the member has not confirmed yet."""
        symptoms = list(symptoms or [])
        prior = self.health.get_conversation_summaries(member_id=member_id)
        recurring = bool(primary_symptom) and any(
            normalize_name(primary_symptom) in {normalize_name(s) for s in row.get("symptoms", [])} for row in prior
        )

        self.health.add_conversation_summary(
            member_id=member_id,
            episode_id=episode_id,
            summary_text=summary_text,
            urgency_level=urgency_level,
            symptoms=symptoms,
        )
        if primary_symptom:
            self.health.record_symptom_pattern(
                member_id=member_id,
                symptom=primary_symptom,
                severity=severity,
                episode_id=episode_id,
            )

        pending = self._pending(member_id)
        proposals: list[tuple[str, str]] = []
        for candidate_type, kind, values in (
            ("condition", "conditions", chronic_conditions or []),
            ("medication", "medications", medications or []),
            ("allergy", "allergies", allergies or []),
        ):
            known = self._known(member_id, kind)
            for value in values:
                if normalize_name(value) not in known:
                    proposals.append((candidate_type, value))
        known_family = {
            normalize_name(item["name"])
            for item in self.health.list_items(member_id=member_id, kind="conditions")
            if item.get("family_history")
        }
        for value in family_history or []:
            if normalize_name(value) not in known_family:
                proposals.append(("family_history", value))
        if recurring:
            proposals.append(("symptom_pattern", primary_symptom))

        created: list[dict[str, Any]] = []
        for candidate_type, content in proposals:
            key = (candidate_type, normalize_name(content))
            if key in pending:
                continue
            pending.add(key)
            created.append(
                self.health.add_candidate(
                    member_id=member_id,
                    candidate_type=candidate_type,
                    content=content,
                    confidence=CANDIDATE_CONFIDENCE[candidate_type],
                    source_episode_id=episode_id,
                )
            )
        if created:
            logger.info("Proposed %s memory candidates for member %s", len(created), member_id)
        return created

    def process_candidate(self, *, member_id: str, candidate_id: str, accepted: bool) -> dict[str, Any]:
        return self.health.process_candidate(member_id=member_id, candidate_id=candidate_id, accepted=accepted)

    def promote_candidate(self, *, member_id: str, candidate_id: str) -> dict[str, Any]:
        candidate = next(
            (row for row in self.health.get_candidates(member_id=member_id) if row["id"] == candidate_id),
            None,
        )
        if candidate is None:
            raise MemoryCandidateError(f"Unknown memory candidate: {candidate_id}")
        if not candidate["processed"] or not candidate["accepted_by_user"]:
            raise MemoryCandidateError("Only accepted candidates can be promoted.")
        if candidate["promoted"]:
            raise MemoryCandidateError(f"Memory candidate already promoted: {candidate_id}")

        if candidate["type"] == "symptom_pattern":
            item = self.health.confirm_symptom_pattern(member_id=member_id, symptom=candidate["content"])
        else:
            kind, field_name = _PROMOTION_TARGETS[candidate["type"]]
            payload: dict[str, Any] = {field_name: candidate["content"]}
            if candidate["type"] == "family_history":
                payload["family_history"] = True
            item = self.health.add_item(
                member_id=member_id,
                kind=kind,
                payload=payload,
                source="conversation_extracted",
            )
        promoted = self.health.mark_candidate_promoted(member_id=member_id, candidate_id=candidate_id)
        return {"candidate": promoted, "item": item}
