from __future__ import annotations

import re
from dataclasses import dataclass


class HealthMemoryError(Exception):
    pass


class MemoryCandidateError(HealthMemoryError):
    pass


FACT_KINDS = ("conditions", "medications", "allergies")
FACT_SOURCES = ("user_reported", "conversation_extracted", "doctor_confirmed")
CANDIDATE_TYPES = ("condition", "medication", "allergy", "symptom_pattern", "family_history")

_MEMBER_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@-]{0,127}$")


@dataclass(frozen=True)
class WriteCheck:
    accepted: bool
    reason: str | None = None


class MemoryPolicyGuard:
    _NAME_FIELDS = {"conditions": "name", "medications": "name", "allergies": "substance"}

    def ensure_member(self, member_id: str) -> str:
        candidate = (member_id or "").strip()
        if not _MEMBER_ID_RE.fullmatch(candidate):
            raise HealthMemoryError("Invalid member id.")
        return candidate

    def ensure_kind(self, kind: str) -> str:
        normalized = (kind or "").strip().lower()
        if normalized not in FACT_KINDS:
            raise HealthMemoryError(f"Unsupported health memory list: {kind}")
        return normalized

    def ensure_source(self, source: str) -> str:
        if source not in FACT_SOURCES:
            raise HealthMemoryError(f"Invalid source: {source}")
        return source

    def ensure_candidate_type(self, candidate_type: str) -> str:
        if candidate_type not in CANDIDATE_TYPES:
            raise MemoryCandidateError(f"Unsupported candidate type: {candidate_type}")
        return candidate_type

    def ensure_confidence(self, confidence: float) -> float:
        if not (0.0 <= confidence <= 1.0):
            raise MemoryCandidateError("Confidence must be between 0 and 1.")
        return float(confidence)

    def name_field(self, kind: str) -> str:
        return self._NAME_FIELDS[self.ensure_kind(kind)]

    def check_fact_payload(self, kind: str, payload: dict) -> WriteCheck:
        field_name = self.name_field(kind)
        value = payload.get(field_name)
        if not isinstance(value, str) or not value.strip():
            return WriteCheck(accepted=False, reason=f"'{field_name}' is required for {kind}.")
        return WriteCheck(accepted=True)
