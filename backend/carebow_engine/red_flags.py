from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from .models import Message

logger = logging.getLogger(__name__)

P1_EMERGENCY = "P1_EMERGENCY"

RED_FLAG_SYMPTOMS = (
    "chest pain",
    "difficulty breathing",
    "shortness of breath",
    "can't breathe",
    "unconscious",
    "passed out",
    "fainted",
    "severe bleeding",
    "heavy bleeding",
    "stroke",
    "face drooping",
    "arm weakness",
    "slurred speech",
    "seizure",
    "convulsion",
    "severe head injury",
    "head trauma",
    "suicidal",
    "suicide",
    "overdose",
    "poisoning",
    "severe allergic reaction",
    "anaphylaxis",
    "can't swallow",
    "choking",
    "severe burns",
    "electric shock",
    "drowning",
    "heart attack",
    "cardiac arrest",
)

# Phrasings the fixed list misses; each adds its label to the detected set.
_SUPPLEMENTAL_PATTERNS = (
    ("chest tightness", re.compile(r"\bchest\s+(tightness|pressure)|\btight(ness)?\s+(in\s+)?(my\s+)?chest", re.IGNORECASE)),
    ("can't breathe", re.compile(r"\b(cannot|can ?not|unable to)\s+breathe", re.IGNORECASE)),
    ("vomiting blood", re.compile(r"\b(vomit\w*|throw\w*\s+up)\s+blood", re.IGNORECASE)),
    ("worst headache", re.compile(r"\bworst\s+headache", re.IGNORECASE)),
    ("blue lips", re.compile(r"\b(blue|grey|gray)\s+lips", re.IGNORECASE)),
)

_CRISIS_PATTERNS = {
    "suicide": [
        re.compile(r"suicid", re.IGNORECASE),
        re.compile(r"\bkill(ing)?\s+myself\b", re.IGNORECASE),
        re.compile(r"\bend(ing)?\s+my\s+life\b", re.IGNORECASE),
        re.compile(r"\bwant\s+to\s+die\b", re.IGNORECASE),
    ],
    "self_harm": [
        re.compile(r"self[- ]?harm", re.IGNORECASE),
        re.compile(r"\b(cutting|hurting)\s+myself\b", re.IGNORECASE),
    ],
    "overdose": [
        re.compile(r"overdos", re.IGNORECASE),
        re.compile(r"\bpoison(ed|ing)\b", re.IGNORECASE),
        re.compile(r"\btook\s+too\s+many\s+(pills|tablets)\b", re.IGNORECASE),
    ],
}

CRISIS_RESOURCES = {
    "suicide": [
        {"name": "988 Suicide & Crisis Lifeline", "contact": "Call or text 988"},
    ],
    "self_harm": [
        {"name": "988 Suicide & Crisis Lifeline", "contact": "Call or text 988"},
    ],
    "overdose": [
        {"name": "Emergency Services", "contact": "Call 911"},
        {"name": "Poison Control", "contact": "1-800-222-1222"},
    ],
}


def normalize_text(text: str) -> str:
    return (text or "").replace("’", "'").replace("‘", "'").strip().lower()


@dataclass(frozen=True)
class EmergencyState:
    is_emergency: bool
    type: str | None = None
    detected_symptoms: tuple[str, ...] = ()
    crisis_type: str | None = None
    crisis_resources: tuple[dict[str, str], ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_emergency": self.is_emergency,
            "type": self.type,
            "detected_symptoms": list(self.detected_symptoms),
            "crisis_type": self.crisis_type,
            "crisis_resources": [dict(item) for item in self.crisis_resources],
        }


NO_EMERGENCY = EmergencyState(is_emergency=False)


class RedFlagDetector:
    def __init__(self, phrases: Iterable[str] = RED_FLAG_SYMPTOMS) -> None:
        self.phrases = tuple(normalize_text(phrase) for phrase in phrases)

    def find_red_flags(self, text: str) -> list[str]:
        cleaned = normalize_text(text)
        if not cleaned:
            return []
        found = [phrase for phrase in self.phrases if phrase in cleaned]
        for label, pattern in _SUPPLEMENTAL_PATTERNS:
            if label not in found and pattern.search(cleaned):
                found.append(label)
        return found

    def detect_crisis(self, text: str) -> str | None:
        cleaned = normalize_text(text)
        for crisis_type, patterns in _CRISIS_PATTERNS.items():
            for pattern in patterns:
                if pattern.search(cleaned):
                    return crisis_type
        return None

    def detect(self, text: str) -> EmergencyState:
        flags = self.find_red_flags(text)
        crisis_type = self.detect_crisis(text)
        if not flags and crisis_type is None:
            return NO_EMERGENCY
        if crisis_type and not flags:
            flags = [crisis_type.replace("_", " ")]
        logger.warning("Emergency red flags detected: %s", ", ".join(flags))
        return EmergencyState(
            is_emergency=True,
            type=P1_EMERGENCY,
            detected_symptoms=tuple(flags),
            crisis_type=crisis_type,
            crisis_resources=tuple(CRISIS_RESOURCES.get(crisis_type or "", [])),
        )

    def detect_in_messages(self, messages: Iterable[Message]) -> EmergencyState:
        return self.detect("\n".join(message.text for message in messages if message.role == "user"))
