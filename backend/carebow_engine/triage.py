from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Sequence

from .display import RECOMMENDED_TIMEFRAMES, URGENCY_DISPLAY
from .models import FOLLOW_UP_QUESTION_TYPES, HealthContext
from .red_flags import EmergencyState, RedFlagDetector, normalize_text

logger = logging.getLogger(__name__)

HIGH_RISK_CONDITIONS = (
    "diabetes",
    "heart disease",
    "heart condition",
    "high blood pressure",
    "hypertension",
    "asthma",
    "copd",
    "cancer",
    "immunocompromised",
    "hiv",
    "aids",
    "kidney disease",
    "liver disease",
)

AGE_MODIFIERS = {
    "infant": (15, "Infants require heightened vigilance"),
    "child": (8, "Children may not accurately describe symptoms"),
    "senior": (12, "Seniors may have atypical symptom presentation"),
}

URGENCY_TO_TRIAGE_LEVEL = {
    "self_care": "self_care",
    "monitor": "monitor",
    "non_urgent": "consult",
    "soon": "consult",
    "urgent": "urgent",
    "emergency": "emergency",
}

RISK_BY_URGENCY = {
    "emergency": "critical",
    "urgent": "high",
    "soon": "moderate",
    "non_urgent": "moderate",
    "monitor": "low",
    "self_care": "low",
}

CONFIDENCE_WEIGHTS = {
    "primary_symptom": 20,
    "duration": 15,
    "severity": 15,
    "associated_symptoms": 10,
    "frequency": 10,
    "medications": 10,
    "chronic_conditions": 10,
}
QUESTION_COVERAGE_POINTS = 10

# Lower bound of each urgency band when no red flag is present.
_SCORE_BANDS = (
    (50, "emergency"),
    (40, "urgent"),
    (30, "soon"),
    (20, "non_urgent"),
    (10, "monitor"),
)


def age_group_for_age(age: int | None) -> str | None:
    if age is None:
        return None
    if age < 1:
        return "infant"
    if age <= 12:
        return "child"
    if age <= 17:
        return "teen"
    if age <= 64:
        return "adult"
    return "senior"


@dataclass(frozen=True)
class MemberProfile:
    member_id: str = ""
    name: str | None = None
    age: int | None = None
    relationship: str | None = None
    is_pregnant: bool = False
    chronic_conditions: tuple[str, ...] = ()
    medications: tuple[str, ...] = ()
    allergies: tuple[str, ...] = ()
    family_history: tuple[str, ...] = ()
    profile_completeness: int = 0

    @property
    def age_group(self) -> str | None:
        return age_group_for_age(self.age)

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "MemberProfile":
        """Build a profile from loosely typed input, dropping values that cannot be read."""
        payload = payload or {}
        return cls(
            member_id=str(payload.get("member_id") or ""),
            name=payload.get("name"),
            age=_optional_int(payload.get("age")),
            relationship=payload.get("relationship"),
            is_pregnant=payload.get("is_pregnant") is True,
            chronic_conditions=_string_tuple(payload.get("chronic_conditions")),
            medications=_string_tuple(payload.get("medications")),
            allergies=_string_tuple(payload.get("allergies")),
            family_history=_string_tuple(payload.get("family_history")),
            profile_completeness=_optional_int(payload.get("profile_completeness")) or 0,
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        for key in ("chronic_conditions", "medications", "allergies", "family_history"):
            payload[key] = list(payload[key])
        return payload


def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring unreadable profile number: %r", value)
        return None


def _string_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        logger.warning("Ignoring unreadable profile list: %r", value)
        return ()
    return tuple(item.strip() for item in value if isinstance(item, str) and item.strip())


@dataclass
class TriageResult:
    level: str
    urgency_level: str
    risk_level: str
    confidence: int
    score: int
    reasoning: list[str] = field(default_factory=list)
    red_flags_detected: list[str] = field(default_factory=list)
    risk_factors: list[str] = field(default_factory=list)
    age_modifier_applied: int = 0
    recommended_timeframe: str = ""
    title: str = ""
    description: str = ""
    color: str = ""
    background_color: str = ""
    action_label: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def calculate_confidence(
    context: HealthContext,
    questions_asked: Sequence[str] = (),
    questions_remaining: Sequence[str] | None = None,
) -> int:
    score = 0
    if context.primary_symptom:
        score += CONFIDENCE_WEIGHTS["primary_symptom"]
    if context.duration:
        score += CONFIDENCE_WEIGHTS["duration"]
    if context.severity:
        score += CONFIDENCE_WEIGHTS["severity"]
    if context.associated_symptoms:
        score += CONFIDENCE_WEIGHTS["associated_symptoms"]
    if context.frequency:
        score += CONFIDENCE_WEIGHTS["frequency"]
    if context.medications:
        score += CONFIDENCE_WEIGHTS["medications"]
    if context.chronic_conditions:
        score += CONFIDENCE_WEIGHTS["chronic_conditions"]

    if questions_remaining is None:
        questions_remaining = [q for q in FOLLOW_UP_QUESTION_TYPES if q not in questions_asked]
    planned = len(questions_asked) + len(questions_remaining)
    if planned:
        score += int(round(len(questions_asked) / planned * QUESTION_COVERAGE_POINTS))
    return min(score, 100)


class TriageEngine:
    RED_FLAG_BOOST = 50
    CONCERNING_SYMPTOM_BOOST = 30
    NOTES_RED_FLAG_BOOST = 20
    PREGNANCY_BOOST = 15
    HIGH_RISK_CONDITION_BOOST = 10

    def __init__(self, detector: RedFlagDetector) -> None:
        self.detector = detector

    def assess(
        self,
        context: HealthContext,
        *,
        profile: MemberProfile | None = None,
        emergency: EmergencyState | None = None,
        questions_asked: Sequence[str] = (),
        questions_remaining: Sequence[str] | None = None,
    ) -> TriageResult:
        profile = profile or MemberProfile()
        score = 0
        reasoning: list[str] = []
        red_flags: list[str] = []

        primary_flags = self.detector.find_red_flags(context.primary_symptom)
        if emergency is not None and emergency.is_emergency:
            primary_flags = list(dict.fromkeys([*primary_flags, *emergency.detected_symptoms]))
        if primary_flags:
            score += self.RED_FLAG_BOOST
            red_flags.extend(primary_flags)
            reasoning.append(f"Red flag symptoms detected: {', '.join(primary_flags)}")

        for symptom in context.associated_symptoms:
            flags = self.detector.find_red_flags(symptom)
            if flags:
                score += self.CONCERNING_SYMPTOM_BOOST
                red_flags.extend(flag for flag in flags if flag not in red_flags)
                reasoning.append(f"Concerning associated symptom: {symptom}")

        note_flags = [flag for flag in self.detector.find_red_flags(context.additional_notes) if flag not in red_flags]
        if note_flags:
            score += self.NOTES_RED_FLAG_BOOST
            red_flags.extend(note_flags)
            reasoning.append(f"Concerning details mentioned: {', '.join(note_flags)}")

        age_group = context.age_group or profile.age_group
        age_modifier = 0
        if age_group in AGE_MODIFIERS:
            age_modifier, reason = AGE_MODIFIERS[age_group]
            score += age_modifier
            reasoning.append(reason)

        if profile.is_pregnant:
            score += self.PREGNANCY_BOOST
            reasoning.append("Pregnancy requires additional caution")

        severity = context.severity or 0
        if severity >= 9:
            score += 25
            reasoning.append(f"Very high severity reported ({severity}/10)")
        elif severity >= 7:
            score += 15
            reasoning.append(f"High severity reported ({severity}/10)")
        elif severity >= 5:
            score += 8
            reasoning.append(f"Moderate severity reported ({severity}/10)")

        if context.duration == "just_now" and severity >= 7:
            score += 15
            reasoning.append("Sudden onset with high severity")
        elif context.duration == "chronic" and severity >= 7:
            score += 12
            reasoning.append("Long-standing symptoms at high severity")
        elif context.duration in {"just_now", "few_hours"}:
            score += 5
            reasoning.append("Recent onset of symptoms")
        elif context.duration in {"1_2_weeks", "more_than_2_weeks"}:
            score += 8
            reasoning.append("Symptoms persisting for an extended period")

        if context.frequency == "constant":
            score += 10
            reasoning.append("Symptoms are constant")

        conditions = list(dict.fromkeys([*context.chronic_conditions, *context.risk_factors, *profile.chronic_conditions]))
        risk_factors: list[str] = []
        for condition in conditions:
            cleaned = normalize_text(condition)
            if any(marker in cleaned for marker in HIGH_RISK_CONDITIONS):
                score += self.HIGH_RISK_CONDITION_BOOST
                risk_factors.append(condition)
                reasoning.append(f"High-risk condition: {condition}")

        urgency_level = self._urgency_from_score(score, has_red_flags=bool(red_flags))
        if not reasoning:
            reasoning.append("No concerning factors identified from the information shared")

        display = URGENCY_DISPLAY[urgency_level]
        return TriageResult(
            level=URGENCY_TO_TRIAGE_LEVEL[urgency_level],
            urgency_level=urgency_level,
            risk_level=RISK_BY_URGENCY[urgency_level],
            confidence=calculate_confidence(context, questions_asked, questions_remaining),
            score=score,
            reasoning=reasoning,
            red_flags_detected=red_flags,
            risk_factors=risk_factors,
            age_modifier_applied=age_modifier,
            recommended_timeframe=RECOMMENDED_TIMEFRAMES[urgency_level],
            title=display["label"],
            description=display["description"],
            color=display["color"],
            background_color=display["background"],
            action_label=display["action"],
        )

    def _urgency_from_score(self, score: int, *, has_red_flags: bool) -> str:
        if has_red_flags:
            return "emergency" if score >= self.RED_FLAG_BOOST else "urgent"
        for threshold, level in _SCORE_BANDS:
            if score >= threshold:
                return level
        return "self_care"
