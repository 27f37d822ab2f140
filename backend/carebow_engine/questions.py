from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from .models import DURATIONS, FREQUENCIES, HealthContext
from .red_flags import RED_FLAG_SYMPTOMS

SufficiencyPredicate = Callable[[HealthContext, Sequence[str]], bool]

QUESTION_PRIORITY = (
    "duration",
    "severity",
    "frequency",
    "associated_symptoms",
    "recent_events",
    "chronic_conditions",
)

MIN_QUESTIONS = 2
MAX_QUESTIONS = 4

_ASSOCIATED_SYMPTOM_KEYWORDS = (
    "fever",
    "headache",
    "nausea",
    "vomiting",
    "dizziness",
    "fatigue",
    "weakness",
    "pain",
    "swelling",
    "rash",
    "cough",
    "sore throat",
    "congestion",
    "runny nose",
    "chills",
    "sweating",
    "loss of appetite",
    "diarrhea",
    "constipation",
    "bloating",
    "sensitivity to light",
    "neck stiffness",
)

_NEGATIVE_ANSWER_RE = re.compile(r"^\s*(none|no|nothing|nope|no other( symptoms)?|not really)\b", re.IGNORECASE)

_PRIMARY_PREFIXES = (
    re.compile(r"^i('m| am) (having|experiencing|feeling)\s*", re.IGNORECASE),
    re.compile(r"^i('ve| have) (been having|got|had)\s*", re.IGNORECASE),
    re.compile(r"^i (have|got)\s+(a|an)?\s*", re.IGNORECASE),
    re.compile(r"^there('s| is)\s+", re.IGNORECASE),
)


@dataclass(frozen=True)
class FollowUpQuestion:
    type: str
    text: str
    quick_options: tuple[dict[str, str], ...] = field(default_factory=tuple)
    required: bool = False
    context_key: str = ""

    def options_list(self) -> list[dict[str, str]]:
        return [dict(option) for option in self.quick_options]


def _options(*pairs: tuple[str, str, str]) -> tuple[dict[str, str], ...]:
    return tuple({"id": option_id, "label": label, "value": value} for option_id, label, value in pairs)


def _symptom(context: HealthContext) -> str:
    return context.primary_symptom.lower() or "this"


def associated_symptom_suggestions(primary_symptom: str) -> list[str]:
    symptom = primary_symptom.lower()
    if "headache" in symptom or "head" in symptom:
        return ["nausea", "sensitivity to light", "neck stiffness"]
    if "stomach" in symptom or "abdominal" in symptom:
        return ["nausea", "vomiting", "fever", "diarrhea"]
    if "chest" in symptom:
        return ["shortness of breath", "arm pain", "sweating"]
    if "fever" in symptom or "cold" in symptom or "flu" in symptom:
        return ["body aches", "fatigue", "sore throat", "cough"]
    if "cough" in symptom:
        return ["fever", "sore throat", "congestion", "fatigue"]
    if "back" in symptom or "muscle" in symptom:
        return ["stiffness", "weakness", "numbness", "tingling"]
    return ["fever", "fatigue", "nausea"]


def _associated_question(context: HealthContext) -> str:
    symptom = _symptom(context)
    suggestions = associated_symptom_suggestions(context.primary_symptom)
    return (
        f"Are you experiencing any other symptoms along with {symptom}? "
        f"For example: {', '.join(suggestions)}?"
    )


_TEMPLATES: dict[str, tuple[Callable[[HealthContext], str], tuple[dict[str, str], ...], str]] = {
    "duration": (
        lambda ctx: f"How long have you been experiencing {_symptom(ctx)}?",
        _options(
            ("just_now", "Just started", "just_now"),
            ("today", "Today", "today"),
            ("1_2_days", "1-2 days", "1_2_days"),
            ("3_7_days", "3-7 days", "3_7_days"),
            ("1_2_weeks", "1-2 weeks", "1_2_weeks"),
            ("more", "Longer", "more_than_2_weeks"),
        ),
        "duration",
    ),
    "severity": (
        lambda ctx: (
            "On a scale of 1 to 10, how would you rate the severity? "
            "(1 being very mild, 10 being the worst you can imagine)"
        ),
        _options(
            ("mild", "1-3 (Mild)", "3"),
            ("moderate", "4-6 (Moderate)", "5"),
            ("severe", "7-8 (Severe)", "8"),
            ("very_severe", "9-10 (Very severe)", "10"),
        ),
        "severity",
    ),
    "frequency": (
        lambda ctx: f"Is {_symptom(ctx)} constant, or does it come and go?",
        _options(
            ("constant", "Constant", "constant"),
            ("intermittent", "Comes and goes", "intermittent"),
            ("occasional", "Occasional", "occasional"),
            ("first_time", "First time", "first_time"),
        ),
        "frequency",
    ),
    "associated_symptoms": (
        _associated_question,
        _options(
            ("none", "No other symptoms", "none"),
            ("fever", "Fever", "fever"),
            ("fatigue", "Fatigue", "fatigue"),
            ("nausea", "Nausea", "nausea"),
        ),
        "associated_symptoms",
    ),
    "risk_factors": (
        lambda ctx: "Do you have any known health conditions or take any regular medications?",
        _options(
            ("none", "None", "none"),
            ("diabetes", "Diabetes", "diabetes"),
            ("heart", "Heart condition", "heart condition"),
            ("bp", "High blood pressure", "high blood pressure"),
        ),
        "risk_factors",
    ),
    "age": (
        lambda ctx: "What age group does this concern?",
        _options(
            ("child", "Child (under 12)", "child"),
            ("teen", "Teen (13-17)", "teen"),
            ("adult", "Adult (18-64)", "adult"),
            ("senior", "Senior (65+)", "senior"),
        ),
        "age_group",
    ),
    "chronic_conditions": (
        lambda ctx: "Do you have any chronic health conditions I should be aware of?",
        _options(
            ("none", "None", "none"),
            ("diabetes", "Diabetes", "diabetes"),
            ("hypertension", "Hypertension", "hypertension"),
            ("asthma", "Asthma", "asthma"),
        ),
        "chronic_conditions",
    ),
    "recent_events": (
        lambda ctx: (
            "Has anything happened recently that might be related? "
            "Such as an injury, travel, new food, or unusual activity?"
        ),
        _options(
            ("nothing", "Nothing specific", "nothing"),
            ("injury", "Recent injury", "injury"),
            ("travel", "Recent travel", "travel"),
            ("food", "New food", "food"),
        ),
        "recent_events",
    ),
    "medications": (
        lambda ctx: "Are you currently taking any medications?",
        _options(
            ("none", "None", "none"),
            ("otc", "Over-the-counter only", "over-the-counter medication"),
            ("prescription", "Prescription meds", "prescription medication"),
        ),
        "medications",
    ),
    "location": (
        lambda ctx: f"Where exactly are you feeling {_symptom(ctx)}?",
        (),
        "additional_notes",
    ),
    "triggers": (
        lambda ctx: f"Have you noticed anything that makes {_symptom(ctx)} better or worse?",
        _options(
            ("movement", "Movement", "movement"),
            ("rest", "Rest", "rest"),
            ("food", "Eating", "food"),
            ("unknown", "Not sure", "unknown"),
        ),
        "additional_notes",
    ),
    "relief_attempts": (
        lambda ctx: "Have you tried anything to relieve the symptoms? If so, did it help?",
        _options(
            ("none", "Haven't tried anything", "none"),
            ("rest", "Rest", "rest"),
            ("otc", "Over-the-counter medicine", "otc medicine"),
        ),
        "additional_notes",
    ),
}


def build_question(question_type: str, context: HealthContext) -> FollowUpQuestion:
    text_builder, options, context_key = _TEMPLATES[question_type]
    return FollowUpQuestion(
        type=question_type,
        text=text_builder(context),
        quick_options=options,
        required=question_type in {"duration", "severity"},
        context_key=context_key,
    )


def next_question_type(questions_asked: Sequence[str], context: HealthContext) -> str | None:
    for question_type in QUESTION_PRIORITY:
        if question_type in questions_asked:
            continue
        if question_type == "duration" and context.duration:
            continue
        if question_type == "severity" and context.severity:
            continue
        return question_type
    return None


def should_ask_more_questions(context: HealthContext, questions_asked: Sequence[str]) -> bool:
    asked = len(questions_asked)
    if asked >= MAX_QUESTIONS:
        return False
    if asked < MIN_QUESTIONS:
        return True
    if not context.duration or not context.severity:
        return True
    if context.severity >= 7 and asked < 4:
        return True
    if context.duration in {"1_2_weeks", "more_than_2_weeks"} and asked < 3:
        return True
    return False


def has_sufficient_context(context: HealthContext, questions_asked: Sequence[str]) -> bool:
    return not should_ask_more_questions(context, questions_asked)


def _duration_from_quantity(amount: int, unit: str) -> str:
    if unit == "minute":
        return "just_now"
    if unit == "hour":
        return "few_hours"
    if unit == "day":
        if amount <= 2:
            return "1_2_days"
        if amount <= 7:
            return "3_7_days"
        return "1_2_weeks" if amount <= 14 else "more_than_2_weeks"
    if unit == "week":
        if amount <= 1:
            return "3_7_days"
        return "1_2_weeks" if amount == 2 else "more_than_2_weeks"
    if unit == "month":
        return "more_than_2_weeks"
    return "chronic"


def parse_duration(text: str) -> str:
    text = text.strip().lower()
    if text in DURATIONS:
        return text
    quantity = re.search(r"\b(\d+)\s*(minute|hour|day|week|month|year)s?\b", text)
    if quantity:
        return _duration_from_quantity(int(quantity.group(1)), quantity.group(2))
    if "1-2 week" in text or "couple week" in text or "couple of week" in text or "two week" in text:
        return "1_2_weeks"
    if "month" in text or "long time" in text or "longer" in text or "more than" in text:
        return "more_than_2_weeks"
    if "chronic" in text or "ongoing" in text or "years" in text:
        return "chronic"
    if "just" in text or "right now" in text or "minute" in text:
        return "just_now"
    if "hour" in text:
        return "few_hours"
    if "today" in text or "this morning" in text or "tonight" in text:
        return "today"
    if "yesterday" in text or "1 day" in text or "2 day" in text or "1-2" in text or "two day" in text:
        return "1_2_days"
    if re.search(r"\b[3-7]\b", text) or "few days" in text or "week" in text:
        return "3_7_days"
    return "1_2_days"


def parse_severity(text: str) -> int:
    text = text.strip().lower()
    match = re.search(r"\d+", text)
    if match:
        value = int(match.group(0))
        if 1 <= value <= 10:
            return value
    if "very severe" in text or "worst" in text or "unbearable" in text:
        return 10
    if "severe" in text or "bad" in text:
        return 8
    if "moderate" in text:
        return 5
    if "mild" in text or "slight" in text:
        return 3
    return 5


def parse_frequency(text: str) -> str:
    text = text.strip().lower()
    if text in FREQUENCIES:
        return text
    if "constant" in text or "all the time" in text or "continuous" in text:
        return "constant"
    if "comes and goes" in text or "intermittent" in text or "on and off" in text or "come and go" in text:
        return "intermittent"
    if "occasional" in text or "sometimes" in text or "once in a while" in text:
        return "occasional"
    if "first" in text or "never before" in text or "new" in text:
        return "first_time"
    return "intermittent"


def parse_associated_symptoms(text: str) -> list[str]:
    text = text.strip().lower()
    found: list[str] = []
    for keyword in (*RED_FLAG_SYMPTOMS, *_ASSOCIATED_SYMPTOM_KEYWORDS):
        if keyword not in text or keyword in found:
            continue
        if re.search(rf"\bno\s+{re.escape(keyword)}", text):
            continue
        if any(keyword in existing for existing in found):
            continue
        found.append(keyword)
    if not found and _NEGATIVE_ANSWER_RE.match(text):
        return []
    return found


def parse_recent_events(text: str) -> list[str]:
    text = text.strip().lower()
    events: list[str] = []
    if "injur" in text or "fall" in text or "fell" in text or "accident" in text:
        events.append("recent injury")
    if "travel" in text:
        events.append("recent travel")
    if "food" in text or re.search(r"\bate\b", text) or "eaten" in text:
        events.append("dietary change")
    if "stress" in text or "anxiety" in text:
        events.append("stress")
    if "surgery" in text or "operation" in text:
        events.append("recent surgery")
    if "exercise" in text or "workout" in text or "gym" in text:
        events.append("physical activity")
    return events


def parse_chronic_conditions(text: str) -> list[str]:
    text = text.strip().lower()
    conditions: list[str] = []
    if "diabet" in text:
        conditions.append("diabetes")
    if "hypertension" in text or "blood pressure" in text or re.search(r"\bbp\b", text):
        conditions.append("hypertension")
    if "asthma" in text:
        conditions.append("asthma")
    if "copd" in text:
        conditions.append("copd")
    if "heart" in text or "cardiac" in text:
        conditions.append("heart condition")
    if "thyroid" in text:
        conditions.append("thyroid condition")
    if "arthritis" in text:
        conditions.append("arthritis")
    if "kidney" in text:
        conditions.append("kidney disease")
    if "cancer" in text:
        conditions.append("cancer")
    return conditions


def parse_medications(text: str) -> list[str]:
    cleaned = text.strip()
    if not cleaned or _NEGATIVE_ANSWER_RE.match(cleaned):
        return []
    parts = re.split(r",|;|\band\b", cleaned)
    return [part.strip() for part in parts if part.strip()]


def parse_age_group(text: str) -> str:
    text = text.strip().lower()
    if "infant" in text or "baby" in text:
        return "infant"
    if "child" in text or "kid" in text or "under 12" in text:
        return "child"
    if "teen" in text or "13" in text or "17" in text:
        return "teen"
    if "senior" in text or "elderly" in text or "65" in text or "old" in text:
        return "senior"
    age_match = re.search(r"\b(\d{1,3})\b", text)
    if age_match:
        age = int(age_match.group(1))
        if age < 1:
            return "infant"
        if age <= 12:
            return "child"
        if age <= 17:
            return "teen"
        if age >= 65:
            return "senior"
    return "adult"


def parse_response(text: str, question_type: str | None) -> dict[str, Any]:
    if question_type == "duration":
        return {"duration": parse_duration(text)}
    if question_type == "severity":
        return {"severity": parse_severity(text)}
    if question_type == "frequency":
        return {"frequency": parse_frequency(text)}
    if question_type == "associated_symptoms":
        return {"associated_symptoms": parse_associated_symptoms(text)}
    if question_type == "recent_events":
        return {"recent_events": parse_recent_events(text)}
    if question_type == "chronic_conditions":
        return {"chronic_conditions": parse_chronic_conditions(text)}
    if question_type == "risk_factors":
        return {"risk_factors": parse_chronic_conditions(text)}
    if question_type == "medications":
        return {"medications": parse_medications(text)}
    if question_type == "age":
        return {"age_group": parse_age_group(text)}
    if question_type in {"location", "triggers", "relief_attempts"}:
        return {"additional_notes": f"{question_type.replace('_', ' ').capitalize()}: {text.strip()}"}
    return {"additional_notes": text.strip()}


def parse_initial_input(text: str) -> dict[str, Any]:
    text = text.strip().lower()
    result: dict[str, Any] = {}
    if "for a few days" in text or "past few days" in text:
        result["duration"] = "3_7_days"
    elif "since yesterday" in text or "since last night" in text:
        result["duration"] = "1_2_days"
    elif "just started" in text or "started today" in text:
        result["duration"] = "today"
    elif "for weeks" in text or "few weeks" in text:
        result["duration"] = "1_2_weeks"
    else:
        match = re.search(r"\bfor\s+(\d+|a|one|two)\s+(day|days|week|weeks|hour|hours)\b", text)
        if match:
            result["duration"] = parse_duration(match.group(0).replace("for ", ""))

    if "severe" in text or "really bad" in text or "unbearable" in text:
        result["severity"] = 8
    elif "mild" in text or "slight" in text or "a little" in text:
        result["severity"] = 3
    elif "moderate" in text:
        result["severity"] = 5
    return result


def extract_primary_symptom(text: str) -> str:
    symptom = text.strip()
    for pattern in _PRIMARY_PREFIXES:
        symptom = pattern.sub("", symptom).strip()
    symptom = symptom.rstrip(".!?")
    if not symptom:
        return ""
    return symptom[0].upper() + symptom[1:]
