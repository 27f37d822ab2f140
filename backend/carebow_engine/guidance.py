from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Iterable, Sequence

from .display import (
    DISCLAIMER,
    DURATION_LABELS,
    DURATION_PHRASES,
    FORBIDDEN_PHRASES,
    UNDERSTANDING_OPENER,
    URGENCY_DISPLAY,
)
from .models import URGENCY_RANK, HealthContext
from .services import ServiceRecommendation
from .triage import TriageResult


@dataclass(frozen=True)
class SymptomGuidance:
    keywords: tuple[str, ...]
    possible_causes: tuple[str, ...]
    immediate_actions: tuple[str, ...]
    when_to_seek_help: tuple[str, ...]


SYMPTOM_GUIDANCE = (
    SymptomGuidance(
        keywords=("headache", "head pain", "migraine"),
        possible_causes=("Tension or stress", "Dehydration", "Eye strain", "Sinus congestion", "Lack of sleep"),
        immediate_actions=(
            "Rest in a quiet, dark room",
            "Stay hydrated - drink water",
            "Apply a cold or warm compress",
            "Take over-the-counter pain relief if appropriate",
            "Reduce screen time",
        ),
        when_to_seek_help=(
            "Headache is sudden and severe (worst of your life)",
            "Accompanied by fever, stiff neck, or confusion",
            "Following a head injury",
            "Getting progressively worse over days",
            "Accompanied by vision changes or numbness",
        ),
    ),
    SymptomGuidance(
        keywords=("stomach", "abdominal", "belly", "nausea", "vomit", "diarrhea"),
        possible_causes=(
            "Food-related issues (spoiled food, overeating)",
            "Viral gastroenteritis (stomach flu)",
            "Stress or anxiety",
            "Indigestion or acid reflux",
            "Food intolerance",
        ),
        immediate_actions=(
            "Stay hydrated with clear fluids (water, broth)",
            "Rest and avoid solid foods temporarily",
            "Eat bland foods when ready (bananas, rice, applesauce, toast)",
            "Avoid dairy, caffeine, and fatty foods",
            "Try ginger tea for nausea",
        ),
        when_to_seek_help=(
            "Blood in vomit or stool",
            "Severe abdominal pain that doesn't improve",
            "Signs of dehydration (dark urine, dizziness)",
            "Fever above 101.3F (38.5C)",
            "Symptoms lasting more than 3 days",
        ),
    ),
    SymptomGuidance(
        keywords=("cough", "cold", "flu", "sore throat", "congestion", "runny nose"),
        possible_causes=(
            "Common cold (viral infection)",
            "Seasonal allergies",
            "Flu (influenza)",
            "Sinus infection",
            "Post-nasal drip",
        ),
        immediate_actions=(
            "Rest and get plenty of sleep",
            "Stay hydrated with warm fluids",
            "Use a humidifier to ease congestion",
            "Gargle with warm salt water for sore throat",
            "Take over-the-counter cold medicine if appropriate",
        ),
        when_to_seek_help=(
            "Difficulty breathing or shortness of breath",
            "High fever lasting more than 3 days",
            "Severe sore throat with difficulty swallowing",
            "Symptoms worsening after initial improvement",
            "Colored mucus (green/yellow) with facial pain",
        ),
    ),
    SymptomGuidance(
        keywords=("back pain", "lower back", "spine", "backache"),
        possible_causes=(
            "Muscle strain or overuse",
            "Poor posture",
            "Prolonged sitting or standing",
            "Lifting heavy objects incorrectly",
            "Stress and tension",
        ),
        immediate_actions=(
            "Apply ice for first 48-72 hours, then switch to heat",
            "Take gentle walks to prevent stiffness",
            "Practice gentle stretching exercises",
            "Maintain good posture when sitting",
            "Use proper lifting techniques",
        ),
        when_to_seek_help=(
            "Pain radiating down your leg (sciatica)",
            "Numbness or tingling in legs",
            "Loss of bladder or bowel control",
            "Pain after a fall or injury",
            "Pain not improving after 2 weeks of self-care",
        ),
    ),
    SymptomGuidance(
        keywords=("rash", "skin", "itch", "hives", "bumps"),
        possible_causes=(
            "Allergic reaction (contact dermatitis)",
            "Eczema or dry skin",
            "Insect bites",
            "Heat rash",
            "Viral infection",
        ),
        immediate_actions=(
            "Avoid scratching the affected area",
            "Apply cool compresses",
            "Use mild, fragrance-free moisturizer",
            "Take an antihistamine for itching if appropriate",
            "Identify and avoid potential triggers",
        ),
        when_to_seek_help=(
            "Rash spreading rapidly",
            "Accompanied by fever or difficulty breathing",
            "Signs of infection (warmth, pus, red streaks)",
            "Blisters or open sores",
            "Rash not improving after a week",
        ),
    ),
    SymptomGuidance(
        keywords=("fever", "temperature", "chills"),
        possible_causes=(
            "Viral infection (cold, flu)",
            "Bacterial infection",
            "The body's immune response",
            "Recent vaccination",
            "Heat exhaustion",
        ),
        immediate_actions=(
            "Rest and stay home",
            "Stay hydrated with plenty of fluids",
            "Dress in light clothing",
            "Take fever-reducing medication if appropriate",
            "Monitor your temperature regularly",
        ),
        when_to_seek_help=(
            "Temperature above 103F (39.4C)",
            "Fever lasting more than 3 days",
            "Accompanied by severe headache or stiff neck",
            "Difficulty breathing",
            "Confusion or unusual behavior",
        ),
    ),
    SymptomGuidance(
        keywords=("fatigue", "tired", "exhausted", "weak", "no energy"),
        possible_causes=(
            "Lack of sleep or poor sleep quality",
            "Stress or overwork",
            "Dehydration",
            "Poor nutrition",
            "Fighting off an infection",
        ),
        immediate_actions=(
            "Prioritize getting 7-9 hours of sleep",
            "Stay hydrated throughout the day",
            "Eat balanced meals with protein and complex carbs",
            "Take short breaks during work",
            "Limit caffeine, especially after noon",
        ),
        when_to_seek_help=(
            "Fatigue lasting more than 2 weeks",
            "Accompanied by unexplained weight loss",
            "With shortness of breath or chest pain",
            "Affecting daily activities significantly",
            "With depression or mood changes",
        ),
    ),
    SymptomGuidance(
        keywords=("anxiety", "stress", "worry", "panic", "nervous"),
        possible_causes=(
            "Work or life stress",
            "Major life changes",
            "Caffeine or stimulant use",
            "Lack of sleep",
            "Underlying health concerns",
        ),
        immediate_actions=(
            "Practice deep breathing exercises",
            "Try the 5-4-3-2-1 grounding technique",
            "Take a short walk outside",
            "Limit caffeine and alcohol",
            "Talk to someone you trust",
        ),
        when_to_seek_help=(
            "Symptoms interfering with daily life",
            "Panic attacks or severe anxiety episodes",
            "Thoughts of self-harm",
            "Avoiding situations due to anxiety",
            "Physical symptoms like rapid heartbeat persisting",
        ),
    ),
)

GENERIC_CAUSES = (
    "Various factors could be contributing to your symptoms",
    "Your body may be responding to stress or environmental factors",
    "This could be related to recent changes in routine or diet",
)
NOT_A_DIAGNOSIS_NOTE = "Note: These are general possibilities and not a diagnosis"

_FORBIDDEN_RES = tuple(
    re.compile(rf"(?<!\w){re.escape(phrase)}(?!\w)", re.IGNORECASE) for phrase in FORBIDDEN_PHRASES
)


@dataclass
class SuggestedAction:
    type: str
    label: str
    description: str
    urgency: str
    service_id: str | None = None
    prefilled_data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class GuidanceResponse:
    understanding: str
    possible_causes: list[str]
    immediate_actions: list[str]
    when_to_seek_help: list[str]
    suggested_actions: list[SuggestedAction]
    recommended_services: list[ServiceRecommendation] = field(default_factory=list)
    risk_level: str = "low"
    detected_symptoms: list[str] = field(default_factory=list)
    disclaimer: str = DISCLAIMER["short"]
    emergency_disclaimer: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def violates_copy_rules(text: str) -> bool:
    return any(pattern.search(text) for pattern in _FORBIDDEN_RES)


def apply_copy_rules(lines: Iterable[str]) -> list[str]:
    return [line for line in lines if not violates_copy_rules(line)]


def _unique(items: Iterable[str], limit: int | None = None) -> list[str]:
    result = list(dict.fromkeys(items))
    return result[:limit] if limit is not None else result


def find_matching_guidance(context: HealthContext) -> list[SymptomGuidance]:
    symptom_text = " ".join([context.primary_symptom, *context.associated_symptoms]).lower()
    return [entry for entry in SYMPTOM_GUIDANCE if any(keyword in symptom_text for keyword in entry.keywords)]


def build_understanding(context: HealthContext) -> str:
    parts = [UNDERSTANDING_OPENER]
    if context.primary_symptom:
        parts.append(f"you're experiencing {context.primary_symptom.lower()}")
    if context.duration:
        parts.append(f"for {DURATION_PHRASES[context.duration]}")
    if context.severity and context.severity >= 7:
        parts.append("with significant discomfort")
    return ", ".join(parts) + "."


def build_conversation_notes(context: HealthContext) -> str:
    parts: list[str] = []
    if context.primary_symptom:
        parts.append(f"Chief complaint: {context.primary_symptom}")
    if context.duration:
        parts.append(f"Duration: {DURATION_LABELS[context.duration]}")
    if context.severity:
        parts.append(f"Severity: {context.severity}/10")
    if context.associated_symptoms:
        parts.append(f"Associated symptoms: {', '.join(context.associated_symptoms)}")
    return "\n".join(parts)


def rank_suggested_actions(actions: Sequence[SuggestedAction]) -> list[SuggestedAction]:
    indexed = list(enumerate(actions))
    indexed.sort(
        key=lambda item: (
            0 if item[1].type == "call_emergency" else 1,
            -URGENCY_RANK.get(item[1].urgency, 0),
            item[0],
        )
    )
    return [action for _, action in indexed]


def build_suggested_actions(
    urgency_level: str,
    context: HealthContext,
    *,
    member_id: str = "",
    today: date | None = None,
) -> list[SuggestedAction]:
    notes = build_conversation_notes(context)
    prefilled = {"member_id": member_id, "notes": notes}
    actions: list[SuggestedAction] = []

    if urgency_level == "emergency":
        actions.append(
            SuggestedAction(
                type="call_emergency",
                label="Call Emergency Services",
                description="Call 911 for immediate medical attention",
                urgency="emergency",
            )
        )
    elif urgency_level == "urgent":
        suggested_date = (today or date.today()).isoformat()
        actions.append(
            SuggestedAction(
                type="book_doctor",
                label="See Doctor Today",
                description="Book an urgent doctor visit",
                urgency="urgent",
                service_id="doctor-home-visit",
                prefilled_data={**prefilled, "suggested_date": suggested_date},
            )
        )
        actions.append(
            SuggestedAction(
                type="video_consult",
                label="Video Consultation",
                description="Speak with a doctor online now",
                urgency="urgent",
                service_id="video-consultation",
                prefilled_data=dict(prefilled),
            )
        )
    elif urgency_level == "soon":
        actions.append(
            SuggestedAction(
                type="book_doctor",
                label="Book Doctor Visit",
                description="Schedule within 1-2 days",
                urgency="soon",
                service_id="doctor-home-visit",
                prefilled_data=dict(prefilled),
            )
        )
        actions.append(
            SuggestedAction(
                type="video_consult",
                label="Video Consultation",
                description="Talk to a doctor online",
                urgency="soon",
                service_id="video-consultation",
                prefilled_data=dict(prefilled),
            )
        )
        if context.severity and context.severity >= 7 and context.duration in {"1_2_weeks", "more_than_2_weeks"}:
            actions.append(
                SuggestedAction(
                    type="request_nurse",
                    label="Request a Nurse Visit",
                    description="A nurse can check in on you at home",
                    urgency="soon",
                    service_id="nursing-care",
                    prefilled_data=dict(prefilled),
                )
            )
    elif urgency_level == "non_urgent":
        actions.append(
            SuggestedAction(
                type="video_consult",
                label="Consult a Doctor",
                description="Get professional advice",
                urgency="non_urgent",
                service_id="video-consultation",
                prefilled_data=dict(prefilled),
            )
        )
        if context.duration in {"1_2_weeks", "more_than_2_weeks", "chronic"}:
            actions.append(
                SuggestedAction(
                    type="book_lab_test",
                    label="Book a Lab Test",
                    description="Tests may help understand persistent symptoms",
                    urgency="non_urgent",
                    service_id="lab-test",
                    prefilled_data=dict(prefilled),
                )
            )
        actions.append(
            SuggestedAction(
                type="monitor_at_home",
                label="Monitor at Home",
                description="Track your symptoms",
                urgency="non_urgent",
            )
        )
    else:
        actions.append(
            SuggestedAction(
                type="monitor_at_home",
                label="Monitor at Home",
                description="Continue self-care and track symptoms",
                urgency="self_care",
            )
        )
        actions.append(
            SuggestedAction(
                type="no_action_needed",
                label="No Action Needed Now",
                description="Revisit if symptoms change",
                urgency="self_care",
            )
        )
    return rank_suggested_actions(actions)


def build_guidance(
    context: HealthContext,
    triage: TriageResult,
    *,
    member_id: str = "",
    recommendations: Sequence[ServiceRecommendation] = (),
    today: date | None = None,
) -> GuidanceResponse:
    matches = find_matching_guidance(context)[:2]
    urgency = triage.urgency_level

    causes: list[str] = []
    for entry in matches:
        causes.extend(entry.possible_causes[:3])
    if not causes:
        causes.extend(GENERIC_CAUSES)
    causes.append(NOT_A_DIAGNOSIS_NOTE)

    actions: list[str] = []
    if urgency in {"emergency", "urgent"}:
        actions.append("Seek medical attention as soon as possible")
    for entry in matches:
        actions.extend(entry.immediate_actions[:3])
    if urgency in {"self_care", "monitor"}:
        if not any("rest" in action.lower() for action in actions):
            actions.append("Get adequate rest and sleep")
        if not any("hydrat" in action.lower() for action in actions):
            actions.append("Stay hydrated")
    if not actions:
        actions.extend(["Rest and monitor your symptoms", "Stay hydrated", "Note any changes or new symptoms"])

    seek_help: list[str] = []
    if triage.red_flags_detected:
        seek_help.append("Your symptoms include concerning signs - please monitor closely")
    for entry in matches:
        seek_help.extend(entry.when_to_seek_help[:2])
    seek_help.append("Symptoms significantly worsen or don't improve")
    seek_help.append("You develop new concerning symptoms")

    detected = _unique([s for s in [context.primary_symptom, *context.associated_symptoms] if s] + triage.red_flags_detected)

    return GuidanceResponse(
        understanding=build_understanding(context),
        possible_causes=apply_copy_rules(_unique(causes)),
        immediate_actions=apply_copy_rules(_unique(actions, 5)),
        when_to_seek_help=apply_copy_rules(_unique(seek_help, 5)),
        suggested_actions=build_suggested_actions(urgency, context, member_id=member_id, today=today),
        recommended_services=list(recommendations),
        risk_level=triage.risk_level,
        detected_symptoms=detected,
        disclaimer=DISCLAIMER["short"],
        emergency_disclaimer=DISCLAIMER["emergency"] if urgency == "emergency" else None,
    )


def format_guidance_text(guidance: GuidanceResponse, triage: TriageResult) -> str:
    display = URGENCY_DISPLAY[triage.urgency_level]
    sections = [
        guidance.understanding,
        "Some things that may be related:\n" + "\n".join(f"- {item}" for item in guidance.possible_causes),
        "What you can do now:\n" + "\n".join(f"- {item}" for item in guidance.immediate_actions),
        "Seek care if:\n" + "\n".join(f"- {item}" for item in guidance.when_to_seek_help),
        f"Recommended next step: {display['label']} ({triage.recommended_timeframe}). {display['description']}",
    ]
    if guidance.emergency_disclaimer:
        sections.append(guidance.emergency_disclaimer)
    sections.append(guidance.disclaimer)
    return "\n\n".join(sections)
