from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Callable

from .display import DURATION_LABELS, FREQUENCY_LABELS
from .models import HealthContext

ReasonBuilder = Callable[[str], str]


@dataclass(frozen=True)
class ServiceDefinition:
    id: str
    title: str
    description: str
    urgency_levels: tuple[str, ...]
    symptom_keywords: tuple[str, ...]
    priority: int
    estimated_wait: str
    reason: ReasonBuilder


@dataclass(frozen=True)
class ServiceRecommendation:
    service_id: str
    service_title: str
    reason: str
    urgency: str
    prefilled_notes: str
    estimated_wait: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_clinical_notes(context: HealthContext) -> str:
    parts: list[str] = []
    if context.primary_symptom:
        parts.append(f"Chief complaint: {context.primary_symptom}")
    if context.duration:
        parts.append(f"Duration: {DURATION_LABELS[context.duration]}")
    if context.severity:
        parts.append(f"Severity: {context.severity}/10")
    if context.frequency:
        parts.append(f"Frequency: {FREQUENCY_LABELS[context.frequency]}")
    if context.associated_symptoms:
        parts.append(f"Associated symptoms: {', '.join(context.associated_symptoms)}")
    if context.chronic_conditions:
        parts.append(f"Medical history: {', '.join(context.chronic_conditions)}")
    if context.medications:
        parts.append(f"Current medications: {', '.join(context.medications)}")
    if context.allergies:
        parts.append(f"Allergies: {', '.join(context.allergies)}")
    if context.recent_events:
        parts.append(f"Recent events: {', '.join(context.recent_events)}")
    if context.additional_notes:
        parts.append(f"Additional notes: {context.additional_notes}")
    return "\n".join(parts)


class ServiceRegistry:
    MAX_RECOMMENDATIONS = 3
    KEYWORD_MATCH_BONUS = 5

    def __init__(self) -> None:
        self._services: dict[str, ServiceDefinition] = {}

    def register(self, service: ServiceDefinition) -> None:
        self._services[service.id] = service

    def resolve(self, service_id: str) -> ServiceDefinition:
        service = self._services.get(service_id)
        if not service:
            raise KeyError(f"Service not found: {service_id}")
        return service

    def list_ids(self) -> list[str]:
        return sorted(self._services.keys())

    def recommend(self, context: HealthContext, urgency_level: str) -> list[ServiceRecommendation]:
        symptom_text = " ".join([context.primary_symptom, *context.associated_symptoms]).lower()
        symptom = context.primary_symptom.lower() or "symptoms"
        scored: list[tuple[int, ServiceDefinition]] = []
        for service in self._services.values():
            if urgency_level not in service.urgency_levels:
                continue
            score = 10 - service.priority
            for keyword in service.symptom_keywords:
                if keyword in symptom_text:
                    score += self.KEYWORD_MATCH_BONUS
            scored.append((score, service))
        # sorted() is stable, so equal scores keep registration order.
        scored = sorted(scored, key=lambda item: item[0], reverse=True)[: self.MAX_RECOMMENDATIONS]
        notes = build_clinical_notes(context)
        return [
            ServiceRecommendation(
                service_id=service.id,
                service_title=service.title,
                reason=service.reason(symptom),
                urgency=urgency_level,
                prefilled_notes=notes,
                estimated_wait=service.estimated_wait,
            )
            for _, service in scored
        ]


def default_service_registry() -> ServiceRegistry:
    registry = ServiceRegistry()
    for service in (
        ServiceDefinition(
            id="emergency",
            title="Emergency Services",
            description="Call 911 or go to nearest emergency room",
            urgency_levels=("emergency",),
            symptom_keywords=("chest pain", "stroke", "unconscious", "severe bleeding"),
            priority=1,
            estimated_wait="Immediate",
            reason=lambda s: "Your symptoms need immediate medical attention. Please seek emergency care.",
        ),
        ServiceDefinition(
            id="urgent_care",
            title="Urgent Care Visit",
            description="Same-day care for urgent but non-emergency conditions",
            urgency_levels=("urgent", "soon"),
            symptom_keywords=("high fever", "severe pain", "infection", "breathing difficulty"),
            priority=2,
            estimated_wait="15-30 minutes",
            reason=lambda s: f"Based on your {s} and the urgency level, an urgent care visit would allow prompt evaluation.",
        ),
        ServiceDefinition(
            id="video_consult",
            title="Video Consultation",
            description="Speak with a healthcare provider from home",
            urgency_levels=("soon", "non_urgent", "monitor"),
            symptom_keywords=("cold", "flu", "rash", "minor pain", "questions"),
            priority=3,
            estimated_wait="5-15 minutes",
            reason=lambda s: f"A video consultation can help evaluate your {s} without needing to leave home.",
        ),
        ServiceDefinition(
            id="in_person_visit",
            title="In-Person Doctor Visit",
            description="Schedule a visit with a healthcare provider",
            urgency_levels=("soon", "non_urgent"),
            symptom_keywords=("ongoing", "chronic", "checkup", "followup"),
            priority=4,
            estimated_wait="1-2 days",
            reason=lambda s: f"An in-person visit would allow a thorough examination of your {s}.",
        ),
        ServiceDefinition(
            id="specialist_referral",
            title="Specialist Consultation",
            description="Get referred to a specialist for your condition",
            urgency_levels=("non_urgent", "soon"),
            symptom_keywords=("chronic", "recurring", "specialist", "ongoing"),
            priority=5,
            estimated_wait="3-5 days",
            reason=lambda s: "Given the nature of your symptoms, a specialist may be able to provide more targeted care.",
        ),
        ServiceDefinition(
            id="mental_health",
            title="Mental Health Support",
            description="Speak with a mental health professional",
            urgency_levels=("urgent", "soon", "non_urgent"),
            symptom_keywords=("anxiety", "depression", "stress", "sleep", "mood"),
            priority=3,
            estimated_wait="1-3 days",
            reason=lambda s: "Speaking with a mental health professional can help address your concerns.",
        ),
        ServiceDefinition(
            id="pharmacy_consult",
            title="Pharmacy Consultation",
            description="Speak with a pharmacist about medications",
            urgency_levels=("non_urgent", "monitor", "self_care"),
            symptom_keywords=("medication", "prescription", "drug interaction", "refill"),
            priority=6,
            estimated_wait="Same day",
            reason=lambda s: "A pharmacist can provide guidance on over-the-counter options that may help.",
        ),
        ServiceDefinition(
            id="lab_test",
            title="Lab Tests",
            description="Get diagnostic tests at a nearby lab",
            urgency_levels=("non_urgent", "soon"),
            symptom_keywords=("test", "blood work", "screening", "diagnostic"),
            priority=7,
            estimated_wait="Same day",
            reason=lambda s: "Diagnostic tests may help identify the underlying cause of your symptoms.",
        ),
        ServiceDefinition(
            id="self_care_guidance",
            title="Self-Care Resources",
            description="Tips and guidance for managing symptoms at home",
            urgency_levels=("self_care", "monitor"),
            symptom_keywords=("mild", "minor", "common", "home remedy"),
            priority=8,
            estimated_wait="Immediate",
            reason=lambda s: "Your symptoms can likely be managed at home with proper self-care.",
        ),
    ):
        registry.register(service)
    return registry
