from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar, Iterable


DURATIONS = ("just_now", "few_hours", "today", "1_2_days", "3_7_days", "1_2_weeks", "more_than_2_weeks", "chronic")
FREQUENCIES = ("constant", "intermittent", "occasional", "first_time")
AGE_GROUPS = ("infant", "child", "teen", "adult", "senior")
# Ordered from least to most urgent.
URGENCY_LEVELS = ("self_care", "monitor", "non_urgent", "soon", "urgent", "emergency")
TRIAGE_LEVELS = ("self_care", "monitor", "consult", "urgent", "emergency")
RISK_LEVELS = ("low", "moderate", "high", "critical")
FOLLOW_UP_QUESTION_TYPES = (
    "duration",
    "severity",
    "frequency",
    "associated_symptoms",
    "risk_factors",
    "age",
    "chronic_conditions",
    "recent_events",
    "medications",
    "location",
    "triggers",
    "relief_attempts",
)
PHASES = ("initial", "gathering", "assessing", "guidance", "service_routing", "completed", "emergency")
MESSAGE_ROLES = ("user", "assistant", "system")
CONTENT_TYPES = ("text", "question", "guidance", "service_recommendation", "emergency_alert", "quick_options")
ACTION_TYPES = (
    "book_doctor",
    "request_nurse",
    "rent_equipment",
    "book_lab_test",
    "video_consult",
    "call_emergency",
    "monitor_at_home",
    "no_action_needed",
)

URGENCY_RANK = {level: index for index, level in enumerate(URGENCY_LEVELS)}


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def dedupe_extend(target: list[str], values: Iterable[str]) -> list[str]:
    seen = {item.strip().lower() for item in target}
    added: list[str] = []
    for value in values:
        cleaned = (value or "").strip()
        if not cleaned or cleaned.lower() in seen:
            continue
        seen.add(cleaned.lower())
        target.append(cleaned)
        added.append(cleaned)
    return added


@dataclass
class HealthContext:
    LIST_FIELDS: ClassVar[tuple[str, ...]] = (
        "associated_symptoms",
        "risk_factors",
        "chronic_conditions",
        "recent_events",
        "medications",
        "allergies",
    )

    primary_symptom: str = ""
    duration: str | None = None
    severity: int | None = None
    frequency: str | None = None
    age_group: str | None = None
    associated_symptoms: list[str] = field(default_factory=list)
    risk_factors: list[str] = field(default_factory=list)
    chronic_conditions: list[str] = field(default_factory=list)
    recent_events: list[str] = field(default_factory=list)
    medications: list[str] = field(default_factory=list)
    allergies: list[str] = field(default_factory=list)
    additional_notes: str = ""

    def merge(self, updates: dict[str, Any]) -> None:
        for key, value in updates.items():
            if key in self.LIST_FIELDS:
                dedupe_extend(getattr(self, key), value or [])
            elif key == "additional_notes":
                note = (value or "").strip()
                if note and note not in self.additional_notes:
                    self.additional_notes = f"{self.additional_notes}\n{note}".strip()
            elif key == "duration":
                if value is not None and value not in DURATIONS:
                    raise ValueError(f"Unknown duration: {value}")
                self.duration = value if value is not None else self.duration
            elif key == "frequency":
                if value is not None and value not in FREQUENCIES:
                    raise ValueError(f"Unknown frequency: {value}")
                self.frequency = value if value is not None else self.frequency
            elif key == "age_group":
                if value is not None and value not in AGE_GROUPS:
                    raise ValueError(f"Unknown age group: {value}")
                self.age_group = value if value is not None else self.age_group
            elif key == "severity":
                if value is not None:
                    severity = int(value)
                    if not 1 <= severity <= 10:
                        raise ValueError("Severity must be between 1 and 10.")
                    self.severity = severity
            elif key == "primary_symptom":
                if value:
                    self.primary_symptom = str(value).strip()
            else:
                raise ValueError(f"Unknown health context field: {key}")

    def add_to_list(self, field_name: str, value: str) -> bool:
        if field_name not in self.LIST_FIELDS:
            raise ValueError(f"Not a list field: {field_name}")
        return bool(dedupe_extend(getattr(self, field_name), [value]))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "HealthContext":
        payload = payload or {}
        known = {f.name for f in fields(cls)}
        data = {key: value for key, value in payload.items() if key in known}
        for list_field in cls.LIST_FIELDS:
            data[list_field] = list(data.get(list_field) or [])
        return cls(**data)


@dataclass(frozen=True)
class Message:
    id: str
    role: str
    content_type: str
    text: str
    timestamp: str
    quick_options: list[dict[str, str]] | None = None
    guidance: dict[str, Any] | None = None
    suggested_actions: list[dict[str, Any]] | None = None
    service_recommendation: dict[str, Any] | None = None
    is_emergency: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Message":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in payload.items() if key in known})


@dataclass
class ConversationState:
    phase: str = "initial"
    questions_asked: list[str] = field(default_factory=list)
    questions_remaining: list[str] = field(default_factory=lambda: list(FOLLOW_UP_QUESTION_TYPES))
    current_question: str | None = None
    health_context: HealthContext = field(default_factory=HealthContext)
    urgency_level: str | None = None
    has_provided_guidance: bool = False

    def mark_question_asked(self, question_type: str) -> bool:
        if question_type not in FOLLOW_UP_QUESTION_TYPES:
            raise ValueError(f"Unknown question type: {question_type}")
        if question_type in self.questions_asked:
            return False
        self.questions_remaining.remove(question_type)
        self.questions_asked.append(question_type)
        return True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "ConversationState":
        payload = dict(payload or {})
        asked = [q for q in payload.get("questions_asked", []) if q in FOLLOW_UP_QUESTION_TYPES]
        return cls(
            phase=payload.get("phase", "initial"),
            questions_asked=asked,
            questions_remaining=[q for q in FOLLOW_UP_QUESTION_TYPES if q not in asked],
            current_question=payload.get("current_question"),
            health_context=HealthContext.from_dict(payload.get("health_context")),
            urgency_level=payload.get("urgency_level"),
            has_provided_guidance=bool(payload.get("has_provided_guidance", False)),
        )


@dataclass(frozen=True)
class CollectedData:
    primary_symptom: str
    duration: str
    severity: str
    associated_symptoms: list[str]
    relevant_history: list[str]
    medications: list[str]
    allergies: list[str]


@dataclass(frozen=True)
class TriageOutcome:
    urgency_level: str
    risk_level: str
    red_flags_detected: list[str]
    recommended_timeframe: str
    safety_check_passed: bool


@dataclass(frozen=True)
class SessionSummary:
    chief_complaint: str
    collected_data: CollectedData
    triage_outcome: TriageOutcome
    recommended_actions: list[str]
    assessment_confidence: int
    unanswered_questions: list[str]
    actual_action_taken: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "SessionSummary":
        return cls(
            chief_complaint=payload["chief_complaint"],
            collected_data=CollectedData(**payload["collected_data"]),
            triage_outcome=TriageOutcome(**payload["triage_outcome"]),
            recommended_actions=list(payload.get("recommended_actions", [])),
            assessment_confidence=int(payload.get("assessment_confidence", 0)),
            unanswered_questions=list(payload.get("unanswered_questions", [])),
            actual_action_taken=payload.get("actual_action_taken"),
        )


@dataclass
class AskCarebowSession:
    id: str
    user_id: str
    member_id: str
    created_at: str
    updated_at: str
    member_name: str | None = None
    member_profile: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    messages: list[Message] = field(default_factory=list)
    conversation_state: ConversationState = field(default_factory=ConversationState)
    urgency_level: str | None = None
    risk_level: str | None = None
    recommended_services: list[dict[str, Any]] = field(default_factory=list)
    detected_symptoms: list[str] = field(default_factory=list)
    suggested_actions: list[dict[str, Any]] = field(default_factory=list)
    triage: dict[str, Any] | None = None
    linked_order_id: str | None = None
    linked_request_id: str | None = None
    actual_action_taken: str | None = None
    triggered_emergency_flow: bool = False
    emergency: dict[str, Any] | None = None
    session_summary: SessionSummary | None = None
    feedback: dict[str, Any] | None = None
    follow_up_scheduled: bool = False
    follow_up_scheduled_for: str | None = None
    doctor_notes_sent: bool = False
    doctor_notes_sent_at: str | None = None
    export_history: list[dict[str, Any]] = field(default_factory=list)
    ended_at: str | None = None

    @property
    def health_context(self) -> HealthContext:
        return self.conversation_state.health_context

    @property
    def phase(self) -> str:
        return self.conversation_state.phase

    def user_text(self) -> str:
        return "\n".join(message.text for message in self.messages if message.role == "user")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "member_id": self.member_id,
            "member_name": self.member_name,
            "member_profile": self.member_profile,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "is_active": self.is_active,
            "messages": [message.to_dict() for message in self.messages],
            "conversation_state": self.conversation_state.to_dict(),
            "health_context": self.health_context.to_dict(),
            "urgency_level": self.urgency_level,
            "risk_level": self.risk_level,
            "recommended_services": self.recommended_services,
            "detected_symptoms": self.detected_symptoms,
            "suggested_actions": self.suggested_actions,
            "triage": self.triage,
            "linked_order_id": self.linked_order_id,
            "linked_request_id": self.linked_request_id,
            "actual_action_taken": self.actual_action_taken,
            "triggered_emergency_flow": self.triggered_emergency_flow,
            "emergency": self.emergency,
            "session_summary": self.session_summary.to_dict() if self.session_summary else None,
            "feedback": self.feedback,
            "follow_up_scheduled": self.follow_up_scheduled,
            "follow_up_scheduled_for": self.follow_up_scheduled_for,
            "doctor_notes_sent": self.doctor_notes_sent,
            "doctor_notes_sent_at": self.doctor_notes_sent_at,
            "export_history": self.export_history,
            "ended_at": self.ended_at,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "AskCarebowSession":
        summary = payload.get("session_summary")
        return cls(
            id=payload["id"],
            user_id=payload["user_id"],
            member_id=payload["member_id"],
            created_at=payload["created_at"],
            updated_at=payload["updated_at"],
            member_name=payload.get("member_name"),
            member_profile=dict(payload.get("member_profile") or {}),
            is_active=bool(payload.get("is_active", False)),
            messages=[Message.from_dict(item) for item in payload.get("messages", [])],
            conversation_state=ConversationState.from_dict(payload.get("conversation_state")),
            urgency_level=payload.get("urgency_level"),
            risk_level=payload.get("risk_level"),
            recommended_services=list(payload.get("recommended_services", [])),
            detected_symptoms=list(payload.get("detected_symptoms", [])),
            suggested_actions=list(payload.get("suggested_actions", [])),
            triage=payload.get("triage"),
            linked_order_id=payload.get("linked_order_id"),
            linked_request_id=payload.get("linked_request_id"),
            actual_action_taken=payload.get("actual_action_taken"),
            triggered_emergency_flow=bool(payload.get("triggered_emergency_flow", False)),
            emergency=payload.get("emergency"),
            session_summary=SessionSummary.from_dict(summary) if summary else None,
            feedback=payload.get("feedback"),
            follow_up_scheduled=bool(payload.get("follow_up_scheduled", False)),
            follow_up_scheduled_for=payload.get("follow_up_scheduled_for"),
            doctor_notes_sent=bool(payload.get("doctor_notes_sent", False)),
            doctor_notes_sent_at=payload.get("doctor_notes_sent_at"),
            export_history=list(payload.get("export_history", [])),
            ended_at=payload.get("ended_at"),
        )
