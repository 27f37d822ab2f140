from __future__ import annotations

from datetime import datetime
from typing import Any

from memory.time_utils import to_iso, utc_now

from .display import (
    DURATION_LABELS,
    NOT_SPECIFIED,
    RECOMMENDED_TIMEFRAMES,
    UNANSWERED_QUESTION_LABELS,
    URGENCY_DISPLAY,
)
from .models import AskCarebowSession, CollectedData, SessionSummary, TriageOutcome, dedupe_extend
from .red_flags import RED_FLAG_SYMPTOMS, normalize_text
from .triage import calculate_confidence

EXPORT_VERSION = "1.0"

NOTES_DISCLAIMER = (
    "DISCLAIMER: This AI-generated summary is for informational purposes only and\n"
    "does not constitute medical advice, diagnosis, or treatment. The healthcare\n"
    "provider should conduct their own independent assessment."
)

_RULE = "=" * 80


def generate_session_summary(session: AskCarebowSession) -> SessionSummary:
    """Project a session into its audit summary. Pure: reads no clock and mutates nothing."""
    context = session.health_context
    state = session.conversation_state

    first_user = next((message for message in session.messages if message.role == "user"), None)
    chief_complaint = (first_user.text if first_user else "") or context.primary_symptom or NOT_SPECIFIED
    urgency_level = session.urgency_level or "monitor"

    # Supplemental and crisis labels are not in RED_FLAG_SYMPTOMS.
    red_flags: list[str] = []
    dedupe_extend(red_flags, (session.triage or {}).get("red_flags_detected") or [])
    dedupe_extend(red_flags, (session.emergency or {}).get("detected_symptoms") or [])
    dedupe_extend(
        red_flags,
        [s for s in session.detected_symptoms if any(flag in normalize_text(s) for flag in RED_FLAG_SYMPTOMS)],
    )

    return SessionSummary(
        chief_complaint=chief_complaint,
        collected_data=CollectedData(
            primary_symptom=context.primary_symptom or NOT_SPECIFIED,
            duration=DURATION_LABELS[context.duration] if context.duration else NOT_SPECIFIED,
            severity=f"{context.severity}/10" if context.severity else NOT_SPECIFIED,
            associated_symptoms=list(context.associated_symptoms),
            relevant_history=[*context.chronic_conditions, *context.recent_events],
            medications=list(context.medications),
            allergies=list(context.allergies),
        ),
        triage_outcome=TriageOutcome(
            urgency_level=urgency_level,
            risk_level=session.risk_level or "low",
            red_flags_detected=red_flags,
            recommended_timeframe=RECOMMENDED_TIMEFRAMES[urgency_level],
            safety_check_passed=not session.triggered_emergency_flow,
        ),
        recommended_actions=[action["label"] for action in session.suggested_actions],
        assessment_confidence=calculate_confidence(context, state.questions_asked, state.questions_remaining),
        unanswered_questions=[UNANSWERED_QUESTION_LABELS.get(q, q) for q in state.questions_remaining],
        actual_action_taken=session.actual_action_taken,
    )


def _bullets(items: list[str], empty: str) -> str:
    if not items:
        return f"  {empty}"
    return "\n".join(f"  - {item}" for item in items)


def format_session_notes(session: AskCarebowSession, *, generated_at: datetime | None = None) -> str:
    summary = session.session_summary or generate_session_summary(session)
    data = summary.collected_data
    outcome = summary.triage_outcome

    lines = [
        _RULE,
        "CAREBOW AI HEALTH ASSISTANT - SESSION SUMMARY",
        f"Generated: {to_iso(generated_at or utc_now())}",
        f"Session Date: {session.created_at}",
        f"Session ID: {session.id}",
        _RULE,
        "",
        "PATIENT INFORMATION",
        "-------------------",
        f"Name: {session.member_name or NOT_SPECIFIED}",
        f"Member ID: {session.member_id}",
        "",
        "CHIEF COMPLAINT",
        "---------------",
        f'"{summary.chief_complaint}"',
        "",
        "COLLECTED DATA",
        "--------------",
        f"Primary Symptom: {data.primary_symptom}",
        f"Duration: {data.duration}",
        f"Severity: {data.severity}",
        "",
        "Associated Symptoms:",
        _bullets(data.associated_symptoms, "None reported"),
        "",
        "Relevant Medical History:",
        _bullets(data.relevant_history, "None reported"),
        "",
        "Current Medications:",
        _bullets(data.medications, "None reported"),
        "",
        "Known Allergies:",
        _bullets(data.allergies, "None reported"),
        "",
        "AI TRIAGE ASSESSMENT",
        "--------------------",
        f"Urgency Level: {URGENCY_DISPLAY[outcome.urgency_level]['label']}",
        f"Risk Level: {outcome.risk_level.upper()}",
        f"Recommended Timeframe: {outcome.recommended_timeframe}",
        f"Safety Check: {'PASSED' if outcome.safety_check_passed else 'RED FLAGS DETECTED'}",
    ]
    if outcome.red_flags_detected:
        lines.extend(["", "Red Flags Detected:", *(f"  ! {flag}" for flag in outcome.red_flags_detected)])

    if summary.recommended_actions:
        actions = [f"{index}. {label}" for index, label in enumerate(summary.recommended_actions, start=1)]
    else:
        actions = ["None specified"]
    lines.extend(["", "ACTIONS RECOMMENDED", "-------------------", *actions])

    lines.extend(
        [
            "",
            "DATA COMPLETENESS",
            "-----------------",
            f"Assessment Confidence: {summary.assessment_confidence}%",
            "",
            "Unanswered Questions:",
            _bullets(summary.unanswered_questions, "All key questions answered"),
            "",
            _RULE,
            NOTES_DISCLAIMER,
            _RULE,
        ]
    )
    return "\n".join(lines)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _camelize(value: Any) -> Any:
    if isinstance(value, dict):
        return {_camel(key): _camelize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_camelize(item) for item in value]
    return value


def format_session_export(session: AskCarebowSession, *, exported_at: datetime | None = None) -> dict[str, Any]:
    summary = session.session_summary or generate_session_summary(session)
    return {
        "exportedAt": to_iso(exported_at or utc_now()),
        "version": EXPORT_VERSION,
        "session": {
            "id": session.id,
            "memberId": session.member_id,
            "memberName": session.member_name,
            "createdAt": session.created_at,
            "updatedAt": session.updated_at,
        },
        "summary": _camelize(summary.to_dict()),
        "conversationLog": [
            {
                "role": message.role,
                "text": message.text,
                "timestamp": message.timestamp,
                "contentType": message.content_type,
            }
            for message in session.messages
        ],
        "feedback": _camelize(session.feedback) if session.feedback else None,
        "linkedActions": {
            "orderId": session.linked_order_id,
            "requestId": session.linked_request_id,
            "followUpScheduled": session.follow_up_scheduled,
            "followUpDate": session.follow_up_scheduled_for,
        },
    }
