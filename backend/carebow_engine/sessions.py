from __future__ import annotations

import functools
import logging
import threading
from typing import Any, Callable

from memory.record_store import RecordStore
from memory.time_utils import to_iso, utc_now

from .lifecycle import PhaseMachine
from .models import (
    CONTENT_TYPES,
    MESSAGE_ROLES,
    RISK_LEVELS,
    URGENCY_LEVELS,
    AskCarebowSession,
    Message,
    dedupe_extend,
    new_id,
)
from .summary import format_session_export, format_session_notes, generate_session_summary
from .triage import MemberProfile

logger = logging.getLogger(__name__)

NAMESPACE = "sessions"

OPENING_MESSAGE = (
    "Hello, I'm here to help you understand your health concerns. Tell me what's going on - "
    "you can describe any symptoms, concerns, or how you're feeling."
)

EXPORT_FORMATS = ("text", "json")


def _synchronized(method: Callable[..., Any]) -> Callable[..., Any]:
    @functools.wraps(method)
    def wrapper(self: "SessionStore", *args: Any, **kwargs: Any) -> Any:
        with self.lock:
            return method(self, *args, **kwargs)

    return wrapper


class InactiveSessionError(Exception):
    pass


class SessionNotFoundError(InactiveSessionError):
    pass


class ActiveSessionExistsError(Exception):
    pass


class SessionStore:
    """Owns every Ask CareBow session and writes each change through to storage.

    Conversation mutators require an active session. Audit annotations made after
    the conversation (follow-ups, doctor notes, exports, session feedback) only
    require the session to exist.

    Every mutator holds `lock`, a re-entrant lock shared with the conversation
    engine so a whole turn runs as one unit.
    """

    def __init__(self, records: RecordStore, *, machine: PhaseMachine | None = None) -> None:
        self._records = records
        self.lock = threading.RLock()
        self.machine = machine or PhaseMachine()
        self._sessions: dict[str, AskCarebowSession] = {}
        self._active_by_member: dict[str, str] = {}
        for session_id, payload in records.load_all(NAMESPACE).items():
            try:
                session = AskCarebowSession.from_dict(payload)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable session %s: %s", session_id, exc)
                continue
            self._sessions[session.id] = session
            if session.is_active:
                self._active_by_member[session.member_id] = session.id

    # Lookup

    def get(self, session_id: str) -> AskCarebowSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return session

    def require_active(self, session_id: str) -> AskCarebowSession:
        session = self.get(session_id)
        if not session.is_active:
            raise InactiveSessionError(f"Session is no longer active: {session_id}")
        return session

    def _commit(self, session: AskCarebowSession) -> AskCarebowSession:
        session.updated_at = to_iso(utc_now())
        self._records.save(namespace=NAMESPACE, key=session.id, payload=session.to_dict())
        return session

    def active_session_for_member(self, member_id: str) -> AskCarebowSession | None:
        session_id = self._active_by_member.get(member_id)
        return self._sessions.get(session_id) if session_id else None

    # Lifecycle

    @_synchronized
    def start_new_session(
        self,
        *,
        user_id: str,
        member_id: str,
        member_name: str | None = None,
        member_profile: dict[str, Any] | None = None,
    ) -> AskCarebowSession:
        if member_id in self._active_by_member:
            raise ActiveSessionExistsError(
                f"Member {member_id} already has an active session: {self._active_by_member[member_id]}"
            )
        now = to_iso(utc_now())
        session = AskCarebowSession(
            id=new_id("session"),
            user_id=user_id,
            member_id=member_id,
            member_name=member_name,
            member_profile=MemberProfile.from_dict({**(member_profile or {}), "member_id": member_id}).to_dict(),
            created_at=now,
            updated_at=now,
        )
        session.messages.append(
            Message(id=new_id("msg"), role="assistant", content_type="text", text=OPENING_MESSAGE, timestamp=now)
        )
        self._sessions[session.id] = session
        self._active_by_member[member_id] = session.id
        logger.info("Started session %s for member %s", session.id, member_id)
        return self._commit(session)

    def _close(self, session: AskCarebowSession) -> None:
        if self.machine.can_transition(session.phase, "completed"):
            self.machine.transition(session.conversation_state, "completed")
        session.is_active = False
        session.ended_at = to_iso(utc_now())
        if self._active_by_member.get(session.member_id) == session.id:
            del self._active_by_member[session.member_id]

    @_synchronized
    def end_session(self, session_id: str) -> AskCarebowSession:
        session = self.require_active(session_id)
        self._close(session)
        logger.info("Ended session %s", session.id)
        return self._commit(session)

    @_synchronized
    def finalize_session(self, session_id: str) -> AskCarebowSession:
        session = self.require_active(session_id)
        session.session_summary = generate_session_summary(session)
        self._close(session)
        logger.info("Finalized session %s", session.id)
        return self._commit(session)

    @_synchronized
    def resume_session(self, session_id: str) -> AskCarebowSession:
        session = self.require_active(session_id)
        owner = self._active_by_member.get(session.member_id)
        if owner and owner != session.id:
            raise ActiveSessionExistsError(f"Member {session.member_id} already has an active session: {owner}")
        self._active_by_member[session.member_id] = session.id
        return session

    # Messages

    @_synchronized
    def add_user_message(self, session_id: str, text: str) -> Message:
        session = self.require_active(session_id)
        cleaned = (text or "").strip()
        if not cleaned:
            raise ValueError("Message text is required.")
        message = Message(id=new_id("msg"), role="user", content_type="text", text=cleaned, timestamp=to_iso(utc_now()))
        session.messages.append(message)
        self._commit(session)
        return message

    @_synchronized
    def add_assistant_message(
        self,
        session_id: str,
        text: str,
        *,
        content_type: str = "text",
        quick_options: list[dict[str, str]] | None = None,
        guidance: dict[str, Any] | None = None,
        suggested_actions: list[dict[str, Any]] | None = None,
        service_recommendation: dict[str, Any] | None = None,
        is_emergency: bool = False,
        role: str = "assistant",
    ) -> Message:
        if content_type not in CONTENT_TYPES:
            raise ValueError(f"Unknown content type: {content_type}")
        if role not in MESSAGE_ROLES or role == "user":
            raise ValueError(f"Invalid assistant role: {role}")
        session = self.require_active(session_id)
        message = Message(
            id=new_id("msg"),
            role=role,
            content_type=content_type,
            text=text,
            timestamp=to_iso(utc_now()),
            quick_options=quick_options,
            guidance=guidance,
            suggested_actions=suggested_actions,
            service_recommendation=service_recommendation,
            is_emergency=is_emergency,
        )
        session.messages.append(message)
        self._commit(session)
        return message

    # Conversation state

    @_synchronized
    def update_phase(self, session_id: str, phase: str) -> AskCarebowSession:
        if phase == "completed":
            return self.end_session(session_id)
        session = self.require_active(session_id)
        if session.phase != phase:
            self.machine.transition(session.conversation_state, phase)
        return self._commit(session)

    @_synchronized
    def mark_question_asked(self, session_id: str, question_type: str) -> AskCarebowSession:
        session = self.require_active(session_id)
        session.conversation_state.mark_question_asked(question_type)
        return self._commit(session)

    @_synchronized
    def set_current_question(self, session_id: str, question_type: str | None) -> AskCarebowSession:
        session = self.require_active(session_id)
        session.conversation_state.current_question = question_type
        return self._commit(session)

    @_synchronized
    def update_health_context(self, session_id: str, updates: dict[str, Any]) -> AskCarebowSession:
        session = self.require_active(session_id)
        session.health_context.merge(updates)
        return self._commit(session)

    @_synchronized
    def _add_to_context_list(self, session_id: str, field_name: str, value: str) -> AskCarebowSession:
        session = self.require_active(session_id)
        session.health_context.add_to_list(field_name, value)
        return self._commit(session)

    def add_associated_symptom(self, session_id: str, symptom: str) -> AskCarebowSession:
        return self._add_to_context_list(session_id, "associated_symptoms", symptom)

    def add_risk_factor(self, session_id: str, factor: str) -> AskCarebowSession:
        return self._add_to_context_list(session_id, "risk_factors", factor)

    def add_chronic_condition(self, session_id: str, condition: str) -> AskCarebowSession:
        return self._add_to_context_list(session_id, "chronic_conditions", condition)

    @_synchronized
    def set_urgency_level(self, session_id: str, level: str) -> AskCarebowSession:
        if level not in URGENCY_LEVELS:
            raise ValueError(f"Unknown urgency level: {level}")
        session = self.require_active(session_id)
        session.urgency_level = level
        session.conversation_state.urgency_level = level
        return self._commit(session)

    @_synchronized
    def set_risk_level(self, session_id: str, level: str) -> AskCarebowSession:
        if level not in RISK_LEVELS:
            raise ValueError(f"Unknown risk level: {level}")
        session = self.require_active(session_id)
        session.risk_level = level
        return self._commit(session)

    @_synchronized
    def set_triggered_emergency_flow(self, session_id: str, triggered: bool) -> AskCarebowSession:
        session = self.require_active(session_id)
        session.triggered_emergency_flow = bool(triggered)
        return self._commit(session)

    @_synchronized
    def add_detected_symptom(self, session_id: str, symptom: str) -> AskCarebowSession:
        session = self.require_active(session_id)
        dedupe_extend(session.detected_symptoms, [symptom])
        return self._commit(session)

    @_synchronized
    def mark_guidance_provided(self, session_id: str) -> AskCarebowSession:
        session = self.require_active(session_id)
        session.conversation_state.has_provided_guidance = True
        return self._commit(session)

    @_synchronized
    def record_assessment(
        self,
        session_id: str,
        *,
        triage: dict[str, Any],
        suggested_actions: list[dict[str, Any]],
        recommended_services: list[dict[str, Any]],
        detected_symptoms: list[str],
    ) -> AskCarebowSession:
        session = self.require_active(session_id)
        session.triage = triage
        session.urgency_level = triage["urgency_level"]
        session.conversation_state.urgency_level = triage["urgency_level"]
        session.risk_level = triage["risk_level"]
        session.suggested_actions = list(suggested_actions)
        session.recommended_services = list(recommended_services)
        dedupe_extend(session.detected_symptoms, detected_symptoms)
        return self._commit(session)

    @_synchronized
    def record_emergency(self, session_id: str, emergency: dict[str, Any]) -> AskCarebowSession:
        session = self.require_active(session_id)
        session.emergency = emergency
        session.triggered_emergency_flow = True
        session.urgency_level = "emergency"
        session.conversation_state.urgency_level = "emergency"
        session.risk_level = "critical"
        dedupe_extend(session.detected_symptoms, emergency.get("detected_symptoms", []))
        if session.phase != "emergency":
            self.machine.transition(session.conversation_state, "emergency")
        return self._commit(session)

    # Linked actions

    @_synchronized
    def link_order(self, session_id: str, order_id: str) -> AskCarebowSession:
        session = self.require_active(session_id)
        session.linked_order_id = order_id
        session.actual_action_taken = f"Booked service (Order: {order_id})"
        return self._commit(session)

    @_synchronized
    def link_request(self, session_id: str, request_id: str) -> AskCarebowSession:
        session = self.require_active(session_id)
        session.linked_request_id = request_id
        session.actual_action_taken = f"Submitted service request (Request: {request_id})"
        return self._commit(session)

    @_synchronized
    def record_action_taken(self, session_id: str, description: str) -> AskCarebowSession:
        session = self.require_active(session_id)
        session.actual_action_taken = description
        return self._commit(session)

    # Post-conversation annotations

    @_synchronized
    def schedule_follow_up(self, session_id: str, scheduled_for: str) -> AskCarebowSession:
        session = self.get(session_id)
        session.follow_up_scheduled = True
        session.follow_up_scheduled_for = scheduled_for
        return self._commit(session)

    @_synchronized
    def cancel_follow_up(self, session_id: str) -> AskCarebowSession:
        session = self.get(session_id)
        session.follow_up_scheduled = False
        session.follow_up_scheduled_for = None
        return self._commit(session)

    @_synchronized
    def mark_doctor_notes_sent(self, session_id: str, recipient: str | None = None) -> AskCarebowSession:
        session = self.get(session_id)
        session.doctor_notes_sent = True
        session.doctor_notes_sent_at = to_iso(utc_now())
        session.export_history.append(
            {"exported_at": session.doctor_notes_sent_at, "export_format": "text", "exported_to": recipient}
        )
        return self._commit(session)

    @_synchronized
    def export_session(self, session_id: str, export_format: str, destination: str | None = None) -> AskCarebowSession:
        if export_format not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {export_format}")
        session = self.get(session_id)
        session.export_history.append(
            {"exported_at": to_iso(utc_now()), "export_format": export_format, "exported_to": destination}
        )
        return self._commit(session)

    @_synchronized
    def provide_detailed_feedback(
        self,
        session_id: str,
        *,
        was_helpful: bool,
        rating: int,
        feedback_note: str | None = None,
    ) -> AskCarebowSession:
        if not 1 <= int(rating) <= 5:
            raise ValueError("Rating must be between 1 and 5.")
        session = self.get(session_id)
        session.feedback = {
            "was_helpful": bool(was_helpful),
            "rating": int(rating),
            "feedback_note": feedback_note,
            "feedback_timestamp": to_iso(utc_now()),
        }
        return self._commit(session)

    # Exports

    def get_session_export_text(self, session_id: str) -> str:
        return format_session_notes(self.get(session_id))

    def get_session_export_json(self, session_id: str) -> dict[str, Any]:
        return format_session_export(self.get(session_id))

    # Queries

    @_synchronized
    def _newest_first(self, predicate: Callable[[AskCarebowSession], bool]) -> list[AskCarebowSession]:
        matches = [session for session in self._sessions.values() if predicate(session)]
        return sorted(matches, key=lambda session: session.created_at, reverse=True)

    def get_sessions_for_member(self, member_id: str) -> list[AskCarebowSession]:
        return self._newest_first(lambda session: session.member_id == member_id)

    def get_recent_sessions(self, limit: int = 10) -> list[AskCarebowSession]:
        return self._newest_first(lambda session: True)[: max(0, limit)]

    def get_emergency_sessions(self) -> list[AskCarebowSession]:
        return self._newest_first(lambda session: session.triggered_emergency_flow)

    def get_sessions_with_feedback(self) -> list[AskCarebowSession]:
        return self._newest_first(lambda session: session.feedback is not None)

    def sessions_for_user(self, user_id: str) -> list[AskCarebowSession]:
        return self._newest_first(lambda session: session.user_id == user_id)
