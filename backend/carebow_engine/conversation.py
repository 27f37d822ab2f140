from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from memory.health_store import HealthMemoryStore
from memory.service import MemoryService

from .actions import ActionOutcome, ActionRouter
from .display import DISCLAIMER, URGENCY_DISPLAY
from .guidance import GuidanceResponse, build_guidance, build_suggested_actions, format_guidance_text
from .hooks import AfterFinalizeHook, HookRunner
from .models import AskCarebowSession, Message
from .questions import (
    SufficiencyPredicate,
    build_question,
    extract_primary_symptom,
    has_sufficient_context,
    next_question_type,
    parse_associated_symptoms,
    parse_initial_input,
    parse_response,
)
from .red_flags import NO_EMERGENCY, EmergencyState, RedFlagDetector
from .services import ServiceRegistry
from .sessions import SessionStore
from .summary import generate_session_summary
from .triage import MemberProfile, TriageEngine, TriageResult

logger = logging.getLogger(__name__)

EMERGENCY_STEPS = (
    "Please take these steps immediately:\n\n"
    "1. If you or someone is in immediate danger, call emergency services (911 in the US)\n\n"
    "2. Do not drive yourself if you feel unwell - have someone else drive you or call an ambulance\n\n"
    "3. Stay calm and try to remain still until help arrives\n\n"
    "4. If possible, have someone stay with you"
)

FOLLOW_UP_PROMPT = (
    "Is there anything else you'd like to know about your symptoms, or would you like help booking a service?"
)

POST_GUIDANCE_REPLY = (
    "Thanks, I've added that to your notes. If your symptoms change or get worse, please seek care sooner. "
    "You can pick one of the suggested options whenever you're ready."
)

EMERGENCY_INSTRUCTIONS = {
    "call_number": "911",
    "immediate_steps": [
        "If you are in immediate danger, call 911",
        "Do not drive yourself if you feel unwell",
        "Have someone stay with you if possible",
        "Gather any medications you are taking to bring with you",
    ],
}

_ACTION_REPLIES = {
    "order": "I've started a booking for {label}. You can review the details before anything is scheduled.",
    "service_request": "I've sent a request for {label}. The care team will follow up with options.",
    "call_emergency": "Please call 911 now. If you can, have someone stay with you until help arrives.",
    "monitor_at_home": "Okay. Keep track of how you feel, and come back if anything changes or gets worse.",
    "no_action_needed": "Okay. If your symptoms change, I'm here to help you look at them again.",
}


class TurnBlockedError(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class TurnResult:
    session: AskCarebowSession
    messages: list[Message]
    emergency: EmergencyState = NO_EMERGENCY
    triage: TriageResult | None = None
    guidance: GuidanceResponse | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session.id,
            "phase": self.session.phase,
            "is_active": self.session.is_active,
            "messages": [message.to_dict() for message in self.messages],
            "emergency": self.emergency.to_dict(),
            "triage": self.triage.to_dict() if self.triage else None,
            "guidance": self.guidance.to_dict() if self.guidance else None,
            "health_context": self.session.health_context.to_dict(),
            **self.extras,
        }


def emergency_instructions() -> dict[str, Any]:
    return {
        "call_number": EMERGENCY_INSTRUCTIONS["call_number"],
        "immediate_steps": list(EMERGENCY_INSTRUCTIONS["immediate_steps"]),
    }


def crisis_resources_text(emergency: EmergencyState) -> str:
    lines = ["You don't have to go through this alone. Please reach out right now:"]
    lines.extend(f"- {item['name']}: {item['contact']}" for item in emergency.crisis_resources)
    return "\n".join(lines)


def conversation_summary_text(session: AskCarebowSession) -> str:
    summary = session.session_summary or generate_session_summary(session)
    outcome = summary.triage_outcome
    parts = [
        summary.collected_data.primary_symptom,
        f"duration {summary.collected_data.duration}",
        f"severity {summary.collected_data.severity}",
        f"urgency {URGENCY_DISPLAY[outcome.urgency_level]['label']}",
    ]
    if summary.actual_action_taken:
        parts.append(summary.actual_action_taken)
    return "; ".join(parts)


def memory_ingestion_hook(memory: MemoryService) -> AfterFinalizeHook:
    """Build the after-finalize hook that feeds a finished session into member health memory."""

    def _ingest(session: AskCarebowSession) -> None:
        context = session.health_context
        memory.ingest_conversation(
            member_id=session.member_id,
            episode_id=session.id,
            summary_text=conversation_summary_text(session),
            urgency_level=session.urgency_level,
            primary_symptom=context.primary_symptom,
            severity=context.severity,
            symptoms=list(dict.fromkeys([s for s in [context.primary_symptom, *context.associated_symptoms] if s])),
            chronic_conditions=list(context.chronic_conditions),
            medications=list(context.medications),
            allergies=list(context.allergies),
            family_history=list(MemberProfile.from_dict(session.member_profile).family_history),
        )

    return _ingest


class ConversationEngine:
    """Drives one Ask CareBow turn: emergency screening, question gathering, triage and guidance."""

    def __init__(
        self,
        *,
        sessions: SessionStore,
        detector: RedFlagDetector,
        triage: TriageEngine,
        services: ServiceRegistry,
        actions: ActionRouter,
        hooks: HookRunner | None = None,
        sufficiency: SufficiencyPredicate = has_sufficient_context,
        health_memory: HealthMemoryStore | None = None,
    ) -> None:
        self.sessions = sessions
        self.detector = detector
        self.triage = triage
        self.services = services
        self.actions = actions
        self.hooks = hooks or HookRunner()
        self.sufficiency = sufficiency
        self.health_memory = health_memory

    def process_user_input(self, session_id: str, text: str, *, profile: MemberProfile | None = None) -> TurnResult:
        with self.sessions.lock:
            return self._run_turn(session_id, text, profile)

    def _run_turn(self, session_id: str, text: str, profile: MemberProfile | None) -> TurnResult:
        session = self.sessions.require_active(session_id)
        profile = profile or MemberProfile.from_dict(session.member_profile)
        decision = self.hooks.run_before(session, text)
        if not decision.allowed:
            raise TurnBlockedError(decision.code, decision.message)

        start = len(session.messages)
        self.sessions.add_user_message(session_id, text)

        emergency = self.detector.detect_in_messages(session.messages)
        if emergency.is_emergency:
            result = self._handle_emergency(session, text, emergency, profile)
        elif session.phase == "initial":
            result = self._handle_initial(session, text, profile)
        elif session.phase == "gathering":
            result = self._handle_gathering(session, text, profile)
        else:
            result = self._handle_post_guidance(session, text)

        # The user message is included so callers see the whole turn.
        result.messages = session.messages[start:]
        return result

    # Phase handlers

    def _handle_emergency(
        self,
        session: AskCarebowSession,
        text: str,
        emergency: EmergencyState,
        profile: MemberProfile,
    ) -> TurnResult:
        sid = session.id
        if session.phase == "emergency":
            symptoms = ", ".join(emergency.detected_symptoms)
            self.sessions.add_assistant_message(
                sid,
                f"You've described symptoms that may need immediate care ({symptoms}). "
                "Please contact emergency services (911 in the US) now. I can't continue with routine questions "
                "while this may be an emergency.",
                content_type="emergency_alert",
                is_emergency=True,
            )
            return TurnResult(session=session, messages=[], emergency=emergency)

        if session.phase == "initial":
            self.sessions.update_health_context(sid, {"primary_symptom": extract_primary_symptom(text)})

        state = session.conversation_state
        triage = self.triage.assess(
            session.health_context,
            profile=profile,
            emergency=emergency,
            questions_asked=state.questions_asked,
            questions_remaining=state.questions_remaining,
        )
        actions = build_suggested_actions("emergency", session.health_context, member_id=session.member_id)
        self.sessions.record_assessment(
            sid,
            triage=triage.to_dict(),
            suggested_actions=[action.to_dict() for action in actions],
            recommended_services=[],
            detected_symptoms=list(emergency.detected_symptoms),
        )
        self.sessions.record_emergency(sid, emergency.to_dict())
        self.sessions.set_current_question(sid, None)

        symptoms = ", ".join(emergency.detected_symptoms)
        self.sessions.add_assistant_message(
            sid,
            f"Based on what you've described ({symptoms}), this could be a serious situation that requires "
            "immediate medical attention.",
            content_type="emergency_alert",
            suggested_actions=[action.to_dict() for action in actions],
            is_emergency=True,
        )
        self.sessions.add_assistant_message(sid, f"{EMERGENCY_STEPS}\n\n{DISCLAIMER['emergency']}", is_emergency=True)
        if emergency.crisis_resources:
            self.sessions.add_assistant_message(sid, crisis_resources_text(emergency), is_emergency=True)
        return TurnResult(
            session=session,
            messages=[],
            emergency=emergency,
            triage=triage,
            extras={"emergency_instructions": emergency_instructions()},
        )

    def _prefill_context(self, session: AskCarebowSession, profile: MemberProfile) -> dict[str, Any]:
        updates: dict[str, Any] = {
            "chronic_conditions": list(profile.chronic_conditions),
            "medications": list(profile.medications),
            "allergies": list(profile.allergies),
        }
        if profile.age_group:
            updates["age_group"] = profile.age_group
        if self.health_memory is not None:
            remembered = self.health_memory.get_member_health_context(session.member_id)
            for key in ("chronic_conditions", "medications", "allergies"):
                known = {item.lower() for item in updates[key]}
                updates[key] += [item for item in remembered[key] if item.lower() not in known]
        return updates

    def _handle_initial(self, session: AskCarebowSession, text: str, profile: MemberProfile) -> TurnResult:
        sid = session.id
        symptom = extract_primary_symptom(text)
        self.sessions.update_health_context(
            sid,
            {"primary_symptom": symptom, **parse_initial_input(text), **self._prefill_context(session, profile)},
        )
        self.sessions.add_detected_symptom(sid, symptom)
        self.sessions.update_phase(sid, "gathering")
        self.sessions.add_assistant_message(
            sid,
            f"I understand you're experiencing {symptom.lower() or 'these symptoms'}. "
            "Let me ask a few questions to better understand your situation.",
        )
        return self._ask_next_or_assess(session, profile)

    def _handle_gathering(self, session: AskCarebowSession, text: str, profile: MemberProfile) -> TurnResult:
        sid = session.id
        question_type = session.conversation_state.current_question
        if question_type:
            updates = parse_response(text, question_type)
        else:
            updates = {"additional_notes": text}
        self.sessions.update_health_context(sid, updates)
        for symptom in updates.get("associated_symptoms", []):
            self.sessions.add_detected_symptom(sid, symptom)
        self.sessions.set_current_question(sid, None)
        return self._ask_next_or_assess(session, profile)

    def _handle_post_guidance(self, session: AskCarebowSession, text: str) -> TurnResult:
        sid = session.id
        self.sessions.update_health_context(sid, {"additional_notes": text})
        for symptom in parse_associated_symptoms(text):
            self.sessions.add_associated_symptom(sid, symptom)
            self.sessions.add_detected_symptom(sid, symptom)
        self.sessions.add_assistant_message(sid, POST_GUIDANCE_REPLY)
        return TurnResult(session=session, messages=[])

    # Gathering and assessment

    def _ask_next_or_assess(self, session: AskCarebowSession, profile: MemberProfile) -> TurnResult:
        state = session.conversation_state
        context = session.health_context
        if not self.sufficiency(context, state.questions_asked):
            question_type = next_question_type(state.questions_asked, context)
            if question_type is not None:
                question = build_question(question_type, context)
                self.sessions.mark_question_asked(session.id, question_type)
                self.sessions.set_current_question(session.id, question_type)
                self.sessions.add_assistant_message(
                    session.id,
                    question.text,
                    content_type="question",
                    quick_options=question.options_list() or None,
                )
                return TurnResult(session=session, messages=[])
        return self._assess(session, profile)

    def _assess(self, session: AskCarebowSession, profile: MemberProfile) -> TurnResult:
        sid = session.id
        self.sessions.update_phase(sid, "assessing")
        state = session.conversation_state
        context = session.health_context

        triage = self.triage.assess(
            context,
            profile=profile,
            questions_asked=state.questions_asked,
            questions_remaining=state.questions_remaining,
        )
        recommendations = self.services.recommend(context, triage.urgency_level)
        guidance = build_guidance(context, triage, member_id=session.member_id, recommendations=recommendations)
        suggested = [action.to_dict() for action in guidance.suggested_actions]
        self.sessions.record_assessment(
            sid,
            triage=triage.to_dict(),
            suggested_actions=suggested,
            recommended_services=[rec.to_dict() for rec in recommendations],
            detected_symptoms=guidance.detected_symptoms,
        )
        self.sessions.update_phase(sid, "guidance")
        self.sessions.mark_guidance_provided(sid)
        logger.info("Session %s assessed as %s", sid, triage.urgency_level)

        self.sessions.add_assistant_message(
            sid,
            format_guidance_text(guidance, triage),
            content_type="guidance",
            guidance=guidance.to_dict(),
            suggested_actions=suggested,
        )
        if recommendations:
            top = recommendations[0]
            self.sessions.add_assistant_message(
                sid,
                f"Based on your symptoms, I recommend: {top.service_title}",
                content_type="service_recommendation",
                service_recommendation=top.to_dict(),
            )
        self.sessions.add_assistant_message(sid, FOLLOW_UP_PROMPT)
        return TurnResult(session=session, messages=[], triage=triage, guidance=guidance)

    # Actions and completion

    def act_on_suggested_action(
        self,
        session_id: str,
        action_type: str,
        *,
        preferred_timing: str | None = None,
    ) -> tuple[ActionOutcome, Message]:
        with self.sessions.lock:
            session = self.sessions.require_active(session_id)
            outcome = self.actions.act(session_id, action_type, preferred_timing=preferred_timing)
            label = next(
                (action["label"] for action in session.suggested_actions if action.get("type") == action_type),
                action_type,
            )
            template = _ACTION_REPLIES.get(outcome.kind) or _ACTION_REPLIES[action_type]
            message = self.sessions.add_assistant_message(session_id, template.format(label=label))
        return outcome, message

    def finalize_session(self, session_id: str) -> AskCarebowSession:
        session = self.sessions.finalize_session(session_id)
        self.hooks.run_after(session)
        return session


