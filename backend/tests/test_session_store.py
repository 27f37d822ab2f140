from __future__ import annotations

import json
import threading
from datetime import datetime, timezone

import pytest

from carebow_engine import (
    ActiveSessionExistsError,
    ConversationStateError,
    InactiveSessionError,
    PhaseMachine,
    SessionNotFoundError,
    SessionStore,
    format_session_export,
    format_session_notes,
    generate_session_summary,
)
from carebow_engine.models import ConversationState
from carebow_engine.sessions import OPENING_MESSAGE


def _headache_session(engine):
    session = engine.sessions.start_new_session(
        user_id="user-a",
        member_id="member-1",
        member_name="Alex",
        member_profile={"age": 30},
    )
    engine.process_user_input(session.id, "I've had a mild headache for 2 days")
    engine.process_user_input(session.id, "It comes and goes")
    engine.process_user_input(session.id, "No other symptoms")
    return engine.sessions.get(session.id)


def test_new_session_opens_with_greeting(sessions):
    session = sessions.start_new_session(user_id="user-a", member_id="member-1")
    assert session.is_active
    assert session.phase == "initial"
    assert [message.text for message in session.messages] == [OPENING_MESSAGE]
    assert sessions.active_session_for_member("member-1").id == session.id


def test_one_active_session_per_member(sessions):
    first = sessions.start_new_session(user_id="user-a", member_id="member-1")
    with pytest.raises(ActiveSessionExistsError):
        sessions.start_new_session(user_id="user-a", member_id="member-1")

    sessions.end_session(first.id)
    second = sessions.start_new_session(user_id="user-a", member_id="member-1")
    assert second.id != first.id


def test_mutators_reject_inactive_sessions(sessions):
    session = sessions.start_new_session(user_id="user-a", member_id="member-1")
    ended = sessions.end_session(session.id)
    assert not ended.is_active
    assert ended.phase == "completed"
    assert ended.ended_at is not None

    with pytest.raises(InactiveSessionError):
        sessions.add_user_message(session.id, "hello again")
    with pytest.raises(InactiveSessionError):
        sessions.update_phase(session.id, "gathering")
    with pytest.raises(InactiveSessionError):
        sessions.end_session(session.id)
    with pytest.raises(SessionNotFoundError):
        sessions.get("session_missing")
    with pytest.raises(InactiveSessionError):
        sessions.add_risk_factor("session_missing", "smoker")


def test_empty_messages_and_invalid_levels_are_rejected(sessions):
    session = sessions.start_new_session(user_id="user-a", member_id="member-1")
    with pytest.raises(ValueError):
        sessions.add_user_message(session.id, "   ")
    with pytest.raises(ValueError):
        sessions.set_urgency_level(session.id, "whenever")
    with pytest.raises(ValueError):
        sessions.set_risk_level(session.id, "extreme")


def test_phase_machine_transitions():
    machine = PhaseMachine()
    state = ConversationState()
    assert machine.transition(state, "gathering") == "gathering"
    with pytest.raises(ConversationStateError):
        machine.transition(state, "guidance")
    with pytest.raises(ConversationStateError):
        machine.transition(state, "daydreaming")
    machine.transition(state, "completed")
    assert machine.is_terminal(state.phase)
    assert not machine.can_transition("completed", "gathering")
    assert machine.can_transition("guidance", "emergency")


def test_sessions_reload_from_storage(records, sessions):
    session = sessions.start_new_session(user_id="user-a", member_id="member-1", member_name="Alex")
    sessions.add_user_message(session.id, "I have a sore throat")
    sessions.add_associated_symptom(session.id, "fever")

    reloaded = SessionStore(records)
    restored = reloaded.get(session.id)
    assert restored.member_name == "Alex"
    assert [message.role for message in restored.messages] == ["assistant", "user"]
    assert restored.health_context.associated_symptoms == ["fever"]
    assert reloaded.active_session_for_member("member-1").id == session.id


def test_post_conversation_annotations_work_on_ended_sessions(sessions):
    session = sessions.start_new_session(user_id="user-a", member_id="member-1")
    sessions.end_session(session.id)

    scheduled = sessions.schedule_follow_up(session.id, "2026-11-01T09:00:00Z")
    assert scheduled.follow_up_scheduled
    assert sessions.cancel_follow_up(session.id).follow_up_scheduled_for is None

    sent = sessions.mark_doctor_notes_sent(session.id, "dr.lee@example.com")
    assert sent.doctor_notes_sent
    assert sent.export_history[-1]["exported_to"] == "dr.lee@example.com"

    exported = sessions.export_session(session.id, "json")
    assert exported.export_history[-1]["export_format"] == "json"
    with pytest.raises(ValueError):
        sessions.export_session(session.id, "pdf")

    rated = sessions.provide_detailed_feedback(session.id, was_helpful=True, rating=4, feedback_note="Clear")
    assert rated.feedback["rating"] == 4
    with pytest.raises(ValueError):
        sessions.provide_detailed_feedback(session.id, was_helpful=False, rating=6)
    assert [s.id for s in sessions.get_sessions_with_feedback()] == [session.id]


def test_summary_generation_is_idempotent(engine):
    session = _headache_session(engine)
    first = generate_session_summary(session)
    second = generate_session_summary(session)
    assert first == second
    assert first.chief_complaint == "I've had a mild headache for 2 days"
    assert first.collected_data.severity == "3/10"
    assert first.triage_outcome.safety_check_passed


def test_finalize_stores_summary_and_closes(engine):
    session = _headache_session(engine)
    finalized = engine.finalize_session(session.id)
    assert not finalized.is_active
    assert finalized.session_summary is not None
    assert finalized.session_summary.triage_outcome.urgency_level == finalized.urgency_level


def test_json_export_round_trip(engine):
    session = _headache_session(engine)
    export = format_session_export(session)
    restored = json.loads(json.dumps(export))

    assert restored["version"] == "1.0"
    assert restored["session"]["memberId"] == "member-1"
    assert restored["summary"]["chiefComplaint"] == "I've had a mild headache for 2 days"
    assert restored["summary"]["triageOutcome"]["urgencyLevel"] == session.urgency_level
    assert len(restored["conversationLog"]) == len(session.messages)
    assert restored["linkedActions"]["orderId"] is None


def test_text_notes_layout(engine):
    session = _headache_session(engine)
    generated = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    notes = format_session_notes(session, generated_at=generated)
    assert "CAREBOW AI HEALTH ASSISTANT - SESSION SUMMARY" in notes
    assert "Generated: 2026-10-19T12:00:00Z" in notes
    assert "Name: Alex" in notes
    assert '"I\'ve had a mild headache for 2 days"' in notes
    assert "Severity: 3/10" in notes
    assert "Safety Check: PASSED" in notes
    assert "DISCLAIMER: This AI-generated summary" in notes


def test_queries_are_newest_first(engine):
    sessions = engine.sessions
    first = sessions.start_new_session(user_id="user-a", member_id="member-1")
    sessions.end_session(first.id)
    emergency = sessions.start_new_session(user_id="user-a", member_id="member-2")
    engine.process_user_input(emergency.id, "My father has chest pain")
    other = sessions.start_new_session(user_id="user-b", member_id="member-3")

    assert [s.id for s in sessions.get_emergency_sessions()] == [emergency.id]
    assert {s.id for s in sessions.sessions_for_user("user-a")} == {first.id, emergency.id}
    assert len(sessions.get_recent_sessions(limit=2)) == 2
    assert sessions.get_sessions_for_member("member-3")[0].id == other.id


def test_summary_keeps_crisis_and_supplemental_flags(engine):
    sessions = engine.sessions
    crisis = sessions.start_new_session(user_id="user-a", member_id="member-1")
    engine.process_user_input(crisis.id, "I keep hurting myself")
    outcome = generate_session_summary(sessions.get(crisis.id)).triage_outcome
    assert outcome.red_flags_detected == ["self harm"]
    assert not outcome.safety_check_passed

    bleeding = sessions.start_new_session(user_id="user-a", member_id="member-2")
    engine.process_user_input(bleeding.id, "I have chest tightness and I'm vomiting blood")
    finalized = engine.finalize_session(bleeding.id)
    flags = finalized.session_summary.triage_outcome.red_flags_detected
    assert set(flags) == {"chest tightness", "vomiting blood"}
    notes = format_session_notes(finalized)
    assert "Red Flags Detected:" in notes
    assert "  ! vomiting blood" in notes


def test_loose_profile_is_normalized_once_at_start(sessions):
    session = sessions.start_new_session(
        user_id="user-a",
        member_id="member-1",
        member_profile={"age": "seventy", "chronic_conditions": "diabetes", "allergies": ["Latex", 3, " "]},
    )
    profile = session.member_profile
    assert profile["member_id"] == "member-1"
    assert profile["age"] is None
    assert profile["chronic_conditions"] == ["diabetes"]
    assert profile["allergies"] == ["Latex"]


def test_concurrent_starts_leave_one_active_session(sessions):
    barrier = threading.Barrier(8)
    started: list[str] = []
    rejected: list[Exception] = []

    def _start():
        barrier.wait()
        try:
            started.append(sessions.start_new_session(user_id="user-a", member_id="member-1").id)
        except ActiveSessionExistsError as exc:
            rejected.append(exc)

    threads = [threading.Thread(target=_start) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(started) == 1
    assert len(rejected) == 7
    assert sessions.active_session_for_member("member-1").id == started[0]
    assert [s.id for s in sessions.get_sessions_for_member("member-1")] == started
