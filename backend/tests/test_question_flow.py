from __future__ import annotations

import pytest

from carebow_engine.models import FOLLOW_UP_QUESTION_TYPES, ConversationState, HealthContext
from carebow_engine.questions import (
    build_question,
    extract_primary_symptom,
    has_sufficient_context,
    next_question_type,
    parse_associated_symptoms,
    parse_duration,
    parse_frequency,
    parse_initial_input,
    parse_response,
    parse_severity,
    should_ask_more_questions,
)


def test_asked_and_remaining_questions_partition_the_question_types():
    state = ConversationState()
    assert state.questions_asked == []
    assert state.questions_remaining == list(FOLLOW_UP_QUESTION_TYPES)

    for question_type in ("duration", "severity", "frequency", "duration"):
        state.mark_question_asked(question_type)
        asked = set(state.questions_asked)
        remaining = set(state.questions_remaining)
        assert asked.isdisjoint(remaining)
        assert asked | remaining == set(FOLLOW_UP_QUESTION_TYPES)

    assert state.mark_question_asked("duration") is False
    assert state.questions_asked == ["duration", "severity", "frequency"]
    with pytest.raises(ValueError):
        state.mark_question_asked("favourite_colour")


def test_partition_survives_serialization():
    state = ConversationState()
    state.mark_question_asked("associated_symptoms")
    restored = ConversationState.from_dict(state.to_dict())
    assert restored.questions_asked == ["associated_symptoms"]
    assert "associated_symptoms" not in restored.questions_remaining
    assert len(restored.questions_remaining) == len(FOLLOW_UP_QUESTION_TYPES) - 1


def test_next_question_skips_known_duration_and_severity():
    context = HealthContext(primary_symptom="Headache")
    assert next_question_type([], context) == "duration"

    context.merge({"duration": "1_2_days", "severity": 3})
    assert next_question_type([], context) == "frequency"
    assert next_question_type(["frequency"], context) == "associated_symptoms"
    asked = ["frequency", "associated_symptoms", "recent_events", "chronic_conditions"]
    assert next_question_type(asked, context) is None


def test_sufficiency_policy():
    context = HealthContext(primary_symptom="Headache", duration="1_2_days", severity=3)
    assert should_ask_more_questions(context, [])
    assert should_ask_more_questions(context, ["frequency"])
    assert has_sufficient_context(context, ["frequency", "associated_symptoms"])

    severe = HealthContext(primary_symptom="Back pain", duration="1_2_days", severity=8)
    assert should_ask_more_questions(severe, ["frequency", "associated_symptoms", "recent_events"])
    assert has_sufficient_context(severe, ["frequency", "associated_symptoms", "recent_events", "chronic_conditions"])

    lingering = HealthContext(primary_symptom="Cough", duration="1_2_weeks", severity=3)
    assert should_ask_more_questions(lingering, ["frequency", "associated_symptoms"])
    assert has_sufficient_context(lingering, ["frequency", "associated_symptoms", "recent_events"])

    unknown = HealthContext(primary_symptom="Rash")
    assert should_ask_more_questions(unknown, ["frequency", "associated_symptoms"])


def test_question_templates_reference_the_symptom():
    context = HealthContext(primary_symptom="Stomach pain")
    duration = build_question("duration", context)
    assert duration.text == "How long have you been experiencing stomach pain?"
    assert duration.required
    assert [option["value"] for option in duration.options_list()][-1] == "more_than_2_weeks"

    associated = build_question("associated_symptoms", context)
    assert "nausea, vomiting, fever, diarrhea" in associated.text
    assert not associated.required


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("2 days", "1_2_days"),
        ("about 5 days", "3_7_days"),
        ("3 weeks", "more_than_2_weeks"),
        ("it just started", "just_now"),
        ("since this morning", "today"),
        ("a few months", "more_than_2_weeks"),
        ("for years", "chronic"),
        ("1_2_weeks", "1_2_weeks"),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


def test_parse_severity_and_frequency():
    assert parse_severity("about a 7") == 7
    assert parse_severity("it's unbearable") == 10
    assert parse_severity("pretty mild") == 3
    assert parse_severity("15") == 5
    assert parse_frequency("It comes and goes") == "intermittent"
    assert parse_frequency("all the time") == "constant"
    assert parse_frequency("first time this happened") == "first_time"


def test_parse_associated_symptoms_handles_negation():
    assert parse_associated_symptoms("I have nausea and a fever") == ["fever", "nausea"]
    assert parse_associated_symptoms("no fever but some nausea") == ["nausea"]
    assert parse_associated_symptoms("No other symptoms") == []
    assert parse_associated_symptoms("shortness of breath and sweating") == ["shortness of breath", "sweating"]


def test_parse_response_routes_by_question_type():
    assert parse_response("diabetes and high blood pressure", "chronic_conditions") == {
        "chronic_conditions": ["diabetes", "hypertension"]
    }
    assert parse_response("I fell yesterday", "recent_events") == {"recent_events": ["recent injury"]}
    assert parse_response("none", "medications") == {"medications": []}
    assert parse_response("it hurts behind my eyes", "location") == {
        "additional_notes": "Location: it hurts behind my eyes"
    }
    assert parse_response("anything", None) == {"additional_notes": "anything"}


def test_opening_message_parsing():
    assert parse_initial_input("I've had a mild headache for 2 days") == {"duration": "1_2_days", "severity": 3}
    assert parse_initial_input("Severe stomach pain since yesterday") == {"duration": "1_2_days", "severity": 8}
    assert extract_primary_symptom("I'm having stomach pain.") == "Stomach pain"
    assert extract_primary_symptom("sore throat") == "Sore throat"
    assert extract_primary_symptom("   ") == ""
