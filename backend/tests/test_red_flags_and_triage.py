from __future__ import annotations

from carebow_engine import RedFlagDetector, TriageEngine, calculate_confidence
from carebow_engine.guidance import build_guidance
from carebow_engine.models import FOLLOW_UP_QUESTION_TYPES, HealthContext
from carebow_engine.triage import MemberProfile, age_group_for_age


def _engine() -> TriageEngine:
    return TriageEngine(RedFlagDetector())


def test_red_flag_detection_is_case_insensitive():
    state = RedFlagDetector().detect("Chest Pain right now")
    assert state.is_emergency
    assert state.type == "P1_EMERGENCY"
    assert "chest pain" in state.detected_symptoms


def test_curly_apostrophes_and_rephrasings_are_detected():
    detector = RedFlagDetector()
    assert "can't breathe" in detector.find_red_flags("I can’t breathe properly")
    assert "can't breathe" in detector.find_red_flags("I am unable to breathe")
    assert "chest tightness" in detector.find_red_flags("there is a tightness in my chest")
    assert detector.find_red_flags("I have a mild headache") == []


def test_crisis_language_sets_emergency_with_resources():
    state = RedFlagDetector().detect("I just want to die")
    assert state.is_emergency
    assert state.crisis_type == "suicide"
    assert state.detected_symptoms == ("suicide",)
    assert state.crisis_resources[0]["contact"] == "Call or text 988"

    overdose = RedFlagDetector().detect("I took too many pills an hour ago")
    assert overdose.crisis_type == "overdose"
    assert {item["name"] for item in overdose.crisis_resources} == {"Emergency Services", "Poison Control"}


def test_plain_text_is_not_an_emergency():
    state = RedFlagDetector().detect("My knee is a bit sore after running")
    assert not state.is_emergency
    assert state.detected_symptoms == ()


def test_senior_with_chest_pain_is_emergency():
    detector = RedFlagDetector()
    context = HealthContext(primary_symptom="Chest pain")
    result = TriageEngine(detector).assess(
        context,
        profile=MemberProfile(age=72),
        emergency=detector.detect("chest pain"),
    )
    assert result.urgency_level == "emergency"
    assert result.level == "emergency"
    assert result.risk_level == "critical"
    assert result.age_modifier_applied == 12
    assert "chest pain" in result.red_flags_detected


def test_mild_headache_stays_in_self_care():
    context = HealthContext(primary_symptom="Headache", duration="1_2_days", severity=3)
    result = _engine().assess(context, profile=MemberProfile(age=30))
    assert result.urgency_level in {"self_care", "monitor"}
    assert result.red_flags_detected == []

    guidance = build_guidance(context, result)
    assert "call_emergency" not in {action.type for action in guidance.suggested_actions}
    assert guidance.emergency_disclaimer is None


def test_red_flag_in_associated_symptom_is_at_least_urgent():
    context = HealthContext(primary_symptom="Cough", associated_symptoms=["shortness of breath"])
    result = _engine().assess(context)
    assert result.urgency_level == "urgent"
    assert result.score == 30


def test_score_bands_without_red_flags():
    sudden = HealthContext(primary_symptom="Back pain", duration="just_now", severity=9)
    result = _engine().assess(sudden)
    assert result.score == 40
    assert result.urgency_level == "urgent"

    persistent = HealthContext(primary_symptom="Back pain", duration="1_2_weeks", severity=8)
    result = _engine().assess(persistent, profile=MemberProfile(age=70))
    assert result.score == 35
    assert result.urgency_level == "soon"
    assert result.level == "consult"


def test_high_risk_conditions_and_pregnancy_add_to_score():
    context = HealthContext(primary_symptom="Fatigue", chronic_conditions=["Type 2 diabetes"])
    result = _engine().assess(context, profile=MemberProfile(is_pregnant=True))
    assert result.score == 25
    assert result.risk_factors == ["Type 2 diabetes"]
    assert result.urgency_level == "non_urgent"


def test_confidence_is_monotonic_as_context_fills():
    context = HealthContext()
    scores = [calculate_confidence(context)]
    for updates in (
        {"primary_symptom": "Headache"},
        {"duration": "1_2_days"},
        {"severity": 4},
        {"associated_symptoms": ["nausea"]},
        {"frequency": "intermittent"},
        {"medications": ["ibuprofen"]},
        {"chronic_conditions": ["asthma"]},
    ):
        context.merge(updates)
        scores.append(calculate_confidence(context))
    assert scores == sorted(scores)
    assert scores[-1] == 90

    asked = list(FOLLOW_UP_QUESTION_TYPES)
    assert calculate_confidence(context, asked, []) == 100


def test_age_groups():
    assert age_group_for_age(None) is None
    assert age_group_for_age(0) == "infant"
    assert age_group_for_age(12) == "child"
    assert age_group_for_age(17) == "teen"
    assert age_group_for_age(64) == "adult"
    assert age_group_for_age(65) == "senior"
